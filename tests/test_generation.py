# tests/test_generation.py
import httpx
import pytest

from app.models.style import style_adapter
from app.services.generation import (
    GenerationError,
    HttpCaptionWriter,
    HttpImageGenerator,
    build_generation_request,
)

PRODUCT = {"id": "prod-1", "name": "Leather sandals", "image_url": "https://cdn.example.com/sandals.jpg"}


def with_transport(client_owner, handler):
    client_owner.client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client_owner


def test_brief_for_solid_color_scene():
    style = style_adapter.validate_python(
        {"presentation": "ghost", "sceneType": "solid_color", "solidColor": "#F5F5F5"}
    )
    request = build_generation_request(PRODUCT, style, "user-1", brand={"name": "Teranga"})

    assert "ghost mannequin" in request.prompt
    assert "#F5F5F5" in request.prompt
    assert "Leather sandals" in request.prompt
    assert "Teranga" in request.prompt
    assert request.reference_images == [PRODUCT["image_url"]]
    assert request.metadata == {"scene_type": "solid_color", "presentation": "ghost"}


def test_brief_for_real_place_carries_background():
    style = style_adapter.validate_python(
        {"presentation": "on_model", "sceneType": "real_place", "backgroundId": "dakar-market"}
    )
    request = build_generation_request(PRODUCT, style, "user-1", moodboard_note="warm dusk")

    assert request.metadata["background_id"] == "dakar-market"
    assert "Mood: warm dusk." in request.prompt


@pytest.mark.asyncio
async def test_http_generator_returns_output_url():
    seen = {}

    def handler(request: httpx.Request):
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"outputUrl": "https://cdn.example.com/out.png"})

    generator = with_transport(HttpImageGenerator("http://gateway/generate", api_key="k"), handler)
    style = style_adapter.validate_python({"presentation": "product_only", "sceneType": "studio"})

    result = await generator.generate(build_generation_request(PRODUCT, style, "user-1"))

    assert result.output_url == "https://cdn.example.com/out.png"
    assert seen["auth"] == "Bearer k"
    await generator.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("response, message", [
    (httpx.Response(500, text="overloaded"), "Generation API error (500): overloaded"),
    (httpx.Response(200, json={"error": "content policy"}), "content policy"),
    (httpx.Response(200, json={}), "Generation failed - no output"),
    (httpx.Response(200, text="<html>"), "Generation API returned malformed JSON"),
])
async def test_http_generator_errors(response, message):
    generator = with_transport(HttpImageGenerator("http://gateway/generate"), lambda request: response)
    style = style_adapter.validate_python({"presentation": "product_only", "sceneType": "studio"})

    with pytest.raises(GenerationError) as exc_info:
        await generator.generate(build_generation_request(PRODUCT, style, "user-1"))

    assert str(exc_info.value) == message
    await generator.close()


@pytest.mark.asyncio
async def test_http_generator_timeout():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    generator = with_transport(HttpImageGenerator("http://gateway/generate"), handler)
    style = style_adapter.validate_python({"presentation": "product_only", "sceneType": "studio"})

    with pytest.raises(GenerationError, match="timed out"):
        await generator.generate(build_generation_request(PRODUCT, style, "user-1"))
    await generator.close()


@pytest.mark.asyncio
async def test_http_caption_writer():
    def handler(request: httpx.Request):
        return httpx.Response(200, json={"caption": "Step into summer"})

    writer = with_transport(HttpCaptionWriter("http://gateway/caption"), handler)

    caption = await writer.write_caption(PRODUCT, "playful", "https://cdn.example.com/out.png")

    assert caption == "Step into summer"
    await writer.close()
