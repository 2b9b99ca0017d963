"""Clients for the external generation collaborators.

The batch worker only depends on the two small interfaces defined here:
``ImageGenerator.generate`` (prompt + reference images -> output url) and
``CaptionWriter.write_caption``. The HTTP implementations talk to the
model gateway with ``httpx``.
"""
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import httpx

from app.core.logging import get_logger
from app.models.style import StyleConfiguration

logger = get_logger(__name__)


class GenerationError(Exception):
    """Raised when the generation backend fails or returns no image"""


@dataclass
class GenerationRequest:
    """Everything the backend needs to render one product"""
    prompt: str
    reference_images: List[str]
    user_id: str
    product_id: str
    negative_prompt: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class GenerationResult:
    output_url: str
    generation_time_ms: int = 0


class ImageGenerator(Protocol):
    async def generate(self, request: GenerationRequest) -> GenerationResult: ...


class CaptionWriter(Protocol):
    async def write_caption(self, product: Dict[str, Any], voice: str, output_url: str) -> str: ...


PRESENTATION_HINTS = {
    "product_only": "the product alone, no person",
    "on_model": "the product worn or held by a model",
    "ghost": "ghost mannequin presentation, invisible wearer",
}

SCENE_HINTS = {
    "studio": "professional studio lighting on a neutral set",
    "solid_color": "seamless solid color backdrop",
    "real_place": "placed naturally into the reference background with matching light and shadows",
    "ai_generated": "an invented lifestyle scene that suits the product",
}


def build_generation_request(
    product: Dict[str, Any],
    style: StyleConfiguration,
    user_id: str,
    moodboard_note: Optional[str] = None,
    brand: Optional[Dict[str, Any]] = None,
) -> GenerationRequest:
    """Build the generation brief for one product under the batch style"""
    lines = [
        "Generate a professional product photography image.",
        "The product in the first image must be reproduced exactly: same design, colors and details.",
        f"Presentation: {PRESENTATION_HINTS[style.presentation]}.",
        f"Scene: {SCENE_HINTS[style.scene_type]}.",
    ]
    if style.scene_type == "solid_color":
        lines.append(f"Backdrop color: {style.solid_color}.")
    if product.get("name"):
        lines.append(f"Product: {product['name']}.")
    if brand:
        lines.append(f"Follow the visual identity of the brand {brand['name']}.")
    if moodboard_note:
        lines.append(f"Mood: {moodboard_note}.")

    metadata: Dict[str, Any] = {"scene_type": style.scene_type, "presentation": style.presentation}
    if style.scene_type == "real_place":
        metadata["background_id"] = style.background_id

    return GenerationRequest(
        prompt="\n".join(lines),
        reference_images=[product["image_url"]],
        user_id=user_id,
        product_id=product["id"],
        negative_prompt="extra items, added accessories, altered logos, text, watermark",
        metadata=metadata,
    )


class HttpImageGenerator:
    """Image generation through the model gateway's HTTP API"""

    def __init__(self, api_url: str, api_key: str = "", timeout: float = 120.0):
        self.api_url = api_url
        self.api_key = api_key
        self.client = httpx.AsyncClient(timeout=timeout)

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        payload = {
            "prompt": request.prompt,
            "negativePrompt": request.negative_prompt,
            "referenceImages": request.reference_images,
            "userId": request.user_id,
            "productId": request.product_id,
            "metadata": request.metadata,
        }
        start_time = time.time()

        try:
            response = await self.client.post(self.api_url, json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException:
            raise GenerationError("Generation request timed out")
        except httpx.HTTPStatusError as e:
            detail = e.response.text or str(e)
            raise GenerationError(f"Generation API error ({e.response.status_code}): {detail}")
        except httpx.HTTPError as e:
            raise GenerationError(f"Generation request failed: {e}")
        except ValueError:
            raise GenerationError("Generation API returned malformed JSON")

        output_url = data.get("outputUrl") or data.get("url")
        if not output_url:
            raise GenerationError(data.get("error") or "Generation failed - no output")

        generation_time_ms = int((time.time() - start_time) * 1000)
        logger.info(f"Generated image for product {request.product_id} in {generation_time_ms}ms")
        return GenerationResult(output_url=output_url, generation_time_ms=generation_time_ms)

    async def close(self) -> None:
        await self.client.aclose()


class HttpCaptionWriter:
    """Caption writing in the brand's voice through an HTTP text model"""

    def __init__(self, api_url: str, api_key: str = "", timeout: float = 30.0):
        self.api_url = api_url
        self.api_key = api_key
        self.client = httpx.AsyncClient(timeout=timeout)

    async def write_caption(self, product: Dict[str, Any], voice: str, output_url: str) -> str:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        response = await self.client.post(
            self.api_url,
            json={"productName": product.get("name"), "voice": voice, "imageUrl": output_url},
            headers=headers,
        )
        response.raise_for_status()
        caption = response.json().get("caption")
        if not caption:
            raise GenerationError("Caption API returned no caption")
        return caption

    async def close(self) -> None:
        await self.client.aclose()
