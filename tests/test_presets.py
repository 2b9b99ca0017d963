# tests/test_presets.py
import pytest

from app.core.exceptions import InvalidStyleConfiguration, PresetNotFound
from app.models.style import SolidColorStyle, StudioStyle
from app.services.presets import (
    BATCH_PRESETS,
    StyleResolver,
    get_preset,
    moodboard_note,
    presets_grouped,
    validate_style,
)


def test_catalog_has_ten_presets_in_four_categories():
    assert len(BATCH_PRESETS) == 10
    grouped = presets_grouped()
    assert list(grouped) == ["marketplace", "catalog", "campaign", "social"]
    assert [p.id for p in grouped["marketplace"]] == ["marketplace-ready", "ecommerce-gray"]
    assert len(grouped["campaign"]) == 4


def test_preset_ids_are_unique():
    ids = [p.id for p in BATCH_PRESETS]
    assert len(ids) == len(set(ids))


def test_marketplace_preset_is_white_solid_color():
    preset = get_preset("marketplace-ready")
    assert isinstance(preset.settings, SolidColorStyle)
    assert preset.settings.solid_color == "#FFFFFF"
    assert preset.settings.presentation == "product_only"


def test_moodboard_notes_only_on_themed_presets():
    assert moodboard_note("ramadan-campaign").startswith("Ramadan spiritual elegance")
    assert moodboard_note("catalog-consistent") is None
    assert moodboard_note(None) is None
    assert moodboard_note("unknown") is None


def test_validate_style_accepts_every_scene():
    assert isinstance(validate_style({"presentation": "ghost", "sceneType": "studio"}), StudioStyle)
    real_place = validate_style({"presentation": "on_model", "sceneType": "real_place", "backgroundId": "bg-1"})
    assert real_place.background_id == "bg-1"


@pytest.mark.parametrize("settings", [
    None,
    {},
    {"presentation": "product_only"},
    {"presentation": "product_only", "sceneType": "underwater"},
    {"presentation": "floating", "sceneType": "studio"},
    {"presentation": "product_only", "sceneType": "solid_color"},
    {"presentation": "product_only", "sceneType": "solid_color", "solidColor": "white"},
    {"presentation": "product_only", "sceneType": "real_place"},
])
def test_validate_style_rejects_invalid_settings(settings):
    with pytest.raises(InvalidStyleConfiguration):
        validate_style(settings)


def test_resolver_preset_wins_over_explicit_settings():
    style, preset = StyleResolver().resolve(
        {"presentation": "on_model", "sceneType": "studio"}, preset_id="ecommerce-gray"
    )

    assert preset.id == "ecommerce-gray"
    assert style.solid_color == "#F5F5F5"
    assert style.presentation == "product_only"


def test_resolver_unknown_preset():
    with pytest.raises(PresetNotFound):
        StyleResolver().resolve(preset_id="nope")


def test_resolver_explicit_settings():
    style, preset = StyleResolver().resolve({"presentation": "product_only", "sceneType": "ai_generated"})
    assert preset is None
    assert style.scene_type == "ai_generated"


def test_resolver_requires_some_style():
    with pytest.raises(InvalidStyleConfiguration):
        StyleResolver().resolve()
