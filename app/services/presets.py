# app/services/presets.py
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from app.core.exceptions import InvalidStyleConfiguration, PresetNotFound
from app.core.logging import get_logger
from app.models.style import PRESET_CATEGORIES, Preset, StyleConfiguration, style_adapter

logger = get_logger(__name__)


def _preset(**data: Any) -> Preset:
    return Preset.model_validate(data)


BATCH_PRESETS: List[Preset] = [
    # Marketplace
    _preset(
        id="marketplace-ready",
        name="Marketplace Ready",
        nameFr="Marketplace",
        description="Clean white background, perfect for online stores",
        descriptionFr="Fond blanc, parfait pour les boutiques en ligne",
        category="marketplace",
        icon="store",
        settings={"presentation": "product_only", "sceneType": "solid_color", "solidColor": "#FFFFFF"},
    ),
    _preset(
        id="ecommerce-gray",
        name="E-commerce Gray",
        nameFr="E-commerce Gris",
        description="Neutral gray background, professional look",
        descriptionFr="Fond gris neutre, look professionnel",
        category="marketplace",
        icon="shopping-bag",
        settings={"presentation": "product_only", "sceneType": "solid_color", "solidColor": "#F5F5F5"},
    ),
    # Catalog
    _preset(
        id="catalog-consistent",
        name="Catalog Consistency",
        nameFr="Catalogue Uniforme",
        description="Studio lighting with brand style applied",
        descriptionFr="Eclairage studio avec style de marque",
        category="catalog",
        icon="book-open",
        settings={"presentation": "product_only", "sceneType": "studio"},
    ),
    _preset(
        id="lifestyle-studio",
        name="Lifestyle Studio",
        nameFr="Studio Lifestyle",
        description="Modern studio with contextual elements",
        descriptionFr="Studio moderne avec elements contextuels",
        category="catalog",
        icon="sparkles",
        settings={"presentation": "product_only", "sceneType": "ai_generated"},
    ),
    # Campaign
    _preset(
        id="tabaski-campaign",
        name="Tabaski Campaign",
        nameFr="Campagne Tabaski",
        description="Festive golden tones, celebration vibes",
        descriptionFr="Tons dores festifs, ambiance celebration",
        category="campaign",
        icon="moon",
        settings={"presentation": "product_only", "sceneType": "ai_generated"},
        moodboardNote="Tabaski celebration atmosphere, festive golden accents, warm family gathering "
                      "feeling, traditional elegance with modern touch",
    ),
    _preset(
        id="ramadan-campaign",
        name="Ramadan Campaign",
        nameFr="Campagne Ramadan",
        description="Elegant night tones, spiritual ambiance",
        descriptionFr="Tons nuit elegants, ambiance spirituelle",
        category="campaign",
        icon="star",
        settings={"presentation": "product_only", "sceneType": "ai_generated"},
        moodboardNote="Ramadan spiritual elegance, night sky tones, crescent moon motifs, peaceful and "
                      "serene atmosphere, subtle golden lantern lighting",
    ),
    _preset(
        id="magal-campaign",
        name="Magal Campaign",
        nameFr="Campagne Magal",
        description="Traditional Mouride colors and motifs",
        descriptionFr="Couleurs et motifs Mourides traditionnels",
        category="campaign",
        icon="heart",
        settings={"presentation": "product_only", "sceneType": "ai_generated"},
        moodboardNote="Grand Magal de Touba celebration, traditional Mouride green and white colors, "
                      "religious devotion, cultural pride, community gathering",
    ),
    _preset(
        id="independence-day",
        name="Independence Day",
        nameFr="Fete Independance",
        description="Senegalese green, yellow, red patriotic theme",
        descriptionFr="Theme patriotique vert, jaune, rouge",
        category="campaign",
        icon="flag",
        settings={"presentation": "product_only", "sceneType": "ai_generated"},
        moodboardNote="Senegalese Independence Day celebration, patriotic green yellow red, national "
                      "pride, African unity, modern Senegal",
    ),
    # Social
    _preset(
        id="christmas-campaign",
        name="Christmas/New Year",
        nameFr="Noel/Nouvel An",
        description="Festive red and gold, holiday spirit",
        descriptionFr="Rouge et or festif, esprit de fete",
        category="social",
        icon="gift",
        settings={"presentation": "product_only", "sceneType": "ai_generated"},
        moodboardNote="Christmas and New Year festive spirit, red and gold decorations, holiday warmth, "
                      "gift giving joy, celebration atmosphere",
    ),
    _preset(
        id="summer-vibes",
        name="Summer Vibes",
        nameFr="Ambiance Ete",
        description="Bright, sunny outdoor feel",
        descriptionFr="Ambiance exterieure lumineuse et ensoleillee",
        category="social",
        icon="sun",
        settings={"presentation": "product_only", "sceneType": "ai_generated"},
        moodboardNote="Bright sunny Senegalese summer, beach vibes, colorful and energetic, outdoor "
                      "lifestyle, tropical freshness",
    ),
]

_PRESETS_BY_ID: Dict[str, Preset] = {preset.id: preset for preset in BATCH_PRESETS}


def get_preset(preset_id: str) -> Optional[Preset]:
    return _PRESETS_BY_ID.get(preset_id)


def list_presets() -> List[Preset]:
    return list(BATCH_PRESETS)


def presets_grouped() -> Dict[str, List[Preset]]:
    """Presets keyed by category, in catalog order"""
    return {
        category: [p for p in BATCH_PRESETS if p.category == category]
        for category in PRESET_CATEGORIES
    }


def moodboard_note(preset_id: Optional[str]) -> Optional[str]:
    if not preset_id:
        return None
    preset = get_preset(preset_id)
    return preset.moodboard_note if preset else None


def validate_style(settings: Optional[Dict[str, Any]]) -> StyleConfiguration:
    """Validate raw style settings into a typed StyleConfiguration"""
    if not settings:
        raise InvalidStyleConfiguration("styleSettings is required")
    try:
        return style_adapter.validate_python(settings)
    except ValidationError as e:
        errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise InvalidStyleConfiguration(f"Invalid style settings: {'; '.join(errors)}")


class StyleResolver:
    """Turns a preset id or raw settings into the style applied to every item of a batch"""

    def resolve(
        self,
        explicit_settings: Optional[Dict[str, Any]] = None,
        preset_id: Optional[str] = None,
    ) -> Tuple[StyleConfiguration, Optional[Preset]]:
        """
        Resolve the style for a batch

        A preset's fixed settings win over explicit settings passed alongside
        it; the two are never merged. Usage is counted by the batch service
        once a job is actually created from the preset.

        Raises:
            PresetNotFound: Unknown preset id
            InvalidStyleConfiguration: Explicit settings missing or invalid
        """
        if preset_id:
            preset = get_preset(preset_id)
            if preset is None:
                raise PresetNotFound(preset_id)
            if explicit_settings:
                logger.info(f"Preset {preset_id} overrides explicit style settings")
            return preset.settings, preset

        return validate_style(explicit_settings), None
