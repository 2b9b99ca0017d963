# app/models/style.py
from typing import Annotated, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


PresentationType = Literal["product_only", "on_model", "ghost"]
SceneType = Literal["studio", "solid_color", "real_place", "ai_generated"]
PresetCategory = Literal["marketplace", "catalog", "campaign", "social"]

PRESENTATION_TYPES = ("product_only", "on_model", "ghost")
SCENE_TYPES = ("studio", "solid_color", "real_place", "ai_generated")
PRESET_CATEGORIES = ("marketplace", "catalog", "campaign", "social")


class _StyleBase(BaseModel):
    """Fields shared by every scene variant"""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    presentation: PresentationType = Field(description="How the product is presented")
    brand_id: Optional[str] = Field(None, alias="brandId", description="Brand whose style applies")


class StudioStyle(_StyleBase):
    """Neutral studio lighting"""
    scene_type: Literal["studio"] = Field(alias="sceneType")


class SolidColorStyle(_StyleBase):
    """Seamless solid color backdrop"""
    scene_type: Literal["solid_color"] = Field(alias="sceneType")
    solid_color: str = Field(
        alias="solidColor",
        pattern=r"^#[0-9A-Fa-f]{6}$",
        description="Backdrop color as #RRGGBB"
    )


class RealPlaceStyle(_StyleBase):
    """Product composited into a reference background"""
    scene_type: Literal["real_place"] = Field(alias="sceneType")
    background_id: str = Field(alias="backgroundId", min_length=1, description="Background reference")


class AIGeneratedStyle(_StyleBase):
    """Scene invented by the model"""
    scene_type: Literal["ai_generated"] = Field(alias="sceneType")


StyleConfiguration = Annotated[
    Union[StudioStyle, SolidColorStyle, RealPlaceStyle, AIGeneratedStyle],
    Field(discriminator="scene_type"),
]

style_adapter: TypeAdapter = TypeAdapter(StyleConfiguration)


class Preset(BaseModel):
    """Named, versioned, read-only style template"""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    version: int = 1
    name: str
    name_fr: str = Field(alias="nameFr")
    description: str
    description_fr: str = Field(alias="descriptionFr")
    category: PresetCategory
    icon: str
    settings: StyleConfiguration
    moodboard_note: Optional[str] = Field(None, alias="moodboardNote")
