from fastapi import APIRouter, Depends
from app.api.deps import get_current_active_user
from app.models.auth import User
from app.services.presets import list_presets, presets_grouped

router = APIRouter()


@router.get("")
async def get_presets(current_user: User = Depends(get_current_active_user)):
    """
    Catalog of batch presets

    Returns the flat list and the same presets grouped by category
    (marketplace, catalog, campaign, social).
    """
    return {
        "presets": [p.model_dump(by_alias=True, exclude_none=True) for p in list_presets()],
        "grouped": {
            category: [p.model_dump(by_alias=True, exclude_none=True) for p in presets]
            for category, presets in presets_grouped().items()
        },
    }
