"""
Users API - The current principal and their favorites
"""

from fastapi import APIRouter, Depends

from marketplace.api.deps import get_ledger
from marketplace.api.responses import success, templates_data
from marketplace.errors import failure_scope
from marketplace.identity import Principal, require_principal
from marketplace.services import RelationshipLedger

router = APIRouter()


@router.get("/me")
async def get_me(principal: Principal = Depends(require_principal)):
    """The authenticated principal as resolved by the identity provider."""
    return success({
        "id": principal.id,
        "email": principal.email,
        "name": principal.name,
        "displayName": principal.display_name,
    })


@router.get("/me/favorites")
async def get_my_favorites(
    principal: Principal = Depends(require_principal),
    ledger: RelationshipLedger = Depends(get_ledger),
):
    with failure_scope("INTERNAL_ERROR", "Failed to fetch favorites"):
        templates = await ledger.favorite_templates(principal.id)
    return success(templates_data(templates))
