"""
Templates API - Lifecycle, lineage and favorites of templates
"""

from typing import Literal

from fastapi import APIRouter, Body, Depends, Query, Request, status

from marketplace.api.deps import get_ledger, get_lifecycle, get_usage_recorder
from marketplace.api.responses import (
    fork_record_data,
    success,
    template_data,
    templates_data,
)
from marketplace.config import Settings, get_settings
from marketplace.errors import failure_scope
from marketplace.identity import Principal, get_current_principal, require_principal
from marketplace.schemas import (
    CloneOverrides,
    FavoriteStatus,
    TemplateDraft,
    TemplateFilters,
    TemplatePatch,
    UsageBreakdown,
)
from marketplace.services import RelationshipLedger, TemplateLifecycleManager, UsageRecorder

router = APIRouter()


# =============================================================================
# Helper Functions
# =============================================================================

def request_metadata(request: Request) -> dict[str, str | None]:
    """Analytics metadata captured from the request."""
    return {"userAgent": request.headers.get("user-agent")}


async def favorite_status(
    ledger: RelationshipLedger,
    template_id: str,
    user_id: str,
    is_favorite: bool | None = None,
) -> dict:
    if is_favorite is None:
        is_favorite = await ledger.is_favorite(template_id, user_id)
    favorite_count = await ledger.favorite_count(template_id)
    return FavoriteStatus(
        is_favorite=is_favorite,
        favorite_count=favorite_count,
    ).model_dump(by_alias=True)


# =============================================================================
# Collection Routes
# =============================================================================

@router.get("")
async def list_templates(
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    industry: str | None = None,
    tags: str | None = Query(None, description="Comma-separated; matches any"),
    search: str | None = None,
    sort_field: Literal[
        "createdAt", "updatedAt", "usageCount", "forkCount", "favoriteCount"
    ] = Query("createdAt", alias="sortField"),
    sort_direction: Literal["asc", "desc"] = Query("desc", alias="sortDirection"),
    lifecycle: TemplateLifecycleManager = Depends(get_lifecycle),
    settings: Settings = Depends(get_settings),
):
    """List published public templates."""
    filters = TemplateFilters(
        page=page,
        limit=limit or settings.list_default_limit,
        industry=industry,
        tags=[t.strip() for t in tags.split(",") if t.strip()] if tags else [],
        search=search,
        sort_field=sort_field,
        sort_direction=sort_direction,
    )
    with failure_scope("INTERNAL_ERROR", "Failed to fetch templates"):
        result = await lifecycle.list_templates(filters)

    return success(
        templates_data(result.items),
        pagination={
            "page": result.page,
            "limit": result.limit,
            "total": result.total,
            "totalPages": result.total_pages,
        },
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_template(
    draft: TemplateDraft,
    principal: Principal = Depends(require_principal),
    lifecycle: TemplateLifecycleManager = Depends(get_lifecycle),
):
    """Create a new draft template."""
    with failure_scope("TEMPLATE_CREATE_FAILED", "Failed to create template"):
        template = await lifecycle.create(principal, draft)
    return success(template_data(template))


@router.get("/mine")
async def list_my_templates(
    principal: Principal = Depends(require_principal),
    lifecycle: TemplateLifecycleManager = Depends(get_lifecycle),
):
    """List the caller's templates, drafts included."""
    with failure_scope("INTERNAL_ERROR", "Failed to fetch templates"):
        templates = await lifecycle.list_owned(principal)
    return success(templates_data(templates))


# =============================================================================
# Template Routes
# =============================================================================

@router.get("/{template_id}")
async def get_template(
    template_id: str,
    request: Request,
    include_deleted: bool = Query(False, alias="includeDeleted"),
    principal: Principal | None = Depends(get_current_principal),
    lifecycle: TemplateLifecycleManager = Depends(get_lifecycle),
):
    """Get a template and record a view."""
    with failure_scope("INTERNAL_ERROR", "Failed to fetch template"):
        template = await lifecycle.view(
            template_id,
            principal,
            include_deleted=include_deleted,
            metadata=request_metadata(request),
        )
    return success(template_data(template))


@router.put("/{template_id}")
async def update_template(
    template_id: str,
    patch: TemplatePatch,
    principal: Principal = Depends(require_principal),
    lifecycle: TemplateLifecycleManager = Depends(get_lifecycle),
):
    """Partially update a template (owner only)."""
    with failure_scope("TEMPLATE_UPDATE_FAILED", "Failed to update template"):
        template = await lifecycle.update(principal, template_id, patch)
    return success(template_data(template))


@router.delete("/{template_id}")
async def delete_template(
    template_id: str,
    principal: Principal = Depends(require_principal),
    lifecycle: TemplateLifecycleManager = Depends(get_lifecycle),
):
    """Soft-delete a template (owner only)."""
    with failure_scope("TEMPLATE_DELETE_FAILED", "Failed to delete template"):
        await lifecycle.delete(principal, template_id)
    return success(message="Template deleted successfully")


@router.post("/{template_id}/publish")
async def publish_template(
    template_id: str,
    principal: Principal = Depends(require_principal),
    lifecycle: TemplateLifecycleManager = Depends(get_lifecycle),
):
    with failure_scope("TEMPLATE_PUBLISH_FAILED", "Failed to publish template"):
        template = await lifecycle.publish(principal, template_id)
    return success(template_data(template))


@router.post("/{template_id}/unpublish")
async def unpublish_template(
    template_id: str,
    principal: Principal = Depends(require_principal),
    lifecycle: TemplateLifecycleManager = Depends(get_lifecycle),
):
    with failure_scope("TEMPLATE_UNPUBLISH_FAILED", "Failed to unpublish template"):
        template = await lifecycle.unpublish(principal, template_id)
    return success(template_data(template))


@router.post("/{template_id}/clone", status_code=status.HTTP_201_CREATED)
async def clone_template(
    template_id: str,
    overrides: CloneOverrides | None = Body(None),
    principal: Principal | None = Depends(get_current_principal),
    lifecycle: TemplateLifecycleManager = Depends(get_lifecycle),
):
    """Clone a template into a private draft, applying optional overrides."""
    with failure_scope("CLONE_FAILED", "Failed to clone template"):
        template = await lifecycle.clone(principal, template_id, overrides)
    return success(template_data(template), message="Template cloned successfully")


@router.post("/{template_id}/fork", status_code=status.HTTP_201_CREATED)
async def fork_template(
    template_id: str,
    principal: Principal = Depends(require_principal),
    lifecycle: TemplateLifecycleManager = Depends(get_lifecycle),
):
    """Fork a template into an owned draft with recorded lineage."""
    with failure_scope("FORK_FAILED", "Failed to fork template"):
        template = await lifecycle.fork(principal, template_id)
    return success(template_data(template), message="Template forked successfully")


@router.get("/{template_id}/forks")
async def list_forks(
    template_id: str,
    ledger: RelationshipLedger = Depends(get_ledger),
):
    """Fork lineage records of a template, kept even after soft deletes."""
    with failure_scope("INTERNAL_ERROR", "Failed to fetch forks"):
        records = await ledger.list_forks(template_id)
    return success([fork_record_data(r) for r in records])


@router.get("/{template_id}/stats")
async def get_template_stats(
    template_id: str,
    principal: Principal | None = Depends(get_current_principal),
    lifecycle: TemplateLifecycleManager = Depends(get_lifecycle),
    ledger: RelationshipLedger = Depends(get_ledger),
    recorder: UsageRecorder = Depends(get_usage_recorder),
):
    """Counters and usage breakdown of a template."""
    with failure_scope("INTERNAL_ERROR", "Failed to fetch template stats"):
        template = await lifecycle.read(template_id, principal)
        events = await recorder.template_stats(template.id)
        data = {
            "usageCount": await ledger.usage_count(template.id),
            "forkCount": await ledger.fork_count(template.id),
            "favoriteCount": await ledger.favorite_count(template.id),
            "events": [UsageBreakdown(**e).model_dump(by_alias=True) for e in events],
        }
    return success(data)


# =============================================================================
# Favorites
# =============================================================================

@router.post("/{template_id}/favorite")
async def add_favorite(
    template_id: str,
    principal: Principal = Depends(require_principal),
    lifecycle: TemplateLifecycleManager = Depends(get_lifecycle),
    ledger: RelationshipLedger = Depends(get_ledger),
):
    """Add the template to the caller's favorites. Repeating is a no-op."""
    with failure_scope("FAVORITE_ADD_FAILED", "Failed to add to favorites"):
        await lifecycle.read(template_id, principal)
        await ledger.add_favorite(template_id, principal.id)
        data = await favorite_status(ledger, template_id, principal.id, is_favorite=True)
    return success(data)


@router.delete("/{template_id}/favorite")
async def remove_favorite(
    template_id: str,
    principal: Principal = Depends(require_principal),
    ledger: RelationshipLedger = Depends(get_ledger),
):
    """Remove the template from the caller's favorites. Missing favorites are fine."""
    with failure_scope("FAVORITE_REMOVE_FAILED", "Failed to remove from favorites"):
        await ledger.remove_favorite(template_id, principal.id)
        data = await favorite_status(ledger, template_id, principal.id, is_favorite=False)
    return success(data)


@router.get("/{template_id}/favorite")
async def check_favorite(
    template_id: str,
    principal: Principal = Depends(require_principal),
    ledger: RelationshipLedger = Depends(get_ledger),
):
    """Whether the caller has favorited the template, and its favorite count."""
    with failure_scope("FAVORITE_CHECK_FAILED", "Failed to check favorite status"):
        data = await favorite_status(ledger, template_id, principal.id)
    return success(data)
