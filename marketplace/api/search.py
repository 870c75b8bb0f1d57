"""
Search API - Full-text template search and tag aggregation
"""

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from marketplace.api.deps import get_search_facade
from marketplace.api.responses import success, templates_data
from marketplace.errors import InvalidActionError, failure_scope
from marketplace.identity import Principal, get_current_principal
from marketplace.schemas import TagCount
from marketplace.services import SearchQueryFacade

router = APIRouter()


class SearchActionRequest(BaseModel):
    """POST /search body."""
    action: str
    limit: int | None = None


@router.get("")
async def search_templates(
    request: Request,
    q: str | None = None,
    limit: int | None = Query(None),
    principal: Principal | None = Depends(get_current_principal),
    facade: SearchQueryFacade = Depends(get_search_facade),
):
    """Search published templates. Queries shorter than 2 characters are rejected."""
    with failure_scope("SEARCH_FAILED", "Search request failed"):
        templates = await facade.search(
            q,
            limit,
            principal=principal,
            metadata={"userAgent": request.headers.get("user-agent")},
        )

    query = (q or "").strip()
    return success(
        templates_data(templates),
        metadata={"query": query, "resultsCount": len(templates)},
    )


@router.post("")
async def search_action(
    body: SearchActionRequest,
    facade: SearchQueryFacade = Depends(get_search_facade),
):
    """Search-side actions. Supports ``popular-tags``."""
    with failure_scope("SEARCH_FAILED", "Search request failed"):
        if body.action != "popular-tags":
            raise InvalidActionError("Invalid action specified", details={"action": body.action})
        tags = await facade.popular_tags(body.limit)
    return success([TagCount(tag=tag, count=count).model_dump() for tag, count in tags])
