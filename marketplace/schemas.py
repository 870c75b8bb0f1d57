"""
Request/Response Schemas
Pydantic models shared by the services and the API routers.
"""

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts snake_case or camelCase input, emits camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# =============================================================================
# Template Content
# =============================================================================

class TemplateDraft(CamelModel):
    """Content for a new template. Title and configuration are required."""
    title: str | None = None
    description: str | None = None
    industry: str | None = None
    use_case: str | None = None
    tags: list[str] = Field(default_factory=list)
    license: str = "MIT"
    is_public: bool = False
    configuration: dict[str, Any] | None = None


class TemplatePatch(CamelModel):
    """
    Partial update. Only fields present in the request are applied.

    Identity, ownership, lineage, counters, status, version and timestamps
    are not fields of this model, so attempts to set them are dropped on
    parsing. Status changes go through publish and unpublish.
    """
    title: str | None = None
    description: str | None = None
    industry: str | None = None
    use_case: str | None = None
    tags: list[str] | None = None
    license: str | None = None
    is_public: bool | None = None
    configuration: dict[str, Any] | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class CloneOverrides(CamelModel):
    """Content fields that replace the origin's values in a clone."""
    title: str | None = None
    description: str | None = None
    industry: str | None = None
    use_case: str | None = None
    tags: list[str] | None = None
    license: str | None = None
    configuration: dict[str, Any] | None = None

    def changes(self) -> dict[str, Any]:
        return {
            key: value
            for key, value in self.model_dump(exclude_unset=True).items()
            if value is not None
        }


class TemplateFilters(CamelModel):
    """Listing filters, sort and pagination."""
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1)
    industry: str | None = None
    tags: list[str] = Field(default_factory=list)
    search: str | None = None
    sort_field: Literal[
        "createdAt", "updatedAt", "usageCount", "forkCount", "favoriteCount"
    ] = "createdAt"
    sort_direction: Literal["asc", "desc"] = "desc"


# =============================================================================
# Responses
# =============================================================================

def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps read back from the database."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TemplateResponse(CamelModel):
    """Template as returned by the API."""
    id: str
    owner_id: str
    author: str | None
    title: str
    description: str | None
    industry: str | None
    use_case: str | None
    tags: list[str]
    license: str
    status: str
    is_public: bool
    version: int
    fork_count: int
    favorite_count: int
    usage_count: int
    parent_template_id: str | None
    is_forked: bool
    configuration: dict[str, Any]
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("created_at", "updated_at", "deleted_at")
    @classmethod
    def utc_timestamps(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)


class ForkRecordResponse(CamelModel):
    id: str
    origin_template_id: str
    forked_template_id: str
    user_id: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("created_at")
    @classmethod
    def utc_timestamps(cls, value: datetime) -> datetime:
        return as_utc(value)


class FavoriteStatus(CamelModel):
    is_favorite: bool
    favorite_count: int


class TagCount(CamelModel):
    tag: str
    count: int


class UsageBreakdown(CamelModel):
    action: str
    date: str
    count: int
