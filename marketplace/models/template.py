"""
Template Model - Published and draft agent/prompt templates
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import String, DateTime, JSON, Boolean, Integer, Text, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, validates

from marketplace.database import Base


class TemplateStatus(str, Enum):
    """Template lifecycle states."""
    DRAFT = "draft"
    PUBLISHED = "published"


# Fields a clone or fork carries over from its origin
CONTENT_FIELDS = (
    "title",
    "description",
    "industry",
    "use_case",
    "tags",
    "license",
    "configuration",
)


class Template(Base):
    """A reusable agent configuration document."""

    __tablename__ = "templates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    author: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Template info
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    industry: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    use_case: Mapped[str | None] = mapped_column(String(200), nullable=True)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    license: Mapped[str] = mapped_column(String(50), default="MIT")

    # Opaque agent configuration, passed through verbatim
    configuration: Mapped[dict] = mapped_column(JSON, nullable=False)

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(20),
        default=TemplateStatus.DRAFT.value,
        index=True,
    )
    is_public: Mapped[bool] = mapped_column(Boolean, default=False)
    version: Mapped[int] = mapped_column(Integer, default=1)

    # Derived counters, written only by the relationship ledger
    fork_count: Mapped[int] = mapped_column(Integer, default=0)
    favorite_count: Mapped[int] = mapped_column(Integer, default=0)
    usage_count: Mapped[int] = mapped_column(Integer, default=0)

    # Lineage
    parent_template_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("templates.id"),
        nullable=True,
        index=True,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)

    def __repr__(self) -> str:
        return f"<Template(id={self.id}, title={self.title}, status={self.status})>"

    @validates("parent_template_id")
    def _validate_parent(self, key: str, value: str | None) -> str | None:
        current = self.__dict__.get(key)
        if current is not None and value != current:
            raise ValueError(f"parent_template_id of {self.id} is immutable")
        return value

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_published(self) -> bool:
        return self.status == TemplateStatus.PUBLISHED.value

    @property
    def is_forked(self) -> bool:
        return self.parent_template_id is not None

    def content(self) -> dict:
        """Copy of the user-editable content fields."""
        return {
            field: _copy_value(getattr(self, field))
            for field in CONTENT_FIELDS
        }


def _copy_value(value):
    if isinstance(value, dict):
        return {k: _copy_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_copy_value(v) for v in value]
    return value
