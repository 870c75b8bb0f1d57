"""
Usage Event Model
"""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import String, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.database import Base, utc_now


class UsageAction(str, Enum):
    """Kinds of recorded template usage."""
    VIEW = "view"
    SEARCH = "search"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    CLONE = "clone"
    FORK = "fork"
    PUBLISH = "publish"
    UNPUBLISH = "unpublish"


class UsageEvent(Base):
    """Immutable analytics fact for a template action."""

    __tablename__ = "template_usage"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    # Null for pure search events
    template_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    # Null for anonymous callers
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Action info
    action: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    details: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    # Timestamp
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    def __repr__(self) -> str:
        return f"<UsageEvent(action={self.action}, template={self.template_id})>"
