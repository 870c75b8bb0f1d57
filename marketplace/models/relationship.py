"""
Relationship Models - Fork lineage and favorite membership
"""

import uuid
from datetime import datetime

from sqlalchemy import String, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.database import Base, utc_now


class ForkRecord(Base):
    """Append-only lineage edge from an origin template to its fork."""

    __tablename__ = "template_forks"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    origin_template_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("templates.id"),
        nullable=False,
        index=True,
    )
    forked_template_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("templates.id"),
        nullable=False,
        unique=True,
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    def __repr__(self) -> str:
        return f"<ForkRecord(origin={self.origin_template_id}, fork={self.forked_template_id})>"


class ForkCounterReceipt(Base):
    """Marks a fork record whose fork_count increment has been applied."""

    __tablename__ = "fork_counter_receipts"

    fork_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("template_forks.id"),
        primary_key=True,
    )
    applied_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)


class Favorite(Base):
    """A user's membership in a template's favorite set."""

    __tablename__ = "user_favorites"

    template_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("templates.id"),
        primary_key=True,
    )
    user_id: Mapped[str] = mapped_column(String(255), primary_key=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    def __repr__(self) -> str:
        return f"<Favorite(template={self.template_id}, user={self.user_id})>"
