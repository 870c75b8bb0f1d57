"""
Search Index Models - Denormalized documents and tag rows
"""

from datetime import datetime

from sqlalchemy import String, DateTime, JSON, Boolean, Text
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.database import Base, utc_now


class SearchDocument(Base):
    """Searchable projection of a template."""

    __tablename__ = "search_documents"

    template_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # Lower-cased title, description, use case, industry and tags
    body: Mapped[str] = mapped_column(Text, nullable=False)

    # Published, public and not deleted
    searchable: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    indexed_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)


class TemplateTag(Base):
    """One tag of a searchable template, used for tag aggregation."""

    __tablename__ = "template_tags"

    template_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tag: Mapped[str] = mapped_column(String(100), primary_key=True, index=True)
