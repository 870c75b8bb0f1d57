"""
Search Index and Search Query Facade

The search index is a collaborator behind the ``SearchIndex`` interface.
``SqlSearchIndex`` keeps a denormalized document per template in the same
database; the facade validates queries, delegates ranking to the index and
filters the results down to visible templates.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

from sqlalchemy import case, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.config import Settings, get_settings
from marketplace.database import utc_now
from marketplace.errors import InvalidQueryError
from marketplace.identity import Principal
from marketplace.models import SearchDocument, Template, TemplateStatus, TemplateTag, UsageAction
from marketplace.services.analytics import UsageRecorder
from marketplace.services.events import TemplateEvent, TemplateEventKind

logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 2


class SearchIndex(ABC):
    """Abstract base class for search index backends."""

    @abstractmethod
    async def index(self, template: Template) -> None:
        """Add or refresh the document for a template."""
        pass

    @abstractmethod
    async def remove(self, template_id: str) -> None:
        """Drop a template's document."""
        pass

    @abstractmethod
    async def query(self, text: str, limit: int) -> list[str]:
        """Return ids of matching searchable templates, best match first."""
        pass

    @abstractmethod
    async def popular_tags(self, limit: int) -> list[tuple[str, int]]:
        """Return (tag, count) pairs over searchable templates, most used first."""
        pass


def _unique_tags(tags: list[str] | None) -> list[str]:
    seen = []
    for tag in tags or []:
        tag = str(tag).strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


class SqlSearchIndex(SearchIndex):
    """Substring search over a document table, with a tag table for aggregation."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def index(self, template: Template) -> None:
        tags = _unique_tags(template.tags)
        searchable = (
            template.is_published
            and template.is_public
            and not template.is_deleted
        )
        body = " ".join(
            part for part in (
                template.title,
                template.description,
                template.use_case,
                template.industry,
                " ".join(tags),
            )
            if part
        ).lower()

        async with self.session_factory() as session:
            await session.merge(SearchDocument(
                template_id=template.id,
                title=template.title,
                tags=tags,
                body=body,
                searchable=searchable,
                indexed_at=utc_now(),
            ))
            await session.execute(
                delete(TemplateTag).where(TemplateTag.template_id == template.id)
            )
            if searchable:
                session.add_all(TemplateTag(template_id=template.id, tag=tag) for tag in tags)
            await session.commit()

    async def remove(self, template_id: str) -> None:
        async with self.session_factory() as session:
            await session.execute(
                delete(TemplateTag).where(TemplateTag.template_id == template_id)
            )
            await session.execute(
                delete(SearchDocument).where(SearchDocument.template_id == template_id)
            )
            await session.commit()

    async def query(self, text: str, limit: int) -> list[str]:
        stmt = select(SearchDocument.template_id).where(SearchDocument.searchable.is_(True))
        for term in text.lower().split():
            stmt = stmt.where(SearchDocument.body.contains(term, autoescape=True))

        title_hit = case(
            (SearchDocument.title.icontains(text, autoescape=True), 1),
            else_=0,
        )
        stmt = stmt.order_by(title_hit.desc(), SearchDocument.indexed_at.desc()).limit(limit)

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def popular_tags(self, limit: int) -> list[tuple[str, int]]:
        count = func.count().label("count")
        async with self.session_factory() as session:
            result = await session.execute(
                select(TemplateTag.tag, count)
                .group_by(TemplateTag.tag)
                .order_by(count.desc(), TemplateTag.tag)
                .limit(limit)
            )
            return [(row.tag, row.count) for row in result]


class SearchIndexer:
    """Channel subscriber that keeps the search index in step with templates."""

    def __init__(self, index: SearchIndex):
        self.index = index

    async def __call__(self, event: TemplateEvent) -> None:
        if event.kind == TemplateEventKind.DELETED:
            await self.index.remove(event.template.id)
        else:
            await self.index.index(event.template)


class SearchQueryFacade:
    """Validates search input, forwards it to the index and logs analytics."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        index: SearchIndex,
        recorder: UsageRecorder,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.index = index
        self.recorder = recorder

    def bound_limit(self, limit: int | None) -> int:
        if limit is None:
            limit = self.settings.search_default_limit
        return max(1, min(limit, self.settings.search_max_limit))

    async def search(
        self,
        query: str | None,
        limit: int | None = None,
        principal: Principal | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> list[Template]:
        """
        Full-text search over published templates.

        Args:
            query: Raw query text; must be at least 2 characters once trimmed
            limit: Requested result count, clamped to the configured maximum
            principal: Caller, if identified; only identified searches are logged
            metadata: Extra analytics fields (e.g. user agent)

        Raises:
            InvalidQueryError: If the trimmed query is too short
        """
        text = (query or "").strip()
        if len(text) < MIN_QUERY_LENGTH:
            raise InvalidQueryError(
                f"Search query must be at least {MIN_QUERY_LENGTH} characters long"
            )

        ids = await self.index.query(text, self.bound_limit(limit))
        templates = await self._load_visible(ids)

        if principal is not None:
            await self.recorder.record(
                None,
                principal.id,
                UsageAction.SEARCH,
                {"query": text, "resultsCount": len(templates), **(metadata or {})},
            )
        return templates

    async def popular_tags(self, limit: int | None = None) -> list[tuple[str, int]]:
        if limit is None:
            limit = self.settings.popular_tags_limit
        return await self.index.popular_tags(max(1, limit))

    async def _load_visible(self, ids: list[str]) -> list[Template]:
        if not ids:
            return []
        async with self.session_factory() as session:
            result = await session.execute(
                select(Template).where(
                    Template.id.in_(ids),
                    Template.status == TemplateStatus.PUBLISHED.value,
                    Template.is_public.is_(True),
                    Template.deleted_at.is_(None),
                )
            )
            by_id = {t.id: t for t in result.scalars().all()}
        # Keep the index's ranking order
        return [by_id[template_id] for template_id in ids if template_id in by_id]
