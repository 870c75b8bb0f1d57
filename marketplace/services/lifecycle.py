"""
Template Lifecycle Manager
==========================

Creates, reads, updates, soft-deletes, clones, forks and publishes
templates, and enforces ownership.

Ownership checks are read-then-decide. The final write of every mutation is
conditional on the template not being deleted, so a template deleted while
a request is in flight surfaces as TemplateNotFoundError rather than being
written to.
"""

import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Text, cast, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.config import Settings, get_settings
from marketplace.database import utc_now
from marketplace.errors import (
    ConflictOrTransientError,
    ForbiddenError,
    InvalidTransitionError,
    TemplateNotFoundError,
    UnauthorizedError,
    ValidationError,
)
from marketplace.identity import Principal
from marketplace.models import Template, TemplateStatus, UsageAction
from marketplace.models.template import CONTENT_FIELDS
from marketplace.schemas import CloneOverrides, TemplateDraft, TemplateFilters, TemplatePatch
from marketplace.services.analytics import UsageRecorder
from marketplace.services.events import TemplateEvent, TemplateEventChannel, TemplateEventKind
from marketplace.services.ledger import RelationshipLedger

logger = logging.getLogger(__name__)

# Columns that may not be cleared by an update
NON_NULLABLE_FIELDS = {"title", "configuration", "tags", "license", "is_public"}

SORT_COLUMNS = {
    "createdAt": Template.created_at,
    "updatedAt": Template.updated_at,
    "usageCount": Template.usage_count,
    "forkCount": Template.fork_count,
    "favoriteCount": Template.favorite_count,
}


@dataclass
class TemplatePage:
    items: list[Template]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit


def can_read(
    template: Template,
    principal: Principal | None,
    include_deleted: bool = False,
) -> bool:
    """Visibility rule for reads by id.

    Soft-deleted templates are visible only on the explicit audit path of an
    authenticated caller. Private templates are visible only to their owner.
    """
    if template.is_deleted and not (include_deleted and principal is not None):
        return False
    if not template.is_public:
        return principal is not None and principal.id == template.owner_id
    return True


class TemplateLifecycleManager:
    """State transitions and ownership enforcement for templates."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: RelationshipLedger,
        recorder: UsageRecorder,
        channel: TemplateEventChannel | None = None,
        settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.ledger = ledger
        self.recorder = recorder
        self.channel = channel or TemplateEventChannel()
        self.settings = settings or get_settings()

    # ========================================================================
    # Helpers
    # ========================================================================

    @staticmethod
    def _new_template(
        owner_id: str,
        author: str | None,
        content: dict[str, Any],
        parent_id: str | None = None,
        is_public: bool = False,
    ) -> Template:
        now = utc_now()
        return Template(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            author=author,
            **content,
            status=TemplateStatus.DRAFT.value,
            is_public=is_public,
            version=1,
            fork_count=0,
            favorite_count=0,
            usage_count=0,
            parent_template_id=parent_id,
            created_at=now,
            updated_at=now,
            deleted_at=None,
        )

    async def _load_readable(
        self,
        session: AsyncSession,
        template_id: str,
        principal: Principal | None,
        include_deleted: bool = False,
    ) -> Template:
        template = await session.get(Template, template_id)
        if template is None or not can_read(template, principal, include_deleted):
            raise TemplateNotFoundError(template_id)
        return template

    async def _load_owned(
        self,
        session: AsyncSession,
        template_id: str,
        principal: Principal | None,
        action: str,
    ) -> Template:
        if principal is None:
            raise UnauthorizedError()
        template = await session.get(Template, template_id)
        if template is None or template.is_deleted:
            raise TemplateNotFoundError(template_id)
        if template.owner_id != principal.id:
            raise ForbiddenError(f"You can only {action} your own templates")
        return template

    async def _write(self, session: AsyncSession, template: Template, **values: Any) -> None:
        """Conditional final write; a concurrent soft delete becomes NotFound."""
        result = await session.execute(
            update(Template)
            .where(Template.id == template.id, Template.deleted_at.is_(None))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise TemplateNotFoundError(template.id)
        await session.commit()
        await session.refresh(template)

    async def _notify(self, kind: TemplateEventKind, template: Template) -> None:
        await self.channel.publish(TemplateEvent(kind=kind, template=template))

    async def _count_usage(self, template_id: str) -> None:
        try:
            await self.ledger.increment_usage(template_id)
        except ConflictOrTransientError as e:
            logger.warning(f"Usage count of {template_id} not incremented: {e.message}")

    # ========================================================================
    # Create / Read
    # ========================================================================

    async def create(self, principal: Principal | None, draft: TemplateDraft) -> Template:
        """Create a draft template owned by the caller."""
        if principal is None:
            raise UnauthorizedError()

        missing = []
        if not (draft.title or "").strip():
            missing.append("title")
        if draft.configuration is None:
            missing.append("configuration")
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                details={"missing": missing},
            )

        content = draft.model_dump(include=set(CONTENT_FIELDS))
        content["title"] = draft.title.strip()
        template = self._new_template(
            principal.id,
            principal.display_name,
            content,
            is_public=draft.is_public,
        )

        async with self.session_factory() as session:
            session.add(template)
            await session.commit()

        logger.info(f"Created template {template.id} for {principal.id}")
        await self._notify(TemplateEventKind.CREATED, template)
        await self.recorder.record(template.id, principal.id, UsageAction.CREATE)
        return template

    async def read(
        self,
        template_id: str,
        principal: Principal | None = None,
        include_deleted: bool = False,
    ) -> Template:
        """
        Get a template by id.

        Args:
            template_id: Template to load
            principal: Caller, if authenticated
            include_deleted: Audit path; soft-deleted templates are returned
                only when this is set by an authenticated caller

        Raises:
            TemplateNotFoundError: If missing or not visible to the caller
        """
        async with self.session_factory() as session:
            return await self._load_readable(session, template_id, principal, include_deleted)

    async def view(
        self,
        template_id: str,
        principal: Principal | None = None,
        include_deleted: bool = False,
        metadata: dict[str, Any] | None = None,
    ) -> Template:
        """Read a template and record a view event."""
        template = await self.read(template_id, principal, include_deleted)
        await self.recorder.record(
            template.id,
            principal.id if principal else None,
            UsageAction.VIEW,
            metadata,
        )
        return template

    async def list_templates(self, filters: TemplateFilters) -> TemplatePage:
        """Published, public, non-deleted templates matching the filters."""
        limit = min(filters.limit, self.settings.list_max_limit)
        conditions = [
            Template.status == TemplateStatus.PUBLISHED.value,
            Template.is_public.is_(True),
            Template.deleted_at.is_(None),
        ]
        if filters.industry:
            conditions.append(Template.industry == filters.industry)
        if filters.tags:
            # Tags are stored as a JSON array; match any of the quoted values
            tags_text = cast(Template.tags, Text)
            conditions.append(or_(*(
                tags_text.contains(json.dumps(tag), autoescape=True)
                for tag in filters.tags
            )))
        if filters.search:
            conditions.append(or_(
                Template.title.icontains(filters.search, autoescape=True),
                Template.description.icontains(filters.search, autoescape=True),
            ))

        sort_column = SORT_COLUMNS[filters.sort_field]
        order = sort_column.asc() if filters.sort_direction == "asc" else sort_column.desc()

        async with self.session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(Template).where(*conditions)
            )
            result = await session.execute(
                select(Template)
                .where(*conditions)
                .order_by(order, Template.id)
                .offset((filters.page - 1) * limit)
                .limit(limit)
            )
            items = list(result.scalars().all())

        return TemplatePage(items=items, total=total or 0, page=filters.page, limit=limit)

    async def list_owned(self, principal: Principal | None) -> list[Template]:
        """The caller's non-deleted templates, newest first."""
        if principal is None:
            raise UnauthorizedError()
        async with self.session_factory() as session:
            result = await session.execute(
                select(Template)
                .where(Template.owner_id == principal.id, Template.deleted_at.is_(None))
                .order_by(Template.created_at.desc())
            )
            return list(result.scalars().all())

    # ========================================================================
    # Owner Mutations
    # ========================================================================

    async def update(
        self,
        principal: Principal | None,
        template_id: str,
        patch: TemplatePatch,
    ) -> Template:
        """
        Apply a partial update and bump the version by one.

        An empty patch leaves the template untouched.

        Raises:
            UnauthorizedError: No principal
            TemplateNotFoundError: Missing, deleted, or deleted mid-update
            ForbiddenError: Caller is not the owner
            ValidationError: A required field was cleared
        """
        changes = patch.changes()
        cleared = sorted(
            field for field, value in changes.items()
            if field in NON_NULLABLE_FIELDS and value is None
        )
        if "title" in changes and changes["title"] is not None:
            changes["title"] = changes["title"].strip()
            if not changes["title"]:
                cleared.append("title")
        if cleared:
            raise ValidationError(
                f"Fields cannot be cleared: {', '.join(cleared)}",
                details={"fields": cleared},
            )

        async with self.session_factory() as session:
            template = await self._load_owned(session, template_id, principal, "edit")
            if not changes:
                return template
            await self._write(
                session,
                template,
                **changes,
                version=Template.version + 1,
                updated_at=utc_now(),
            )

        logger.info(f"Updated template {template_id} to version {template.version}")
        await self._notify(TemplateEventKind.UPDATED, template)
        await self.recorder.record(
            template_id,
            principal.id,
            UsageAction.UPDATE,
            {"version": template.version, "fields": sorted(changes)},
        )
        return template

    async def delete(self, principal: Principal | None, template_id: str) -> None:
        """Soft-delete a template. Fork and favorite records are kept."""
        async with self.session_factory() as session:
            template = await self._load_owned(session, template_id, principal, "delete")
            await self._write(session, template, deleted_at=utc_now())

        logger.info(f"Soft-deleted template {template_id}")
        await self._notify(TemplateEventKind.DELETED, template)
        await self.recorder.record(template_id, principal.id, UsageAction.DELETE)

    async def publish(self, principal: Principal | None, template_id: str) -> Template:
        """draft -> published"""
        return await self._transition(
            principal,
            template_id,
            source=TemplateStatus.DRAFT,
            target=TemplateStatus.PUBLISHED,
        )

    async def unpublish(self, principal: Principal | None, template_id: str) -> Template:
        """published -> draft"""
        return await self._transition(
            principal,
            template_id,
            source=TemplateStatus.PUBLISHED,
            target=TemplateStatus.DRAFT,
        )

    async def _transition(
        self,
        principal: Principal | None,
        template_id: str,
        source: TemplateStatus,
        target: TemplateStatus,
    ) -> Template:
        publishing = target == TemplateStatus.PUBLISHED
        verb = "publish" if publishing else "unpublish"

        async with self.session_factory() as session:
            template = await self._load_owned(session, template_id, principal, verb)
            if template.status != source.value:
                raise InvalidTransitionError(
                    f"Cannot {verb} a template in {template.status} state"
                )
            result = await session.execute(
                update(Template)
                .where(
                    Template.id == template_id,
                    Template.deleted_at.is_(None),
                    Template.status == source.value,
                )
                .values(status=target.value, updated_at=utc_now())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                # Lost a race: deleted, or another transition got there first
                await session.refresh(template)
                if template.is_deleted:
                    raise TemplateNotFoundError(template_id)
                raise InvalidTransitionError(
                    f"Cannot {verb} a template in {template.status} state"
                )
            await session.commit()
            await session.refresh(template)

        logger.info(f"Template {template_id} is now {target.value}")
        await self._notify(
            TemplateEventKind.PUBLISHED if publishing else TemplateEventKind.UNPUBLISHED,
            template,
        )
        await self.recorder.record(
            template_id,
            principal.id,
            UsageAction.PUBLISH if publishing else UsageAction.UNPUBLISH,
        )
        return template

    # ========================================================================
    # Derivatives
    # ========================================================================

    async def clone(
        self,
        principal: Principal | None,
        template_id: str,
        overrides: CloneOverrides | None = None,
    ) -> Template:
        """
        Copy a readable template into a new private draft.

        Overrides replace the origin's content field by field. The origin's
        fork count is not touched; its usage count is.

        Anonymous callers are rejected unless anonymous clones are enabled,
        in which case the clone belongs to the configured anonymous owner.
        """
        if principal is not None:
            owner_id, author = principal.id, principal.display_name
        elif self.settings.allow_anonymous_clone:
            owner_id, author = self.settings.anonymous_owner_id, "Anonymous"
        else:
            raise UnauthorizedError()

        changes = (overrides or CloneOverrides()).changes()

        async with self.session_factory() as session:
            origin = await self._load_readable(session, template_id, principal)
            content = origin.content()
            content["title"] = f"{origin.title} (Copy)"
            content.update(changes)
            if not str(content["title"]).strip():
                raise ValidationError("Title cannot be blank", details={"fields": ["title"]})

            clone = self._new_template(owner_id, author, content, parent_id=origin.id)
            session.add(clone)
            await session.commit()

        logger.info(f"Cloned template {template_id} into {clone.id} for {owner_id}")
        await self._count_usage(template_id)
        await self._notify(TemplateEventKind.CREATED, clone)
        await self.recorder.record(
            template_id,
            principal.id if principal else None,
            UsageAction.CLONE,
            {"cloneId": clone.id},
        )
        return clone

    async def fork(self, principal: Principal | None, template_id: str) -> Template:
        """
        Create an owned derivative of a readable template and record the lineage.

        The derivative and its fork record commit together. The origin's fork
        count is applied afterwards by the ledger; if that keeps failing, the
        fork still succeeds and the increment waits for reconciliation.
        """
        if principal is None:
            raise UnauthorizedError()

        async with self.session_factory() as session:
            origin = await self._load_readable(session, template_id, principal)
            fork = self._new_template(
                principal.id,
                principal.display_name,
                origin.content(),
                parent_id=origin.id,
            )
            session.add(fork)
            await session.flush()
            record = self.ledger.stage_fork(session, origin.id, fork.id, principal.id)
            await session.commit()

        logger.info(f"Forked template {template_id} into {fork.id} for {principal.id}")
        try:
            await self.ledger.apply_fork_count(record)
        except ConflictOrTransientError as e:
            logger.warning(
                f"Fork count of {template_id} not yet applied for fork {record.id}, "
                f"left for reconciliation: {e.message}"
            )
        await self._count_usage(template_id)
        await self._notify(TemplateEventKind.CREATED, fork)
        await self.recorder.record(
            template_id,
            principal.id,
            UsageAction.FORK,
            {"forkId": fork.id, "forkRecordId": record.id},
        )
        return fork
