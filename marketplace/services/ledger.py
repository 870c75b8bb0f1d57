"""
Relationship Ledger
===================

Owns fork lineage and favorite membership records, and is the only writer
of the fork, favorite and usage counters on templates.

Retry Logic:
- Counter changes are single ``UPDATE ... SET col = col + 1`` statements,
  never read-modify-write, so concurrent callers cannot lose increments
- Each attempt runs in a fresh session; OperationalError (lock contention,
  dropped connections) is retried with exponential backoff
- After the last attempt the failure surfaces as ConflictOrTransientError
"""

import asyncio
import logging
import uuid
from typing import Awaitable, Callable, TypeVar

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.config import Settings, get_settings
from marketplace.database import utc_now
from marketplace.errors import ConflictOrTransientError, TemplateNotFoundError
from marketplace.models import Favorite, ForkCounterReceipt, ForkRecord, Template

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    label: str,
    max_attempts: int,
    delay_ms: int,
) -> T:
    """
    Run an async storage operation, retrying transient failures.

    Args:
        operation: Zero-argument coroutine function; each call must open its
            own session so a failed attempt leaves nothing behind
        label: Description used in log messages
        max_attempts: Total number of attempts
        delay_ms: Delay before the first retry, doubled on each retry

    Raises:
        ConflictOrTransientError: If every attempt failed
    """
    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except OperationalError as e:
            if attempt >= max_attempts:
                logger.error(f"{label} failed after {max_attempts} attempts: {e}")
                raise ConflictOrTransientError(
                    f"{label} failed after {max_attempts} attempts",
                    details=str(e),
                ) from e
            logger.warning(
                f"{label} failed (attempt {attempt}/{max_attempts}), "
                f"retrying in {delay_ms}ms: {e}"
            )
            await asyncio.sleep(delay_ms / 1000)
            delay_ms *= 2
    raise ConflictOrTransientError(f"{label} was not attempted")


def _increment(column, template_id: str, amount: int = 1):
    stmt = (
        update(Template)
        .where(Template.id == template_id)
        .values({column: column + amount})
        .execution_options(synchronize_session=False)
    )
    if amount < 0:
        # Counters never go below zero
        stmt = stmt.where(column >= -amount)
    return stmt


class RelationshipLedger:
    """Fork and favorite records plus the counters derived from them.

    Usage:
        ledger = RelationshipLedger(async_session_factory)
        await ledger.add_favorite(template_id, user_id)
        count = await ledger.favorite_count(template_id)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        self.session_factory = session_factory
        self.max_attempts = settings.ledger_max_attempts
        self.retry_delay_ms = settings.ledger_retry_delay_ms

    async def _retry(self, label: str, operation: Callable[[], Awaitable[T]]) -> T:
        return await run_with_retry(
            operation,
            label=label,
            max_attempts=self.max_attempts,
            delay_ms=self.retry_delay_ms,
        )

    # ========================================================================
    # Favorites
    # ========================================================================

    async def add_favorite(self, template_id: str, user_id: str) -> bool:
        """Add a favorite. Returns False if the pair already existed.

        Raises:
            TemplateNotFoundError: If the template is missing or deleted
        """

        async def attempt() -> bool:
            async with self.session_factory() as session:
                session.add(Favorite(
                    template_id=template_id,
                    user_id=user_id,
                    created_at=utc_now(),
                ))
                try:
                    await session.flush()
                except IntegrityError:
                    await session.rollback()
                    return False
                result = await session.execute(
                    _increment(Template.favorite_count, template_id)
                    .where(Template.deleted_at.is_(None))
                )
                if result.rowcount == 0:
                    await session.rollback()
                    raise TemplateNotFoundError(template_id)
                await session.commit()
                return True

        added = await self._retry(f"Add favorite {template_id}/{user_id}", attempt)
        if added:
            logger.info(f"User {user_id} favorited template {template_id}")
        return added

    async def remove_favorite(self, template_id: str, user_id: str) -> bool:
        """Remove a favorite. Returns False if there was nothing to remove."""

        async def attempt() -> bool:
            async with self.session_factory() as session:
                result = await session.execute(
                    delete(Favorite)
                    .where(Favorite.template_id == template_id, Favorite.user_id == user_id)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    return False
                await session.execute(_increment(Template.favorite_count, template_id, -1))
                await session.commit()
                return True

        removed = await self._retry(f"Remove favorite {template_id}/{user_id}", attempt)
        if removed:
            logger.info(f"User {user_id} unfavorited template {template_id}")
        return removed

    async def is_favorite(self, template_id: str, user_id: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Favorite.user_id).where(
                    Favorite.template_id == template_id,
                    Favorite.user_id == user_id,
                )
            )
            return result.first() is not None

    async def favorite_templates(self, user_id: str) -> list[Template]:
        """Non-deleted templates the user has favorited, most recent first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Template)
                .join(Favorite, Favorite.template_id == Template.id)
                .where(
                    Favorite.user_id == user_id,
                    Template.deleted_at.is_(None),
                    or_(Template.is_public.is_(True), Template.owner_id == user_id),
                )
                .order_by(Favorite.created_at.desc())
            )
            return list(result.scalars().all())

    # ========================================================================
    # Counters
    # ========================================================================

    async def _read_counter(self, column, template_id: str) -> int:
        async with self.session_factory() as session:
            result = await session.execute(select(column).where(Template.id == template_id))
            return result.scalar_one_or_none() or 0

    async def favorite_count(self, template_id: str) -> int:
        return await self._read_counter(Template.favorite_count, template_id)

    async def fork_count(self, template_id: str) -> int:
        return await self._read_counter(Template.fork_count, template_id)

    async def usage_count(self, template_id: str) -> int:
        return await self._read_counter(Template.usage_count, template_id)

    async def increment_usage(self, template_id: str) -> None:
        """Count one use of a template as the base of a clone or fork."""

        async def attempt() -> None:
            async with self.session_factory() as session:
                await session.execute(_increment(Template.usage_count, template_id))
                await session.commit()

        await self._retry(f"Increment usage of {template_id}", attempt)

    # ========================================================================
    # Fork Lineage
    # ========================================================================

    def stage_fork(
        self,
        session: AsyncSession,
        origin_id: str,
        forked_id: str,
        user_id: str,
    ) -> ForkRecord:
        """Add a fork record to a caller-owned transaction.

        The fork count is not touched; call ``apply_fork_count`` once the
        caller has committed.
        """
        record = ForkRecord(
            id=str(uuid.uuid4()),
            origin_template_id=origin_id,
            forked_template_id=forked_id,
            user_id=user_id,
            created_at=utc_now(),
        )
        session.add(record)
        return record

    async def apply_fork_count(self, record: ForkRecord) -> bool:
        """
        Increment the origin's fork count for a committed fork record.

        The receipt row and the increment commit together, so repeating the
        call for the same record is a no-op.

        Returns:
            True if the increment was applied by this call
        """
        fork_id = record.id
        origin_id = record.origin_template_id

        async def attempt() -> bool:
            async with self.session_factory() as session:
                session.add(ForkCounterReceipt(fork_id=fork_id, applied_at=utc_now()))
                try:
                    await session.flush()
                except IntegrityError:
                    await session.rollback()
                    return False
                await session.execute(_increment(Template.fork_count, origin_id))
                await session.commit()
                return True

        return await self._retry(f"Apply fork count for {fork_id}", attempt)

    async def record_fork(self, origin_id: str, forked_id: str, user_id: str) -> ForkRecord:
        """Insert a fork record and increment the origin's fork count."""

        async def attempt() -> ForkRecord:
            async with self.session_factory() as session:
                record = self.stage_fork(session, origin_id, forked_id, user_id)
                await session.commit()
                return record

        record = await self._retry(f"Record fork of {origin_id}", attempt)
        await self.apply_fork_count(record)
        logger.info(f"Recorded fork {record.id}: {origin_id} -> {forked_id}")
        return record

    async def list_forks(self, template_id: str) -> list[ForkRecord]:
        """Fork records with this origin, oldest first, regardless of soft-delete."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(ForkRecord)
                .where(ForkRecord.origin_template_id == template_id)
                .order_by(ForkRecord.created_at)
            )
            return list(result.scalars().all())

    async def reconcile_fork_counts(self) -> int:
        """Apply the fork count of every fork record that has no receipt yet.

        Returns:
            Number of increments applied
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(ForkRecord)
                .outerjoin(ForkCounterReceipt, ForkCounterReceipt.fork_id == ForkRecord.id)
                .where(ForkCounterReceipt.fork_id.is_(None))
                .order_by(ForkRecord.created_at)
            )
            pending = list(result.scalars().all())

        applied = 0
        for record in pending:
            if await self.apply_fork_count(record):
                applied += 1
        if applied:
            logger.info(f"Reconciled {applied} pending fork count increments")
        return applied
