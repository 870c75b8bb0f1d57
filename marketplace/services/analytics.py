"""
Usage Analytics Recorder
Appends immutable usage events for template actions.
"""

import logging
import uuid
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.database import utc_now
from marketplace.models import UsageAction, UsageEvent

logger = logging.getLogger(__name__)


class UsageRecorder:
    """Writes usage events without ever failing the caller's operation."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def record(
        self,
        subject_id: str | None,
        actor_id: str | None,
        action: UsageAction,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """
        Append a usage event.

        Call only after the primary operation has committed. Errors are
        logged and swallowed.

        Returns:
            True if the event was stored
        """
        try:
            async with self.session_factory() as session:
                session.add(UsageEvent(
                    id=str(uuid.uuid4()),
                    template_id=subject_id,
                    user_id=actor_id,
                    action=UsageAction(action).value,
                    details=metadata or None,
                    created_at=utc_now(),
                ))
                await session.commit()
            return True
        except Exception as e:
            logger.warning(f"Failed to record {action} usage for template {subject_id}: {e}")
            return False

    async def template_stats(self, template_id: str) -> list[dict[str, Any]]:
        """Event counts for a template grouped by action and day, newest day first."""
        day = func.date(UsageEvent.created_at)
        async with self.session_factory() as session:
            result = await session.execute(
                select(UsageEvent.action, day.label("date"), func.count().label("count"))
                .where(UsageEvent.template_id == template_id)
                .group_by(UsageEvent.action, day)
                .order_by(day.desc(), UsageEvent.action)
            )
            return [
                {"action": row.action, "date": str(row.date), "count": row.count}
                for row in result
            ]
