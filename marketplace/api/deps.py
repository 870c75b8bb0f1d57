"""
Service Dependencies
Per-request wiring of the engine's services for FastAPI routes.
"""

from typing import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.config import Settings, get_settings
from marketplace.database import get_session_factory
from marketplace.services import (
    RelationshipLedger,
    SearchIndex,
    SearchIndexer,
    SearchQueryFacade,
    SqlSearchIndex,
    TemplateEventChannel,
    TemplateLifecycleManager,
    UsageRecorder,
)


def get_usage_recorder(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> UsageRecorder:
    return UsageRecorder(session_factory)


def get_ledger(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> RelationshipLedger:
    return RelationshipLedger(session_factory, settings)


def get_search_index(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> SearchIndex:
    return SqlSearchIndex(session_factory)


async def get_event_channel(
    index: SearchIndex = Depends(get_search_index),
) -> AsyncGenerator[TemplateEventChannel, None]:
    """Request-scoped channel with the search indexer subscribed for its lifetime."""
    channel = TemplateEventChannel()
    with channel.subscription(SearchIndexer(index)):
        yield channel


def get_lifecycle(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ledger: RelationshipLedger = Depends(get_ledger),
    recorder: UsageRecorder = Depends(get_usage_recorder),
    channel: TemplateEventChannel = Depends(get_event_channel),
    settings: Settings = Depends(get_settings),
) -> TemplateLifecycleManager:
    return TemplateLifecycleManager(session_factory, ledger, recorder, channel, settings)


def get_search_facade(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    index: SearchIndex = Depends(get_search_index),
    recorder: UsageRecorder = Depends(get_usage_recorder),
    settings: Settings = Depends(get_settings),
) -> SearchQueryFacade:
    return SearchQueryFacade(session_factory, index, recorder, settings)
