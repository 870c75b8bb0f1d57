"""
Pytest Configuration and Fixtures
"""

import pytest
from typing import AsyncGenerator

from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from marketplace.config import Settings, get_settings
from marketplace.database import Base, get_session_factory
from marketplace.identity import HeaderIdentityProvider, Principal, get_identity_provider
from marketplace.main import app
from marketplace.models import UsageEvent
from marketplace.schemas import TemplateDraft
from marketplace.services import (
    RelationshipLedger,
    SearchIndexer,
    SearchQueryFacade,
    SqlSearchIndex,
    TemplateEventChannel,
    TemplateLifecycleManager,
    UsageRecorder,
)


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        ledger_retry_delay_ms=1,
    )


@pytest.fixture
async def test_engine(settings):
    """Create a fresh test database per test."""
    engine = create_async_engine(settings.database_url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


# =============================================================================
# Services
# =============================================================================

@pytest.fixture
def recorder(session_factory) -> UsageRecorder:
    return UsageRecorder(session_factory)


@pytest.fixture
def ledger(session_factory, settings) -> RelationshipLedger:
    return RelationshipLedger(session_factory, settings)


@pytest.fixture
def search_index(session_factory) -> SqlSearchIndex:
    return SqlSearchIndex(session_factory)


@pytest.fixture
def channel(search_index):
    channel = TemplateEventChannel()
    with channel.subscription(SearchIndexer(search_index)):
        yield channel


@pytest.fixture
def lifecycle(session_factory, ledger, recorder, channel, settings) -> TemplateLifecycleManager:
    return TemplateLifecycleManager(session_factory, ledger, recorder, channel, settings)


@pytest.fixture
def search_facade(session_factory, search_index, recorder, settings) -> SearchQueryFacade:
    return SearchQueryFacade(session_factory, search_index, recorder, settings)


# =============================================================================
# Principals & Data
# =============================================================================

@pytest.fixture
def alice() -> Principal:
    return Principal(id="user-alice", email="alice@example.com", name="Alice")


@pytest.fixture
def bob() -> Principal:
    return Principal(id="user-bob", email="bob@example.com", name="Bob")


def _identity_headers(principal: Principal) -> dict[str, str]:
    return {
        "X-User-Id": principal.id,
        "X-User-Email": principal.email or "",
        "X-User-Name": principal.name or "",
    }


@pytest.fixture
def alice_headers(alice) -> dict[str, str]:
    return _identity_headers(alice)


@pytest.fixture
def bob_headers(bob) -> dict[str, str]:
    return _identity_headers(bob)


@pytest.fixture
def sample_template_data() -> dict:
    """Sample template creation data."""
    return {
        "title": "Short Drama Production Assistant",
        "description": "Script generation and scene planning for short-form video",
        "industry": "Media & Entertainment",
        "use_case": "Short Drama Production",
        "tags": ["video", "script", "automation"],
        "is_public": True,
        "configuration": {
            "promptConfig": {
                "systemPrompt": "You are an expert script writer.",
                "userPromptTemplate": "Create a short drama script for {genre}.",
                "parameters": [{"name": "genre", "type": "string", "required": True}],
            },
            "agentConfig": {"workflow": [{"id": "step1", "type": "prompt"}]},
        },
    }


@pytest.fixture
def make_template(lifecycle, alice, sample_template_data):
    """Factory creating (and by default publishing) a template."""

    async def _make(owner: Principal | None = None, publish: bool = True, **fields):
        owner = owner or alice
        draft = TemplateDraft(**{**sample_template_data, **fields})
        template = await lifecycle.create(owner, draft)
        if publish:
            template = await lifecycle.publish(owner, template.id)
        return template

    return _make


@pytest.fixture
def usage_events(session_factory):
    """Reader for recorded usage events, optionally of one action, oldest first."""

    async def _events(action: str | None = None) -> list[UsageEvent]:
        stmt = select(UsageEvent).order_by(UsageEvent.created_at)
        if action is not None:
            stmt = stmt.where(UsageEvent.action == action)
        async with session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    return _events


# =============================================================================
# API Client
# =============================================================================

@pytest.fixture
async def client(session_factory, settings) -> AsyncGenerator[AsyncClient, None]:
    """Async test client bound to the test database."""
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_identity_provider] = lambda: HeaderIdentityProvider(settings)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
