"""
Identity Provider Abstraction
Resolves the authenticated principal for a request.

The hosted identity provider sits in front of this service; the default
provider trusts the principal headers that its proxy injects.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import lru_cache

from fastapi import Depends, Request

from marketplace.config import Settings, get_settings
from marketplace.errors import UnauthorizedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """An authenticated user."""
    id: str
    email: str | None = None
    name: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.email or self.id


class IdentityProvider(ABC):
    """Abstract base class for identity providers."""

    @abstractmethod
    async def current_user(self, request: Request) -> Principal | None:
        """Return the request's principal, or None when anonymous."""
        pass


class HeaderIdentityProvider(IdentityProvider):
    """Reads the principal from headers set by the upstream auth proxy."""

    def __init__(self, settings: Settings):
        self.user_header = settings.identity_user_header
        self.email_header = settings.identity_email_header
        self.name_header = settings.identity_name_header

    async def current_user(self, request: Request) -> Principal | None:
        user_id = (request.headers.get(self.user_header) or "").strip()
        if not user_id:
            return None
        return Principal(
            id=user_id,
            email=request.headers.get(self.email_header) or None,
            name=request.headers.get(self.name_header) or None,
        )


class DevIdentityProvider(HeaderIdentityProvider):
    """Header provider that falls back to a fixed principal in development."""

    def __init__(self, settings: Settings):
        super().__init__(settings)
        self.fallback = Principal(
            id=settings.dev_user_id,
            email=settings.dev_user_email,
            name=settings.dev_user_name,
        )

    async def current_user(self, request: Request) -> Principal | None:
        principal = await super().current_user(request)
        return principal or self.fallback


@lru_cache
def get_identity_provider() -> IdentityProvider:
    """Get the configured identity provider."""
    settings = get_settings()
    if settings.dev_auto_login and settings.app_env == "development":
        logger.warning(f"Dev auto-login enabled, anonymous requests act as {settings.dev_user_id}")
        return DevIdentityProvider(settings)
    return HeaderIdentityProvider(settings)


async def get_current_principal(
    request: Request,
    provider: IdentityProvider = Depends(get_identity_provider),
) -> Principal | None:
    """Dependency resolving the optional principal."""
    return await provider.current_user(request)


async def require_principal(
    principal: Principal | None = Depends(get_current_principal),
) -> Principal:
    """Dependency for routes that require authentication."""
    if principal is None:
        raise UnauthorizedError()
    return principal
