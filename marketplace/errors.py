"""
Error Taxonomy
Typed errors surfaced by the services and rendered by the API boundary.
"""

import logging
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class MarketplaceError(Exception):
    """Base class for errors with a stable machine-readable code."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: Any = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        error = {"code": self.code, "message": self.message}
        if self.details is not None:
            error["details"] = self.details
        return error


class UnauthorizedError(MarketplaceError):
    """No principal where one is required."""
    code = "UNAUTHORIZED"
    status_code = 401

    def __init__(self, message: str = "Authentication required", **kwargs):
        super().__init__(message, **kwargs)


class ForbiddenError(MarketplaceError):
    """Principal present but not the owner."""
    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(MarketplaceError):
    code = "NOT_FOUND"
    status_code = 404


class TemplateNotFoundError(NotFoundError):
    """Template missing, soft-deleted, or not visible to the caller."""
    code = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_id: str, **kwargs):
        super().__init__("Template not found", **kwargs)
        self.template_id = template_id


class ValidationError(MarketplaceError):
    """Malformed input."""
    code = "VALIDATION_ERROR"
    status_code = 400


class InvalidQueryError(ValidationError):
    code = "INVALID_QUERY"


class InvalidActionError(ValidationError):
    code = "INVALID_ACTION"


class InvalidTransitionError(MarketplaceError):
    """Status change not allowed from the template's current state."""
    code = "INVALID_STATE_TRANSITION"
    status_code = 409


class ConflictOrTransientError(MarketplaceError):
    """Storage failure that persisted through the ledger's retries."""
    code = "CONFLICT_OR_TRANSIENT"
    status_code = 503


class InternalError(MarketplaceError):
    code = "INTERNAL_ERROR"
    status_code = 500


class OperationFailedError(InternalError):
    """A boundary operation failed for a non-client reason (``*_FAILED``)."""


@contextmanager
def failure_scope(code: str, message: str) -> Iterator[None]:
    """
    Map failures inside a boundary operation to that operation's error code.

    Client errors (4xx) pass through unchanged. Ledger conflicts, storage
    errors and anything unexpected become an ``OperationFailedError`` with
    ``code``.

    Usage:
        with failure_scope("FORK_FAILED", "Failed to fork template"):
            template = await lifecycle.fork(principal, template_id)
    """
    try:
        yield
    except OperationFailedError:
        raise
    except MarketplaceError as e:
        if e.status_code < 500:
            raise
        logger.error(f"{message}: {e.message}")
        raise OperationFailedError(message, code=code, details=e.message) from e
    except SQLAlchemyError as e:
        logger.exception(f"{message}: storage error")
        raise OperationFailedError(message, code=code, details=str(e)) from e
    except Exception as e:
        logger.exception(f"{message}: unexpected error")
        raise OperationFailedError(message, code=code, details=str(e)) from e
