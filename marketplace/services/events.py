"""
Template Event Channel
Request-scoped publish/subscribe for template change notifications.

A channel lives for one request. Subscribers are registered through
``subscription()``, which always deregisters them when the block exits, so
no listener outlives the scope that registered it.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Iterator

from marketplace.models import Template

logger = logging.getLogger(__name__)


class TemplateEventKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    PUBLISHED = "published"
    UNPUBLISHED = "unpublished"
    DELETED = "deleted"


@dataclass(frozen=True)
class TemplateEvent:
    kind: TemplateEventKind
    template: Template


TemplateListener = Callable[[TemplateEvent], Awaitable[None]]


class TemplateEventChannel:
    """Delivers template events to the listeners subscribed to it."""

    def __init__(self):
        self._listeners: list[TemplateListener] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)

    @contextmanager
    def subscription(self, listener: TemplateListener) -> Iterator[TemplateListener]:
        """Register ``listener`` for the duration of the ``with`` block."""
        self._listeners.append(listener)
        try:
            yield listener
        finally:
            self._listeners.remove(listener)

    async def publish(self, event: TemplateEvent) -> None:
        """Deliver an event. A failing listener does not affect the others."""
        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception as e:
                logger.warning(
                    f"Listener {getattr(listener, '__qualname__', listener)} failed on "
                    f"{event.kind.value} event for template {event.template.id}: {e}"
                )
