"""
Tests for the Template Event Channel
"""

import pytest

from marketplace.models import Template
from marketplace.services import TemplateEvent, TemplateEventChannel, TemplateEventKind


@pytest.fixture
def event() -> TemplateEvent:
    return TemplateEvent(kind=TemplateEventKind.UPDATED, template=Template(id="template-1"))


class TestTemplateEventChannel:
    """Tests for subscription scoping and delivery."""

    async def test_delivers_to_subscribers(self, event):
        """Test every subscriber receives a published event."""
        channel = TemplateEventChannel()
        received = []

        async def first(e):
            received.append(("first", e.template.id))

        async def second(e):
            received.append(("second", e.template.id))

        with channel.subscription(first), channel.subscription(second):
            await channel.publish(event)

        assert received == [("first", "template-1"), ("second", "template-1")]

    async def test_subscription_released(self, event):
        """Test a listener stops receiving events once its scope exits."""
        channel = TemplateEventChannel()
        received = []

        async def listener(e):
            received.append(e)

        with channel.subscription(listener):
            assert channel.subscriber_count == 1
        assert channel.subscriber_count == 0

        await channel.publish(event)
        assert received == []

    async def test_subscription_released_on_error(self):
        """Test a listener is released when its scope raises."""
        channel = TemplateEventChannel()

        async def listener(e):
            pass

        with pytest.raises(RuntimeError):
            with channel.subscription(listener):
                raise RuntimeError("request failed")

        assert channel.subscriber_count == 0

    async def test_failing_listener_isolated(self, event):
        """Test one failing listener does not stop delivery to the others."""
        channel = TemplateEventChannel()
        received = []

        async def broken(e):
            raise RuntimeError("index unavailable")

        async def healthy(e):
            received.append(e.kind)

        with channel.subscription(broken), channel.subscription(healthy):
            await channel.publish(event)

        assert received == [TemplateEventKind.UPDATED]
