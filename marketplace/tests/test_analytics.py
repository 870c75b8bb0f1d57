"""
Tests for the Usage Analytics Recorder
"""

from sqlalchemy.exc import OperationalError

from marketplace.models import UsageAction
from marketplace.schemas import TemplatePatch
from marketplace.services import TemplateLifecycleManager, UsageRecorder


def broken_session_factory():
    raise OperationalError("INSERT INTO template_usage", {}, Exception("disk I/O error"))


class TestUsageRecorder:
    """Tests for recording usage events."""

    async def test_record_event(self, recorder, usage_events):
        """Test an event is stored with actor, action and metadata."""
        stored = await recorder.record(
            "template-1", "user-bob", UsageAction.VIEW, {"userAgent": "pytest"}
        )

        assert stored is True
        events = await usage_events()
        assert len(events) == 1
        assert events[0].template_id == "template-1"
        assert events[0].user_id == "user-bob"
        assert events[0].action == "view"
        assert events[0].details == {"userAgent": "pytest"}

    async def test_record_without_subject(self, recorder, usage_events):
        """Test events with no template, such as searches, are stored."""
        assert await recorder.record(None, "user-bob", UsageAction.SEARCH, {"query": "ab"})

        events = await usage_events("search")
        assert events[0].template_id is None

    async def test_record_failure_is_swallowed(self):
        """Test a storage failure returns False instead of raising."""
        recorder = UsageRecorder(broken_session_factory)

        assert await recorder.record("template-1", "user-bob", UsageAction.VIEW) is False

    async def test_template_stats(self, recorder):
        """Test events are counted per action and day."""
        for action in (UsageAction.VIEW, UsageAction.VIEW, UsageAction.CLONE):
            await recorder.record("template-1", "user-bob", action)
        await recorder.record("template-2", "user-bob", UsageAction.VIEW)

        stats = await recorder.template_stats("template-1")

        counts = {s["action"]: s["count"] for s in stats}
        assert counts == {"clone": 1, "view": 2}
        assert all(s["date"] for s in stats)


class TestAnalyticsIsolation:
    """Tests that analytics failures never fail the primary operation."""

    async def test_update_survives_recorder_failure(
        self, make_template, session_factory, ledger, channel, settings, alice
    ):
        """Test an update commits even when its usage event cannot be stored."""
        template = await make_template()
        manager = TemplateLifecycleManager(
            session_factory,
            ledger,
            UsageRecorder(broken_session_factory),
            channel,
            settings,
        )

        updated = await manager.update(alice, template.id, TemplatePatch(description="Changed"))

        assert updated.version == 2
        reread = await manager.read(template.id, alice)
        assert reread.description == "Changed"

    async def test_view_survives_recorder_failure(
        self, make_template, session_factory, ledger, channel, settings, bob
    ):
        """Test a read still returns the template when the view cannot be recorded."""
        template = await make_template()
        manager = TemplateLifecycleManager(
            session_factory,
            ledger,
            UsageRecorder(broken_session_factory),
            channel,
            settings,
        )

        viewed = await manager.view(template.id, bob)

        assert viewed.id == template.id
