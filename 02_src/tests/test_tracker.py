"""Tests for Tracker."""

import sqlite3
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from messenger.models import AuditEvent
from messenger.tracker import Tracker


class TestTrackerTrack:
    """Tests for Tracker.track() method."""

    async def test_track_creates_event(self, tracker, storage):
        """Test that track() creates a TraceEvent."""
        await tracker.track(
            event_type="message_created",
            actor="alice",
            data={"message_id": "m1"},
        )

        events = await storage.get_trace_events()
        assert len(events) == 1
        assert events[0].event_type == "message_created"
        assert events[0].actor == "alice"
        assert events[0].data == {"message_id": "m1"}

    async def test_track_generates_id_and_timestamp(self, tracker, storage):
        """Test that track() fills id and timestamp."""
        before = datetime.now(timezone.utc)
        await tracker.track(event_type="message_routed", actor="delivery_router", data={})
        after = datetime.now(timezone.utc)

        events = await storage.get_trace_events()
        assert events[0].id
        assert before <= events[0].timestamp <= after

    async def test_track_multiple_events(self, tracker, storage):
        """Test tracking multiple events."""
        await tracker.track(event_type="event1", actor="actor1", data={})
        await tracker.track(event_type="event2", actor="actor2", data={})
        await tracker.track(event_type="event3", actor="actor3", data={})

        events = await storage.get_trace_events()
        assert len(events) == 3

    async def test_track_audit_event_member(self, tracker, storage):
        """Test that enum event types are stored by value."""
        await tracker.track(
            event_type=AuditEvent.MESSAGE_ROUTED,
            actor="delivery_router",
            data={"message_id": "m1"},
        )

        events = await storage.get_trace_events(event_types=["message_routed"])
        assert events[0].event_type == "message_routed"
        assert events[0].message_id == "m1"

    async def test_storage_failure_is_swallowed(self):
        """Test that a failed audit write does not raise."""
        storage = AsyncMock()
        storage.save_trace_event.side_effect = sqlite3.OperationalError("disk full")
        tracker = Tracker(storage)

        await tracker.track(event_type="message_created", actor="alice", data={})

        storage.save_trace_event.assert_awaited_once()

    async def test_other_errors_propagate(self):
        """Test that non-database errors are not hidden."""
        storage = AsyncMock()
        storage.save_trace_event.side_effect = TypeError("bad event")
        tracker = Tracker(storage)

        with pytest.raises(TypeError):
            await tracker.track(event_type="message_created", actor="alice", data={})
