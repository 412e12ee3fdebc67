# =============================================================================
# tests/unit/test_telemetry_buffer.py
# Unit Tests for Telemetry Queueing and Batched Delivery
# =============================================================================

import asyncio
from datetime import timedelta

import pytest

from conftest import respond
from market_core.api.telemetry_connector import TelemetryConnector
from market_core.errors import NetworkError
from market_core.models import TelemetryEvent, utcnow
from market_core.telemetry import TelemetryBuffer, TelemetryEventQueue, new_session_id


@pytest.fixture
def queue(database):
    return TelemetryEventQueue(database, max_events=500)


@pytest.fixture
def telemetry(queue, pipeline, supervisor, config):
    return TelemetryBuffer(
        queue,
        TelemetryConnector(pipeline),
        supervisor,
        config,
        user_id_provider=lambda: "U1",
        session_id="session-abc",
    )


def sent_batches(transport):
    return [call.json["events"] for call in transport.calls_to("POST", "/events")]


class TestEnqueue:

    @pytest.mark.asyncio
    async def test_session_and_user_are_filled_in(self, telemetry, queue):
        await telemetry.enqueue(TelemetryEvent(event_type="click"))

        event = queue.pending()[0]
        assert event.session_id == "session-abc"
        assert event.user_id == "U1"
        assert event.enqueued_at is not None

    @pytest.mark.asyncio
    async def test_explicit_session_is_kept(self, telemetry, queue):
        await telemetry.enqueue(TelemetryEvent(event_type="click", session_id="other"))
        assert queue.pending()[0].session_id == "other"

    @pytest.mark.asyncio
    async def test_nineteen_events_do_not_flush(self, telemetry, transport, supervisor):
        transport.add("POST", "/events", respond(202))

        for i in range(19):
            await telemetry.track_click(f"button-{i}")
        await supervisor.join()

        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_twentieth_event_triggers_flush(self, telemetry, transport, supervisor, queue):
        transport.add("POST", "/events", respond(202))

        for i in range(20):
            await telemetry.track_click(f"button-{i}")
        await supervisor.join()

        assert len(sent_batches(transport)) == 1
        assert len(sent_batches(transport)[0]) == 20
        assert queue.count() == 0

    @pytest.mark.asyncio
    async def test_tracking_helpers(self, telemetry, queue):
        await telemetry.track_screen_view("home")
        await telemetry.track_search("bike", results=3)
        await telemetry.track_feature_used("price_suggestion", listing_id="L1")

        events = queue.pending()
        assert [e.event_type for e in events] == ["screen_view", "search", "feature_used"]
        assert events[0].step == "home"
        assert events[1].properties == {"query": "bike", "results": 3}
        assert events[2].properties["listing_id"] == "L1"


class TestFlush:

    @pytest.mark.asyncio
    async def test_events_are_sent_in_batches_of_fifty(self, telemetry, transport, queue):
        transport.add("POST", "/events", respond(202))
        for i in range(120):
            queue.append(TelemetryEvent(event_type="click", session_id="s"))

        report = await telemetry.flush()

        assert [len(b) for b in sent_batches(transport)] == [50, 50, 20]
        assert report.sent == 120
        assert report.batches == 3
        assert queue.count() == 0

    @pytest.mark.asyncio
    async def test_failed_flush_keeps_every_event(self, telemetry, transport, queue):
        transport.add("POST", "/events", respond(500, {"detail": "ingest down"}))
        for _ in range(20):
            queue.append(TelemetryEvent(event_type="click", session_id="s"))

        report = await telemetry.flush()

        assert report.sent == 0
        assert report.error is not None
        assert queue.count() == 20

    @pytest.mark.asyncio
    async def test_partial_failure_stops_at_failed_batch(self, telemetry, transport, queue):
        transport.add(
            "POST", "/events",
            respond(202),
            NetworkError("lost", kind="connection"),
        )
        for _ in range(120):
            queue.append(TelemetryEvent(event_type="click", session_id="s"))

        report = await telemetry.flush()

        assert report.sent == 50
        assert report.remaining == 70
        # First batch plus three attempts at the second; the third batch is never tried
        assert len(sent_batches(transport)) == 4
        assert queue.pending()[0].local_id == 51

    @pytest.mark.asyncio
    async def test_concurrent_flush_is_suppressed(self, telemetry, transport, queue):
        transport.add("POST", "/events", respond(202), delay=0.05)
        for _ in range(10):
            queue.append(TelemetryEvent(event_type="click", session_id="s"))

        first, second = await asyncio.gather(telemetry.flush(), telemetry.flush())

        assert first.sent == 10
        assert second.skipped
        assert len(sent_batches(transport)) == 1

    @pytest.mark.asyncio
    async def test_payload_shape(self, telemetry, transport, queue):
        transport.add("POST", "/events", respond(202))
        queue.append(TelemetryEvent(event_type="order_step", session_id="s", order_id="O1", step="pay"))

        await telemetry.flush()

        payload = sent_batches(transport)[0][0]
        assert payload["event_type"] == "order_step"
        assert payload["order_id"] == "O1"
        assert "listing_id" not in payload

    @pytest.mark.asyncio
    async def test_timer_flushes_periodically(self, queue, pipeline, supervisor, config, transport):
        transport.add("POST", "/events", respond(202))
        buffer = TelemetryBuffer(
            queue,
            TelemetryConnector(pipeline),
            supervisor,
            config.with_overrides(telemetry_flush_interval=0.01),
        )
        queue.append(TelemetryEvent(event_type="click", session_id="s"))

        buffer.start()
        await asyncio.sleep(0.1)
        await buffer.stop(final_flush=False)

        assert queue.count() == 0


class TestEventQueue:

    def test_retention_cap_drops_oldest(self, database):
        queue = TelemetryEventQueue(database, max_events=5)
        for i in range(7):
            queue.append(TelemetryEvent(event_type=f"e{i}", session_id="s"))

        assert queue.count() == 5
        assert [e.event_type for e in queue.pending()] == ["e2", "e3", "e4", "e5", "e6"]

    def test_stats(self, queue):
        queue.append(TelemetryEvent(event_type="click", user_id="U1", session_id="s"))
        queue.append(TelemetryEvent(event_type="click", user_id="U2", session_id="s"))
        queue.append(TelemetryEvent(event_type="search", user_id="U1", session_id="s"))

        stats = queue.stats()
        assert stats["total_events"] == 3
        assert stats["unique_users"] == 2
        assert stats["events_by_type"] == {"click": 2, "search": 1}
        assert stats["oldest_event"] is not None

    def test_cleanup_older_than(self, queue):
        queue.append(TelemetryEvent(event_type="old", session_id="s", occurred_at=utcnow() - timedelta(days=10)))
        queue.append(TelemetryEvent(event_type="new", session_id="s"))

        assert queue.cleanup_older_than(7) == 1
        assert [e.event_type for e in queue.pending()] == ["new"]


def test_session_ids_are_url_safe_and_unique():
    first, second = new_session_id(), new_session_id()

    assert first != second
    assert len(first) == 22
    assert all(c.isalnum() or c in "-_" for c in first)
