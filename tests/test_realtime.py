"""
Tests for the live notification layer.

Covers:
- StreamEvent serialization
- BalanceBroadcaster (per-account routing, cross-thread publish, drops)
- SSE generator
- WebSocket client commands and event pump
"""

import asyncio
import json
import logging
import threading
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from coinvault.interfaces.realtime import _log_pump_failure, _pump_events
from coinvault.realtime.stream import BalanceBroadcaster, StreamEvent, handle_client_message


# =====================================================================
# StreamEvent
# =====================================================================

class TestStreamEvent:
    def test_to_json_serializes_decimals(self):
        event = StreamEvent(
            event_type="balance_updated",
            account_id=7,
            data={"balance": Decimal("70.5")},
        )
        parsed = json.loads(event.to_json())

        assert parsed["event"] == "balance_updated"
        assert parsed["account_id"] == 7
        assert parsed["data"]["balance"] == "70.5"
        assert "timestamp" in parsed

    def test_to_sse_format(self):
        sse = StreamEvent(event_type="profile_update", account_id=1, data={}).to_sse()

        assert sse.startswith("event: profile_update\n")
        assert "data: " in sse
        assert sse.endswith("\n\n")


# =====================================================================
# BalanceBroadcaster
# =====================================================================

class TestBalanceBroadcaster:
    """Tests for subscription routing and delivery."""

    def test_initial_state(self):
        broadcaster = BalanceBroadcaster()
        assert broadcaster.active_subscriptions == 0
        assert broadcaster.stats["total_events_published"] == 0

    def test_publish_without_subscribers(self):
        broadcaster = BalanceBroadcaster()
        assert broadcaster.publish(1, "balance_updated", {}) == 0
        assert broadcaster.stats["total_events_published"] == 1

    @pytest.mark.asyncio
    async def test_events_only_reach_their_account(self):
        broadcaster = BalanceBroadcaster()
        mine = broadcaster.subscribe(1)
        theirs = broadcaster.subscribe(2)

        handed = broadcaster.publish(1, "balance_updated", {"balance": Decimal("5")})
        event = await mine.next_event(timeout=1)

        assert handed == 1
        assert event.account_id == 1
        assert event.data["balance"] == Decimal("5")
        assert await theirs.next_event(timeout=0.05) is None

    @pytest.mark.asyncio
    async def test_publish_from_worker_thread(self):
        broadcaster = BalanceBroadcaster()
        subscription = broadcaster.subscribe(3)

        worker = threading.Thread(
            target=broadcaster.publish, args=(3, "profile_update", {"type": "deposit_approved"})
        )
        worker.start()
        worker.join()
        event = await subscription.next_event(timeout=1)

        assert event is not None
        assert event.event_type == "profile_update"

    @pytest.mark.asyncio
    async def test_full_queue_drops_for_that_subscriber_only(self):
        broadcaster = BalanceBroadcaster(max_queue_size=1)
        slow = broadcaster.subscribe(4)

        broadcaster.publish(4, "balance_updated", {"n": 1})
        broadcaster.publish(4, "balance_updated", {"n": 2})
        await asyncio.sleep(0)

        first = await slow.next_event(timeout=1)
        assert first.data["n"] == 1
        assert slow.dropped == 1
        assert broadcaster.stats["total_dropped"] == 1

    @pytest.mark.asyncio
    async def test_late_subscriber_misses_earlier_events(self):
        broadcaster = BalanceBroadcaster()
        broadcaster.publish(8, "balance_updated", {"balance": "1"})

        subscription = broadcaster.subscribe(8)

        assert await subscription.next_event(timeout=0.05) is None

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        broadcaster = BalanceBroadcaster()
        subscription = broadcaster.subscribe(5)
        assert broadcaster.subscriber_count(5) == 1

        broadcaster.unsubscribe(subscription)

        assert broadcaster.subscriber_count(5) == 0
        assert broadcaster.publish(5, "balance_updated", {}) == 0

    @pytest.mark.asyncio
    async def test_sse_generator_yields_events(self):
        broadcaster = BalanceBroadcaster()
        stream = broadcaster.sse_generator(6, keepalive_seconds=0.05)

        assert await stream.__anext__() == ": connected\n\n"
        broadcaster.publish(6, "balance_updated", {"balance": "1"})
        chunk = await stream.__anext__()
        assert chunk.startswith("event: balance_updated\n")

        assert await stream.__anext__() == ": keepalive\n\n"
        await stream.aclose()
        assert broadcaster.subscriber_count(6) == 0


# =====================================================================
# WebSocket commands
# =====================================================================

class TestClientMessages:
    @pytest.mark.asyncio
    async def test_ping(self):
        websocket = AsyncMock()
        await handle_client_message(websocket, json.dumps({"action": "ping"}))

        sent = json.loads(websocket.send_text.call_args[0][0])
        assert sent["event"] == "pong"

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        websocket = AsyncMock()
        await handle_client_message(websocket, "not json")

        sent = json.loads(websocket.send_text.call_args[0][0])
        assert sent["error"] == "Invalid JSON"

    @pytest.mark.asyncio
    async def test_unknown_action(self):
        websocket = AsyncMock()
        await handle_client_message(websocket, json.dumps({"action": "subscribe"}))

        sent = json.loads(websocket.send_text.call_args[0][0])
        assert "Unknown action" in sent["error"]


# =====================================================================
# WebSocket event pump
# =====================================================================

class TestEventPump:
    @pytest.mark.asyncio
    async def test_send_failure_is_logged(self, caplog):
        broadcaster = BalanceBroadcaster()
        subscription = broadcaster.subscribe(9)
        websocket = AsyncMock()
        websocket.send_text.side_effect = RuntimeError("connection reset")

        pump = asyncio.create_task(_pump_events(websocket, subscription))
        pump.add_done_callback(_log_pump_failure)
        broadcaster.publish(9, "balance_updated", {})
        with caplog.at_level(logging.WARNING, logger="coinvault.interfaces.realtime"):
            await asyncio.wait([pump], timeout=1)
            await asyncio.sleep(0)

        assert pump.done()
        assert "Event pump stopped: connection reset" in caplog.text

    @pytest.mark.asyncio
    async def test_cancelled_pump_is_quiet(self, caplog):
        subscription = BalanceBroadcaster().subscribe(10)
        pump = asyncio.create_task(_pump_events(AsyncMock(), subscription))
        pump.add_done_callback(_log_pump_failure)
        await asyncio.sleep(0)

        with caplog.at_level(logging.WARNING, logger="coinvault.interfaces.realtime"):
            pump.cancel()
            await asyncio.wait([pump], timeout=1)
            await asyncio.sleep(0)

        assert "Event pump stopped" not in caplog.text
