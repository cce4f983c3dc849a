"""
Per-account change broadcaster for WebSocket and SSE clients.

Architecture:
    BalanceMutator (worker thread) ──publish()──▶ BalanceBroadcaster
                                                      │
                                       account_id ─▶ {Subscription, ...}
                                                      │ call_soon_threadsafe
                                                      ▼
                                            bounded asyncio.Queue per client
                                                      │
                                          SSE generator / WebSocket pump

publish() never blocks the writer: events are handed to each subscriber's
event loop and a full queue drops the event for that subscriber only.
Delivery is at-most-once; nothing is kept for clients that connect later.
"""

import asyncio
import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Optional

from coinvault.domain.accounts.ports import ChangeNotifier

logger = logging.getLogger(__name__)


@dataclass
class StreamEvent:
    """A single event pushed to an account's connected clients."""

    event_type: str          # "balance_updated", "profile_update", "withdrawal_update"
    account_id: int
    data: dict
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_json(self) -> str:
        return json.dumps({
            "event": self.event_type,
            "account_id": self.account_id,
            "data": self.data,
            "timestamp": self.timestamp,
        }, default=str)

    def to_sse(self) -> str:
        """Format as Server-Sent Event."""
        return f"event: {self.event_type}\ndata: {self.to_json()}\n\n"


class Subscription:
    """One connected client: a bounded queue owned by its event loop."""

    def __init__(
        self,
        account_id: int,
        loop: asyncio.AbstractEventLoop,
        max_queue_size: int,
        on_drop: Any = None,
    ) -> None:
        self.account_id = account_id
        self.loop = loop
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self.dropped = 0
        self._on_drop = on_drop

    def offer(self, event: StreamEvent) -> None:
        """Enqueue without waiting. Must run on `self.loop`."""
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            if self._on_drop is not None:
                self._on_drop()
            logger.warning(
                "Subscriber queue full for account=%s, event dropped", self.account_id
            )

    async def next_event(self, timeout: Optional[float] = None) -> Optional[StreamEvent]:
        """Wait for the next event; None on timeout."""
        try:
            return await asyncio.wait_for(self.queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None


class BalanceBroadcaster(ChangeNotifier):
    """Registry of live subscriptions keyed by account id.

    Safe to call publish() from any thread. The registry lock is held only
    while the subscriber set is copied or modified.

    Usage:
        broadcaster = BalanceBroadcaster()
        sub = broadcaster.subscribe(account_id)          # inside the event loop
        event = await sub.next_event()
        broadcaster.unsubscribe(sub)

        broadcaster.publish(account_id, "balance_updated", {...})  # any thread
    """

    def __init__(self, max_queue_size: int = 100) -> None:
        self._max_queue_size = max_queue_size
        self._subscribers: dict[int, set[Subscription]] = {}
        self._lock = threading.Lock()
        self._stats = {
            "total_subscriptions": 0,
            "total_events_published": 0,
            "total_deliveries": 0,
            "total_dropped": 0,
        }

    @property
    def active_subscriptions(self) -> int:
        with self._lock:
            return sum(len(subs) for subs in self._subscribers.values())

    @property
    def stats(self) -> dict:
        with self._lock:
            accounts = len(self._subscribers)
            active = sum(len(subs) for subs in self._subscribers.values())
            return {
                **self._stats,
                "active_subscriptions": active,
                "subscribed_accounts": accounts,
            }

    def subscriber_count(self, account_id: int) -> int:
        with self._lock:
            return len(self._subscribers.get(account_id, ()))

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def subscribe(
        self, account_id: int, loop: Optional[asyncio.AbstractEventLoop] = None
    ) -> Subscription:
        """Register a client for `account_id` on the running (or given) loop."""
        subscription = Subscription(
            account_id,
            loop or asyncio.get_running_loop(),
            self._max_queue_size,
            on_drop=self._count_drop,
        )
        with self._lock:
            self._subscribers.setdefault(account_id, set()).add(subscription)
            self._stats["total_subscriptions"] += 1
        logger.info("Client subscribed to account=%s", account_id)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(subscription.account_id)
            if subs is None:
                return
            subs.discard(subscription)
            if not subs:
                del self._subscribers[subscription.account_id]
        logger.info("Client unsubscribed from account=%s", subscription.account_id)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish(self, account_id: int, event_type: str, payload: dict) -> int:
        event = StreamEvent(event_type=event_type, account_id=account_id, data=payload)
        with self._lock:
            targets = list(self._subscribers.get(account_id, ()))
            self._stats["total_events_published"] += 1

        handed = 0
        for subscription in targets:
            try:
                subscription.loop.call_soon_threadsafe(subscription.offer, event)
            except RuntimeError:
                # Loop closed under us; the client is gone.
                self.unsubscribe(subscription)
                continue
            handed += 1

        with self._lock:
            self._stats["total_deliveries"] += handed
        return handed

    def _count_drop(self) -> None:
        with self._lock:
            self._stats["total_dropped"] += 1

    # ------------------------------------------------------------------
    # SSE generator
    # ------------------------------------------------------------------

    async def sse_generator(
        self, account_id: int, keepalive_seconds: float = 15.0
    ) -> AsyncGenerator[str, None]:
        """Yield Server-Sent Events for one account until the client leaves."""
        subscription = self.subscribe(account_id)
        try:
            yield ": connected\n\n"
            while True:
                event = await subscription.next_event(timeout=keepalive_seconds)
                if event is None:
                    yield ": keepalive\n\n"
                    continue
                yield event.to_sse()
        finally:
            self.unsubscribe(subscription)


async def handle_client_message(websocket: Any, raw: str) -> None:
    """Answer a WebSocket client command.

    Supported commands:
        {"action": "ping"}
    """
    try:
        msg = json.loads(raw)
    except json.JSONDecodeError:
        await websocket.send_text(json.dumps({"error": "Invalid JSON"}))
        return

    action = msg.get("action", "") if isinstance(msg, dict) else ""
    if action == "ping":
        await websocket.send_text(json.dumps({
            "event": "pong",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }))
    else:
        await websocket.send_text(json.dumps({
            "error": f"Unknown action: {action}",
            "supported": ["ping"],
        }))
