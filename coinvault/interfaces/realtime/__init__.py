"""
FastAPI router for live balance notifications.

Provides:
- WebSocket endpoint pushing balance/profile/withdrawal events
- SSE (Server-Sent Events) endpoint for HTTP-only clients
- Stream status endpoint

Clients only ever receive events for the account named by the
gateway-verified X-Account-Id header.
"""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from fastapi.responses import StreamingResponse

from coinvault.interfaces.accounts.dependencies import AccountIdDep, ServicesDep
from coinvault.realtime.stream import BalanceBroadcaster, Subscription, handle_client_message

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/realtime", tags=["realtime"])


def _websocket_account_id(websocket: WebSocket) -> int | None:
    raw = websocket.headers.get("x-account-id")
    if raw is None or not raw.isdigit() or int(raw) < 1:
        return None
    return int(raw)


async def _pump_events(websocket: WebSocket, subscription: Subscription) -> None:
    while True:
        event = await subscription.next_event()
        if event is not None:
            await websocket.send_text(event.to_json())


def _log_pump_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Event pump stopped: %s", exc)


# ------------------------------------------------------------------
# WebSocket endpoint
# ------------------------------------------------------------------


@router.websocket("/ws")
async def ws_balance(websocket: WebSocket) -> None:
    """WebSocket endpoint for live balance updates.

    Protocol (JSON):
        → {"action": "ping"}
        ← {"event": "pong", "timestamp": "..."}

        ← {"event": "balance_updated", "account_id": 7, "data": {...}}
    """
    account_id = _websocket_account_id(websocket)
    if account_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    broadcaster: BalanceBroadcaster = websocket.app.state.services.broadcaster
    await websocket.accept()
    subscription = broadcaster.subscribe(account_id)
    pump = asyncio.create_task(_pump_events(websocket, subscription))
    pump.add_done_callback(_log_pump_failure)

    try:
        while True:
            raw = await websocket.receive_text()
            await handle_client_message(websocket, raw)
    except WebSocketDisconnect:
        logger.debug("WebSocket closed for account=%s", account_id)
    finally:
        pump.cancel()
        broadcaster.unsubscribe(subscription)


# ------------------------------------------------------------------
# SSE endpoint
# ------------------------------------------------------------------


@router.get(
    "/stream",
    summary="Server-Sent Events balance stream",
    description="HTTP streaming endpoint for clients that can't use WebSocket.",
)
async def sse_balance(account_id: AccountIdDep, services: ServicesDep) -> StreamingResponse:
    return StreamingResponse(
        services.broadcaster.sse_generator(account_id),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get(
    "/stream/status",
    summary="Get stream status",
    description="Return subscription and delivery counters.",
)
def stream_status(services: ServicesDep) -> dict:
    return services.broadcaster.stats
