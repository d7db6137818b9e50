"""Read-only HTTP surface: SSE stream and JSON snapshot of the market views."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncGenerator
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from .connection import ConnectionManager
from .store import MarketStateStore

logger = logging.getLogger(__name__)


def build_snapshot(
    store: MarketStateStore,
    connection: ConnectionManager,
    now: float | None = None,
) -> dict[str, Any]:
    """Every read-only view in one JSON-ready dict."""
    ts = time.time() if now is None else now
    status = store.market_status
    return {
        "connection": connection.stats(ts).to_dict(),
        "canReconnect": connection.can_reconnect,
        "selectedSymbols": sorted(store.selected_symbols),
        "selected": [r.to_dict() for r in store.selected()],
        "gainers": [r.to_dict() for r in store.gainers()],
        "losers": [r.to_dict() for r in store.losers()],
        "notifications": [n.to_dict() for n in store.active_notifications(ts)],
        "errors": [e.to_dict() for e in store.recent_errors()],
        "performance": store.performance_snapshot(ts).to_dict(),
        "marketStatus": status.to_dict() if status is not None else None,
    }


def create_stream_router(store: MarketStateStore, connection: ConnectionManager) -> APIRouter:
    """Create the market router bound to one store and connection manager."""
    router = APIRouter(prefix="/api/market", tags=["market"])

    @router.get("/snapshot")
    async def market_snapshot() -> dict[str, Any]:
        return build_snapshot(store, connection)

    @router.get("/stream")
    async def stream_market(request: Request) -> StreamingResponse:
        """SSE endpoint; pushes a fresh snapshot whenever state changes.

            data: {"connection": {...}, "selected": [...], "gainers": [...], ...}
        """
        return StreamingResponse(
            _generate_events(store, connection, request),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",  # Disable nginx buffering if proxied
            },
        )

    return router


async def _generate_events(
    store: MarketStateStore,
    connection: ConnectionManager,
    request: Request,
    interval: float = 0.5,
    refresh_every: int = 10,
) -> AsyncGenerator[str, None]:
    """Yield SSE-formatted snapshots until the client disconnects.

    A snapshot is sent when the store version or the connection state has
    changed since the last one, and otherwise every ``refresh_every`` polls
    so time-based views (notification expiry, update rate) keep moving.
    """
    yield "retry: 1000\n\n"

    last_seen: tuple[int, str, int] | None = None
    idle_polls = 0
    client_ip = request.client.host if request.client else "unknown"
    logger.info("SSE client connected: %s", client_ip)

    try:
        while True:
            if await request.is_disconnected():
                logger.info("SSE client disconnected: %s", client_ip)
                break

            current = (store.version, connection.state.value, connection.reconnect_attempts)
            if current != last_seen or idle_polls >= refresh_every:
                last_seen = current
                idle_polls = 0
                payload = json.dumps(build_snapshot(store, connection), default=str, allow_nan=False)
                yield f"data: {payload}\n\n"
            else:
                idle_polls += 1

            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        logger.info("SSE stream cancelled for: %s", client_ip)
