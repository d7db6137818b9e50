"""Tests for the SSE router and snapshot builder."""

import json

import pytest
from fastapi.responses import StreamingResponse

from finstream.market.config import PRICE_TOPIC
from finstream.market.models import ErrorCode, MarketStatus
from finstream.market.stream import _generate_events, build_snapshot, create_stream_router


def _tick(symbol: str, price: float, change_percent: float) -> dict:
    return {"symbol": symbol, "price": price, "change": price * change_percent / 100, "changePercent": change_percent}


class FakeRequest:
    """Minimal stand-in for starlette's Request used by the event generator."""

    client = None

    def __init__(self, polls_before_disconnect: int, on_poll=None) -> None:
        self._remaining = polls_before_disconnect
        self._on_poll = on_poll
        self.polls = 0

    async def is_disconnected(self) -> bool:
        self.polls += 1
        if self._on_poll is not None:
            self._on_poll(self.polls)
        if self._remaining <= 0:
            return True
        self._remaining -= 1
        return False


def _reject_constant(name: str):
    raise ValueError(f"non-standard JSON constant: {name}")


def _data_events(events: list[str]) -> list[dict]:
    return [json.loads(e[len("data: "):]) for e in events if e.startswith("data: ")]


class TestBuildSnapshot:
    """Tests for the combined JSON view."""

    def test_empty_store(self, store, manager):
        snapshot = build_snapshot(store, manager, now=1000.0)
        assert snapshot["connection"]["status"] == "disconnected"
        assert snapshot["canReconnect"] is True
        assert snapshot["selectedSymbols"] == ["AAPL", "GOOGL", "MSFT", "NVDA", "TSLA"]
        assert snapshot["selected"] == []
        assert snapshot["marketStatus"] is None
        assert snapshot["performance"]["total_updates"] == 0

    def test_views(self, store, manager):
        """Test that gainers, losers, selection and errors flow into the snapshot."""
        store.ingest_tick(_tick("AAPL", 190.0, 1.2))
        store.ingest_tick(_tick("JPM", 195.0, -0.8))
        store.add_error(ErrorCode.NETWORK_ERROR, "socket reset")
        store.update_market_status(MarketStatus(market="NYSE", status="OPEN"))

        snapshot = build_snapshot(store, manager)

        assert [r["symbol"] for r in snapshot["selected"]] == ["AAPL"]
        assert [r["symbol"] for r in snapshot["gainers"]] == ["AAPL"]
        assert [r["symbol"] for r in snapshot["losers"]] == ["JPM"]
        assert snapshot["errors"][0]["code"] == "network-error"
        assert snapshot["marketStatus"]["status"] == "OPEN"
        json.dumps(snapshot)  # Should be JSON-serializable

    def test_only_active_notifications(self, store, manager):
        now = 1_000_000.0
        store.ingest_notification({"type": "T", "message": "fresh", "timestamp": (now - 10) * 1000})
        store.ingest_notification({"type": "T", "message": "stale", "timestamp": (now - 600) * 1000})
        snapshot = build_snapshot(store, manager, now=now)
        assert [n["message"] for n in snapshot["notifications"]] == ["fresh"]

    def test_connected_state(self, store, manager, transport_factory):
        manager.connect()
        transport_factory.latest.simulate_connect()
        snapshot = build_snapshot(store, manager)
        assert snapshot["connection"]["status"] == "connected"
        assert snapshot["canReconnect"] is False


@pytest.mark.asyncio
class TestGenerateEvents:
    """Tests for the SSE event generator."""

    async def test_retry_directive_then_snapshot(self, store, manager):
        request = FakeRequest(polls_before_disconnect=1)
        events = [e async for e in _generate_events(store, manager, request, interval=0)]

        assert events[0] == "retry: 1000\n\n"
        assert all(e.endswith("\n\n") for e in events)
        assert len(_data_events(events)) == 1

    async def test_unchanged_state_is_not_resent(self, store, manager):
        request = FakeRequest(polls_before_disconnect=5)
        events = [e async for e in _generate_events(store, manager, request, interval=0)]
        assert len(_data_events(events)) == 1

    async def test_store_change_pushes_new_snapshot(self, store, manager):
        """Test that a new tick between polls produces a second event."""

        def on_poll(poll):
            if poll == 3:
                store.ingest_tick(_tick("AAPL", 190.0, 0.5))

        request = FakeRequest(polls_before_disconnect=5, on_poll=on_poll)
        events = [e async for e in _generate_events(store, manager, request, interval=0)]

        snapshots = _data_events(events)
        assert len(snapshots) == 2
        assert snapshots[0]["selected"] == []
        assert snapshots[1]["selected"][0]["symbol"] == "AAPL"

    async def test_connection_change_pushes_new_snapshot(self, store, manager, transport_factory):
        def on_poll(poll):
            if poll == 2:
                manager.connect()

        request = FakeRequest(polls_before_disconnect=3, on_poll=on_poll)
        events = [e async for e in _generate_events(store, manager, request, interval=0)]

        statuses = [s["connection"]["status"] for s in _data_events(events)]
        assert statuses == ["disconnected", "connecting"]

    async def test_idle_stream_refreshes_periodically(self, store, manager):
        """Test that an unchanged state is still re-sent every refresh_every polls."""
        request = FakeRequest(polls_before_disconnect=6)
        events = [e async for e in _generate_events(store, manager, request, interval=0, refresh_every=2)]
        assert len(_data_events(events)) == 2

    async def test_rejected_nan_frame_keeps_snapshots_strict_json(self, store, manager, transport_factory):
        """Test that a NaN price frame recorded as an error still yields standard JSON."""
        manager.connect()
        transport = transport_factory.latest
        transport.simulate_connect()
        transport.deliver(PRICE_TOPIC, '{"symbol": "AAPL", "price": NaN, "change": 0, "changePercent": Infinity}')

        request = FakeRequest(polls_before_disconnect=1)
        events = [e async for e in _generate_events(store, manager, request, interval=0)]
        data = [e for e in events if e.startswith("data: ")]

        snapshot = json.loads(data[0][len("data: "):], parse_constant=_reject_constant)
        assert snapshot["errors"][0]["code"] == "price-validation-error"
        assert snapshot["errors"][0]["context"]["payload"]["price"] == "nan"
        assert snapshot["errors"][0]["context"]["payload"]["changePercent"] == "inf"

    async def test_disconnected_client_stops_immediately(self, store, manager):
        request = FakeRequest(polls_before_disconnect=0)
        events = [e async for e in _generate_events(store, manager, request, interval=0)]
        assert events == ["retry: 1000\n\n"]


@pytest.mark.asyncio
class TestRouter:
    """Tests for create_stream_router."""

    async def test_routes(self, store, manager):
        router = create_stream_router(store, manager)
        assert {route.path for route in router.routes} == {"/api/market/snapshot", "/api/market/stream"}

    async def test_snapshot_endpoint(self, store, manager):
        store.ingest_tick(_tick("MSFT", 420.0, 0.1))
        router = create_stream_router(store, manager)
        endpoint = next(r.endpoint for r in router.routes if r.path == "/api/market/snapshot")

        snapshot = await endpoint()
        assert [r["symbol"] for r in snapshot["selected"]] == ["MSFT"]

    async def test_stream_endpoint(self, store, manager):
        router = create_stream_router(store, manager)
        endpoint = next(r.endpoint for r in router.routes if r.path == "/api/market/stream")

        response = await endpoint(FakeRequest(polls_before_disconnect=0))
        assert isinstance(response, StreamingResponse)
        assert response.media_type == "text/event-stream"
        assert response.headers["cache-control"] == "no-cache"
