"""Fixtures for market data tests.

FakeTransport stands in for the STOMP transport so the ConnectionManager can
be driven step by step: tests decide when the transport connects, fails,
disconnects or delivers a message. RecordingScheduler replaces the
manager's timer so backoff delays can be asserted and retries fired by hand.
"""

from collections.abc import Mapping
from unittest.mock import MagicMock

import pytest

from finstream.market.connection import ConnectionManager
from finstream.market.interface import MessageHandler, PubSubTransport


class FakeTransport(PubSubTransport):
    def __init__(self, url: str, connect_headers: Mapping[str, str], heartbeat: float) -> None:
        self.url = url
        self.headers = dict(connect_headers)
        self.heartbeat = heartbeat
        self.activated = False
        self.deactivated = False
        self.subscriptions: dict[str, MessageHandler] = {}
        self._connected = False

    def activate(self) -> None:
        self.activated = True

    def subscribe(self, destination: str, handler: MessageHandler) -> str:
        self.subscriptions[destination] = handler
        return f"sub-{len(self.subscriptions) - 1}"

    def deactivate(self) -> None:
        self.deactivated = True
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    # --- Test drivers ---

    def simulate_connect(self) -> None:
        self._connected = True
        self._notify_connect({"version": "1.2"})

    def simulate_error(self, message: str, error: BaseException | None = None) -> None:
        self._notify_error(message, error)

    def simulate_disconnect(self) -> None:
        self._connected = False
        self._notify_disconnect()

    def simulate_parse_error(self, raw: str, error: BaseException) -> None:
        self._notify_parse_error(raw, error)

    def deliver(self, destination: str, body: str) -> None:
        self.subscriptions[destination](body)


class FakeTransportFactory:
    """TransportFactory that remembers every transport it built."""

    def __init__(self) -> None:
        self.created: list[FakeTransport] = []

    def __call__(self, url: str, connect_headers: Mapping[str, str], heartbeat: float) -> FakeTransport:
        transport = FakeTransport(url, connect_headers, heartbeat)
        self.created.append(transport)
        return transport

    @property
    def latest(self) -> FakeTransport:
        return self.created[-1]


class RecordingScheduler:
    """Drop-in for ConnectionManager._schedule that never touches the event loop."""

    def __init__(self) -> None:
        self.calls: list[tuple[float, object, int, MagicMock]] = []

    def __call__(self, delay, callback, epoch):
        handle = MagicMock()
        self.calls.append((delay, callback, epoch, handle))
        return handle

    @property
    def delays(self) -> list[float]:
        return [call[0] for call in self.calls]

    def fire_last(self) -> None:
        _, callback, epoch, _ = self.calls[-1]
        callback(epoch)


@pytest.fixture
def transport_factory():
    return FakeTransportFactory()


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def manager(store, credentials, transport_factory, scheduler):
    """ConnectionManager wired to fakes, with the production delay settings."""
    mgr = ConnectionManager(
        store=store,
        credentials=credentials,
        transport_factory=transport_factory,
        url="ws://test/stock-updates/websocket",
    )
    mgr._schedule = scheduler
    return mgr
