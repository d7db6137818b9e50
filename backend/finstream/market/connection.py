"""Transport lifecycle: connect, subscribe, back off, retry, surface status."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable, Mapping

from .config import (
    DEFAULT_WS_URL,
    HEARTBEAT_INTERVAL,
    MANUAL_RECONNECT_DELAY,
    MAX_RECONNECT_ATTEMPTS,
    NOTIFICATION_TOPIC,
    PRICE_TOPIC,
    RECONNECT_BACKOFF,
    RECONNECT_BASE_DELAY,
)
from .credentials import CredentialProvider
from .interface import PubSubTransport, TransportFactory
from .models import ConnectionState, ConnectionStats, ErrorCode, ErrorRecord
from .store import MarketStateStore

logger = logging.getLogger(__name__)

MAX_ATTEMPTS_MESSAGE = "Max reconnection attempts exceeded - reconnect manually"
NO_TOKEN_MESSAGE = "No bearer token available - please log in first"

_AUTH_MARKERS = ("401", "403", "authentication", "unauthorized", "jwt")
_CONNECTION_MARKERS = ("connection", "network")


def classify_error(message: str, error: BaseException | None = None) -> ErrorCode:
    """Map a transport failure to an ErrorCode.

    Authentication-flavoured failures get their own code so the caller can
    refresh credentials; there is no automatic retry tied to them.
    """
    text = message.lower()
    if any(marker in text for marker in _AUTH_MARKERS):
        return ErrorCode.TRANSPORT_AUTHENTICATION_FAILED
    if any(marker in text for marker in _CONNECTION_MARKERS):
        return ErrorCode.TRANSPORT_CONNECTION_FAILED
    if isinstance(error, OSError):
        return ErrorCode.NETWORK_ERROR
    return ErrorCode.UNKNOWN


class ConnectionManager:
    """Owns the single pub/sub transport and the ConnectionState machine.

    States: disconnected (initial) -> connecting -> connected; failures go to
    error; transport disconnects go back to disconnected with a backoff retry
    (base_delay * 1.5**attempts) until max_attempts, after which the state
    stays error until disconnect() resets the counter. reconnecting is the
    short window of a manual reconnect().

    All public methods are synchronous and must run on the event loop that
    owns the transport. Each connect attempt gets a new epoch; callbacks and
    timers carrying an older epoch are ignored, so a connect that completes
    after disconnect() cannot flip the state back to connected.
    """

    def __init__(
        self,
        store: MarketStateStore,
        credentials: CredentialProvider,
        transport_factory: TransportFactory,
        url: str = DEFAULT_WS_URL,
        base_delay: float = RECONNECT_BASE_DELAY,
        max_attempts: int = MAX_RECONNECT_ATTEMPTS,
        heartbeat: float = HEARTBEAT_INTERVAL,
        manual_delay: float = MANUAL_RECONNECT_DELAY,
        on_auth_failure: Callable[[ErrorRecord], None] | None = None,
    ) -> None:
        self._store = store
        self._credentials = credentials
        self._transport_factory = transport_factory
        self._url = url
        self._base_delay = base_delay
        self._max_attempts = max_attempts
        self._heartbeat = heartbeat
        self._manual_delay = manual_delay
        self._on_auth_failure = on_auth_failure

        self._transport: PubSubTransport | None = None
        self._state = ConnectionState.DISCONNECTED
        self._attempts = 0
        self._last_error: str | None = None
        self._connected_at: float | None = None
        self._epoch = 0
        self._retry_handle: asyncio.TimerHandle | None = None

    # --- Public API ---

    def connect(self) -> None:
        """Open the transport and subscribe once it reports connected.

        No-op while connected or connecting. Without a token the state goes
        straight to error and no transport is created.
        """
        if self._state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            logger.info("Connect ignored: already %s", self._state.value)
            return

        token = self._credentials.get_access_token()
        if not token:
            self._state = ConnectionState.ERROR
            self._last_error = NO_TOKEN_MESSAGE
            record = self._store.add_error(
                ErrorCode.CREDENTIAL_EXPIRED,
                NO_TOKEN_MESSAGE,
                context={"url": self._url},
            )
            logger.error("Connection failed: no bearer token")
            self._report_auth_failure(record)
            return

        self._cancel_retry()
        self._teardown_transport()
        self._epoch += 1
        epoch = self._epoch
        self._state = ConnectionState.CONNECTING
        self._last_error = None

        headers = {
            "Authorization": f"Bearer {token}",
            "X-Requested-With": "XMLHttpRequest",
        }
        try:
            transport = self._transport_factory(self._url, headers, self._heartbeat)
            transport.on_connect = lambda frame_headers: self._handle_connected(epoch, frame_headers)
            transport.on_error = lambda message, error: self._handle_error(epoch, message, error)
            transport.on_disconnect = lambda: self._handle_disconnected(epoch)
            transport.on_parse_error = lambda raw, error: self._handle_frame_error(epoch, raw, error)
            self._transport = transport
            transport.activate()
        except Exception as e:
            self._handle_error(epoch, "Failed to initialize transport connection", e)
            return

        logger.info("Connection initiated to %s", self._url)

    def disconnect(self) -> None:
        """Tear down unconditionally and reset the attempt counter.

        Any pending retry is cancelled and late callbacks from the torn-down
        transport are ignored.
        """
        self._epoch += 1
        self._cancel_retry()
        self._teardown_transport()
        self._state = ConnectionState.DISCONNECTED
        self._attempts = 0
        self._connected_at = None
        logger.info("Disconnected")

    def reconnect(self) -> bool:
        """Manual retry: disconnect, then connect after a short fixed delay.

        Returns False (and does nothing) when can_reconnect is False.
        """
        if not self.can_reconnect:
            logger.warning("Cannot reconnect: connected, connecting, or max attempts exceeded")
            return False
        logger.info("Manual reconnection triggered")
        self.disconnect()
        self._state = ConnectionState.RECONNECTING
        self._retry_handle = self._schedule(self._manual_delay, self._fire_retry, self._epoch)
        return True

    # --- Read-only state ---

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def connected_at(self) -> float | None:
        return self._connected_at

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def is_connecting(self) -> bool:
        return self._state is ConnectionState.CONNECTING

    @property
    def can_reconnect(self) -> bool:
        return self._attempts < self._max_attempts and not self.is_connected and not self.is_connecting

    @property
    def retry_pending(self) -> bool:
        return self._retry_handle is not None

    def stats(self, now: float | None = None) -> ConnectionStats:
        """Connection health plus the store's throughput figures."""
        ts = time.time() if now is None else now
        perf = self._store.performance_snapshot(ts)
        duration = ts - self._connected_at if self.is_connected and self._connected_at else 0.0
        return ConnectionStats(
            status=self._state,
            reconnect_attempts=self._attempts,
            connected_symbols=perf.symbol_count,
            total_updates=perf.total_updates,
            updates_per_second=perf.updates_per_second,
            connection_duration=duration,
            last_error=self._last_error,
            connected_at=self._connected_at,
        )

    # --- Transport callbacks ---

    def _handle_connected(self, epoch: int, headers: Mapping[str, str]) -> None:
        if epoch != self._epoch or self._transport is None:
            logger.debug("Ignoring stale connect (epoch %d, current %d)", epoch, self._epoch)
            return
        self._state = ConnectionState.CONNECTED
        self._attempts = 0
        self._last_error = None
        self._connected_at = time.time()
        logger.info("Connected to %s", self._url)

        self._transport.subscribe(PRICE_TOPIC, self._handle_price_message)
        self._transport.subscribe(NOTIFICATION_TOPIC, self._handle_notification_message)
        logger.info("Subscriptions active: %s, %s", PRICE_TOPIC, NOTIFICATION_TOPIC)

    def _handle_error(self, epoch: int, message: str, error: BaseException | None) -> None:
        if epoch != self._epoch:
            logger.debug("Ignoring stale error (epoch %d): %s", epoch, message)
            return
        self._state = ConnectionState.ERROR
        self._last_error = message
        code = classify_error(message, error)
        record = self._store.add_error(
            code,
            message,
            context={"reconnect_attempts": self._attempts, "url": self._url},
            error=error,
        )
        logger.error("Connection error [%s]: %s", code.value, message)
        if code.is_authentication:
            logger.error("Transport authentication failed - token may be expired")
            self._report_auth_failure(record)

    def _handle_disconnected(self, epoch: int) -> None:
        if epoch != self._epoch:
            logger.debug("Ignoring stale disconnect (epoch %d)", epoch)
            return
        self._transport = None
        self._state = ConnectionState.DISCONNECTED
        self._connected_at = None

        attempts = self._attempts
        if attempts + 1 >= self._max_attempts:
            self._attempts = self._max_attempts
            self._state = ConnectionState.ERROR
            self._last_error = MAX_ATTEMPTS_MESSAGE
            self._store.add_error(
                ErrorCode.TRANSPORT_CONNECTION_FAILED,
                MAX_ATTEMPTS_MESSAGE,
                context={"reconnect_attempts": self._attempts, "url": self._url},
            )
            logger.error("Reconnection failed - max attempts (%d) exceeded", self._max_attempts)
            return

        delay = self._base_delay * RECONNECT_BACKOFF**attempts
        self._attempts = attempts + 1
        logger.warning(
            "Disconnected - reconnection attempt %d/%d in %.1fs",
            self._attempts,
            self._max_attempts,
            delay,
        )
        self._retry_handle = self._schedule(delay, self._fire_retry, epoch)

    def _fire_retry(self, epoch: int) -> None:
        self._retry_handle = None
        if epoch != self._epoch:
            return
        if self._state in (ConnectionState.DISCONNECTED, ConnectionState.RECONNECTING):
            self._state = ConnectionState.DISCONNECTED
            self.connect()

    def _handle_frame_error(self, epoch: int, raw: str, error: BaseException) -> None:
        if epoch != self._epoch:
            return
        self._store.add_error(
            ErrorCode.MESSAGE_PARSE_ERROR,
            "Failed to decode inbound frame",
            context={"message_body": raw},
            error=error,
        )

    # --- Inbound frames ---

    def _handle_price_message(self, body: str) -> None:
        payload = self._decode(body, "price")
        if payload is not None:
            self._store.ingest_tick(payload)

    def _handle_notification_message(self, body: str) -> None:
        payload = self._decode(body, "notification")
        if payload is not None:
            self._store.ingest_notification(payload)

    def _decode(self, body: str, kind: str) -> dict | None:
        """JSON-decode a message body; malformed bodies become parse errors."""
        try:
            payload = json.loads(body)
        except (TypeError, ValueError) as e:
            self._store.add_error(
                ErrorCode.MESSAGE_PARSE_ERROR,
                f"Failed to parse {kind} message",
                context={"message_body": body},
                error=e,
            )
            return None
        if not isinstance(payload, dict):
            self._store.add_error(
                ErrorCode.MESSAGE_PARSE_ERROR,
                f"Expected a JSON object in {kind} message",
                context={"message_body": body},
            )
            return None
        return payload

    # --- Internals ---

    def _schedule(self, delay: float, callback: Callable[[int], None], epoch: int) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback, epoch)

    def _cancel_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    def _teardown_transport(self) -> None:
        if self._transport is not None:
            transport, self._transport = self._transport, None
            try:
                transport.deactivate()
            except Exception:
                logger.exception("Transport deactivate failed")

    def _report_auth_failure(self, record: ErrorRecord) -> None:
        if self._on_auth_failure is None:
            return
        try:
            self._on_auth_failure(record)
        except Exception:
            logger.exception("Authentication failure hook raised")
