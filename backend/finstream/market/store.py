"""In-memory market state: enriched prices, selection, notifications, errors."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Mapping
from threading import Lock
from typing import Any

from .config import (
    DEFAULT_SELECTED_SYMBOLS,
    ERROR_BUFFER_SIZE,
    NOTIFICATION_BUFFER_SIZE,
    NOTIFICATION_WINDOW,
    RECENT_ERRORS_LIMIT,
)
from .derivation import enrich
from .models import (
    EnrichedRecord,
    ErrorCode,
    ErrorRecord,
    MarketStatus,
    NotificationRecord,
    NotificationValidationError,
    PerformanceSnapshot,
    RawTick,
    TickValidationError,
    parse_notification,
    parse_tick,
)
from .throughput import ThroughputMonitor

logger = logging.getLogger(__name__)


class MarketStateStore:
    """Authoritative state derived from the inbound tick and notification streams.

    Writer: ConnectionManager (one frame at a time, on the event loop).
    Readers: the SSE router, MarketDataService, any presentation code.

    Every mutation happens under one lock, so a reader never sees a raw tick
    without its enrichment or a ring buffer mid-trim. Views are recomputed
    from the owned maps on each call.
    """

    def __init__(
        self,
        selected_symbols: Iterable[str] = DEFAULT_SELECTED_SYMBOLS,
        notification_capacity: int = NOTIFICATION_BUFFER_SIZE,
        error_capacity: int = ERROR_BUFFER_SIZE,
        throughput: ThroughputMonitor | None = None,
    ) -> None:
        self._raw: dict[str, RawTick] = {}
        self._enriched: dict[str, EnrichedRecord] = {}
        self._selected: set[str] = set(selected_symbols)
        self._notifications: list[NotificationRecord] = []  # newest first
        self._errors: list[ErrorRecord] = []  # newest first
        self._notification_capacity = notification_capacity
        self._error_capacity = error_capacity
        self._market_status: MarketStatus | None = None
        self._throughput = throughput or ThroughputMonitor()
        self._total_updates = 0
        self._last_update_time: float | None = None
        self._lock = Lock()
        self._version: int = 0  # Monotonically increasing; bumped on every mutation

    # --- Mutations ---

    def ingest_tick(
        self,
        payload: Mapping[str, Any] | RawTick,
        now: float | None = None,
    ) -> EnrichedRecord | None:
        """Validate and store one price update. Returns the new EnrichedRecord.

        Invalid payloads leave the price maps untouched and append exactly one
        price-validation ErrorRecord; None is returned in that case.
        """
        try:
            tick = parse_tick(payload)
        except TickValidationError as e:
            symbol = payload.get("symbol") if isinstance(payload, Mapping) else None
            self.add_error(
                ErrorCode.PRICE_VALIDATION_ERROR,
                f"Invalid stock price data for symbol: {symbol}",
                context={"payload": payload, "reason": str(e)},
                error=e,
            )
            return None

        ts = time.time() if now is None else now
        try:
            with self._lock:
                record = enrich(tick, self._raw.get(tick.symbol), received_at=ts)
                self._raw[tick.symbol] = tick
                self._enriched[tick.symbol] = record
                self._total_updates += 1
                self._last_update_time = ts
                self._throughput.record(ts)
                self._version += 1
        except Exception as e:
            logger.exception("Failed to process price update for %s", tick.symbol)
            self.add_error(
                ErrorCode.UNKNOWN,
                "Failed to process stock price update",
                context={"symbol": tick.symbol},
                error=e,
            )
            return None

        logger.debug("Stock updated: %s = %s (%s%%)", tick.symbol, tick.price, tick.change_percent)
        return record

    def ingest_notification(
        self,
        payload: Mapping[str, Any] | NotificationRecord,
        now: float | None = None,
    ) -> NotificationRecord | None:
        """Prepend a notification, keeping at most ``notification_capacity``.

        Payloads without a type or message are recorded as parse errors.
        """
        if isinstance(payload, NotificationRecord):
            notification = payload
        else:
            try:
                notification = parse_notification(payload, received_at=now)
            except NotificationValidationError as e:
                self.add_error(
                    ErrorCode.MESSAGE_PARSE_ERROR,
                    "Invalid system notification received",
                    context={"payload": payload},
                    error=e,
                )
                return None

        with self._lock:
            self._notifications.insert(0, notification)
            del self._notifications[self._notification_capacity:]
            self._version += 1

        logger.info("System notification added: %s", notification.message)
        return notification

    def add_error(
        self,
        code: ErrorCode,
        message: str,
        context: Mapping[str, Any] | None = None,
        error: BaseException | None = None,
        now: float | None = None,
    ) -> ErrorRecord:
        """Prepend an ErrorRecord, keeping at most ``error_capacity``.

        Used for local validation failures and by the ConnectionManager for
        transport failures.
        """
        record = ErrorRecord(
            code=code,
            message=message,
            timestamp=time.time() if now is None else now,
            context=dict(context) if context is not None else None,
            error=error,
        )
        with self._lock:
            self._errors.insert(0, record)
            del self._errors[self._error_capacity:]
            self._version += 1

        logger.error("Market state error [%s]: %s", code.value, message)
        return record

    def toggle_symbol(self, symbol: str) -> bool:
        """Flip selection membership. Returns True if the symbol is now selected."""
        with self._lock:
            if symbol in self._selected:
                self._selected.discard(symbol)
                selected = False
            else:
                self._selected.add(symbol)
                selected = True
            self._version += 1
        logger.info("Symbol %s %s tracking", symbol, "added to" if selected else "removed from")
        return selected

    def update_market_status(self, status: MarketStatus) -> None:
        with self._lock:
            self._market_status = status
            self._version += 1
        logger.info("Market status updated: %s - %s", status.market, status.status)

    def clear_errors(self) -> None:
        with self._lock:
            self._errors.clear()
            self._version += 1

    def clear_notifications(self) -> None:
        with self._lock:
            self._notifications.clear()
            self._version += 1

    # --- Views ---

    def get(self, symbol: str) -> EnrichedRecord | None:
        """Latest enriched record for a symbol, or None if it never arrived."""
        with self._lock:
            return self._enriched.get(symbol)

    def get_raw(self, symbol: str) -> RawTick | None:
        with self._lock:
            return self._raw.get(symbol)

    def get_all(self) -> dict[str, EnrichedRecord]:
        """Snapshot of all enriched records. Returns a shallow copy."""
        with self._lock:
            return dict(self._enriched)

    def selected(self) -> list[EnrichedRecord]:
        """Enriched records for selected symbols, in arrival order."""
        with self._lock:
            return [r for s, r in self._enriched.items() if s in self._selected]

    def gainers(self) -> list[EnrichedRecord]:
        """Records with positive change, highest change percent first."""
        with self._lock:
            records = [r for r in self._enriched.values() if r.change > 0]
        return sorted(records, key=lambda r: r.change_percent, reverse=True)

    def losers(self) -> list[EnrichedRecord]:
        """Records with negative change, most negative change percent first."""
        with self._lock:
            records = [r for r in self._enriched.values() if r.change < 0]
        return sorted(records, key=lambda r: r.change_percent)

    def notifications(self) -> list[NotificationRecord]:
        with self._lock:
            return list(self._notifications)

    def active_notifications(
        self,
        now: float | None = None,
        window: float = NOTIFICATION_WINDOW,
    ) -> list[NotificationRecord]:
        """Notifications issued within the last ``window`` seconds of ``now``.

        A notification whose timestamp cannot be parsed is never active.
        """
        ts = time.time() if now is None else now
        with self._lock:
            return [
                n for n in self._notifications
                if n.issued_at is not None and ts - n.issued_at < window
            ]

    def errors(self) -> list[ErrorRecord]:
        with self._lock:
            return list(self._errors)

    def recent_errors(self, limit: int = RECENT_ERRORS_LIMIT) -> list[ErrorRecord]:
        """The ``limit`` most recent errors, newest first."""
        with self._lock:
            return self._errors[:limit]

    def performance_snapshot(self, now: float | None = None) -> PerformanceSnapshot:
        with self._lock:
            return PerformanceSnapshot(
                symbol_count=len(self._enriched),
                total_updates=self._total_updates,
                updates_per_second=self._throughput.rate(now),
                last_update_time=self._last_update_time,
            )

    @property
    def selected_symbols(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._selected)

    @property
    def market_status(self) -> MarketStatus | None:
        return self._market_status

    @property
    def version(self) -> int:
        """Current version counter. Useful for SSE change detection."""
        return self._version

    def __len__(self) -> int:
        with self._lock:
            return len(self._enriched)

    def __contains__(self, symbol: str) -> bool:
        with self._lock:
            return symbol in self._enriched
