"""Data models for market data, notifications and errors."""

from __future__ import annotations

import math
import time
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Trend(str, Enum):
    """Price direction versus the previous tick for the same symbol."""

    UP = "up"
    DOWN = "down"
    NEUTRAL = "neutral"
    UNKNOWN = "unknown"


class AnimationState(str, Enum):
    """Result of the most recent update; the consumer decides how long to show it."""

    IDLE = "idle"
    UPDATING = "updating"
    FLASH_GREEN = "flash-green"
    FLASH_RED = "flash-red"


class DisplayColor(str, Enum):
    GAIN = "gain"
    LOSS = "loss"
    NEUTRAL = "neutral"
    WARNING = "warning"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    RECONNECTING = "reconnecting"


class ErrorCode(str, Enum):
    TRANSPORT_CONNECTION_FAILED = "transport-connection-failed"
    TRANSPORT_AUTHENTICATION_FAILED = "transport-authentication-failed"
    MESSAGE_PARSE_ERROR = "message-parse-error"
    PRICE_VALIDATION_ERROR = "price-validation-error"
    NETWORK_ERROR = "network-error"
    CREDENTIAL_EXPIRED = "credential-expired"
    UNKNOWN = "unknown"

    @property
    def is_authentication(self) -> bool:
        """True for codes that call for a credential refresh."""
        return self in (ErrorCode.TRANSPORT_AUTHENTICATION_FAILED, ErrorCode.CREDENTIAL_EXPIRED)


NOTIFICATION_SEVERITIES = frozenset({"info", "warning", "error", "success"})
MARKET_STATES = frozenset({"OPEN", "CLOSED", "PRE_MARKET", "AFTER_HOURS", "HOLIDAY"})


class TickValidationError(ValueError):
    """Raised when an inbound price payload cannot become a RawTick."""


class NotificationValidationError(ValueError):
    """Raised when an inbound notification lacks its type or message."""


@dataclass(frozen=True, slots=True)
class RawTick:
    """One validated price update for a single symbol, as sent by the server."""

    symbol: str
    price: float
    change: float
    change_percent: float  # whole-number percent: 1.45 means 1.45%
    day_high: float | None = None
    day_low: float | None = None
    source_timestamp: str = ""
    source_id: str = ""
    ingest_timestamp: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the wire field names."""
        return {
            "symbol": self.symbol,
            "price": self.price,
            "change": self.change,
            "changePercent": self.change_percent,
            "dayHigh": self.day_high,
            "dayLow": self.day_low,
            "sourceTimestamp": self.source_timestamp,
            "sourceId": self.source_id,
            "ingestTimestamp": self.ingest_timestamp,
        }


@dataclass(frozen=True, slots=True)
class FormattedPrice:
    """Display strings for one enriched record."""

    price: str
    change: str
    change_percent: str
    high: str
    low: str
    last_updated: str = "Just now"

    def to_dict(self) -> dict[str, str]:
        return {
            "price": self.price,
            "change": self.change,
            "changePercent": self.change_percent,
            "high": self.high,
            "low": self.low,
            "lastUpdated": self.last_updated,
        }


@dataclass(frozen=True, slots=True)
class EnrichedRecord:
    """A RawTick plus the display metadata derived from it and its predecessor."""

    symbol: str
    price: float
    change: float
    change_percent: float
    trend: Trend
    animation_state: AnimationState
    display_color: DisplayColor
    formatted: FormattedPrice
    day_high: float | None = None
    day_low: float | None = None
    source_timestamp: str = ""
    source_id: str = ""
    ingest_timestamp: str = ""
    previous_price: float | None = None
    last_updated: float = field(default_factory=time.time)  # Unix seconds, local receipt

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price": self.price,
            "change": self.change,
            "changePercent": self.change_percent,
            "dayHigh": self.day_high,
            "dayLow": self.day_low,
            "sourceTimestamp": self.source_timestamp,
            "sourceId": self.source_id,
            "ingestTimestamp": self.ingest_timestamp,
            "previousPrice": self.previous_price,
            "trend": self.trend.value,
            "animationState": self.animation_state.value,
            "displayColor": self.display_color.value,
            "lastUpdated": self.last_updated,
            "formatted": self.formatted.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class NotificationRecord:
    """A system notification pushed by the broadcasting service."""

    type: str
    message: str
    severity: str = "info"
    timestamp: str = ""  # as sent by the server
    issued_at: float | None = None  # parsed from timestamp, Unix seconds
    received_at: float = field(default_factory=time.time)
    action: Mapping[str, Any] | None = None
    context: Mapping[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "message": self.message,
            "severity": self.severity,
            "timestamp": self.timestamp,
            "issuedAt": self.issued_at,
            "receivedAt": self.received_at,
            "action": _json_safe(self.action) if self.action is not None else None,
            "context": _json_safe(self.context) if self.context is not None else None,
        }


@dataclass(frozen=True, slots=True)
class ErrorRecord:
    code: ErrorCode
    message: str
    timestamp: float = field(default_factory=time.time)
    context: Mapping[str, Any] | None = None
    error: BaseException | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp,
            "context": _json_safe(self.context) if self.context is not None else None,
            "error": repr(self.error) if self.error is not None else None,
        }


@dataclass(frozen=True, slots=True)
class MarketStatus:
    """Trading-hours state for one market, supplied by the server."""

    market: str
    status: str
    timezone: str = "America/New_York"
    next_open: str | None = None
    next_close: str | None = None

    def __post_init__(self) -> None:
        if self.status not in MARKET_STATES:
            raise ValueError(f"Unknown market status: {self.status!r}")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class PerformanceSnapshot:
    symbol_count: int
    total_updates: int
    updates_per_second: float
    last_update_time: float | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class ConnectionStats:
    """Connection health combined with the store's throughput figures."""

    status: ConnectionState
    reconnect_attempts: int
    connected_symbols: int
    total_updates: int
    updates_per_second: float
    connection_duration: float  # seconds since connected, 0 when not connected
    last_error: str | None = None
    connected_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


# --- Parsing / validation ---

def _json_safe(value: Any) -> Any:
    """Copy of a decoded payload with NaN and Infinity replaced by their names.

    Rejected frames are kept verbatim in error context, and strict JSON has
    no literal for non-finite numbers.
    """
    if isinstance(value, float) and not math.isfinite(value):
        return str(value)
    if isinstance(value, Mapping):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


def _pick(payload: Mapping[str, Any], *keys: str) -> Any:
    """First present value among alternative wire names."""
    for key in keys:
        if payload.get(key) is not None:
            return payload[key]
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _finite(payload: Mapping[str, Any], key: str) -> float:
    value = payload.get(key)
    if not _is_number(value):
        raise TickValidationError(f"{key} must be a number, got {value!r}")
    number = float(value)
    if not math.isfinite(number):
        raise TickValidationError(f"{key} must be finite, got {value!r}")
    return number


def _optional_finite(value: Any) -> float | None:
    if not _is_number(value):
        return None
    number = float(value)
    return number if math.isfinite(number) else None


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        # Jackson may serialize LocalDateTime as [y, m, d, h, m, s, ...]
        return ",".join(str(part) for part in value)
    return str(value)


def parse_tick(payload: Mapping[str, Any] | RawTick) -> RawTick:
    """Validate an inbound price payload and build a RawTick.

    Accepts both the canonical keys (dayHigh, sourceTimestamp, ...) and the
    broadcaster's record names (high, timestamp, source, processedAt).
    Raises TickValidationError when the symbol is missing or price, change
    or changePercent are not finite numbers, or when the price is negative.
    """
    if isinstance(payload, RawTick):
        payload = payload.to_dict()
    if not isinstance(payload, Mapping):
        raise TickValidationError(f"Price payload must be an object, got {type(payload).__name__}")

    symbol = payload.get("symbol")
    if not isinstance(symbol, str) or not symbol.strip():
        raise TickValidationError(f"symbol must be a non-empty string, got {symbol!r}")

    price = _finite(payload, "price")
    if price < 0:
        raise TickValidationError(f"price must be non-negative, got {price}")

    return RawTick(
        symbol=symbol.strip(),
        price=price,
        change=_finite(payload, "change"),
        change_percent=_finite(payload, "changePercent"),
        day_high=_optional_finite(_pick(payload, "dayHigh", "high")),
        day_low=_optional_finite(_pick(payload, "dayLow", "low")),
        source_timestamp=_text(_pick(payload, "sourceTimestamp", "timestamp")),
        source_id=_text(_pick(payload, "sourceId", "source")),
        ingest_timestamp=_text(_pick(payload, "ingestTimestamp", "processedAt")),
    )


def parse_timestamp(value: Any) -> float | None:
    """Best-effort conversion of a server timestamp to Unix seconds.

    Numbers are epoch milliseconds; strings are ISO-8601 (naive values are
    taken as local time). Anything else yields None.
    """
    if _is_number(value):
        return float(value) / 1000.0
    if isinstance(value, str) and value.strip():
        try:
            return datetime.fromisoformat(value.strip()).timestamp()
        except ValueError:
            return None
    return None


def parse_notification(payload: Mapping[str, Any], received_at: float | None = None) -> NotificationRecord:
    """Validate an inbound notification payload.

    Only ``type`` and ``message`` are required. Unknown severities fall back
    to ``info``; keys outside the known shape are kept as ``context``.
    """
    if not isinstance(payload, Mapping):
        raise NotificationValidationError(
            f"Notification payload must be an object, got {type(payload).__name__}"
        )
    kind = payload.get("type")
    message = payload.get("message")
    if not isinstance(kind, str) or not kind:
        raise NotificationValidationError("Notification is missing its type")
    if not isinstance(message, str) or not message:
        raise NotificationValidationError("Notification is missing its message")

    severity = payload.get("severity")
    if severity not in NOTIFICATION_SEVERITIES:
        severity = "info"

    action = payload.get("action")
    extra = {k: v for k, v in payload.items() if k not in ("type", "message", "severity", "timestamp", "action")}
    raw_ts = payload.get("timestamp")

    return NotificationRecord(
        type=kind,
        message=message,
        severity=severity,
        timestamp=_text(raw_ts),
        issued_at=parse_timestamp(raw_ts),
        received_at=received_at if received_at is not None else time.time(),
        action=dict(action) if isinstance(action, Mapping) else None,
        context=extra or None,
    )
