"""Market data subsystem for the FinStream client.

Public API:
    RawTick / EnrichedRecord      - Immutable price records (raw and display-ready)
    MarketStateStore              - In-memory store and read-only views
    ConnectionManager             - Transport lifecycle with backoff reconnection
    PubSubTransport               - Abstract interface for transports
    CredentialProvider            - Abstract bearer-token source
    MarketDataService             - Start/stop lifecycle around the above
    create_market_data_service    - Factory that selects STOMP or simulator
    create_stream_router          - FastAPI router factory for SSE/snapshot endpoints
"""

from .connection import ConnectionManager
from .credentials import CredentialProvider, EnvCredentialProvider, StaticCredentialProvider
from .factory import create_market_data_service, create_transport_factory
from .interface import PubSubTransport, TransportFactory
from .models import (
    AnimationState,
    ConnectionState,
    DisplayColor,
    EnrichedRecord,
    ErrorCode,
    ErrorRecord,
    MarketStatus,
    NotificationRecord,
    RawTick,
    Trend,
)
from .service import MarketDataService
from .store import MarketStateStore
from .stream import create_stream_router

__all__ = [
    "AnimationState",
    "ConnectionManager",
    "ConnectionState",
    "CredentialProvider",
    "DisplayColor",
    "EnrichedRecord",
    "EnvCredentialProvider",
    "ErrorCode",
    "ErrorRecord",
    "MarketDataService",
    "MarketStateStore",
    "MarketStatus",
    "NotificationRecord",
    "PubSubTransport",
    "RawTick",
    "StaticCredentialProvider",
    "TransportFactory",
    "Trend",
    "create_market_data_service",
    "create_stream_router",
    "create_transport_factory",
]
