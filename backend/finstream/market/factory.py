"""Factory for transports and the wired market data service."""

from __future__ import annotations

import logging
import os

from .config import DEFAULT_WS_URL
from .connection import ConnectionManager
from .credentials import CredentialProvider, EnvCredentialProvider, StaticCredentialProvider
from .interface import TransportFactory
from .service import MarketDataService
from .store import MarketStateStore

logger = logging.getLogger(__name__)

WS_URL_ENV = "FINSTREAM_WS_URL"

# The simulator only checks that a bearer header is present
SIMULATOR_TOKEN = "simulator-token"


def create_transport_factory() -> TransportFactory:
    """Pick the transport implementation based on environment variables.

    - FINSTREAM_WS_URL set and non-empty → StompWebSocketTransport (real broadcaster)
    - Otherwise → SimulatorTransport (GBM simulation)
    """
    if os.environ.get(WS_URL_ENV, "").strip():
        from .stomp_transport import StompWebSocketTransport

        logger.info("Market data transport: STOMP over WebSocket")
        return StompWebSocketTransport
    else:
        from .simulator import SimulatorTransport

        logger.info("Market data transport: GBM Simulator")
        return SimulatorTransport


def create_market_data_service(
    credentials: CredentialProvider | None = None,
    store: MarketStateStore | None = None,
) -> MarketDataService:
    """Build an unstarted MarketDataService. Caller must await service.start().

    Without explicit credentials the STOMP path reads FINSTREAM_ACCESS_TOKEN
    through EnvCredentialProvider; the simulator path uses that token when
    set and a fixed placeholder otherwise, so a bare local run connects.
    """
    ws_url = os.environ.get(WS_URL_ENV, "").strip()
    url = ws_url or DEFAULT_WS_URL
    if credentials is None:
        credentials = EnvCredentialProvider()
        if not ws_url and not credentials.is_authenticated():
            logger.info("No access token set; using the simulator placeholder token")
            credentials = StaticCredentialProvider(SIMULATOR_TOKEN)
    store = store if store is not None else MarketStateStore()
    connection = ConnectionManager(
        store=store,
        credentials=credentials,
        transport_factory=create_transport_factory(),
        url=url,
    )
    return MarketDataService(store=store, connection=connection)
