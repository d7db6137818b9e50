"""Wires the store and connection manager into one start/stop lifecycle."""

from __future__ import annotations

import asyncio
import logging

from .config import PERFORMANCE_LOG_INTERVAL
from .connection import ConnectionManager
from .store import MarketStateStore

logger = logging.getLogger(__name__)


class MarketDataService:
    """Runs the ConnectionManager and periodically logs throughput.

    Lifecycle:
        service = create_market_data_service()
        await service.start()
        # ... readers use service.store / service.connection ...
        await service.stop()
    """

    def __init__(
        self,
        store: MarketStateStore,
        connection: ConnectionManager,
        log_interval: float = PERFORMANCE_LOG_INTERVAL,
    ) -> None:
        self._store = store
        self._connection = connection
        self._log_interval = log_interval
        self._task: asyncio.Task | None = None

    @property
    def store(self) -> MarketStateStore:
        return self._store

    @property
    def connection(self) -> ConnectionManager:
        return self._connection

    async def start(self) -> None:
        self._connection.connect()
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._log_loop(), name="performance-log")
        logger.info("Market data service started")

    async def stop(self) -> None:
        """Disconnect and stop the log loop. Safe to call multiple times."""
        self._connection.disconnect()
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("Market data service stopped")

    def log_performance(self) -> None:
        stats = self._connection.stats()
        logger.info(
            "Market state performance: status=%s symbols=%d updates=%d rate=%.2f/s errors=%d",
            stats.status.value,
            stats.connected_symbols,
            stats.total_updates,
            stats.updates_per_second,
            len(self._store.errors()),
        )

    async def _log_loop(self) -> None:
        while True:
            await asyncio.sleep(self._log_interval)
            try:
                self.log_performance()
            except Exception:
                logger.exception("Performance logging failed")
