"""GBM-based simulated broadcaster for running without a backend."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

import numpy as np

from .config import HEARTBEAT_INTERVAL, NOTIFICATION_TOPIC, PRICE_TOPIC
from .interface import MessageHandler, PubSubTransport
from .seed_prices import (
    CROSS_SECTOR_CORR,
    DEFAULT_PARAMS,
    INDEPENDENT_TICKERS,
    SECTOR_CORR,
    SECTORS,
    SEED_PRICES,
    SIMULATOR_SOURCE,
    TICKER_PARAMS,
)

logger = logging.getLogger(__name__)


class GBMSimulator:
    """Correlated Geometric Brownian Motion over a trading session.

    Math:
        S(t+dt) = S(t) * exp((mu - sigma^2/2) * dt + sigma * sqrt(dt) * Z)

    Z is drawn from a multivariate normal via the Cholesky factor of the
    sector correlation matrix. Each ticker keeps its previous close (the
    seed price) so ``change`` / ``changePercent`` are session moves, and the
    running day high/low.
    """

    # 252 trading days * 6.5 hours/day * 3600 seconds/hour
    TRADING_SECONDS_PER_YEAR = 252 * 6.5 * 3600
    DEFAULT_DT = 0.5 / TRADING_SECONDS_PER_YEAR  # one 500ms tick

    def __init__(
        self,
        tickers: list[str],
        dt: float = DEFAULT_DT,
        event_probability: float = 0.001,
        seed: int | None = None,
    ) -> None:
        self._dt = dt
        self._event_prob = event_probability
        self._rng = np.random.default_rng(seed)
        self._tickers: list[str] = []
        self._close: dict[str, float] = {}
        self._price: dict[str, float] = {}
        self._high: dict[str, float] = {}
        self._low: dict[str, float] = {}
        self._cholesky: np.ndarray | None = None

        for ticker in tickers:
            if ticker not in self._price:
                self._tickers.append(ticker)
                start = SEED_PRICES.get(ticker) or float(self._rng.uniform(50.0, 300.0))
                self._close[ticker] = self._price[ticker] = start
                self._high[ticker] = self._low[ticker] = start
        self._cholesky = self._build_cholesky(self._tickers)

    @property
    def tickers(self) -> list[str]:
        return list(self._tickers)

    def get_price(self, ticker: str) -> float | None:
        return self._price.get(ticker)

    def step(self, now: float | None = None) -> tuple[list[dict[str, Any]], list[tuple[str, float]]]:
        """Advance one time step.

        Returns (tick payloads in wire format, shock events as (ticker, move)).
        """
        n = len(self._tickers)
        if n == 0:
            return [], []

        z = self._rng.standard_normal(n)
        if self._cholesky is not None:
            z = self._cholesky @ z

        ts = time.time() if now is None else now
        ticks: list[dict[str, Any]] = []
        events: list[tuple[str, float]] = []
        for i, ticker in enumerate(self._tickers):
            params = TICKER_PARAMS.get(ticker, DEFAULT_PARAMS)
            mu, sigma = params["mu"], params["sigma"]
            drift = (mu - 0.5 * sigma**2) * self._dt
            diffusion = sigma * math.sqrt(self._dt) * z[i]
            price = self._price[ticker] * math.exp(drift + diffusion)

            if self._rng.random() < self._event_prob:
                move = float(self._rng.uniform(0.02, 0.05)) * (1 if self._rng.random() < 0.5 else -1)
                price *= 1 + move
                events.append((ticker, move))

            self._price[ticker] = price
            self._high[ticker] = max(self._high[ticker], price)
            self._low[ticker] = min(self._low[ticker], price)
            ticks.append(self._payload(ticker, ts))

        return ticks, events

    def _payload(self, ticker: str, ts: float) -> dict[str, Any]:
        price = self._price[ticker]
        close = self._close[ticker]
        return {
            "symbol": ticker,
            "price": round(price, 2),
            "change": round(price - close, 2),
            "changePercent": round((price - close) / close * 100, 2),
            "dayHigh": round(self._high[ticker], 2),
            "dayLow": round(self._low[ticker], 2),
            "sourceTimestamp": str(int(ts * 1000)),
            "sourceId": SIMULATOR_SOURCE,
            "ingestTimestamp": datetime.fromtimestamp(ts, tz=timezone.utc).isoformat(),
        }

    @classmethod
    def _build_cholesky(cls, tickers: list[str]) -> np.ndarray | None:
        n = len(tickers)
        if n <= 1:
            return None
        corr = np.eye(n)
        for i in range(n):
            for j in range(i + 1, n):
                corr[i, j] = corr[j, i] = cls._pairwise_correlation(tickers[i], tickers[j])
        return np.linalg.cholesky(corr)

    @staticmethod
    def _pairwise_correlation(t1: str, t2: str) -> float:
        if t1 in INDEPENDENT_TICKERS or t2 in INDEPENDENT_TICKERS:
            return CROSS_SECTOR_CORR
        for sector, members in SECTORS.items():
            if t1 in members and t2 in members:
                return SECTOR_CORR[sector]
        return CROSS_SECTOR_CORR


class SimulatorTransport(PubSubTransport):
    """PubSubTransport that broadcasts simulated ticks instead of dialing a server.

    Mirrors the real broadcaster closely enough to exercise the whole
    pipeline: a bearer header is required, price frames go to PRICE_TOPIC,
    and shock events plus a session-open message go to NOTIFICATION_TOPIC.
    """

    def __init__(
        self,
        url: str,
        connect_headers: Mapping[str, str],
        heartbeat: float = HEARTBEAT_INTERVAL,
        update_interval: float = 0.5,
        event_probability: float = 0.001,
        tickers: list[str] | None = None,
    ) -> None:
        self._url = url
        self._headers = dict(connect_headers)
        self._interval = update_interval
        self._sim = GBMSimulator(
            tickers=list(tickers) if tickers is not None else list(SEED_PRICES),
            event_probability=event_probability,
        )
        self._handlers: dict[str, list[MessageHandler]] = {}
        self._task: asyncio.Task | None = None
        self._connected = False

    def activate(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run_loop(), name="simulator-loop")
        logger.info("Simulator transport started with %d tickers", len(self._sim.tickers))

    def subscribe(self, destination: str, handler: MessageHandler) -> str:
        if not self._connected:
            raise RuntimeError("Cannot subscribe before the transport is connected")
        handlers = self._handlers.setdefault(destination, [])
        handlers.append(handler)
        return f"sim-{destination}-{len(handlers)}"

    def deactivate(self) -> None:
        self._connected = False
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None
        self._handlers.clear()
        logger.info("Simulator transport stopped")

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def simulator(self) -> GBMSimulator:
        return self._sim

    async def _run_loop(self) -> None:
        """Handshake, then step the simulation and publish on every interval."""
        await asyncio.sleep(0)
        if not self._headers.get("Authorization", "").startswith("Bearer "):
            self._notify_error("401 Unauthorized: missing bearer token")
            self._notify_disconnect()
            self._task = None
            return

        self._connected = True
        self._notify_connect({"version": "1.2", "server": "finstream-simulator"})
        self._publish(NOTIFICATION_TOPIC, self._notification("MARKET_STATUS", "Simulated market session open", "info"))

        while True:
            try:
                ticks, events = self._sim.step()
                for tick in ticks:
                    self._publish(PRICE_TOPIC, tick)
                for ticker, move in events:
                    direction = "up" if move > 0 else "down"
                    self._publish(
                        NOTIFICATION_TOPIC,
                        self._notification("PRICE_ALERT", f"{ticker} moved {abs(move) * 100:.1f}% {direction}", "warning"),
                    )
            except Exception:
                logger.exception("Simulator step failed")
            await asyncio.sleep(self._interval)

    def _publish(self, destination: str, payload: dict[str, Any]) -> None:
        body = json.dumps(payload)
        for handler in list(self._handlers.get(destination, ())):
            handler(body)

    @staticmethod
    def _notification(kind: str, message: str, severity: str) -> dict[str, Any]:
        return {
            "type": kind,
            "message": message,
            "severity": severity,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
