"""STOMP-over-WebSocket transport for the Broadcasting Service."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from urllib.parse import urlparse

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidStatus, WebSocketException

from .config import HEARTBEAT_INTERVAL
from .frames import EOL, Frame, FrameError, decode_frames, encode_frame, format_heartbeat, parse_heartbeat
from .interface import MessageHandler, PubSubTransport

logger = logging.getLogger(__name__)


class StompWebSocketTransport(PubSubTransport):
    """PubSubTransport speaking STOMP 1.2 over a single WebSocket.

    One background task owns the socket: it sends CONNECT with the supplied
    headers, dispatches inbound frames in order, and a writer task drains the
    outbound queue and emits heart-beats. Nothing here retries; reconnection
    belongs to the ConnectionManager.
    """

    def __init__(
        self,
        url: str,
        connect_headers: Mapping[str, str],
        heartbeat: float = HEARTBEAT_INTERVAL,
        open_timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._headers = dict(connect_headers)
        self._heartbeat = heartbeat
        self._open_timeout = open_timeout
        self._task: asyncio.Task | None = None
        self._outbox: asyncio.Queue[str] | None = None
        self._subscriptions: dict[str, MessageHandler] = {}
        self._next_sub_id = 0
        self._outgoing = 0.0  # negotiated seconds between our heart-beats
        self._incoming = 0.0  # negotiated seconds between server heart-beats
        self._active = False
        self._connected = False

    def activate(self) -> None:
        if self._active:
            return
        self._active = True
        self._outbox = asyncio.Queue()
        self._task = asyncio.create_task(self._run(), name="stomp-transport")
        logger.info("STOMP connection initiated to %s", self._url)

    def subscribe(self, destination: str, handler: MessageHandler) -> str:
        if not self._connected or self._outbox is None:
            raise RuntimeError("Cannot subscribe before the transport is connected")
        sub_id = f"sub-{self._next_sub_id}"
        self._next_sub_id += 1
        self._subscriptions[sub_id] = handler
        frame = Frame("SUBSCRIBE", {"id": sub_id, "destination": destination, "ack": "auto"})
        self._outbox.put_nowait(encode_frame(frame))
        logger.debug("Subscribed %s to %s", sub_id, destination)
        return sub_id

    def deactivate(self) -> None:
        self._active = False
        self._connected = False
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None
        self._subscriptions.clear()

    @property
    def connected(self) -> bool:
        return self._connected

    # --- Internal ---

    async def _run(self) -> None:
        try:
            async with connect(
                self._url,
                subprotocols=["v12.stomp"],
                ping_interval=None,  # STOMP heart-beats replace WebSocket pings
                open_timeout=self._open_timeout,
            ) as ws:
                await ws.send(encode_frame(self._connect_frame()))
                writer = asyncio.create_task(self._write_loop(ws), name="stomp-writer")
                try:
                    await self._read_loop(ws)
                finally:
                    writer.cancel()
        except InvalidStatus as e:
            status = e.response.status_code
            self._notify_error(f"WebSocket handshake rejected: HTTP {status}", e)
        except ConnectionClosed as e:
            logger.info("STOMP connection closed: %s", e)
        except (OSError, TimeoutError, WebSocketException) as e:
            self._notify_error(f"WebSocket connection error: {e}", e)
        finally:
            self._connected = False
            # deactivate() clears _active first, so a requested teardown stays silent
            if self._active:
                self._active = False
                self._notify_disconnect()

    def _connect_frame(self) -> Frame:
        headers = {
            "accept-version": "1.2",
            "host": urlparse(self._url).hostname or "localhost",
            "heart-beat": format_heartbeat(self._heartbeat, self._heartbeat),
        }
        headers.update(self._headers)
        return Frame("CONNECT", headers)

    async def _read_loop(self, ws: ClientConnection) -> None:
        while True:
            timeout = self._incoming * 2 if self._incoming else None
            try:
                message = await asyncio.wait_for(ws.recv(), timeout)
            except TimeoutError:
                self._notify_error("No heart-beat received from server - network connection lost")
                return

            try:
                text = message.decode("utf-8") if isinstance(message, bytes) else message
                frames = decode_frames(text)
            except (UnicodeDecodeError, FrameError) as e:
                logger.warning("Dropping malformed STOMP data: %s", e)
                raw = message.decode("utf-8", errors="replace") if isinstance(message, bytes) else message
                self._notify_parse_error(raw, e)
                continue

            for frame in frames:
                self._dispatch(frame)
                if frame.command == "ERROR":
                    return

    def _dispatch(self, frame: Frame) -> None:
        if frame.command == "CONNECTED":
            self._negotiate_heartbeat(frame.headers.get("heart-beat"))
            self._connected = True
            logger.info("STOMP session established (server %s)", frame.headers.get("server", "unknown"))
            self._notify_connect(frame.headers)
        elif frame.command == "MESSAGE":
            handler = self._subscriptions.get(frame.headers.get("subscription", ""))
            if handler is None:
                logger.debug("MESSAGE for unknown subscription: %s", frame.headers)
                return
            try:
                handler(frame.body)
            except Exception:
                logger.exception("Subscription handler failed for %s", frame.headers.get("destination"))
        elif frame.command == "ERROR":
            message = frame.headers.get("message") or frame.body.strip() or "STOMP error frame"
            self._notify_error(message)
        elif frame.command != "RECEIPT":
            logger.debug("Ignoring STOMP frame %s", frame.command)

    def _negotiate_heartbeat(self, header: str | None) -> None:
        try:
            server_out, server_in = parse_heartbeat(header)
        except FrameError:
            logger.warning("Server sent invalid heart-beat header %r; disabling heart-beats", header)
            server_out = server_in = 0.0
        ours = self._heartbeat
        self._outgoing = max(ours, server_in) if ours and server_in else 0.0
        self._incoming = max(ours, server_out) if ours and server_out else 0.0

    async def _write_loop(self, ws: ClientConnection) -> None:
        if self._outbox is None:
            return
        try:
            while True:
                timeout = self._outgoing or None
                try:
                    data = await asyncio.wait_for(self._outbox.get(), timeout)
                except TimeoutError:
                    data = EOL
                await ws.send(data)
        except ConnectionClosed:
            logger.debug("STOMP writer stopped: connection closed")
