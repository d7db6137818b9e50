"""Tests for StompWebSocketTransport."""

import asyncio
from http import HTTPStatus
from unittest.mock import MagicMock

import pytest
from websockets.asyncio.server import serve

from finstream.market.frames import Frame, FrameError, decode_frames, encode_frame
from finstream.market.stomp_transport import StompWebSocketTransport


def _transport(url: str = "ws://localhost:8082/stock-updates/websocket") -> StompWebSocketTransport:
    return StompWebSocketTransport(url, {"Authorization": "Bearer test-token"}, heartbeat=25.0)


class TestDispatch:
    """Frame dispatch without a socket."""

    def test_connected_frame_notifies(self):
        transport = _transport()
        transport.on_connect = MagicMock()
        transport._outbox = asyncio.Queue()

        transport._dispatch(Frame("CONNECTED", {"version": "1.2", "heart-beat": "10000,30000"}))

        assert transport.connected
        transport.on_connect.assert_called_once()
        assert transport._outgoing == 30.0  # max(ours, server wants)
        assert transport._incoming == 25.0  # max(ours, server sends)

    def test_heartbeat_disabled_when_server_sends_zero(self):
        transport = _transport()
        transport._dispatch(Frame("CONNECTED", {"heart-beat": "0,0"}))
        assert transport._outgoing == 0.0
        assert transport._incoming == 0.0

    def test_message_routed_to_subscription(self):
        transport = _transport()
        transport._outbox = asyncio.Queue()
        transport._dispatch(Frame("CONNECTED", {}))
        handler = MagicMock()
        sub_id = transport.subscribe("/topic/stocks/prices", handler)

        transport._dispatch(Frame("MESSAGE", {"subscription": sub_id}, body="{}"))
        transport._dispatch(Frame("MESSAGE", {"subscription": "unknown"}, body="ignored"))

        handler.assert_called_once_with("{}")
        queued = decode_frames(transport._outbox.get_nowait())[0]
        assert queued.command == "SUBSCRIBE"
        assert queued.headers["destination"] == "/topic/stocks/prices"

    def test_handler_exception_does_not_escape(self):
        transport = _transport()
        transport._outbox = asyncio.Queue()
        transport._dispatch(Frame("CONNECTED", {}))
        sub_id = transport.subscribe("/topic/x", MagicMock(side_effect=RuntimeError("boom")))
        transport._dispatch(Frame("MESSAGE", {"subscription": sub_id}, body="{}"))  # Should not raise

    def test_error_frame_notifies(self):
        transport = _transport()
        transport.on_error = MagicMock()
        transport._dispatch(Frame("ERROR", {"message": "Invalid JWT"}))
        transport.on_error.assert_called_once_with("Invalid JWT", None)

    def test_subscribe_before_connected_raises(self):
        with pytest.raises(RuntimeError):
            _transport().subscribe("/topic/x", MagicMock())

    def test_connect_frame_headers(self):
        frame = _transport()._connect_frame()
        assert frame.command == "CONNECT"
        assert frame.headers["Authorization"] == "Bearer test-token"
        assert frame.headers["heart-beat"] == "25000,25000"
        assert frame.headers["host"] == "localhost"

    def test_deactivate_is_idempotent(self):
        transport = _transport()
        transport.deactivate()
        transport.deactivate()  # Should not raise
        assert not transport.connected


@pytest.mark.asyncio
class TestAgainstLocalBroker:
    """End-to-end over a real WebSocket served on localhost."""

    async def test_connect_subscribe_receive_and_disconnect(self):
        received_connect = []

        async def broker(ws):
            received_connect.extend(decode_frames(await ws.recv()))
            await ws.send(encode_frame(Frame("CONNECTED", {"version": "1.2", "heart-beat": "0,0"})))
            (sub,) = decode_frames(await ws.recv())
            await ws.send(
                encode_frame(
                    Frame(
                        "MESSAGE",
                        {"subscription": sub.headers["id"], "destination": sub.headers["destination"], "message-id": "1"},
                        body='{"symbol": "AAPL"}',
                    )
                )
            )

        async with serve(broker, "127.0.0.1", 0, subprotocols=["v12.stomp"]) as server:
            port = next(iter(server.sockets)).getsockname()[1]
            transport = _transport(f"ws://127.0.0.1:{port}/stock-updates/websocket")
            messages = []
            got_message = asyncio.Event()
            disconnected = asyncio.Event()

            def on_message(body):
                messages.append(body)
                got_message.set()

            transport.on_connect = lambda headers: transport.subscribe("/topic/stocks/prices", on_message)
            transport.on_disconnect = disconnected.set
            transport.activate()

            await asyncio.wait_for(got_message.wait(), timeout=5)
            await asyncio.wait_for(disconnected.wait(), timeout=5)

        assert received_connect[0].command == "CONNECT"
        assert received_connect[0].headers["Authorization"] == "Bearer test-token"
        assert messages == ['{"symbol": "AAPL"}']
        assert not transport.connected

    async def test_malformed_frames_dropped_and_reported(self):
        """Test that undecodable data is reported and the next MESSAGE still arrives."""

        async def broker(ws):
            await ws.recv()
            await ws.send(encode_frame(Frame("CONNECTED", {"version": "1.2", "heart-beat": "0,0"})))
            (sub,) = decode_frames(await ws.recv())
            sub_id = sub.headers["id"]
            await ws.send(b"MESSAGE\nsubscription:" + sub_id.encode() + b"\n\n\xff\xfe\x00")
            await ws.send("MESSAGE\nk:\\x\n\n\x00")
            await ws.send(
                encode_frame(
                    Frame("MESSAGE", {"subscription": sub_id, "destination": "/topic/stocks/prices"}, body='{"symbol": "MSFT"}')
                )
            )
            await ws.wait_closed()

        async with serve(broker, "127.0.0.1", 0, subprotocols=["v12.stomp"]) as server:
            port = next(iter(server.sockets)).getsockname()[1]
            transport = _transport(f"ws://127.0.0.1:{port}/stock-updates/websocket")
            messages = []
            parse_errors = []
            got_message = asyncio.Event()

            def on_message(body):
                messages.append(body)
                got_message.set()

            transport.on_connect = lambda headers: transport.subscribe("/topic/stocks/prices", on_message)
            transport.on_parse_error = lambda raw, error: parse_errors.append((raw, error))
            transport.on_disconnect = MagicMock()
            transport.activate()

            await asyncio.wait_for(got_message.wait(), timeout=5)
            assert transport.connected
            transport.deactivate()

        assert messages == ['{"symbol": "MSFT"}']
        assert [type(error) for _, error in parse_errors] == [UnicodeDecodeError, FrameError]
        assert parse_errors[0][0].startswith("MESSAGE\nsubscription:")
        transport.on_disconnect.assert_not_called()

    async def test_writer_without_outbox_returns(self):
        """Test that the writer exits quietly when the transport was never activated."""
        ws = MagicMock()
        await _transport()._write_loop(ws)
        ws.send.assert_not_called()

    async def test_handshake_401_reported_as_error(self):
        def reject(connection, request):
            return connection.respond(HTTPStatus.UNAUTHORIZED, "Unauthorized\n")

        async def broker(ws):
            await ws.wait_closed()

        async with serve(broker, "127.0.0.1", 0, process_request=reject) as server:
            port = next(iter(server.sockets)).getsockname()[1]
            transport = _transport(f"ws://127.0.0.1:{port}/stock-updates/websocket")
            errors = []
            disconnected = asyncio.Event()
            transport.on_error = lambda message, error: errors.append(message)
            transport.on_disconnect = disconnected.set
            transport.activate()

            await asyncio.wait_for(disconnected.wait(), timeout=5)

        assert errors == ["WebSocket handshake rejected: HTTP 401"]

    async def test_deactivate_stays_silent(self):
        async def broker(ws):
            await ws.recv()
            await ws.send(encode_frame(Frame("CONNECTED", {"version": "1.2"})))
            await ws.wait_closed()

        async with serve(broker, "127.0.0.1", 0, subprotocols=["v12.stomp"]) as server:
            port = next(iter(server.sockets)).getsockname()[1]
            transport = _transport(f"ws://127.0.0.1:{port}/stock-updates/websocket")
            connected = asyncio.Event()
            transport.on_connect = lambda headers: connected.set()
            transport.on_disconnect = MagicMock()
            transport.activate()

            await asyncio.wait_for(connected.wait(), timeout=5)
            transport.deactivate()
            await asyncio.sleep(0.05)

        transport.on_disconnect.assert_not_called()
