"""Abstract interface for publish/subscribe transports."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping

MessageHandler = Callable[[str], None]
ConnectHandler = Callable[[Mapping[str, str]], None]
ErrorHandler = Callable[[str, "BaseException | None"], None]
DisconnectHandler = Callable[[], None]
ParseErrorHandler = Callable[[str, BaseException], None]


class PubSubTransport(ABC):
    """Contract for message-oriented transports (STOMP over WebSocket, simulator).

    The ConnectionManager builds one transport per connect attempt through a
    TransportFactory, assigns the lifecycle callbacks, then calls activate().
    Undecodable inbound data goes to on_parse_error and never ends the
    connection. Callbacks and message handlers are invoked on the event loop,
    one at a time, in arrival order.

    Lifecycle:
        transport = factory(url, {"Authorization": "Bearer ..."}, 25.0)
        transport.on_connect = ...
        transport.on_error = ...
        transport.on_disconnect = ...
        transport.activate()
        # ... on_connect fires ...
        transport.subscribe("/topic/stocks/prices", handler)
        # ... shutting down ...
        transport.deactivate()
    """

    on_connect: ConnectHandler | None = None
    on_error: ErrorHandler | None = None
    on_disconnect: DisconnectHandler | None = None
    on_parse_error: ParseErrorHandler | None = None

    @abstractmethod
    def activate(self) -> None:
        """Start connecting in the background and return immediately.

        Requires a running event loop. Outcomes are reported through
        on_connect / on_error / on_disconnect, never raised.
        """

    @abstractmethod
    def subscribe(self, destination: str, handler: MessageHandler) -> str:
        """Route message bodies sent to ``destination`` to ``handler``.

        Only valid after on_connect has fired. Returns the subscription id.
        """

    @abstractmethod
    def deactivate(self) -> None:
        """Tear down the connection. Safe to call multiple times.

        A deactivated transport does not invoke on_disconnect.
        """

    @property
    @abstractmethod
    def connected(self) -> bool:
        """True between the connect acknowledgement and the connection closing."""

    # --- Helpers for implementations ---

    def _notify_connect(self, headers: Mapping[str, str]) -> None:
        if self.on_connect is not None:
            self.on_connect(headers)

    def _notify_error(self, message: str, error: BaseException | None = None) -> None:
        if self.on_error is not None:
            self.on_error(message, error)

    def _notify_disconnect(self) -> None:
        if self.on_disconnect is not None:
            self.on_disconnect()

    def _notify_parse_error(self, raw: str, error: BaseException) -> None:
        """Report an inbound frame that could not be decoded and was dropped."""
        if self.on_parse_error is not None:
            self.on_parse_error(raw, error)


TransportFactory = Callable[[str, Mapping[str, str], float], PubSubTransport]
"""Builds an unactivated transport from (url, connect_headers, heartbeat_seconds)."""
