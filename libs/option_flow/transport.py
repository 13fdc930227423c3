"""
Stream transport.

The lifecycle manager only talks to the StreamTransport protocol, so tests
can drive it with in-memory fakes. WebSocketTransport is the production
implementation on top of the ``websockets`` client.

The library's own keepalive is disabled: liveness pinging is owned by the
lifecycle manager, which needs ping failures to follow the same recovery
path as read failures.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Protocol

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidStatus, InvalidURI

from libs.option_flow.exceptions import AuthRejectedError, TransportFailureError

logger = logging.getLogger(__name__)

AUTH_REJECT_STATUSES = frozenset({401, 403})


class StreamTransport(Protocol):
    """One open duplex connection."""

    async def recv(self) -> str | bytes:
        """Wait for the next message. Raises TransportFailureError when the connection drops."""
        ...

    async def ping(self) -> None:
        """Send a liveness ping and wait for its answer. Raises TransportFailureError."""
        ...

    async def close(self) -> None:
        """Close the connection. Never raises."""
        ...


TransportFactory = Callable[[str, Mapping[str, str]], Awaitable[StreamTransport]]


class WebSocketTransport:
    """
    StreamTransport backed by a ``websockets`` client connection.

    Example:
        >>> transport = await WebSocketTransport.open(
        ...     "wss://feed.example.com/analyze?date=2025-01-02&ticker=AAPL",
        ...     {"Authorization": "Bearer <session>"},
        ... )
        >>> message = await transport.recv()
    """

    OPEN_TIMEOUT = 10.0  # seconds
    PONG_TIMEOUT = 10.0  # seconds
    CLOSE_TIMEOUT = 5.0  # seconds
    MAX_MESSAGE_SIZE = 4 * 1024 * 1024

    def __init__(self, connection: websockets.ClientConnection) -> None:
        self._connection = connection

    @classmethod
    async def open(cls, url: str, headers: Mapping[str, str]) -> "WebSocketTransport":
        """
        Open a connection and complete the WebSocket handshake.

        Raises:
            AuthRejectedError: If the server answers the handshake with 401/403
            TransportFailureError: For any other failure to connect
        """
        try:
            connection = await websockets.connect(
                url,
                additional_headers=dict(headers),
                ping_interval=None,
                open_timeout=cls.OPEN_TIMEOUT,
                close_timeout=cls.CLOSE_TIMEOUT,
                max_size=cls.MAX_MESSAGE_SIZE,
            )
        except InvalidStatus as e:
            status_code = e.response.status_code
            if status_code in AUTH_REJECT_STATUSES:
                raise AuthRejectedError(f"Handshake rejected with HTTP {status_code}") from e
            raise TransportFailureError(f"Handshake rejected with HTTP {status_code}") from e
        except InvalidURI as e:
            raise TransportFailureError(f"Invalid stream URL: {e}") from e
        except (InvalidHandshake, OSError, TimeoutError) as e:
            raise TransportFailureError(f"Connection failed: {e}") from e

        return cls(connection)

    async def recv(self) -> str | bytes:
        try:
            return await self._connection.recv()
        except ConnectionClosed as e:
            raise TransportFailureError(f"Connection closed: {e}") from e
        except OSError as e:
            raise TransportFailureError(f"Read failed: {e}") from e

    async def ping(self) -> None:
        try:
            pong_waiter = await self._connection.ping()
            await asyncio.wait_for(pong_waiter, timeout=self.PONG_TIMEOUT)
        except ConnectionClosed as e:
            raise TransportFailureError(f"Connection closed during ping: {e}") from e
        except TimeoutError as e:
            raise TransportFailureError("Ping timed out") from e
        except OSError as e:
            raise TransportFailureError(f"Ping failed: {e}") from e

    async def close(self) -> None:
        try:
            await self._connection.close()
        except (ConnectionClosed, OSError) as e:
            logger.debug(f"Ignoring error while closing WebSocket: {e}")


async def open_websocket(url: str, headers: Mapping[str, str]) -> StreamTransport:
    """Default TransportFactory."""
    return await WebSocketTransport.open(url, headers)
