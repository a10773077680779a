"""
Websocket channel for the realtime transport.

WHAT: Thin async channel (send/recv/close) over a websockets client connection
WHY: The transport session only needs three operations and a single error type
HOW: websockets.connect with an open timeout; library errors become TransportError
"""

import asyncio
from typing import Awaitable, Callable, Protocol

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from ..core.config import settings
from ..utils.exceptions import TransportError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class RealtimeChannel(Protocol):
    """Protocol for an open realtime connection."""

    async def send(self, data: str) -> None:
        """Send one text frame. Raises TransportError when the connection is gone."""
        ...

    async def recv(self) -> str:
        """Receive one text frame. Raises TransportError on close or error."""
        ...

    async def close(self) -> None:
        """Close the connection; safe to call more than once."""
        ...


Connector = Callable[[str], Awaitable[RealtimeChannel]]


class WebSocketChannel:
    """RealtimeChannel backed by a websockets client connection."""

    def __init__(self, connection):
        self._ws = connection

    async def send(self, data: str) -> None:
        try:
            await self._ws.send(data)
        except ConnectionClosed as e:
            raise TransportError(f"Websocket closed during send (code={e.code})") from e

    async def recv(self) -> str:
        try:
            data = await self._ws.recv()
        except ConnectionClosed as e:
            raise TransportError(f"Websocket closed (code={e.code})") from e
        if isinstance(data, bytes):
            return data.decode("utf-8", errors="replace")
        return data

    async def close(self) -> None:
        await self._ws.close()


async def connect_websocket(url: str) -> WebSocketChannel:
    """
    Open a websocket to the realtime peer.

    Raises:
        TransportError: connection refused, handshake failed, or timed out
    """
    try:
        connection = await websockets.connect(url, open_timeout=settings.CONNECT_TIMEOUT_SECONDS)
    except (OSError, InvalidURI, InvalidHandshake, asyncio.TimeoutError) as e:
        logger.warning(f"Websocket connect to {url} failed: {e}")
        raise TransportError(f"Could not connect to {url}: {e}") from e
    logger.info(f"Websocket connected to {url}")
    return WebSocketChannel(connection)
