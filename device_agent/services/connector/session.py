"""
Agent Connector - Transport Session

Owns one physical WebSocket connection. Any I/O failure is surfaced as a
TransportError; the session does not retry on its own.
"""

import asyncio
import logging
from enum import Enum
from typing import Dict, Optional, Union

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed, InvalidURI, WebSocketException

from ...errors import ConnectError, ReadError, WriteError

logger = logging.getLogger(__name__)

USER_AGENT = "DeviceAgent/1.0"
MAX_FRAME_SIZE = 16 * 2**20  # screenshots travel as base64 text frames


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


class TransportSession:
    """
    One WebSocket connection to the orchestration server.

    Guarantees:
    - frames are delivered in send order
    - ``receive`` returns exactly one complete frame per call
    - after ``close`` every pending or later operation fails fast
    """

    def __init__(self, url: str, timeout: float = 10.0, headers: Optional[Dict[str, str]] = None):
        self.url = url
        self.timeout = timeout
        self.headers = dict(headers or {})
        self.state = SessionState.DISCONNECTED
        self._ws: Optional[ClientConnection] = None

    @classmethod
    async def open(cls, url: str, timeout: float = 10.0) -> "TransportSession":
        """
        Connect and return a live session.

        Raises:
            ConnectError: If the handshake fails or times out
        """
        session = cls(url, timeout)
        await session.connect()
        return session

    async def connect(self) -> None:
        self.state = SessionState.CONNECTING
        try:
            self._ws = await websockets.connect(
                self.url,
                additional_headers=self.headers or None,
                user_agent_header=USER_AGENT,
                open_timeout=self.timeout,
                # Liveness is driven by the application-level ping envelope
                ping_interval=None,
                close_timeout=5,
                max_size=MAX_FRAME_SIZE,
            )
        except (OSError, asyncio.TimeoutError, InvalidURI, WebSocketException) as e:
            self.state = SessionState.CLOSED
            raise ConnectError(f"WebSocket connection to {self.url} failed: {e}") from e

        self.state = SessionState.CONNECTED
        logger.info(f"Connected to server: {self.url}")

    @property
    def is_open(self) -> bool:
        return self.state == SessionState.CONNECTED and self._ws is not None

    async def send(self, data: Union[bytes, str]) -> None:
        """
        Send one frame as a text message.

        Raises:
            WriteError: If the session is closed or the write fails
        """
        if not self.is_open:
            raise WriteError("Session is closed")
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        try:
            await self._ws.send(data)
        except (ConnectionClosed, OSError) as e:
            self.state = SessionState.CLOSED
            raise WriteError(f"Write failed: {e}") from e

    async def receive(self) -> Union[bytes, str]:
        """
        Block until the next frame arrives.

        Raises:
            ReadError: If the session is closed or the read fails
        """
        if not self.is_open:
            raise ReadError("Session is closed")
        try:
            return await self._ws.recv()
        except ConnectionClosed as e:
            self.state = SessionState.CLOSED
            raise ReadError(f"Connection closed: {e}") from e
        except OSError as e:
            self.state = SessionState.CLOSED
            raise ReadError(f"Read failed: {e}") from e

    async def close(self) -> None:
        if self.state == SessionState.CLOSED and self._ws is None:
            return
        self.state = SessionState.CLOSED
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.warning(f"Error closing WebSocket: {e}")


__all__ = ["SessionState", "TransportSession"]
