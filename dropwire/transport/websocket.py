"""
WebSocket connection to the relay server.

Text frames carry JSON control messages, binary frames carry chunk frames.
The connection re-opens itself after a fixed interval whenever it drops.
"""

import asyncio
import json
import logging

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from dropwire.config import RECONNECT_INTERVAL, SERVER_URL
from dropwire.transfer.errors import TransportClosed

logger = logging.getLogger(__name__)


class ServerConnection:
    """Client side of the relay connection, implementing the Transport calls."""

    def __init__(
        self, url: str = SERVER_URL, reconnect_interval: float = RECONNECT_INTERVAL
    ) -> None:
        self.url = url
        self.reconnect_interval = reconnect_interval
        self._ws: ClientConnection | None = None
        self._stopping = False
        self._text_callbacks: list = []  # async fn(str)
        self._binary_callbacks: list = []  # async fn(bytes)
        self._connect_callbacks: list = []  # async fn()

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def on_text(self, callback) -> None:
        self._text_callbacks.append(callback)

    def on_binary(self, callback) -> None:
        self._binary_callbacks.append(callback)

    def on_connect(self, callback) -> None:
        """Register callback run after every (re)connect, e.g. to re-send JOIN."""
        self._connect_callbacks.append(callback)

    async def send_json(self, message: dict) -> None:
        await self._send(json.dumps(message))

    async def send_bytes(self, data: bytes) -> None:
        await self._send(data)

    async def _send(self, payload: str | bytes) -> None:
        ws = self._ws
        if ws is None:
            raise TransportClosed("Not connected to server")
        try:
            await ws.send(payload)
        except ConnectionClosed as e:
            raise TransportClosed(f"Connection closed: {e}") from e

    async def _call(self, callbacks: list, *args) -> None:
        for cb in callbacks:
            try:
                await cb(*args)
            except Exception as e:
                logger.error(f"Connection callback error: {e}", exc_info=True)

    async def run(self) -> None:
        """Connect, pump messages to callbacks and reconnect until stopped."""
        while not self._stopping:
            try:
                async with connect(self.url, max_size=None) as ws:
                    self._ws = ws
                    logger.info(f"Connected to {self.url}")
                    await self._call(self._connect_callbacks)
                    async for message in ws:
                        if isinstance(message, bytes):
                            await self._call(self._binary_callbacks, message)
                        else:
                            await self._call(self._text_callbacks, message)
                logger.info("Server closed the connection")
            except (OSError, WebSocketException) as e:
                logger.warning(f"Connection to {self.url} failed: {e}")
            finally:
                self._ws = None

            if self._stopping:
                break
            logger.info(f"Reconnecting in {self.reconnect_interval}s")
            await asyncio.sleep(self.reconnect_interval)

    async def stop(self) -> None:
        self._stopping = True
        ws = self._ws
        if ws is not None:
            await ws.close()
