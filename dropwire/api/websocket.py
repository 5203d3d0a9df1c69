"""Pushes transfer manager events to UI clients over WebSocket."""

import asyncio
import json
import logging
from typing import Callable

from fastapi import WebSocket

logger = logging.getLogger(__name__)


def session_snapshot(transfer_manager) -> dict:
    """Current users, pending offers and transfers for a freshly connected UI."""
    return {
        "username": transfer_manager.username,
        "users": transfer_manager.roster.peers(),
        "offers": [o.model_dump(by_alias=True) for o in transfer_manager.get_offers()],
        "transfers": [t.model_dump(mode="json") for t in transfer_manager.get_transfers()],
    }


class ConnectionManager:
    """
    UI clients subscribed to manager events.

    Each message is `{"event": <name>, "data": <payload>}`. A client that
    connects late first receives a `snapshot` event so it never has to
    replay history; after that it only sees live events.
    """

    def __init__(self, snapshot: Callable[[], dict] | None = None) -> None:
        self._clients: set[WebSocket] = set()
        self._lock = asyncio.Lock()
        self._snapshot = snapshot

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        if self._snapshot is not None:
            await websocket.send_text(_encode("snapshot", self._snapshot()))
        async with self._lock:
            self._clients.add(websocket)
        logger.info(f"UI client connected ({len(self._clients)} open)")

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._clients.discard(websocket)
        logger.info(f"UI client disconnected ({len(self._clients)} open)")

    async def broadcast(self, event: str, data: dict) -> None:
        message = _encode(event, data)
        async with self._lock:
            clients = list(self._clients)

        results = await asyncio.gather(
            *(ws.send_text(message) for ws in clients), return_exceptions=True
        )
        dead = [ws for ws, result in zip(clients, results) if isinstance(result, Exception)]
        if dead:
            async with self._lock:
                self._clients.difference_update(dead)
            logger.debug(f"Dropped {len(dead)} UI client(s) during {event}")

    async def handle_event(self, event_type: str, data: dict) -> None:
        """Callback for TransferManager.on_event()."""
        await self.broadcast(event_type, data)


def _encode(event: str, data: dict) -> str:
    return json.dumps({"event": event, "data": data})
