"""
Global test fixtures for Dropwire tests
"""
import asyncio
import json
import math
import os
import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest

from dropwire.transfer.errors import TransportClosed
from dropwire.transfer.frame import decode_frame
from dropwire.transfer.manager import TransferManager
from dropwire.transfer.messages import parse_client_message


class RecordingTransport:
    """Transport that only records what the engine sends."""

    def __init__(self):
        self.sent_json: list[dict] = []
        self.sent_bytes: list[bytes] = []
        self.closed = False

    async def send_json(self, message: dict) -> None:
        if self.closed:
            raise TransportClosed("Not connected to server")
        self.sent_json.append(message)

    async def send_bytes(self, data: bytes) -> None:
        if self.closed:
            raise TransportClosed("Not connected to server")
        self.sent_bytes.append(data)

    def of_type(self, msg_type: str) -> list[dict]:
        return [m for m in self.sent_json if m["type"] == msg_type]


class RelayEndpoint:
    """One client's connection to the in-memory relay."""

    def __init__(self, relay: "Relay"):
        self._relay = relay
        self.username = ""
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.task: asyncio.Task | None = None

    async def send_json(self, message: dict) -> None:
        # Round-trip through JSON like a real text frame
        await self._relay.client_text(self, json.dumps(message))

    async def send_bytes(self, data: bytes) -> None:
        await self._relay.client_binary(self, data)


class Relay:
    """
    In-memory stand-in for the relay server.

    Messages are queued per client and drained by one pump task per
    client, so each manager handles its inbound traffic one at a time.
    """

    def __init__(self, chunk_size: int = 65536, max_file_size: int = 100 * 1024 * 1024):
        self.chunk_size = chunk_size
        self.max_file_size = max_file_size
        self.clients: dict[str, RelayEndpoint] = {}
        self.transfers: dict[str, dict] = {}

    def endpoint(self) -> RelayEndpoint:
        return RelayEndpoint(self)

    async def attach(self, endpoint: RelayEndpoint, manager: TransferManager, username: str):
        async def pump():
            while True:
                kind, payload = await endpoint.inbox.get()
                try:
                    if kind == "text":
                        await manager.handle_text(payload)
                    else:
                        await manager.handle_binary(payload)
                finally:
                    endpoint.inbox.task_done()

        endpoint.task = asyncio.create_task(pump())
        await manager.join(username)

    async def close(self):
        for endpoint in self.clients.values():
            if endpoint.task:
                endpoint.task.cancel()
        await asyncio.gather(
            *(e.task for e in self.clients.values() if e.task), return_exceptions=True
        )

    def _deliver_text(self, username: str, message: dict) -> None:
        endpoint = self.clients.get(username)
        if endpoint:
            endpoint.inbox.put_nowait(("text", json.dumps(message)))

    async def client_text(self, endpoint: RelayEndpoint, raw: str) -> None:
        msg = parse_client_message(raw)
        if msg.type == "JOIN":
            endpoint.username = msg.username
            self.clients[msg.username] = endpoint
            self._deliver_text(msg.username, {
                "type": "SERVER_CONFIG",
                "max_file_size": self.max_file_size,
                "chunk_size": self.chunk_size,
            })
            users = sorted(self.clients)
            for name in users:
                self._deliver_text(name, {
                    "type": "USER_JOINED", "username": msg.username, "users": users,
                })
        elif msg.type == "FILE_OFFER":
            sender = endpoint.username
            if msg.size > self.max_file_size or msg.to not in self.clients:
                self._deliver_text(sender, {
                    "type": "FILE_ERROR", "file_id": msg.file_id,
                    "error": f"User '{msg.to}' not found",
                })
                return
            self.transfers[msg.file_id] = {
                "from": sender,
                "to": msg.to,
                "received": 0,
                "total": math.ceil(msg.size / msg.chunk_size),
            }
            self._deliver_text(msg.to, {
                "type": "FILE_OFFER_RECEIVED", "from": sender, "file_id": msg.file_id,
                "filename": msg.filename, "size": msg.size, "checksum": msg.checksum,
            })
        elif msg.type == "FILE_ACCEPT":
            self._deliver_text(msg.from_user, {
                "type": "FILE_ACCEPTED", "file_id": msg.file_id, "to": endpoint.username,
            })
        elif msg.type == "FILE_REJECT":
            self._deliver_text(msg.from_user, {"type": "FILE_REJECTED", "file_id": msg.file_id})
            self.transfers.pop(msg.file_id, None)
        elif msg.type == "FILE_CHUNK_ACK":
            transfer = self.transfers.get(msg.file_id)
            if transfer:
                self._deliver_text(transfer["from"], {
                    "type": "FILE_CHUNK_ACK", "file_id": msg.file_id,
                    "chunk_index": msg.chunk_index,
                })

    async def client_binary(self, endpoint: RelayEndpoint, data: bytes) -> None:
        frame = decode_frame(data)
        transfer = self.transfers.get(frame.file_id)
        if transfer is None or transfer["from"] != endpoint.username:
            return
        transfer["received"] += 1
        self.clients[transfer["to"]].inbox.put_nowait(("binary", data))
        if transfer["received"] >= transfer["total"]:
            complete = {"type": "FILE_COMPLETE", "file_id": frame.file_id}
            self._deliver_text(transfer["from"], complete)
            self._deliver_text(transfer["to"], complete)
            self.transfers.pop(frame.file_id, None)


async def wait_for(predicate, timeout: float = 5.0) -> None:
    """Poll `predicate` until it is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files"""
    path = Path(tempfile.mkdtemp(prefix="dropwire_test_"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def sample_file(temp_dir: Path) -> Path:
    """Create a small text file for testing"""
    file_path = temp_dir / "sample.txt"
    file_path.write_text("Hello, World! This is a test file.")
    return file_path


@pytest.fixture
def large_sample_file(temp_dir: Path) -> Path:
    """150000 bytes of non-repeating data: 3 chunks at 64 KB"""
    file_path = temp_dir / "large_sample.bin"
    file_path.write_bytes(os.urandom(150000))
    return file_path


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def manager(transport: RecordingTransport, temp_dir: Path) -> TransferManager:
    return TransferManager(transport, save_dir=str(temp_dir / "downloads"), send_delay=0)
