"""
Transfer Registry: file_id -> TransferRecord.

Records are added once and never removed during a session, so the UI can
show history. Every mutation goes through `update()`, which swaps in a new
immutable-by-convention copy and publishes it to listeners.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable

from dropwire.transfer.errors import UnknownTransfer
from dropwire.transfer.models import TransferRecord

logger = logging.getLogger(__name__)

EventEmitter = Callable[[str, dict], Awaitable[None]]


class TransferRegistry:
    """Owns every TransferRecord of the session."""

    def __init__(self, emit: EventEmitter | None = None) -> None:
        self._records: dict[str, TransferRecord] = {}
        self._lock = asyncio.Lock()
        self._emit = emit

    def __contains__(self, file_id: str) -> bool:
        return file_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def get(self, file_id: str) -> TransferRecord | None:
        return self._records.get(file_id)

    def all(self) -> list[TransferRecord]:
        """Return all transfers, oldest first."""
        return sorted(self._records.values(), key=lambda r: r.created_at)

    async def add(self, record: TransferRecord) -> TransferRecord:
        async with self._lock:
            if record.file_id in self._records:
                raise ValueError(f"Transfer {record.file_id} already registered")
            self._records[record.file_id] = record
        await self._publish("transfer_state", record)
        return record

    async def update(self, file_id: str, **changes) -> TransferRecord:
        """
        Apply field changes to one record and publish the result.

        Terminal records (completed/error) are frozen: later changes are
        ignored and the stored record is returned unchanged.
        """
        async with self._lock:
            current = self._records.get(file_id)
            if current is None:
                raise UnknownTransfer(file_id)
            if current.status.is_terminal:
                logger.debug(
                    f"Ignoring update for finished transfer {file_id}: {changes}"
                )
                return current
            record = current.model_copy(update={**changes, "updated_at": time.time()})
            self._records[file_id] = record

        event = "transfer_state" if "status" in changes else "transfer_progress"
        await self._publish(event, record)
        return record

    async def _publish(self, event_type: str, record: TransferRecord) -> None:
        if self._emit is not None:
            await self._emit(event_type, record.model_dump(mode="json"))
