"""
Download engine: reassembles one incoming file from out-of-order chunks.

Completion is a purely local predicate, every expected chunk index has
been stored. FILE_COMPLETE from the server only makes the caller re-check
it, because the control message may overtake the last binary frame.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from dropwire.config import CHECKSUM_PREFIX_LEN
from dropwire.security.checksum import verify
from dropwire.transfer.errors import ChecksumMismatch, TransportClosed
from dropwire.transfer.frame import ChunkFrame
from dropwire.transfer.messages import FileChunkAckMessage
from dropwire.transfer.models import (
    FileOffer,
    TransferRecord,
    TransferStatus,
    chunk_count,
    progress_percent,
)
from dropwire.transfer.registry import TransferRegistry
from dropwire.transport.base import Transport

logger = logging.getLogger(__name__)


@dataclass
class DownloadState:
    file_id: str
    filename: str
    total_size: int
    expected_chunk_count: int
    expected_checksum: str
    chunks: dict[int, bytes] = field(default_factory=dict)
    received_bytes: int = 0

    @classmethod
    def from_offer(cls, offer: FileOffer, chunk_size: int) -> "DownloadState":
        return cls(
            file_id=offer.file_id,
            filename=offer.filename,
            total_size=offer.size,
            expected_chunk_count=chunk_count(offer.size, chunk_size),
            expected_checksum=offer.checksum,
        )

    def add_chunk(self, index: int, payload: bytes) -> bool:
        """
        Store a chunk. A repeated index replaces the earlier payload, so
        byte accounting always matches what is stored. Indices outside the
        expected range are refused.
        """
        if not 0 <= index < self.expected_chunk_count:
            return False
        previous = self.chunks.get(index)
        if previous is not None:
            self.received_bytes -= len(previous)
        self.chunks[index] = payload
        self.received_bytes += len(payload)
        return True

    @property
    def is_complete(self) -> bool:
        return len(self.chunks) >= self.expected_chunk_count

    def missing(self) -> list[int]:
        return [i for i in range(self.expected_chunk_count) if i not in self.chunks]

    def assemble(self) -> bytes:
        """Concatenate stored chunks in index order, skipping holes."""
        return b"".join(
            self.chunks[i] for i in range(self.expected_chunk_count) if i in self.chunks
        )


class DownloadEngine:
    """Owns the DownloadState of one file_id until the transfer finishes."""

    def __init__(
        self,
        state: DownloadState,
        registry: TransferRegistry,
        transport: Transport,
    ) -> None:
        self.state: DownloadState | None = state
        self.file_id = state.file_id
        self.filename = state.filename
        self._registry = registry
        self._transport = transport
        self._finishing = False
        self.data: bytes | None = None

    @property
    def ready(self) -> bool:
        """True once every chunk is in and verification has not started."""
        return (
            not self._finishing
            and self.state is not None
            and self.state.is_complete
        )

    async def handle_frame(self, frame: ChunkFrame) -> None:
        """Store one chunk, publish progress and acknowledge it."""
        state = self.state
        if state is None or self._finishing:
            logger.debug(f"Late chunk {frame.chunk_index} for {self.file_id} ignored")
            return
        if not state.add_chunk(frame.chunk_index, frame.payload):
            logger.warning(
                f"Chunk index {frame.chunk_index} out of range for {self.file_id} "
                f"({state.expected_chunk_count} chunks expected)"
            )
            return

        await self._registry.update(
            self.file_id,
            transferred=state.received_bytes,
            progress=progress_percent(state.received_bytes, state.total_size),
        )
        try:
            await self._transport.send_json(
                FileChunkAckMessage(
                    file_id=self.file_id, chunk_index=frame.chunk_index
                ).to_dict()
            )
        except TransportClosed:
            logger.debug(f"Ack for chunk {frame.chunk_index} of {self.file_id} lost")

        logger.debug(
            f"Chunk {frame.chunk_index} of {self.file_id}: "
            f"{len(state.chunks)}/{state.expected_chunk_count}"
        )

    async def finish(self) -> TransferRecord:
        """
        Verify and close the transfer. Must only be called once `ready`;
        the state is released before hashing so a second call is a no-op.
        """
        state = self.state
        if state is None or self._finishing:
            return self._registry.get(self.file_id)
        self._finishing = True
        self.state = None

        await self._registry.update(
            self.file_id, status=TransferStatus.VERIFYING, progress=100.0
        )

        missing = state.missing()
        if missing:
            logger.warning(
                f"Missing chunks {missing} of {state.expected_chunk_count} for {self.file_id}"
            )
        data = state.assemble()
        logger.info(
            f"Assembled {self.filename} from {len(state.chunks)}/"
            f"{state.expected_chunk_count} chunks, {len(data)} of "
            f"{state.total_size} bytes"
        )

        try:
            actual = await asyncio.to_thread(verify, data, state.expected_checksum)
        except ChecksumMismatch as error:
            logger.error(f"{self.filename}: {error}")
            return await self._registry.update(
                self.file_id,
                status=TransferStatus.ERROR,
                checksum_valid=False,
                error=str(error),
            )

        self.data = data
        logger.info(f"{self.filename} verified (sha256 {actual[:CHECKSUM_PREFIX_LEN]})")
        return await self._registry.update(
            self.file_id,
            status=TransferStatus.COMPLETED,
            checksum_valid=True,
            transferred=len(data),
        )
