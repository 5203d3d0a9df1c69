"""
Upload engine: streams one accepted file as paced chunk frames.

Sending is paced by a fixed delay between chunks rather than gated on
FILE_CHUNK_ACK. Acks only feed the record's `acked_chunks` counter.
"""

import asyncio
import logging
from dataclasses import dataclass

from dropwire.config import CHUNK_SEND_DELAY
from dropwire.transfer.errors import TransportClosed
from dropwire.transfer.frame import encode_frame
from dropwire.transfer.models import TransferStatus, chunk_count, progress_percent
from dropwire.transfer.registry import TransferRegistry
from dropwire.transport.base import Transport

logger = logging.getLogger(__name__)


@dataclass
class UploadState:
    """Everything the engine owns for one outgoing file."""
    file_id: str
    path: str
    size: int
    chunk_size: int
    checksum: str
    sent_bytes: int = 0

    @property
    def total_chunks(self) -> int:
        return chunk_count(self.size, self.chunk_size)


class UploadEngine:
    """Sends the chunks of one file, in index order, through the transport."""

    def __init__(
        self,
        state: UploadState,
        registry: TransferRegistry,
        transport: Transport,
        send_delay: float = CHUNK_SEND_DELAY,
    ) -> None:
        self.state = state
        self._registry = registry
        self._transport = transport
        self._send_delay = send_delay

    @property
    def file_id(self) -> str:
        return self.state.file_id

    def _read_chunk(self, f, index: int) -> bytes:
        f.seek(index * self.state.chunk_size)
        return f.read(self.state.chunk_size)

    async def run(self) -> None:
        """
        Send every chunk, then leave the record `transferring` until the
        peer reports completion. Read or transport failures end the
        transfer with an error.
        """
        state = self.state
        total_chunks = state.total_chunks
        await self._registry.update(state.file_id, status=TransferStatus.TRANSFERRING)
        logger.info(
            f"Uploading {state.file_id}: {state.size} bytes in {total_chunks} chunks"
        )

        try:
            with open(state.path, "rb") as f:
                for index in range(total_chunks):
                    chunk = await asyncio.to_thread(self._read_chunk, f, index)
                    if not chunk:
                        raise OSError(
                            f"File shrank during upload: chunk {index} is empty"
                        )

                    frame = encode_frame(state.file_id, index, chunk, state.chunk_size)
                    await self._transport.send_bytes(frame)

                    state.sent_bytes += len(chunk)
                    await self._registry.update(
                        state.file_id,
                        transferred=state.sent_bytes,
                        progress=progress_percent(state.sent_bytes, state.size),
                    )
                    logger.debug(
                        f"Sent chunk {index + 1}/{total_chunks} of {state.file_id}"
                    )

                    if index < total_chunks - 1:
                        await asyncio.sleep(self._send_delay)
        except (OSError, TransportClosed) as e:
            logger.error(f"Upload error for {state.file_id}: {e}")
            await self._registry.update(
                state.file_id, status=TransferStatus.ERROR, error=str(e)
            )
            return

        if total_chunks == 0:
            # Nothing to relay, so no completion signal will ever come.
            await self._registry.update(
                state.file_id, status=TransferStatus.COMPLETED, progress=100.0
            )
            return

        logger.info(f"All chunks of {state.file_id} sent, waiting for completion")
