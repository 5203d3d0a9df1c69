"""
Binary chunk frame codec.

Every file chunk travels as one binary WebSocket message:

    [16-byte file_id][4-byte chunk_index][payload bytes]

The file_id is the raw UUID (canonical hyphenated text is only used at the
API boundary). The chunk index is an unsigned 32-bit big-endian integer.
"""

import struct
import uuid
from typing import NamedTuple

from dropwire.transfer.errors import FrameTooShort

HEADER_FORMAT = "!16sI"  # raw uuid + chunk index (network byte order)
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)
MAX_CHUNK_INDEX = 2**32 - 1


class ChunkFrame(NamedTuple):
    file_id: str
    chunk_index: int
    payload: bytes


def encode_frame(
    file_id: str, chunk_index: int, payload: bytes, chunk_size: int | None = None
) -> bytes:
    """Pack a chunk into its wire form."""
    if not 0 <= chunk_index <= MAX_CHUNK_INDEX:
        raise ValueError(f"Chunk index out of range: {chunk_index}")
    if chunk_size is not None and len(payload) > chunk_size:
        raise ValueError(
            f"Payload of {len(payload)} bytes exceeds chunk size {chunk_size}"
        )
    header = struct.pack(HEADER_FORMAT, uuid.UUID(file_id).bytes, chunk_index)
    return header + bytes(payload)


def decode_frame(data: bytes) -> ChunkFrame:
    """Unpack a wire frame. Raises FrameTooShort for undersized buffers."""
    if len(data) < HEADER_SIZE:
        raise FrameTooShort(len(data), HEADER_SIZE)
    raw_id, chunk_index = struct.unpack_from(HEADER_FORMAT, data)
    return ChunkFrame(
        file_id=str(uuid.UUID(bytes=raw_id)),
        chunk_index=chunk_index,
        payload=bytes(data[HEADER_SIZE:]),
    )
