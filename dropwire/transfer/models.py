"""Pydantic models for file transfer."""

import math
import time
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from dropwire.config import DEFAULT_CHUNK_SIZE, DEFAULT_MAX_FILE_SIZE


class TransferStatus(str, Enum):
    """All possible states for a file transfer."""
    PENDING = "pending"
    TRANSFERRING = "transferring"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (TransferStatus.COMPLETED, TransferStatus.ERROR)


class TransferDirection(str, Enum):
    UPLOAD = "upload"
    DOWNLOAD = "download"


class FileOffer(BaseModel):
    """An announced file, waiting for the receiver's decision."""
    file_id: str
    from_user: str = Field(alias="from")
    filename: str
    size: int = Field(ge=0)
    checksum: str

    model_config = ConfigDict(frozen=True, populate_by_name=True)


class TransferRecord(BaseModel):
    """Full state of a single file transfer, exposed to the UI."""
    file_id: str
    filename: str
    direction: TransferDirection
    peer: str = ""
    transferred: int = 0
    total: int
    progress: float = 0.0
    status: TransferStatus = TransferStatus.PENDING
    error: str | None = None
    checksum_valid: bool | None = None
    acked_chunks: int = 0
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)


class ServerConfig(BaseModel):
    """Limits announced by the server after JOIN."""
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    chunk_size: int = Field(default=DEFAULT_CHUNK_SIZE, gt=0)


def chunk_count(size: int, chunk_size: int) -> int:
    """Number of chunks a file of `size` bytes splits into."""
    return math.ceil(size / chunk_size)


def progress_percent(transferred: int, total: int) -> float:
    if total <= 0:
        return 100.0
    return min(100.0, transferred / total * 100)
