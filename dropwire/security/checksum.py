"""
Checksum engine: SHA-256 content digests.

The sender hashes the whole file once before offering it; the receiver
hashes the reassembled bytes and compares against the digest carried in
the offer.
"""

import asyncio
import logging

from cryptography.hazmat.primitives.hashes import SHA256, Hash

from dropwire.config import CHECKSUM_PREFIX_LEN
from dropwire.transfer.errors import ChecksumMismatch

logger = logging.getLogger(__name__)

# Read size used while hashing files from disk
READ_BLOCK = 1024 * 1024


def digest(data: bytes) -> str:
    """Return the lowercase hex SHA-256 digest of `data`."""
    h = Hash(SHA256())
    h.update(data)
    return h.finalize().hex()


def digest_file(path: str) -> str:
    """Hash a file from disk without loading it all into memory."""
    h = Hash(SHA256())
    with open(path, "rb") as f:
        while True:
            block = f.read(READ_BLOCK)
            if not block:
                break
            h.update(block)
    return h.finalize().hex()


async def digest_file_async(path: str) -> str:
    return await asyncio.to_thread(digest_file, path)


def verify(data: bytes, expected: str) -> str:
    """
    Check `data` against an expected hex digest.

    Returns the actual digest on success and raises ChecksumMismatch
    (carrying only truncated prefixes in its message) otherwise.
    """
    actual = digest(data)
    if actual != expected.lower():
        raise ChecksumMismatch(expected, actual, CHECKSUM_PREFIX_LEN)
    return actual
