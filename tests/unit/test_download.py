"""
Unit tests for download.py - chunk reassembly and verification
"""
import os
import random
import uuid

import pytest

from dropwire.security.checksum import digest
from dropwire.transfer.download import DownloadEngine, DownloadState
from dropwire.transfer.errors import ChecksumMismatch
from dropwire.transfer.frame import ChunkFrame
from dropwire.transfer.models import (
    FileOffer,
    TransferDirection,
    TransferRecord,
    TransferStatus,
)
from dropwire.transfer.registry import TransferRegistry

CHUNK = 65536


def split(data: bytes, chunk_size: int) -> list[bytes]:
    return [data[i:i + chunk_size] for i in range(0, len(data), chunk_size)]


async def make_engine(data: bytes, transport, chunk_size: int = CHUNK, checksum: str | None = None):
    file_id = str(uuid.uuid4())
    offer = FileOffer(
        file_id=file_id, from_user="alice", filename="data.bin",
        size=len(data), checksum=checksum or digest(data),
    )
    registry = TransferRegistry()
    await registry.add(TransferRecord(
        file_id=file_id, filename="data.bin", direction=TransferDirection.DOWNLOAD,
        total=len(data), status=TransferStatus.TRANSFERRING,
    ))
    engine = DownloadEngine(DownloadState.from_offer(offer, chunk_size), registry, transport)
    return engine, registry


class TestDownloadState:
    """Tests for DownloadState"""

    def test_expected_chunk_count(self):
        offer = FileOffer(file_id="f", from_user="a", filename="x", size=150000, checksum="")
        assert DownloadState.from_offer(offer, CHUNK).expected_chunk_count == 3

    def test_duplicate_chunk_does_not_double_count(self):
        state = DownloadState("f", "x", 10, 2, "")
        state.add_chunk(0, b"hello")
        state.add_chunk(0, b"hello")
        assert state.received_bytes == 5
        assert len(state.chunks) == 1

    def test_duplicate_chunk_replaces_payload(self):
        state = DownloadState("f", "x", 10, 2, "")
        state.add_chunk(0, b"hello")
        state.add_chunk(0, b"hi")
        assert state.received_bytes == 2
        assert state.chunks[0] == b"hi"

    def test_out_of_range_index_refused(self):
        state = DownloadState("f", "x", 10, 2, "")
        assert state.add_chunk(2, b"zz") is False
        assert state.chunks == {}
        assert state.received_bytes == 0

    def test_missing_and_assemble(self):
        state = DownloadState("f", "x", 9, 3, "")
        state.add_chunk(2, b"ghi")
        state.add_chunk(0, b"abc")
        assert state.missing() == [1]
        assert state.assemble() == b"abcghi"
        assert not state.is_complete


class TestDownloadEngine:
    """Tests for DownloadEngine"""

    @pytest.mark.asyncio
    async def test_scenario_150000_bytes_order_1_0_2(self, transport):
        data = os.urandom(150000)
        chunks = split(data, CHUNK)
        assert [len(c) for c in chunks] == [65536, 65536, 18928]

        engine, registry = await make_engine(data, transport)
        for index in [1, 0, 2]:
            await engine.handle_frame(ChunkFrame(engine.file_id, index, chunks[index]))

        assert engine.state.received_bytes == 150000
        assert engine.ready
        record = await engine.finish()

        assert record.status == TransferStatus.COMPLETED
        assert record.checksum_valid is True
        assert engine.data == data
        assert engine.state is None

    @pytest.mark.asyncio
    async def test_any_permutation_reassembles(self, transport):
        rng = random.Random(1234)
        for size, chunk_size in [(1, 1), (1000, 7), (4096, 1024), (5000, 4999)]:
            data = rng.randbytes(size)
            chunks = split(data, chunk_size)
            order = list(range(len(chunks)))
            rng.shuffle(order)

            engine, _ = await make_engine(data, transport, chunk_size=chunk_size)
            for index in order:
                await engine.handle_frame(ChunkFrame(engine.file_id, index, chunks[index]))
            record = await engine.finish()

            assert record.status == TransferStatus.COMPLETED
            assert engine.data == data
            assert digest(engine.data) == digest(data)

    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_idempotent(self, transport):
        data = os.urandom(3000)
        chunks = split(data, 1000)
        engine, registry = await make_engine(data, transport, chunk_size=1000)

        for index in [0, 1, 1, 0]:
            await engine.handle_frame(ChunkFrame(engine.file_id, index, chunks[index]))
        assert engine.state.received_bytes == 2000
        assert registry.get(engine.file_id).transferred == 2000
        assert not engine.ready

        await engine.handle_frame(ChunkFrame(engine.file_id, 2, chunks[2]))
        record = await engine.finish()
        assert record.checksum_valid is True
        assert engine.data == data

    @pytest.mark.asyncio
    async def test_each_chunk_is_acknowledged(self, transport):
        data = os.urandom(2500)
        chunks = split(data, 1000)
        engine, _ = await make_engine(data, transport, chunk_size=1000)
        for index in [2, 0]:
            await engine.handle_frame(ChunkFrame(engine.file_id, index, chunks[index]))

        acks = transport.of_type("FILE_CHUNK_ACK")
        assert [a["chunk_index"] for a in acks] == [2, 0]
        assert all(a["file_id"] == engine.file_id for a in acks)

    @pytest.mark.asyncio
    async def test_lost_ack_is_not_fatal(self, transport):
        data = os.urandom(10)
        engine, registry = await make_engine(data, transport, chunk_size=10)
        transport.closed = True
        await engine.handle_frame(ChunkFrame(engine.file_id, 0, data))
        record = await engine.finish()
        assert record.status == TransferStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_progress_published(self, transport):
        data = os.urandom(4000)
        chunks = split(data, 1000)
        engine, registry = await make_engine(data, transport, chunk_size=1000)
        await engine.handle_frame(ChunkFrame(engine.file_id, 3, chunks[3]))
        record = registry.get(engine.file_id)
        assert record.transferred == 1000
        assert record.progress == 25.0

    @pytest.mark.asyncio
    async def test_flipped_byte_fails_verification(self, transport):
        data = os.urandom(3000)
        corrupted = bytearray(data)
        corrupted[1500] ^= 0xFF
        chunks = split(bytes(corrupted), 1000)

        engine, registry = await make_engine(data, transport, chunk_size=1000, checksum=digest(data))
        for index, chunk in enumerate(chunks):
            await engine.handle_frame(ChunkFrame(engine.file_id, index, chunk))
        record = await engine.finish()

        assert record.status == TransferStatus.ERROR
        assert record.checksum_valid is False
        assert record.error
        assert digest(data)[:16] in record.error
        assert engine.data is None

    @pytest.mark.asyncio
    async def test_finish_is_idempotent(self, transport):
        data = os.urandom(100)
        engine, registry = await make_engine(data, transport, chunk_size=100)
        await engine.handle_frame(ChunkFrame(engine.file_id, 0, data))
        first = await engine.finish()
        second = await engine.finish()
        assert first.status == second.status == TransferStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_chunks_after_finish_are_ignored(self, transport):
        data = os.urandom(100)
        engine, registry = await make_engine(data, transport, chunk_size=100)
        await engine.handle_frame(ChunkFrame(engine.file_id, 0, data))
        await engine.finish()
        await engine.handle_frame(ChunkFrame(engine.file_id, 0, b"late"))
        assert registry.get(engine.file_id).transferred == 100

    @pytest.mark.asyncio
    async def test_uppercase_anchor_accepted(self, transport):
        data = os.urandom(100)
        engine, registry = await make_engine(data, transport, chunk_size=100, checksum=digest(data).upper())
        await engine.handle_frame(ChunkFrame(engine.file_id, 0, data))
        record = await engine.finish()
        assert record.status == TransferStatus.COMPLETED
        assert record.checksum_valid is True

    @pytest.mark.asyncio
    async def test_verification_goes_through_checksum_verify(self, transport, monkeypatch):
        calls = []

        def fake_verify(data, expected):
            calls.append((data, expected))
            raise ChecksumMismatch(expected, "0" * 64)

        monkeypatch.setattr("dropwire.transfer.download.verify", fake_verify)
        data = os.urandom(100)
        engine, registry = await make_engine(data, transport, chunk_size=100)
        await engine.handle_frame(ChunkFrame(engine.file_id, 0, data))
        record = await engine.finish()

        assert calls == [(data, digest(data))]
        assert record.status == TransferStatus.ERROR
        assert record.error == str(ChecksumMismatch(digest(data), "0" * 64))
