"""
Transfer Manager: one peer session's file-transfer engine.

Dispatches control messages and binary frames coming from the server
connection to the negotiator and the per-file_id upload/download engines,
and forwards registry changes to UI listeners.
"""

import asyncio
import logging
import os
import shutil

from dropwire.config import (
    AUTO_SAVE,
    CHUNK_SEND_DELAY,
    DEFAULT_SAVE_DIR,
    MAX_RETAINED_BYTES,
)
from dropwire.discovery.roster import Roster
from dropwire.transfer.download import DownloadEngine, DownloadState
from dropwire.transfer.errors import (
    FileTooLarge,
    MalformedFrame,
    PeerError,
    ProtocolParseError,
    TransportClosed,
    UnknownTransfer,
)
from dropwire.transfer.frame import decode_frame
from dropwire.transfer.messages import (
    ErrorMessage,
    FileAcceptedMessage,
    FileChunkAckMessage,
    FileCompleteMessage,
    FileErrorMessage,
    FileOfferReceivedMessage,
    FileRejectedMessage,
    JoinMessage,
    ServerConfigMessage,
    UserJoinedMessage,
    UserLeftMessage,
    parse_server_message,
)
from dropwire.transfer.models import (
    FileOffer,
    ServerConfig,
    TransferDirection,
    TransferRecord,
    TransferStatus,
)
from dropwire.transfer.negotiator import OfferNegotiator
from dropwire.transfer.registry import TransferRegistry
from dropwire.transfer.upload import UploadEngine, UploadState
from dropwire.transport.base import Transport

logger = logging.getLogger(__name__)


class TransferManager:
    """Manages all offers, uploads and downloads of the session."""

    def __init__(
        self,
        transport: Transport,
        save_dir: str = DEFAULT_SAVE_DIR,
        auto_save: bool = AUTO_SAVE,
        send_delay: float = CHUNK_SEND_DELAY,
        max_retained_bytes: int = MAX_RETAINED_BYTES,
    ) -> None:
        self._transport = transport
        self._event_callbacks: list = []  # async fn(event_type, data)
        self.registry = TransferRegistry(emit=self._on_record_event)
        self.negotiator = OfferNegotiator(self.registry, transport)
        self.roster = Roster()
        self.server_config = ServerConfig()
        self.username = ""
        self._downloads: dict[str, DownloadEngine] = {}
        self._uploads: dict[str, asyncio.Task] = {}
        self._finishing: dict[str, asyncio.Task] = {}
        self._files: dict[str, tuple[str, bytes]] = {}  # verified, not yet on disk
        self._saved: dict[str, tuple[str, str]] = {}  # file_id -> (filename, path)
        self._max_retained_bytes = max_retained_bytes
        self._save_dir = save_dir
        self.auto_save = auto_save
        self._send_delay = send_delay

    @property
    def save_dir(self) -> str:
        return self._save_dir

    @save_dir.setter
    def save_dir(self, path: str) -> None:
        os.makedirs(path, exist_ok=True)
        self._save_dir = path

    # --- Events ---

    def on_event(self, callback) -> None:
        """Register callback: async fn(event_type: str, data: dict)."""
        self._event_callbacks.append(callback)

    async def _emit(self, event_type: str, data: dict) -> None:
        """Emit an event to all registered callbacks."""
        for cb in self._event_callbacks:
            try:
                await cb(event_type, data)
            except Exception as e:
                logger.error(f"Event callback error: {e}")

    async def _on_record_event(self, event_type: str, data: dict) -> None:
        """Forward registry changes and turn terminal states into notifications."""
        await self._emit(event_type, data)
        if event_type != "transfer_state":
            return

        notification = None
        status = data["status"]
        if status == TransferStatus.COMPLETED.value:
            direction = "sent" if data["direction"] == TransferDirection.UPLOAD.value else "received"
            notification = {
                "type": "success",
                "message": f"'{data['filename']}' {direction} successfully!",
            }
        elif status == TransferStatus.ERROR.value:
            if data["error"] == "Rejected":
                notification = {
                    "type": "warning",
                    "message": f"Transfer of '{data['filename']}' was rejected.",
                }
            else:
                notification = {
                    "type": "error",
                    "message": f"Transfer of '{data['filename']}' failed: {data['error']}",
                }

        if notification:
            await self._emit("notification", notification)

    # --- Session ---

    async def join(self, username: str) -> None:
        """Announce ourselves to the room. Also used after every reconnect."""
        self.username = username
        self.roster.local_user = username
        await self._transport.send_json(JoinMessage(username=username).to_dict())
        logger.info(f"Joined as {username}")

    async def rejoin(self) -> None:
        if self.username:
            await self.join(self.username)

    async def stop(self) -> None:
        """Cancel running uploads and verifications."""
        tasks = list(self._uploads.values()) + list(self._finishing.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._uploads.clear()
        self._finishing.clear()
        logger.info("Transfer manager stopped")

    def get_transfers(self) -> list[TransferRecord]:
        return self.registry.all()

    def get_offers(self) -> list[FileOffer]:
        return self.negotiator.incoming()

    # --- Local user actions ---

    async def send_file(self, file_path: str, to: str) -> TransferRecord:
        """Offer a local file to another user."""
        return await self.negotiator.offer_file(
            file_path,
            to,
            chunk_size=self.server_config.chunk_size,
            max_file_size=self.server_config.max_file_size,
        )

    async def accept_offer(self, file_id: str) -> TransferRecord:
        offer = self.negotiator.get_incoming(file_id)
        if offer.size > self.server_config.max_file_size:
            await self.reject_offer(file_id)
            raise FileTooLarge(offer.size, self.server_config.max_file_size)

        try:
            await self.negotiator.accept(file_id, prepare=self._open_download)
        except TransportClosed as e:
            self._downloads.pop(file_id, None)
            await self.registry.update(file_id, status=TransferStatus.ERROR, error=str(e))
            raise
        finally:
            await self._emit("offer_removed", {"file_id": file_id})
        # An empty file has no chunks to wait for.
        self.check_and_finish(file_id)
        return self.registry.get(file_id)

    async def reject_offer(self, file_id: str) -> FileOffer:
        offer = await self.negotiator.reject(file_id)
        await self._emit("offer_removed", {"file_id": file_id})
        return offer

    async def _open_download(self, offer: FileOffer) -> None:
        state = DownloadState.from_offer(offer, self.server_config.chunk_size)
        self._downloads[offer.file_id] = DownloadEngine(
            state, self.registry, self._transport
        )

    # --- Completed downloads ---

    async def get_file(self, file_id: str) -> tuple[str, bytes]:
        """Return (filename, data) of a verified download, from memory or disk."""
        entry = self._files.get(file_id)
        if entry is not None:
            return entry
        saved = self._saved.get(file_id)
        if saved is None:
            raise UnknownTransfer(file_id)
        filename, path = saved
        data = await asyncio.to_thread(_read_file, path)
        return filename, data

    async def save_file(self, file_id: str, directory: str | None = None) -> str:
        """
        Write a verified download to disk and return its path.

        The in-memory copy is released once written; saving again copies
        the file already on disk.
        """
        directory = directory or self._save_dir
        entry = self._files.get(file_id)
        if entry is not None:
            filename, data = entry
            path = await asyncio.to_thread(_write_unique, directory, filename, data)
            self._files.pop(file_id, None)
        else:
            saved = self._saved.get(file_id)
            if saved is None:
                raise UnknownTransfer(file_id)
            filename, source = saved
            path = await asyncio.to_thread(_copy_unique, directory, filename, source)
        self._saved[file_id] = (filename, path)
        logger.info(f"Saved {filename} to {path}")
        return path

    @property
    def retained_bytes(self) -> int:
        """Bytes of verified downloads held in memory and not yet saved."""
        return sum(len(data) for _, data in self._files.values())

    async def _retain(self, file_id: str, filename: str, data: bytes) -> None:
        """Keep a verified download in memory, dropping the oldest past the cap."""
        self._files[file_id] = (filename, data)
        while self.retained_bytes > self._max_retained_bytes and len(self._files) > 1:
            oldest = next(iter(self._files))
            dropped, _ = self._files.pop(oldest)
            logger.warning(f"Dropped unsaved download {dropped} from memory")
            await self._emit("notification", {
                "type": "warning",
                "message": f"'{dropped}' was not saved and is no longer available.",
            })

    # --- Inbound traffic ---

    async def handle_text(self, raw: str | bytes) -> None:
        """Handle one control message from the server."""
        try:
            msg = parse_server_message(raw)
        except ProtocolParseError as e:
            logger.warning(f"Failed to parse message: {e}")
            return

        try:
            await self._dispatch(msg)
        except UnknownTransfer as e:
            logger.debug(f"{msg.type}: {e}")

    async def _dispatch(self, msg) -> None:
        if isinstance(msg, ServerConfigMessage):
            self.server_config = ServerConfig(
                max_file_size=msg.max_file_size, chunk_size=msg.chunk_size
            )
            logger.info(
                f"Server config received: max_file_size={msg.max_file_size}, "
                f"chunk_size={msg.chunk_size}"
            )
            await self._emit("server_config", self.server_config.model_dump())

        elif isinstance(msg, (UserJoinedMessage, UserLeftMessage)):
            if isinstance(msg, UserJoinedMessage):
                self.roster.update(msg.users, joined=msg.username)
            else:
                self.roster.update(msg.users, left=msg.username)
            await self._emit("users", {"users": self.roster.users()})

        elif isinstance(msg, FileOfferReceivedMessage):
            offer = self.negotiator.receive_offer(msg)
            if offer is not None:
                await self._emit("offer_received", offer.model_dump(by_alias=True))

        elif isinstance(msg, FileAcceptedMessage):
            await self._start_upload(msg.file_id)

        elif isinstance(msg, FileRejectedMessage):
            await self.negotiator.handle_rejected(msg.file_id)

        elif isinstance(msg, FileChunkAckMessage):
            await self._record_ack(msg.file_id)

        elif isinstance(msg, FileCompleteMessage):
            await self._handle_complete(msg.file_id)

        elif isinstance(msg, FileErrorMessage):
            await self._handle_peer_error(msg.file_id, msg.error)

        elif isinstance(msg, ErrorMessage):
            logger.error(f"Server error: {msg.message}")
            await self._emit("notification", {"type": "error", "message": msg.message})

    async def handle_binary(self, data: bytes) -> None:
        """Handle one chunk frame. Malformed or unknown frames are dropped."""
        try:
            frame = decode_frame(data)
        except MalformedFrame as e:
            logger.debug(f"Dropping frame: {e}")
            return

        engine = self._downloads.get(frame.file_id)
        if engine is None:
            logger.debug(f"Dropping chunk {frame.chunk_index} for unknown transfer {frame.file_id}")
            return

        await engine.handle_frame(frame)
        self.check_and_finish(frame.file_id)

    def check_and_finish(self, file_id: str) -> bool:
        """
        Start verification if every chunk of `file_id` is in.

        Safe to call from any event path and any number of times: the
        engine is detached before verification starts, so only the first
        call that sees full coverage does anything.
        """
        engine = self._downloads.get(file_id)
        if engine is None or not engine.ready:
            return False
        del self._downloads[file_id]
        task = asyncio.create_task(self._finish_download(engine))
        self._finishing[file_id] = task
        return True

    async def _finish_download(self, engine: DownloadEngine) -> None:
        """Task wrapper for verifying one download."""
        try:
            record = await engine.finish()
            if record.status == TransferStatus.COMPLETED and engine.data is not None:
                data, engine.data = engine.data, None
                await self._retain(engine.file_id, engine.filename, data)
                if self.auto_save:
                    try:
                        await self.save_file(engine.file_id)
                    except OSError as e:
                        logger.error(f"Could not save {engine.filename}: {e}")
        except Exception as e:
            logger.exception(f"Verification of {engine.filename} failed")
            await self.registry.update(
                engine.file_id, status=TransferStatus.ERROR, error=str(e)
            )
        finally:
            self._finishing.pop(engine.file_id, None)

    # --- Upload side ---

    async def _start_upload(self, file_id: str) -> None:
        offer = self.negotiator.take_outgoing(file_id)
        logger.info(f"{offer.to} accepted {offer.filename}")
        engine = UploadEngine(
            UploadState(
                file_id=offer.file_id,
                path=offer.path,
                size=offer.size,
                chunk_size=offer.chunk_size,
                checksum=offer.checksum,
            ),
            self.registry,
            self._transport,
            send_delay=self._send_delay,
        )
        task = asyncio.create_task(engine.run())
        self._uploads[file_id] = task
        task.add_done_callback(lambda _: self._uploads.pop(file_id, None))

    async def _record_ack(self, file_id: str) -> None:
        record = self.registry.get(file_id)
        if record is None or record.direction != TransferDirection.UPLOAD:
            raise UnknownTransfer(file_id)
        await self.registry.update(file_id, acked_chunks=record.acked_chunks + 1)

    async def _handle_complete(self, file_id: str) -> None:
        record = self.registry.get(file_id)
        if record is None:
            raise UnknownTransfer(file_id)

        if record.direction == TransferDirection.DOWNLOAD:
            if not self.check_and_finish(file_id):
                logger.debug(f"FILE_COMPLETE for {file_id} before all chunks arrived")
            return

        logger.info(f"Upload of {record.filename} confirmed complete")
        await self.registry.update(
            file_id,
            status=TransferStatus.COMPLETED,
            transferred=record.total,
            progress=100.0,
        )

    async def _handle_peer_error(self, file_id: str, message: str) -> None:
        error = PeerError(file_id, message)
        logger.warning(f"Transfer {file_id} failed remotely: {error}")
        self.negotiator.discard_outgoing(file_id)
        self._downloads.pop(file_id, None)
        task = self._uploads.pop(file_id, None)
        if task:
            task.cancel()
        if file_id not in self.registry:
            raise UnknownTransfer(file_id)
        await self.registry.update(file_id, status=TransferStatus.ERROR, error=str(error))


def _unique_path(directory: str, filename: str) -> str:
    """A path under `directory` for `filename` that does not exist yet."""
    os.makedirs(directory, exist_ok=True)
    name = os.path.basename(filename.replace("\\", "/"))
    if name in ("", ".", ".."):
        name = "download"
    stem, ext = os.path.splitext(name)
    path = os.path.join(directory, name)
    n = 1
    while os.path.exists(path):
        path = os.path.join(directory, f"{stem} ({n}){ext}")
        n += 1
    return path


def _write_unique(directory: str, filename: str, data: bytes) -> str:
    path = _unique_path(directory, filename)
    with open(path, "wb") as f:
        f.write(data)
    return path


def _copy_unique(directory: str, filename: str, source: str) -> str:
    path = _unique_path(directory, filename)
    shutil.copyfile(source, path)
    return path


def _read_file(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()
