"""
Offer negotiation.

Sending side:   offer_file() -> FILE_OFFER ... FILE_ACCEPTED | FILE_REJECTED
Receiving side: FILE_OFFER_RECEIVED -> incoming offers -> accept() | reject()

An offer lives from announcement until the first decision; it is never
reused afterwards.
"""

import logging
import os
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable

from dropwire.security.checksum import digest_file_async
from dropwire.transfer.errors import (
    FileTooLarge,
    OfferRejected,
    TransportClosed,
    UnknownTransfer,
)
from dropwire.transfer.messages import (
    FileAcceptMessage,
    FileOfferMessage,
    FileOfferReceivedMessage,
    FileRejectMessage,
)
from dropwire.transfer.models import (
    FileOffer,
    TransferDirection,
    TransferRecord,
    TransferStatus,
)
from dropwire.transfer.registry import TransferRegistry
from dropwire.transport.base import Transport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutgoingOffer:
    """What the sender remembers about an offer until the peer decides."""
    file_id: str
    to: str
    path: str
    filename: str
    size: int
    chunk_size: int
    checksum: str


class OfferNegotiator:
    """Tracks offers in both directions and runs the accept/reject handshake."""

    def __init__(self, registry: TransferRegistry, transport: Transport) -> None:
        self._registry = registry
        self._transport = transport
        self._outgoing: dict[str, OutgoingOffer] = {}
        self._incoming: dict[str, FileOffer] = {}

    # --- Sending side ---

    async def offer_file(
        self, path: str, to: str, chunk_size: int, max_file_size: int
    ) -> TransferRecord:
        """Hash a local file, register it as pending and announce it to `to`."""
        size = os.path.getsize(path)
        if size > max_file_size:
            raise FileTooLarge(size, max_file_size)

        file_id = str(uuid.uuid4())
        filename = os.path.basename(path)
        record = await self._registry.add(
            TransferRecord(
                file_id=file_id,
                filename=filename,
                direction=TransferDirection.UPLOAD,
                peer=to,
                total=size,
                status=TransferStatus.PENDING,
            )
        )

        try:
            checksum = await digest_file_async(path)
        except OSError as e:
            logger.error(f"Could not hash {path}: {e}")
            return await self._registry.update(
                file_id, status=TransferStatus.ERROR, error=str(e)
            )
        logger.info(
            f"Offering {filename} ({size} bytes, sha256 {checksum[:16]}) to {to}"
        )

        offer = OutgoingOffer(
            file_id=file_id,
            to=to,
            path=path,
            filename=filename,
            size=size,
            chunk_size=chunk_size,
            checksum=checksum,
        )
        self._outgoing[file_id] = offer
        try:
            await self._transport.send_json(
                FileOfferMessage(
                    to=to,
                    file_id=file_id,
                    filename=filename,
                    size=size,
                    chunk_size=chunk_size,
                    checksum=checksum,
                ).to_dict()
            )
        except TransportClosed as e:
            self._outgoing.pop(file_id, None)
            return await self._registry.update(
                file_id, status=TransferStatus.ERROR, error=str(e)
            )
        return self._registry.get(file_id) or record

    def take_outgoing(self, file_id: str) -> OutgoingOffer:
        """Remove and return an outgoing offer once the peer has decided."""
        offer = self._outgoing.pop(file_id, None)
        if offer is None:
            raise UnknownTransfer(file_id)
        return offer

    def discard_outgoing(self, file_id: str) -> None:
        self._outgoing.pop(file_id, None)

    async def handle_rejected(self, file_id: str) -> TransferRecord:
        """The peer declined: the sender's record ends without transferring."""
        offer = self.take_outgoing(file_id)
        logger.info(f"Offer for {offer.filename} rejected by {offer.to}")
        return await self._registry.update(
            file_id, status=TransferStatus.ERROR, error=str(OfferRejected(file_id))
        )

    # --- Receiving side ---

    def receive_offer(self, message: FileOfferReceivedMessage) -> FileOffer | None:
        """Queue an incoming offer for the user. Duplicates are ignored."""
        if message.file_id in self._incoming or message.file_id in self._registry:
            logger.warning(f"Ignoring duplicate offer {message.file_id}")
            return None
        offer = FileOffer(
            file_id=message.file_id,
            from_user=message.from_user,
            filename=message.filename,
            size=message.size,
            checksum=message.checksum,
        )
        self._incoming[offer.file_id] = offer
        logger.info(
            f"Offer received from {offer.from_user}: {offer.filename} ({offer.size} bytes)"
        )
        return offer

    def incoming(self) -> list[FileOffer]:
        return list(self._incoming.values())

    def get_incoming(self, file_id: str) -> FileOffer:
        offer = self._incoming.get(file_id)
        if offer is None:
            raise UnknownTransfer(file_id)
        return offer

    async def accept(
        self,
        file_id: str,
        prepare: Callable[[FileOffer], Awaitable[None]] | None = None,
    ) -> FileOffer:
        """
        Accept an incoming offer.

        The download record is created and `prepare` (which sets up the
        reassembly state) runs before FILE_ACCEPT is sent, so no chunk can
        arrive for a transfer we are not ready to receive.
        """
        offer = self.get_incoming(file_id)
        del self._incoming[file_id]

        await self._registry.add(
            TransferRecord(
                file_id=offer.file_id,
                filename=offer.filename,
                direction=TransferDirection.DOWNLOAD,
                peer=offer.from_user,
                total=offer.size,
                status=TransferStatus.TRANSFERRING,
            )
        )
        if prepare is not None:
            await prepare(offer)

        await self._transport.send_json(
            FileAcceptMessage(from_user=offer.from_user, file_id=offer.file_id).to_dict()
        )
        logger.info(f"Accepted {offer.filename} from {offer.from_user}")
        return offer

    async def reject(self, file_id: str) -> FileOffer:
        offer = self.get_incoming(file_id)
        del self._incoming[file_id]
        await self._transport.send_json(
            FileRejectMessage(from_user=offer.from_user, file_id=offer.file_id).to_dict()
        )
        logger.info(f"Rejected {offer.filename} from {offer.from_user}")
        return offer
