"""Error kinds raised by the transfer engine.

Only rejection, checksum mismatch and peer errors end a transfer with a
recorded reason. Framing and lookup problems are dropped by the caller
and never reach a TransferRecord.
"""


class DropwireError(Exception):
    """Base class for all engine errors."""


class OfferRejected(DropwireError):
    """The peer declined the offer."""

    def __init__(self, file_id: str) -> None:
        super().__init__("Rejected")
        self.file_id = file_id


class ChecksumMismatch(DropwireError):
    """The reassembled bytes do not hash to the digest from the offer."""

    def __init__(self, expected: str, actual: str, prefix_len: int = 16) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Checksum mismatch! Expected: {expected[:prefix_len]}..., "
            f"Got: {actual[:prefix_len]}..."
        )


class MalformedFrame(DropwireError):
    """A binary frame could not be decoded."""


class FrameTooShort(MalformedFrame):
    def __init__(self, length: int, minimum: int) -> None:
        super().__init__(f"Binary chunk too short: {length} bytes (minimum {minimum})")
        self.length = length


class UnknownTransfer(DropwireError):
    """A frame, ack or command referenced a file_id nobody owns."""

    def __init__(self, file_id: str) -> None:
        super().__init__(f"Transfer not found: {file_id}")
        self.file_id = file_id


class PeerError(DropwireError):
    """The remote side reported an error for a transfer."""

    def __init__(self, file_id: str, message: str) -> None:
        super().__init__(message)
        self.file_id = file_id


class ProtocolParseError(DropwireError):
    """A control message was not valid JSON or did not match any known type."""


class FileTooLarge(DropwireError):
    def __init__(self, size: int, max_size: int) -> None:
        super().__init__(f"File too large: {size} bytes (max: {max_size})")
        self.size = size
        self.max_size = max_size


class TransportClosed(DropwireError):
    """The server connection is not open."""
