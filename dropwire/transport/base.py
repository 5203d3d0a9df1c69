"""The two calls the transfer engine needs from a server connection."""

from typing import Protocol


class Transport(Protocol):
    async def send_json(self, message: dict) -> None:
        """Send one text frame carrying a JSON control message."""

    async def send_bytes(self, data: bytes) -> None:
        """Send one binary frame."""
