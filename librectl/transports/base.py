"""Transport interfaces."""

from __future__ import annotations

from typing import Protocol

from librectl.core.model import TagHandle


class TagTransport(Protocol):
    """NFC transceiver able to talk to one ISO 15693 tag at a time."""

    async def connect(self) -> TagHandle:
        """Wait for a tag and connect to it."""

    async def read_block(self, handle: TagHandle, number: int) -> bytes:
        """Read a single 8-byte block."""

    async def write_block(self, handle: TagHandle, number: int, data: bytes) -> None:
        """Write a single 8-byte block."""

    async def custom_command(self, handle: TagHandle, code: int, params: bytes = b"") -> bytes:
        """Send a vendor custom command and return its response payload."""

    def invalidate(self, handle: TagHandle, message: str | None = None) -> None:
        """End the reader session, optionally reporting an error message."""
