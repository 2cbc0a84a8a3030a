"""In-memory tag transport backed by a YAML tag image.

Used to replay captured sensors offline and to exercise action sequences
without a reader. The emulation is shallow: blocks are plain storage and
custom commands only model what the action sequences observe.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

import yaml

from librectl.core import registry
from librectl.core.documents import hex_string, parse_hex, read_yaml, validate
from librectl.core.errors import TagImageError, TransportConnectError, TransportIOError
from librectl.core.model import CustomCommand, TagHandle

LOGGER = logging.getLogger(__name__)

BLOCK_SIZE = 8


def _block_number(key: object, path: Path) -> int:
    """Block number of a tag image key.

    Quoted keys are decimal unless prefixed with ``0x``. Unquoted keys are
    already integers as YAML reads them, so an unquoted ``010`` is octal.
    """
    if isinstance(key, bool) or not isinstance(key, (int, str)):
        raise TagImageError(f"Invalid block number {key!r} in {path}")
    if isinstance(key, int):
        number = key
    else:
        try:
            number = int(key, 16) if key.lower().startswith("0x") else int(key, 10)
        except ValueError as exc:
            raise TagImageError(f"Invalid block number {key!r} in {path}") from exc
    if not 0 <= number <= 0xFF:
        raise TagImageError(f"Block number {key} out of range in {path}")
    return number


class EmulatedTag:
    def __init__(
        self,
        *,
        uid: bytes,
        patch_info: bytes,
        blocks: dict[int, bytes] | None = None,
        failing_blocks: Iterable[int] = (),
        present: bool = True,
    ) -> None:
        if len(uid) != 8:
            raise TagImageError(f"Tag uid must be 8 bytes, got {len(uid)}")
        self.uid = uid
        self.patch_info = patch_info
        self.blocks: dict[int, bytes] = dict(blocks or {})
        self.failing_blocks = set(failing_blocks)
        self.present = present
        self.operations: list[tuple[str, int, bytes]] = []
        self.invalidations: list[str | None] = []

    @classmethod
    def from_file(cls, path: Path) -> EmulatedTag:
        doc = read_yaml(path, error=TagImageError)
        validate(doc, "tag_image.schema.json", path, error=TagImageError)

        blocks: dict[int, bytes] = {}
        for key, value in doc["blocks"].items():
            number = _block_number(key, path)
            if number in blocks:
                raise TagImageError(f"Block 0x{number:02X} is listed twice in {path}")
            blocks[number] = parse_hex(
                value, context=f"{path}: block {key}", error=TagImageError, size=BLOCK_SIZE
            )

        return cls(
            uid=parse_hex(doc["uid"], context=f"{path}: uid", error=TagImageError, size=8),
            patch_info=parse_hex(doc["patch_info"], context=f"{path}: patch_info", error=TagImageError),
            blocks=blocks,
            failing_blocks=doc.get("failing_blocks", ()),
        )

    def save(self, path: Path) -> None:
        doc = {
            "uid": hex_string(self.uid),
            "patch_info": hex_string(self.patch_info),
            "blocks": {f"0x{number:02X}": hex_string(data) for number, data in sorted(self.blocks.items())},
        }
        if self.failing_blocks:
            doc["failing_blocks"] = sorted(self.failing_blocks)
        try:
            path.write_text(yaml.safe_dump(doc, sort_keys=False), encoding="utf-8")
        except OSError as exc:
            raise TagImageError(f"Could not write tag image {path}: {exc}") from exc

    @property
    def frame(self) -> bytes:
        """Contiguous memory from block 0 up to the first missing block."""
        data = bytearray()
        number = 0
        while number in self.blocks:
            data += self.blocks[number]
            number += 1
        return bytes(data)

    def count(self, kind: str, code: int | None = None) -> int:
        return sum(1 for op, c, _ in self.operations if op == kind and (code is None or c == code))

    async def connect(self) -> TagHandle:
        if not self.present:
            raise TransportConnectError("No tag in range")
        return TagHandle(identifier=bytes(reversed(self.uid)))

    async def read_block(self, handle: TagHandle, number: int) -> bytes:
        self.operations.append(("read", number, b""))
        if number in self.failing_blocks or number not in self.blocks:
            raise TransportIOError(f"Block 0x{number:02X} is not readable")
        return self.blocks[number]

    async def write_block(self, handle: TagHandle, number: int, data: bytes) -> None:
        self.operations.append(("write", number, bytes(data)))
        if len(data) != BLOCK_SIZE:
            raise TransportIOError(f"Block writes must be {BLOCK_SIZE} bytes, got {len(data)}")
        self.blocks[number] = bytes(data)

    async def custom_command(self, handle: TagHandle, code: int, params: bytes = b"") -> bytes:
        self.operations.append(("command", code, bytes(params)))
        if code == CustomCommand.GET_PATCH_INFO:
            # A patched command block turns patch info into the re-initialisation command.
            if self._command_block_patched():
                LOGGER.debug("Patch info requested with modified command block")
                return b""
            return self.patch_info
        return b""

    def _command_block_patched(self) -> bool:
        return any(
            self.blocks.get(p.command_block) == p.patch_blocks().command_modified
            for p in registry.profiles()
            if p.writable
        )

    def invalidate(self, handle: TagHandle, message: str | None = None) -> None:
        self.invalidations.append(message)
