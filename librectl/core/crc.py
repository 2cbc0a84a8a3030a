"""CRC16 used by the sensor firmware to guard each FRAM section.

Reflected CCITT polynomial (0x8408), seed 0xFFFF, with the final register
bit-reversed. The value is stored little-endian in the first two bytes of the
section it guards.
"""

from __future__ import annotations

from librectl.core.errors import InvalidLengthError

SEED = 0xFFFF
_POLY = 0x8408

HEADER = slice(0, 24)
BODY = slice(24, 320)
FOOTER = slice(320, 344)
IMAGE_SIZE = 344


def _generate_table(poly: int = _POLY) -> tuple[int, ...]:
    table = []
    for i in range(256):
        crc = i
        for _ in range(8):
            if crc & 1:
                crc = (crc >> 1) ^ poly
            else:
                crc >>= 1
        table.append(crc)
    return tuple(table)


_TABLE = _generate_table()


def _reverse16(value: int) -> int:
    result = 0
    for _ in range(16):
        result = (result << 1) | (value & 1)
        value >>= 1
    return result


def checksum(data: bytes, seed: int = SEED) -> int:
    crc = seed
    for byte in data:
        crc = (crc >> 8) ^ _TABLE[(crc ^ byte) & 0xFF]
    return _reverse16(crc)


def is_valid(section: bytes) -> bool:
    if len(section) < 2:
        return False
    return int.from_bytes(section[0:2], "little") == checksum(section[2:])


def with_correct_checksum(section: bytes) -> bytes:
    if len(section) < 2:
        raise InvalidLengthError(f"Section of {len(section)} bytes cannot hold a checksum")
    return checksum(section[2:]).to_bytes(2, "little") + bytes(section[2:])


def image_with_correct_checksums(image: bytes) -> bytes:
    """Re-stamp header, body and footer of a full memory image."""
    if len(image) != IMAGE_SIZE:
        raise InvalidLengthError(f"Memory image must be {IMAGE_SIZE} bytes, got {len(image)}")
    return (
        with_correct_checksum(image[HEADER])
        + with_correct_checksum(image[BODY])
        + with_correct_checksum(image[FOOTER])
    )
