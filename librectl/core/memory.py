"""Decoding of the 344-byte plaintext FRAM image.

Layout: header (3 blocks), body (37 blocks), footer (3 blocks). The body
holds two circular buffers of 6-byte glucose records: 16 trend records
(one per minute) and 32 history records (one per 15 minutes), each with a
"next slot" index that points at the oldest record.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from librectl.core import crc
from librectl.core.documents import hex_string
from librectl.core.errors import InvalidLengthError
from librectl.core.model import SensorState

IMAGE_SIZE = crc.IMAGE_SIZE
RECORD_SIZE = 6
TREND_RECORDS = 16
HISTORY_RECORDS = 32

_TREND_OFFSET = 4
_HISTORY_OFFSET = 100
_MINUTES_OFFSET = 292
_DUMP_BASE_ADDRESS = 0xF860

_SERIAL_ALPHABET = "0123456789ACDEFGHJKLMNPQRTUVWXYZ"

_FAMILY_NAMES = {
    "70": "Libre Pro/H",
    "9D": "Libre 2",
    "DF": "Libre 1",
    "E5": "Libre US 14 Days",
}


def glucose(raw: int) -> int:
    """Glucose value (mg/dL) of a record whose first two bytes are ``raw``.

    Raw values below the sensor's floor clamp to zero instead of going negative.
    """
    return max(0, (raw & 0x3FFF) // 6 - 37)


def _records(buffer: bytes, count: int) -> list[int]:
    return [
        glucose(int.from_bytes(buffer[i * RECORD_SIZE : i * RECORD_SIZE + 2], "little"))
        for i in range(count)
    ]


def chronological(values: list[int], next_index: int) -> list[int]:
    """Rotate a circular buffer so the slot at ``next_index`` comes first."""
    return values[next_index:] + values[:next_index]


def decode_serial_number(uid: bytes, patch_info: bytes | None = None) -> str:
    """Printed serial number of the sensor, derived from its uid (LSB first)."""
    if len(uid) != 8:
        return "-"
    family = patch_info[2] >> 4 if patch_info is not None and len(patch_info) > 2 else 0
    # Six uid bytes below the manufacturer code, most significant first, then padded.
    value = int.from_bytes(bytes(reversed(uid[:6])) + b"\x00\x00", "big")
    chars = [_SERIAL_ALPHABET[(value >> (59 - 5 * i)) & 0x1F] for i in range(10)]
    return f"{family}{''.join(chars)}"


def format_dump(data: bytes) -> str:
    lines = []
    for number in range(len(data) // 8):
        block = data[number * 8 : number * 8 + 8]
        lines.append(f"{_DUMP_BASE_ADDRESS + number * 8:04X} {number:02X}: {hex_string(block)}\n")
    return "".join(lines)


@dataclass(frozen=True)
class SensorReading:
    uid: bytes
    data: bytes
    date: datetime
    patch_info: bytes | None = None
    serial_number: str = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "serial_number", decode_serial_number(self.uid, self.patch_info))

    @property
    def header(self) -> bytes:
        return self.data[crc.HEADER]

    @property
    def body(self) -> bytes:
        return self.data[crc.BODY]

    @property
    def footer(self) -> bytes:
        return self.data[crc.FOOTER]

    @property
    def patch_uid(self) -> str:
        return hex_string(self.uid)

    @property
    def sensor_name(self) -> str:
        if self.patch_info is None or not self.patch_info:
            return "Libre"
        return _FAMILY_NAMES.get(f"{self.patch_info[0]:02X}", "Libre")

    @property
    def state(self) -> SensorState:
        return SensorState.from_byte(self.header[4])

    @property
    def minutes_since_start(self) -> int:
        return int.from_bytes(self.body[_MINUTES_OFFSET : _MINUTES_OFFSET + 2], "little")

    @property
    def next_trend_block(self) -> int:
        return self.body[2]

    @property
    def next_history_block(self) -> int:
        return self.body[3]

    @property
    def trend(self) -> bytes:
        return self.body[_TREND_OFFSET : _TREND_OFFSET + TREND_RECORDS * RECORD_SIZE]

    @property
    def history(self) -> bytes:
        return self.body[_HISTORY_OFFSET : _HISTORY_OFFSET + HISTORY_RECORDS * RECORD_SIZE]

    @property
    def glucose_trend(self) -> list[int]:
        return chronological(_records(self.trend, TREND_RECORDS), self.next_trend_block)

    @property
    def glucose_history(self) -> list[int]:
        return chronological(_records(self.history, HISTORY_RECORDS), self.next_history_block)

    @property
    def has_valid_header_crc(self) -> bool:
        return crc.is_valid(self.header)

    @property
    def has_valid_body_crc(self) -> bool:
        return crc.is_valid(self.body)

    @property
    def has_valid_footer_crc(self) -> bool:
        return crc.is_valid(self.footer)

    @property
    def has_valid_crcs(self) -> bool:
        return self.has_valid_header_crc and self.has_valid_body_crc and self.has_valid_footer_crc

    @property
    def footer_crc(self) -> int:
        return crc.checksum(self.footer[2:])

    @property
    def is_likely_libre1(self) -> bool:
        return not any(self.data[9:24])

    @property
    def sensor_start(self) -> datetime:
        return self.date - timedelta(minutes=self.minutes_since_start)

    @property
    def human_readable_age(self) -> str:
        return f"{self.minutes_since_start / 1440:.1f} day(s)"

    def most_recent_history(self) -> tuple[datetime, int]:
        """Date and minute counter of the newest history record.

        History records land every 15 minutes, 3 minutes late. The history
        index is sometimes bumped before the minute counter; that case is
        detected and shifted by one period.
        """
        minutes = self.minutes_since_start
        # Truncating division: a sensor younger than 3 minutes has counter 0.
        offset = minutes - 3
        expected_index = int(offset / 15) % HISTORY_RECORDS
        delay = int(math.fmod(offset, 15)) + 3
        if expected_index == self.next_history_block:
            return self.date - timedelta(minutes=delay), minutes - delay
        return self.date - timedelta(minutes=delay - 15), minutes - delay

    def bytes_with_correct_crc(self) -> bytes:
        return crc.image_with_correct_checksums(self.data)


def decode(
    data: bytes,
    uid: bytes,
    date: datetime | None = None,
    patch_info: bytes | None = None,
) -> SensorReading:
    if len(data) != IMAGE_SIZE:
        raise InvalidLengthError(f"Memory image must be {IMAGE_SIZE} bytes, got {len(data)}")
    read_at = (date or datetime.now()).replace(second=0, microsecond=0)
    return SensorReading(uid=bytes(uid), data=bytes(data), date=read_at, patch_info=patch_info)
