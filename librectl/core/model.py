"""Core data models used across registry, dispatcher, and CLI."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from librectl.core.memory import SensorReading


class SensorVariant(Enum):
    LIBRE1 = "libre1"
    LIBRE1_NEW = "libre1_new"
    LIBRE_PRO_H = "libre_pro_h"
    LIBRE_US_14DAY = "libre_us_14day"
    LIBRE2 = "libre2"
    UNKNOWN = "unknown"

    @property
    def is_encrypted(self) -> bool:
        return self in (SensorVariant.LIBRE2, SensorVariant.LIBRE_US_14DAY)


class SensorRegion(IntEnum):
    UNKNOWN = 0x00
    EUROPE = 0x01
    USA = 0x02
    NEW_ZEALAND = 0x04
    ASIA = 0x08

    @classmethod
    def from_code(cls, code: int) -> SensorRegion:
        try:
            return cls(code)
        except ValueError:
            return cls.UNKNOWN

    def __str__(self) -> str:
        return _REGION_DESCRIPTIONS[self]


_REGION_DESCRIPTIONS = {
    SensorRegion.EUROPE: "01 - Europe",
    SensorRegion.USA: "02 - US",
    SensorRegion.NEW_ZEALAND: "04 - New Zealand",
    SensorRegion.ASIA: "08 - Asia and world wide",
    SensorRegion.UNKNOWN: "Unknown",
}


class SensorState(IntEnum):
    UNKNOWN = 0
    NEW = 1
    ACTIVATING = 2
    OPERATIONAL = 3
    EXPIRING = 4
    EXPIRED = 5
    ERROR = 6

    @classmethod
    def from_byte(cls, value: int) -> SensorState:
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class CustomCommand(IntEnum):
    ACTIVATE = 0xA0
    GET_PATCH_INFO = 0xA1
    LOCK = 0xA2
    RAW_READ = 0xA3


@dataclass(frozen=True)
class PatchBlocks:
    command_original: bytes
    command_modified: bytes
    crc_original: bytes
    crc_modified: bytes


@dataclass(frozen=True)
class SensorProfile:
    variant: SensorVariant
    name: str
    prefix: str | None
    writable: bool
    crc_block: int
    command_block: int
    blocks: PatchBlocks | None = None

    def patch_blocks(self) -> PatchBlocks:
        """Return the command/crc blocks used for protected writes.

        Only writable variants carry them; callers must check ``writable`` first.
        """
        if not self.writable or self.blocks is None:
            raise RuntimeError(f"Sensor variant '{self.variant.value}' has no patch blocks")
        return self.blocks


@dataclass(frozen=True)
class Credentials:
    """Unlock parameters; activation of writable sensors needs only the password."""

    unlock_code: int | None
    password: bytes


@dataclass(frozen=True)
class ReadState:
    pass


@dataclass(frozen=True)
class ReadFRAM:
    pass


@dataclass(frozen=True)
class ReadHistory:
    pass


@dataclass(frozen=True)
class Reset:
    pass


@dataclass(frozen=True)
class Activate:
    pass


@dataclass(frozen=True)
class ChangeRegion:
    region: SensorRegion


@dataclass(frozen=True)
class RemoveLifetimeLimitation:
    pass


@dataclass(frozen=True)
class Recover:
    pass


@dataclass(frozen=True)
class Custom:
    code: int
    payload: bytes = b""


@dataclass(frozen=True)
class ReadBlock:
    number: int


@dataclass(frozen=True)
class WriteBlock:
    number: int
    data: bytes


ActionRequest = Union[
    ReadState,
    ReadFRAM,
    ReadHistory,
    Reset,
    Activate,
    ChangeRegion,
    RemoveLifetimeLimitation,
    Recover,
    Custom,
    ReadBlock,
    WriteBlock,
]


@dataclass(frozen=True)
class TagHandle:
    """Connected tag as delivered by the reader; ``identifier`` is MSB first."""

    identifier: bytes

    @property
    def uid(self) -> bytes:
        return bytes(reversed(self.identifier))


@dataclass(frozen=True)
class Reading:
    log: tuple[str, ...]
    sensor_data: SensorReading | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def text(self) -> str:
        return "".join(f"{line}\n" for line in self.log)
