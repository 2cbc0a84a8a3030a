"""Stable public API for building tooling on top of librectl.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

import asyncio
from datetime import datetime

from librectl.core import cipher, memory, registry
from librectl.core.dispatcher import Dispatcher, DispatcherState
from librectl.core.errors import (
    ConfigError,
    InvalidLengthError,
    LibreToolsError,
    MissingUnlockParametersError,
    SensorTableError,
    SessionBusyError,
    TagDamagedError,
    TagImageError,
    TransportConnectError,
    TransportError,
    TransportIOError,
    UnsupportedSensorTypeError,
)
from librectl.core.memory import SensorReading
from librectl.core.model import (
    Activate,
    ActionRequest,
    ChangeRegion,
    Credentials,
    Custom,
    ReadBlock,
    ReadFRAM,
    ReadHistory,
    Reading,
    ReadState,
    Recover,
    RemoveLifetimeLimitation,
    Reset,
    SensorProfile,
    SensorRegion,
    SensorState,
    SensorVariant,
    TagHandle,
    WriteBlock,
)
from librectl.transports.base import TagTransport
from librectl.transports.emulated import EmulatedTag

__all__ = [
    "LibreToolsError",
    "ConfigError",
    "InvalidLengthError",
    "MissingUnlockParametersError",
    "SensorTableError",
    "SessionBusyError",
    "TagDamagedError",
    "TagImageError",
    "TransportError",
    "TransportConnectError",
    "TransportIOError",
    "UnsupportedSensorTypeError",
    "ActionRequest",
    "ReadState",
    "ReadFRAM",
    "ReadHistory",
    "Reset",
    "Activate",
    "ChangeRegion",
    "RemoveLifetimeLimitation",
    "Recover",
    "Custom",
    "ReadBlock",
    "WriteBlock",
    "Credentials",
    "Reading",
    "SensorProfile",
    "SensorReading",
    "SensorRegion",
    "SensorState",
    "SensorVariant",
    "TagHandle",
    "TagTransport",
    "EmulatedTag",
    "DispatcherState",
    "Client",
]


class Client:
    """Public client for running sensor actions.

    A `Client` wraps one `Dispatcher` over a caller-supplied tag transport and
    exposes blocking calls intended for scripts and CLIs. Async callers can
    use `dispatcher` directly.
    """

    def __init__(self, transport: TagTransport, *, credentials: Credentials | None = None) -> None:
        self.dispatcher = Dispatcher(transport, credentials=credentials)

    @property
    def state(self) -> DispatcherState:
        return self.dispatcher.state

    def set_credentials(self, unlock_code: int | None, password: bytes) -> None:
        self.dispatcher.set_credentials(unlock_code, password)

    def perform(self, request: ActionRequest) -> Reading:
        return asyncio.run(self.dispatcher.perform(request))

    @staticmethod
    def sensor_variants() -> list[SensorProfile]:
        return registry.profiles()

    @staticmethod
    def identify(patch_info: bytes) -> SensorVariant:
        return registry.resolve_patch_info(patch_info)

    @staticmethod
    def decrypt(uid: bytes, patch_info: bytes, ciphertext: bytes) -> bytes:
        return cipher.decrypt(registry.resolve_patch_info(patch_info), uid, patch_info, ciphertext)

    @staticmethod
    def decode(
        data: bytes,
        uid: bytes,
        *,
        patch_info: bytes | None = None,
        date: datetime | None = None,
    ) -> SensorReading:
        return memory.decode(data, uid, date=date, patch_info=patch_info)
