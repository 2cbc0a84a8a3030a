"""Action dispatcher: runs one requested action against a connected sensor tag.

Each action is a strictly ordered chain of tag operations; the first failing
step aborts the chain. The only retry is the damaged-tag path: an empty patch
info turns the pending action into ``Recover`` and the chain is re-run once
on the same connection.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum

from librectl.core import cipher, crc, memory, registry
from librectl.core.documents import hex_string
from librectl.core.errors import (
    InvalidLengthError,
    LibreToolsError,
    MissingUnlockParametersError,
    SessionBusyError,
    TagDamagedError,
    TransportConnectError,
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
    CustomCommand,
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

LOGGER = logging.getLogger(__name__)

BLOCK_SIZE = 8
FULL_DUMP_BLOCKS = 0xFF
ENCRYPTED_STATE_BLOCKS = cipher.BLOCK_COUNT
HISTORY_BLOCKS = cipher.BLOCK_COUNT
REGION_WINDOW = (0x28, 0x29, 0x2A)

_REGION_OFFSET = 3
_LIFETIME_OFFSET = 6

_ACTIONS = (
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
)


class DispatcherState(Enum):
    IDLE = "idle"
    SESSION_ACTIVE = "session_active"
    PATCH_INFO_FETCHED = "patch_info_fetched"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    RECOVERING_ONCE = "recovering_once"


@dataclass(frozen=True)
class _Tag:
    handle: TagHandle
    uid: bytes
    patch_info: bytes
    variant: SensorVariant


def set_region(window: bytes, region: SensorRegion) -> bytes:
    """Return the region window with its region byte replaced (checksum untouched)."""
    patched = bytearray(window)
    patched[_REGION_OFFSET] = region.value
    return bytes(patched)


def remove_lifetime_limit(window: bytes) -> bytes:
    """Return the region window with the lifetime limit set to 0xFFFF (checksum untouched)."""
    patched = bytearray(window)
    patched[_LIFETIME_OFFSET : _LIFETIME_OFFSET + 2] = b"\xff\xff"
    return bytes(patched)


@contextmanager
def _transport_errors() -> Iterator[None]:
    """Report exceptions of a host transport as TransportIOError."""
    try:
        yield
    except LibreToolsError:
        raise
    except Exception as exc:
        LOGGER.debug("Transport failure", exc_info=True)
        raise TransportIOError(f"{type(exc).__name__}: {exc}") from exc


class Dispatcher:
    """Runs action requests one at a time against a tag transport."""

    def __init__(self, transport: TagTransport, *, credentials: Credentials | None = None) -> None:
        self.transport = transport
        self._credentials = credentials
        self._request: ActionRequest | None = None
        self._log: list[str] = []
        self._state = DispatcherState.IDLE
        self.state_history: list[DispatcherState] = []

    @property
    def state(self) -> DispatcherState:
        return self._state

    @property
    def pending_request(self) -> ActionRequest | None:
        return self._request

    def set_credentials(self, unlock_code: int | None, password: bytes) -> None:
        self._credentials = Credentials(unlock_code=unlock_code, password=bytes(password))

    async def perform(self, request: ActionRequest) -> Reading:
        if not isinstance(request, _ACTIONS):
            raise TypeError(f"Unsupported action request: {request!r}")
        if self._request is not None:
            raise SessionBusyError(f"Action {type(self._request).__name__} is still in progress")

        self._request = request
        self._log = []
        self.state_history = []
        self._set_state(DispatcherState.SESSION_ACTIVE)
        self._write_log("Start processing...")
        try:
            return await self._run()
        finally:
            self._request = None
            self._set_state(DispatcherState.IDLE)

    async def _run(self) -> Reading:
        try:
            handle = await self.transport.connect()
        except LibreToolsError as exc:
            return self._fail(None, exc)
        except Exception as exc:
            LOGGER.debug("Connect failure", exc_info=True)
            return self._fail(None, TransportConnectError(f"{type(exc).__name__}: {exc}"))

        auto_recover = True
        while True:
            try:
                sensor_data = await self._process_tag(handle)
            except TagDamagedError as exc:
                if not auto_recover:
                    return self._fail(handle, exc)
                auto_recover = False
                LOGGER.warning("Empty patch info, switching to recovery")
                self._write_log("Tag damaged, trying to recover")
                self._request = Recover()
                self._set_state(DispatcherState.RECOVERING_ONCE)
                continue
            except LibreToolsError as exc:
                return self._fail(handle, exc)

            self._set_state(DispatcherState.COMPLETED)
            self._write_log("Completed")
            self.transport.invalidate(handle, None)
            return Reading(log=tuple(self._log), sensor_data=sensor_data)

    def _fail(self, handle: TagHandle | None, exc: Exception) -> Reading:
        message = str(exc)
        self._set_state(DispatcherState.FAILED)
        self._write_log(f"Error: {message}")
        if handle is not None:
            self.transport.invalidate(handle, message)
        return Reading(log=tuple(self._log), sensor_data=None, error=message)

    async def _process_tag(self, handle: TagHandle) -> SensorReading | None:
        request = self._request
        uid = handle.uid
        self._write_log("Tag connected")
        self._write_log(f"UID: {hex_string(uid)}")

        patch_info = await self._command(handle, CustomCommand.GET_PATCH_INFO)
        if not patch_info and not isinstance(request, Recover):
            raise TagDamagedError()
        self._set_state(DispatcherState.PATCH_INFO_FETCHED)

        variant = registry.resolve_patch_info(patch_info)
        region = SensorRegion.from_code(patch_info[3]) if len(patch_info) > 3 else SensorRegion.UNKNOWN
        self._write_log(f"Patch Info: {hex_string(patch_info)}")
        self._write_log(f"Type: {registry.profile(variant).name}")
        self._write_log(f"Region: {region}")

        self._set_state(DispatcherState.EXECUTING)
        return await self._execute(request, _Tag(handle=handle, uid=uid, patch_info=patch_info, variant=variant))

    async def _execute(self, request: ActionRequest, tag: _Tag) -> SensorReading | None:
        if isinstance(request, ReadState):
            count = ENCRYPTED_STATE_BLOCKS if tag.variant.is_encrypted else 1
            data = await self._read_blocks(tag, count)
            self._log_state(self._plaintext(tag, data))
        elif isinstance(request, ReadFRAM):
            data = await self._read_blocks(tag, FULL_DUMP_BLOCKS)
            self._log_state(self._plaintext(tag, data))
            self._write_log("FRAM dump:")
            for line in memory.format_dump(data).splitlines():
                self._write_log(line)
        elif isinstance(request, ReadHistory):
            data = await self._read_blocks(tag, HISTORY_BLOCKS)
            plaintext = self._plaintext(tag, data)
            self._log_state(plaintext)
            reading = memory.decode(plaintext, tag.uid, patch_info=tag.patch_info)
            self._write_log(f"CRC valid: {reading.has_valid_crcs}")
            self._write_log(f"Age: {reading.human_readable_age}")
            self._write_log(f"History: {reading.glucose_history}")
            self._write_log(f"Trend: {reading.glucose_trend}")
            return reading
        elif isinstance(request, Reset):
            await self._reset(tag)
            self._write_log("Sensor restarted successfully")
        elif isinstance(request, Activate):
            await self._activate(tag)
            self._write_log("Sensor activated successfully")
        elif isinstance(request, ChangeRegion):
            region = request.region
            await self._patch_region_window(tag, lambda window: set_region(window, region))
            self._write_log(f"Region changed to {region}")
        elif isinstance(request, RemoveLifetimeLimitation):
            await self._patch_region_window(tag, remove_lifetime_limit)
            self._write_log("Lifetime limitation removed")
        elif isinstance(request, Recover):
            await self._recover(tag)
            self._write_log("Sensor recovered")
        elif isinstance(request, Custom):
            response = await self._command(tag.handle, request.code, request.payload)
            self._write_log(f"Command 0x{request.code:02X} response: {hex_string(response) or '<empty>'}")
        elif isinstance(request, ReadBlock):
            data = await self._read_block(tag.handle, request.number)
            self._write_log(f"Block 0x{request.number:02X}: {hex_string(data)}")
        elif isinstance(request, WriteBlock):
            if len(request.data) != BLOCK_SIZE:
                raise InvalidLengthError(f"Block data must be {BLOCK_SIZE} bytes, got {len(request.data)}")
            await self._write_block(tag.handle, request.number, request.data)
            self._write_log(f"Block 0x{request.number:02X} written: {hex_string(request.data)}")
        return None

    async def _read_blocks(self, tag: _Tag, count: int) -> bytes:
        """Read blocks 0..count-1, zero-filling any block that fails."""
        data = bytearray()
        failed: list[int] = []
        for number in range(count):
            try:
                block = await self._read_block(tag.handle, number)
            except LibreToolsError as exc:
                LOGGER.warning("Block 0x%02X read failed: %s", number, exc)
                block = b""
            if len(block) != BLOCK_SIZE:
                failed.append(number)
                block = bytes(BLOCK_SIZE)
            data += block
        if failed:
            numbers = ", ".join(f"0x{n:02X}" for n in failed)
            self._write_log(f"{len(failed)} block(s) unreadable, zero-filled: {numbers}")
        return bytes(data)

    def _plaintext(self, tag: _Tag, data: bytes) -> bytes:
        if tag.variant.is_encrypted:
            return cipher.decrypt(tag.variant, tag.uid, tag.patch_info, data)
        return data

    def _log_state(self, plaintext: bytes) -> None:
        state = SensorState.from_byte(plaintext[4])
        self._write_log(f"Sensor state: {state.name.lower()} ({state.value})")

    def _require_credentials(self) -> Credentials:
        if self._credentials is None or self._credentials.unlock_code is None:
            raise MissingUnlockParametersError()
        return self._credentials

    def _require_password(self) -> bytes:
        if self._credentials is None:
            raise MissingUnlockParametersError()
        return self._credentials.password

    def _require_writable(self, variant: SensorVariant) -> SensorProfile:
        if not registry.is_writable(variant):
            raise UnsupportedSensorTypeError()
        return registry.profile(variant)

    async def _unlock(self, tag: _Tag, credentials: Credentials) -> None:
        await self._command(tag.handle, credentials.unlock_code, credentials.password)

    async def _lock(self, tag: _Tag, credentials: Credentials) -> None:
        await self._command(tag.handle, CustomCommand.LOCK, credentials.password)

    async def _reset(self, tag: _Tag) -> None:
        credentials = self._require_credentials()
        profile = self._require_writable(tag.variant)
        blocks = profile.patch_blocks()

        await self._unlock(tag, credentials)
        await self._write_block(tag.handle, profile.command_block, blocks.command_modified)
        await self._write_block(tag.handle, profile.crc_block, blocks.crc_modified)
        # With the command block patched, patch info re-initialises the sensor.
        await self._command(tag.handle, CustomCommand.GET_PATCH_INFO)
        await self._write_block(tag.handle, profile.command_block, blocks.command_original)
        await self._write_block(tag.handle, profile.crc_block, blocks.crc_original)
        await self._lock(tag, credentials)

    async def _activate(self, tag: _Tag) -> None:
        if tag.variant.is_encrypted:
            params = cipher.activation_parameters(tag.uid)
        elif registry.is_writable(tag.variant):
            params = self._require_password()
        else:
            raise UnsupportedSensorTypeError()
        await self._command(tag.handle, CustomCommand.ACTIVATE, params)

    async def _patch_region_window(self, tag: _Tag, edit: Callable[[bytes], bytes]) -> None:
        credentials = self._require_credentials()
        self._require_writable(tag.variant)

        window = bytearray()
        for number in REGION_WINDOW:
            window += await self._read_block(tag.handle, number)
        if len(window) != BLOCK_SIZE * len(REGION_WINDOW):
            raise InvalidLengthError(f"Region window must be {BLOCK_SIZE * len(REGION_WINDOW)} bytes, got {len(window)}")

        patched = crc.with_correct_checksum(edit(bytes(window)))
        await self._unlock(tag, credentials)
        await self._write_block(tag.handle, REGION_WINDOW[0], patched[:BLOCK_SIZE])
        await self._lock(tag, credentials)

    async def _recovery_profile(self, tag: _Tag) -> SensorProfile:
        if registry.is_writable(tag.variant):
            return registry.profile(tag.variant)

        # Without usable patch info, the crc block tells the writable variants apart.
        crc_block_number = registry.profile(tag.variant).crc_block
        crc_block = await self._read_block(tag.handle, crc_block_number)
        for candidate in registry.profiles():
            if not candidate.writable:
                continue
            blocks = candidate.patch_blocks()
            if crc_block in (blocks.crc_modified, blocks.crc_original):
                self._write_log(f"Identified {candidate.name} from crc block")
                return candidate
        raise UnsupportedSensorTypeError()

    async def _recover(self, tag: _Tag) -> None:
        credentials = self._require_credentials()
        profile = await self._recovery_profile(tag)
        blocks = profile.patch_blocks()

        await self._unlock(tag, credentials)
        await self._write_block(tag.handle, profile.command_block, blocks.command_original)
        await self._write_block(tag.handle, profile.crc_block, blocks.crc_original)
        await self._lock(tag, credentials)

    async def _read_block(self, handle: TagHandle, number: int) -> bytes:
        with _transport_errors():
            return await self.transport.read_block(handle, number)

    async def _write_block(self, handle: TagHandle, number: int, data: bytes) -> None:
        with _transport_errors():
            await self.transport.write_block(handle, number, data)

    async def _command(self, handle: TagHandle, code: int, params: bytes = b"") -> bytes:
        with _transport_errors():
            return await self.transport.custom_command(handle, code, params)

    def _set_state(self, state: DispatcherState) -> None:
        self._state = state
        self.state_history.append(state)

    def _write_log(self, message: str) -> None:
        LOGGER.debug(message)
        self._log.append(message)
