"""FRAM stream cipher used by Libre 2 and Libre US 14-day sensors.

Every 8-byte block is XORed with a 64-bit key derived from the sensor uid,
the patch info and the block index. Decrypting 43 blocks yields the
plaintext 344-byte memory image.
"""

from __future__ import annotations

from collections.abc import Sequence

from librectl.core.errors import InvalidLengthError, UnsupportedSensorTypeError
from librectl.core.model import SensorVariant

KEY = (0xA0C5, 0x6860, 0x0000, 0x14C6)
BLOCK_COUNT = 43
BLOCK_SIZE = 8
FRAM_SIZE = BLOCK_COUNT * BLOCK_SIZE

_US_14DAY_FIXED_SEED = 0xCADC
_ACTIVATE_X = 0x1B
_ACTIVATE_Y = 0x1B6A
_MASK = 0xFFFF


def _word(data: Sequence[int], low: int) -> int:
    return (data[low + 1] << 8) | data[low]


def _op(value: int) -> int:
    result = value >> 2
    if value & 1:
        result ^= KEY[1]
    if value & 2:
        result ^= KEY[0]
    return result


def process_crypto(s1: int, s2: int, s3: int, s4: int) -> tuple[int, int, int, int]:
    r0 = _op(s1) ^ s4
    r1 = _op(r0) ^ s3
    r2 = _op(r1) ^ s2
    r3 = _op(r2) ^ s1
    r4 = _op(r3)
    r5 = _op(r4 ^ r0)
    r6 = _op(r5 ^ r1)
    r7 = _op(r6 ^ r2)
    return r0 ^ r4, r1 ^ r5, r2 ^ r6, r3 ^ r7


def _check_inputs(sensor_id: bytes, info: bytes | None = None) -> None:
    if len(sensor_id) != 8:
        raise InvalidLengthError(f"Sensor id must be 8 bytes, got {len(sensor_id)}")
    if info is not None and len(info) < 6:
        raise InvalidLengthError(f"Sensor info must be at least 6 bytes, got {len(info)}")


def block_key(variant: SensorVariant, sensor_id: bytes, info: bytes, index: int) -> tuple[int, int, int, int]:
    if variant is SensorVariant.LIBRE_US_14DAY:
        if index < 3 or index >= 40:
            s1 = _US_14DAY_FIXED_SEED
        else:
            s1 = _word(info, 4)
    elif variant is SensorVariant.LIBRE2:
        s1 = (_word(sensor_id, 4) + (_word(info, 4) ^ 0x44) + index) & _MASK
    else:
        raise UnsupportedSensorTypeError()
    s2 = (_word(sensor_id, 2) + KEY[2]) & _MASK
    s3 = (_word(sensor_id, 0) + (index << 1)) & _MASK
    s4 = 0x241A ^ KEY[3]
    return process_crypto(s1, s2, s3, s4)


def decrypt(variant: SensorVariant, sensor_id: bytes, info: bytes, ciphertext: bytes) -> bytes:
    """Decrypt the first 43 FRAM blocks.

    ``sensor_id`` is the 8-byte uid (LSB first), ``info`` the patch info.
    Only the first 344 bytes of ``ciphertext`` are processed.
    """
    if not variant.is_encrypted:
        raise UnsupportedSensorTypeError()
    _check_inputs(sensor_id, info)
    if len(ciphertext) < FRAM_SIZE:
        raise InvalidLengthError(f"Encrypted FRAM must be at least {FRAM_SIZE} bytes, got {len(ciphertext)}")

    result = bytearray()
    for i in range(BLOCK_COUNT):
        f1, f2, f3, f4 = block_key(variant, sensor_id, info, i)
        offset = i * BLOCK_SIZE
        for j, word in enumerate((f4, f3, f2, f1)):
            result.append(ciphertext[offset + 2 * j] ^ (word & 0xFF))
            result.append(ciphertext[offset + 2 * j + 1] ^ (word >> 8))
    return bytes(result)


def activation_parameters(sensor_id: bytes) -> bytes:
    """Payload of the uid-derived activate command (0xA0) for the Libre 2 family."""
    _check_inputs(sensor_id)
    s1 = (_word(sensor_id, 4) + _ACTIVATE_X + _ACTIVATE_Y) & _MASK
    s2 = (_word(sensor_id, 2) + KEY[2]) & _MASK
    s3 = (_word(sensor_id, 0) + _ACTIVATE_X * 2) & _MASK
    s4 = 0x241A ^ KEY[3]
    f1, f2, _, _ = process_crypto(s1, s2, s3, s4)
    r1 = f1 ^ 0x4163
    r2 = f2 ^ 0x4344
    return bytes([_ACTIVATE_X, r1 & 0xFF, r1 >> 8, r2 & 0xFF, r2 >> 8])
