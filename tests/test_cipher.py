from __future__ import annotations

import pytest

from conftest import LIBRE2_CIPHERTEXT, LIBRE2_PATCH_INFO, LIBRE2_PLAINTEXT, LIBRE2_UID
from librectl.core import cipher, crc
from librectl.core.errors import InvalidLengthError, UnsupportedSensorTypeError
from librectl.core.model import SensorVariant


def test_decrypt_reference_capture() -> None:
    plaintext = cipher.decrypt(SensorVariant.LIBRE2, LIBRE2_UID, LIBRE2_PATCH_INFO, LIBRE2_CIPHERTEXT)
    assert plaintext == LIBRE2_PLAINTEXT
    assert crc.is_valid(plaintext[crc.HEADER])
    assert crc.is_valid(plaintext[crc.BODY])
    assert crc.is_valid(plaintext[crc.FOOTER])


def test_decrypt_is_deterministic_and_reapplication_restores_ciphertext() -> None:
    first = cipher.decrypt(SensorVariant.LIBRE2, LIBRE2_UID, LIBRE2_PATCH_INFO, LIBRE2_CIPHERTEXT)
    second = cipher.decrypt(SensorVariant.LIBRE2, LIBRE2_UID, LIBRE2_PATCH_INFO, LIBRE2_CIPHERTEXT)
    assert first == second
    assert cipher.decrypt(SensorVariant.LIBRE2, LIBRE2_UID, LIBRE2_PATCH_INFO, first) == LIBRE2_CIPHERTEXT


def test_decrypt_ignores_trailing_blocks() -> None:
    padded = LIBRE2_CIPHERTEXT + bytes(8 * 10)
    assert cipher.decrypt(SensorVariant.LIBRE2, LIBRE2_UID, LIBRE2_PATCH_INFO, padded) == LIBRE2_PLAINTEXT


def test_us_14day_uses_fixed_seed_for_header_and_footer() -> None:
    info_a = bytes.fromhex("e50003020000")
    info_b = bytes.fromhex("e5000302abcd")
    for index in (0, 2, 40, 42):
        assert cipher.block_key(SensorVariant.LIBRE_US_14DAY, LIBRE2_UID, info_a, index) == cipher.block_key(
            SensorVariant.LIBRE_US_14DAY, LIBRE2_UID, info_b, index
        )
    assert cipher.block_key(SensorVariant.LIBRE_US_14DAY, LIBRE2_UID, info_a, 3) != cipher.block_key(
        SensorVariant.LIBRE_US_14DAY, LIBRE2_UID, info_b, 3
    )


def test_block_keys_are_16_bit() -> None:
    for index in range(cipher.BLOCK_COUNT):
        key = cipher.block_key(SensorVariant.LIBRE2, bytes([0xFF] * 8), bytes([0xFF] * 6), index)
        assert all(0 <= word <= 0xFFFF for word in key)


@pytest.mark.parametrize(
    "variant",
    [SensorVariant.LIBRE1, SensorVariant.LIBRE1_NEW, SensorVariant.LIBRE_PRO_H, SensorVariant.UNKNOWN],
)
def test_decrypt_rejects_unencrypted_variants(variant: SensorVariant) -> None:
    with pytest.raises(UnsupportedSensorTypeError):
        cipher.decrypt(variant, LIBRE2_UID, LIBRE2_PATCH_INFO, LIBRE2_CIPHERTEXT)


def test_decrypt_rejects_short_inputs() -> None:
    with pytest.raises(InvalidLengthError):
        cipher.decrypt(SensorVariant.LIBRE2, LIBRE2_UID[:7], LIBRE2_PATCH_INFO, LIBRE2_CIPHERTEXT)
    with pytest.raises(InvalidLengthError):
        cipher.decrypt(SensorVariant.LIBRE2, LIBRE2_UID, LIBRE2_PATCH_INFO[:5], LIBRE2_CIPHERTEXT)
    with pytest.raises(InvalidLengthError):
        cipher.decrypt(SensorVariant.LIBRE2, LIBRE2_UID, LIBRE2_PATCH_INFO, LIBRE2_CIPHERTEXT[:-8])


def test_activation_parameters() -> None:
    params = cipher.activation_parameters(LIBRE2_UID)
    assert params == bytes.fromhex("1bee8823ed")
