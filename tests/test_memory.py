from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from conftest import LIBRE2_PATCH_INFO, LIBRE2_PLAINTEXT, LIBRE2_UID, build_image
from librectl.core import memory
from librectl.core.errors import InvalidLengthError
from librectl.core.model import SensorState


def test_decode_reference_image() -> None:
    reading = memory.decode(LIBRE2_PLAINTEXT, LIBRE2_UID, patch_info=LIBRE2_PATCH_INFO)
    assert reading.has_valid_crcs
    assert reading.state is SensorState.OPERATIONAL
    assert reading.next_trend_block == 15
    assert reading.next_history_block == 15
    assert reading.minutes_since_start == 0x2850
    assert reading.sensor_name == "Libre 2"
    assert reading.serial_number == "3MH001HM1LM"
    assert len(reading.glucose_trend) == 16
    assert len(reading.glucose_history) == 32
    # Oldest trend record is the one at the next write slot.
    assert reading.glucose_trend[0] == memory.glucose(int.from_bytes(reading.trend[90:92], "little"))


@pytest.mark.parametrize("size", [0, 343, 345, 8 * 255])
def test_decode_rejects_wrong_length(size: int) -> None:
    with pytest.raises(InvalidLengthError):
        memory.decode(bytes(size), LIBRE2_UID)


def test_glucose_formula() -> None:
    assert memory.glucose(0x0384) == (0x0384 & 0x3FFF) // 6 - 37
    assert memory.glucose(0x0384) == 113
    assert memory.glucose(0xC384) == 113


@pytest.mark.parametrize("raw", [0x0000, 0x0001, 0x00DD, 0x4000])
def test_glucose_never_negative(raw: int) -> None:
    assert memory.glucose(raw) == 0


@pytest.mark.parametrize("next_history", [0, 16, 31])
def test_history_rotation(next_history: int) -> None:
    raw = [300 + 6 * i for i in range(32)]
    image = build_image(history=raw, next_history=next_history)
    reading = memory.decode(image, LIBRE2_UID)
    decoded = [memory.glucose(r) for r in raw]
    assert reading.glucose_history == decoded[next_history:] + decoded[:next_history]


def test_trend_rotation() -> None:
    raw = [600 + 6 * i for i in range(16)]
    reading = memory.decode(build_image(trend=raw, next_trend=3), LIBRE2_UID)
    decoded = [memory.glucose(r) for r in raw]
    assert reading.glucose_trend == decoded[3:] + decoded[:3]


def test_crc_flags_report_instead_of_failing() -> None:
    image = bytearray(build_image())
    image[30] ^= 0xFF
    reading = memory.decode(bytes(image), LIBRE2_UID)
    assert reading.has_valid_header_crc
    assert not reading.has_valid_body_crc
    assert reading.has_valid_footer_crc
    assert not reading.has_valid_crcs
    assert memory.decode(reading.bytes_with_correct_crc(), LIBRE2_UID).has_valid_crcs


def test_unknown_state_byte() -> None:
    reading = memory.decode(build_image(state=0x42), LIBRE2_UID)
    assert reading.state is SensorState.UNKNOWN


def test_date_is_truncated_to_minute_and_sensor_start() -> None:
    date = datetime(2026, 3, 1, 12, 30, 45, 123)
    reading = memory.decode(build_image(minutes=90), LIBRE2_UID, date=date)
    assert reading.date == datetime(2026, 3, 1, 12, 30)
    assert reading.sensor_start == datetime(2026, 3, 1, 11, 0)
    assert reading.human_readable_age == "0.1 day(s)"


def test_most_recent_history_in_sync() -> None:
    date = datetime(2026, 3, 1, 12, 0)
    # 67 minutes: four history records written, newest at minute 63.
    reading = memory.decode(build_image(minutes=67, next_history=4), LIBRE2_UID, date=date)
    assert reading.most_recent_history() == (date - timedelta(minutes=7), 60)


def test_most_recent_history_index_ahead_of_counter() -> None:
    date = datetime(2026, 3, 1, 12, 0)
    reading = memory.decode(build_image(minutes=67, next_history=5), LIBRE2_UID, date=date)
    assert reading.most_recent_history() == (date + timedelta(minutes=8), 60)


@pytest.mark.parametrize("minutes", [0, 1, 2])
def test_most_recent_history_of_new_sensor(minutes: int) -> None:
    date = datetime(2026, 3, 1, 12, 0)
    in_sync = memory.decode(build_image(minutes=minutes, next_history=0), LIBRE2_UID, date=date)
    ahead = memory.decode(build_image(minutes=minutes, next_history=1), LIBRE2_UID, date=date)

    assert in_sync.most_recent_history() == (date - timedelta(minutes=minutes), 0)
    assert ahead.most_recent_history() == (date + timedelta(minutes=15 - minutes), 0)


def test_serial_number_defaults() -> None:
    assert memory.decode_serial_number(LIBRE2_UID) == "0MH001HM1LM"
    assert memory.decode_serial_number(b"\x01\x02") == "-"


def test_is_likely_libre1() -> None:
    assert memory.decode(build_image(), LIBRE2_UID).is_likely_libre1
    image = bytearray(build_image())
    image[12] = 0x01
    assert not memory.decode(bytes(image), LIBRE2_UID).is_likely_libre1


def test_format_dump() -> None:
    dump = memory.format_dump(LIBRE2_PLAINTEXT[:16])
    assert dump == "F860 00: 24 FA D0 1A 03 00 00 00\nF868 01: 00 00 00 00 00 00 00 00\n"
