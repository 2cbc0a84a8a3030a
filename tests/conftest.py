from __future__ import annotations

import pytest

from librectl.core import crc
from librectl.transports.emulated import EmulatedTag

# Libre 2 capture: uid (LSB first), patch info and 43 encrypted FRAM blocks.
LIBRE2_UID = bytes([157, 129, 194, 0, 0, 164, 7, 224])
LIBRE2_PATCH_INFO = bytes([157, 8, 48, 1, 115, 23])
LIBRE2_CIPHERTEXT = bytes.fromhex(
    "069add798e9af4baa2554f31eae0473abd797b271ca286f85f041ccb1b524c77"
    "5262bdb79397200d499ed6a78f02b61645bc49db079fb3a9ed4f20bd25d320a6"
    "bf96ab3c8f8f016959c562fa01c9153840bf3a11c66c486a90fd136febbbf5d0"
    "ef3c91016b5eeec79d5df305049a1981834b10f0d276ac0e5031210b510beedc"
    "4e5552f5043f81fed6e9e1933a9914f70a2695230e3ba8e0a28d0948c95a3883"
    "96597e0260268c4e97c439372514f9c7a83b29d9f043c75da479ce64d67e28e7"
    "44044cca839a6250e3ed90357d850eaec45a4eeea3c7f94a4b387f3d62b49933"
    "5544eacc759ef5b928bae33269e79ba042b27ca2467766a1ea69fcc8c3caf612"
    "47bd967b696a69df74a08e651c972acc312c6ff5a142b21a636e888c87a7aba0"
    "dd7309e6694214c3acced7e26bfae0f106db8bfbbd6aa17c624ebaecc8371544"
    "ab39081bdd76ce5ee29b528f2cbaad56f8de9e61f19cfdfe"
)
LIBRE2_PLAINTEXT = bytes.fromhex(
    "24fad01a030000000000000000000000000000000000000013ba0f0f7b0500b0"
    "5980750500a05980690500945980610500b459805e0500b05980580500bc5980"
    "4c0508f259804d0500c85980480500b01980410508a259803805009859802e05"
    "009859802a0500585980250500745980220500985980880500b85980a60800e8"
    "5980f108005c5a804109003c59807c0900ec5880bb0800dc5980ac08009c5a80"
    "2a0800345a80db0700ec59805a0700105a808f0600485a80a70500585a807f05"
    "00245980fc0400f859809e0500c059807e0500b05980aa0600a05980e4060040"
    "59801707004c59800f07007859809907009c5980f908000c5980b10900405a80"
    "b30800cc5980f00700205a804b0700945a808f0600905980f905009c5a808a05"
    "00445a804705002c5a809a0500085a809506007459807f070054598050280100"
    "8e7f3001b609ef50140396805a00cda60e741a000024996c"
)

LIBRE1_UID = bytes.fromhex("7856341200a007e0")
LIBRE1_PATCH_INFO = bytes.fromhex("df0000010000")
COMMAND_ORIGINAL = bytes.fromhex("a300565aa200baf9")
COMMAND_MODIFIED = bytes.fromhex("a300565aa200aefb")
LIBRE1_CRC_ORIGINAL = bytes.fromhex("9e422183f2900700")
LIBRE1_CRC_MODIFIED = bytes.fromhex("016e2183f2900700")


def record(glucose_raw: int) -> bytes:
    return glucose_raw.to_bytes(2, "little") + b"\x00\x00\x00\x00"


def build_image(
    *,
    state: int = 3,
    next_trend: int = 0,
    next_history: int = 0,
    minutes: int = 0,
    trend: list[int] | None = None,
    history: list[int] | None = None,
    region: int = 0x01,
) -> bytes:
    """Plaintext 344-byte image with valid checksums."""
    header = bytearray(24)
    header[4] = state
    body = bytearray(296)
    body[2] = next_trend
    body[3] = next_history
    for i, raw in enumerate(trend or []):
        body[4 + i * 6 : 10 + i * 6] = record(raw)
    for i, raw in enumerate(history or []):
        body[100 + i * 6 : 106 + i * 6] = record(raw)
    body[292:294] = minutes.to_bytes(2, "little")
    footer = bytearray(24)
    footer[3] = region
    footer[6:8] = (0x5000).to_bytes(2, "little")
    return crc.image_with_correct_checksums(bytes(header + body + footer))


def blocks_of(data: bytes) -> dict[int, bytes]:
    return {i: data[i * 8 : i * 8 + 8] for i in range(len(data) // 8)}


@pytest.fixture
def libre1_tag() -> EmulatedTag:
    blocks = blocks_of(build_image(minutes=1440, next_history=5))
    blocks[0x2B] = LIBRE1_CRC_ORIGINAL
    blocks[0xEC] = COMMAND_ORIGINAL
    return EmulatedTag(uid=LIBRE1_UID, patch_info=LIBRE1_PATCH_INFO, blocks=blocks)


@pytest.fixture
def libre2_tag() -> EmulatedTag:
    return EmulatedTag(uid=LIBRE2_UID, patch_info=LIBRE2_PATCH_INFO, blocks=blocks_of(LIBRE2_CIPHERTEXT))
