"""Sensor variant registry backed by the packaged variant table."""

from __future__ import annotations

import logging
from functools import lru_cache
from importlib import resources
from typing import Any

from librectl.core.documents import hex_string, parse_hex, read_yaml, validate
from librectl.core.errors import SensorTableError
from librectl.core.model import PatchBlocks, SensorProfile, SensorVariant

LOGGER = logging.getLogger(__name__)

_PREFIX_LENGTH = 8
_BLOCK_SIZE = 8


def _build_blocks(spec: dict[str, str], variant_id: str) -> PatchBlocks:
    def block(key: str) -> bytes:
        return parse_hex(spec[key], context=f"{variant_id}.blocks.{key}", error=SensorTableError, size=_BLOCK_SIZE)

    return PatchBlocks(
        command_original=block("command_original"),
        command_modified=block("command_modified"),
        crc_original=block("crc_original"),
        crc_modified=block("crc_modified"),
    )


def _build_profiles(doc: dict[str, Any], source: object) -> dict[SensorVariant, SensorProfile]:
    validate(doc, "variants.schema.json", source, error=SensorTableError)

    profiles: dict[SensorVariant, SensorProfile] = {}
    seen_prefixes: set[str] = set()
    for variant_id, spec in doc["variants"].items():
        try:
            variant = SensorVariant(variant_id)
        except ValueError as exc:
            raise SensorTableError(f"Unknown sensor variant '{variant_id}' in {source}") from exc
        if variant is SensorVariant.UNKNOWN:
            raise SensorTableError(f"'{variant_id}' cannot be declared in {source}")
        if spec["prefix"] in seen_prefixes:
            raise SensorTableError(f"Duplicate prefix '{spec['prefix']}' in {source}")
        seen_prefixes.add(spec["prefix"])

        writable = spec["writable"]
        if writable and "blocks" not in spec:
            raise SensorTableError(f"Writable variant '{variant_id}' must define blocks")
        profiles[variant] = SensorProfile(
            variant=variant,
            name=spec["name"],
            prefix=spec["prefix"],
            writable=writable,
            crc_block=doc["crc_block"],
            command_block=doc["command_block"],
            blocks=_build_blocks(spec["blocks"], variant_id) if writable else None,
        )

    profiles[SensorVariant.UNKNOWN] = SensorProfile(
        variant=SensorVariant.UNKNOWN,
        name="unknown",
        prefix=None,
        writable=False,
        crc_block=doc["crc_block"],
        command_block=doc["command_block"],
    )
    return profiles


@lru_cache(maxsize=1)
def _table() -> dict[SensorVariant, SensorProfile]:
    path = resources.files("librectl.sensors").joinpath("variants.yaml")
    profiles = _build_profiles(read_yaml(path, error=SensorTableError), path)
    LOGGER.debug("Loaded %d sensor variants", len(profiles) - 1)
    return profiles


def profiles() -> list[SensorProfile]:
    return [p for p in _table().values() if p.variant is not SensorVariant.UNKNOWN]


def profile(variant: SensorVariant) -> SensorProfile:
    return _table()[variant]


def resolve(patch_info_hex: str) -> SensorVariant:
    prefix = patch_info_hex[:_PREFIX_LENGTH]
    for candidate in _table().values():
        if candidate.prefix is not None and candidate.prefix == prefix:
            return candidate.variant
    return SensorVariant.UNKNOWN


def resolve_patch_info(patch_info: bytes) -> SensorVariant:
    return resolve(hex_string(patch_info))


def is_writable(variant: SensorVariant) -> bool:
    return profile(variant).writable
