"""YAML document loading and schema validation shared by the table, config and tag image loaders."""

from __future__ import annotations

import json
import re
from functools import lru_cache
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from librectl.core.errors import LibreToolsError

_HEX_RE = re.compile(r"^[0-9a-f]*$")


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[Any, Any]:
    mapping: dict[Any, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise yaml.constructor.ConstructorError(
                None, None, f"Duplicate key '{key}' in YAML document", key_node.start_mark
            )
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@lru_cache(maxsize=None)
def _schema_validator(name: str) -> Any:
    schema_text = resources.files("librectl.schemas").joinpath(name).read_text(encoding="utf-8")
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def read_yaml(path: Path | Traversable, *, error: type[LibreToolsError]) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise error(f"Could not read {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise error(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise error(f"{path} must contain a mapping at root")
    return loaded


def validate(doc: dict[str, Any], schema: str, source: object, *, error: type[LibreToolsError]) -> None:
    try:
        _schema_validator(schema).validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise error(f"Schema validation failed for {source}{where}: {exc.message}") from exc


def parse_hex(value: str, *, context: str, error: type[LibreToolsError], size: int | None = None) -> bytes:
    normalized = value.strip().lower().replace(" ", "").replace(":", "")
    if normalized.startswith("0x"):
        normalized = normalized[2:]
    if len(normalized) % 2 != 0:
        raise error(f"{context} must have even-length hex")
    if not _HEX_RE.match(normalized):
        raise error(f"{context} must contain only [0-9a-f]")
    payload = bytes.fromhex(normalized)
    if size is not None and len(payload) != size:
        raise error(f"{context} must be exactly {size} bytes, got {len(payload)}")
    return payload


def hex_string(data: bytes) -> str:
    """Upper-case hex, two characters per byte, separated by spaces."""
    return data.hex(" ").upper()
