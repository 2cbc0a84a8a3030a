"""Credentials configuration read from the user's XDG config directory."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from librectl.core.documents import parse_hex, read_yaml, validate
from librectl.core.errors import ConfigError
from librectl.core.model import Credentials

LOGGER = logging.getLogger(__name__)


def config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "librectl/config.yaml"


def parse_code(value: int | str) -> int:
    if isinstance(value, int):
        return value
    try:
        return int(value.strip(), 16)
    except ValueError as exc:
        raise ConfigError(f"Command code '{value}' is not hexadecimal") from exc


def parse_password(value: str) -> bytes:
    password = parse_hex(value, context="password", error=ConfigError)
    if not password:
        raise ConfigError("password must not be empty")
    return password


def load_credentials(
    path: Path | None = None,
    *,
    unlock_code: str | None = None,
    password: str | None = None,
) -> Credentials | None:
    """Merge the config file with explicit overrides.

    Returns ``None`` when no password is known. The unlock code may be
    missing; actions that unlock the tag then fail with
    ``MissingUnlockParametersError``.
    """
    source = path or config_path()
    doc: dict = {}
    if source.exists():
        doc = read_yaml(source, error=ConfigError)
        validate(doc, "config.schema.json", source, error=ConfigError)
        LOGGER.debug("Loaded config from %s", source)

    code_value = unlock_code if unlock_code is not None else doc.get("unlock_code")
    password_value = password if password is not None else doc.get("password")
    if password_value is None:
        return None
    return Credentials(
        unlock_code=parse_code(code_value) if code_value is not None else None,
        password=parse_password(password_value),
    )
