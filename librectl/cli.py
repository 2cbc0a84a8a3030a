"""Typer CLI entrypoint."""

from __future__ import annotations

import logging
from pathlib import Path

import typer

from librectl.api import Client
from librectl.core.config import load_credentials, parse_code
from librectl.core.documents import hex_string, parse_hex
from librectl.core.errors import ConfigError, LibreToolsError
from librectl.core.memory import format_dump
from librectl.core.model import (
    Activate,
    ActionRequest,
    ChangeRegion,
    Custom,
    ReadBlock,
    ReadFRAM,
    ReadHistory,
    ReadState,
    Recover,
    RemoveLifetimeLimitation,
    Reset,
    SensorRegion,
    WriteBlock,
)
from librectl.transports.emulated import EmulatedTag

app = typer.Typer(help="FreeStyle Libre sensor tag toolkit: inspect, decrypt, decode and patch FRAM")

_SIMPLE_ACTIONS = {
    "read-state": ReadState,
    "read-fram": ReadFRAM,
    "read-history": ReadHistory,
    "reset": Reset,
    "activate": Activate,
    "remove-lifetime": RemoveLifetimeLimitation,
    "recover": Recover,
}
_ACTION_NAMES = sorted([*_SIMPLE_ACTIONS, "change-region", "custom", "read-block", "write-block"])


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)


def _hex(value: str, name: str, size: int | None = None) -> bytes:
    return parse_hex(value, context=name, error=ConfigError, size=size)


def _region(value: str) -> SensorRegion:
    key = value.strip().upper().replace("-", "_")
    if key in SensorRegion.__members__:
        return SensorRegion[key]
    try:
        return SensorRegion(int(value, 16))
    except ValueError as exc:
        choices = ", ".join(r.name.lower().replace("_", "-") for r in SensorRegion if r is not SensorRegion.UNKNOWN)
        raise ConfigError(f"Unknown region '{value}'. Choose one of: {choices}") from exc


def _build_request(
    action: str,
    region: str | None,
    code: str | None,
    payload: str,
    block: int | None,
    data: str | None,
) -> ActionRequest:
    if action in _SIMPLE_ACTIONS:
        return _SIMPLE_ACTIONS[action]()
    if action == "change-region":
        if region is None:
            raise ConfigError("change-region requires --region")
        return ChangeRegion(region=_region(region))
    if action == "custom":
        if code is None:
            raise ConfigError("custom requires --code")
        return Custom(code=parse_code(code), payload=_hex(payload, "payload"))
    if action in ("read-block", "write-block"):
        if block is None:
            raise ConfigError(f"{action} requires --block")
        if action == "read-block":
            return ReadBlock(number=block)
        if data is None:
            raise ConfigError("write-block requires --data")
        return WriteBlock(number=block, data=_hex(data, "data", size=8))
    raise ConfigError(f"Unknown action '{action}'. Available: {', '.join(_ACTION_NAMES)}")


@app.command("variants")
def list_variants() -> None:
    """List known sensor variants and their patch-info prefixes."""
    for profile in Client.sensor_variants():
        writable = " (writable)" if profile.writable else ""
        typer.echo(f"{profile.prefix}  {profile.variant.value}: {profile.name}{writable}")


@app.command("run")
def run_action(
    action: str = typer.Argument(..., help=f"One of: {', '.join(_ACTION_NAMES)}"),
    tag_image: Path = typer.Option(..., "--tag-image", help="YAML tag image to run against"),
    region: str | None = typer.Option(None, "--region", help="Region name or hex code"),
    code: str | None = typer.Option(None, "--code", help="Custom command code (hex)"),
    payload: str = typer.Option("", "--payload", help="Custom command payload (hex)"),
    block: int | None = typer.Option(None, "--block", min=0, max=255, help="Block number"),
    data: str | None = typer.Option(None, "--data", help="8-byte block data (hex)"),
    unlock_code: str | None = typer.Option(None, "--unlock-code", help="Unlock command code (hex)"),
    password: str | None = typer.Option(None, "--password", help="Unlock password (hex)"),
    save: bool = typer.Option(False, "--save", help="Write the modified tag image back"),
) -> None:
    """Run an action against a tag image and print the session log."""
    try:
        request = _build_request(action, region, code, payload, block, data)
        credentials = load_credentials(unlock_code=unlock_code, password=password)
        tag = EmulatedTag.from_file(tag_image)
        client = Client(tag, credentials=credentials)
        reading = client.perform(request)
        typer.echo(reading.text, nl=False)
        if save:
            tag.save(tag_image)
        if not reading.ok:
            raise typer.Exit(code=1)
    except LibreToolsError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("decrypt")
def decrypt_fram(
    source: Path,
    uid: str = typer.Option(..., "--uid", help="Sensor uid, LSB first (hex)"),
    patch_info: str = typer.Option(..., "--patch-info", help="Patch info (hex)"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write plaintext to this file"),
) -> None:
    """Decrypt a raw Libre 2 / US 14-day FRAM capture."""
    try:
        ciphertext = _read_binary(source)
        plaintext = Client.decrypt(_hex(uid, "uid", size=8), _hex(patch_info, "patch info"), ciphertext)
        if output is not None:
            output.write_bytes(plaintext)
            typer.echo(f"Wrote {len(plaintext)} bytes to {output}")
        else:
            typer.echo(format_dump(plaintext), nl=False)
    except (LibreToolsError, OSError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("decode")
def decode_fram(
    source: Path,
    uid: str = typer.Option(..., "--uid", help="Sensor uid, LSB first (hex)"),
    patch_info: str | None = typer.Option(None, "--patch-info", help="Patch info (hex)"),
) -> None:
    """Decode a 344-byte plaintext FRAM image."""
    try:
        reading = Client.decode(
            _read_binary(source),
            _hex(uid, "uid", size=8),
            patch_info=_hex(patch_info, "patch info") if patch_info else None,
        )
    except LibreToolsError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    typer.echo(f"Sensor: {reading.sensor_name} serial {reading.serial_number} (uid {hex_string(reading.uid)})")
    typer.echo(f"State: {reading.state.name.lower()} ({reading.state.value})")
    typer.echo(
        "CRC: "
        f"header={'ok' if reading.has_valid_header_crc else 'bad'} "
        f"body={'ok' if reading.has_valid_body_crc else 'bad'} "
        f"footer={'ok' if reading.has_valid_footer_crc else 'bad'}"
    )
    typer.echo(f"Age: {reading.human_readable_age} ({reading.minutes_since_start} minutes)")
    typer.echo(f"Trend: {reading.glucose_trend}")
    typer.echo(f"History: {reading.glucose_history}")


def _read_binary(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise ConfigError(f"Could not read {path}: {exc}") from exc


def run() -> None:
    app()


if __name__ == "__main__":
    run()
