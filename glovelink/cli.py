"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import typer

from glovelink.core.device_match import is_allowed
from glovelink.core.discovery import BleakRadioPicker, ComportSerialPicker, list_serial_ports, scan_devices
from glovelink.core.errors import GlovelinkError
from glovelink.core.link import DeviceLink, LogCollector
from glovelink.core.model import ConnectionType, DetectedDevice, SerialPortInfo
from glovelink.core.profile_loader import LoadedProfiles, load_profiles

app = typer.Typer(help="Line-oriented text link to a glove over BLE UART or a serial port")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )


def _load_profiles() -> LoadedProfiles:
    loaded = load_profiles()
    for warning in loaded.warnings:
        typer.echo(f"Warning: {warning}", err=True)
    return loaded


def _prompt_choice(candidates: Sequence[Any], describe: Callable[[Any], str]) -> Any | None:
    if len(candidates) == 1:
        return candidates[0]
    for index, candidate in enumerate(candidates, start=1):
        typer.echo(f"  [{index}] {describe(candidate)}")
    try:
        index = typer.prompt("Select a device (0 to cancel)", type=int, default=0)
    except typer.Abort:
        return None
    if not 1 <= index <= len(candidates):
        return None
    return candidates[index - 1]


def _choose_device(candidates: Sequence[DetectedDevice]) -> DetectedDevice | None:
    return _prompt_choice(candidates, lambda d: f"{d.address} {d.name or '<unknown>'} rssi={d.rssi}")


def _choose_port(candidates: Sequence[SerialPortInfo]) -> SerialPortInfo | None:
    return _prompt_choice(candidates, lambda p: f"{p.device} ({p.description or 'n/a'})")


def _echo_connection(kind: ConnectionType, metadata: dict[str, Any] | None) -> None:
    if kind is ConnectionType.DISCONNECTED:
        typer.echo("Connection: disconnected")
        return
    details = ", ".join(f"{key}={value}" for key, value in (metadata or {}).items() if value is not None)
    typer.echo(f"Connection: {kind.value} ({details})")


def _build_link(*, device: str | None, port: str | None) -> DeviceLink:
    collector = LogCollector(on_entry=lambda entry: typer.echo(entry.render()))
    return DeviceLink(
        on_log=collector,
        on_connection_change=_echo_connection,
        profiles=_load_profiles(),
        radio_picker=BleakRadioPicker(device_hint=device, chooser=_choose_device),
        serial_picker=ComportSerialPicker(port=port, device_hint=device, chooser=_choose_port),
    )


async def _run_session(
    link: DeviceLink,
    *,
    wired: bool,
    body: Callable[[DeviceLink], Awaitable[None]],
) -> None:
    if wired:
        await link.connect_wired()
    else:
        await link.connect_radio()
    try:
        await body(link)
    finally:
        await link.disconnect()


async def _listen(link: DeviceLink, duration: float | None, refresh_every: float = 0.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + duration if duration is not None else None
    next_refresh = loop.time() + refresh_every if refresh_every > 0 else None
    while link.connection_type is not ConnectionType.DISCONNECTED:
        now = loop.time()
        if deadline is not None and now >= deadline:
            break
        if next_refresh is not None and now >= next_refresh:
            await link.refresh_signal_estimate()
            next_refresh = now + refresh_every
        await asyncio.sleep(0.1)
    await link.wait_idle()


def _run(make_session: Callable[[], Awaitable[None]]) -> None:
    try:
        asyncio.run(make_session())
    except GlovelinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    except KeyboardInterrupt:
        typer.echo("Interrupted", err=True)
        raise typer.Exit(code=130) from None


@app.command("profiles")
def list_profiles() -> None:
    """List UART profiles in priority order and the discovery allow-list."""
    try:
        loaded = _load_profiles()
    except GlovelinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    if not loaded.profiles:
        typer.echo("No profiles loaded")
        raise typer.Exit(code=1)

    for index, profile in enumerate(loaded.profiles, start=1):
        typer.echo(f"{index}. {profile.id}: {profile.name}")
        typer.echo(f"  service: {profile.service_uuid}")
        typer.echo(f"  notify: {profile.notify_char_uuid}")
        typer.echo(f"  write: {profile.write_char_uuid}")

    rules = loaded.discovery_rules
    typer.echo(f"Name prefixes: {', '.join(rules.name_prefix) or '-'}")
    typer.echo(f"Exact names: {', '.join(rules.name_exact) or '-'}")


@app.command("scan")
def scan(
    timeout: float = typer.Option(5.0, "--timeout", help="Scan window in seconds"),
    show_all: bool = typer.Option(False, "--all", help="Also list devices outside the allow-list"),
) -> None:
    """Scan for BLE devices and mark the ones the allow-list accepts."""
    try:
        rules = _load_profiles().discovery_rules
        scanned = asyncio.run(scan_devices(timeout))
    except GlovelinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    shown = 0
    for _, detected in scanned:
        allowed = is_allowed(detected, rules)
        if not allowed and not show_all:
            continue
        shown += 1
        verdict = "allowed" if allowed else "ignored"
        typer.echo(f"{detected.address} {detected.name or '<unknown>'} rssi={detected.rssi} -> {verdict}")
    if not shown:
        typer.echo("No compatible devices found")


@app.command("ports")
def ports() -> None:
    """List serial ports visible to the system."""
    found = list_serial_ports()
    if not found:
        typer.echo("No serial ports found")
        return
    for info in found:
        ids = f" [{info.vid:04X}:{info.pid:04X}]" if info.vid is not None and info.pid is not None else ""
        typer.echo(f"{info.device} {info.description or 'n/a'}{ids}")


@app.command("send")
def send(
    texts: list[str] = typer.Argument(..., help="Messages to send, one line each"),
    wired: bool = typer.Option(False, "--wired", help="Use a serial port instead of BLE"),
    device: str | None = typer.Option(None, "--device", help="Address, name, or port fragment"),
    port: str | None = typer.Option(None, "--port", help="Serial port path (implies --wired)"),
    listen: float = typer.Option(1.0, "--listen", help="Seconds to print replies before disconnecting"),
) -> None:
    """Connect, send each message as one line, print replies, disconnect."""

    async def body(link: DeviceLink) -> None:
        for text in texts:
            await link.send_message(text)
        await _listen(link, listen)

    _run(lambda: _run_session(_build_link(device=device, port=port), wired=wired or port is not None, body=body))


@app.command("monitor")
def monitor(
    wired: bool = typer.Option(False, "--wired", help="Use a serial port instead of BLE"),
    device: str | None = typer.Option(None, "--device", help="Address, name, or port fragment"),
    port: str | None = typer.Option(None, "--port", help="Serial port path (implies --wired)"),
    duration: float | None = typer.Option(None, "--duration", help="Stop after this many seconds"),
    refresh_signal: float = typer.Option(
        0.0, "--refresh-signal", help="Seconds between signal estimates on BLE (0 disables)"
    ),
) -> None:
    """Connect and print every line until the link drops, the duration ends, or Ctrl-C."""

    async def body(link: DeviceLink) -> None:
        await _listen(link, duration, refresh_signal)

    _run(lambda: _run_session(_build_link(device=device, port=port), wired=wired or port is not None, body=body))


def run() -> None:
    app()


if __name__ == "__main__":
    run()
