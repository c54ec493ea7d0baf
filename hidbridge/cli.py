"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Callable, Sequence

import typer

from hidbridge.core.commands import CommandMessage, Key, MouseClick, MouseMove, MouseScroll
from hidbridge.core.encoder import parse_command
from hidbridge.core.errors import CommandError, HidBridgeError
from hidbridge.core.model import DispatchStats
from hidbridge.core.service import BridgeService
from hidbridge.core.sources import KeySource

app = typer.Typer(help="Remote keyboard and mouse through a BLE HID bridge peripheral")

_PROFILE_OPTION = typer.Option(None, "--profile", help="Profile ID")
_TIMEOUT_OPTION = typer.Option(15.0, "--connect-timeout", help="Seconds to wait for the peripheral")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _build_service(profile: str | None = None) -> BridgeService:
    service = BridgeService(profile_id=profile)
    for warning in getattr(service, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


async def _deliver(
    service: BridgeService,
    messages: Sequence[CommandMessage],
    connect_timeout_s: float,
) -> DispatchStats:
    await service.start()
    try:
        await service.wait_until_ready(connect_timeout_s)
        for message in messages:
            service.submit(message)
        await service.drain()
        return service.stats
    finally:
        await service.stop()


def _report(stats: DispatchStats) -> None:
    typer.echo(f"Sent {stats.sent} command(s)")
    if stats.failed:
        typer.echo(f"Error: {stats.failed} command(s) were not acknowledged", err=True)
        raise typer.Exit(code=1)


def _send(build: Callable[[], Sequence[CommandMessage]], profile: str | None, connect_timeout: float) -> None:
    try:
        messages = build()
        service = _build_service(profile)
        stats = asyncio.run(_deliver(service, messages, connect_timeout))
    except HidBridgeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    _report(stats)


@app.command("profiles")
def list_profiles() -> None:
    """List available peripheral profiles."""
    try:
        service = _build_service()
        profiles = service.list_profiles()
        if not profiles:
            typer.echo("No profiles loaded")
            raise typer.Exit(code=1)

        for profile in profiles:
            typer.echo(f"{profile.id}: {profile.name}")
            typer.echo(f"  advertised name: {profile.match.name}")
            typer.echo(f"  service: {profile.transport.service_uuid}")
            typer.echo(f"  keyboard: {profile.transport.keyboard_char_uuid}")
            typer.echo(f"  mouse: {profile.transport.mouse_char_uuid}")
            typer.echo(f"  mouse policy: {profile.dispatch.mouse_policy.value}")
    except HidBridgeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("devices")
def list_devices(
    timeout: float = typer.Option(5.0, "--timeout", help="Scan duration in seconds"),
) -> None:
    """Scan for nearby BLE peripherals and show the matched profile."""
    try:
        service = _build_service()
        devices = asyncio.run(service.discover(timeout))
        if not devices:
            typer.echo("No BLE peripherals found")
            return

        for device in devices:
            profile = service.match_profile(device)
            matched = profile.id if profile else "<no-match>"
            typer.echo(f"{device.address} {device.name} -> {matched}")
    except HidBridgeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("key")
def send_keys(
    keys: list[str] = typer.Argument(..., help="Key codes, e.g. Q enter ctrl+c"),
    profile: str | None = _PROFILE_OPTION,
    connect_timeout: float = _TIMEOUT_OPTION,
) -> None:
    """Press one or more keys on the peripheral."""
    _send(lambda: [Key(code) for code in keys], profile, connect_timeout)


@app.command("type")
def type_text(
    text: str,
    profile: str | None = _PROFILE_OPTION,
    connect_timeout: float = _TIMEOUT_OPTION,
) -> None:
    """Type TEXT one key press per character."""

    def _build() -> list[CommandMessage]:
        messages: list[CommandMessage] = []
        KeySource(messages.append).type_text(text)
        return messages

    _send(_build, profile, connect_timeout)


@app.command("move")
def move_pointer(
    dx: float,
    dy: float,
    profile: str | None = _PROFILE_OPTION,
    connect_timeout: float = _TIMEOUT_OPTION,
) -> None:
    """Move the pointer by DX, DY. Use '--' before negative values."""
    _send(lambda: [MouseMove(dx, dy)], profile, connect_timeout)


@app.command("click")
def click(
    button: str = typer.Argument("left", help="left, right or middle"),
    profile: str | None = _PROFILE_OPTION,
    connect_timeout: float = _TIMEOUT_OPTION,
) -> None:
    """Click a mouse button."""
    _send(lambda: [MouseClick(button)], profile, connect_timeout)


@app.command("scroll")
def scroll(
    amount: float,
    profile: str | None = _PROFILE_OPTION,
    connect_timeout: float = _TIMEOUT_OPTION,
) -> None:
    """Scroll the wheel by AMOUNT. Use '--' before negative values."""
    _send(lambda: [MouseScroll(amount)], profile, connect_timeout)


async def _interactive(service: BridgeService, connect_timeout_s: float) -> DispatchStats:
    await service.start()
    try:
        await service.wait_until_ready(connect_timeout_s)
        typer.echo(f"Status: {service.status_label}")
        loop = asyncio.get_running_loop()
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            if not line.strip():
                continue
            try:
                message = parse_command(line)
            except CommandError as exc:
                typer.echo(f"Error: {exc}", err=True)
                continue
            if not service.submit(message):
                typer.echo("Dropped: peripheral not connected", err=True)
        await service.drain()
        return service.stats
    finally:
        await service.stop()


@app.command("run")
def run_interactive(
    profile: str | None = _PROFILE_OPTION,
    connect_timeout: float = _TIMEOUT_OPTION,
) -> None:
    """Forward commands read from stdin, one per line.

    Lines use the peripheral vocabulary: key:Q, key:ctrl+c, move:5,-3,
    left, right, middle, doubleclick, scroll:-2, press:left, release:left.
    """
    try:
        service = _build_service(profile)
        stats = asyncio.run(_interactive(service, connect_timeout))
    except HidBridgeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    _report(stats)


def run() -> None:
    app()


if __name__ == "__main__":
    run()
