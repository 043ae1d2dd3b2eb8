"""Typer CLI entrypoint."""

from __future__ import annotations

import logging

import typer

from gattlink.core.control import parse_toggle
from gattlink.core.errors import GattlinkError
from gattlink.core.model import InboundMessage
from gattlink.core.profile_loader import load_profiles
from gattlink.core.service import DEFAULT_CONNECT_TIMEOUT_S, LinkService

app = typer.Typer(help="Scan for, connect to, and message a BLE peripheral")

_PROFILE_OPTION = typer.Option(None, "--profile", help="Profile ID")
_SCAN_TIMEOUT_OPTION = typer.Option(None, "--scan-timeout", help="Scan window in seconds")


def _build_service(profile: str | None) -> LinkService:
    service = LinkService(profile_id=profile)
    for warning in getattr(service, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


def _connect(service: LinkService, device: str, scan_timeout: float | None, connect_timeout: float) -> None:
    target = service.resolve_device(device, scan_timeout)
    typer.echo(f"Connecting to {target.address} ({target.label})")
    service.connect(target, connect_timeout)


def _print_message(message: InboundMessage) -> None:
    typer.echo(f"<- {message.text}")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("profiles")
def list_profiles() -> None:
    """List available peripheral profiles."""
    try:
        loaded = load_profiles()
        for warning in loaded.warnings:
            typer.echo(f"Warning: {warning}", err=True)
        for item in sorted(loaded.profiles.values(), key=lambda p: p.id):
            typer.echo(f"{item.id}: {item.name}")
            typer.echo(f"  service: {item.service.service_uuid}")
            typer.echo(f"  write: {item.service.write_char_uuid}")
            typer.echo(f"  notify: {item.service.notify_char_uuid}")
    except GattlinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("scan")
def scan(
    profile: str | None = _PROFILE_OPTION,
    timeout: float | None = typer.Option(None, "--timeout", help="Scan window in seconds"),
) -> None:
    """Scan for advertising peripherals."""
    service = None
    try:
        service = _build_service(profile)
        devices = service.scan(timeout)
        if not devices:
            typer.echo("No BLE devices found")
            return
        for device in devices:
            typer.echo(f"{device.address} {device.label}")
    except GattlinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    finally:
        if service is not None:
            service.close()


@app.command("send")
def send(
    device: str,
    message: str,
    profile: str | None = _PROFILE_OPTION,
    scan_timeout: float | None = _SCAN_TIMEOUT_OPTION,
    connect_timeout: float = typer.Option(DEFAULT_CONNECT_TIMEOUT_S, "--connect-timeout"),
    reply_timeout: float | None = typer.Option(
        None, "--reply-timeout", help="Wait this many seconds for a reply"
    ),
) -> None:
    """Send a text MESSAGE to DEVICE (address or partial name)."""
    service = None
    try:
        service = _build_service(profile)
        _connect(service, device, scan_timeout, connect_timeout)
        if reply_timeout is None:
            service.send(message)
            typer.echo(f"-> {message}")
        else:
            reply = service.request(message, reply_timeout)
            typer.echo(f"-> {message}")
            _print_message(reply)
    except GattlinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    finally:
        if service is not None:
            service.close()


@app.command("toggle")
def toggle(
    device: str,
    state: str,
    profile: str | None = _PROFILE_OPTION,
    scan_timeout: float | None = _SCAN_TIMEOUT_OPTION,
    connect_timeout: float = typer.Option(DEFAULT_CONNECT_TIMEOUT_S, "--connect-timeout"),
) -> None:
    """Send the profile's toggle message; STATE is on or off."""
    service = None
    try:
        on = parse_toggle(state)
        service = _build_service(profile)
        _connect(service, device, scan_timeout, connect_timeout)
        typer.echo(f"-> {service.send_toggle(on)}")
    except GattlinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    finally:
        if service is not None:
            service.close()


@app.command("offset", context_settings={"ignore_unknown_options": True})
def offset(
    device: str,
    value: int,
    profile: str | None = _PROFILE_OPTION,
    scan_timeout: float | None = _SCAN_TIMEOUT_OPTION,
    connect_timeout: float = typer.Option(DEFAULT_CONNECT_TIMEOUT_S, "--connect-timeout"),
) -> None:
    """Send the profile's offset message for VALUE (e.g. -15)."""
    service = None
    try:
        service = _build_service(profile)
        _connect(service, device, scan_timeout, connect_timeout)
        typer.echo(f"-> {service.send_offset(value)}")
    except GattlinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    finally:
        if service is not None:
            service.close()


@app.command("listen")
def listen(
    device: str,
    duration: float = typer.Option(10.0, "--duration", help="Seconds to listen"),
    profile: str | None = _PROFILE_OPTION,
    scan_timeout: float | None = _SCAN_TIMEOUT_OPTION,
    connect_timeout: float = typer.Option(DEFAULT_CONNECT_TIMEOUT_S, "--connect-timeout"),
) -> None:
    """Print notifications pushed by DEVICE."""
    service = None
    try:
        service = _build_service(profile)
        _connect(service, device, scan_timeout, connect_timeout)
        received = service.listen(duration, _print_message)
        typer.echo(f"Received {len(received)} message(s)")
    except GattlinkError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    finally:
        if service is not None:
            service.close()


def run() -> None:
    app()


if __name__ == "__main__":
    run()
