"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, TypeVar

import typer

from bluemirror.api import manager_session
from bluemirror.core.adapter import Adapter
from bluemirror.core.config import load_config
from bluemirror.core.device import Device
from bluemirror.core.errors import AdapterSelectionError, BluemirrorError
from bluemirror.core.manager import Manager
from bluemirror.core.model import Config
from bluemirror.core.pending import PendingCall
from bluemirror.transports.base import Bus
from bluemirror.transports.dbus import DBusTransport

LOGGER = logging.getLogger(__name__)

app = typer.Typer(help="Inspect and control Bluetooth adapters through BlueZ")

T = TypeVar("T")


class PowerState(str, Enum):
    on = "on"
    off = "off"


def _build_bus(config: Config) -> Bus:
    return DBusTransport.from_config(config)


def _configure_logging(config: Config, verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, config.log_level, logging.WARNING)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _execute(ctx: typer.Context, action: Callable[[Manager], Awaitable[T]]) -> T:
    config: Config = ctx.obj

    async def _session() -> T:
        bus = _build_bus(config)
        try:
            async with manager_session(bus, config=config) as manager:
                return await action(manager)
        finally:
            await bus.disconnect()

    try:
        return asyncio.run(_session())
    except BluemirrorError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


async def _finish(call: PendingCall) -> Any:
    await call
    return call.result()


def _select_adapter(manager: Manager, ident: str) -> Adapter:
    adapter = manager.adapter_for_path(ident) or manager.adapter_for_address(ident)
    if adapter is None:
        known = ", ".join(a.ubi for a in manager.adapters()) or "none"
        raise AdapterSelectionError(f"No adapter matching '{ident}' (known: {known})")
    return adapter


def _describe_adapter(adapter: Adapter, usable: Adapter | None) -> str:
    marker = "*" if adapter is usable else " "
    power = "on" if adapter.powered else "off"
    return f"{marker} {adapter.ubi} {adapter.address} {adapter.alias or adapter.name} power={power}"


def _describe_device(device: Device) -> str:
    flags = [name for name in ("paired", "trusted", "connected") if getattr(device, name)]
    suffix = f" [{', '.join(flags)}]" if flags else ""
    return f"{device.address} {device.friendly_name()} ({device.ubi}){suffix}"


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Load configuration and set up logging for every command."""
    try:
        config = load_config()
    except BluemirrorError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    _configure_logging(config, verbose)
    LOGGER.debug("Config loaded from %s", ", ".join(config.sources))
    ctx.obj = config


@app.command("adapters")
def list_adapters(ctx: typer.Context) -> None:
    """List adapters; the usable one is marked with '*'."""

    async def action(manager: Manager) -> None:
        adapters = manager.adapters()
        if not adapters:
            typer.echo("No Bluetooth adapters found")
            return
        usable = manager.usable_adapter()
        for adapter in adapters:
            typer.echo(_describe_adapter(adapter, usable))

    _execute(ctx, action)


@app.command("devices")
def list_devices(
    ctx: typer.Context,
    adapter: str | None = typer.Option(None, "--adapter", help="Adapter path or address"),
) -> None:
    """List known devices, optionally for one adapter only."""

    async def action(manager: Manager) -> None:
        devices = _select_adapter(manager, adapter).devices() if adapter else manager.devices()
        if not devices:
            typer.echo("No Bluetooth devices found")
            return
        for device in devices:
            typer.echo(_describe_device(device))

    _execute(ctx, action)


@app.command("alias")
def set_alias(ctx: typer.Context, adapter: str, name: str) -> None:
    """Set the friendly name of ADAPTER."""

    async def action(manager: Manager) -> None:
        target = _select_adapter(manager, adapter)
        await _finish(target.set_alias(name))
        typer.echo(f"Alias of {target.ubi} set to '{name}'")

    _execute(ctx, action)


@app.command("power")
def set_power(ctx: typer.Context, adapter: str, state: PowerState) -> None:
    """Switch ADAPTER on or off."""

    async def action(manager: Manager) -> None:
        target = _select_adapter(manager, adapter)
        await _finish(target.set_powered(state is PowerState.on))
        typer.echo(f"Power of {target.ubi} set to {state.value}")

    _execute(ctx, action)


@app.command("discover")
def discover(
    ctx: typer.Context,
    seconds: float = typer.Option(10.0, "--seconds", min=0, help="How long to scan"),
    adapter: str | None = typer.Option(None, "--adapter", help="Adapter path or address"),
) -> None:
    """Scan for nearby devices on the usable adapter and list what was found."""

    async def action(manager: Manager) -> None:
        target = _select_adapter(manager, adapter) if adapter else manager.usable_adapter()
        if target is None:
            raise AdapterSelectionError("No Bluetooth adapters found")

        found: list[Device] = []
        target.device_found += found.append
        try:
            await _finish(target.start_discovery())
            typer.echo(f"Scanning on {target.ubi} for {seconds:g}s...")
            await asyncio.sleep(seconds)
            await _finish(target.stop_discovery())
        finally:
            target.device_found -= found.append

        for device in found:
            if device.is_valid():
                typer.echo(f"new {_describe_device(device)}")
        typer.echo(f"{len(target.devices())} device(s) known on {target.ubi}")

    _execute(ctx, action)


def run() -> None:
    app()


if __name__ == "__main__":
    run()
