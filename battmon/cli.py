"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path

import typer

from battmon.core.config import MonitorConfig, load_config
from battmon.core.errors import BattmonError, DeviceSelectionError
from battmon.core.model import AdapterState, DisplayValue, SelectionPhase, ViewUpdate
from battmon.core.monitor import BatteryMonitor
from battmon.core.registry import RegistryEntry
from battmon.core.tasks import call_with_timeout
from battmon.transports.base import TransportAdapter
from battmon.transports.ble_gatt import BleakTransport

app = typer.Typer(help="Battery level monitor for BLE peripherals exposing the GATT Battery Service")

_CONFIG_OPTION = typer.Option(None, "--config", help="Path to a YAML config file")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )


def _build_transport(config: MonitorConfig) -> TransportAdapter:
    return BleakTransport(
        service_uuid=config.service_uuid,
        scan_timeout_s=config.scan_timeout_s,
    )


async def _close(transport: TransportAdapter) -> None:
    close = getattr(transport, "close", None)
    if close is not None:
        await close()


def _format_value(address: str, name: str, value: DisplayValue) -> str:
    return f"{address} ({name}): {value.label} [{value.tier}]"


async def _adapter_state(config: MonitorConfig) -> AdapterState | None:
    transport = _build_transport(config)
    try:
        return await call_with_timeout(transport.get_adapter_state(), config.request_timeout_s)
    finally:
        await _close(transport)


async def _list_devices(config: MonitorConfig) -> tuple[RegistryEntry, ...]:
    transport = _build_transport(config)
    monitor = BatteryMonitor(transport, config)
    try:
        await monitor.start()
        await monitor.wait_idle()
        return monitor.registry_snapshot()
    finally:
        await monitor.shutdown()
        await _close(transport)


def _pick_address(snapshot: tuple[RegistryEntry, ...]) -> str:
    if not snapshot:
        raise DeviceSelectionError("No connected devices found with a Battery service")
    if len(snapshot) > 1:
        candidate_desc = ", ".join(f"{address} ({name})" for address, name in snapshot)
        raise DeviceSelectionError(
            f"Multiple candidate devices found: {candidate_desc}. Pass an ADDRESS to choose one."
        )
    return snapshot[0][0]


async def _watch(config: MonitorConfig, address: str | None, count: int | None) -> None:
    transport = _build_transport(config)
    monitor = BatteryMonitor(transport, config)
    updates: asyncio.Queue[ViewUpdate] = asyncio.Queue()
    discovery: asyncio.Task[None] | None = None
    try:
        await monitor.start()
        if address is None:
            address = _pick_address(monitor.registry_snapshot())
        name = monitor.registry.display_name(address) or address
        monitor.add_listener(updates.put_nowait)
        monitor.select_device(address)

        run_discovery = getattr(transport, "run_discovery", None)
        if run_discovery is not None:
            discovery = asyncio.create_task(run_discovery(config.rescan_interval_s))

        typer.echo(f"Watching {address} ({name})")
        last: DisplayValue | None = None
        shown = 0
        while count is None or shown < count:
            update = await updates.get()
            if update is ViewUpdate.REGISTRY and address not in monitor.registry:
                typer.echo(f"{address} is gone")
                return
            if update is not ViewUpdate.VALUE:
                continue
            if monitor.selection.phase is SelectionPhase.UNSELECTED:
                typer.echo(f"No Battery service selected on {address}")
                return
            value = monitor.current_display_value()
            if value is None or value == last:
                continue
            last = value
            shown += 1
            typer.echo(_format_value(address, name, value))
    finally:
        if discovery is not None:
            discovery.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await discovery
        await monitor.shutdown()
        await _close(transport)


@app.command("adapter")
def show_adapter(config_path: Path | None = _CONFIG_OPTION) -> None:
    """Show the local Bluetooth adapter."""
    try:
        config = load_config(config_path)
        state = asyncio.run(_adapter_state(config))
        if state is None or not state.available:
            typer.echo("No adapter")
            return
        typer.echo(f"{state.display_name} ({state.display_address})")
    except BattmonError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("devices")
def list_devices(config_path: Path | None = _CONFIG_OPTION) -> None:
    """List connected devices exposing the Battery service."""
    try:
        config = load_config(config_path)
        snapshot = asyncio.run(_list_devices(config))
        if not snapshot:
            typer.echo("No connected devices")
            return

        for address, name in snapshot:
            typer.echo(f"{address} {name}")
    except BattmonError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("watch")
def watch(
    address: str | None = typer.Argument(None, help="Device address; optional with a single device"),
    count: int | None = typer.Option(None, "--count", min=1, help="Exit after this many level readings"),
    config_path: Path | None = _CONFIG_OPTION,
) -> None:
    """Follow the battery level of a device.

    If ADDRESS is omitted and exactly one device exposes the Battery service,
    that device is watched.
    """
    try:
        config = load_config(config_path)
        asyncio.run(_watch(config, address, count))
    except KeyboardInterrupt:
        typer.echo("Stopped")
    except BattmonError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
