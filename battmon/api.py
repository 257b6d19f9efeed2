"""Stable public API for building tooling on top of battmon.

This module is the supported integration surface for third-party callers
(GUI/TUI front ends, services, scripts). Avoid importing from internal
modules unless intentionally depending on non-stable internals.
"""

from __future__ import annotations

from pathlib import Path

from battmon.core.config import MonitorConfig, load_config
from battmon.core.errors import (
    AlreadyNotifyingError,
    BattmonError,
    ConfigLoadError,
    ConfigValidationError,
    DeviceSelectionError,
    MalformedValueError,
    TransportConnectError,
    TransportError,
    TransportTimeoutError,
)
from battmon.core.levels import classify_level, decode_level
from battmon.core.model import (
    AdapterState,
    Characteristic,
    DisplayValue,
    Peripheral,
    SelectionPhase,
    SelectionState,
    Service,
    ViewUpdate,
)
from battmon.core.monitor import BatteryMonitor, ViewListener
from battmon.core.registry import RegistryEntry
from battmon.transports.base import TransportAdapter
from battmon.transports.ble_gatt import BleakTransport

__all__ = [
    "AlreadyNotifyingError",
    "BattmonError",
    "ConfigLoadError",
    "ConfigValidationError",
    "DeviceSelectionError",
    "MalformedValueError",
    "TransportConnectError",
    "TransportError",
    "TransportTimeoutError",
    "AdapterState",
    "Characteristic",
    "DisplayValue",
    "Peripheral",
    "SelectionPhase",
    "SelectionState",
    "Service",
    "ViewUpdate",
    "MonitorConfig",
    "TransportAdapter",
    "BleakTransport",
    "classify_level",
    "decode_level",
    "Client",
]


class Client:
    """Public client wrapping the battery monitor.

    Use as an async context manager: entering runs startup reconciliation,
    leaving unsubscribes and clears all state.

        async with Client() as client:
            for address, name in client.registry_snapshot():
                ...
            client.on_user_select(address)
    """

    def __init__(
        self,
        *,
        adapter: TransportAdapter | None = None,
        config: MonitorConfig | None = None,
        config_path: Path | None = None,
    ) -> None:
        self.config = config or load_config(config_path)
        self._owned_transport: BleakTransport | None = None
        if adapter is None:
            self._owned_transport = BleakTransport(
                service_uuid=self.config.service_uuid,
                scan_timeout_s=self.config.scan_timeout_s,
            )
            adapter = self._owned_transport
        self.adapter = adapter
        self._monitor = BatteryMonitor(self.adapter, self.config)

    async def __aenter__(self) -> Client:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    async def start(self) -> None:
        await self._monitor.start()

    async def shutdown(self) -> None:
        await self._monitor.shutdown()
        if self._owned_transport is not None:
            await self._owned_transport.close()

    async def wait_idle(self) -> None:
        """Wait until no adapter request issued by the monitor is in flight."""
        await self._monitor.wait_idle()

    @property
    def ready(self) -> bool:
        return self._monitor.ready

    @property
    def adapter_state(self) -> AdapterState | None:
        return self._monitor.adapter_state

    @property
    def selection(self) -> SelectionState:
        return self._monitor.selection

    def add_listener(self, listener: ViewListener) -> None:
        self._monitor.add_listener(listener)

    def remove_listener(self, listener: ViewListener) -> None:
        self._monitor.remove_listener(listener)

    def registry_snapshot(self) -> tuple[RegistryEntry, ...]:
        return self._monitor.registry_snapshot()

    def current_display_value(self) -> DisplayValue | None:
        return self._monitor.current_display_value()

    def on_user_select(self, address: str | None) -> None:
        self._monitor.select_device(address)
