"""Reconciliation service used by the CLI and the public client."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from battmon.core.config import MonitorConfig
from battmon.core.controller import SelectionController
from battmon.core.errors import DeviceSelectionError, TransportError
from battmon.core.model import (
    AdapterState,
    AdapterStateChanged,
    CharacteristicValueChanged,
    DisplayValue,
    Peripheral,
    SelectionState,
    Service,
    ServiceAdded,
    ServiceChanged,
    ServiceRemoved,
    TransportEvent,
    ViewUpdate,
)
from battmon.core.registry import PeripheralRegistry, RegistryEntry
from battmon.core.tasks import PendingRequests, call_with_timeout
from battmon.transports.base import TransportAdapter

LOGGER = logging.getLogger(__name__)

ViewListener = Callable[[ViewUpdate], None]
T = TypeVar("T")


class BatteryMonitor:
    """Keeps the registry and the selection in sync with the transport.

    The monitor turns adapter events into registry updates, forwards
    selection-relevant events to the `SelectionController` and exposes
    snapshots for whatever renders them.
    """

    def __init__(self, adapter: TransportAdapter, config: MonitorConfig | None = None) -> None:
        self.config = config or MonitorConfig()
        self.adapter = adapter
        self.registry = PeripheralRegistry(self.config.service_uuid)
        self._requests = PendingRequests()
        self.controller = SelectionController(
            adapter,
            characteristic_uuid=self.config.characteristic_uuid,
            requests=self._requests,
            request_timeout_s=self.config.request_timeout_s,
            on_change=lambda: self._publish(ViewUpdate.VALUE),
        )
        self.adapter_state: AdapterState | None = None
        self.ready = False
        self._listeners: list[ViewListener] = []
        self._intent_token = 0
        self._intent_address: str | None = None
        self._enumerating: dict[str, bool] = {}
        self._pending_adds: set[str] = set()
        self._started = False

    def add_listener(self, listener: ViewListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ViewListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _publish(self, update: ViewUpdate) -> None:
        for listener in list(self._listeners):
            listener(update)

    @property
    def selection(self) -> SelectionState:
        return self.controller.state

    def registry_snapshot(self) -> tuple[RegistryEntry, ...]:
        return self.registry.snapshot()

    def current_display_value(self) -> DisplayValue | None:
        return self.controller.current_display_value()

    def is_target_service(self, service: Service) -> bool:
        return self.registry.matches(service.uuid)

    async def _call(self, awaitable: Awaitable[T]) -> T:
        return await call_with_timeout(awaitable, self.config.request_timeout_s)

    async def start(self) -> None:
        """Subscribe to adapter events and build the registry from scratch."""
        if self._started:
            return
        self._started = True
        self.adapter.add_event_listener(self.handle_event)
        self.controller.select(None)

        try:
            state = await self._call(self.adapter.get_adapter_state())
        except TransportError as exc:
            LOGGER.warning("Failed to get adapter state: %s", exc)
            state = None
        self._set_adapter_state(state)

        await self.reconcile()
        self.ready = True
        LOGGER.info("Monitor ready with %d device(s)", len(self.registry))

    async def reconcile(self) -> None:
        """Enumerate every known peripheral and add those exposing the target service."""
        try:
            devices = await self._call(self.adapter.get_devices())
        except TransportError as exc:
            LOGGER.warning("Failed to list devices: %s", exc)
            return

        await asyncio.gather(*(self._reconcile_device(device) for device in devices))

    async def _target_services(self, address: str) -> list[Service]:
        """Enumerate the target services of `address`.

        A target service event for `address` that arrives while the query is
        in flight makes the answer stale, so the query is repeated.
        """
        try:
            while True:
                self._enumerating[address] = False
                try:
                    services = await self._call(self.adapter.get_services(address))
                except TransportError:
                    if not self._enumerating[address]:
                        raise
                    continue
                if not self._enumerating[address]:
                    return [service for service in services if self.is_target_service(service)]
                LOGGER.debug("Services of %s changed during enumeration, enumerating again", address)
        finally:
            self._enumerating.pop(address, None)

    async def _reconcile_device(self, device: Peripheral) -> None:
        try:
            services = await self._target_services(device.address)
        except TransportError as exc:
            LOGGER.info("Failed to get services of %s: %s", device.address, exc)
            return

        if services and self.registry.add_if_matching(device.address, services[0].uuid, device.display_name):
            self._publish(ViewUpdate.REGISTRY)

    def handle_event(self, event: TransportEvent) -> None:
        if isinstance(event, ServiceAdded):
            self._on_service_added(event.service)
        elif isinstance(event, ServiceRemoved):
            self._on_service_removed(event.service)
        elif isinstance(event, ServiceChanged):
            self.controller.service_changed(event.service)
        elif isinstance(event, CharacteristicValueChanged):
            self.controller.value_changed(event.characteristic)
        elif isinstance(event, AdapterStateChanged):
            self._set_adapter_state(event.state)
        else:
            LOGGER.debug("Ignoring unknown transport event %r", event)

    def _set_adapter_state(self, state: AdapterState | None) -> None:
        if state is None:
            LOGGER.info("No adapter available")
        else:
            LOGGER.info("Adapter %s (%s)", state.display_name, state.display_address)
        self.adapter_state = state
        self._publish(ViewUpdate.ADAPTER)

    def _on_service_added(self, service: Service) -> None:
        if not self.is_target_service(service):
            return
        LOGGER.info("New target service added: %s", service.instance_id)
        address = service.device_address
        if address in self._enumerating:
            self._enumerating[address] = True
            return
        if address in self.registry or address in self._pending_adds:
            return
        self._pending_adds.add(address)
        self._requests.spawn(
            self._add_device(service),
            name=f"device:{address}",
        )

    async def _add_device(self, service: Service) -> None:
        address = service.device_address
        try:
            device = await self._call(self.adapter.get_device(address))
        except TransportError as exc:
            LOGGER.warning("Failed to get device %s, using address as name: %s", address, exc)
            device = Peripheral(address=address)

        if address not in self._pending_adds:
            LOGGER.debug("Service of %s went away before its name arrived", address)
            return
        self._pending_adds.discard(address)
        if self.registry.add_if_matching(address, service.uuid, device.display_name):
            self._publish(ViewUpdate.REGISTRY)

    def _on_service_removed(self, service: Service) -> None:
        if not self.is_target_service(service):
            return
        LOGGER.info("Target service removed: %s", service.instance_id)
        self.controller.service_removed(service)

        address = service.device_address
        if self._intent_address == address:
            # The pending intent may resolve to the removed service.
            self._issue_intent(address)

        if address in self._enumerating:
            self._enumerating[address] = True
            return
        if address not in self.registry and address not in self._pending_adds:
            return
        self._pending_adds.discard(address)
        self._requests.spawn(
            self._recheck_device(address),
            name=f"recheck:{address}",
        )

    async def _recheck_device(self, address: str) -> None:
        try:
            remaining = await self._target_services(address)
        except TransportError as exc:
            LOGGER.info("Failed to get services of %s, treating it as gone: %s", address, exc)
            remaining = []

        if self.registry.remove_if_last_service(address, bool(remaining)):
            self._publish(ViewUpdate.REGISTRY)
        elif remaining and address not in self.registry:
            self._on_service_added(remaining[0])

    def select_device(self, address: str | None) -> None:
        """Handle a user's selection intent; the most recent intent wins."""
        if address is not None and address not in self.registry:
            raise DeviceSelectionError(f"No tracked device with address '{address}'")
        if address is None:
            self._intent_token += 1
            self._intent_address = None
            self.controller.select(None)
            return
        self._issue_intent(address)

    def _issue_intent(self, address: str) -> None:
        self._intent_token += 1
        self._intent_address = address
        self._requests.spawn(
            self._select_device(address, self._intent_token),
            name=f"select:{address}",
        )

    async def _select_device(self, address: str, token: int) -> None:
        try:
            services = await self._call(self.adapter.get_services(address))
        except TransportError as exc:
            if token == self._intent_token:
                LOGGER.warning("Failed to get services of %s: %s", address, exc)
                self._intent_address = None
                self.controller.select(None)
            return

        if token != self._intent_token:
            LOGGER.debug("Discarding stale selection of %s", address)
            return
        self._intent_address = None

        found: Service | None = None
        for service in services:
            if self.is_target_service(service):
                found = service
        self.controller.select(found)

    async def wait_idle(self) -> None:
        await self._requests.drain()

    async def shutdown(self) -> None:
        """Unsubscribe, clear all state and detach from the adapter."""
        if self._started:
            self.adapter.remove_event_listener(self.handle_event)
            self._started = False
        self._intent_token += 1
        self._intent_address = None
        self.controller.shutdown()
        try:
            await asyncio.wait_for(self._requests.drain(), timeout=self.config.request_timeout_s)
        except asyncio.TimeoutError:
            LOGGER.warning("Requests still pending at shutdown; cancelling")
            await self._requests.cancel_all()
        self.registry.clear()
        self._pending_adds.clear()
        self.ready = False
        self._listeners.clear()
