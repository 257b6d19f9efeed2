"""Transport adapter interface."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from battmon.core.model import AdapterState, Characteristic, Peripheral, Service, TransportEvent

EventListener = Callable[[TransportEvent], None]


class TransportAdapter(Protocol):
    """Discovery and GATT primitives consumed by the monitor.

    Every request may fail independently with a `TransportError`. Events are
    delivered to listeners on the event loop thread.
    """

    async def get_adapter_state(self) -> AdapterState | None: ...

    async def get_devices(self) -> list[Peripheral]: ...

    async def get_device(self, address: str) -> Peripheral: ...

    async def get_services(self, address: str) -> list[Service]: ...

    async def get_characteristics(self, service_id: str) -> list[Characteristic]: ...

    async def read_characteristic_value(self, characteristic_id: str) -> Characteristic:
        """Read the current value and return the refreshed characteristic."""

    async def start_notifications(self, characteristic_id: str) -> None:
        """Enable value notifications; raises `AlreadyNotifyingError` when already on."""

    async def stop_notifications(self, characteristic_id: str) -> None: ...

    def add_event_listener(self, listener: EventListener) -> None: ...

    def remove_event_listener(self, listener: EventListener) -> None: ...
