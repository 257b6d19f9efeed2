"""BLE GATT transport adapter implementation backed by bleak."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Any

from battmon.core.errors import (
    AlreadyNotifyingError,
    TransportConnectError,
    TransportError,
    TransportTimeoutError,
)
from battmon.core.model import (
    AdapterState,
    AdapterStateChanged,
    Characteristic,
    CharacteristicValueChanged,
    Peripheral,
    Service,
    ServiceAdded,
    ServiceRemoved,
    TransportEvent,
)
from battmon.transports.base import EventListener

LOGGER = logging.getLogger(__name__)


def _require_bleak() -> Any:
    try:
        import bleak  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise TransportConnectError(
            "BLE transport requires 'bleak'. Install dependency and retry."
        ) from exc
    return bleak


@contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except TransportError:
        raise
    except asyncio.TimeoutError as exc:
        raise TransportTimeoutError(f"{action} timed out") from exc
    except Exception as exc:
        raise TransportError(f"{action} failed: {exc}") from exc


@dataclass
class _Connection:
    client: Any
    generation: int
    services: dict[str, tuple[Service, Any]] = field(default_factory=dict)
    characteristics: dict[str, tuple[Characteristic, Any]] = field(default_factory=dict)


class BleakTransport:
    """Transport adapter over bleak scanning and one `BleakClient` per peripheral.

    Service and characteristic instance ids embed a per-connection generation,
    so ids handed out before a reconnect never match objects after it.
    """

    def __init__(
        self,
        *,
        service_uuid: str,
        scan_timeout_s: float = 5.0,
        connect_timeout_s: float = 10.0,
        adapter: str | None = None,
    ) -> None:
        self.service_uuid = service_uuid
        self.scan_timeout_s = scan_timeout_s
        self.connect_timeout_s = connect_timeout_s
        self.adapter = adapter
        self._listeners: list[EventListener] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self._known: dict[str, Peripheral] = {}
        self._connections: dict[str, _Connection] = {}
        self._connecting: dict[str, asyncio.Future[_Connection]] = {}
        self._notifying: set[str] = set()
        self._generation = 0
        self._adapter_state: AdapterState | None = None

    def add_event_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def remove_event_listener(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: TransportEvent) -> None:
        # Events are always delivered on a later loop iteration, never from
        # inside a request or from a backend thread.
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._loop.call_soon_threadsafe(self._dispatch, event)

    def _dispatch(self, event: TransportEvent) -> None:
        for listener in list(self._listeners):
            listener(event)

    def _backend_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        if self.adapter:
            kwargs["adapter"] = self.adapter
        return kwargs

    def _set_adapter_state(self, state: AdapterState) -> None:
        if state == self._adapter_state:
            return
        self._adapter_state = state
        self._emit(AdapterStateChanged(state))

    async def get_adapter_state(self) -> AdapterState | None:
        self._loop = asyncio.get_running_loop()
        if self._adapter_state is None:
            await self.scan()
        return self._adapter_state

    async def scan(self) -> list[Peripheral]:
        """Scan for peripherals advertising the target service."""
        self._loop = asyncio.get_running_loop()
        bleak = _require_bleak()
        try:
            found = await bleak.BleakScanner.discover(
                timeout=self.scan_timeout_s,
                return_adv=True,
                service_uuids=[self.service_uuid],
                **self._backend_kwargs(),
            )
        except Exception as exc:
            LOGGER.warning("BLE scan failed: %s", exc)
            self._set_adapter_state(AdapterState(name=self.adapter, available=False, powered=False))
            raise TransportError(f"BLE scan failed: {exc}") from exc

        self._set_adapter_state(AdapterState(name=self.adapter))
        peripherals: list[Peripheral] = []
        for address, (device, adv) in found.items():
            peripheral = Peripheral(address=address, name=device.name or adv.local_name)
            self._known[address] = peripheral
            peripherals.append(peripheral)
        LOGGER.debug("Scan found %d peripheral(s)", len(peripherals))
        return peripherals

    async def get_devices(self) -> list[Peripheral]:
        await self.scan()
        return sorted(self._known.values(), key=lambda p: p.address)

    async def get_device(self, address: str) -> Peripheral:
        known = self._known.get(address)
        if known is not None:
            return known

        bleak = _require_bleak()
        with _translate_errors(f"Looking up {address}"):
            device = await bleak.BleakScanner.find_device_by_address(
                address,
                timeout=self.scan_timeout_s,
                **self._backend_kwargs(),
            )
        if device is None:
            raise TransportError(f"Device {address} not found")
        peripheral = Peripheral(address=address, name=device.name)
        self._known[address] = peripheral
        return peripheral

    async def _connect(self, address: str) -> _Connection:
        connection = self._connections.get(address)
        if connection is not None:
            if connection.client.is_connected:
                return connection
            # The disconnect callback has not run yet.
            LOGGER.info("Connection to %s was lost", address)
            for service in self._forget_connection(address, connection.generation):
                self._emit(ServiceRemoved(service))
        pending = self._connecting.get(address)
        if pending is not None:
            return await asyncio.shield(pending)

        self._loop = asyncio.get_running_loop()
        future: asyncio.Future[_Connection] = self._loop.create_future()
        self._connecting[address] = future
        try:
            connection = await self._open_connection(address)
        except asyncio.CancelledError:
            future.set_exception(TransportConnectError(f"Connecting to {address} was abandoned"))
            future.exception()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Nobody else may be waiting; keep the loop from warning about it.
            future.exception()
            raise
        else:
            future.set_result(connection)
            return connection
        finally:
            self._connecting.pop(address, None)

    async def _open_connection(self, address: str) -> _Connection:
        bleak = _require_bleak()
        self._generation += 1
        generation = self._generation

        def _on_disconnect(_client: Any) -> None:
            self._loop.call_soon_threadsafe(self._handle_disconnect, address, generation)

        client = bleak.BleakClient(
            address,
            disconnected_callback=_on_disconnect,
            timeout=self.connect_timeout_s,
            **self._backend_kwargs(),
        )
        try:
            await client.connect()
        except asyncio.TimeoutError as exc:
            raise TransportTimeoutError(f"BLE connect timed out for {address}") from exc
        except Exception as exc:
            raise TransportConnectError(f"BLE connect failed for {address}: {exc}") from exc

        connection = _Connection(client=client, generation=generation)
        for gatt_service in client.services:
            service = Service(
                instance_id=f"{address}/{generation}/service{gatt_service.handle:04x}",
                device_address=address,
                uuid=gatt_service.uuid.lower(),
            )
            connection.services[service.instance_id] = (service, gatt_service)
            for gatt_char in gatt_service.characteristics:
                characteristic = Characteristic(
                    instance_id=f"{address}/{generation}/char{gatt_char.handle:04x}",
                    service_id=service.instance_id,
                    uuid=gatt_char.uuid.lower(),
                )
                connection.characteristics[characteristic.instance_id] = (characteristic, gatt_char)

        self._connections[address] = connection
        LOGGER.info("Connected to %s with %d service(s)", address, len(connection.services))
        for service, _ in connection.services.values():
            self._emit(ServiceAdded(service))
        return connection

    def _forget_connection(self, address: str, generation: int) -> list[Service]:
        connection = self._connections.get(address)
        if connection is None or connection.generation != generation:
            return []
        del self._connections[address]
        LOGGER.info("Disconnected from %s", address)
        for characteristic_id in connection.characteristics:
            self._notifying.discard(characteristic_id)
        return [service for service, _ in connection.services.values()]

    def _handle_disconnect(self, address: str, generation: int) -> None:
        for service in self._forget_connection(address, generation):
            self._dispatch(ServiceRemoved(service))

    def _lookup_service(self, service_id: str) -> tuple[_Connection, Service]:
        for connection in self._connections.values():
            entry = connection.services.get(service_id)
            if entry is not None:
                return connection, entry[0]
        raise TransportError(f"Unknown or disconnected service {service_id}")

    def _lookup_characteristic(self, characteristic_id: str) -> tuple[_Connection, Characteristic, Any]:
        for connection in self._connections.values():
            entry = connection.characteristics.get(characteristic_id)
            if entry is not None:
                return connection, entry[0], entry[1]
        raise TransportError(f"Unknown or disconnected characteristic {characteristic_id}")

    async def get_services(self, address: str) -> list[Service]:
        connection = await self._connect(address)
        return [service for service, _ in connection.services.values()]

    async def get_characteristics(self, service_id: str) -> list[Characteristic]:
        connection, _ = self._lookup_service(service_id)
        return [
            characteristic
            for characteristic, _ in connection.characteristics.values()
            if characteristic.service_id == service_id
        ]

    async def read_characteristic_value(self, characteristic_id: str) -> Characteristic:
        connection, characteristic, gatt_char = self._lookup_characteristic(characteristic_id)
        with _translate_errors(f"Reading {characteristic_id}"):
            data = await connection.client.read_gatt_char(gatt_char)
        return replace(characteristic, value=bytes(data))

    async def start_notifications(self, characteristic_id: str) -> None:
        connection, characteristic, gatt_char = self._lookup_characteristic(characteristic_id)
        if characteristic_id in self._notifying:
            raise AlreadyNotifyingError("Already notifying")

        def _on_notify(_sender: Any, data: bytearray) -> None:
            self._emit(CharacteristicValueChanged(replace(characteristic, value=bytes(data))))

        with _translate_errors(f"Enabling notifications on {characteristic_id}"):
            await connection.client.start_notify(gatt_char, _on_notify)
        self._notifying.add(characteristic_id)

    async def stop_notifications(self, characteristic_id: str) -> None:
        connection, _, gatt_char = self._lookup_characteristic(characteristic_id)
        if characteristic_id not in self._notifying:
            return
        with _translate_errors(f"Disabling notifications on {characteristic_id}"):
            await connection.client.stop_notify(gatt_char)
        self._notifying.discard(characteristic_id)

    async def run_discovery(self, rescan_interval_s: float) -> None:
        """Periodically rescan and connect to newly advertising peripherals.

        Connecting publishes `ServiceAdded` events for the new peripheral's
        services. Runs until cancelled.
        """
        while True:
            try:
                peripherals = await self.scan()
            except TransportError:
                peripherals = []
            for peripheral in peripherals:
                if peripheral.address in self._connections:
                    continue
                try:
                    await self._connect(peripheral.address)
                except TransportError as exc:
                    LOGGER.info("Could not connect to %s: %s", peripheral.address, exc)
            await asyncio.sleep(rescan_interval_s)

    async def close(self) -> None:
        connections = list(self._connections.values())
        self._connections.clear()
        self._notifying.clear()
        for connection in connections:
            try:
                await connection.client.disconnect()
            except Exception as exc:
                LOGGER.debug("Disconnect failed: %s", exc)
