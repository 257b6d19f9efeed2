"""Core data models shared by the registry, controller, transports and CLI."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

from battmon.core.levels import classify_level

BATTERY_SERVICE_UUID = "0000180f-0000-1000-8000-00805f9b34fb"
BATTERY_LEVEL_CHAR_UUID = "00002a19-0000-1000-8000-00805f9b34fb"


@dataclass(frozen=True)
class AdapterState:
    address: str | None = None
    name: str | None = None
    available: bool = True
    powered: bool = True

    @property
    def display_address(self) -> str:
        return self.address or "unknown"

    @property
    def display_name(self) -> str:
        return self.name or "Local Adapter"


@dataclass(frozen=True)
class Peripheral:
    address: str
    name: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.address


@dataclass(frozen=True)
class Service:
    instance_id: str
    device_address: str
    uuid: str


@dataclass(frozen=True)
class Characteristic:
    instance_id: str
    service_id: str
    uuid: str
    value: bytes | None = None


@dataclass(frozen=True)
class ServiceAdded:
    service: Service


@dataclass(frozen=True)
class ServiceRemoved:
    service: Service


@dataclass(frozen=True)
class ServiceChanged:
    service: Service


@dataclass(frozen=True)
class CharacteristicValueChanged:
    characteristic: Characteristic


@dataclass(frozen=True)
class AdapterStateChanged:
    state: AdapterState


TransportEvent = Union[
    ServiceAdded,
    ServiceRemoved,
    ServiceChanged,
    CharacteristicValueChanged,
    AdapterStateChanged,
]


class SelectionPhase(str, Enum):
    UNSELECTED = "unselected"
    AWAITING_CHARACTERISTICS = "awaiting-characteristics"
    AWAITING_SUBSCRIPTION = "awaiting-subscription"
    AWAITING_INITIAL_READ = "awaiting-initial-read"
    ACTIVE = "active"


@dataclass(frozen=True)
class SelectionState:
    """Point-in-time view of the selection state machine.

    `level` is the last successfully decoded value for the tracked
    characteristic, which may lag behind `characteristic.value` when a
    malformed value arrived.
    """

    phase: SelectionPhase = SelectionPhase.UNSELECTED
    service: Service | None = None
    characteristic: Characteristic | None = None
    level: int | None = None


@dataclass(frozen=True)
class DisplayValue:
    percentage: int

    @property
    def tier(self) -> str:
        return classify_level(self.percentage)

    @property
    def label(self) -> str:
        return f"{self.percentage} %"


class ViewUpdate(str, Enum):
    REGISTRY = "registry"
    VALUE = "value"
    ADAPTER = "adapter"
