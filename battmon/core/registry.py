"""Peripheral registry: the set of peripherals exposing the target service."""

from __future__ import annotations

import logging

from battmon.core.uuids import normalize_uuid, uuid_matches

LOGGER = logging.getLogger(__name__)

RegistryEntry = tuple[str, str]


class PeripheralRegistry:
    """Maps peripheral address to display name.

    The registry is fed by the monitor with transport events and enumeration
    results; it never talks to the transport itself. Readers get immutable
    snapshots so a refresh never observes a partial update.
    """

    def __init__(self, service_uuid: str) -> None:
        self.service_uuid = normalize_uuid(service_uuid)
        self._devices: dict[str, str] = {}

    def __contains__(self, address: object) -> bool:
        return address in self._devices

    def __len__(self) -> int:
        return len(self._devices)

    def display_name(self, address: str) -> str | None:
        return self._devices.get(address)

    def matches(self, service_uuid: str) -> bool:
        return uuid_matches(service_uuid, self.service_uuid)

    def add_if_matching(self, address: str, service_uuid: str, display_name: str) -> bool:
        """Insert `address` when `service_uuid` is the target service.

        Returns True only when the registry changed. Repeat calls for an
        address already present keep the first display name.
        """
        if not self.matches(service_uuid):
            return False
        if address in self._devices:
            return False
        LOGGER.info("Found device with target service: %s (%s)", address, display_name)
        self._devices[address] = display_name
        return True

    def remove_if_last_service(self, address: str, has_remaining_matching_service: bool) -> bool:
        """Drop `address` unless it still exposes a matching service.

        Returns True only when the registry changed.
        """
        if has_remaining_matching_service:
            return False
        if self._devices.pop(address, None) is None:
            return False
        LOGGER.info("Removing device: %s", address)
        return True

    def clear(self) -> None:
        self._devices.clear()

    def snapshot(self) -> tuple[RegistryEntry, ...]:
        return tuple(sorted(self._devices.items()))
