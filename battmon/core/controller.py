"""Selection state machine for the currently displayed service."""

from __future__ import annotations

import logging
from collections.abc import Callable

from battmon.core.errors import AlreadyNotifyingError, MalformedValueError, TransportError
from battmon.core.levels import decode_level
from battmon.core.model import Characteristic, DisplayValue, SelectionPhase, SelectionState, Service
from battmon.core.tasks import PendingRequests, call_with_timeout
from battmon.core.uuids import normalize_uuid, uuid_matches
from battmon.transports.base import TransportAdapter

LOGGER = logging.getLogger(__name__)


class SelectionController:
    """Owns the selected service and the subscribed level characteristic.

    All methods must be called from the event loop thread. Adapter requests
    are issued as background tasks; their completions are applied only when
    they still refer to the current selection, so the latest `select()` wins
    no matter in which order the adapter answers.
    """

    def __init__(
        self,
        adapter: TransportAdapter,
        *,
        characteristic_uuid: str,
        requests: PendingRequests | None = None,
        request_timeout_s: float = 5.0,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self.adapter = adapter
        self.characteristic_uuid = normalize_uuid(characteristic_uuid)
        self.request_timeout_s = request_timeout_s
        self._requests = requests if requests is not None else PendingRequests()
        self._on_change = on_change
        self._token = 0
        self._phase = SelectionPhase.UNSELECTED
        self._service: Service | None = None
        self._characteristic: Characteristic | None = None
        self._level: int | None = None

    @property
    def state(self) -> SelectionState:
        return SelectionState(
            phase=self._phase,
            service=self._service,
            characteristic=self._characteristic,
            level=self._level,
        )

    @property
    def selected_service(self) -> Service | None:
        return self._service

    @property
    def tracked_characteristic(self) -> Characteristic | None:
        return self._characteristic

    def current_display_value(self) -> DisplayValue | None:
        if self._level is None:
            return None
        return DisplayValue(percentage=self._level)

    def is_selected(self, service: Service) -> bool:
        return self._service is not None and self._service.instance_id == service.instance_id

    def select(self, service: Service | None) -> None:
        self._token += 1
        if self._characteristic is not None:
            self._stop_notifications(self._characteristic)

        self._service = service
        self._characteristic = None
        self._level = None

        if service is None:
            LOGGER.info("No service selected.")
            self._phase = SelectionPhase.UNSELECTED
            self._notify()
            return

        LOGGER.info("GATT service selected: %s", service.instance_id)
        self._phase = SelectionPhase.AWAITING_CHARACTERISTICS
        self._notify()
        self._requests.spawn(
            self._query_characteristics(service, self._token),
            name=f"characteristics:{service.instance_id}",
        )

    def service_changed(self, service: Service) -> bool:
        if not self.is_selected(service):
            return False
        LOGGER.info("The selected service has changed: %s", service.instance_id)
        self.select(service)
        return True

    def service_removed(self, service: Service) -> bool:
        if not self.is_selected(service):
            return False
        LOGGER.info("The selected service disappeared: %s", service.instance_id)
        self.select(None)
        return True

    def value_changed(self, characteristic: Characteristic) -> None:
        self._apply_value(characteristic, source="notification")

    def shutdown(self) -> None:
        self.select(None)

    def _is_current(self, token: int) -> bool:
        return token == self._token

    def _is_tracked(self, characteristic: Characteristic) -> bool:
        return (
            self._characteristic is not None
            and self._characteristic.instance_id == characteristic.instance_id
        )

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change()

    async def _query_characteristics(self, service: Service, token: int) -> None:
        try:
            characteristics = await call_with_timeout(
                self.adapter.get_characteristics(service.instance_id),
                self.request_timeout_s,
            )
        except TransportError as exc:
            LOGGER.warning("Failed to get characteristics of %s: %s", service.instance_id, exc)
            return
        self._on_characteristics(service, token, characteristics)

    def _on_characteristics(self, service: Service, token: int, characteristics: list[Characteristic]) -> None:
        if not self._is_current(token):
            LOGGER.debug("Discarding stale characteristics of %s", service.instance_id)
            return

        if not characteristics:
            LOGGER.info("Service has no characteristics: %s", service.instance_id)
            return

        found: Characteristic | None = None
        for characteristic in characteristics:
            if found is not None or not uuid_matches(characteristic.uuid, self.characteristic_uuid):
                LOGGER.info(
                    "Found unexpected characteristic: %s with UUID: %s",
                    characteristic.instance_id,
                    characteristic.uuid,
                )
                continue
            found = characteristic

        if found is None:
            LOGGER.info("Service %s has no level characteristic", service.instance_id)
            return

        LOGGER.info("Setting level characteristic: %s", found.instance_id)
        self._characteristic = found
        self._phase = SelectionPhase.AWAITING_SUBSCRIPTION
        self._notify()
        self._requests.spawn(
            self._subscribe(found, token),
            name=f"subscribe:{found.instance_id}",
        )
        self._requests.spawn(
            self._read(found),
            name=f"read:{found.instance_id}",
        )

    async def _subscribe(self, characteristic: Characteristic, token: int) -> None:
        subscribed = True
        try:
            await call_with_timeout(
                self.adapter.start_notifications(characteristic.instance_id),
                self.request_timeout_s,
            )
        except AlreadyNotifyingError:
            LOGGER.debug("Notifications already enabled for %s", characteristic.instance_id)
        except TransportError as exc:
            LOGGER.warning("Failed to enable notifications for %s: %s", characteristic.instance_id, exc)
            subscribed = False

        if not self._is_current(token):
            owner_selected = self._service is not None and self._service.instance_id == characteristic.service_id
            if subscribed and not owner_selected:
                LOGGER.debug("Dropping subscription of deselected %s", characteristic.instance_id)
                self._stop_notifications(characteristic)
            return

        if subscribed:
            LOGGER.info("Level notifications enabled for %s", characteristic.instance_id)
        if self._phase is SelectionPhase.AWAITING_SUBSCRIPTION:
            self._phase = SelectionPhase.AWAITING_INITIAL_READ
            self._notify()

    async def _read(self, characteristic: Characteristic) -> None:
        try:
            result = await call_with_timeout(
                self.adapter.read_characteristic_value(characteristic.instance_id),
                self.request_timeout_s,
            )
        except TransportError as exc:
            LOGGER.warning("Failed to read %s: %s", characteristic.instance_id, exc)
            return
        self._apply_value(result, source="read")

    def _apply_value(self, characteristic: Characteristic, *, source: str) -> None:
        if not self._is_tracked(characteristic):
            LOGGER.debug("Discarding %s for untracked %s", source, characteristic.instance_id)
            return

        self._characteristic = characteristic
        self._phase = SelectionPhase.ACTIVE

        if characteristic.value is None:
            LOGGER.info("No level value received yet for %s", characteristic.instance_id)
        else:
            try:
                self._level = decode_level(characteristic.value)
            except MalformedValueError as exc:
                LOGGER.warning("Ignoring %s from %s: %s", source, characteristic.instance_id, exc)
            else:
                LOGGER.debug("Level of %s is %d%% (%s)", characteristic.instance_id, self._level, source)
        self._notify()

    def _stop_notifications(self, characteristic: Characteristic) -> None:
        self._requests.spawn(
            self._unsubscribe(characteristic),
            name=f"unsubscribe:{characteristic.instance_id}",
        )

    async def _unsubscribe(self, characteristic: Characteristic) -> None:
        try:
            await call_with_timeout(
                self.adapter.stop_notifications(characteristic.instance_id),
                self.request_timeout_s,
            )
        except TransportError as exc:
            LOGGER.info("Failed to stop notifications for %s: %s", characteristic.instance_id, exc)
            return
        LOGGER.debug("Stopped notifications for %s", characteristic.instance_id)
