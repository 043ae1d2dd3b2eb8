"""GATT session state machine for a single peripheral.

The session moves DISCONNECTED -> CONNECTING -> SERVICE_DISCOVERY ->
SUBSCRIBING -> READY, driven only by events posted from the radio stack.
A disconnect event or a failure from any state collapses it back to
DISCONNECTED. There is no connect timeout: a session that never hears
back from the radio stays CONNECTING until `disconnect()` is called,
unlike a scan, which always ends when its window elapses.
"""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from functools import partial
from typing import Any

from gattlink.core.authorization import Authorizer, Capability, StaticAuthorizer, require
from gattlink.core.errors import (
    ConnectionLostError,
    NotReadyError,
    ServiceDiscoveryFailedError,
    ServiceNotFoundError,
    SessionAlreadyActiveError,
    SubscriptionFailedError,
    TransportError,
)
from gattlink.core.events import (
    CharacteristicChanged,
    ConnectionStateChanged,
    DescriptorWriteComplete,
    SerialEventQueue,
    ServicesDiscovered,
)
from gattlink.core.messaging import NotificationBus
from gattlink.core.model import (
    CLIENT_CHARACTERISTIC_CONFIG_UUID,
    DEMO_SERVICE,
    ENABLE_NOTIFICATION_VALUE,
    GATT_SUCCESS,
    InboundMessage,
    PeripheralHandle,
    ServiceDescriptor,
    SessionState,
    SessionStateChange,
)
from gattlink.transports.base import RadioConnection, RadioStack

LOGGER = logging.getLogger(__name__)

_ACTIVE_STATES = frozenset(
    {
        SessionState.CONNECTING,
        SessionState.SERVICE_DISCOVERY,
        SessionState.SUBSCRIBING,
        SessionState.READY,
    }
)


class Session:
    """Logical connection to one peripheral.

    The session exclusively owns the `RadioConnection` returned by the radio
    and closes it exactly once on every exit path.
    """

    def __init__(
        self,
        radio: RadioStack,
        *,
        descriptor: ServiceDescriptor = DEMO_SERVICE,
        authorizer: Authorizer | None = None,
    ) -> None:
        self._radio = radio
        self.descriptor = descriptor
        self._authorizer = authorizer or StaticAuthorizer()
        self.messages: NotificationBus[InboundMessage] = NotificationBus()
        self.state_changes: NotificationBus[SessionStateChange] = NotificationBus()
        self._events = SerialEventQueue(self._handle)
        self._state = SessionState.DISCONNECTED
        self._peripheral: PeripheralHandle | None = None
        self._connection: RadioConnection | None = None
        self._write_char_uuid: str | None = None
        self._attempt = 0
        self.last_error: Exception | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def peripheral(self) -> PeripheralHandle | None:
        return self._peripheral

    @property
    def is_ready(self) -> bool:
        return self._state is SessionState.READY

    def exclusive(self) -> AbstractContextManager[None]:
        return self._events.exclusive()

    def connect(self, peripheral: PeripheralHandle) -> None:
        with self._events.exclusive():
            if self._state in _ACTIVE_STATES:
                raise SessionAlreadyActiveError(
                    f"Session already {self._state.value} with {self._peripheral.address}"
                )
            require(self._authorizer, Capability.CONNECT)

            self._attempt += 1
            listener = partial(self._post, self._attempt)
            try:
                connection = self._radio.connect(peripheral, listener)
            except Exception as exc:
                raise TransportError(f"Connect request for {peripheral.address} failed: {exc}") from exc

            self._connection = connection
            self._peripheral = peripheral
            self.last_error = None
            LOGGER.info("Connecting to %s (%s)", peripheral.address, peripheral.label)
            self._set_state(SessionState.CONNECTING)

    def disconnect(self) -> None:
        with self._events.exclusive():
            if self._state is SessionState.DISCONNECTED and self._connection is None:
                return
            LOGGER.info("Disconnecting from %s", self._peripheral.address if self._peripheral else "?")
            self._teardown(None)

    close = disconnect

    def writer(self) -> tuple[RadioConnection, str]:
        """Borrow the connection and write characteristic of a ready session.

        Only valid inside `exclusive()`; the pair is stale once the session
        leaves READY.
        """
        if self._state is not SessionState.READY or self._connection is None:
            raise NotReadyError(f"Session is {self._state.value}, not ready")
        if self._write_char_uuid is None:
            raise NotReadyError(
                f"Peripheral has no writable characteristic {self.descriptor.write_char_uuid}"
            )
        return self._connection, self._write_char_uuid

    def __enter__(self) -> Session:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _post(self, attempt: int, event: Any) -> None:
        self._events.post((attempt, event))

    def _handle(self, item: tuple[int, Any]) -> None:
        attempt, event = item
        if attempt != self._attempt or self._state is SessionState.DISCONNECTED:
            LOGGER.debug("Dropping stale event %r", event)
            return

        if isinstance(event, ConnectionStateChanged):
            self._on_connection_state(event)
        elif isinstance(event, ServicesDiscovered):
            self._on_services_discovered(event)
        elif isinstance(event, DescriptorWriteComplete):
            self._on_descriptor_write(event)
        elif isinstance(event, CharacteristicChanged):
            self._on_characteristic_changed(event)
        else:
            LOGGER.debug("Ignoring unexpected event %r", event)

    def _on_connection_state(self, event: ConnectionStateChanged) -> None:
        if not event.connected:
            LOGGER.warning(
                "Connection to %s lost (status %s) while %s",
                self._peripheral.address,
                event.status,
                self._state.value,
            )
            self._teardown(ConnectionLostError(event.status))
            return
        if self._state is not SessionState.CONNECTING:
            return

        LOGGER.info("Connected to %s, discovering services", self._peripheral.address)
        try:
            self._connection.discover_services()
        except Exception as exc:
            LOGGER.warning("Service discovery request failed: %s", exc)
            self._teardown(TransportError(f"Service discovery request failed: {exc}"))
            return
        self._set_state(SessionState.SERVICE_DISCOVERY)

    def _on_services_discovered(self, event: ServicesDiscovered) -> None:
        if self._state is not SessionState.SERVICE_DISCOVERY:
            return
        if event.status != GATT_SUCCESS:
            LOGGER.warning("Service discovery failed with status %s", event.status)
            self._teardown(ServiceDiscoveryFailedError(event.status))
            return

        services = {uuid.lower(): {c.lower() for c in chars} for uuid, chars in event.services.items()}
        LOGGER.debug("Discovered services: %s", sorted(services))
        characteristics = services.get(self.descriptor.service_uuid)
        if characteristics is None:
            self._teardown(ServiceNotFoundError(self.descriptor.service_uuid))
            return
        notify_uuid = self.descriptor.notify_char_uuid
        if notify_uuid not in characteristics:
            self._teardown(ServiceNotFoundError(self.descriptor.service_uuid, notify_uuid))
            return

        if self.descriptor.write_char_uuid in characteristics:
            self._write_char_uuid = self.descriptor.write_char_uuid
        else:
            LOGGER.warning("Writable characteristic %s not found", self.descriptor.write_char_uuid)

        try:
            accepted = self._connection.set_notify(notify_uuid, True) and self._connection.write_descriptor(
                notify_uuid,
                CLIENT_CHARACTERISTIC_CONFIG_UUID,
                ENABLE_NOTIFICATION_VALUE,
            )
        except Exception as exc:
            LOGGER.warning("Enabling notifications failed: %s", exc)
            accepted = False
        if not accepted:
            self._teardown(SubscriptionFailedError())
            return
        self._set_state(SessionState.SUBSCRIBING)

    def _on_descriptor_write(self, event: DescriptorWriteComplete) -> None:
        if self._state is not SessionState.SUBSCRIBING:
            return
        if event.descriptor_uuid.lower() != CLIENT_CHARACTERISTIC_CONFIG_UUID:
            return
        if event.status != GATT_SUCCESS:
            self._teardown(SubscriptionFailedError(event.status))
            return
        LOGGER.info("Notifications enabled on %s", event.characteristic_uuid)
        self._set_state(SessionState.READY)

    def _on_characteristic_changed(self, event: CharacteristicChanged) -> None:
        uuid = event.characteristic_uuid.lower()
        if uuid != self.descriptor.notify_char_uuid:
            return
        if self._state not in (SessionState.SUBSCRIBING, SessionState.READY):
            return
        message = InboundMessage(characteristic_uuid=uuid, payload=bytes(event.value))
        LOGGER.debug("Received %r", message.payload)
        self.messages.publish(message)

    def _teardown(self, error: Exception | None) -> None:
        connection, self._connection = self._connection, None
        self._write_char_uuid = None
        # Events still in flight for this attempt are dropped.
        self._attempt += 1
        if error is not None:
            self.last_error = error
        if connection is not None:
            try:
                connection.close()
            except Exception:
                LOGGER.exception("Closing connection to %s failed", self._peripheral.address)
        if self._state is not SessionState.DISCONNECTED:
            self._set_state(SessionState.DISCONNECTED, error)

    def _set_state(self, state: SessionState, error: Exception | None = None) -> None:
        LOGGER.debug("Session %s -> %s", self._state.value, state.value)
        self._state = state
        self.state_changes.publish(SessionStateChange(state=state, peripheral=self._peripheral, error=error))
