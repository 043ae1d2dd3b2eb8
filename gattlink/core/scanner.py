"""Time-bounded BLE discovery feeding a device registry."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, Protocol

from gattlink.core.authorization import Authorizer, Capability, StaticAuthorizer, require
from gattlink.core.errors import AlreadyScanningError, ScanFailedError
from gattlink.core.events import DeviceFound, ScanFailed, SerialEventQueue
from gattlink.core.messaging import NotificationBus
from gattlink.core.model import (
    DEFAULT_SCAN_TIMEOUT_S,
    SCAN_FAILED_INTERNAL_ERROR,
    PeripheralHandle,
    ScanState,
    ScanStateChange,
)
from gattlink.core.registry import DeviceRegistry
from gattlink.transports.base import RadioStack

LOGGER = logging.getLogger(__name__)


class Cancellable(Protocol):
    def cancel(self) -> None:
        """Prevent the scheduled callback from running."""


class Scheduler(Protocol):
    def call_later(self, delay_s: float, callback: Callable[[], None]) -> Cancellable:
        """Run `callback` once after `delay_s` seconds."""


class ThreadingScheduler:
    def call_later(self, delay_s: float, callback: Callable[[], None]) -> Cancellable:
        timer = threading.Timer(delay_s, callback)
        timer.daemon = True
        timer.start()
        return timer


class ScanController:
    """Runs one discovery pass at a time and stops it when its window elapses.

    Discovered peripherals go into `registry` and, the first time each address
    is seen, are published on `devices`. Every IDLE/SCANNING transition is
    published on `state_changes`; a radio failure is published there with
    the `ScanFailedError` attached.
    """

    def __init__(
        self,
        radio: RadioStack,
        *,
        authorizer: Authorizer | None = None,
        registry: DeviceRegistry | None = None,
        scheduler: Scheduler | None = None,
        include_unnamed: bool = False,
    ) -> None:
        self._radio = radio
        self._authorizer = authorizer or StaticAuthorizer()
        self.registry = registry if registry is not None else DeviceRegistry()
        self._scheduler = scheduler or ThreadingScheduler()
        self.include_unnamed = include_unnamed
        self.devices: NotificationBus[PeripheralHandle] = NotificationBus()
        self.state_changes: NotificationBus[ScanStateChange] = NotificationBus()
        self._events = SerialEventQueue(self._handle)
        self._state = ScanState.IDLE
        self._generation = 0
        self._deadline: Cancellable | None = None
        self.last_error: ScanFailedError | None = None

    @property
    def state(self) -> ScanState:
        return self._state

    @property
    def is_scanning(self) -> bool:
        return self._state is ScanState.SCANNING

    def start(self, timeout: float = DEFAULT_SCAN_TIMEOUT_S) -> None:
        if timeout <= 0:
            raise ValueError(f"Scan timeout must be positive, got {timeout}")
        with self._events.exclusive():
            if self._state is ScanState.SCANNING:
                raise AlreadyScanningError("A scan is already in progress")
            require(self._authorizer, Capability.SCAN)

            self._generation += 1
            generation = self._generation
            self.registry.reset()
            self.last_error = None
            try:
                self._radio.start_scan(lambda event: self._events.post((generation, event)))
            except Exception as exc:
                LOGGER.warning("Starting scan failed: %s", exc)
                self.last_error = ScanFailedError(SCAN_FAILED_INTERNAL_ERROR)
                raise self.last_error from exc

            self._set_state(ScanState.SCANNING)
            self._deadline = self._scheduler.call_later(timeout, lambda: self._on_deadline(generation))
            LOGGER.info("Scan started for %.1fs", timeout)

    def stop(self) -> None:
        with self._events.exclusive():
            if self._state is ScanState.IDLE:
                return
            self._finish(None)
            LOGGER.info("Scan stopped, %d device(s) found", len(self.registry))

    def devices_found(self) -> list[PeripheralHandle]:
        with self._events.exclusive():
            return list(self.registry.all())

    def _on_deadline(self, generation: int) -> None:
        with self._events.exclusive():
            if generation != self._generation or self._state is ScanState.IDLE:
                return
            self._finish(None)
            LOGGER.info("Scan window elapsed, %d device(s) found", len(self.registry))

    def _handle(self, item: tuple[int, Any]) -> None:
        generation, event = item
        if generation != self._generation or self._state is ScanState.IDLE:
            return

        if isinstance(event, DeviceFound):
            name = (event.name or "").strip() or None
            if name is None and not self.include_unnamed:
                return
            handle = PeripheralHandle(address=event.address, name=name, raw=event.raw)
            if self.registry.add(handle):
                LOGGER.debug("Found %s (%s)", handle.address, handle.label)
                self.devices.publish(handle)
        elif isinstance(event, ScanFailed):
            if event.code == 0:
                return
            LOGGER.warning("Scan failed with error code %s", event.code)
            self._finish(ScanFailedError(event.code), stop_radio=False)

    def _finish(self, error: ScanFailedError | None, *, stop_radio: bool = True) -> None:
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None
        if error is not None:
            self.last_error = error
        if stop_radio:
            try:
                self._radio.stop_scan()
            except Exception:
                LOGGER.exception("Stopping scan failed")
        self._set_state(ScanState.IDLE, error)

    def _set_state(self, state: ScanState, error: ScanFailedError | None = None) -> None:
        self._state = state
        self.state_changes.publish(ScanStateChange(state=state, error=error))
