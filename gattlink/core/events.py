"""Platform event records and the serial queue that feeds them to state machines."""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from gattlink.core.model import GATT_SUCCESS

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceFound:
    address: str
    name: str | None
    raw: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class ScanFailed:
    code: int


@dataclass(frozen=True)
class ConnectionStateChanged:
    connected: bool
    status: int = GATT_SUCCESS


@dataclass(frozen=True)
class ServicesDiscovered:
    status: int
    # service UUID -> characteristic UUIDs of that service
    services: Mapping[str, tuple[str, ...]] = field(default_factory=dict)


@dataclass(frozen=True)
class DescriptorWriteComplete:
    characteristic_uuid: str
    descriptor_uuid: str
    status: int = GATT_SUCCESS


@dataclass(frozen=True)
class CharacteristicChanged:
    characteristic_uuid: str
    value: bytes


EventListener = Callable[[Any], None]


class SerialEventQueue:
    """Runs a handler for posted events one at a time, in posting order.

    Events may be posted from any thread. An event posted while another
    event is being handled, or while a caller holds `exclusive()`, is queued
    and handled once the current holder finishes, so the handler never
    re-enters itself.
    """

    def __init__(self, handler: Callable[[Any], None]) -> None:
        self._handler = handler
        self._pending: deque[Any] = deque()
        self._mutex = threading.Lock()
        self._owner: int | None = None

    def post(self, event: Any) -> None:
        self._pending.append(event)
        if self._owner == threading.get_ident():
            return
        self._drain()

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        if self._owner == threading.get_ident():
            yield
            return
        try:
            with self._mutex:
                self._owner = threading.get_ident()
                try:
                    yield
                finally:
                    self._owner = None
        finally:
            self._drain()

    def _drain(self) -> None:
        while self._pending:
            if not self._mutex.acquire(blocking=False):
                # The current holder drains before releasing.
                return
            try:
                self._owner = threading.get_ident()
                self._run_pending()
            finally:
                self._owner = None
                self._mutex.release()

    def _run_pending(self) -> None:
        while True:
            try:
                event = self._pending.popleft()
            except IndexError:
                return
            try:
                self._handler(event)
            except Exception:
                LOGGER.exception("Unhandled error while processing %r", event)
