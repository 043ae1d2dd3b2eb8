"""Message transport over a ready session and the bus that fans messages out."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Generic, TypeVar

from gattlink.core.authorization import Authorizer, Capability, StaticAuthorizer, require
from gattlink.core.errors import WriteRejectedError
from gattlink.core.model import InboundMessage

if TYPE_CHECKING:
    from gattlink.core.session import Session

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class NotificationBus(Generic[T]):
    """Multicast point delivering each published item to current subscribers.

    Items published before a handler subscribes are never replayed to it.
    """

    def __init__(self) -> None:
        self._handlers: list[Callable[[T], None]] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: Callable[[T], None]) -> Callable[[], None]:
        with self._lock:
            self._handlers.append(handler)
        return lambda: self.unsubscribe(handler)

    def unsubscribe(self, handler: Callable[[T], None]) -> None:
        with self._lock:
            try:
                self._handlers.remove(handler)
            except ValueError:
                pass

    def publish(self, item: T) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(item)
            except Exception:
                LOGGER.exception("Subscriber %r failed while handling %r", handler, item)

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)


class MessageTransport:
    """Sends payloads through the session's write characteristic.

    The transport owns no radio resources. Each send borrows the session's
    connection and write characteristic, which are only available while the
    session is ready.
    """

    def __init__(self, session: Session, *, authorizer: Authorizer | None = None) -> None:
        self.session = session
        self._authorizer = authorizer or StaticAuthorizer()

    def send(self, payload: bytes | str) -> None:
        data = payload.encode("utf-8") if isinstance(payload, str) else bytes(payload)
        with self.session.exclusive():
            connection, characteristic_uuid = self.session.writer()
            require(self._authorizer, Capability.WRITE)
            if not connection.write_characteristic(characteristic_uuid, data):
                LOGGER.warning("Write of %d bytes to %s rejected", len(data), characteristic_uuid)
                raise WriteRejectedError(f"Radio rejected write to {characteristic_uuid}")
        LOGGER.debug("Queued %d bytes on %s", len(data), characteristic_uuid)

    def on_message(self, handler: Callable[[InboundMessage], None]) -> Callable[[], None]:
        return self.session.messages.subscribe(handler)
