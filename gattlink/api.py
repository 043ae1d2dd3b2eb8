"""Stable public API for building tooling on top of gattlink.

Names exported here keep their meaning across releases. Modules under
`gattlink.core` and `gattlink.transports` may change shape between versions.
"""

from __future__ import annotations

from collections.abc import Callable

from gattlink.core.authorization import Authorizer, Capability, StaticAuthorizer
from gattlink.core.errors import (
    AlreadyScanningError,
    ConnectionLostError,
    ControlValueError,
    DeviceSelectionError,
    GattlinkError,
    NotReadyError,
    PermissionDeniedError,
    ProfileLoadError,
    ProfileValidationError,
    ResponseTimeoutError,
    ScanFailedError,
    ServiceDiscoveryFailedError,
    ServiceNotFoundError,
    SessionAlreadyActiveError,
    SubscriptionFailedError,
    TransportError,
    WriteRejectedError,
)
from gattlink.core.messaging import MessageTransport, NotificationBus
from gattlink.core.model import (
    DEMO_SERVICE,
    InboundMessage,
    PeripheralHandle,
    Profile,
    ScanState,
    ScanStateChange,
    ServiceDescriptor,
    SessionState,
    SessionStateChange,
)
from gattlink.core.registry import DeviceRegistry
from gattlink.core.scanner import ScanController, Scheduler
from gattlink.core.service import DEFAULT_CONNECT_TIMEOUT_S, DEFAULT_REPLY_TIMEOUT_S, LinkService
from gattlink.core.session import Session
from gattlink.transports.base import RadioConnection, RadioStack

__all__ = [
    "GattlinkError",
    "AlreadyScanningError",
    "ConnectionLostError",
    "ControlValueError",
    "DeviceSelectionError",
    "NotReadyError",
    "PermissionDeniedError",
    "ProfileLoadError",
    "ProfileValidationError",
    "ResponseTimeoutError",
    "ScanFailedError",
    "ServiceDiscoveryFailedError",
    "ServiceNotFoundError",
    "SessionAlreadyActiveError",
    "SubscriptionFailedError",
    "TransportError",
    "WriteRejectedError",
    "Authorizer",
    "Capability",
    "StaticAuthorizer",
    "DEMO_SERVICE",
    "InboundMessage",
    "PeripheralHandle",
    "Profile",
    "ScanState",
    "ScanStateChange",
    "ServiceDescriptor",
    "SessionState",
    "SessionStateChange",
    "DeviceRegistry",
    "ScanController",
    "Session",
    "MessageTransport",
    "NotificationBus",
    "RadioStack",
    "RadioConnection",
    "Client",
]


class Client:
    """Public client for interacting with gattlink core capabilities.

    A `Client` owns one scan controller, one session, and one message
    transport for the selected profile. Only one peripheral can be connected
    at a time; call `close()` (or use the client as a context manager) to
    release the connection.
    """

    def __init__(
        self,
        *,
        radio: RadioStack | None = None,
        authorizer: Authorizer | None = None,
        profile_id: str | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._service = LinkService(
            radio=radio,
            authorizer=authorizer,
            profile_id=profile_id,
            scheduler=scheduler,
        )

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    @property
    def profile(self) -> Profile:
        return self._service.profile

    @property
    def scanner(self) -> ScanController:
        return self._service.scanner

    @property
    def session(self) -> Session:
        return self._service.session

    @property
    def state(self) -> SessionState:
        return self._service.session.state

    def list_profiles(self) -> list[Profile]:
        return self._service.list_profiles()

    def scan(self, *, timeout_s: float | None = None) -> list[PeripheralHandle]:
        return self._service.scan(timeout_s)

    def resolve_device(self, hint: str | None = None, *, timeout_s: float | None = None) -> PeripheralHandle:
        return self._service.resolve_device(hint, timeout_s)

    def connect(self, device: PeripheralHandle, *, timeout_s: float = DEFAULT_CONNECT_TIMEOUT_S) -> None:
        self._service.connect(device, timeout_s)

    def wait_for_state(self, state: SessionState, *, timeout_s: float) -> None:
        self._service.wait_for_state(state, timeout_s)

    def send(self, payload: bytes | str) -> None:
        self._service.send(payload)

    def send_toggle(self, on: bool) -> str:
        return self._service.send_toggle(on)

    def send_offset(self, value: int) -> str:
        return self._service.send_offset(value)

    def request(self, payload: bytes | str, *, timeout_s: float = DEFAULT_REPLY_TIMEOUT_S) -> InboundMessage:
        return self._service.request(payload, timeout_s)

    def on_message(self, handler: Callable[[InboundMessage], None]) -> Callable[[], None]:
        return self._service.transport.on_message(handler)

    def on_state_change(self, handler: Callable[[SessionStateChange], None]) -> Callable[[], None]:
        return self._service.session.state_changes.subscribe(handler)

    def close(self) -> None:
        self._service.close()

    def __enter__(self) -> Client:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
