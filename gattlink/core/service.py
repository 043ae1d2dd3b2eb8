"""Service layer used by the CLI and the public API.

Wires one scan controller, one session, and one message transport together
for a profile, and builds the blocking compositions (scan and wait, connect
and wait, send and wait for a reply) on top of their event buses.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from gattlink.core.authorization import Authorizer, StaticAuthorizer
from gattlink.core.control import render_offset, render_toggle
from gattlink.core.device_match import select_device
from gattlink.core.errors import DeviceSelectionError, NotReadyError, ResponseTimeoutError
from gattlink.core.messaging import MessageTransport
from gattlink.core.model import InboundMessage, PeripheralHandle, Profile, ScanState, SessionState
from gattlink.core.profile_loader import DEFAULT_PROFILE_ID, load_profiles
from gattlink.core.scanner import ScanController, Scheduler
from gattlink.core.session import Session
from gattlink.transports.base import RadioStack

LOGGER = logging.getLogger(__name__)

_SCAN_GRACE_S = 1.0
DEFAULT_CONNECT_TIMEOUT_S = 10.0
DEFAULT_REPLY_TIMEOUT_S = 5.0


class LinkService:
    def __init__(
        self,
        *,
        radio: RadioStack | None = None,
        authorizer: Authorizer | None = None,
        profile_id: str | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        loaded = load_profiles()
        self.profiles = loaded.profiles
        self.load_warnings = loaded.warnings
        self.profile = self._select_profile(profile_id)
        self._owns_radio = radio is None
        if radio is None:
            from gattlink.transports.bleak_radio import BleakRadio

            radio = BleakRadio()
        self.radio = radio
        self.authorizer = authorizer or StaticAuthorizer()
        self.scanner = ScanController(
            radio,
            authorizer=self.authorizer,
            scheduler=scheduler,
            include_unnamed=self.profile.scan.include_unnamed,
        )
        self.session = Session(radio, descriptor=self.profile.service, authorizer=self.authorizer)
        self.transport = MessageTransport(self.session, authorizer=self.authorizer)

    def _select_profile(self, profile_id: str | None) -> Profile:
        wanted = profile_id or DEFAULT_PROFILE_ID
        profile = self.profiles.get(wanted)
        if profile is None:
            available = ", ".join(sorted(self.profiles)) or "<none>"
            raise DeviceSelectionError(f"Unknown profile '{wanted}'. Available: {available}")
        return profile

    def list_profiles(self) -> list[Profile]:
        return sorted(self.profiles.values(), key=lambda p: p.id)

    def scan(self, timeout_s: float | None = None) -> list[PeripheralHandle]:
        """Run one scan pass and return the devices it found."""
        window = timeout_s if timeout_s is not None else self.profile.scan.timeout_s
        finished = threading.Event()

        def _on_change(change) -> None:
            if change.state is ScanState.IDLE:
                finished.set()

        unsubscribe = self.scanner.state_changes.subscribe(_on_change)
        try:
            self.scanner.start(window)
            if not finished.wait(window + _SCAN_GRACE_S):
                LOGGER.warning("Scan did not stop on its own, stopping it")
                self.scanner.stop()
        finally:
            unsubscribe()

        if self.scanner.last_error is not None:
            raise self.scanner.last_error
        return self.scanner.devices_found()

    def resolve_device(self, hint: str | None = None, timeout_s: float | None = None) -> PeripheralHandle:
        return select_device(self.scan(timeout_s), self.profile, hint)

    def wait_for_state(self, state: SessionState, timeout_s: float) -> None:
        """Block until the session reaches `state`.

        Raises the session's last error if it falls back to DISCONNECTED
        first, and `ResponseTimeoutError` if neither happens in time.
        """
        reached = threading.Event()

        def _on_change(change) -> None:
            if change.state is state or change.state is SessionState.DISCONNECTED:
                reached.set()

        unsubscribe = self.session.state_changes.subscribe(_on_change)
        try:
            if self.session.state is not state and self.session.state is not SessionState.DISCONNECTED:
                reached.wait(timeout_s)
        finally:
            unsubscribe()

        current = self.session.state
        if current is state:
            return
        if current is SessionState.DISCONNECTED:
            raise self.session.last_error or NotReadyError("Session disconnected")
        raise ResponseTimeoutError(
            f"Session still {current.value} after {timeout_s:g}s waiting for {state.value}"
        )

    def connect(self, device: PeripheralHandle, timeout_s: float = DEFAULT_CONNECT_TIMEOUT_S) -> None:
        self.session.connect(device)
        try:
            self.wait_for_state(SessionState.READY, timeout_s)
        except ResponseTimeoutError:
            # The session has no timeout of its own; give up on this attempt.
            self.session.disconnect()
            raise

    def send(self, payload: bytes | str) -> None:
        self.transport.send(payload)

    def send_toggle(self, on: bool) -> str:
        message = render_toggle(self.profile, on)
        self.transport.send(message)
        return message

    def send_offset(self, value: int) -> str:
        message = render_offset(self.profile, value)
        self.transport.send(message)
        return message

    def request(self, payload: bytes | str, timeout_s: float = DEFAULT_REPLY_TIMEOUT_S) -> InboundMessage:
        """Send `payload` and wait for the next inbound message."""
        replies: list[InboundMessage] = []
        arrived = threading.Event()

        def _on_message(message: InboundMessage) -> None:
            if not replies:
                replies.append(message)
                arrived.set()

        unsubscribe = self.transport.on_message(_on_message)
        try:
            self.transport.send(payload)
            if not arrived.wait(timeout_s):
                raise ResponseTimeoutError(f"No reply within {timeout_s:g}s")
        finally:
            unsubscribe()
        return replies[0]

    def listen(
        self,
        duration_s: float,
        handler: Callable[[InboundMessage], None] | None = None,
    ) -> list[InboundMessage]:
        """Collect inbound messages for `duration_s` or until the session drops."""
        received: list[InboundMessage] = []
        dropped = threading.Event()

        def _on_message(message: InboundMessage) -> None:
            received.append(message)
            if handler is not None:
                handler(message)

        def _on_change(change) -> None:
            if change.state is SessionState.DISCONNECTED:
                dropped.set()

        unsubscribe_messages = self.transport.on_message(_on_message)
        unsubscribe_states = self.session.state_changes.subscribe(_on_change)
        try:
            if self.session.state is not SessionState.DISCONNECTED:
                dropped.wait(duration_s)
        finally:
            unsubscribe_states()
            unsubscribe_messages()
        return received

    def close(self) -> None:
        self.scanner.stop()
        self.session.close()
        if self._owns_radio:
            self.radio.shutdown()
