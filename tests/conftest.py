from __future__ import annotations

from collections.abc import Callable

import pytest

from gattlink.core.events import (
    CharacteristicChanged,
    ConnectionStateChanged,
    DescriptorWriteComplete,
    ServicesDiscovered,
)
from gattlink.core.model import DEMO_SERVICE, GATT_SUCCESS, PeripheralHandle, SessionState
from gattlink.core.session import Session

DEMO_SERVICES = {
    DEMO_SERVICE.service_uuid: (DEMO_SERVICE.write_char_uuid, DEMO_SERVICE.notify_char_uuid),
}


class FakeConnection:
    def __init__(self, peripheral: PeripheralHandle, listener: Callable, *, auto: bool) -> None:
        self.peripheral = peripheral
        self.listener = listener
        self.auto = auto
        self.services = dict(DEMO_SERVICES)
        self.calls: list[tuple] = []
        self.writes: list[tuple[str, bytes]] = []
        self.close_count = 0
        self.accept_notify = True
        self.accept_descriptor = True
        self.accept_writes = True
        self.sync_descriptor_complete = auto
        self.reply: bytes | None = None

    def emit(self, event) -> None:
        self.listener(event)

    def discover_services(self) -> None:
        self.calls.append(("discover_services",))
        if self.auto:
            self.emit(ServicesDiscovered(status=GATT_SUCCESS, services=self.services))

    def set_notify(self, characteristic_uuid: str, enabled: bool) -> bool:
        self.calls.append(("set_notify", characteristic_uuid, enabled))
        return self.accept_notify

    def write_descriptor(self, characteristic_uuid: str, descriptor_uuid: str, value: bytes) -> bool:
        self.calls.append(("write_descriptor", characteristic_uuid, descriptor_uuid, value))
        if self.sync_descriptor_complete:
            self.emit(DescriptorWriteComplete(characteristic_uuid, descriptor_uuid, GATT_SUCCESS))
        return self.accept_descriptor

    def write_characteristic(self, characteristic_uuid: str, payload: bytes) -> bool:
        self.writes.append((characteristic_uuid, payload))
        if self.accept_writes and self.reply is not None:
            self.emit(CharacteristicChanged(DEMO_SERVICE.notify_char_uuid, self.reply))
        return self.accept_writes

    def close(self) -> None:
        self.close_count += 1


class FakeRadio:
    """Radio stack double; `auto=True` answers every request immediately."""

    def __init__(self, *, auto: bool = False) -> None:
        self.auto = auto
        self.advertisements: list = []
        self.scan_listener: Callable | None = None
        self.scan_starts = 0
        self.scan_stops = 0
        self.fail_start = False
        self.connections: list[FakeConnection] = []
        self.services = dict(DEMO_SERVICES)
        self.reply: bytes | None = None

    def start_scan(self, listener: Callable) -> None:
        if self.fail_start:
            raise RuntimeError("adapter powered off")
        self.scan_starts += 1
        self.scan_listener = listener
        for advertisement in self.advertisements:
            listener(advertisement)

    def stop_scan(self) -> None:
        self.scan_stops += 1

    def connect(self, peripheral: PeripheralHandle, listener: Callable) -> FakeConnection:
        connection = FakeConnection(peripheral, listener, auto=self.auto)
        connection.reply = self.reply
        connection.services = dict(self.services)
        self.connections.append(connection)
        if self.auto:
            connection.emit(ConnectionStateChanged(connected=True))
        return connection

    @property
    def connection(self) -> FakeConnection:
        return self.connections[-1]


class _Handle:
    def __init__(self, delay_s: float, callback: Callable[[], None]) -> None:
        self.delay_s = delay_s
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    def __init__(self) -> None:
        self.handles: list[_Handle] = []

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> _Handle:
        handle = _Handle(delay_s, callback)
        self.handles.append(handle)
        return handle

    def fire(self, handle: _Handle | None = None) -> None:
        handle = handle or self.handles[-1]
        # Fires even when cancelled, like a timer that already started running.
        handle.callback()


DEVICE_A = PeripheralHandle(address="AA:BB:CC:00:00:01", name="Demo A")


@pytest.fixture(autouse=True)
def _isolate_user_profiles(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))


@pytest.fixture
def radio() -> FakeRadio:
    return FakeRadio()


@pytest.fixture
def auto_radio() -> FakeRadio:
    return FakeRadio(auto=True)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def session(radio: FakeRadio) -> Session:
    return Session(radio)


@pytest.fixture
def ready_session(radio: FakeRadio, session: Session) -> Session:
    session.connect(DEVICE_A)
    radio.connection.emit(ConnectionStateChanged(connected=True))
    radio.connection.emit(ServicesDiscovered(status=GATT_SUCCESS, services=DEMO_SERVICES))
    radio.connection.emit(
        DescriptorWriteComplete(
            DEMO_SERVICE.notify_char_uuid,
            "00002902-0000-1000-8000-00805f9b34fb",
            GATT_SUCCESS,
        )
    )
    assert session.state is SessionState.READY
    return session
