from __future__ import annotations

import threading
from types import SimpleNamespace

import bleak
import pytest

from gattlink.core.events import (
    CharacteristicChanged,
    ConnectionStateChanged,
    DescriptorWriteComplete,
    DeviceFound,
    ScanFailed,
    ServicesDiscovered,
)
from gattlink.core.model import (
    CLIENT_CHARACTERISTIC_CONFIG_UUID,
    DEMO_SERVICE,
    ENABLE_NOTIFICATION_VALUE,
    GATT_ERROR,
    GATT_FAILURE,
    GATT_SUCCESS,
    SCAN_FAILED_INTERNAL_ERROR,
    PeripheralHandle,
)
from gattlink.transports.bleak_radio import BleakRadio


class Recorder:
    def __init__(self) -> None:
        self.events: list = []
        self._changed = threading.Condition()

    def __call__(self, event) -> None:
        with self._changed:
            self.events.append(event)
            self._changed.notify_all()

    def wait_for(self, kind, count: int = 1, timeout_s: float = 2.0) -> list:
        def _matching() -> list:
            return [e for e in self.events if isinstance(e, kind)]

        with self._changed:
            self._changed.wait_for(lambda: len(_matching()) >= count, timeout=timeout_s)
            found = _matching()
        assert len(found) >= count, f"expected {count} {kind.__name__}, got {self.events}"
        return found


class FakeBleakClient:
    instances: list[FakeBleakClient] = []
    fail_connect = False

    def __init__(self, address_or_device, disconnected_callback=None, timeout=10.0) -> None:
        self.target = address_or_device
        self.disconnected_callback = disconnected_callback
        self.timeout = timeout
        self.is_connected = False
        self.services = [
            SimpleNamespace(
                uuid=DEMO_SERVICE.service_uuid,
                characteristics=[
                    SimpleNamespace(uuid=DEMO_SERVICE.write_char_uuid),
                    SimpleNamespace(uuid=DEMO_SERVICE.notify_char_uuid),
                ],
            )
        ]
        self.handlers: dict = {}
        self.writes: list[tuple[str, bytes, bool]] = []
        self.disconnects = 0
        FakeBleakClient.instances.append(self)

    async def connect(self) -> None:
        if self.fail_connect:
            raise OSError("Device not found")
        self.is_connected = True

    async def disconnect(self) -> None:
        self.is_connected = False
        self.disconnects += 1

    async def start_notify(self, characteristic_uuid, handler) -> None:
        self.handlers[characteristic_uuid] = handler

    async def stop_notify(self, characteristic_uuid) -> None:
        self.handlers.pop(characteristic_uuid, None)

    async def write_gatt_char(self, characteristic_uuid, data, response=True) -> None:
        self.writes.append((characteristic_uuid, bytes(data), response))


class FakeBleakScanner:
    instances: list[FakeBleakScanner] = []
    advertisements: list[tuple[SimpleNamespace, SimpleNamespace]] = []
    fail_start = False

    def __init__(self, detection_callback=None) -> None:
        self.detection_callback = detection_callback
        self.stopped = False
        FakeBleakScanner.instances.append(self)

    async def start(self) -> None:
        if self.fail_start:
            raise OSError("Bluetooth adapter is powered off")
        for device, advertisement in self.advertisements:
            self.detection_callback(device, advertisement)

    async def stop(self) -> None:
        self.stopped = True


@pytest.fixture
def bleak_radio(monkeypatch: pytest.MonkeyPatch):
    FakeBleakClient.instances = []
    FakeBleakClient.fail_connect = False
    FakeBleakScanner.advertisements = []
    FakeBleakScanner.instances = []
    FakeBleakScanner.fail_start = False
    monkeypatch.setattr(bleak, "BleakClient", FakeBleakClient)
    monkeypatch.setattr(bleak, "BleakScanner", FakeBleakScanner)
    radio = BleakRadio(connect_timeout_s=3.0)
    yield radio
    radio.shutdown()


def _connect_ready(radio: BleakRadio) -> tuple[Recorder, object, FakeBleakClient]:
    recorder = Recorder()
    connection = radio.connect(PeripheralHandle(address="AA:BB:CC:00:00:01", name="Demo"), recorder)
    recorder.wait_for(ConnectionStateChanged)
    connection.discover_services()
    recorder.wait_for(ServicesDiscovered)
    assert connection.set_notify(DEMO_SERVICE.notify_char_uuid, True)
    assert connection.write_descriptor(
        DEMO_SERVICE.notify_char_uuid,
        CLIENT_CHARACTERISTIC_CONFIG_UUID,
        ENABLE_NOTIFICATION_VALUE,
    )
    recorder.wait_for(DescriptorWriteComplete)
    return recorder, connection, FakeBleakClient.instances[-1]


def test_scan_reports_advertised_name(bleak_radio) -> None:
    FakeBleakScanner.advertisements = [
        (SimpleNamespace(address="00:00:00:00:00:01", name=None), SimpleNamespace(local_name="Nano")),
        (SimpleNamespace(address="00:00:00:00:00:02", name="Cached"), SimpleNamespace(local_name=None)),
    ]
    recorder = Recorder()

    bleak_radio.start_scan(recorder)
    found = recorder.wait_for(DeviceFound, count=2)
    bleak_radio.stop_scan()

    assert [(d.address, d.name) for d in found] == [
        ("00:00:00:00:00:01", "Nano"),
        ("00:00:00:00:00:02", "Cached"),
    ]


def test_scan_start_failure_reports_scan_failed(bleak_radio) -> None:
    FakeBleakScanner.fail_start = True
    recorder = Recorder()

    bleak_radio.start_scan(recorder)

    failed = recorder.wait_for(ScanFailed)
    assert failed[0].code == SCAN_FAILED_INTERNAL_ERROR


def test_failed_scan_is_not_stopped_on_shutdown(bleak_radio) -> None:
    FakeBleakScanner.fail_start = True
    recorder = Recorder()

    bleak_radio.start_scan(recorder)
    recorder.wait_for(ScanFailed)
    bleak_radio.shutdown()

    assert FakeBleakScanner.instances[0].stopped is False


def test_connect_discover_and_subscribe(bleak_radio) -> None:
    recorder, _connection, client = _connect_ready(bleak_radio)

    assert recorder.events[0] == ConnectionStateChanged(connected=True, status=GATT_SUCCESS)
    discovered = recorder.wait_for(ServicesDiscovered)[0]
    assert discovered.status == GATT_SUCCESS
    assert discovered.services[DEMO_SERVICE.service_uuid] == (
        DEMO_SERVICE.write_char_uuid,
        DEMO_SERVICE.notify_char_uuid,
    )
    complete = recorder.wait_for(DescriptorWriteComplete)[0]
    assert complete.status == GATT_SUCCESS
    assert DEMO_SERVICE.notify_char_uuid in client.handlers
    assert client.timeout == 3.0


def test_connect_failure_reports_disconnect(bleak_radio) -> None:
    FakeBleakClient.fail_connect = True
    recorder = Recorder()

    bleak_radio.connect(PeripheralHandle(address="AA:BB:CC:00:00:01"), recorder)

    event = recorder.wait_for(ConnectionStateChanged)[0]
    assert event == ConnectionStateChanged(connected=False, status=GATT_ERROR)


def test_notifications_are_forwarded(bleak_radio) -> None:
    recorder, _connection, client = _connect_ready(bleak_radio)

    client.handlers[DEMO_SERVICE.notify_char_uuid](None, bytearray(b"hello"))

    changed = recorder.wait_for(CharacteristicChanged)[0]
    assert changed == CharacteristicChanged(DEMO_SERVICE.notify_char_uuid, b"hello")


def test_write_characteristic_uses_configured_response_mode(bleak_radio) -> None:
    _recorder, connection, client = _connect_ready(bleak_radio)

    assert connection.write_characteristic(DEMO_SERVICE.write_char_uuid, b"ON")
    bleak_radio.shutdown()

    assert client.writes == [(DEMO_SERVICE.write_char_uuid, b"ON", True)]


def test_unsupported_descriptor_is_rejected(bleak_radio) -> None:
    _recorder, connection, _client = _connect_ready(bleak_radio)

    assert not connection.write_descriptor(DEMO_SERVICE.notify_char_uuid, "00002901-0000-1000-8000-00805f9b34fb", b"")


def test_close_disconnects_once_and_rejects_further_requests(bleak_radio) -> None:
    recorder, connection, client = _connect_ready(bleak_radio)

    connection.close()
    connection.close()
    client.disconnected_callback(client)
    bleak_radio.shutdown()

    assert client.disconnects == 1
    assert not connection.write_characteristic(DEMO_SERVICE.write_char_uuid, b"x")
    assert not connection.set_notify(DEMO_SERVICE.notify_char_uuid, True)
    assert [e for e in recorder.events if isinstance(e, ConnectionStateChanged) and not e.connected] == []


def test_remote_disconnect_is_reported(bleak_radio) -> None:
    recorder, _connection, client = _connect_ready(bleak_radio)

    client.disconnected_callback(client)

    lost = [e for e in recorder.events if isinstance(e, ConnectionStateChanged) and not e.connected]
    assert len(lost) == 1
    assert lost[0].status != GATT_SUCCESS


def test_discovery_failure_reports_failure_status(bleak_radio) -> None:
    recorder = Recorder()
    connection = bleak_radio.connect(PeripheralHandle(address="AA:BB:CC:00:00:01"), recorder)
    recorder.wait_for(ConnectionStateChanged)
    FakeBleakClient.instances[-1].services = None

    connection.discover_services()

    assert recorder.wait_for(ServicesDiscovered)[0].status == GATT_FAILURE
