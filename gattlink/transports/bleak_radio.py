"""Radio stack implementation on top of bleak."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Coroutine
from concurrent.futures import Future, wait
from typing import Any

from gattlink.core.errors import TransportError
from gattlink.core.events import (
    CharacteristicChanged,
    ConnectionStateChanged,
    DescriptorWriteComplete,
    DeviceFound,
    EventListener,
    ScanFailed,
    ServicesDiscovered,
)
from gattlink.core.model import (
    CLIENT_CHARACTERISTIC_CONFIG_UUID,
    DISABLE_NOTIFICATION_VALUE,
    GATT_ERROR,
    GATT_FAILURE,
    GATT_SUCCESS,
    SCAN_FAILED_INTERNAL_ERROR,
    PeripheralHandle,
)

LOGGER = logging.getLogger(__name__)

# Reported when the peripheral drops a link we did not close.
_STATUS_REMOTE_TERMINATED = 19


class _LoopThread:
    """Private asyncio loop running bleak coroutines on a daemon thread."""

    def __init__(self) -> None:
        self.loop = asyncio.new_event_loop()
        self._pending: set[Future] = set()
        self._thread = threading.Thread(target=self._run, daemon=True, name="gattlink-ble-loop")
        self._thread.start()

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        LOGGER.debug("BLE event loop started")
        self.loop.run_forever()
        LOGGER.debug("BLE event loop stopped")

    def submit(self, coro: Coroutine[Any, Any, Any], what: str) -> Future:
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        self._pending.add(future)

        def _log_failure(done: Future) -> None:
            self._pending.discard(done)
            if done.cancelled():
                return
            exc = done.exception()
            if exc is not None:
                LOGGER.warning("%s failed: %s", what, exc)

        future.add_done_callback(_log_failure)
        return future

    def stop(self, timeout_s: float = 2.0) -> None:
        # Let queued disconnects reach the adapter first.
        if self._pending:
            wait(list(self._pending), timeout=timeout_s)
        if self.loop.is_closed():
            return
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=timeout_s)
        if not self._thread.is_alive():
            self.loop.close()


class BleakConnection:
    def __init__(
        self,
        loop: _LoopThread,
        client: Any,
        listener: EventListener,
        *,
        write_with_response: bool,
    ) -> None:
        self._loop = loop
        self._client = client
        self._listener = listener
        self._write_with_response = write_with_response
        self._notify_enabled: set[str] = set()
        self._closed = False

    def open(self) -> None:
        self._loop.submit(self._connect(), "BLE connect")

    async def _connect(self) -> None:
        try:
            await self._client.connect()
        except Exception as exc:
            LOGGER.warning("BLE connect failed: %s", exc)
            self._listener(ConnectionStateChanged(connected=False, status=GATT_ERROR))
            return
        self._listener(ConnectionStateChanged(connected=True, status=GATT_SUCCESS))

    def on_disconnected(self, _client: Any) -> None:
        if not self._closed:
            self._listener(ConnectionStateChanged(connected=False, status=_STATUS_REMOTE_TERMINATED))

    def discover_services(self) -> None:
        self._loop.submit(self._discover(), "BLE service discovery")

    async def _discover(self) -> None:
        # bleak resolves the GATT table as part of connect().
        try:
            services = {
                service.uuid: tuple(char.uuid for char in service.characteristics)
                for service in self._client.services
            }
        except Exception as exc:
            LOGGER.warning("Reading services failed: %s", exc)
            self._listener(ServicesDiscovered(status=GATT_FAILURE))
            return
        self._listener(ServicesDiscovered(status=GATT_SUCCESS, services=services))

    def set_notify(self, characteristic_uuid: str, enabled: bool) -> bool:
        if self._closed:
            return False
        if enabled:
            self._notify_enabled.add(characteristic_uuid)
        else:
            self._notify_enabled.discard(characteristic_uuid)
        return True

    def write_descriptor(self, characteristic_uuid: str, descriptor_uuid: str, value: bytes) -> bool:
        if self._closed:
            return False
        if descriptor_uuid.lower() != CLIENT_CHARACTERISTIC_CONFIG_UUID:
            LOGGER.warning("Only the client characteristic configuration descriptor is supported")
            return False
        # bleak writes the CCCD itself when starting or stopping notifications.
        enable = value != DISABLE_NOTIFICATION_VALUE
        self._loop.submit(
            self._write_cccd(characteristic_uuid, descriptor_uuid, enable),
            "BLE descriptor write",
        )
        return True

    async def _write_cccd(self, characteristic_uuid: str, descriptor_uuid: str, enable: bool) -> None:
        def _handler(_: Any, data: bytearray) -> None:
            if characteristic_uuid in self._notify_enabled:
                self._listener(CharacteristicChanged(characteristic_uuid=characteristic_uuid, value=bytes(data)))

        try:
            if enable:
                await self._client.start_notify(characteristic_uuid, _handler)
            else:
                await self._client.stop_notify(characteristic_uuid)
        except Exception as exc:
            LOGGER.warning("Updating notifications on %s failed: %s", characteristic_uuid, exc)
            status = GATT_FAILURE
        else:
            status = GATT_SUCCESS
        self._listener(DescriptorWriteComplete(characteristic_uuid, descriptor_uuid, status))

    def write_characteristic(self, characteristic_uuid: str, payload: bytes) -> bool:
        if self._closed or not self._client.is_connected:
            return False
        self._loop.submit(
            self._client.write_gatt_char(characteristic_uuid, payload, response=self._write_with_response),
            f"BLE write to {characteristic_uuid}",
        )
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._loop.submit(self._client.disconnect(), "BLE disconnect")


class BleakRadio:
    def __init__(self, *, connect_timeout_s: float = 10.0, write_with_response: bool = True) -> None:
        try:
            from bleak import BleakClient, BleakScanner  # type: ignore
        except Exception as exc:  # pragma: no cover - import failure path
            raise TransportError(
                "BLE radio requires 'bleak'. Install dependency and retry."
            ) from exc

        self._client_cls = BleakClient
        self._scanner_cls = BleakScanner
        self.connect_timeout_s = connect_timeout_s
        self.write_with_response = write_with_response
        self._loop = _LoopThread()
        self._scanner: Any = None

    def start_scan(self, listener: EventListener) -> None:
        def _detected(device: Any, advertisement: Any) -> None:
            name = getattr(advertisement, "local_name", None) or device.name
            listener(DeviceFound(address=device.address, name=name, raw=device))

        scanner = self._scanner_cls(detection_callback=_detected)
        self._scanner = scanner
        future = self._loop.submit(scanner.start(), "BLE scan start")

        def _report(done: Future) -> None:
            if not done.cancelled() and done.exception() is not None:
                if self._scanner is scanner:
                    self._scanner = None
                listener(ScanFailed(code=SCAN_FAILED_INTERNAL_ERROR))

        future.add_done_callback(_report)

    def stop_scan(self) -> None:
        scanner, self._scanner = self._scanner, None
        if scanner is not None:
            self._loop.submit(scanner.stop(), "BLE scan stop")

    def connect(self, peripheral: PeripheralHandle, listener: EventListener) -> BleakConnection:
        connection: BleakConnection | None = None

        def _disconnected(client: Any) -> None:
            if connection is not None:
                connection.on_disconnected(client)

        client = self._client_cls(
            peripheral.raw if peripheral.raw is not None else peripheral.address,
            disconnected_callback=_disconnected,
            timeout=self.connect_timeout_s,
        )
        connection = BleakConnection(
            self._loop,
            client,
            listener,
            write_with_response=self.write_with_response,
        )
        connection.open()
        return connection

    def shutdown(self) -> None:
        self.stop_scan()
        self._loop.stop()
