"""Radio stack interfaces consumed by the scanner and session.

Every request is fire-and-forget: completion is reported later by posting
one of the records from `gattlink.core.events` to the listener handed over
when the scan or connection was started.
"""

from __future__ import annotations

from typing import Protocol

from gattlink.core.events import EventListener
from gattlink.core.model import PeripheralHandle


class RadioConnection(Protocol):
    def discover_services(self) -> None:
        """Request enumeration of services; reports `ServicesDiscovered`."""

    def set_notify(self, characteristic_uuid: str, enabled: bool) -> bool:
        """Enable local delivery of notifications. Returns whether the request was accepted."""

    def write_descriptor(self, characteristic_uuid: str, descriptor_uuid: str, value: bytes) -> bool:
        """Write a descriptor; reports `DescriptorWriteComplete`. Returns whether it was accepted."""

    def write_characteristic(self, characteristic_uuid: str, payload: bytes) -> bool:
        """Queue a characteristic write. Returns the radio's accept/reject signal."""

    def close(self) -> None:
        """Disconnect and release the platform connection."""


class RadioStack(Protocol):
    def start_scan(self, listener: EventListener) -> None:
        """Start scanning; reports `DeviceFound` and `ScanFailed`."""

    def stop_scan(self) -> None:
        """Stop an active scan."""

    def connect(self, peripheral: PeripheralHandle, listener: EventListener) -> RadioConnection:
        """Request a connection; reports `ConnectionStateChanged` and the GATT events."""
