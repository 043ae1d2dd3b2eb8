"""Core data models shared by the scanner, session, and CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

GATT_SUCCESS = 0
GATT_ERROR = 133
GATT_FAILURE = 0x101

SCAN_FAILED_ALREADY_STARTED = 1
SCAN_FAILED_APPLICATION_REGISTRATION_FAILED = 2
SCAN_FAILED_INTERNAL_ERROR = 3
SCAN_FAILED_FEATURE_UNSUPPORTED = 4

DEFAULT_SCAN_TIMEOUT_S = 2.0

CLIENT_CHARACTERISTIC_CONFIG_UUID = "00002902-0000-1000-8000-00805f9b34fb"
ENABLE_NOTIFICATION_VALUE = b"\x01\x00"
DISABLE_NOTIFICATION_VALUE = b"\x00\x00"


class ScanState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SERVICE_DISCOVERY = "service_discovery"
    SUBSCRIBING = "subscribing"
    READY = "ready"


@dataclass(frozen=True)
class PeripheralHandle:
    address: str
    name: str | None = None
    raw: Any = field(default=None, compare=False, repr=False)

    @property
    def label(self) -> str:
        return self.name or "<unnamed>"


@dataclass(frozen=True)
class ServiceDescriptor:
    service_uuid: str
    write_char_uuid: str
    notify_char_uuid: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "service_uuid", self.service_uuid.lower())
        object.__setattr__(self, "write_char_uuid", self.write_char_uuid.lower())
        object.__setattr__(self, "notify_char_uuid", self.notify_char_uuid.lower())


DEMO_SERVICE = ServiceDescriptor(
    service_uuid="ab0828b1-198e-4351-b779-901fa0e0371e",
    write_char_uuid="4ac8a682-9736-4e5d-932b-e9b31405049c",
    notify_char_uuid="84d4f420-e7f0-4b0c-b16a-a125b0521aed",
)


@dataclass(frozen=True)
class InboundMessage:
    characteristic_uuid: str
    payload: bytes

    @property
    def text(self) -> str:
        return self.payload.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class ScanStateChange:
    state: ScanState
    error: Exception | None = None


@dataclass(frozen=True)
class SessionStateChange:
    state: SessionState
    peripheral: PeripheralHandle | None = None
    error: Exception | None = None


@dataclass(frozen=True)
class MatchRules:
    name_contains: tuple[str, ...]


@dataclass(frozen=True)
class ScanSettings:
    timeout_s: float = DEFAULT_SCAN_TIMEOUT_S
    include_unnamed: bool = False


@dataclass(frozen=True)
class ControlSpec:
    toggle_on: str
    toggle_off: str
    offset_template: str
    offset_values: tuple[int, ...]


@dataclass(frozen=True)
class Profile:
    id: str
    name: str
    match: MatchRules
    service: ServiceDescriptor
    scan: ScanSettings
    controls: ControlSpec | None = None
