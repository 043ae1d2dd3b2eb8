"""Domain-specific errors for gattlink."""


class GattlinkError(Exception):
    """Base error for gattlink."""


class PermissionDeniedError(GattlinkError):
    """Raised when the authorizer does not grant a required capability."""

    def __init__(self, capability) -> None:
        self.capability = capability
        super().__init__(f"Permission for '{capability.value}' has not been granted")


class AlreadyScanningError(GattlinkError):
    """Raised when a scan is started while another one is active."""


class ScanFailedError(GattlinkError):
    """Raised or reported when the radio fails a scan."""

    def __init__(self, code: int) -> None:
        self.code = code
        super().__init__(f"BLE scan failed with error code {code}")


class SessionAlreadyActiveError(GattlinkError):
    """Raised when connecting while a session is not disconnected."""


class ServiceNotFoundError(GattlinkError):
    """Reported when the peripheral lacks the configured service or notify characteristic."""

    def __init__(self, service_uuid: str, characteristic_uuid: str | None = None) -> None:
        self.service_uuid = service_uuid
        self.characteristic_uuid = characteristic_uuid
        if characteristic_uuid:
            message = f"Characteristic {characteristic_uuid} not found in service {service_uuid}"
        else:
            message = f"Service {service_uuid} not found on peripheral"
        super().__init__(message)


class ServiceDiscoveryFailedError(GattlinkError):
    """Reported when service discovery completes with a non-success status."""

    def __init__(self, status: int) -> None:
        self.status = status
        super().__init__(f"Service discovery failed with status {status}")


class SubscriptionFailedError(GattlinkError):
    """Reported when notifications could not be enabled on the notify characteristic."""

    def __init__(self, status: int | None = None) -> None:
        self.status = status
        detail = f" (status {status})" if status is not None else ""
        super().__init__(f"Enabling notifications failed{detail}")


class ConnectionLostError(GattlinkError):
    """Reported when the radio drops the connection without a local request."""

    def __init__(self, status: int) -> None:
        self.status = status
        super().__init__(f"Connection lost with status {status}")


class NotReadyError(GattlinkError):
    """Raised when sending while the session is not ready."""


class WriteRejectedError(GattlinkError):
    """Raised when the local radio stack refuses a characteristic write."""


class TransportError(GattlinkError):
    """Raised when a platform radio request cannot be issued."""


class ResponseTimeoutError(GattlinkError):
    """Raised when a waited-for state or message does not arrive in time."""


class ProfileValidationError(GattlinkError):
    """Raised when a profile file does not conform to schema or semantics."""


class ProfileLoadError(GattlinkError):
    """Raised when loading profile sources fails."""


class DeviceSelectionError(GattlinkError):
    """Raised when a device hint cannot be resolved to a single peripheral."""


class ControlValueError(GattlinkError):
    """Raised when a control value is not allowed by the profile."""
