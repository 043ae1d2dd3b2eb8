"""Device-to-profile matching and hint-based device selection."""

from __future__ import annotations

from collections.abc import Iterable

from gattlink.core.errors import DeviceSelectionError
from gattlink.core.model import PeripheralHandle, Profile


def matches_profile(device: PeripheralHandle, profile: Profile) -> bool:
    tokens = profile.match.name_contains
    if not tokens:
        return True
    lower_name = (device.name or "").lower()
    return any(token.lower() in lower_name for token in tokens)


def _matches_hint(device: PeripheralHandle, hint: str) -> bool:
    return hint in device.address.lower() or hint in (device.name or "").lower()


def select_device(
    devices: Iterable[PeripheralHandle],
    profile: Profile,
    hint: str | None = None,
) -> PeripheralHandle:
    found = list(devices)
    if not found:
        raise DeviceSelectionError("No BLE devices found. Ensure the peripheral is advertising.")

    candidates = [d for d in found if matches_profile(d, profile)]

    if hint:
        lowered = hint.lower()
        exact = [d for d in found if d.address.lower() == lowered]
        if exact:
            return exact[0]
        candidates = [d for d in candidates if _matches_hint(d, lowered)]
        if not candidates:
            raise DeviceSelectionError(f"No device found matching '{hint}'")

    if not candidates:
        raise DeviceSelectionError(f"No discovered device matched profile '{profile.id}'.")

    if len(candidates) > 1:
        candidate_desc = ", ".join(f"{d.address} ({d.label})" for d in candidates)
        raise DeviceSelectionError(
            f"Multiple candidate devices found: {candidate_desc}. Pass an address or name to choose one."
        )

    return candidates[0]
