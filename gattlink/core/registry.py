"""Deduplicated collection of peripherals found during a scan pass."""

from __future__ import annotations

from collections.abc import ValuesView

from gattlink.core.model import PeripheralHandle


class DeviceRegistry:
    """Peripherals keyed by address, in first-insertion order.

    Not thread-safe; callers serialize access.
    """

    def __init__(self) -> None:
        self._entries: dict[str, PeripheralHandle] = {}

    def reset(self) -> None:
        self._entries.clear()

    def add(self, handle: PeripheralHandle) -> bool:
        if handle.address in self._entries:
            return False
        self._entries[handle.address] = handle
        return True

    def all(self) -> ValuesView[PeripheralHandle]:
        return self._entries.values()

    def get(self, address: str) -> PeripheralHandle | None:
        return self._entries.get(address)

    def __contains__(self, address: object) -> bool:
        return address in self._entries

    def __len__(self) -> int:
        return len(self._entries)
