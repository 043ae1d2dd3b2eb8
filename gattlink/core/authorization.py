"""Runtime authorization checks consulted before radio operations."""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum
from typing import Protocol

from gattlink.core.errors import PermissionDeniedError


class Capability(Enum):
    SCAN = "scan"
    CONNECT = "connect"
    WRITE = "write"


class Authorizer(Protocol):
    def has_permission(self, capability: Capability) -> bool:
        """Return whether the runtime authorization for `capability` is granted."""


class StaticAuthorizer:
    """Authorizer backed by a fixed set of granted capabilities."""

    def __init__(self, granted: Iterable[Capability] | None = None) -> None:
        self.granted = frozenset(Capability if granted is None else granted)

    def has_permission(self, capability: Capability) -> bool:
        return capability in self.granted


def require(authorizer: Authorizer, capability: Capability) -> None:
    if not authorizer.has_permission(capability):
        raise PermissionDeniedError(capability)
