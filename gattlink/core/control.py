"""Render the toggle and offset control messages defined by a profile."""

from __future__ import annotations

from gattlink.core.errors import ControlValueError
from gattlink.core.model import ControlSpec, Profile

_TOGGLE_WORDS = {"on": True, "true": True, "1": True, "off": False, "false": False, "0": False}


def _controls(profile: Profile) -> ControlSpec:
    if profile.controls is None:
        raise ControlValueError(f"Profile '{profile.id}' does not define control messages")
    return profile.controls


def parse_toggle(value: str) -> bool:
    try:
        return _TOGGLE_WORDS[value.strip().lower()]
    except KeyError:
        raise ControlValueError(f"Toggle value '{value}' is not one of: on, off") from None


def render_toggle(profile: Profile, on: bool) -> str:
    controls = _controls(profile)
    return controls.toggle_on if on else controls.toggle_off


def render_offset(profile: Profile, value: int) -> str:
    controls = _controls(profile)
    if value not in controls.offset_values:
        allowed = ", ".join(str(v) for v in controls.offset_values)
        raise ControlValueError(f"Offset {value} is not allowed. Allowed: {allowed}")
    return controls.offset_template.format(value=value)
