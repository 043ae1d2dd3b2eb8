from __future__ import annotations

import pytest

from gattlink.core.device_match import matches_profile, select_device
from gattlink.core.errors import DeviceSelectionError
from gattlink.core.model import DEMO_SERVICE, MatchRules, PeripheralHandle, Profile, ScanSettings


def _profile(name_tokens: tuple[str, ...] = ()) -> Profile:
    return Profile(
        id="p1",
        name="p1",
        match=MatchRules(name_contains=name_tokens),
        service=DEMO_SERVICE,
        scan=ScanSettings(),
    )


def test_profile_without_tokens_matches_everything() -> None:
    assert matches_profile(PeripheralHandle(address="00:00:00:00:00:01"), _profile())


def test_name_tokens_match_case_insensitively() -> None:
    profile = _profile(("nano",))
    assert matches_profile(PeripheralHandle(address="00:00:00:00:00:01", name="Arduino NANO 33"), profile)
    assert not matches_profile(PeripheralHandle(address="00:00:00:00:00:02", name="Heart Rate"), profile)
    assert not matches_profile(PeripheralHandle(address="00:00:00:00:00:03"), profile)


def test_single_candidate_is_selected_without_hint() -> None:
    device = PeripheralHandle(address="00:00:00:00:00:01", name="Demo")
    assert select_device([device], _profile()) is device


def test_multiple_candidates_require_hint() -> None:
    devices = [
        PeripheralHandle(address="00:00:00:00:00:01", name="Demo A"),
        PeripheralHandle(address="00:00:00:00:00:02", name="Demo B"),
    ]
    with pytest.raises(DeviceSelectionError) as exc:
        select_device(devices, _profile())
    assert "Multiple candidate devices" in str(exc.value)

    assert select_device(devices, _profile(), "demo b").address == "00:00:00:00:00:02"


def test_exact_address_wins_even_outside_profile_match() -> None:
    devices = [
        PeripheralHandle(address="00:00:00:00:00:01", name="Demo A"),
        PeripheralHandle(address="00:00:00:00:00:02", name="Other"),
    ]
    picked = select_device(devices, _profile(("demo",)), "00:00:00:00:00:02")
    assert picked.name == "Other"


def test_no_devices_found() -> None:
    with pytest.raises(DeviceSelectionError) as exc:
        select_device([], _profile())
    assert "advertising" in str(exc.value)


def test_hint_without_match() -> None:
    devices = [PeripheralHandle(address="00:00:00:00:00:01", name="Demo A")]
    with pytest.raises(DeviceSelectionError) as exc:
        select_device(devices, _profile(), "sensor")
    assert "No device found matching 'sensor'" in str(exc.value)


def test_profile_filter_without_hint() -> None:
    devices = [PeripheralHandle(address="00:00:00:00:00:01", name="Heart Rate")]
    with pytest.raises(DeviceSelectionError):
        select_device(devices, _profile(("nano",)))
