"""Peripheral profiles: packaged YAML documents plus user overrides.

A profile names the GATT service a peripheral exposes, how to recognise it
in a scan, and the control messages the CLI can send to it. Documents are
validated against ``gattlink/schemas/profile.schema.json`` before they are
turned into `Profile` records.
"""

from __future__ import annotations

import json
import logging
import os
import re
import string
from collections.abc import Iterator
from dataclasses import dataclass
from functools import lru_cache
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from gattlink.core.errors import ProfileLoadError, ProfileValidationError
from gattlink.core.model import (
    DEFAULT_SCAN_TIMEOUT_S,
    ControlSpec,
    MatchRules,
    Profile,
    ScanSettings,
    ServiceDescriptor,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_PROFILE_ID = "demo"
MAX_SCAN_TIMEOUT_S = 60.0

_PROFILE_SUFFIXES = (".yaml", ".yml")
_SHORT_UUID = re.compile(r"[0-9a-f]{4}(?:[0-9a-f]{4})?")
_FULL_UUID = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}")
_BLUETOOTH_BASE_SUFFIX = "-0000-1000-8000-00805f9b34fb"
_YAML_BOOL_TAG = "tag:yaml.org,2002:bool"


class ProfileYamlLoader(yaml.SafeLoader):
    """Safe loader that keeps yes/no/on/off as strings and refuses repeated keys."""


ProfileYamlLoader.yaml_implicit_resolvers = {
    first_char: [entry for entry in resolvers if entry[0] != _YAML_BOOL_TAG]
    for first_char, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def _construct_unique_mapping(loader: ProfileYamlLoader, node: yaml.MappingNode, deep: bool = False) -> dict:
    loader.flatten_mapping(node)
    pairs = loader.construct_pairs(node, deep=deep)
    seen: set[Any] = set()
    for key, _ in pairs:
        if key in seen:
            mark = node.start_mark
            raise ProfileValidationError(
                f"Duplicate key '{key}' in mapping at line {mark.line + 1}, column {mark.column + 1}"
            )
        seen.add(key)
    return dict(pairs)


ProfileYamlLoader.add_constructor(yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG, _construct_unique_mapping)


@dataclass(frozen=True)
class LoadedProfiles:
    profiles: dict[str, Profile]
    warnings: tuple[str, ...]


@lru_cache(maxsize=1)
def _schema_validator() -> Any:
    schema_file = resources.files("gattlink.schemas") / "profile.schema.json"
    schema = json.loads(schema_file.read_text(encoding="utf-8"))
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def user_profile_dirs() -> list[Path]:
    """Directories searched for user profiles, in override order."""
    home = Path.home()
    roots = (
        ("XDG_CONFIG_HOME", home / ".config"),
        ("XDG_DATA_HOME", home / ".local" / "share"),
    )
    return [Path(os.environ.get(variable) or fallback) / "gattlink" / "profiles" for variable, fallback in roots]


def _parse_document(source: Path | Traversable) -> dict[str, Any]:
    try:
        text = source.read_text(encoding="utf-8")
    except OSError as exc:
        raise ProfileLoadError(f"Could not read profile file {source}: {exc}") from exc

    try:
        document = yaml.load(text, Loader=ProfileYamlLoader)
    except yaml.YAMLError as exc:
        raise ProfileValidationError(f"Invalid YAML in {source}: {exc}") from exc

    if not isinstance(document, dict):
        raise ProfileValidationError(f"Profile file {source} must contain a mapping at root")
    return document


def _canonical_uuid(raw: str, where: str) -> str:
    text = raw.strip().lower()
    if _FULL_UUID.fullmatch(text):
        return text
    if _SHORT_UUID.fullmatch(text):
        # 16- and 32-bit forms sit inside the Bluetooth base UUID.
        return text.rjust(8, "0") + _BLUETOOTH_BASE_SUFFIX
    raise ProfileValidationError(f"{where} is not a 16-bit, 32-bit or 128-bit UUID: '{raw}'")


def _coerce_flag(raw: Any, where: str) -> bool:
    if isinstance(raw, bool):
        return raw
    flags = {"true": True, "false": False}
    if isinstance(raw, str) and raw.strip().lower() in flags:
        return flags[raw.strip().lower()]
    raise ProfileValidationError(f"{where} must be true or false")


def _service_from(profile_id: str, section: dict[str, Any]) -> ServiceDescriptor:
    descriptor = ServiceDescriptor(
        service_uuid=_canonical_uuid(section["uuid"], f"{profile_id}.service.uuid"),
        write_char_uuid=_canonical_uuid(section["write_char_uuid"], f"{profile_id}.service.write_char_uuid"),
        notify_char_uuid=_canonical_uuid(section["notify_char_uuid"], f"{profile_id}.service.notify_char_uuid"),
    )
    if descriptor.write_char_uuid == descriptor.notify_char_uuid:
        raise ProfileValidationError(f"{profile_id}.service write and notify characteristics must differ")
    return descriptor


def _scan_from(profile_id: str, section: dict[str, Any]) -> ScanSettings:
    timeout_s = float(section.get("timeout_s", DEFAULT_SCAN_TIMEOUT_S))
    if not 0 < timeout_s <= MAX_SCAN_TIMEOUT_S:
        raise ProfileValidationError(f"{profile_id}.scan.timeout_s must be in (0, {MAX_SCAN_TIMEOUT_S:g}]")
    return ScanSettings(
        timeout_s=timeout_s,
        include_unnamed=_coerce_flag(section.get("include_unnamed", False), f"{profile_id}.scan.include_unnamed"),
    )


def _offset_template(profile_id: str, template: str) -> str:
    where = f"{profile_id}.controls.offset.template"
    try:
        fields = [(name, spec) for _, name, spec, _ in string.Formatter().parse(template) if name is not None]
    except ValueError as exc:
        raise ProfileValidationError(f"{where} is malformed: {exc}") from exc
    if not fields:
        raise ProfileValidationError(f"{where} must contain '{{value}}'")
    for name, spec in fields:
        if name != "value" or "{" in (spec or ""):
            raise ProfileValidationError(f"{where} may only reference '{{value}}', found '{{{name}}}'")
    try:
        template.format(value=0)
    except ValueError as exc:
        raise ProfileValidationError(f"{where} cannot render an integer offset: {exc}") from exc
    return template


def _controls_from(profile_id: str, section: dict[str, Any] | None) -> ControlSpec | None:
    if section is None:
        return None
    template = _offset_template(profile_id, section["offset"]["template"])
    values = tuple(section["offset"]["values"])
    if len(set(values)) != len(values):
        raise ProfileValidationError(f"{profile_id}.controls.offset.values must not repeat")
    return ControlSpec(
        toggle_on=section["toggle"]["on"],
        toggle_off=section["toggle"]["off"],
        offset_template=template,
        offset_values=values,
    )


def parse_profile(document: dict[str, Any], source: Path | Traversable | str = "<memory>") -> Profile:
    """Validate one profile document and build the `Profile` it describes."""
    try:
        _schema_validator().validate(document)
    except ValidationError as exc:
        location = "/".join(str(part) for part in exc.absolute_path)
        suffix = f" at '{location}'" if location else ""
        raise ProfileValidationError(f"{source} is not a valid profile{suffix}: {exc.message}") from exc

    profile_id = document["id"]
    return Profile(
        id=profile_id,
        name=document["name"],
        match=MatchRules(name_contains=tuple(document.get("match", {}).get("name_contains", ()))),
        service=_service_from(profile_id, document["service"]),
        scan=_scan_from(profile_id, document.get("scan", {})),
        controls=_controls_from(profile_id, document.get("controls")),
    )


def _packaged_sources() -> list[Traversable]:
    package = resources.files("gattlink.profiles")
    return sorted((entry for entry in package.iterdir() if entry.name.endswith(_PROFILE_SUFFIXES)), key=lambda e: e.name)


def _user_sources() -> Iterator[Path]:
    for directory in user_profile_dirs():
        if directory.is_dir():
            yield from sorted(p for p in directory.iterdir() if p.suffix in _PROFILE_SUFFIXES)


def load_profiles() -> LoadedProfiles:
    """Load packaged profiles, then let user profiles replace them by id."""
    profiles = {}
    for source in _packaged_sources():
        profile = parse_profile(_parse_document(source), source)
        profiles[profile.id] = profile

    warnings = []
    for source in _user_sources():
        profile = parse_profile(_parse_document(source), source)
        if profile.id in profiles:
            message = f"User profile '{profile.id}' from {source} overrides packaged profile"
            LOGGER.warning(message)
            warnings.append(message)
        else:
            LOGGER.debug("Loaded user profile '%s' from %s", profile.id, source)
        profiles[profile.id] = profile

    return LoadedProfiles(profiles=profiles, warnings=tuple(warnings))
