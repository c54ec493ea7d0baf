"""Profile loading and validation for YAML-based peripheral profiles."""

from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from hidbridge.core.errors import ProfileLoadError, ProfileSelectionError, ProfileValidationError
from hidbridge.core.model import DispatchSpec, MatchRules, MousePolicy, Profile, TransportSpec

_UUID_RE = re.compile(r"^[0-9a-f]{4}$|^[0-9a-f]{8}$|^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:bool"
    ]


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ProfileValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class LoadedProfiles:
    profiles: dict[str, Profile]
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("hidbridge.schemas").joinpath("profile.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _profile_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "hidbridge/profiles", xdg_data / "hidbridge/profiles"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ProfileLoadError(f"Could not read profile file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ProfileValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ProfileValidationError(f"Profile file {path} must contain a mapping at root")
    return loaded


def _normalize_uuid(value: str, *, context: str) -> str:
    normalized = value.strip().lower()
    if not _UUID_RE.match(normalized):
        raise ProfileValidationError(
            f"{context} must be a 16-bit, 32-bit, or 128-bit UUID string"
        )
    return normalized


def _normalize_bool(value: Any, *, context: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    raise ProfileValidationError(f"{context} must be boolean true/false")


def _build_transport(doc: Mapping[str, Any], profile_id: str) -> TransportSpec:
    uuids = {
        key: _normalize_uuid(doc[key], context=f"{profile_id}.transport.{key}")
        for key in ("service_uuid", "keyboard_char_uuid", "mouse_char_uuid")
    }
    if uuids["keyboard_char_uuid"] == uuids["mouse_char_uuid"]:
        raise ProfileValidationError(
            f"{profile_id}.transport keyboard and mouse characteristics must differ"
        )
    return TransportSpec(
        type=doc["type"],
        write_with_response=_normalize_bool(
            doc.get("write_with_response", True),
            context=f"{profile_id}.transport.write_with_response",
        ),
        connect_timeout_s=float(doc.get("connect_timeout_s", 10.0)),
        write_timeout_s=float(doc.get("write_timeout_s", 2.0)),
        **uuids,
    )


def _build_dispatch(doc: Mapping[str, Any]) -> DispatchSpec:
    defaults = DispatchSpec()
    return DispatchSpec(
        mouse_policy=MousePolicy(doc.get("mouse_policy", defaults.mouse_policy.value)),
        max_move_step=doc.get("max_move_step", defaults.max_move_step),
        restart_delay_s=float(doc.get("restart_delay_s", defaults.restart_delay_s)),
    )


def _build_profile(doc: dict[str, Any], source: Path | Traversable) -> Profile:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ProfileValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    return Profile(
        id=doc["id"],
        name=doc["name"],
        match=MatchRules(name=doc["match"]["name"]),
        transport=_build_transport(doc["transport"], doc["id"]),
        dispatch=_build_dispatch(doc.get("dispatch", {})),
    )


def _iter_packaged_profile_paths() -> list[Traversable]:
    profile_root = resources.files("hidbridge.profiles")
    return [item for item in profile_root.iterdir() if item.name.endswith((".yml", ".yaml"))]


def _iter_user_profile_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _profile_dirs():
        if not directory.exists() or not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"}))
    return paths


def load_profiles() -> LoadedProfiles:
    profiles: dict[str, Profile] = {}
    warnings: list[str] = []

    for path in sorted(_iter_packaged_profile_paths(), key=lambda p: p.name):
        doc = _read_yaml(path)
        profile = _build_profile(doc, path)
        profiles[profile.id] = profile

    for path in _iter_user_profile_paths():
        doc = _read_yaml(path)
        profile = _build_profile(doc, path)
        if profile.id in profiles:
            warning = f"User profile '{profile.id}' overrides packaged profile"
            LOGGER.warning(warning)
            warnings.append(warning)
        profiles[profile.id] = profile

    return LoadedProfiles(profiles=profiles, warnings=tuple(warnings))


def select_profile(profiles: Mapping[str, Profile], profile_id: str | None) -> Profile:
    if profile_id:
        profile = profiles.get(profile_id)
        if profile is None:
            raise ProfileSelectionError(
                f"Unknown profile '{profile_id}'. Use 'hidbridge profiles' to inspect available profiles."
            )
        return profile

    if not profiles:
        raise ProfileSelectionError("No peripheral profiles loaded")
    if len(profiles) > 1:
        available = ", ".join(sorted(profiles))
        raise ProfileSelectionError(
            f"Multiple profiles available: {available}. Use --profile to choose one."
        )
    return next(iter(profiles.values()))
