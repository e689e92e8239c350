"""Registry configuration: named destinations a bundle is applied to."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Sequence

from jsonschema import Draft202012Validator

from paircli.domain.errors import ConfigError
from paircli.resources import default_registry_payload, load_json_resource

REGISTRIES_KEY = "asset_registries"
LEGACY_REGISTRIES_KEY = "dataset_registries"
PROJECT_CONFIG_FILES = ("pair.config.json", "config.json")


class CopyBehavior(str, Enum):
    OVERWRITE = "overwrite"
    ADD = "add"
    MIRROR = "mirror"
    SKIP = "skip"


@dataclass(frozen=True)
class RegistryEntry:
    name: str
    source: str
    target_path: str
    behavior: CopyBehavior
    description: str = ""
    include: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, name: str, payload: Mapping[str, Any]) -> "RegistryEntry":
        return cls(
            name=name,
            source=_normalize(str(payload["source"])),
            target_path=_normalize(str(payload["target_path"])),
            behavior=CopyBehavior(payload["behavior"]),
            description=str(payload.get("description", "")),
            include=tuple(_normalize(item) for item in payload.get("include", [])),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "source": self.source,
            "target_path": self.target_path,
            "behavior": self.behavior.value,
            "description": self.description,
        }
        if self.include:
            payload["include"] = list(self.include)
        return payload

    def destination(self, project_root: Path) -> Path:
        return project_root / self.target_path

    def origin(self, bundle_root: Path) -> Path:
        return bundle_root / self.source


@dataclass(frozen=True)
class RegistryConfig:
    entries: Dict[str, RegistryEntry] = field(default_factory=dict)
    sources: tuple[str, ...] = ()

    def __iter__(self) -> Iterator[RegistryEntry]:
        return iter(self.entries.values())

    def __len__(self) -> int:
        return len(self.entries)

    def names(self) -> List[str]:
        return list(self.entries)

    def destinations(self, project_root: Path) -> Dict[str, Path]:
        return {entry.name: entry.destination(project_root) for entry in self}

    def without(self, names: Iterable[str]) -> "RegistryConfig":
        skipped = {name.strip() for name in names if name and name.strip()}
        unknown = sorted(skipped - set(self.entries))
        if unknown:
            raise ConfigError(f"Unknown registries: {', '.join(unknown)}")
        kept = {name: entry for name, entry in self.entries.items() if name not in skipped}
        return RegistryConfig(entries=kept, sources=self.sources)

    def to_dict(self) -> Dict[str, Any]:
        return {REGISTRIES_KEY: {name: entry.to_dict() for name, entry in self.entries.items()}}


def _normalize(raw: str) -> str:
    value = raw.replace("\\", "/").strip()
    while value.startswith("./"):
        value = value[2:]
    return value.rstrip("/") or "."


@lru_cache(maxsize=1)
def _validator() -> Draft202012Validator:
    return Draft202012Validator(load_json_resource("config.schema.json"))


def _registries_of(payload: Mapping[str, Any]) -> Any:
    if REGISTRIES_KEY in payload:
        return payload[REGISTRIES_KEY]
    return payload.get(LEGACY_REGISTRIES_KEY)


def _path_errors(name: str, field_name: str, raw: str) -> list[str]:
    value = _normalize(raw)
    pure = PurePosixPath(value)
    if pure.is_absolute() or (len(value) > 1 and value[1] == ":"):
        return [f"Registry '{name}' {field_name} must be relative: {raw}"]
    if ".." in pure.parts:
        return [f"Registry '{name}' {field_name} must stay inside the project: {raw}"]
    return []


def overlap_errors(targets: Mapping[str, str]) -> list[str]:
    """Report registries whose targets are equal or nested inside one another."""

    errors: list[str] = []
    items = [(name, _normalize(target)) for name, target in targets.items()]
    for index, (name, target) in enumerate(items):
        for other_name, other_target in items[index + 1:]:
            if target == other_target:
                errors.append(f"Registries '{name}' and '{other_name}' have the same target: {target}")
            elif other_target.startswith(target + "/") or target == ".":
                errors.append(
                    f"Registry '{name}' target {target} contains registry '{other_name}' target {other_target}"
                )
            elif target.startswith(other_target + "/") or other_target == ".":
                errors.append(
                    f"Registry '{other_name}' target {other_target} contains registry '{name}' target {target}"
                )
    return errors


def validate_payload(payload: Any) -> list[str]:
    if not isinstance(payload, dict):
        return ["Configuration must be a JSON object"]
    candidate = dict(payload)
    if REGISTRIES_KEY not in candidate and LEGACY_REGISTRIES_KEY in candidate:
        candidate[REGISTRIES_KEY] = candidate.pop(LEGACY_REGISTRIES_KEY)
    errors: list[str] = []
    for error in _validator().iter_errors(candidate):
        location = ".".join(str(item) for item in error.absolute_path) or "<root>"
        errors.append(f"{location}: {error.message}")
    if errors:
        return errors
    registries = candidate[REGISTRIES_KEY]
    for name, entry in registries.items():
        errors.extend(_path_errors(name, "source", entry["source"]))
        errors.extend(_path_errors(name, "target_path", entry["target_path"]))
    errors.extend(overlap_errors({name: entry["target_path"] for name, entry in registries.items()}))
    return errors


def read_config_file(path: Path) -> Dict[str, Any]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {path}") from exc
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Config file is not valid JSON: {path} ({exc})") from exc
    if not isinstance(payload, dict):
        raise ConfigError(f"Config file must contain a JSON object: {path}")
    return payload


def merge_registries(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge two registry maps; fields of a same-named registry are overridden individually."""

    merged: Dict[str, Any] = {name: dict(entry) for name, entry in base.items()}
    for name, entry in override.items():
        if isinstance(entry, dict) and isinstance(merged.get(name), dict):
            merged[name] = {**merged[name], **entry}
        else:
            merged[name] = entry
    return merged


def find_project_config(project_root: Path) -> Path | None:
    for filename in PROJECT_CONFIG_FILES:
        candidate = project_root / filename
        if not candidate.is_file():
            continue
        try:
            payload = json.loads(candidate.read_text(encoding="utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            if filename == PROJECT_CONFIG_FILES[0]:
                raise ConfigError(f"Config file is not valid JSON: {candidate}")
            continue
        if isinstance(payload, dict) and _registries_of(payload) is not None:
            return candidate
    return None


def build_config(payload: Mapping[str, Any], sources: Sequence[str] = ()) -> RegistryConfig:
    errors = validate_payload(dict(payload))
    if errors:
        raise ConfigError("Invalid registry configuration", errors)
    registries = _registries_of(payload) or {}
    entries = {name: RegistryEntry.from_dict(name, entry) for name, entry in registries.items()}
    return RegistryConfig(entries=entries, sources=tuple(sources))


def load_registry_config(
    project_root: Path,
    custom_config: Path | None = None,
    *,
    ignore_project: bool = False,
) -> RegistryConfig:
    """Resolve the bundled defaults, the project's config file and an explicit ``--config`` file."""

    registries: Dict[str, Any] = dict(_registries_of(default_registry_payload()) or {})
    sources = ["<bundled>"]
    layers: list[Path] = []
    if not ignore_project:
        project_file = find_project_config(project_root)
        if project_file is not None:
            layers.append(project_file)
    if custom_config is not None:
        layers.append(custom_config)
    for layer in layers:
        payload = read_config_file(layer)
        override = _registries_of(payload)
        if override is None:
            raise ConfigError(f"Config file has no '{REGISTRIES_KEY}' section: {layer}")
        if not isinstance(override, dict):
            raise ConfigError(f"'{REGISTRIES_KEY}' must be an object: {layer}")
        registries = merge_registries(registries, override)
        sources.append(str(layer))
    return build_config({REGISTRIES_KEY: registries}, sources)


__all__ = [
    "CopyBehavior",
    "RegistryEntry",
    "RegistryConfig",
    "REGISTRIES_KEY",
    "build_config",
    "find_project_config",
    "load_registry_config",
    "merge_registries",
    "overlap_errors",
    "read_config_file",
    "validate_payload",
]
