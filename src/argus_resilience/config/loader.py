"""
argus-resilience — resilience config loader.

File: src/argus_resilience/config/loader.py

Purpose
- Load the effective resilience config from defaults, a project file,
  environment variables, and explicit overrides.

Precedence
- overrides > env (``ARGUS_RESILIENCE_``) > file > defaults.

Files
- YAML (``.yaml``/``.yml``, read with ``yaml.safe_load``) or TOML (``tomllib``).
  Only the top-level ``resilience`` section is read; camelCase keys are accepted.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, Literal

import yaml

from argus_resilience.config.schema import (
    ResilienceConfig,
    assert_valid_config,
    default_config,
    merge_config,
    normalize_keys,
    snake_case,
)

ENV_PREFIX: Final[str] = "ARGUS_RESILIENCE_"
RESILIENCE_SECTION: Final[str] = "resilience"

_YAML_SUFFIXES: Final[frozenset[str]] = frozenset({".yaml", ".yml"})
_BOOLEAN_TRUE: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_BOOLEAN_FALSE: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})


@dataclass(frozen=True, slots=True)
class _Binding:
    path: tuple[str, ...]
    value_type: Literal["str", "int", "bool"]


class ConfigLoadError(ValueError):
    """Raised when config cannot be read or an override cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> ResilienceConfig:
    """Load effective config with precedence: overrides > env > file > defaults."""

    env_map = dict(os.environ if environ is None else environ)
    file_payload = load_section(config_path) if config_path is not None else {}

    merged = merge_config(default_config(), file_payload)
    merged = merge_config(merged, _collect_env_overrides(env_map))
    merged = merge_config(merged, _materialize_overrides(overrides or {}))
    return assert_valid_config(merged)


def load_section(path: str | Path) -> dict[str, Any]:
    """Read the normalized ``resilience`` section of a YAML or TOML project file."""

    resolved = Path(path).expanduser().resolve()
    if not resolved.exists():
        raise ConfigLoadError(f"config file not found: {resolved}")

    if resolved.suffix.lower() in _YAML_SUFFIXES:
        parsed = _load_yaml(resolved)
    else:
        parsed = _load_toml(resolved)

    if parsed is None:
        return {}
    if not isinstance(parsed, Mapping):
        raise ConfigLoadError(f"config root must be an object: {resolved}")

    section = parsed.get(RESILIENCE_SECTION)
    if section is None:
        return {}
    if not isinstance(section, Mapping):
        raise ConfigLoadError(f"{RESILIENCE_SECTION} must be an object: {resolved}")
    return normalize_keys(section)


def _load_yaml(path: Path) -> object:
    try:
        with path.open("r", encoding="utf-8") as handle:
            return yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ConfigLoadError(f"invalid YAML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _load_toml(path: Path) -> object:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _collect_env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    bindings = _build_bindings(default_config())
    overrides: dict[str, Any] = {}
    for env_name in sorted(bindings):
        raw = environ.get(env_name)
        if raw is None:
            continue
        binding = bindings[env_name]
        _set_nested(overrides, binding.path, _coerce_env(raw, binding, env_name))
    return overrides


def _build_bindings(config: Mapping[str, object]) -> dict[str, _Binding]:
    bindings: dict[str, _Binding] = {}
    for section, values in config.items():
        if not isinstance(values, Mapping):
            continue
        for key, value in values.items():
            kind: Literal["str", "int", "bool"]
            if isinstance(value, bool):
                kind = "bool"
            elif isinstance(value, int):
                kind = "int"
            else:
                kind = "str"
            path = (section, key)
            bindings[_env_name_for_path(path)] = _Binding(path=path, value_type=kind)
    return bindings


def _coerce_env(raw: str, binding: _Binding, env_name: str) -> object:
    value = raw.strip()
    dotted = ".".join(binding.path)
    if binding.value_type == "str":
        return value
    if binding.value_type == "int":
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} -> {dotted} must be an integer") from exc

    lowered = value.lower()
    if lowered in _BOOLEAN_TRUE:
        return True
    if lowered in _BOOLEAN_FALSE:
        return False
    raise ConfigLoadError(
        f"{env_name} -> {dotted} must be a boolean (true/false/1/0/yes/no/on/off)"
    )


def _materialize_overrides(overrides: Mapping[str, object]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for key in sorted(overrides):
        value = overrides[key]
        if "." in key:
            path = tuple(part for part in key.split(".") if part)
            if not path:
                raise ConfigLoadError(f"invalid override key {key!r}")
            _set_nested(payload, tuple(snake_case(part) for part in path), value)
            continue
        if isinstance(value, Mapping):
            payload = merge_config(payload, normalize_keys({key: value}))
            continue
        payload[key] = value
    return payload


def _set_nested(target: dict[str, Any], path: tuple[str, ...], value: object) -> None:
    cursor = target
    for part in path[:-1]:
        next_node = cursor.get(part)
        if not isinstance(next_node, dict):
            next_node = {}
            cursor[part] = next_node
        cursor = next_node
    cursor[path[-1]] = value


def _env_name_for_path(path: tuple[str, ...]) -> str:
    return ENV_PREFIX + "_".join(part.upper() for part in path)


__all__ = [
    "ConfigLoadError",
    "ENV_PREFIX",
    "RESILIENCE_SECTION",
    "load_config",
    "load_section",
]
