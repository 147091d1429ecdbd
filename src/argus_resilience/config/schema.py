"""
argus-resilience — resilience configuration schema and validation.

File: src/argus_resilience/config/schema.py

Purpose
- Define the ``resilience`` configuration sections, their defaults, and strict
  validation returning structured ``path: message`` issues.

Sections
- ``preflight``: readiness checks before a run.
- ``container``: guardian restart policy.
- ``network``: port conflict strategy and connectivity verification.
- ``circuit_breaker``: runtime circuit breaker.

Project files written for the CLI use camelCase keys (``diskSpaceThreshold``);
``normalize_keys`` maps them to the snake_case names used here.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_DURATION_PATTERN = re.compile(r"^(\d+|\d+(?:\.\d+)?\s*(ms|s|m|h))$")
_SIZE_PATTERN = re.compile(r"^\d+(?:\.\d+)?\s*(GB|MB|TB)$", re.IGNORECASE)

BACKOFF_MODES: Final[tuple[str, ...]] = ("exponential", "linear")
PORT_STRATEGIES: Final[tuple[str, ...]] = ("auto", "fail")
SECTION_NAMES: Final[tuple[str, ...]] = ("preflight", "container", "network", "circuit_breaker")


class PreflightConfig(TypedDict):
    enabled: bool
    disk_space_threshold: str
    clean_orphans: bool


class ContainerConfig(TypedDict):
    restart_on_failure: bool
    max_restarts: int
    restart_delay: str
    restart_backoff: Literal["exponential", "linear"]


class NetworkConfig(TypedDict):
    port_conflict_strategy: Literal["auto", "fail"]
    verify_connectivity: bool


class CircuitBreakerConfig(TypedDict):
    enabled: bool
    failure_threshold: int
    reset_timeout_ms: int


class ResilienceConfig(TypedDict):
    preflight: PreflightConfig
    container: ContainerConfig
    network: NetworkConfig
    circuit_breaker: CircuitBreakerConfig


DEFAULT_CONFIG: Final[ResilienceConfig] = {
    "preflight": {
        "enabled": True,
        "disk_space_threshold": "2GB",
        "clean_orphans": False,
    },
    "container": {
        "restart_on_failure": True,
        "max_restarts": 3,
        "restart_delay": "2s",
        "restart_backoff": "exponential",
    },
    "network": {
        "port_conflict_strategy": "auto",
        "verify_connectivity": True,
    },
    "circuit_breaker": {
        "enabled": True,
        "failure_threshold": 5,
        "reset_timeout_ms": 30_000,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> ResilienceConfig:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def normalize_keys(payload: Mapping[str, object]) -> dict[str, Any]:
    """Recursively convert camelCase keys to snake_case; values are copied."""

    out: dict[str, Any] = {}
    for key, value in payload.items():
        name = snake_case(key) if isinstance(key, str) else key
        out[name] = normalize_keys(value) if isinstance(value, Mapping) else copy.deepcopy(value)
    return out


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto ``base`` without mutating either."""

    merged = copy.deepcopy(dict(base))
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate a complete resilience config and collect every issue."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    _reject_unknown_keys(root, set(SECTION_NAMES), "", issues)
    _require_keys(root, set(SECTION_NAMES), "", issues)

    validators: dict[str, Callable[[dict[str, object], str, _IssueCollector], dict[str, Any]]] = {
        "preflight": _validate_preflight,
        "container": _validate_container,
        "network": _validate_network,
        "circuit_breaker": _validate_circuit_breaker,
    }
    normalized: dict[str, Any] = {}
    for key, validator in validators.items():
        raw = root.get(key)
        if raw is None:
            continue
        section = _as_object(raw, key, issues)
        if section is not None:
            normalized[key] = validator(section, key, issues)

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> ResilienceConfig:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config  # type: ignore[return-value]


def _validate_preflight(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"enabled", "disk_space_threshold", "clean_orphans"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key in ("enabled", "clean_orphans"):
        if key in payload:
            out[key] = _as_bool(payload[key], _join(path, key), issues)
    if "disk_space_threshold" in payload:
        key_path = _join(path, "disk_space_threshold")
        parsed = _as_str(payload["disk_space_threshold"], key_path, issues)
        if parsed is not None:
            if _SIZE_PATTERN.fullmatch(parsed):
                out["disk_space_threshold"] = parsed
            else:
                issues.add(key_path, f'invalid size {parsed!r}; expected "2GB", "500MB", "1TB"')
    return out


def _validate_container(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"restart_on_failure", "max_restarts", "restart_delay", "restart_backoff"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "restart_on_failure" in payload:
        out["restart_on_failure"] = _as_bool(
            payload["restart_on_failure"], _join(path, "restart_on_failure"), issues
        )
    if "max_restarts" in payload:
        out["max_restarts"] = _as_int(
            payload["max_restarts"], _join(path, "max_restarts"), issues, minimum=0
        )
    if "restart_delay" in payload:
        key_path = _join(path, "restart_delay")
        parsed = _as_str(payload["restart_delay"], key_path, issues)
        if parsed is not None:
            if _DURATION_PATTERN.fullmatch(parsed):
                out["restart_delay"] = parsed
            else:
                issues.add(key_path, f'invalid duration {parsed!r}; expected "2s", "500ms", etc.')
    if "restart_backoff" in payload:
        out["restart_backoff"] = _as_enum(
            payload["restart_backoff"],
            _join(path, "restart_backoff"),
            issues,
            allowed_values=BACKOFF_MODES,
        )
    return out


def _validate_network(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"port_conflict_strategy", "verify_connectivity"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "port_conflict_strategy" in payload:
        out["port_conflict_strategy"] = _as_enum(
            payload["port_conflict_strategy"],
            _join(path, "port_conflict_strategy"),
            issues,
            allowed_values=PORT_STRATEGIES,
        )
    if "verify_connectivity" in payload:
        out["verify_connectivity"] = _as_bool(
            payload["verify_connectivity"], _join(path, "verify_connectivity"), issues
        )
    return out


def _validate_circuit_breaker(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"enabled", "failure_threshold", "reset_timeout_ms"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "enabled" in payload:
        out["enabled"] = _as_bool(payload["enabled"], _join(path, "enabled"), issues)
    if "failure_threshold" in payload:
        out["failure_threshold"] = _as_int(
            payload["failure_threshold"], _join(path, "failure_threshold"), issues, minimum=1
        )
    if "reset_timeout_ms" in payload:
        out["reset_timeout_ms"] = _as_int(
            payload["reset_timeout_ms"], _join(path, "reset_timeout_ms"), issues, minimum=0
        )
    return out


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key not in allowed:
            issues.add(_join(path, key), "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def snake_case(key: str) -> str:
    """``diskSpaceThreshold`` -> ``disk_space_threshold``."""

    return _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip()).lower()


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        existing = target.get(key)
        if isinstance(value, Mapping) and isinstance(existing, dict):
            _merge_into(existing, value)
        elif isinstance(value, Mapping):
            nested: dict[str, Any] = {}
            _merge_into(nested, value)
            target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


__all__ = [
    "BACKOFF_MODES",
    "CircuitBreakerConfig",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "ContainerConfig",
    "DEFAULT_CONFIG",
    "NetworkConfig",
    "PORT_STRATEGIES",
    "PreflightConfig",
    "ResilienceConfig",
    "SECTION_NAMES",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "normalize_keys",
    "snake_case",
    "validate_config",
]
