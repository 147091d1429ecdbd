"""
argus-resilience — unit tests for resilience config loader

File: tests/unit/config/test_loader.py

Purpose
- Validate loading from defaults, YAML/TOML project files, environment
  variables and explicit overrides, with precedence
  overrides > env > file > defaults.

Functional requirements
- Works offline; never reads the real process environment.
"""

from __future__ import annotations

from pathlib import Path

import pytest

import argus_resilience.config as config_pkg
from argus_resilience.config.loader import ConfigLoadError, load_config, load_section
from argus_resilience.config.schema import ConfigValidationError, default_config


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text.strip() + "\n", encoding="utf-8")
    return path


def test_no_inputs_yields_defaults() -> None:
    assert load_config(environ={}) == default_config()


def test_yaml_section_with_camel_case_keys(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "argus.yaml",
        """
project: shop
resilience:
  preflight:
    diskSpaceThreshold: 5GB
    cleanOrphans: true
  circuitBreaker:
    failureThreshold: 2
""",
    )

    config = load_config(path, environ={})

    assert config["preflight"]["disk_space_threshold"] == "5GB"
    assert config["preflight"]["clean_orphans"] is True
    assert config["preflight"]["enabled"] is True
    assert config["circuit_breaker"]["failure_threshold"] == 2
    assert config["circuit_breaker"]["reset_timeout_ms"] == 30_000


def test_toml_section(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "argus.toml",
        """
[resilience.container]
max_restarts = 6
restart_backoff = "linear"

[resilience.network]
port_conflict_strategy = "fail"
""",
    )

    config = load_config(path, environ={})

    assert config["container"]["max_restarts"] == 6
    assert config["container"]["restart_backoff"] == "linear"
    assert config["network"]["port_conflict_strategy"] == "fail"


def test_file_without_resilience_section_uses_defaults(tmp_path: Path) -> None:
    path = _write(tmp_path / "argus.yml", "project: shop")

    assert load_section(path) == {}
    assert load_config(path, environ={}) == default_config()


def test_empty_yaml_file_is_treated_as_empty(tmp_path: Path) -> None:
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")

    assert load_section(path) == {}


def test_precedence_overrides_env_file_defaults(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "argus.yaml",
        """
resilience:
  container:
    maxRestarts: 4
    restartDelay: 1s
""",
    )
    environ = {
        "ARGUS_RESILIENCE_CONTAINER_MAX_RESTARTS": "5",
        "ARGUS_RESILIENCE_CIRCUIT_BREAKER_ENABLED": "off",
    }

    config = load_config(
        path,
        environ=environ,
        overrides={"container.maxRestarts": 9},
    )

    assert config["container"]["max_restarts"] == 9
    assert config["container"]["restart_delay"] == "1s"
    assert config["circuit_breaker"]["enabled"] is False
    assert config["container"]["restart_backoff"] == "exponential"


def test_nested_mapping_overrides() -> None:
    config = load_config(
        environ={},
        overrides={"network": {"verifyConnectivity": False}},
    )

    assert config["network"]["verify_connectivity"] is False
    assert config["network"]["port_conflict_strategy"] == "auto"


def test_env_values_are_coerced_by_default_type() -> None:
    config = load_config(
        environ={
            "ARGUS_RESILIENCE_PREFLIGHT_CLEAN_ORPHANS": "YES",
            "ARGUS_RESILIENCE_CIRCUIT_BREAKER_RESET_TIMEOUT_MS": " 1000 ",
            "ARGUS_RESILIENCE_CONTAINER_RESTART_DELAY": "750ms",
            "ARGUS_RESILIENCE_UNRELATED": "ignored",
        }
    )

    assert config["preflight"]["clean_orphans"] is True
    assert config["circuit_breaker"]["reset_timeout_ms"] == 1000
    assert config["container"]["restart_delay"] == "750ms"


@pytest.mark.parametrize(
    ("name", "value", "fragment"),
    [
        ("ARGUS_RESILIENCE_CONTAINER_MAX_RESTARTS", "three", "must be an integer"),
        ("ARGUS_RESILIENCE_NETWORK_VERIFY_CONNECTIVITY", "maybe", "must be a boolean"),
    ],
)
def test_invalid_env_coercion_raises_actionable_error(
    name: str, value: str, fragment: str
) -> None:
    with pytest.raises(ConfigLoadError, match=fragment) as excinfo:
        load_config(environ={name: value})

    assert name in str(excinfo.value)


def test_invalid_values_fail_validation(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "argus.yaml",
        """
resilience:
  network:
    portConflictStrategy: retry
""",
    )

    with pytest.raises(ConfigValidationError) as excinfo:
        load_config(path, environ={})

    assert excinfo.value.issues[0].path == "network.port_conflict_strategy"


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="not found"):
        load_config(tmp_path / "nope.yaml", environ={})


def test_malformed_yaml_raises(tmp_path: Path) -> None:
    path = _write(tmp_path / "bad.yaml", "resilience: [unclosed")

    with pytest.raises(ConfigLoadError, match="invalid YAML"):
        load_section(path)


def test_malformed_toml_raises(tmp_path: Path) -> None:
    path = _write(tmp_path / "bad.toml", "[resilience\nx = 1")

    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_section(path)


def test_non_mapping_section_raises(tmp_path: Path) -> None:
    path = _write(tmp_path / "argus.yaml", "resilience: 3")

    with pytest.raises(ConfigLoadError, match="must be an object"):
        load_section(path)


def test_config_package_exports_loader_and_errors() -> None:
    assert config_pkg.load_config is load_config
    assert config_pkg.ConfigLoadError is ConfigLoadError
    assert "validate_config" in config_pkg.__all__
