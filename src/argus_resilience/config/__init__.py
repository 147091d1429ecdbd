"""
argus-resilience config package public API.

File: src/argus_resilience/config/__init__.py

Purpose
- Export resilience config loading/validation entrypoints and error types.
"""

from argus_resilience.config.loader import (
    ENV_PREFIX,
    RESILIENCE_SECTION,
    ConfigLoadError,
    load_config,
    load_section,
)
from argus_resilience.config.schema import (
    BACKOFF_MODES,
    DEFAULT_CONFIG,
    PORT_STRATEGIES,
    SECTION_NAMES,
    CircuitBreakerConfig,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    ContainerConfig,
    NetworkConfig,
    PreflightConfig,
    ResilienceConfig,
    assert_valid_config,
    default_config,
    merge_config,
    normalize_keys,
    snake_case,
    validate_config,
)

__all__ = [
    "BACKOFF_MODES",
    "CircuitBreakerConfig",
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "ContainerConfig",
    "DEFAULT_CONFIG",
    "ENV_PREFIX",
    "NetworkConfig",
    "PORT_STRATEGIES",
    "PreflightConfig",
    "RESILIENCE_SECTION",
    "ResilienceConfig",
    "SECTION_NAMES",
    "assert_valid_config",
    "default_config",
    "load_config",
    "load_section",
    "merge_config",
    "normalize_keys",
    "snake_case",
    "validate_config",
]
