"""Stable constants shared across the resilience components."""

from __future__ import annotations

from typing import Final

# Event bus channel for every resilience event.
RESILIENCE_CHANNEL: Final[str] = "resilience"

# Ownership labels stamped on every managed runtime resource.
LABEL_MANAGED: Final[str] = "argusai.managed"
LABEL_PROJECT: Final[str] = "argusai.project"
LABEL_RUN_ID: Final[str] = "argusai.run-id"
LABEL_CREATED_AT: Final[str] = "argusai.created-at"
UNKNOWN_LABEL_VALUE: Final[str] = "unknown"

# Port ranges.
MIN_UNPRIVILEGED_PORT: Final[int] = 1024
MAX_PORT: Final[int] = 65535
DEFAULT_PORT_SEARCH_ATTEMPTS: Final[int] = 100

# Circuit breaker.
FAILURE_HISTORY_LIMIT: Final[int] = 20

# Container guardian.
DIAGNOSTIC_LOG_TAIL_LINES: Final[int] = 100
CONTAINER_ID_LENGTH: Final[int] = 12
RESTART_SETTLE_SECONDS: Final[float] = 1.0

# External probe timeouts (seconds).
RUNTIME_INFO_TIMEOUT_SECONDS: Final[float] = 5.0
DISK_PROBE_TIMEOUT_SECONDS: Final[float] = 5.0
PID_LOOKUP_TIMEOUT_SECONDS: Final[float] = 5.0
INSPECT_TIMEOUT_SECONDS: Final[float] = 10.0
LIST_TIMEOUT_SECONDS: Final[float] = 10.0
LOGS_TIMEOUT_SECONDS: Final[float] = 10.0
EXEC_TIMEOUT_SECONDS: Final[float] = 15.0
START_TIMEOUT_SECONDS: Final[float] = 30.0
NETWORK_PROBE_TIMEOUT_SECONDS: Final[float] = 5.0
TCP_CONNECT_WAIT_SECONDS: Final[int] = 3

# Preflight defaults.
DEFAULT_DISK_SPACE_THRESHOLD: Final[str] = "2GB"
DEFAULT_DISK_THRESHOLD_GB: Final[float] = 2.0

__all__ = [
    "CONTAINER_ID_LENGTH",
    "DEFAULT_DISK_SPACE_THRESHOLD",
    "DEFAULT_DISK_THRESHOLD_GB",
    "DEFAULT_PORT_SEARCH_ATTEMPTS",
    "DIAGNOSTIC_LOG_TAIL_LINES",
    "DISK_PROBE_TIMEOUT_SECONDS",
    "EXEC_TIMEOUT_SECONDS",
    "FAILURE_HISTORY_LIMIT",
    "INSPECT_TIMEOUT_SECONDS",
    "LABEL_CREATED_AT",
    "LABEL_MANAGED",
    "LABEL_PROJECT",
    "LABEL_RUN_ID",
    "LIST_TIMEOUT_SECONDS",
    "LOGS_TIMEOUT_SECONDS",
    "MAX_PORT",
    "MIN_UNPRIVILEGED_PORT",
    "NETWORK_PROBE_TIMEOUT_SECONDS",
    "PID_LOOKUP_TIMEOUT_SECONDS",
    "RESILIENCE_CHANNEL",
    "RESTART_SETTLE_SECONDS",
    "RUNTIME_INFO_TIMEOUT_SECONDS",
    "START_TIMEOUT_SECONDS",
    "TCP_CONNECT_WAIT_SECONDS",
    "UNKNOWN_LABEL_VALUE",
]
