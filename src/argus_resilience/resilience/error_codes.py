"""
argus-resilience — structured error taxonomy.

File: src/argus_resilience/resilience/error_codes.py

Purpose
- Machine-readable error codes so callers (CLI, MCP, dashboard) can pick a
  recovery action without parsing free-text messages.

Contents
- ``ErrorCode`` / ``ErrorCategory`` / ``ErrorSeverity`` enums.
- ``ERROR_METADATA`` registry with default classification and suggested actions.
- ``create_structured_error`` factory and the ``ResilienceError`` exception.

Wire format
- ``{code, category, severity, message, details, suggestedActions, timestamp}``
  must survive ``json.dumps``/``json.loads`` unchanged.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Final


class ErrorCode(str, Enum):
    """All known infrastructure error codes."""

    DOCKER_UNAVAILABLE = "DOCKER_UNAVAILABLE"
    DISK_SPACE_LOW = "DISK_SPACE_LOW"
    PORT_CONFLICT = "PORT_CONFLICT"
    PORT_EXHAUSTION = "PORT_EXHAUSTION"
    CONTAINER_OOM = "CONTAINER_OOM"
    CONTAINER_CRASH = "CONTAINER_CRASH"
    CONTAINER_RESTART_EXHAUSTED = "CONTAINER_RESTART_EXHAUSTED"
    HEALTH_CHECK_TIMEOUT = "HEALTH_CHECK_TIMEOUT"
    NETWORK_UNREACHABLE = "NETWORK_UNREACHABLE"
    DNS_RESOLUTION_FAILED = "DNS_RESOLUTION_FAILED"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    ORPHAN_DETECTED = "ORPHAN_DETECTED"
    CLEANUP_FAILED = "CLEANUP_FAILED"


class ErrorCategory(str, Enum):
    """Broad classification of error origin."""

    INFRASTRUCTURE = "infrastructure"
    CONTAINER = "container"
    NETWORK = "network"
    SYSTEM = "system"


class ErrorSeverity(str, Enum):
    """Impact severity guiding recovery strategy."""

    FATAL = "fatal"
    RECOVERABLE = "recoverable"
    WARNING = "warning"


@dataclass(frozen=True, slots=True)
class ErrorMetadataEntry:
    """Default classification and recovery hints for one error code."""

    category: ErrorCategory
    default_severity: ErrorSeverity
    suggested_actions: tuple[str, ...]


def _entry(
    category: ErrorCategory, severity: ErrorSeverity, *actions: str
) -> ErrorMetadataEntry:
    return ErrorMetadataEntry(
        category=category, default_severity=severity, suggested_actions=tuple(actions)
    )


_INFRA = ErrorCategory.INFRASTRUCTURE
_CONTAINER = ErrorCategory.CONTAINER
_NETWORK = ErrorCategory.NETWORK
_SYSTEM = ErrorCategory.SYSTEM
_FATAL = ErrorSeverity.FATAL
_RECOVERABLE = ErrorSeverity.RECOVERABLE
_WARNING = ErrorSeverity.WARNING

ERROR_METADATA: Final[Mapping[ErrorCode, ErrorMetadataEntry]] = MappingProxyType(
    {
        ErrorCode.DOCKER_UNAVAILABLE: _entry(
            _INFRA,
            _FATAL,
            "Start Docker daemon",
            "Check DOCKER_HOST environment variable",
            "Verify Docker installation",
        ),
        ErrorCode.DISK_SPACE_LOW: _entry(
            _INFRA,
            _WARNING,
            "Run docker system prune",
            "Free disk space",
            "Increase disk space threshold in config",
        ),
        ErrorCode.PORT_CONFLICT: _entry(
            _NETWORK,
            _RECOVERABLE,
            "Use auto port resolution",
            "Stop conflicting process",
            "Change configured port",
        ),
        ErrorCode.PORT_EXHAUSTION: _entry(
            _NETWORK,
            _FATAL,
            "Release occupied ports",
            "Reduce number of services",
            "Check for port leaks",
        ),
        ErrorCode.CONTAINER_OOM: _entry(
            _CONTAINER,
            _RECOVERABLE,
            "Increase container memory limit",
            "Optimize application memory usage",
            "Enable container auto-restart",
        ),
        ErrorCode.CONTAINER_CRASH: _entry(
            _CONTAINER,
            _RECOVERABLE,
            "Check container logs",
            "Verify container configuration",
            "Enable container auto-restart",
        ),
        ErrorCode.CONTAINER_RESTART_EXHAUSTED: _entry(
            _CONTAINER,
            _FATAL,
            "Inspect restart history diagnostics",
            "Fix underlying application error",
            "Increase max_restarts if transient",
        ),
        ErrorCode.HEALTH_CHECK_TIMEOUT: _entry(
            _CONTAINER,
            _RECOVERABLE,
            "Increase health check timeout",
            "Check health check endpoint",
            "Inspect container logs",
        ),
        ErrorCode.NETWORK_UNREACHABLE: _entry(
            _NETWORK,
            _RECOVERABLE,
            "Verify Docker network configuration",
            "Check container network attachments",
            "Recreate Docker network",
        ),
        ErrorCode.DNS_RESOLUTION_FAILED: _entry(
            _NETWORK,
            _RECOVERABLE,
            "Verify containers are on the same network",
            "Check container hostnames",
            "Restart Docker DNS",
        ),
        ErrorCode.CIRCUIT_OPEN: _entry(
            _SYSTEM,
            _FATAL,
            "Reset the circuit breaker to probe recovery",
            "Fix underlying Docker issue",
            "Check Docker daemon status",
        ),
        ErrorCode.ORPHAN_DETECTED: _entry(
            _INFRA,
            _WARNING,
            "Enable clean_orphans in preflight config",
            "Run preflight with auto-fix",
            "Manually remove orphaned resources",
        ),
        ErrorCode.CLEANUP_FAILED: _entry(
            _INFRA,
            _WARNING,
            "Check Docker daemon connectivity",
            "Manually remove stuck resources",
            "Check filesystem mount status",
        ),
    }
)


@dataclass(frozen=True, slots=True)
class StructuredError:
    """Machine-readable error payload carried by every resilience failure."""

    code: str
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    details: Mapping[str, Any] = field(default_factory=dict)
    suggested_actions: tuple[str, ...] = ()
    timestamp: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "category": self.category.value,
            "severity": self.severity.value,
            "message": self.message,
            "details": dict(self.details),
            "suggestedActions": list(self.suggested_actions),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> StructuredError:
        details = payload.get("details") or {}
        if not isinstance(details, Mapping):
            raise ValueError("details must be an object")
        return cls(
            code=str(payload["code"]),
            category=ErrorCategory(payload["category"]),
            severity=ErrorSeverity(payload["severity"]),
            message=str(payload["message"]),
            details=dict(details),
            suggested_actions=tuple(str(item) for item in payload.get("suggestedActions", ())),
            timestamp=int(payload.get("timestamp", 0)),
        )


def create_structured_error(
    code: ErrorCode | str,
    message: str,
    details: Mapping[str, Any] | None = None,
    severity_override: ErrorSeverity | str | None = None,
) -> StructuredError:
    """Build a ``StructuredError`` with category/severity resolved from the registry.

    Unknown codes still produce a valid error (category ``system``, severity
    ``fatal`` unless overridden) so callers never depend on registry coverage.
    """

    override = ErrorSeverity(severity_override) if severity_override is not None else None
    code_text = code.value if isinstance(code, ErrorCode) else str(code)
    metadata = _lookup(code_text)
    payload = dict(details or {})

    if metadata is None:
        return StructuredError(
            code=code_text,
            category=ErrorCategory.SYSTEM,
            severity=override or ErrorSeverity.FATAL,
            message=message,
            details=payload,
            suggested_actions=(),
            timestamp=_now_ms(),
        )

    return StructuredError(
        code=code_text,
        category=metadata.category,
        severity=override or metadata.default_severity,
        message=message,
        details=payload,
        suggested_actions=tuple(metadata.suggested_actions),
        timestamp=_now_ms(),
    )


class ResilienceError(Exception):
    """Exception wrapping a ``StructuredError`` for raise/except flows."""

    def __init__(
        self,
        code: ErrorCode | str,
        message: str,
        details: Mapping[str, Any] | None = None,
        severity_override: ErrorSeverity | str | None = None,
    ) -> None:
        super().__init__(message)
        self.structured_error = create_structured_error(code, message, details, severity_override)

    @property
    def code(self) -> str:
        return self.structured_error.code

    @property
    def category(self) -> ErrorCategory:
        return self.structured_error.category

    @property
    def severity(self) -> ErrorSeverity:
        return self.structured_error.severity

    @property
    def details(self) -> Mapping[str, Any]:
        return self.structured_error.details

    @property
    def suggested_actions(self) -> tuple[str, ...]:
        return self.structured_error.suggested_actions

    def to_json(self) -> dict[str, Any]:
        """Serialize the structured payload for JSON transport."""

        return self.structured_error.to_dict()


def _lookup(code: str) -> ErrorMetadataEntry | None:
    try:
        return ERROR_METADATA[ErrorCode(code)]
    except ValueError:
        return None


def _now_ms() -> int:
    return int(time.time() * 1000)


__all__ = [
    "ERROR_METADATA",
    "ErrorCategory",
    "ErrorCode",
    "ErrorMetadataEntry",
    "ErrorSeverity",
    "ResilienceError",
    "StructuredError",
    "create_structured_error",
]
