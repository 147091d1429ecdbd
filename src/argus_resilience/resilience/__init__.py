"""
argus-resilience resilience package public API.

File: src/argus_resilience/resilience/__init__.py

Purpose
- Export the error taxonomy, backoff helpers, circuit breaker, port resolver,
  container guardian, orphan cleaner, preflight checker, network verifier and
  the per-project ``ResilienceEngine``.
"""

from argus_resilience.resilience.backoff import BackoffMode, compute_backoff_delay, parse_delay
from argus_resilience.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerState,
    CircuitResetResult,
    CircuitState,
    FailureRecord,
)
from argus_resilience.resilience.container_guardian import (
    ContainerDiagnostics,
    ContainerGuardian,
    ContainerGuardianConfig,
    MemoryStats,
    RestartAttempt,
    RestartHistory,
    RestartOutcome,
    parse_memory_string,
)
from argus_resilience.resilience.engine import (
    CircuitResetReport,
    PreflightOutcome,
    ResilienceEngine,
)
from argus_resilience.resilience.error_codes import (
    ERROR_METADATA,
    ErrorCategory,
    ErrorCode,
    ErrorMetadataEntry,
    ErrorSeverity,
    ResilienceError,
    StructuredError,
    create_structured_error,
)
from argus_resilience.resilience.network_verifier import (
    ConnectivityResult,
    DnsResolution,
    NetworkTopology,
    NetworkVerificationReport,
    NetworkVerifier,
    ServiceEndpoint,
)
from argus_resilience.resilience.orphan_cleaner import (
    FailedRemoval,
    OrphanCleaner,
    OrphanCleanupResult,
    OrphanResource,
    ResourceType,
    extract_label,
)
from argus_resilience.resilience.port_resolver import (
    ContainerSpec,
    MockServiceConfig,
    PortMapping,
    PortResolution,
    PortResolver,
    PortStrategy,
    ServiceDefinition,
    lookup_listening_pid,
)
from argus_resilience.resilience.preflight import (
    CHECK_DISK_SPACE,
    CHECK_DOCKER_DAEMON,
    CHECK_ORPHAN_RESOURCES,
    CheckStatus,
    HealthCheckResult,
    HealthReport,
    OverallHealth,
    PreflightChecker,
    compute_overall_health,
    parse_df_output,
    parse_disk_threshold,
)
from argus_resilience.resilience.resilient_runtime import ResilientRuntime

__all__ = [
    "BackoffMode",
    "CHECK_DISK_SPACE",
    "CHECK_DOCKER_DAEMON",
    "CHECK_ORPHAN_RESOURCES",
    "CheckStatus",
    "CircuitBreaker",
    "CircuitBreakerState",
    "CircuitResetReport",
    "CircuitResetResult",
    "CircuitState",
    "ConnectivityResult",
    "ContainerDiagnostics",
    "ContainerGuardian",
    "ContainerGuardianConfig",
    "ContainerSpec",
    "DnsResolution",
    "ERROR_METADATA",
    "ErrorCategory",
    "ErrorCode",
    "ErrorMetadataEntry",
    "ErrorSeverity",
    "FailedRemoval",
    "FailureRecord",
    "HealthCheckResult",
    "HealthReport",
    "MemoryStats",
    "MockServiceConfig",
    "NetworkTopology",
    "NetworkVerificationReport",
    "NetworkVerifier",
    "OrphanCleaner",
    "OrphanCleanupResult",
    "OrphanResource",
    "OverallHealth",
    "PortMapping",
    "PortResolution",
    "PortResolver",
    "PortStrategy",
    "PreflightChecker",
    "PreflightOutcome",
    "ResilienceEngine",
    "ResilienceError",
    "ResilientRuntime",
    "ResourceType",
    "RestartAttempt",
    "RestartHistory",
    "RestartOutcome",
    "ServiceDefinition",
    "ServiceEndpoint",
    "StructuredError",
    "compute_backoff_delay",
    "compute_overall_health",
    "create_structured_error",
    "extract_label",
    "lookup_listening_pid",
    "parse_delay",
    "parse_df_output",
    "parse_disk_threshold",
    "parse_memory_string",
]
