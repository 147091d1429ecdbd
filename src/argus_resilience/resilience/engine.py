"""
argus-resilience — per-project composition of the resilience components.

File: src/argus_resilience/resilience/engine.py

Purpose
- Build one breaker, port resolver, guardian, orphan cleaner, preflight
  checker and network verifier for a single project/run from a
  ``ResilienceConfig``.

Notes
- There is no module-level registry. Callers hosting several projects create
  one engine each; engines never share a breaker.
- Preflight talks to the raw runtime so it can still diagnose the daemon
  while the circuit is open. The guardian's crash diagnostics and its
  pre-restart removal also bypass the breaker; a container that is already
  gone must not open the circuit. Everything else goes through the breaker.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from argus_resilience.config.schema import ResilienceConfig, assert_valid_config, default_config
from argus_resilience.constants import LABEL_CREATED_AT, LABEL_MANAGED, LABEL_PROJECT, LABEL_RUN_ID
from argus_resilience.observability.events import EventSink
from argus_resilience.observability.logging import correlation_scope
from argus_resilience.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerState,
    CircuitState,
    Clock,
)
from argus_resilience.resilience.container_guardian import (
    ContainerGuardian,
    ContainerGuardianConfig,
    RestartHistory,
    Sleeper,
)
from argus_resilience.resilience.network_verifier import (
    NetworkVerificationReport,
    NetworkVerifier,
    ServiceEndpoint,
)
from argus_resilience.resilience.orphan_cleaner import OrphanCleaner, OrphanCleanupResult
from argus_resilience.resilience.port_resolver import (
    MockServiceConfig,
    PidLookup,
    PortProbe,
    PortResolution,
    PortResolver,
    ServiceDefinition,
)
from argus_resilience.resilience.preflight import CommandRunner, HealthReport, PreflightChecker
from argus_resilience.resilience.resilient_runtime import ResilientRuntime
from argus_resilience.runtime.docker import ContainerRuntime, DockerCLIRuntime, RunOptions
from argus_resilience.utils.concurrency import CancellationToken

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PreflightOutcome:
    health_report: HealthReport
    circuit_breaker_state: CircuitBreakerState | None
    auto_fix_applied: bool
    cleanup: OrphanCleanupResult | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "healthReport": self.health_report.to_dict(),
            "autoFixApplied": self.auto_fix_applied,
        }
        if self.circuit_breaker_state is not None:
            payload["circuitBreakerState"] = self.circuit_breaker_state.to_dict()
        if self.cleanup is not None:
            payload["cleanup"] = self.cleanup.to_dict()
        return payload


@dataclass(frozen=True, slots=True)
class CircuitResetReport:
    previous_state: CircuitState
    current_state: CircuitState
    failure_history: tuple[dict[str, Any], ...]
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "previousState": self.previous_state.value,
            "currentState": self.current_state.value,
            "failureHistory": list(self.failure_history),
            "message": self.message,
        }


class ResilienceEngine:
    """All resilience components for one project run."""

    def __init__(
        self,
        project: str,
        run_id: str,
        config: Mapping[str, Any] | None = None,
        *,
        runtime: ContainerRuntime | None = None,
        event_sink: EventSink | None = None,
        port_probe: PortProbe | None = None,
        pid_lookup: PidLookup | None = None,
        sleep: Sleeper | None = None,
        settle_seconds: float | None = None,
        platform: str | None = None,
        command_runner: CommandRunner | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._project = project
        self._run_id = run_id
        self._config: ResilienceConfig = assert_valid_config(
            config if config is not None else default_config()
        )
        self._event_sink = event_sink
        self._raw_runtime: ContainerRuntime = runtime or DockerCLIRuntime()

        breaker_config = self._config["circuit_breaker"]
        self._breaker: CircuitBreaker | None = None
        self._runtime: ContainerRuntime = self._raw_runtime
        if breaker_config["enabled"]:
            self._breaker = CircuitBreaker(
                breaker_config["failure_threshold"],
                breaker_config["reset_timeout_ms"],
                event_sink=event_sink,
                clock=clock,
            )
            self._runtime = ResilientRuntime(self._raw_runtime, self._breaker)

        self.port_resolver = PortResolver(
            self._config["network"]["port_conflict_strategy"],
            port_probe=port_probe,
            pid_lookup=pid_lookup,
            event_sink=event_sink,
        )
        guardian_kwargs: dict[str, Any] = {
            "event_sink": event_sink,
            "sleep": sleep,
            "diagnostics_runtime": self._raw_runtime,
        }
        if settle_seconds is not None:
            guardian_kwargs["settle_seconds"] = settle_seconds
        self.guardian = ContainerGuardian(
            ContainerGuardianConfig.from_section(self._config["container"]),
            self._runtime,
            **guardian_kwargs,
        )
        self.orphan_cleaner = OrphanCleaner(project, run_id, self._runtime, event_sink=event_sink)
        self.preflight = PreflightChecker(
            self._raw_runtime,
            event_sink=event_sink,
            platform=platform,
            command_runner=command_runner,
        )
        self.network_verifier = NetworkVerifier(self._runtime, event_sink=event_sink)

    @property
    def project(self) -> str:
        return self._project

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def config(self) -> ResilienceConfig:
        return self._config

    @property
    def runtime(self) -> ContainerRuntime:
        """Runtime used for state-changing calls (breaker-wrapped when enabled)."""

        return self._runtime

    @property
    def circuit_breaker(self) -> CircuitBreaker | None:
        return self._breaker

    def circuit_state(self) -> CircuitBreakerState | None:
        return self._breaker.get_state() if self._breaker is not None else None

    def managed_labels(self) -> dict[str, str]:
        """Ownership labels for every resource created during this run."""

        return {
            LABEL_MANAGED: "true",
            LABEL_PROJECT: self._project,
            LABEL_RUN_ID: self._run_id,
            LABEL_CREATED_AT: datetime.now(UTC).isoformat(),
        }

    async def run_preflight(
        self,
        *,
        auto_fix: bool = False,
        skip_disk_check: bool = False,
        skip_orphan_check: bool = False,
    ) -> PreflightOutcome:
        """Run preflight, then clean orphans when ``auto_fix`` or ``clean_orphans`` is set.

        With ``preflight.enabled`` off only the daemon check runs.
        """

        section = self._config["preflight"]
        enabled = section["enabled"]
        with correlation_scope(project=self._project, run_id=self._run_id):
            report = await self.preflight.run_all(
                section,
                self._project,
                self._run_id,
                skip_disk_check=skip_disk_check or not enabled,
                skip_orphan_check=skip_orphan_check or not enabled,
            )
            cleanup: OrphanCleanupResult | None = None
            if auto_fix or section["clean_orphans"]:
                cleanup = await self.orphan_cleaner.detect_and_cleanup()
            return PreflightOutcome(
                health_report=report,
                circuit_breaker_state=self.circuit_state(),
                auto_fix_applied=cleanup is not None,
                cleanup=cleanup,
            )

    async def resolve_ports(
        self,
        services: Sequence[ServiceDefinition | Mapping[str, Any]],
        mocks: Mapping[str, MockServiceConfig | Mapping[str, Any]] | None = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> PortResolution:
        with correlation_scope(project=self._project, run_id=self._run_id):
            return await self.port_resolver.resolve_service_ports(
                services, mocks, cancel_token=cancel_token
            )

    async def guard_container(
        self,
        container_name: str,
        run_options: RunOptions,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> RestartHistory | None:
        """Restart ``container_name`` if it crashed, stamping this run's labels."""

        with correlation_scope(
            project=self._project, run_id=self._run_id, container=container_name
        ):
            return await self.guardian.monitor_and_restart(
                container_name,
                run_options,
                self.managed_labels(),
                cancel_token=cancel_token,
            )

    async def verify_network(
        self,
        test_container: str,
        services: Sequence[ServiceEndpoint | Mapping[str, Any]],
        network_name: str,
    ) -> NetworkVerificationReport | None:
        """Verify connectivity; ``None`` when ``verify_connectivity`` is disabled."""

        if not self._config["network"]["verify_connectivity"]:
            return None
        with correlation_scope(
            project=self._project, run_id=self._run_id, container=test_container
        ):
            return await self.network_verifier.verify_connectivity(
                test_container, services, network_name
            )

    def reset_circuit(self) -> CircuitResetReport:
        """Move an open circuit to half-open so the next runtime call probes recovery."""

        if self._breaker is None:
            raise ValueError("No circuit breaker is configured for this project")

        before = self._breaker.get_state()
        result = self._breaker.reset()
        if result.transitioned:
            message = (
                f'Circuit breaker transitioned from "{result.previous.value}" '
                f'to "{result.current.value}"'
            )
        else:
            message = f'Circuit breaker already in "{result.previous.value}" state; no action taken'
        logger.info("%s (project=%s)", message, self._project)
        return CircuitResetReport(
            previous_state=result.previous,
            current_state=result.current,
            failure_history=tuple(record.to_dict() for record in before.failure_history),
            message=message,
        )


__all__ = [
    "CircuitResetReport",
    "PreflightOutcome",
    "ResilienceEngine",
]
