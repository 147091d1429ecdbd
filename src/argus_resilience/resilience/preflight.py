"""
argus-resilience — environment readiness checks before a run.

File: src/argus_resilience/resilience/preflight.py

Purpose
- Aggregate independent probes (runtime daemon, disk space, leftover
  resources) into one ``HealthReport`` verdict.

Aggregation
- ``unhealthy`` if any check fails, else ``degraded`` if any warns, else ``healthy``.
- Disk probe failures degrade to ``warn``; a run is never blocked only
  because disk reporting is broken.
"""

from __future__ import annotations

import logging
import re
import sys
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Final

from argus_resilience.constants import (
    DEFAULT_DISK_SPACE_THRESHOLD,
    DEFAULT_DISK_THRESHOLD_GB,
    DISK_PROBE_TIMEOUT_SECONDS,
    RUNTIME_INFO_TIMEOUT_SECONDS,
)
from argus_resilience.observability.events import EventSink, ResilienceEvent, publish
from argus_resilience.resilience.error_codes import ErrorCode, ResilienceError
from argus_resilience.resilience.orphan_cleaner import OrphanCleaner
from argus_resilience.runtime.docker import ContainerRuntime, RuntimeCommandError, run_command

logger = logging.getLogger(__name__)

CommandRunner = Callable[[Sequence[str], float], Awaitable[str]]

_THRESHOLD: Final[re.Pattern[str]] = re.compile(r"^(\d+(?:\.\d+)?)\s*(GB|MB|TB)$", re.IGNORECASE)
_LEADING_INT: Final[re.Pattern[str]] = re.compile(r"^[+-]?\d+")

CHECK_DOCKER_DAEMON: Final[str] = "docker_daemon"
CHECK_DISK_SPACE: Final[str] = "disk_space"
CHECK_ORPHAN_RESOURCES: Final[str] = "orphan_resources"


class CheckStatus(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


class OverallHealth(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True, slots=True)
class HealthCheckResult:
    name: str
    status: CheckStatus
    message: str
    details: Mapping[str, Any] = field(default_factory=dict)
    duration: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "message": self.message,
            "details": dict(self.details),
            "duration": self.duration,
        }


@dataclass(frozen=True, slots=True)
class HealthReport:
    overall: OverallHealth
    checks: tuple[HealthCheckResult, ...]
    timestamp: int
    duration: int

    def check(self, name: str) -> HealthCheckResult | None:
        for item in self.checks:
            if item.name == name:
                return item
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall": self.overall.value,
            "checks": [item.to_dict() for item in self.checks],
            "timestamp": self.timestamp,
            "duration": self.duration,
        }


def compute_overall_health(checks: Iterable[HealthCheckResult]) -> OverallHealth:
    statuses = {item.status for item in checks}
    if CheckStatus.FAIL in statuses:
        return OverallHealth.UNHEALTHY
    if CheckStatus.WARN in statuses:
        return OverallHealth.DEGRADED
    return OverallHealth.HEALTHY


def parse_disk_threshold(threshold: str) -> float:
    """Convert ``"2GB"``/``"500MB"``/``"1TB"`` to gigabytes; anything else is 2 GB."""

    match = _THRESHOLD.match(threshold.strip())
    if match is None:
        return DEFAULT_DISK_THRESHOLD_GB
    value = float(match.group(1))
    unit = match.group(2).upper()
    if unit == "TB":
        return value * 1024
    if unit == "MB":
        return value / 1024
    return value


def parse_df_output(output: str) -> int | None:
    """Available gigabytes from the 4th column of ``df``'s first data row."""

    lines = output.strip().split("\n")
    if len(lines) < 2:
        return None
    columns = lines[1].split()
    if len(columns) < 4:
        return None
    match = _LEADING_INT.match(columns[3])
    return int(match.group(0)) if match else None


class PreflightChecker:
    """Run readiness probes and emit their progress on the event sink."""

    def __init__(
        self,
        runtime: ContainerRuntime,
        *,
        event_sink: EventSink | None = None,
        platform: str | None = None,
        command_runner: CommandRunner | None = None,
    ) -> None:
        self._runtime = runtime
        self._event_sink = event_sink
        self._platform = platform or sys.platform
        self._run_command = command_runner or run_command

    async def check_docker_daemon(self) -> HealthCheckResult:
        started = time.monotonic()
        try:
            await self._runtime.info(timeout_seconds=RUNTIME_INFO_TIMEOUT_SECONDS)
        except (RuntimeCommandError, ResilienceError, OSError, TimeoutError) as exc:
            logger.warning("runtime daemon probe failed: %s", exc)
            return HealthCheckResult(
                name=CHECK_DOCKER_DAEMON,
                status=CheckStatus.FAIL,
                message="Docker daemon is not reachable",
                details={"error": str(exc), "errorCode": ErrorCode.DOCKER_UNAVAILABLE.value},
                duration=_elapsed_ms(started),
            )
        return HealthCheckResult(
            name=CHECK_DOCKER_DAEMON,
            status=CheckStatus.PASS,
            message="Docker daemon is reachable",
            duration=_elapsed_ms(started),
        )

    async def check_disk_space(
        self, threshold: str = DEFAULT_DISK_SPACE_THRESHOLD
    ) -> HealthCheckResult:
        started = time.monotonic()
        required_gb = _plain_number(parse_disk_threshold(threshold))
        flag = "-g" if self._platform == "darwin" else "-BG"

        try:
            output = await self._run_command(["df", flag, "/"], DISK_PROBE_TIMEOUT_SECONDS)
        except (RuntimeCommandError, OSError, TimeoutError) as exc:
            logger.warning("disk probe failed: %s", exc)
            return HealthCheckResult(
                name=CHECK_DISK_SPACE,
                status=CheckStatus.WARN,
                message="Could not check disk space",
                details={"error": str(exc)},
                duration=_elapsed_ms(started),
            )

        available_gb = parse_df_output(output)
        if available_gb is None:
            return HealthCheckResult(
                name=CHECK_DISK_SPACE,
                status=CheckStatus.WARN,
                message="Could not parse disk space information",
                details={"rawOutput": output.strip()},
                duration=_elapsed_ms(started),
            )

        if available_gb < required_gb:
            status = CheckStatus.FAIL
        elif available_gb < required_gb * 2:
            status = CheckStatus.WARN
        else:
            status = CheckStatus.PASS

        details: dict[str, Any] = {
            "availableGB": available_gb,
            "requiredGB": required_gb,
            "threshold": threshold,
        }
        if status is CheckStatus.FAIL:
            details["errorCode"] = ErrorCode.DISK_SPACE_LOW.value
        return HealthCheckResult(
            name=CHECK_DISK_SPACE,
            status=status,
            message=f"{available_gb}GB available (threshold: {required_gb}GB)",
            details=details,
            duration=_elapsed_ms(started),
        )

    async def check_orphans(
        self, project: str, current_run_id: str | None = None
    ) -> HealthCheckResult:
        started = time.monotonic()
        cleaner = OrphanCleaner(project, current_run_id or "", self._runtime)
        orphans = await cleaner.detect()
        count = len(orphans)
        details: dict[str, Any] = {
            "orphans": [
                {"type": item.type.value, "name": item.name, "id": item.id} for item in orphans
            ],
            "count": count,
        }
        if count:
            details["errorCode"] = ErrorCode.ORPHAN_DETECTED.value
        return HealthCheckResult(
            name=CHECK_ORPHAN_RESOURCES,
            status=CheckStatus.WARN if count else CheckStatus.PASS,
            message=(
                f"Found {count} orphaned resource(s)" if count else "No orphaned resources detected"
            ),
            details=details,
            duration=_elapsed_ms(started),
        )

    async def run_all(
        self,
        config: Mapping[str, Any],
        project: str,
        current_run_id: str | None = None,
        *,
        skip_disk_check: bool = False,
        skip_orphan_check: bool = False,
    ) -> HealthReport:
        """Run every check in order and aggregate.

        ``config`` is the ``preflight`` configuration section.
        """

        started = time.monotonic()
        publish(self._event_sink, ResilienceEvent.PREFLIGHT_START, {"project": project})

        checks: list[HealthCheckResult] = []
        checks.append(self._record(await self.check_docker_daemon()))
        if not skip_disk_check:
            threshold = str(config.get("disk_space_threshold", DEFAULT_DISK_SPACE_THRESHOLD))
            checks.append(self._record(await self.check_disk_space(threshold)))
        if not skip_orphan_check:
            checks.append(self._record(await self.check_orphans(project, current_run_id)))

        overall = compute_overall_health(checks)
        duration = _elapsed_ms(started)
        logger.info("preflight for %s: %s in %dms", project, overall.value, duration)
        publish(
            self._event_sink,
            ResilienceEvent.PREFLIGHT_END,
            {"overall": overall.value, "duration": duration},
        )
        return HealthReport(
            overall=overall,
            checks=tuple(checks),
            timestamp=int(time.time() * 1000),
            duration=duration,
        )

    def _record(self, result: HealthCheckResult) -> HealthCheckResult:
        publish(
            self._event_sink,
            ResilienceEvent.PREFLIGHT_CHECK,
            {"name": result.name, "status": result.status.value, "message": result.message},
        )
        return result


def _plain_number(value: float) -> float | int:
    return int(value) if value.is_integer() else value


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


__all__ = [
    "CHECK_DISK_SPACE",
    "CHECK_DOCKER_DAEMON",
    "CHECK_ORPHAN_RESOURCES",
    "CheckStatus",
    "HealthCheckResult",
    "HealthReport",
    "OverallHealth",
    "PreflightChecker",
    "compute_overall_health",
    "parse_df_output",
    "parse_disk_threshold",
]
