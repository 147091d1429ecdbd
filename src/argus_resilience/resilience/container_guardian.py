"""
argus-resilience — container auto-restart with backoff and forensic diagnostics.

File: src/argus_resilience/resilience/container_guardian.py

Purpose
- Detect a crashed (``exited``/``dead``) container, capture what happened,
  and recreate it up to ``max_restarts`` times with backoff between attempts.

Behavior
- Diagnostics are best-effort: each probe fails independently and degrades
  to an empty value instead of aborting the snapshot.
  They and the removal before each restart go through ``diagnostics_runtime``
  when one is given, so reads of a missing container never count against
  a circuit breaker.
- A failed ``start`` counts as a failed attempt; the loop moves on.
- Exhaustion raises ``CONTAINER_RESTART_EXHAUSTED`` carrying the full history.
- The backoff sleep is cancellable via ``CancellationToken``.
"""

from __future__ import annotations

import json
import logging
import math
import re
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Final

from argus_resilience.constants import (
    CONTAINER_ID_LENGTH,
    DIAGNOSTIC_LOG_TAIL_LINES,
    INSPECT_TIMEOUT_SECONDS,
    RESTART_SETTLE_SECONDS,
)
from argus_resilience.observability.events import EventSink, ResilienceEvent, publish
from argus_resilience.resilience.backoff import BackoffMode, compute_backoff_delay, parse_delay
from argus_resilience.resilience.error_codes import ErrorCode, ResilienceError
from argus_resilience.runtime.docker import (
    ContainerRuntime,
    ContainerStatus,
    RunOptions,
    RuntimeCommandError,
)
from argus_resilience.utils.concurrency import CancellationToken, cancellable_sleep

logger = logging.getLogger(__name__)

Sleeper = Callable[[float, "CancellationToken | None"], Awaitable[None]]

_PROBE_ERRORS: Final = (RuntimeCommandError, ResilienceError, OSError, TimeoutError, ValueError)
_CRASHED: Final[frozenset[ContainerStatus]] = frozenset(
    {ContainerStatus.EXITED, ContainerStatus.DEAD}
)
_MEMORY: Final[re.Pattern[str]] = re.compile(
    r"^([\d.]+)\s*(B|KiB|MiB|GiB|kB|MB|GB)?$", re.IGNORECASE
)
_MEMORY_UNITS: Final[dict[str, int]] = {
    "b": 1,
    "kb": 1_000,
    "kib": 1_024,
    "mb": 1_000_000,
    "mib": 1_048_576,
    "gb": 1_000_000_000,
    "gib": 1_073_741_824,
}


class RestartOutcome(str, Enum):
    RECOVERED = "recovered"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True, slots=True)
class ContainerGuardianConfig:
    restart_on_failure: bool = True
    max_restarts: int = 3
    restart_delay: str = "2s"
    restart_backoff: BackoffMode | None = BackoffMode.EXPONENTIAL

    @classmethod
    def from_section(cls, section: Mapping[str, Any]) -> ContainerGuardianConfig:
        """Build from the ``container`` section of ``ResilienceConfig``."""

        backoff = section.get("restart_backoff")
        return cls(
            restart_on_failure=bool(section.get("restart_on_failure", True)),
            max_restarts=int(section.get("max_restarts", 3)),
            restart_delay=str(section.get("restart_delay", "2s")),
            restart_backoff=BackoffMode(backoff) if backoff else None,
        )


@dataclass(frozen=True, slots=True)
class MemoryStats:
    """Memory usage in bytes."""

    peak: int
    limit: int

    def to_dict(self) -> dict[str, int]:
        return {"peak": self.peak, "limit": self.limit}


@dataclass(frozen=True, slots=True)
class ContainerDiagnostics:
    container_id: str
    container_name: str
    exit_code: int | None
    oom_killed: bool
    logs: tuple[str, ...]
    memory_stats: MemoryStats | None
    timestamp: int

    @property
    def reason(self) -> str:
        if self.oom_killed:
            return "OOM"
        code = "unknown" if self.exit_code is None else self.exit_code
        return f"exit code {code}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "containerId": self.container_id,
            "containerName": self.container_name,
            "exitCode": self.exit_code,
            "oomKilled": self.oom_killed,
            "logs": list(self.logs),
            "memoryStats": self.memory_stats.to_dict() if self.memory_stats else None,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True, slots=True)
class RestartAttempt:
    diagnostics: ContainerDiagnostics
    attempt_number: int
    delay_ms: int

    def to_dict(self) -> dict[str, Any]:
        payload = self.diagnostics.to_dict()
        payload["attemptNumber"] = self.attempt_number
        payload["delayMs"] = self.delay_ms
        return payload


@dataclass(frozen=True, slots=True)
class RestartHistory:
    container_name: str
    attempts: tuple[RestartAttempt, ...]
    final_status: RestartOutcome

    def to_dict(self) -> dict[str, Any]:
        return {
            "containerName": self.container_name,
            "attempts": [attempt.to_dict() for attempt in self.attempts],
            "finalStatus": self.final_status.value,
        }


def parse_memory_string(text: str) -> int:
    """Convert ``"256MiB"`` style values to bytes; unparsable input gives 0."""

    match = _MEMORY.match(text.strip())
    if match is None:
        return 0
    try:
        value = float(match.group(1))
    except ValueError:
        return 0
    unit = (match.group(2) or "B").lower()
    return math.floor(value * _MEMORY_UNITS[unit] + 0.5)


class ContainerGuardian:
    """Restart crashed containers with backoff, recording every attempt."""

    def __init__(
        self,
        config: ContainerGuardianConfig,
        runtime: ContainerRuntime,
        *,
        event_sink: EventSink | None = None,
        sleep: Sleeper | None = None,
        settle_seconds: float = RESTART_SETTLE_SECONDS,
        diagnostics_runtime: ContainerRuntime | None = None,
    ) -> None:
        self._config = config
        self._runtime = runtime
        self._diagnostics_runtime = diagnostics_runtime or runtime
        self._event_sink = event_sink
        self._sleep = sleep or cancellable_sleep
        self._settle_seconds = settle_seconds
        self._base_delay_ms = parse_delay(config.restart_delay)

    @property
    def base_delay_ms(self) -> int:
        return self._base_delay_ms

    async def capture_diagnostics(self, container_name: str) -> ContainerDiagnostics:
        exit_code: int | None = None
        oom_killed = False
        container_id = ""
        logs: tuple[str, ...] = ()
        memory_stats: MemoryStats | None = None

        try:
            state = json.loads(
                await self._diagnostics_runtime.runtime_exec(
                    ["inspect", "--format", "{{json .State}}", container_name],
                    timeout_seconds=INSPECT_TIMEOUT_SECONDS,
                )
            )
            if isinstance(state, dict):
                raw_exit = state.get("ExitCode")
                exit_code = raw_exit if isinstance(raw_exit, int) else None
                oom_killed = bool(state.get("OOMKilled", False))
        except _PROBE_ERRORS as exc:
            logger.debug("state inspect failed for %s: %s", container_name, exc)

        try:
            raw_id = await self._diagnostics_runtime.runtime_exec(
                ["inspect", "--format", "{{.Id}}", container_name],
                timeout_seconds=INSPECT_TIMEOUT_SECONDS,
            )
            container_id = raw_id.strip()[:CONTAINER_ID_LENGTH]
        except _PROBE_ERRORS as exc:
            logger.debug("id inspect failed for %s: %s", container_name, exc)

        try:
            output = await self._diagnostics_runtime.get_container_logs(
                container_name, DIAGNOSTIC_LOG_TAIL_LINES
            )
            logs = tuple(line for line in output.split("\n") if line)
        except _PROBE_ERRORS as exc:
            logger.debug("log tail failed for %s: %s", container_name, exc)

        try:
            stats = json.loads(
                await self._diagnostics_runtime.runtime_exec(
                    ["stats", "--no-stream", "--format", "{{json .}}", container_name],
                    timeout_seconds=INSPECT_TIMEOUT_SECONDS,
                )
            )
            usage = stats.get("MemUsage") if isinstance(stats, dict) else None
            if usage:
                parts = [part.strip() for part in str(usage).split("/")]
                memory_stats = MemoryStats(
                    peak=parse_memory_string(parts[0] if parts else "0"),
                    limit=parse_memory_string(parts[1] if len(parts) > 1 else "0"),
                )
        except _PROBE_ERRORS as exc:
            logger.debug("stats failed for %s: %s", container_name, exc)

        return ContainerDiagnostics(
            container_id=container_id,
            container_name=container_name,
            exit_code=exit_code,
            oom_killed=oom_killed,
            logs=logs,
            memory_stats=memory_stats,
            timestamp=int(time.time() * 1000),
        )

    async def monitor_and_restart(
        self,
        container_name: str,
        run_options: RunOptions,
        labels: Mapping[str, str] | None = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> RestartHistory | None:
        """Restart ``container_name`` if it crashed.

        Returns ``None`` when the container is healthy or restarts are
        disabled, and a ``recovered`` history once a restart sticks.
        """

        status = await self._runtime.get_container_status(container_name)
        if status not in _CRASHED or not self._config.restart_on_failure:
            return None

        attempts: list[RestartAttempt] = []
        fresh_options = run_options.with_labels(labels or {})

        for attempt in range(1, self._config.max_restarts + 1):
            diagnostics = await self.capture_diagnostics(container_name)
            delay_ms = compute_backoff_delay(
                self._base_delay_ms, attempt, self._config.restart_backoff
            )
            logger.warning(
                "restarting %s (attempt %d/%d, %s, delay %dms)",
                container_name,
                attempt,
                self._config.max_restarts,
                diagnostics.reason,
                delay_ms,
            )
            publish(
                self._event_sink,
                ResilienceEvent.RESTART_ATTEMPT,
                {
                    "container": container_name,
                    "attempt": attempt,
                    "reason": diagnostics.reason,
                    "delay": delay_ms,
                },
            )
            attempts.append(
                RestartAttempt(diagnostics=diagnostics, attempt_number=attempt, delay_ms=delay_ms)
            )

            await self._sleep(delay_ms / 1000, cancel_token)

            try:
                await self._diagnostics_runtime.stop_container(container_name)
            except _PROBE_ERRORS as exc:
                logger.debug("remove before restart failed for %s: %s", container_name, exc)

            started = time.monotonic()
            try:
                await self._runtime.start_container(fresh_options)
            except _PROBE_ERRORS as exc:
                logger.warning("start of %s failed: %s", container_name, exc)
                continue

            await self._sleep(self._settle_seconds, cancel_token)
            if await self._runtime.get_container_status(container_name) is ContainerStatus.RUNNING:
                duration_ms = int((time.monotonic() - started) * 1000)
                logger.info("%s recovered on attempt %d", container_name, attempt)
                publish(
                    self._event_sink,
                    ResilienceEvent.RESTART_SUCCESS,
                    {"container": container_name, "attempt": attempt, "duration": duration_ms},
                )
                return RestartHistory(
                    container_name=container_name,
                    attempts=tuple(attempts),
                    final_status=RestartOutcome.RECOVERED,
                )

        history = RestartHistory(
            container_name=container_name,
            attempts=tuple(attempts),
            final_status=RestartOutcome.EXHAUSTED,
        )
        logger.error("%s exhausted %d restart attempts", container_name, len(attempts))
        publish(
            self._event_sink,
            ResilienceEvent.RESTART_EXHAUSTED,
            {"container": container_name, "attempts": len(attempts)},
        )
        raise ResilienceError(
            ErrorCode.CONTAINER_RESTART_EXHAUSTED,
            f'Container "{container_name}" failed after {self._config.max_restarts} restart attempts',
            {"history": history.to_dict()},
        )


__all__ = [
    "ContainerDiagnostics",
    "ContainerGuardian",
    "ContainerGuardianConfig",
    "MemoryStats",
    "RestartAttempt",
    "RestartHistory",
    "RestartOutcome",
    "parse_memory_string",
]
