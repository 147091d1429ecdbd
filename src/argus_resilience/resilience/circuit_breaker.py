"""
argus-resilience — circuit breaker for container runtime operations.

File: src/argus_resilience/resilience/circuit_breaker.py

Purpose
- Stop hammering a broken runtime. After ``failure_threshold`` consecutive
  failures the circuit opens and every call fails fast with ``CIRCUIT_OPEN``.

State machine
- closed -> open       on ``failure_count >= failure_threshold``
- open -> half-open    only through an explicit ``reset()``
- half-open -> closed  when the single probe succeeds (history cleared)
- half-open -> open    when the probe fails

``reset_timeout_ms`` is kept for configuration parity and is not consulted.
One breaker instance belongs to one engine; it is not safe to share across
unsynchronized concurrent callers.
"""

from __future__ import annotations

import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from argus_resilience.constants import FAILURE_HISTORY_LIMIT
from argus_resilience.observability.events import EventSink, ResilienceEvent, publish
from argus_resilience.resilience.error_codes import ErrorCode, ResilienceError

logger = logging.getLogger(__name__)

T = TypeVar("T")
Operation = Callable[[], "Awaitable[T] | T"]
Clock = Callable[[], int]


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass(frozen=True, slots=True)
class FailureRecord:
    error: str
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error, "timestamp": self.timestamp}


@dataclass(frozen=True, slots=True)
class CircuitBreakerState:
    """Point-in-time snapshot; mutating the breaker later does not affect it."""

    state: CircuitState
    failure_count: int
    last_failure_time: int | None
    last_state_transition: int
    failure_history: tuple[FailureRecord, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "failureCount": self.failure_count,
            "lastFailureTime": self.last_failure_time,
            "lastStateTransition": self.last_state_transition,
            "failureHistory": [record.to_dict() for record in self.failure_history],
        }


@dataclass(frozen=True, slots=True)
class CircuitResetResult:
    previous: CircuitState
    current: CircuitState

    @property
    def transitioned(self) -> bool:
        return self.previous is not self.current


class CircuitBreaker:
    """Consecutive-failure circuit breaker with manual recovery."""

    def __init__(
        self,
        failure_threshold: int,
        reset_timeout_ms: int,
        *,
        event_sink: EventSink | None = None,
        clock: Clock | None = None,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self._failure_threshold = failure_threshold
        self._reset_timeout_ms = reset_timeout_ms
        self._event_sink = event_sink
        self._clock = clock or _epoch_ms

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: int | None = None
        self._last_state_transition = self._clock()
        self._failure_history: list[FailureRecord] = []

    @property
    def failure_threshold(self) -> int:
        return self._failure_threshold

    @property
    def reset_timeout_ms(self) -> int:
        return self._reset_timeout_ms

    @property
    def state(self) -> CircuitState:
        return self._state

    def get_state(self) -> CircuitBreakerState:
        return CircuitBreakerState(
            state=self._state,
            failure_count=self._failure_count,
            last_failure_time=self._last_failure_time,
            last_state_transition=self._last_state_transition,
            failure_history=tuple(self._failure_history),
        )

    async def execute(self, operation: Operation[T]) -> T:
        """Run ``operation`` through the breaker.

        Open circuits raise ``CIRCUIT_OPEN`` without touching ``operation``.
        Failures from ``operation`` are recorded and re-raised unchanged.
        """

        if self._state is CircuitState.OPEN:
            raise ResilienceError(
                ErrorCode.CIRCUIT_OPEN,
                f"Circuit breaker is open after {self._failure_count} consecutive failures",
                {"state": self.get_state().to_dict()},
            )

        if self._state is CircuitState.HALF_OPEN:
            return await self._execute_probe(operation)
        return await self._execute_closed(operation)

    def reset(self) -> CircuitResetResult:
        """Move ``open`` to ``half-open``; any other state is left as-is."""

        previous = self._state
        if previous is CircuitState.OPEN:
            self._transition_to(CircuitState.HALF_OPEN)
        return CircuitResetResult(previous=previous, current=self._state)

    async def _execute_closed(self, operation: Operation[T]) -> T:
        try:
            result = await _invoke(operation)
        except Exception as exc:
            self._on_failure(exc)
            raise
        self._failure_count = 0
        return result

    async def _execute_probe(self, operation: Operation[T]) -> T:
        try:
            result = await _invoke(operation)
        except Exception as exc:
            self._record_failure(exc)
            self._transition_to(CircuitState.OPEN)
            self._emit_open(exc)
            raise

        self._transition_to(CircuitState.CLOSED)
        self._failure_count = 0
        self._failure_history.clear()
        publish(self._event_sink, ResilienceEvent.CIRCUIT_CLOSED, {"probeSucceeded": True})
        return result

    def _on_failure(self, exc: Exception) -> None:
        self._record_failure(exc)
        if self._failure_count >= self._failure_threshold:
            self._transition_to(CircuitState.OPEN)
            self._emit_open(exc)

    def _record_failure(self, exc: Exception) -> None:
        now = self._clock()
        self._failure_count += 1
        self._last_failure_time = now
        self._failure_history.append(FailureRecord(error=_error_text(exc), timestamp=now))
        if len(self._failure_history) > FAILURE_HISTORY_LIMIT:
            del self._failure_history[:-FAILURE_HISTORY_LIMIT]
        logger.debug(
            "circuit failure %d/%d: %s",
            self._failure_count,
            self._failure_threshold,
            _error_text(exc),
        )

    def _transition_to(self, new_state: CircuitState) -> None:
        previous = self._state
        self._state = new_state
        self._last_state_transition = self._clock()
        level = logging.WARNING if new_state is CircuitState.OPEN else logging.INFO
        logger.log(level, "circuit %s -> %s", previous.value, new_state.value)
        if new_state is CircuitState.HALF_OPEN:
            publish(self._event_sink, ResilienceEvent.CIRCUIT_HALF_OPEN, {})

    def _emit_open(self, exc: Exception) -> None:
        publish(
            self._event_sink,
            ResilienceEvent.CIRCUIT_OPEN,
            {"failureCount": self._failure_count, "lastError": _error_text(exc)},
        )


async def _invoke(operation: Operation[T]) -> T:
    result = operation()
    if inspect.isawaitable(result):
        return await result
    return result


def _error_text(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


def _epoch_ms() -> int:
    return int(time.time() * 1000)


__all__ = [
    "CircuitBreaker",
    "CircuitBreakerState",
    "CircuitResetResult",
    "CircuitState",
    "FailureRecord",
]
