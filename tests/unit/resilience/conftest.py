"""Shared fakes for resilience component tests: an in-memory runtime and an event recorder."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import pytest

from argus_resilience.runtime.docker import ContainerStatus, RunOptions
from argus_resilience.utils.concurrency import CancellationToken

ExecResponse = str | BaseException | Callable[[tuple[str, ...]], str]


class RecordingEventSink:
    """Event sink that keeps every ``(channel, message)`` pair."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, Mapping[str, Any]]] = []

    def emit(self, channel: str, message: Mapping[str, Any]) -> None:
        self.messages.append((channel, message))

    def events(self) -> list[str]:
        return [str(message["event"]) for _, message in self.messages]

    def payloads(self, event: str) -> list[Mapping[str, Any]]:
        return [message["data"] for _, message in self.messages if message["event"] == event]


@dataclass
class FakeRuntime:
    """Scriptable ``ContainerRuntime``.

    ``statuses`` maps a container to the statuses returned by successive
    ``get_container_status`` calls; the last one sticks. ``exec_responses``
    maps an exact argument tuple to a string, an exception to raise, or a
    callable; unknown commands return ``exec_default``.
    """

    statuses: dict[str, list[ContainerStatus]] = field(default_factory=dict)
    logs: dict[str, str | BaseException] = field(default_factory=dict)
    exec_responses: dict[tuple[str, ...], ExecResponse] = field(default_factory=dict)
    exec_default: ExecResponse = ""
    start_results: list[str | BaseException] = field(default_factory=list)
    info_result: str | BaseException = "Server Version: 27.0.0"
    calls: list[tuple[str, tuple[Any, ...]]] = field(default_factory=list)
    started: list[RunOptions] = field(default_factory=list)

    async def get_container_status(self, name: str) -> ContainerStatus:
        self.calls.append(("status", (name,)))
        queue = self.statuses.get(name)
        if not queue:
            return ContainerStatus.UNKNOWN
        if len(queue) > 1:
            return queue.pop(0)
        return queue[0]

    async def get_container_logs(self, name: str, tail_lines: int = 100) -> str:
        self.calls.append(("logs", (name, tail_lines)))
        value = self.logs.get(name, "")
        if isinstance(value, BaseException):
            raise value
        return value

    async def stop_container(self, name: str) -> None:
        self.calls.append(("stop", (name,)))

    async def start_container(self, options: RunOptions) -> str:
        self.calls.append(("start", (options.name,)))
        self.started.append(options)
        result = self.start_results.pop(0) if self.start_results else "abcdef123456"
        if isinstance(result, BaseException):
            raise result
        return result

    async def runtime_exec(self, args: Sequence[str], timeout_seconds: float = 15.0) -> str:
        key = tuple(args)
        self.calls.append(("exec", key))
        response = self.exec_responses.get(key, self.exec_default)
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response(key)
        return response

    async def info(self, timeout_seconds: float = 5.0) -> str:
        self.calls.append(("info", (timeout_seconds,)))
        if isinstance(self.info_result, BaseException):
            raise self.info_result
        return self.info_result

    def exec_calls(self) -> list[tuple[str, ...]]:
        return [args for kind, args in self.calls if kind == "exec"]

    def call_kinds(self) -> list[str]:
        return [kind for kind, _ in self.calls]


class RecordingSleeper:
    """Injected sleep that records requested durations instead of waiting."""

    def __init__(self) -> None:
        self.durations: list[float] = []

    async def __call__(self, seconds: float, cancel_token: CancellationToken | None = None) -> None:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        self.durations.append(seconds)


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def event_sink() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture
def sleeper() -> RecordingSleeper:
    return RecordingSleeper()
