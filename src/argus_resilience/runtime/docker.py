"""
argus-resilience — container runtime collaborator.

File: src/argus_resilience/runtime/docker.py

Purpose
- Narrow async contract the resilience components use to talk to a container
  runtime, plus the default adapter that shells out to the ``docker`` CLI.

Contents
- ``ContainerRuntime`` protocol and ``RunOptions`` / ``HealthcheckOptions`` values.
- ``DockerCLIRuntime``: subprocess-backed implementation with bounded timeouts.
- ``build_run_args`` and the ``is_port_in_use`` socket-bind probe.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import socket
from collections.abc import Mapping, Sequence
from contextlib import suppress
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Protocol, runtime_checkable

from argus_resilience.constants import (
    CONTAINER_ID_LENGTH,
    EXEC_TIMEOUT_SECONDS,
    INSPECT_TIMEOUT_SECONDS,
    LOGS_TIMEOUT_SECONDS,
    RUNTIME_INFO_TIMEOUT_SECONDS,
    START_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)


class ContainerStatus(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    PAUSED = "paused"
    RESTARTING = "restarting"
    REMOVING = "removing"
    EXITED = "exited"
    DEAD = "dead"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class HealthcheckOptions:
    cmd: str
    interval: str = "10s"
    timeout: str = "5s"
    retries: int = 3
    start_period: str = "0s"


@dataclass(frozen=True, slots=True)
class RunOptions:
    """Everything needed to (re)create one container."""

    name: str
    image: str
    ports: tuple[str, ...] = ()
    environment: Mapping[str, str] = field(default_factory=dict)
    volumes: tuple[str, ...] = ()
    network: str | None = None
    labels: Mapping[str, str] = field(default_factory=dict)
    healthcheck: HealthcheckOptions | None = None

    def with_labels(self, extra: Mapping[str, str]) -> RunOptions:
        """Return a copy whose labels are ``self.labels`` overlaid with ``extra``."""

        return replace(self, labels={**self.labels, **extra})


class RuntimeCommandError(RuntimeError):
    """A runtime CLI invocation failed, timed out, or could not be spawned."""

    def __init__(self, argv: Sequence[str], returncode: int | None, stderr: str) -> None:
        self.argv = tuple(argv)
        self.returncode = returncode
        self.stderr = stderr
        command = " ".join(self.argv)
        detail = stderr.strip() or "no output"
        super().__init__(f"`{command}` failed (exit {returncode}): {detail}")


@runtime_checkable
class ContainerRuntime(Protocol):
    """Operations the resilience components need from a container runtime."""

    async def get_container_status(self, name: str) -> ContainerStatus: ...

    async def get_container_logs(self, name: str, tail_lines: int = 100) -> str: ...

    async def stop_container(self, name: str) -> None: ...

    async def start_container(self, options: RunOptions) -> str: ...

    async def runtime_exec(
        self, args: Sequence[str], timeout_seconds: float = EXEC_TIMEOUT_SECONDS
    ) -> str: ...

    async def info(self, timeout_seconds: float = RUNTIME_INFO_TIMEOUT_SECONDS) -> str: ...


def build_run_args(options: RunOptions) -> list[str]:
    """Translate ``options`` into ``docker run`` arguments (without the binary)."""

    args = ["run", "-d", "--name", options.name]
    if options.network:
        args.extend(["--network", options.network])
    for port in options.ports:
        args.extend(["-p", port])
    for key, value in options.environment.items():
        args.extend(["-e", f"{key}={value}"])
    for volume in options.volumes:
        args.extend(["-v", volume])
    for key, value in options.labels.items():
        args.extend(["--label", f"{key}={value}"])
    if options.healthcheck is not None:
        check = options.healthcheck
        args.extend(
            [
                "--health-cmd",
                check.cmd,
                "--health-interval",
                check.interval,
                "--health-timeout",
                check.timeout,
                "--health-retries",
                str(check.retries),
                "--health-start-period",
                check.start_period,
            ]
        )
    args.append(options.image)
    return args


class DockerCLIRuntime:
    """``ContainerRuntime`` backed by the ``docker`` executable."""

    def __init__(self, *, binary: str = "docker") -> None:
        self._binary = binary

    async def get_container_status(self, name: str) -> ContainerStatus:
        try:
            output = await self.runtime_exec(
                ["inspect", "--format", "{{.State.Status}}", name],
                timeout_seconds=INSPECT_TIMEOUT_SECONDS,
            )
        except RuntimeCommandError as exc:
            logger.debug("status lookup failed for %s: %s", name, exc)
            return ContainerStatus.UNKNOWN
        try:
            return ContainerStatus(output.strip())
        except ValueError:
            return ContainerStatus.UNKNOWN

    async def get_container_logs(self, name: str, tail_lines: int = 100) -> str:
        return await self.runtime_exec(
            ["logs", f"--tail={tail_lines}", name], timeout_seconds=LOGS_TIMEOUT_SECONDS
        )

    async def stop_container(self, name: str) -> None:
        # Force-remove so the name is free for the next ``run``.
        try:
            await self.runtime_exec(["rm", "-f", name], timeout_seconds=INSPECT_TIMEOUT_SECONDS)
        except RuntimeCommandError as exc:
            logger.debug("stop of %s reported failure: %s", name, exc)

    async def start_container(self, options: RunOptions) -> str:
        output = await self.runtime_exec(
            build_run_args(options), timeout_seconds=START_TIMEOUT_SECONDS
        )
        return output.strip()[:CONTAINER_ID_LENGTH]

    async def runtime_exec(
        self, args: Sequence[str], timeout_seconds: float = EXEC_TIMEOUT_SECONDS
    ) -> str:
        return await run_command([self._binary, *args], timeout_seconds)

    async def info(self, timeout_seconds: float = RUNTIME_INFO_TIMEOUT_SECONDS) -> str:
        return await self.runtime_exec(["info"], timeout_seconds=timeout_seconds)


async def run_command(argv: Sequence[str], timeout_seconds: float) -> str:
    """Run ``argv`` and return stripped stdout.

    Raises ``RuntimeCommandError`` when the process cannot be spawned, exceeds
    ``timeout_seconds``, or exits non-zero.

    On timeout or cancellation the child is killed and reaped before the
    error propagates.
    """

    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise RuntimeCommandError(argv, None, str(exc)) from exc

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            proc.communicate(), timeout=timeout_seconds
        )
    except (TimeoutError, asyncio.TimeoutError) as exc:
        await _kill_and_reap(proc)
        raise RuntimeCommandError(argv, None, f"timed out after {timeout_seconds}s") from exc
    except asyncio.CancelledError:
        await _kill_and_reap(proc)
        raise

    stdout = stdout_bytes.decode("utf-8", errors="replace").strip()
    if proc.returncode != 0:
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        raise RuntimeCommandError(argv, proc.returncode, stderr)
    return stdout


async def is_port_in_use(port: int, host: str = "127.0.0.1") -> bool:
    """Return ``True`` only when binding ``host:port`` fails with ``EADDRINUSE``."""

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError as exc:
            return exc.errno == errno.EADDRINUSE
    return False


async def _kill_and_reap(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        with suppress(ProcessLookupError):
            proc.kill()
    await proc.wait()


__all__ = [
    "ContainerRuntime",
    "ContainerStatus",
    "DockerCLIRuntime",
    "HealthcheckOptions",
    "RunOptions",
    "RuntimeCommandError",
    "build_run_args",
    "is_port_in_use",
    "run_command",
]
