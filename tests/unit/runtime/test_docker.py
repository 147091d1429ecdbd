"""
argus-resilience — unit tests for the docker CLI runtime adapter

File: tests/unit/runtime/test_docker.py

Purpose
- Validate ``docker run`` argument construction, subprocess failure mapping,
  and the status/start/stop contract of ``DockerCLIRuntime`` without a daemon.
"""

from __future__ import annotations

import asyncio
import socket

import pytest

from argus_resilience.runtime import docker as docker_module
from argus_resilience.runtime.docker import (
    ContainerRuntime,
    ContainerStatus,
    DockerCLIRuntime,
    HealthcheckOptions,
    RunOptions,
    RuntimeCommandError,
    build_run_args,
    is_port_in_use,
    run_command,
)


class _FakeProcess:
    def __init__(self, stdout: bytes, stderr: bytes, returncode: int, delay: float) -> None:
        self._stdout = stdout
        self._stderr = stderr
        self._final_returncode = returncode
        self._delay = delay
        self.returncode: int | None = None
        self.killed = False
        self.waited = False

    async def communicate(self) -> tuple[bytes, bytes]:
        if self._delay:
            await asyncio.sleep(self._delay)
        self.returncode = self._final_returncode
        return self._stdout, self._stderr

    def kill(self) -> None:
        self.killed = True

    async def wait(self) -> int:
        self.waited = True
        if self.returncode is None:
            self.returncode = -9 if self.killed else self._final_returncode
        return self.returncode


class _Spawner:
    def __init__(
        self,
        *,
        stdout: bytes = b"",
        stderr: bytes = b"",
        returncode: int = 0,
        delay: float = 0.0,
        error: OSError | None = None,
    ) -> None:
        self.stdout = stdout
        self.stderr = stderr
        self.returncode = returncode
        self.delay = delay
        self.error = error
        self.argv: list[tuple[str, ...]] = []
        self.processes: list[_FakeProcess] = []

    async def __call__(self, *argv: str, **_kwargs: object) -> _FakeProcess:
        self.argv.append(tuple(argv))
        if self.error is not None:
            raise self.error
        proc = _FakeProcess(self.stdout, self.stderr, self.returncode, self.delay)
        self.processes.append(proc)
        return proc


def _install(monkeypatch: pytest.MonkeyPatch, spawner: _Spawner) -> _Spawner:
    monkeypatch.setattr(docker_module.asyncio, "create_subprocess_exec", spawner)
    return spawner


def test_build_run_args_orders_flags_before_image() -> None:
    options = RunOptions(
        name="shop-db",
        image="postgres:16",
        ports=("5433:5432",),
        environment={"POSTGRES_DB": "shop"},
        volumes=("data:/var/lib/postgresql/data",),
        network="shop-net",
        labels={"argusai.managed": "true"},
        healthcheck=HealthcheckOptions(cmd="pg_isready", retries=5),
    )

    assert build_run_args(options) == [
        "run",
        "-d",
        "--name",
        "shop-db",
        "--network",
        "shop-net",
        "-p",
        "5433:5432",
        "-e",
        "POSTGRES_DB=shop",
        "-v",
        "data:/var/lib/postgresql/data",
        "--label",
        "argusai.managed=true",
        "--health-cmd",
        "pg_isready",
        "--health-interval",
        "10s",
        "--health-timeout",
        "5s",
        "--health-retries",
        "5",
        "--health-start-period",
        "0s",
        "postgres:16",
    ]


def test_build_run_args_minimal() -> None:
    assert build_run_args(RunOptions(name="cache", image="redis")) == [
        "run",
        "-d",
        "--name",
        "cache",
        "redis",
    ]


def test_with_labels_overlays_without_mutating() -> None:
    original = RunOptions(name="db", image="postgres", labels={"team": "a", "tier": "db"})

    updated = original.with_labels({"team": "b", "argusai.run-id": "run-1"})

    assert updated.labels == {"team": "b", "tier": "db", "argusai.run-id": "run-1"}
    assert original.labels == {"team": "a", "tier": "db"}
    assert updated.name == "db"


def test_runtime_command_error_renders_command_and_stderr() -> None:
    error = RuntimeCommandError(["docker", "ps"], 1, "  daemon not running\n")

    assert error.argv == ("docker", "ps")
    assert error.returncode == 1
    assert str(error) == "`docker ps` failed (exit 1): daemon not running"
    assert "no output" in str(RuntimeCommandError(["docker"], None, ""))


async def test_run_command_returns_stripped_stdout(monkeypatch: pytest.MonkeyPatch) -> None:
    spawner = _install(monkeypatch, _Spawner(stdout=b"hello\n"))

    assert await run_command(["docker", "version"], 1.0) == "hello"
    assert spawner.argv == [("docker", "version")]


async def test_run_command_non_zero_exit(monkeypatch: pytest.MonkeyPatch) -> None:
    _install(monkeypatch, _Spawner(stderr=b"No such container: db", returncode=1))

    with pytest.raises(RuntimeCommandError) as excinfo:
        await run_command(["docker", "inspect", "db"], 1.0)

    assert excinfo.value.returncode == 1
    assert excinfo.value.stderr == "No such container: db"
    assert excinfo.value.argv == ("docker", "inspect", "db")


async def test_run_command_spawn_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    _install(monkeypatch, _Spawner(error=FileNotFoundError(2, "No such file", "docker")))

    with pytest.raises(RuntimeCommandError) as excinfo:
        await run_command(["docker", "info"], 1.0)

    assert excinfo.value.returncode is None


async def test_run_command_timeout_kills_process(monkeypatch: pytest.MonkeyPatch) -> None:
    spawner = _install(monkeypatch, _Spawner(delay=5.0))

    with pytest.raises(RuntimeCommandError, match="timed out"):
        await run_command(["docker", "info"], 0.01)

    assert spawner.processes[0].killed is True
    assert spawner.processes[0].waited is True
    assert spawner.processes[0].returncode == -9


async def test_run_command_cancellation_reaps_process(monkeypatch: pytest.MonkeyPatch) -> None:
    spawner = _install(monkeypatch, _Spawner(delay=5.0))

    task = asyncio.create_task(run_command(["docker", "logs", "shop-db"], 30.0))
    while not spawner.processes:
        await asyncio.sleep(0)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert spawner.processes[0].killed is True
    assert spawner.processes[0].waited is True


def test_cli_runtime_satisfies_protocol() -> None:
    assert isinstance(DockerCLIRuntime(), ContainerRuntime)


@pytest.mark.parametrize(
    ("stdout", "expected"),
    [
        (b"running\n", ContainerStatus.RUNNING),
        (b"exited", ContainerStatus.EXITED),
        (b"sleeping", ContainerStatus.UNKNOWN),
    ],
)
async def test_status_mapping(
    monkeypatch: pytest.MonkeyPatch, stdout: bytes, expected: ContainerStatus
) -> None:
    spawner = _install(monkeypatch, _Spawner(stdout=stdout))

    assert await DockerCLIRuntime().get_container_status("db") is expected
    assert spawner.argv[0] == ("docker", "inspect", "--format", "{{.State.Status}}", "db")


async def test_status_is_unknown_when_inspect_fails(monkeypatch: pytest.MonkeyPatch) -> None:
    _install(monkeypatch, _Spawner(stderr=b"No such object", returncode=1))

    assert await DockerCLIRuntime().get_container_status("ghost") is ContainerStatus.UNKNOWN


async def test_start_returns_short_container_id(monkeypatch: pytest.MonkeyPatch) -> None:
    spawner = _install(monkeypatch, _Spawner(stdout=b"0123456789abcdef0123456789abcdef\n"))

    container_id = await DockerCLIRuntime(binary="podman").start_container(
        RunOptions(name="db", image="postgres")
    )

    assert container_id == "0123456789ab"
    assert spawner.argv[0][:2] == ("podman", "run")


async def test_stop_swallows_runtime_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    spawner = _install(monkeypatch, _Spawner(stderr=b"No such container", returncode=1))

    await DockerCLIRuntime().stop_container("db")

    assert spawner.argv == [("docker", "rm", "-f", "db")]


async def test_logs_uses_tail(monkeypatch: pytest.MonkeyPatch) -> None:
    spawner = _install(monkeypatch, _Spawner(stdout=b"line1\nline2\n"))

    assert await DockerCLIRuntime().get_container_logs("db", 20) == "line1\nline2"
    assert spawner.argv[0] == ("docker", "logs", "--tail=20", "db")


async def test_is_port_in_use_detects_bound_listener() -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as holder:
        holder.bind(("127.0.0.1", 0))
        holder.listen(1)
        port = holder.getsockname()[1]

        assert await is_port_in_use(port) is True


async def test_is_port_in_use_false_for_free_port() -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
        probe.bind(("127.0.0.1", 0))
        port = probe.getsockname()[1]

    assert await is_port_in_use(port) is False
