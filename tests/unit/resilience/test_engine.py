"""
argus-resilience — unit tests for the per-project resilience engine

File: tests/unit/resilience/test_engine.py

Purpose
- Validate component wiring from config, breaker isolation between
  engines, preflight auto-fix, labelled restarts, and manual circuit reset.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from argus_resilience.config.schema import ConfigValidationError, default_config, merge_config
from argus_resilience.resilience.circuit_breaker import CircuitState
from argus_resilience.resilience.container_guardian import RestartOutcome
from argus_resilience.resilience.engine import ResilienceEngine
from argus_resilience.resilience.error_codes import ErrorCode, ResilienceError
from argus_resilience.resilience.port_resolver import ContainerSpec, PortStrategy, ServiceDefinition
from argus_resilience.resilience.preflight import CHECK_DISK_SPACE, CHECK_DOCKER_DAEMON
from argus_resilience.resilience.resilient_runtime import ResilientRuntime
from argus_resilience.runtime.docker import ContainerStatus, RunOptions, RuntimeCommandError

if TYPE_CHECKING:
    from conftest import FakeRuntime, RecordingEventSink, RecordingSleeper

_DF = "Filesystem 1G-blocks Used Available Use% Mounted\n/dev/sda1 100G 50G 40G 50% /\n"


async def _df(_argv: object, _timeout: float) -> str:
    return _DF


def _engine(
    runtime: FakeRuntime,
    config: dict[str, object] | None = None,
    *,
    sink: RecordingEventSink | None = None,
    sleeper: RecordingSleeper | None = None,
    busy_ports: frozenset[int] = frozenset(),
    project: str = "shop",
) -> ResilienceEngine:
    async def probe(port: int) -> bool:
        return port in busy_ports

    return ResilienceEngine(
        project,
        "run-current",
        merge_config(default_config(), config or {}),
        runtime=runtime,
        event_sink=sink,
        port_probe=probe,
        pid_lookup=lambda _port: None,
        sleep=sleeper,
        settle_seconds=0.0,
        platform="linux",
        command_runner=_df,
    )


def test_default_engine_wraps_runtime_in_breaker(fake_runtime: FakeRuntime) -> None:
    engine = _engine(fake_runtime)

    assert isinstance(engine.runtime, ResilientRuntime)
    assert engine.circuit_breaker is not None
    assert engine.circuit_breaker.failure_threshold == 5
    assert engine.circuit_breaker.reset_timeout_ms == 30_000
    assert engine.port_resolver.strategy is PortStrategy.AUTO
    assert engine.guardian.base_delay_ms == 2000
    assert engine.orphan_cleaner.run_id == "run-current"


def test_disabled_breaker_uses_raw_runtime(fake_runtime: FakeRuntime) -> None:
    engine = _engine(fake_runtime, {"circuit_breaker": {"enabled": False}})

    assert engine.runtime is fake_runtime
    assert engine.circuit_breaker is None
    assert engine.circuit_state() is None
    with pytest.raises(ValueError, match="No circuit breaker"):
        engine.reset_circuit()


def test_invalid_config_is_rejected(fake_runtime: FakeRuntime) -> None:
    with pytest.raises(ConfigValidationError):
        _engine(fake_runtime, {"network": {"port_conflict_strategy": "retry"}})


def test_engines_do_not_share_breakers(fake_runtime: FakeRuntime) -> None:
    first = _engine(fake_runtime, project="shop")
    second = _engine(fake_runtime, project="billing")

    assert first.circuit_breaker is not second.circuit_breaker


def test_managed_labels(fake_runtime: FakeRuntime) -> None:
    labels = _engine(fake_runtime).managed_labels()

    assert labels["argusai.managed"] == "true"
    assert labels["argusai.project"] == "shop"
    assert labels["argusai.run-id"] == "run-current"
    assert labels["argusai.created-at"].endswith("+00:00")


async def test_run_preflight_without_auto_fix(fake_runtime: FakeRuntime) -> None:
    outcome = await _engine(fake_runtime).run_preflight()

    assert outcome.health_report.check(CHECK_DOCKER_DAEMON) is not None
    assert outcome.health_report.check(CHECK_DISK_SPACE) is not None
    assert outcome.auto_fix_applied is False
    assert outcome.cleanup is None
    assert outcome.circuit_breaker_state is not None
    assert outcome.circuit_breaker_state.state is CircuitState.CLOSED
    assert "cleanup" not in outcome.to_dict()


async def test_run_preflight_auto_fix_cleans_orphans(
    fake_runtime: FakeRuntime, event_sink: RecordingEventSink
) -> None:
    fake_runtime.exec_default = "c1\tshop-db-old\targusai.run-id=run-old"
    engine = _engine(fake_runtime, sink=event_sink)

    outcome = await engine.run_preflight(auto_fix=True, skip_disk_check=True)

    assert outcome.auto_fix_applied is True
    assert outcome.cleanup is not None
    assert len(outcome.cleanup.removed) == 3
    assert ("rm", "-f", "c1") in fake_runtime.exec_calls()
    assert "cleanup_end" in event_sink.events()
    assert outcome.to_dict()["autoFixApplied"] is True


async def test_clean_orphans_config_triggers_cleanup(fake_runtime: FakeRuntime) -> None:
    engine = _engine(fake_runtime, {"preflight": {"clean_orphans": True}})

    outcome = await engine.run_preflight()

    assert outcome.auto_fix_applied is True


async def test_disabled_preflight_only_checks_daemon(fake_runtime: FakeRuntime) -> None:
    engine = _engine(fake_runtime, {"preflight": {"enabled": False}})

    outcome = await engine.run_preflight()

    assert [c.name for c in outcome.health_report.checks] == [CHECK_DOCKER_DAEMON]


async def test_preflight_reaches_daemon_while_circuit_is_open(fake_runtime: FakeRuntime) -> None:
    engine = _engine(fake_runtime, {"circuit_breaker": {"failure_threshold": 1}})
    fake_runtime.exec_default = RuntimeCommandError(["docker", "ps"], 1, "daemon down")
    with pytest.raises(RuntimeCommandError):
        await engine.runtime.runtime_exec(["ps"])
    fake_runtime.exec_default = ""

    outcome = await engine.run_preflight(skip_disk_check=True, skip_orphan_check=True)

    assert outcome.health_report.checks[0].message == "Docker daemon is reachable"
    assert outcome.circuit_breaker_state is not None
    assert outcome.circuit_breaker_state.state is CircuitState.OPEN


async def test_resolve_ports_uses_configured_strategy(fake_runtime: FakeRuntime) -> None:
    engine = _engine(
        fake_runtime,
        {"network": {"port_conflict_strategy": "fail"}},
        busy_ports=frozenset({5432}),
    )
    services = [ServiceDefinition("db", ContainerSpec(image="postgres", ports=("5432:5432",)))]

    with pytest.raises(ResilienceError) as excinfo:
        await engine.resolve_ports(services)

    assert excinfo.value.code == ErrorCode.PORT_CONFLICT.value


async def test_guard_container_stamps_run_labels(
    fake_runtime: FakeRuntime, sleeper: RecordingSleeper
) -> None:
    fake_runtime.statuses["shop-db"] = [ContainerStatus.EXITED, ContainerStatus.RUNNING]
    engine = _engine(fake_runtime, sleeper=sleeper)

    history = await engine.guard_container("shop-db", RunOptions(name="shop-db", image="postgres"))

    assert history is not None
    assert fake_runtime.started[0].labels["argusai.project"] == "shop"
    assert fake_runtime.started[0].labels["argusai.run-id"] == "run-current"


async def test_missing_container_diagnostics_do_not_open_circuit(
    fake_runtime: FakeRuntime, sleeper: RecordingSleeper
) -> None:
    gone = RuntimeCommandError(["docker", "inspect"], 1, "No such container: shop-db")
    fake_runtime.statuses["shop-db"] = [ContainerStatus.EXITED, ContainerStatus.RUNNING]
    fake_runtime.exec_default = gone
    fake_runtime.logs["shop-db"] = gone
    fake_runtime.start_results = [
        RuntimeCommandError(["docker", "run"], 125, "port is already allocated"),
        RuntimeCommandError(["docker", "run"], 125, "port is already allocated"),
        "abcdef123456",
    ]
    engine = _engine(fake_runtime, sleeper=sleeper)

    history = await engine.guard_container("shop-db", RunOptions(name="shop-db", image="postgres"))

    assert history is not None
    assert history.final_status is RestartOutcome.RECOVERED
    assert len(history.attempts) == 3
    assert fake_runtime.call_kinds().count("start") == 3
    state = engine.circuit_state()
    assert state is not None
    assert state.state is CircuitState.CLOSED
    assert len(state.failure_history) == 2


async def test_verify_network_disabled_returns_none(fake_runtime: FakeRuntime) -> None:
    engine = _engine(fake_runtime, {"network": {"verify_connectivity": False}})

    assert await engine.verify_network("runner", [], "shop-net") is None
    assert fake_runtime.calls == []


async def test_verify_network_with_no_services_is_reachable(fake_runtime: FakeRuntime) -> None:
    report = await _engine(fake_runtime).verify_network("runner", [], "shop-net")

    assert report is not None
    assert report.all_reachable is True


async def test_reset_circuit_transitions_open_breaker(fake_runtime: FakeRuntime) -> None:
    engine = _engine(fake_runtime, {"circuit_breaker": {"failure_threshold": 1}})
    fake_runtime.exec_default = RuntimeCommandError(["docker", "ps"], 1, "daemon down")
    with pytest.raises(RuntimeCommandError):
        await engine.runtime.runtime_exec(["ps"])

    report = engine.reset_circuit()

    assert report.previous_state is CircuitState.OPEN
    assert report.current_state is CircuitState.HALF_OPEN
    assert report.message == 'Circuit breaker transitioned from "open" to "half-open"'
    assert len(report.failure_history) == 1
    assert "daemon down" in report.failure_history[0]["error"]
    assert report.to_dict()["previousState"] == "open"


def test_reset_circuit_when_closed_is_a_no_op(fake_runtime: FakeRuntime) -> None:
    report = _engine(fake_runtime).reset_circuit()

    assert report.previous_state is CircuitState.CLOSED
    assert report.current_state is CircuitState.CLOSED
    assert report.message == 'Circuit breaker already in "closed" state; no action taken'
    assert report.failure_history == ()
