"""
argus-resilience — host port conflict detection and reassignment.

File: src/argus_resilience/resilience/port_resolver.py

Purpose
- Probe every requested host port before containers are created and either
  move conflicting ports to the next free one (``auto``) or fail fast (``fail``).

Notes
- Availability is a point-in-time probe with no reservation; a port reported
  free can be taken before the caller binds it.
- Inputs are never mutated. Rewritten copies are returned together with one
  ``PortMapping`` per requested port.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Final

import psutil

from argus_resilience.constants import (
    DEFAULT_PORT_SEARCH_ATTEMPTS,
    MAX_PORT,
    MIN_UNPRIVILEGED_PORT,
    PID_LOOKUP_TIMEOUT_SECONDS,
)
from argus_resilience.observability.events import EventSink, ResilienceEvent, publish
from argus_resilience.resilience.error_codes import ErrorCode, ResilienceError
from argus_resilience.runtime.docker import is_port_in_use
from argus_resilience.utils.concurrency import CancellationToken

logger = logging.getLogger(__name__)

PortProbe = Callable[[int], Awaitable[bool]]
PidLookup = Callable[[int], "int | None"]

_CONTAINER_KEYS: Final[frozenset[str]] = frozenset({"image", "ports", "environment", "volumes"})


class PortStrategy(str, Enum):
    AUTO = "auto"
    FAIL = "fail"


@dataclass(frozen=True, slots=True)
class ContainerSpec:
    """Container section of a service definition.

    ``ports`` are ``host:container[/proto]`` strings. Keys not modelled here
    (``name``, ``healthcheck``, ...) ride along in ``options``.
    """

    image: str = ""
    ports: tuple[str, ...] = ()
    environment: Mapping[str, str] = field(default_factory=dict)
    volumes: tuple[str, ...] = ()
    options: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> ContainerSpec:
        return cls(
            image=str(payload.get("image", "")),
            ports=tuple(str(item) for item in payload.get("ports", ())),
            environment={str(k): str(v) for k, v in (payload.get("environment") or {}).items()},
            volumes=tuple(str(item) for item in payload.get("volumes", ())),
            options={k: v for k, v in payload.items() if k not in _CONTAINER_KEYS},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.options,
            "image": self.image,
            "ports": list(self.ports),
            "environment": dict(self.environment),
            "volumes": list(self.volumes),
        }


@dataclass(frozen=True, slots=True)
class ServiceDefinition:
    name: str
    container: ContainerSpec = field(default_factory=ContainerSpec)
    options: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> ServiceDefinition:
        container = payload.get("container") or {}
        return cls(
            name=str(payload["name"]),
            container=ContainerSpec.from_dict(container),
            options={k: v for k, v in payload.items() if k not in ("name", "container")},
        )

    def to_dict(self) -> dict[str, Any]:
        return {**self.options, "name": self.name, "container": self.container.to_dict()}


@dataclass(frozen=True, slots=True)
class MockServiceConfig:
    """A mock HTTP service; only ``port`` matters here, the rest is carried through."""

    port: int
    options: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> MockServiceConfig:
        options = {key: value for key, value in payload.items() if key != "port"}
        return cls(port=int(payload["port"]), options=options)


@dataclass(frozen=True, slots=True)
class PortMapping:
    service: str
    original_port: int
    actual_port: int
    reassigned: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "service": self.service,
            "originalPort": self.original_port,
            "actualPort": self.actual_port,
            "reassigned": self.reassigned,
        }


@dataclass(frozen=True, slots=True)
class PortResolution:
    services: tuple[ServiceDefinition, ...]
    mocks: Mapping[str, MockServiceConfig]
    port_mappings: tuple[PortMapping, ...]

    @property
    def reassigned(self) -> tuple[PortMapping, ...]:
        return tuple(mapping for mapping in self.port_mappings if mapping.reassigned)


def lookup_listening_pid(port: int) -> int | None:
    """Best-effort owner lookup from the OS connection table."""

    try:
        connections = psutil.net_connections(kind="inet")
    except (psutil.Error, OSError):
        return None
    for conn in connections:
        if conn.pid is None or not conn.laddr:
            continue
        if conn.laddr.port == port:
            return conn.pid
    return None


class PortResolver:
    """Resolve host-port conflicts for services and mocks."""

    def __init__(
        self,
        strategy: PortStrategy | str,
        *,
        port_probe: PortProbe | None = None,
        pid_lookup: PidLookup | None = None,
        event_sink: EventSink | None = None,
    ) -> None:
        self._strategy = PortStrategy(strategy)
        self._port_probe = port_probe or is_port_in_use
        self._pid_lookup = pid_lookup or lookup_listening_pid
        self._event_sink = event_sink

    @property
    def strategy(self) -> PortStrategy:
        return self._strategy

    async def find_available_port(
        self,
        start_port: int,
        max_attempts: int = DEFAULT_PORT_SEARCH_ATTEMPTS,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> int:
        """Return the first free port at or above ``max(start_port, 1024)``.

        Raises ``PORT_EXHAUSTION`` after ``max_attempts`` occupied probes or on
        running past 65535.
        """

        port = max(start_port, MIN_UNPRIVILEGED_PORT)
        for _ in range(max_attempts):
            if port > MAX_PORT:
                break
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            if not await self._port_probe(port):
                return port
            port += 1

        raise ResilienceError(
            ErrorCode.PORT_EXHAUSTION,
            f"No available port found after {max_attempts} attempts starting from {start_port}",
            {"startPort": start_port, "maxAttempts": max_attempts},
        )

    async def resolve_service_ports(
        self,
        services: Sequence[ServiceDefinition | Mapping[str, Any]],
        mocks: Mapping[str, MockServiceConfig | Mapping[str, Any]] | None = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> PortResolution:
        mappings: list[PortMapping] = []
        resolved_services: list[ServiceDefinition] = []
        resolved_mocks: dict[str, MockServiceConfig] = {}

        for item in services:
            service = item if isinstance(item, ServiceDefinition) else ServiceDefinition.from_dict(item)
            ports: list[str] = []
            for spec in service.container.ports:
                host_port, container_port = _split_port_spec(spec)
                mapping = await self._resolve_port(service.name, host_port, cancel_token)
                mappings.append(mapping)
                ports.append(f"{mapping.actual_port}:{container_port}")
            resolved_services.append(
                replace(service, container=replace(service.container, ports=tuple(ports)))
            )

        for name, item in (mocks or {}).items():
            mock = item if isinstance(item, MockServiceConfig) else MockServiceConfig.from_dict(item)
            mapping = await self._resolve_port(name, mock.port, cancel_token)
            mappings.append(mapping)
            resolved_mocks[name] = replace(mock, port=mapping.actual_port)

        return PortResolution(
            services=tuple(resolved_services),
            mocks=resolved_mocks,
            port_mappings=tuple(mappings),
        )

    async def _resolve_port(
        self, service: str, port: int, cancel_token: CancellationToken | None
    ) -> PortMapping:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        if not await self._port_probe(port):
            return PortMapping(service=service, original_port=port, actual_port=port, reassigned=False)

        pid = await self._occupying_pid(port)
        logger.info("port %d for %s is in use (pid=%s)", port, service, pid)
        publish(
            self._event_sink,
            ResilienceEvent.PORT_CONFLICT,
            {"service": service, "port": port, "pid": pid},
        )

        if self._strategy is PortStrategy.FAIL:
            raise ResilienceError(
                ErrorCode.PORT_CONFLICT,
                f'Port {port} is already in use for service "{service}"',
                {"service": service, "port": port, "pid": pid},
            )

        actual = await self.find_available_port(port + 1, cancel_token=cancel_token)
        logger.info("reassigned %s port %d -> %d", service, port, actual)
        publish(
            self._event_sink,
            ResilienceEvent.PORT_REASSIGNED,
            {"service": service, "original": port, "actual": actual},
        )
        return PortMapping(service=service, original_port=port, actual_port=actual, reassigned=True)

    async def _occupying_pid(self, port: int) -> int | None:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._pid_lookup, port), timeout=PID_LOOKUP_TIMEOUT_SECONDS
            )
        except Exception as exc:  # noqa: BLE001
            logger.debug("pid lookup for port %d failed: %s", port, exc)
            return None


def _split_port_spec(spec: str) -> tuple[int, str]:
    """``"5353:53/udp"`` -> ``(5353, "53/udp")``; a bare port maps to itself."""

    host, sep, container = spec.partition(":")
    if not sep:
        port, _, _ = spec.partition("/")
        return int(port), spec
    return int(host), container


__all__ = [
    "ContainerSpec",
    "MockServiceConfig",
    "PortMapping",
    "PortResolution",
    "PortResolver",
    "PortStrategy",
    "ServiceDefinition",
    "lookup_listening_pid",
]
