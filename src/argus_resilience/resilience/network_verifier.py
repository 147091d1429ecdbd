"""Container-to-service DNS and TCP reachability checks run through ``docker exec``."""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final

from argus_resilience.constants import NETWORK_PROBE_TIMEOUT_SECONDS, TCP_CONNECT_WAIT_SECONDS
from argus_resilience.observability.events import EventSink, ResilienceEvent, publish
from argus_resilience.resilience.error_codes import ErrorCode, ResilienceError
from argus_resilience.runtime.docker import ContainerRuntime, RuntimeCommandError

logger = logging.getLogger(__name__)

_RUNTIME_ERRORS: Final = (RuntimeCommandError, ResilienceError, OSError, TimeoutError)
_ADDRESS: Final[re.Pattern[str]] = re.compile(r"Address:\s+(\S+)")


@dataclass(frozen=True, slots=True)
class ServiceEndpoint:
    name: str
    hostname: str
    port: int

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> ServiceEndpoint:
        return cls(
            name=str(payload["name"]),
            hostname=str(payload["hostname"]),
            port=int(payload["port"]),
        )


@dataclass(frozen=True, slots=True)
class DnsResolution:
    resolved: bool
    address: str | None = None


@dataclass(frozen=True, slots=True)
class NetworkTopology:
    network_name: str
    connected_containers: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "networkName": self.network_name,
            "connectedContainers": list(self.connected_containers),
        }


@dataclass(frozen=True, slots=True)
class ConnectivityResult:
    service: str
    hostname: str
    reachable: bool
    dns_resolved: bool
    latency_ms: int
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "service": self.service,
            "hostname": self.hostname,
            "reachable": self.reachable,
            "dnsResolved": self.dns_resolved,
            "latencyMs": self.latency_ms,
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True, slots=True)
class NetworkVerificationReport:
    results: tuple[ConnectivityResult, ...]
    all_reachable: bool
    network_topology: NetworkTopology
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [item.to_dict() for item in self.results],
            "allReachable": self.all_reachable,
            "networkTopology": self.network_topology.to_dict(),
            "timestamp": self.timestamp,
        }


class NetworkVerifier:
    """Probe service reachability from inside a reference container."""

    def __init__(self, runtime: ContainerRuntime, *, event_sink: EventSink | None = None) -> None:
        self._runtime = runtime
        self._event_sink = event_sink

    async def check_dns_resolution(self, from_container: str, hostname: str) -> DnsResolution:
        try:
            output = await self._runtime.runtime_exec(
                ["exec", from_container, "nslookup", hostname],
                timeout_seconds=NETWORK_PROBE_TIMEOUT_SECONDS,
            )
        except _RUNTIME_ERRORS as exc:
            logger.debug("nslookup %s from %s failed: %s", hostname, from_container, exc)
            return DnsResolution(resolved=False)
        # The first Address line is the resolver itself; the answer comes last.
        addresses = _ADDRESS.findall(output)
        return DnsResolution(resolved=True, address=addresses[-1] if addresses else None)

    async def collect_network_topology(self, network_name: str) -> NetworkTopology:
        try:
            output = await self._runtime.runtime_exec(
                [
                    "network",
                    "inspect",
                    network_name,
                    "--format",
                    "{{range .Containers}}{{.Name}} {{end}}",
                ],
                timeout_seconds=NETWORK_PROBE_TIMEOUT_SECONDS,
            )
        except _RUNTIME_ERRORS as exc:
            logger.debug("network inspect %s failed: %s", network_name, exc)
            return NetworkTopology(network_name=network_name, connected_containers=())
        return NetworkTopology(
            network_name=network_name, connected_containers=tuple(output.split())
        )

    async def verify_connectivity(
        self,
        test_container: str,
        services: Sequence[ServiceEndpoint | Mapping[str, Any]],
        network_name: str,
    ) -> NetworkVerificationReport:
        """Check DNS then TCP for every service.

        Raises ``DNS_RESOLUTION_FAILED`` when any hostname did not resolve,
        otherwise ``NETWORK_UNREACHABLE`` when any service refused the connect.
        """

        topology = await self.collect_network_topology(network_name)
        results: list[ConnectivityResult] = []

        for item in services:
            endpoint = item if isinstance(item, ServiceEndpoint) else ServiceEndpoint.from_dict(item)
            results.append(await self._check_endpoint(test_container, endpoint))

        all_reachable = all(result.reachable for result in results)
        report = NetworkVerificationReport(
            results=tuple(results),
            all_reachable=all_reachable,
            network_topology=topology,
            timestamp=int(time.time() * 1000),
        )
        publish(self._event_sink, ResilienceEvent.NETWORK_VERIFIED, {"allReachable": all_reachable})
        if all_reachable:
            return report

        details = {
            "results": [result.to_dict() for result in results],
            "networkTopology": topology.to_dict(),
        }
        dns_failures = [result for result in results if not result.dns_resolved]
        if dns_failures:
            raise ResilienceError(
                ErrorCode.DNS_RESOLUTION_FAILED,
                "DNS resolution failed for: " + ", ".join(r.hostname for r in dns_failures),
                details,
            )
        unreachable = [result for result in results if not result.reachable]
        raise ResilienceError(
            ErrorCode.NETWORK_UNREACHABLE,
            "Services unreachable: "
            + ", ".join(f"{r.service} ({r.hostname}:{r.error or 'unknown'})" for r in unreachable),
            details,
        )

    async def _check_endpoint(
        self, test_container: str, endpoint: ServiceEndpoint
    ) -> ConnectivityResult:
        started = time.monotonic()
        dns = await self.check_dns_resolution(test_container, endpoint.hostname)
        reachable = False
        error: str | None = None

        if dns.resolved:
            try:
                await self._runtime.runtime_exec(
                    [
                        "exec",
                        test_container,
                        "nc",
                        "-z",
                        "-w",
                        str(TCP_CONNECT_WAIT_SECONDS),
                        endpoint.hostname,
                        str(endpoint.port),
                    ],
                    timeout_seconds=NETWORK_PROBE_TIMEOUT_SECONDS,
                )
                reachable = True
            except _RUNTIME_ERRORS as exc:
                error = str(exc)
        else:
            error = f"DNS resolution failed for {endpoint.hostname}"

        publish(
            self._event_sink,
            ResilienceEvent.NETWORK_CHECK,
            {"service": endpoint.name, "reachable": reachable},
        )
        return ConnectivityResult(
            service=endpoint.name,
            hostname=endpoint.hostname,
            reachable=reachable,
            dns_resolved=dns.resolved,
            latency_ms=int((time.monotonic() - started) * 1000),
            error=error,
        )


__all__ = [
    "ConnectivityResult",
    "DnsResolution",
    "NetworkTopology",
    "NetworkVerificationReport",
    "NetworkVerifier",
    "ServiceEndpoint",
]
