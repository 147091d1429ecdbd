"""``ContainerRuntime`` decorator that routes every runtime call through a circuit breaker."""

from __future__ import annotations

from collections.abc import Sequence

from argus_resilience.constants import EXEC_TIMEOUT_SECONDS, RUNTIME_INFO_TIMEOUT_SECONDS
from argus_resilience.resilience.circuit_breaker import CircuitBreaker
from argus_resilience.runtime.docker import ContainerRuntime, ContainerStatus, RunOptions


class ResilientRuntime:
    """Proxy ``inner`` through ``breaker``; an open circuit fails every call fast."""

    def __init__(self, inner: ContainerRuntime, breaker: CircuitBreaker) -> None:
        self._inner = inner
        self._breaker = breaker

    @property
    def inner(self) -> ContainerRuntime:
        return self._inner

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def get_container_status(self, name: str) -> ContainerStatus:
        return await self._breaker.execute(lambda: self._inner.get_container_status(name))

    async def get_container_logs(self, name: str, tail_lines: int = 100) -> str:
        return await self._breaker.execute(lambda: self._inner.get_container_logs(name, tail_lines))

    async def stop_container(self, name: str) -> None:
        await self._breaker.execute(lambda: self._inner.stop_container(name))

    async def start_container(self, options: RunOptions) -> str:
        return await self._breaker.execute(lambda: self._inner.start_container(options))

    async def runtime_exec(
        self, args: Sequence[str], timeout_seconds: float = EXEC_TIMEOUT_SECONDS
    ) -> str:
        return await self._breaker.execute(
            lambda: self._inner.runtime_exec(args, timeout_seconds=timeout_seconds)
        )

    async def info(self, timeout_seconds: float = RUNTIME_INFO_TIMEOUT_SECONDS) -> str:
        return await self._breaker.execute(
            lambda: self._inner.info(timeout_seconds=timeout_seconds)
        )


__all__ = ["ResilientRuntime"]
