"""Reconcile runtime resources left behind by earlier runs of the same project."""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Final

from argus_resilience.constants import (
    LABEL_CREATED_AT,
    LABEL_MANAGED,
    LABEL_PROJECT,
    LABEL_RUN_ID,
    LIST_TIMEOUT_SECONDS,
    UNKNOWN_LABEL_VALUE,
)
from argus_resilience.observability.events import EventSink, ResilienceEvent, publish
from argus_resilience.resilience.error_codes import ResilienceError
from argus_resilience.runtime.docker import ContainerRuntime, RuntimeCommandError

logger = logging.getLogger(__name__)

_RUNTIME_ERRORS: Final = (RuntimeCommandError, ResilienceError, OSError, TimeoutError)


class ResourceType(str, Enum):
    CONTAINER = "container"
    NETWORK = "network"
    VOLUME = "volume"


# Removal order matters: containers hold references to networks and volumes.
_REMOVAL_ORDER: Final[tuple[ResourceType, ...]] = (
    ResourceType.CONTAINER,
    ResourceType.NETWORK,
    ResourceType.VOLUME,
)
_LIST_COMMANDS: Final[dict[ResourceType, tuple[tuple[str, ...], str]]] = {
    ResourceType.CONTAINER: (("ps", "-a"), "{{.ID}}\t{{.Names}}\t{{.Labels}}"),
    ResourceType.NETWORK: (("network", "ls"), "{{.ID}}\t{{.Name}}\t{{.Labels}}"),
    ResourceType.VOLUME: (("volume", "ls"), "{{.Name}}\t{{.Name}}\t{{.Labels}}"),
}
_REMOVE_COMMANDS: Final[dict[ResourceType, tuple[str, ...]]] = {
    ResourceType.CONTAINER: ("rm", "-f"),
    ResourceType.NETWORK: ("network", "rm"),
    ResourceType.VOLUME: ("volume", "rm"),
}


@dataclass(frozen=True, slots=True)
class OrphanResource:
    type: ResourceType
    name: str
    id: str
    project: str
    run_id: str
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "name": self.name,
            "id": self.id,
            "project": self.project,
            "runId": self.run_id,
            "createdAt": self.created_at,
        }


@dataclass(frozen=True, slots=True)
class FailedRemoval:
    resource: OrphanResource
    error: str

    def to_dict(self) -> dict[str, Any]:
        payload = self.resource.to_dict()
        payload["error"] = self.error
        return payload


@dataclass(frozen=True, slots=True)
class OrphanCleanupResult:
    found: tuple[OrphanResource, ...]
    removed: tuple[OrphanResource, ...]
    failed: tuple[FailedRemoval, ...]
    duration: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "found": [item.to_dict() for item in self.found],
            "removed": [item.to_dict() for item in self.removed],
            "failed": [item.to_dict() for item in self.failed],
            "duration": self.duration,
        }


def extract_label(labels: str, key: str) -> str | None:
    """Find ``key`` in a runtime ``k=v,k=v`` label listing."""

    prefix = f"{key}="
    for part in labels.split(","):
        item = part.strip()
        if item.startswith(prefix):
            return item[len(prefix) :]
    return None


class OrphanCleaner:
    """Find and remove resources of ``project`` that belong to other runs.

    Only resources labelled ``argusai.managed=true`` and
    ``argusai.project=<project>`` are ever touched.

    Volumes are listed (``volume ls``) alongside containers and networks, so
    a leftover volume alone makes the preflight orphan check report ``warn``.
    """

    def __init__(
        self,
        project: str,
        run_id: str,
        runtime: ContainerRuntime,
        *,
        event_sink: EventSink | None = None,
    ) -> None:
        self._project = project
        self._run_id = run_id
        self._runtime = runtime
        self._event_sink = event_sink

    @property
    def project(self) -> str:
        return self._project

    @property
    def run_id(self) -> str:
        return self._run_id

    async def detect(self) -> list[OrphanResource]:
        orphans: list[OrphanResource] = []
        for resource_type in _REMOVAL_ORDER:
            orphans.extend(await self._list(resource_type))
        return orphans

    async def cleanup(self, orphans: Sequence[OrphanResource]) -> OrphanCleanupResult:
        started = time.monotonic()
        removed: list[OrphanResource] = []
        failed: list[FailedRemoval] = []

        for resource_type in _REMOVAL_ORDER:
            for orphan in orphans:
                if orphan.type is not resource_type:
                    continue
                try:
                    await self._runtime.runtime_exec(
                        [*_REMOVE_COMMANDS[resource_type], orphan.id],
                        timeout_seconds=LIST_TIMEOUT_SECONDS,
                    )
                except _RUNTIME_ERRORS as exc:
                    logger.warning("failed to remove %s %s: %s", orphan.type.value, orphan.name, exc)
                    failed.append(FailedRemoval(resource=orphan, error=str(exc)))
                    self._emit_resource(orphan, "failed")
                    continue
                logger.info("removed orphan %s %s", orphan.type.value, orphan.name)
                removed.append(orphan)
                self._emit_resource(orphan, "removed")

        return OrphanCleanupResult(
            found=tuple(orphans),
            removed=tuple(removed),
            failed=tuple(failed),
            duration=int((time.monotonic() - started) * 1000),
        )

    async def detect_and_cleanup(self) -> OrphanCleanupResult:
        publish(self._event_sink, ResilienceEvent.CLEANUP_START, {"project": self._project})

        orphans = await self.detect()
        if orphans:
            result = await self.cleanup(orphans)
        else:
            result = OrphanCleanupResult(found=(), removed=(), failed=(), duration=0)

        publish(
            self._event_sink,
            ResilienceEvent.CLEANUP_END,
            {
                "found": len(result.found),
                "removed": len(result.removed),
                "failed": len(result.failed),
            },
        )
        return result

    async def _list(self, resource_type: ResourceType) -> list[OrphanResource]:
        command, template = _LIST_COMMANDS[resource_type]
        args = [
            *command,
            "--filter",
            f"label={LABEL_MANAGED}=true",
            "--filter",
            f"label={LABEL_PROJECT}={self._project}",
            "--format",
            template,
        ]
        try:
            output = await self._runtime.runtime_exec(args, timeout_seconds=LIST_TIMEOUT_SECONDS)
        except _RUNTIME_ERRORS as exc:
            logger.debug("%s listing failed: %s", resource_type.value, exc)
            return []

        found: list[OrphanResource] = []
        for line in output.split("\n"):
            if not line.strip():
                continue
            fields = line.split("\t")
            resource_id = fields[0].strip()
            name = fields[1].strip() if len(fields) > 1 else ""
            if not resource_id or not name:
                continue
            labels = fields[2] if len(fields) > 2 else ""
            run_id = extract_label(labels, LABEL_RUN_ID)
            if run_id == self._run_id:
                continue
            found.append(
                OrphanResource(
                    type=resource_type,
                    name=name,
                    id=resource_id,
                    project=self._project,
                    run_id=run_id or UNKNOWN_LABEL_VALUE,
                    created_at=extract_label(labels, LABEL_CREATED_AT) or UNKNOWN_LABEL_VALUE,
                )
            )
        return found

    def _emit_resource(self, orphan: OrphanResource, action: str) -> None:
        publish(
            self._event_sink,
            ResilienceEvent.CLEANUP_RESOURCE,
            {"resourceType": orphan.type.value, "name": orphan.name, "action": action},
        )


__all__ = [
    "FailedRemoval",
    "OrphanCleanupResult",
    "OrphanCleaner",
    "OrphanResource",
    "ResourceType",
    "extract_label",
]
