"""
argus-resilience — unit tests for orphan resource detection and cleanup

File: tests/unit/resilience/test_orphan_cleaner.py

Purpose
- Validate label filtering, current-run exclusion, degraded listings,
  removal ordering, partial failure accounting, and cleanup events.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from argus_resilience.resilience.orphan_cleaner import (
    OrphanCleaner,
    OrphanResource,
    ResourceType,
    extract_label,
)
from argus_resilience.runtime.docker import RuntimeCommandError

if TYPE_CHECKING:
    from conftest import FakeRuntime, RecordingEventSink

_PROJECT = "shop"
_FILTERS = (
    "--filter",
    "label=argusai.managed=true",
    "--filter",
    f"label=argusai.project={_PROJECT}",
    "--format",
)
_PS = ("ps", "-a", *_FILTERS, "{{.ID}}\t{{.Names}}\t{{.Labels}}")
_NETWORKS = ("network", "ls", *_FILTERS, "{{.ID}}\t{{.Name}}\t{{.Labels}}")
_VOLUMES = ("volume", "ls", *_FILTERS, "{{.Name}}\t{{.Name}}\t{{.Labels}}")


def _labels(run_id: str | None, created_at: str | None = "2026-01-01T00:00:00Z") -> str:
    parts = ["argusai.managed=true", f"argusai.project={_PROJECT}"]
    if run_id is not None:
        parts.append(f"argusai.run-id={run_id}")
    if created_at is not None:
        parts.append(f"argusai.created-at={created_at}")
    return ",".join(parts)


def _script_listings(runtime: FakeRuntime) -> None:
    runtime.exec_responses[_PS] = "\n".join(
        [
            f"c1\tshop-db-old\t{_labels('run-1')}",
            f"c2\tshop-db\t{_labels('run-current')}",
            f"c3\tshop-cache\t{_labels(None, None)}",
            "",
        ]
    )
    runtime.exec_responses[_NETWORKS] = f"n1\tshop-net\t{_labels('run-1')}\n"
    runtime.exec_responses[_VOLUMES] = f"shop-data\tshop-data\t{_labels('run-0')}\n"


def test_extract_label() -> None:
    labels = "a=1, argusai.run-id=run-9 ,argusai.project=x"

    assert extract_label(labels, "argusai.run-id") == "run-9"
    assert extract_label(labels, "argusai.project") == "x"
    assert extract_label(labels, "missing") is None
    assert extract_label("", "a") is None


async def test_detect_excludes_current_run_and_fills_unknown_labels(
    fake_runtime: FakeRuntime,
) -> None:
    _script_listings(fake_runtime)
    cleaner = OrphanCleaner(_PROJECT, "run-current", fake_runtime)

    orphans = await cleaner.detect()

    assert [(o.type, o.id, o.name) for o in orphans] == [
        (ResourceType.CONTAINER, "c1", "shop-db-old"),
        (ResourceType.CONTAINER, "c3", "shop-cache"),
        (ResourceType.NETWORK, "n1", "shop-net"),
        (ResourceType.VOLUME, "shop-data", "shop-data"),
    ]
    assert orphans[0].run_id == "run-1"
    assert orphans[0].created_at == "2026-01-01T00:00:00Z"
    assert orphans[1].run_id == "unknown"
    assert orphans[1].created_at == "unknown"
    assert all(o.project == _PROJECT for o in orphans)
    assert fake_runtime.exec_calls() == [_PS, _NETWORKS, _VOLUMES]


async def test_detect_degrades_when_a_listing_fails(fake_runtime: FakeRuntime) -> None:
    _script_listings(fake_runtime)
    fake_runtime.exec_responses[_NETWORKS] = RuntimeCommandError(["docker"], 1, "daemon hiccup")

    orphans = await OrphanCleaner(_PROJECT, "run-current", fake_runtime).detect()

    assert {o.type for o in orphans} == {ResourceType.CONTAINER, ResourceType.VOLUME}


async def test_detect_skips_malformed_lines(fake_runtime: FakeRuntime) -> None:
    fake_runtime.exec_responses[_PS] = "onlyid\n\t\n  \nc9\tname9"

    orphans = await OrphanCleaner(_PROJECT, "run-current", fake_runtime).detect()

    assert [(o.id, o.name, o.run_id) for o in orphans] == [("c9", "name9", "unknown")]


async def test_cleanup_removes_in_dependency_order_and_records_failures(
    fake_runtime: FakeRuntime, event_sink: RecordingEventSink
) -> None:
    orphans = [
        OrphanResource(ResourceType.VOLUME, "vol", "vol", _PROJECT, "r0", "unknown"),
        OrphanResource(ResourceType.NETWORK, "net", "n1", _PROJECT, "r0", "unknown"),
        OrphanResource(ResourceType.CONTAINER, "ctr", "c1", _PROJECT, "r0", "unknown"),
    ]
    fake_runtime.exec_responses[("network", "rm", "n1")] = RuntimeCommandError(
        ["docker", "network", "rm", "n1"], 1, "network has active endpoints"
    )
    cleaner = OrphanCleaner(_PROJECT, "run-current", fake_runtime, event_sink=event_sink)

    result = await cleaner.cleanup(orphans)

    assert fake_runtime.exec_calls() == [
        ("rm", "-f", "c1"),
        ("network", "rm", "n1"),
        ("volume", "rm", "vol"),
    ]
    assert [o.name for o in result.removed] == ["ctr", "vol"]
    assert [f.resource.name for f in result.failed] == ["net"]
    assert "network has active endpoints" in result.failed[0].error
    assert len(result.found) == 3
    assert [(p["resourceType"], p["action"]) for p in event_sink.payloads("cleanup_resource")] == [
        ("container", "removed"),
        ("network", "failed"),
        ("volume", "removed"),
    ]


async def test_detect_and_cleanup_emits_start_and_end(
    fake_runtime: FakeRuntime, event_sink: RecordingEventSink
) -> None:
    _script_listings(fake_runtime)
    cleaner = OrphanCleaner(_PROJECT, "run-current", fake_runtime, event_sink=event_sink)

    result = await cleaner.detect_and_cleanup()

    assert len(result.found) == 4
    assert len(result.removed) == 4
    assert result.failed == ()
    events = event_sink.events()
    assert events[0] == "cleanup_start"
    assert events[-1] == "cleanup_end"
    assert event_sink.payloads("cleanup_start")[0]["project"] == _PROJECT
    end = event_sink.payloads("cleanup_end")[0]
    assert (end["found"], end["removed"], end["failed"]) == (4, 4, 0)


async def test_detect_and_cleanup_with_nothing_found(
    fake_runtime: FakeRuntime, event_sink: RecordingEventSink
) -> None:
    cleaner = OrphanCleaner(_PROJECT, "run-current", fake_runtime, event_sink=event_sink)

    result = await cleaner.detect_and_cleanup()

    assert result.to_dict() == {"found": [], "removed": [], "failed": [], "duration": 0}
    assert event_sink.events() == ["cleanup_start", "cleanup_end"]
