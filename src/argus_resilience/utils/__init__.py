"""Utility exports for cooperative cancellation."""

from argus_resilience.utils.concurrency import CancellationToken, cancellable_sleep

__all__ = [
    "CancellationToken",
    "cancellable_sleep",
]
