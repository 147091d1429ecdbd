"""Cooperative cancellation for the resilience wait loops."""

from __future__ import annotations

import asyncio
from contextlib import suppress


class CancellationToken:
    """Cooperative cancellation token backed by ``asyncio.Event``."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError("operation cancelled")


async def cancellable_sleep(
    seconds: float,
    cancel_token: CancellationToken | None = None,
) -> None:
    """Sleep for ``seconds`` unless ``cancel_token`` fires first.

    Raises ``asyncio.CancelledError`` when the token is (or becomes) cancelled.
    """
    if cancel_token is None:
        await asyncio.sleep(max(seconds, 0.0))
        return

    cancel_token.raise_if_cancelled()
    if seconds <= 0:
        return

    cancel_wait_task = asyncio.create_task(cancel_token.wait())
    try:
        done, _ = await asyncio.wait({cancel_wait_task}, timeout=seconds)
        if cancel_wait_task in done:
            raise asyncio.CancelledError("operation cancelled")
    finally:
        cancel_wait_task.cancel()
        with suppress(asyncio.CancelledError):
            await cancel_wait_task


__all__ = [
    "CancellationToken",
    "cancellable_sleep",
]
