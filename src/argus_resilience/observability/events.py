"""In-process channel event bus and the narrow sink contract used by resilience components."""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import time
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Final, Protocol, runtime_checkable

from argus_resilience.constants import RESILIENCE_CHANNEL

logger = logging.getLogger(__name__)

EventMessage = Mapping[str, Any]
Subscriber = Callable[[str, EventMessage], object]

_DEFAULT_ERROR_BUFFER: Final[int] = 1024


class ResilienceEvent(str, Enum):
    """Event names published on the ``resilience`` channel."""

    PORT_CONFLICT = "port_conflict"
    PORT_REASSIGNED = "port_reassigned"
    CIRCUIT_OPEN = "circuit_open"
    CIRCUIT_CLOSED = "circuit_closed"
    CIRCUIT_HALF_OPEN = "circuit_half_open"
    RESTART_ATTEMPT = "restart_attempt"
    RESTART_SUCCESS = "restart_success"
    RESTART_EXHAUSTED = "restart_exhausted"
    CLEANUP_START = "cleanup_start"
    CLEANUP_RESOURCE = "cleanup_resource"
    CLEANUP_END = "cleanup_end"
    PREFLIGHT_START = "preflight_start"
    PREFLIGHT_CHECK = "preflight_check"
    PREFLIGHT_END = "preflight_end"
    NETWORK_CHECK = "network_check"
    NETWORK_VERIFIED = "network_verified"


@runtime_checkable
class EventSink(Protocol):
    """Anything that accepts ``emit(channel, {"event": ..., "data": {...}})``."""

    def emit(self, channel: str, message: EventMessage) -> object: ...


@dataclass(frozen=True, slots=True)
class DispatchError:
    """Subscriber failure captured without interrupting publishers."""

    channel: str
    event: str
    target: str
    error_type: str
    message: str


@dataclass(frozen=True, slots=True)
class _Subscription:
    token: int
    channel: str | None
    callback: Subscriber


@dataclass(frozen=True, slots=True)
class PublishedMessage:
    """Buffered record of one emitted message, used for replay."""

    channel: str
    message: EventMessage
    published_at: float


class EventBus:
    """Channel-keyed pub/sub bus with a bounded replay buffer.

    Subscriber exceptions are isolated: they are recorded as ``DispatchError``
    entries and never reach the publisher. Coroutine subscribers are scheduled
    on the running loop when there is one and awaited by ``drain_async``.
    """

    def __init__(self, *, buffer_size: int = 512) -> None:
        if not isinstance(buffer_size, int):
            raise ValueError(f"buffer_size must be an integer, got {type(buffer_size).__name__}")
        if buffer_size <= 0:
            raise ValueError("buffer_size must be > 0")

        self._buffer = deque[PublishedMessage](maxlen=buffer_size)
        self._subscriptions: dict[int, _Subscription] = {}
        self._pending_async_tasks: set[asyncio.Task[Any]] = set()
        self._dispatch_errors = deque[DispatchError](maxlen=_DEFAULT_ERROR_BUFFER)
        self._next_token = 1
        self._lock = threading.RLock()

    def subscribe(self, channel: str | None, callback: Subscriber) -> int:
        """Subscribe to one channel, or to every channel when ``channel`` is ``None``."""

        if not callable(callback):
            raise ValueError("callback must be callable")
        normalized = _normalize_channel(channel) if channel is not None else None

        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscriptions[token] = _Subscription(
                token=token, channel=normalized, callback=callback
            )
        return token

    def unsubscribe(self, token: int) -> bool:
        """Unsubscribe callback token. Returns ``True`` when token existed."""

        if not isinstance(token, int):
            raise ValueError(f"token must be an integer, got {type(token).__name__}")
        with self._lock:
            return self._subscriptions.pop(token, None) is not None

    def subscriber_count(self, channel: str | None = None) -> int:
        with self._lock:
            if channel is None:
                return len(self._subscriptions)
            return sum(1 for item in self._subscriptions.values() if item.channel == channel)

    def clear(self) -> None:
        """Drop every subscription."""

        with self._lock:
            self._subscriptions.clear()

    def emit(self, channel: str, message: EventMessage) -> tuple[DispatchError, ...]:
        """Publish ``message`` to subscribers of ``channel`` and to wildcard subscribers."""

        normalized = _normalize_channel(channel)
        _ensure_message(message)
        with self._lock:
            self._buffer.append(
                PublishedMessage(channel=normalized, message=message, published_at=time.time())
            )
            subscriptions = tuple(self._subscriptions.values())

        errors: list[DispatchError] = []
        running_loop = _current_running_loop()
        for subscription in subscriptions:
            if subscription.channel is not None and subscription.channel != normalized:
                continue
            error = self._invoke(subscription.callback, normalized, message, running_loop)
            if error is not None:
                errors.append(error)

        if errors:
            with self._lock:
                self._dispatch_errors.extend(errors)
        return tuple(errors)

    async def drain_async(self) -> tuple[DispatchError, ...]:
        """Await coroutine subscribers scheduled by ``emit``."""

        with self._lock:
            pending = tuple(self._pending_async_tasks)
            self._pending_async_tasks.clear()

        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        with self._lock:
            return tuple(self._dispatch_errors)

    def replay(
        self,
        *,
        channel: str | None = None,
        event: str | None = None,
        limit: int | None = None,
    ) -> tuple[PublishedMessage, ...]:
        """Replay buffered messages in publish order."""

        with self._lock:
            records = tuple(self._buffer)

        filtered = [
            record
            for record in records
            if (channel is None or record.channel == channel)
            and (event is None or record.message.get("event") == event)
        ]
        if limit is not None:
            if limit <= 0:
                return ()
            filtered = filtered[-limit:]
        return tuple(filtered)

    def dispatch_errors(self) -> tuple[DispatchError, ...]:
        with self._lock:
            return tuple(self._dispatch_errors)

    def _invoke(
        self,
        callback: Subscriber,
        channel: str,
        message: EventMessage,
        running_loop: asyncio.AbstractEventLoop | None,
    ) -> DispatchError | None:
        try:
            result = callback(channel, message)
            if inspect.iscoroutine(result):
                if running_loop is None:
                    asyncio.run(result)
                    return None
                task = running_loop.create_task(result)
                with self._lock:
                    self._pending_async_tasks.add(task)
                task.add_done_callback(
                    lambda done: self._on_async_done(done, callback, channel, message)
                )
            return None
        except Exception as exc:  # noqa: BLE001
            return _dispatch_error(channel, message, _callback_name(callback), exc)

    def _on_async_done(
        self,
        task: asyncio.Task[Any],
        callback: Subscriber,
        channel: str,
        message: EventMessage,
    ) -> None:
        with self._lock:
            self._pending_async_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, Exception):
            error = _dispatch_error(channel, message, _callback_name(callback), exc)
            with self._lock:
                self._dispatch_errors.append(error)


def build_message(event: ResilienceEvent | str, payload: Mapping[str, Any]) -> dict[str, Any]:
    """Build the ``{"event", "data"}`` envelope; ``data`` always carries ``type`` and ``timestamp``."""

    name = event.value if isinstance(event, ResilienceEvent) else str(event)
    data = {key: value for key, value in payload.items() if value is not None}
    data["type"] = name
    data.setdefault("timestamp", int(time.time() * 1000))
    return {"event": name, "data": data}


def publish(
    sink: EventSink | None,
    event: ResilienceEvent | str,
    payload: Mapping[str, Any],
    *,
    channel: str = RESILIENCE_CHANNEL,
) -> None:
    """Emit ``event`` on ``sink`` if one is configured.

    Sink failures are logged and dropped: components must keep working
    without a functioning observer.
    """

    if sink is None:
        return
    message = build_message(event, payload)
    try:
        sink.emit(channel, message)
    except Exception:  # noqa: BLE001
        logger.warning("event sink rejected %s", message["event"], exc_info=True)


def _normalize_channel(channel: str) -> str:
    if not isinstance(channel, str):
        raise ValueError(f"channel must be a string, got {type(channel).__name__}")
    normalized = channel.strip()
    if not normalized:
        raise ValueError("channel must not be empty")
    return normalized


def _ensure_message(message: object) -> None:
    if not isinstance(message, Mapping):
        raise ValueError(f"message must be a mapping, got {type(message).__name__}")
    if not isinstance(message.get("event"), str):
        raise ValueError("message.event must be a string")
    if not isinstance(message.get("data"), Mapping):
        raise ValueError("message.data must be a mapping")


def _current_running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def _callback_name(callback: object) -> str:
    name = getattr(callback, "__name__", None)
    if isinstance(name, str) and name:
        return name
    return callback.__class__.__name__


def _dispatch_error(
    channel: str, message: EventMessage, target: str, exc: Exception
) -> DispatchError:
    return DispatchError(
        channel=channel,
        event=str(message.get("event", "")),
        target=target,
        error_type=exc.__class__.__name__,
        message=str(exc),
    )


__all__ = [
    "DispatchError",
    "EventBus",
    "EventMessage",
    "EventSink",
    "PublishedMessage",
    "ResilienceEvent",
    "Subscriber",
    "build_message",
    "publish",
]
