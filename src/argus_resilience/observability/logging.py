"""Structured JSON-lines logging for resilience runs, with correlation fields and redaction."""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import math
import queue
import re
from collections.abc import Iterator, Mapping
from contextlib import contextmanager, suppress
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final, cast

JSONValue = str | int | float | bool | None | list["JSONValue"] | dict[str, "JSONValue"]

_REDACTED_VALUE: Final[str] = "***REDACTED***"

CORRELATION_KEYS: Final[tuple[str, ...]] = ("run_id", "project", "container", "service")

# Container environments routinely carry credentials (``-e DB_PASSWORD=...``).
_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "passwd",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "private_key",
)
_SENSITIVE_ASSIGNMENT: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b([A-Z0-9_]*(?:api[_-]?key|token|password|passwd|secret)[A-Z0-9_]*)\b\s*([:=])\s*([^\s,;]+)"
)
_BEARER_TOKEN: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")

_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "correlation"}

_CorrelationState = tuple[tuple[str, str], ...]
_CORRELATION_CONTEXT: contextvars.ContextVar[_CorrelationState] = contextvars.ContextVar(
    "argus_resilience_correlation", default=()
)

_ACTIVE_HANDLE: StructuredLoggingHandle | None = None


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Configuration for queue-backed structured logging of one run."""

    run_id: str
    project: str | None = None
    base_log_dir: Path | str = Path("logs")
    logger_name: str = "argus_resilience"
    level: int | str = "INFO"
    queue_size: int = 4096
    log_filename: str = "resilience.jsonl"
    redact: bool = True


class _CorrelatingQueueHandler(logging.handlers.QueueHandler):
    """Queue handler that snapshots correlation context and drops records when full."""

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # The listener thread has its own context, so capture the caller's now.
        context = get_correlation_context()
        for key in CORRELATION_KEYS:
            value = getattr(record, key, None)
            if isinstance(value, str) and value.strip():
                context[key] = value.strip()
        if context:
            record.correlation = context
        return cast("logging.LogRecord", super().prepare(record))

    def enqueue(self, record: logging.LogRecord) -> None:
        with suppress(queue.Full):
            self.queue.put_nowait(record)


class _JsonLineFormatter(logging.Formatter):
    def __init__(self, *, redact: bool, base_context: Mapping[str, str]) -> None:
        super().__init__()
        self._redact = redact
        self._base_context = dict(base_context)

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, JSONValue] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": self._text(record.getMessage()),
        }

        correlation = dict(self._base_context)
        recorded = getattr(record, "correlation", None)
        if isinstance(recorded, Mapping):
            correlation.update((str(k), str(v)) for k, v in recorded.items() if v)
        event.update(sorted(correlation.items()))

        extras = {
            key: _normalize_json_value(value)
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRIBUTES
            and key not in CORRELATION_KEYS
            and not key.startswith("_")
        }
        if extras:
            event["fields"] = default_log_redactor(extras) if self._redact else extras

        if record.exc_info is not None:
            event["exception"] = self._text(self.formatException(record.exc_info))

        return json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    def _text(self, text: str) -> str:
        return _redact_string(text) if self._redact else text


class StructuredLoggingHandle:
    """Runtime handle for an active structured logging setup."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        log_path: Path,
        queue_handler: logging.Handler,
        file_handler: logging.Handler,
        listener: logging.handlers.QueueListener,
    ) -> None:
        self.logger = logger
        self.log_path = log_path
        self._queue_handler = queue_handler
        self._file_handler = file_handler
        self._listener = listener
        self._is_shutdown = False

    @property
    def is_shutdown(self) -> bool:
        return self._is_shutdown

    def shutdown(self) -> None:
        """Drain queued records to disk and detach; safe to call twice."""

        if self._is_shutdown:
            return
        self._listener.stop()
        self.logger.removeHandler(self._queue_handler)
        self._queue_handler.close()
        self._file_handler.close()
        self._is_shutdown = True


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Write ``<base_log_dir>/<run_id>/<log_filename>`` as JSON lines for one run.

    Any previously active handle is shut down first. Library modules only ever
    call ``logging.getLogger(__name__)``; this is for the hosting process.
    """

    global _ACTIVE_HANDLE
    shutdown_logging()

    run_id = _require_text(config.run_id, "run_id")
    log_filename = _require_text(config.log_filename, "log_filename")
    if Path(log_filename).name != log_filename:
        raise ValueError("log_filename must not include path separators")
    logger_name = _require_text(config.logger_name, "logger_name")
    if not isinstance(config.queue_size, int) or config.queue_size <= 0:
        raise ValueError("queue_size must be a positive integer")
    level = _parse_log_level(config.level)

    run_log_dir = Path(config.base_log_dir) / run_id
    run_log_dir.mkdir(parents=True, exist_ok=True)
    log_path = run_log_dir / log_filename

    base_context = {"run_id": run_id}
    if config.project:
        base_context["project"] = config.project

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(_JsonLineFormatter(redact=config.redact, base_context=base_context))

    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()

    log_queue: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=config.queue_size)
    queue_handler = _CorrelatingQueueHandler(log_queue)
    queue_handler.setLevel(level)
    listener = logging.handlers.QueueListener(log_queue, file_handler, respect_handler_level=True)
    listener.start()
    logger.addHandler(queue_handler)

    _ACTIVE_HANDLE = StructuredLoggingHandle(
        logger=logger,
        log_path=log_path,
        queue_handler=queue_handler,
        file_handler=file_handler,
        listener=listener,
    )
    return _ACTIVE_HANDLE


@atexit.register
def shutdown_logging() -> None:
    """Shut down the active handle, if any."""

    global _ACTIVE_HANDLE
    if _ACTIVE_HANDLE is not None:
        _ACTIVE_HANDLE.shutdown()
        _ACTIVE_HANDLE = None


def get_active_logging_handle() -> StructuredLoggingHandle | None:
    return _ACTIVE_HANDLE


def get_correlation_context() -> dict[str, str]:
    return dict(_CORRELATION_CONTEXT.get())


def set_correlation_fields(**fields: str | None) -> contextvars.Token[_CorrelationState]:
    """Bind correlation fields; a ``None`` value unbinds that key."""

    state = get_correlation_context()
    for key, value in fields.items():
        if value is None:
            state.pop(key, None)
        else:
            state[key] = _require_text(value, "correlation value")
    return _CORRELATION_CONTEXT.set(tuple(state.items()))


def reset_correlation_fields(token: contextvars.Token[_CorrelationState]) -> None:
    _CORRELATION_CONTEXT.reset(token)


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Temporarily bind correlation fields (``run_id``, ``project``, ``container``, ``service``)."""

    token = set_correlation_fields(**fields)
    try:
        yield
    finally:
        reset_correlation_fields(token)


def default_log_redactor(value: JSONValue, *, key: str | None = None) -> JSONValue:
    """Deep redaction of credential-looking keys and ``KEY=value`` assignments."""

    if key is not None and any(term in key.lower() for term in _SENSITIVE_KEY_TERMS):
        return _REDACTED_VALUE
    if isinstance(value, str):
        return _redact_string(value)
    if isinstance(value, list):
        return [default_log_redactor(item) for item in value]
    if isinstance(value, dict):
        return {k: default_log_redactor(item, key=k) for k, item in value.items()}
    return value


def _redact_string(text: str) -> str:
    redacted = _SENSITIVE_ASSIGNMENT.sub(
        lambda match: f"{match.group(1)}{match.group(2)}{_REDACTED_VALUE}", text
    )
    return _BEARER_TOKEN.sub(f"Bearer {_REDACTED_VALUE}", redacted)


def _require_text(value: object, label: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{label} must be a string, got {type(value).__name__}")
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{label} must not be empty")
    return normalized


def _parse_log_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    parsed = logging.getLevelName(str(value).strip().upper())
    if isinstance(parsed, int):
        return parsed
    raise ValueError(f"unsupported logging level {value!r}")


def _normalize_json_value(value: object) -> JSONValue:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, Mapping):
        return {str(k): _normalize_json_value(item) for k, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize_json_value(item) for item in value]
    return str(value)


__all__ = [
    "CORRELATION_KEYS",
    "JSONValue",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "correlation_scope",
    "default_log_redactor",
    "get_active_logging_handle",
    "get_correlation_context",
    "reset_correlation_fields",
    "set_correlation_fields",
    "setup_structured_logging",
    "shutdown_logging",
]
