"""Public observability primitives: structured logging and resilience event streaming."""

from argus_resilience.observability.events import (
    DispatchError,
    EventBus,
    EventMessage,
    EventSink,
    PublishedMessage,
    ResilienceEvent,
    Subscriber,
    build_message,
    publish,
)
from argus_resilience.observability.logging import (
    CORRELATION_KEYS,
    LoggingConfig,
    StructuredLoggingHandle,
    correlation_scope,
    default_log_redactor,
    get_active_logging_handle,
    get_correlation_context,
    reset_correlation_fields,
    set_correlation_fields,
    setup_structured_logging,
    shutdown_logging,
)

__all__ = [
    "CORRELATION_KEYS",
    "DispatchError",
    "EventBus",
    "EventMessage",
    "EventSink",
    "LoggingConfig",
    "PublishedMessage",
    "ResilienceEvent",
    "StructuredLoggingHandle",
    "Subscriber",
    "build_message",
    "correlation_scope",
    "default_log_redactor",
    "get_active_logging_handle",
    "get_correlation_context",
    "publish",
    "reset_correlation_fields",
    "set_correlation_fields",
    "setup_structured_logging",
    "shutdown_logging",
]
