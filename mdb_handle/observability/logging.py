"""
Structured logging for MDB_HANDLE.

Each operation a Connection runs is tagged with a correlation ID, so the
records of one blocking call or one scheduled operation (a listCollections
and its getMore round trips, say) can be tied together. Handles bind their
own fields, such as ``db_name``, to the logger they write through.
"""

import contextvars
import logging
import uuid
from collections.abc import Awaitable
from datetime import datetime
from typing import Any, TypeVar

T = TypeVar("T")

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "mdb_handle_correlation_id", default=None
)


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Tag the current context, generating an ID when none is given."""
    correlation_id = correlation_id or uuid.uuid4().hex
    _correlation_id.set(correlation_id)
    return correlation_id


def clear_correlation_id() -> None:
    _correlation_id.set(None)


async def with_correlation_id(operation: Awaitable[T]) -> T:
    """
    Await ``operation`` under a correlation ID.

    An ID already set by the caller is kept. Meant to run as its own task:
    tasks copy the context, so a generated ID never reaches the caller.
    """
    if _correlation_id.get() is None:
        set_correlation_id()
    return await operation


def get_logging_context(**fields: Any) -> dict[str, Any]:
    """Record fields: a timestamp, the correlation ID if set, then ``fields``."""
    context: dict[str, Any] = {"timestamp": datetime.now().isoformat()}
    correlation_id = _correlation_id.get()
    if correlation_id:
        context["correlation_id"] = correlation_id
    context.update(fields)
    return context


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """
    Adds the logging context and the adapter's bound fields to every record.

    Per-call ``extra`` fields win over bound ones.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        fields = {**self.extra, **(kwargs.get("extra") or {})}
        kwargs["extra"] = get_logging_context(**fields)
        return msg, kwargs

    def bind(self, **fields: Any) -> "ContextualLoggerAdapter":
        """A new adapter on the same logger with ``fields`` added."""
        return type(self)(self.logger, {**self.extra, **fields})


def get_logger(name: str, **fields: Any) -> ContextualLoggerAdapter:
    """
    Get a contextual logger.

    Args:
        name: Logger name (typically __name__)
        **fields: Fields bound to every record (db_name, collection, ...)
    """
    return ContextualLoggerAdapter(logging.getLogger(name), fields)


def log_operation(
    logger: logging.Logger | logging.LoggerAdapter,
    operation: str,
    level: int = logging.INFO,
    success: bool = True,
    duration_ms: float | None = None,
    **context: Any,
) -> None:
    """
    Log the outcome of an operation.

    Args:
        logger: Logger or adapter to write through
        operation: Operation name (e.g. "connection.close")
        level: Log level
        success: Whether the operation succeeded
        duration_ms: Operation duration in milliseconds
        **context: Extra record fields
    """
    fields: dict[str, Any] = {"operation": operation, "success": success, **context}
    message = f"{'Operation' if success else 'Operation failed'}: {operation}"
    if duration_ms is not None:
        fields["duration_ms"] = round(duration_ms, 2)
        message += f" (duration: {duration_ms:.2f}ms)"
    logger.log(level, message, extra=get_logging_context(**fields))
