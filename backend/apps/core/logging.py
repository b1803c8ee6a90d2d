"""
Structured logging configuration using structlog.

Every module logs through a bound structlog logger and uses snake_case event
names with key/value context, so sync sessions can be traced end to end:

    from apps.core.logging import get_logger

    logger = get_logger(__name__)
    logger.info("sync_item_enqueued", item_id=42, device_id="dev-1")

Context fields shared by many log lines (request trace id, sync session id,
device id) are bound once with ``bind_contextvars`` or ``log_context`` and
merged into every subsequent event by ``merge_contextvars``.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import EventDict, Processor


def _rename_correlation_id(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Expose the request correlation id as ``trace_id``."""
    if "correlation_id" in event_dict:
        event_dict["trace_id"] = str(event_dict.pop("correlation_id"))
    return event_dict


def _convert_duration_to_nanoseconds(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Convert ``duration_ms`` to ``duration`` in nanoseconds."""
    if "duration_ms" in event_dict:
        duration_ms = event_dict.pop("duration_ms")
        event_dict["duration"] = int(duration_ms * 1_000_000)
    return event_dict


def configure_logging(json_format: bool = True, log_level: str = "INFO") -> None:
    """
    Configure structlog and route stdlib logging through it.

    Args:
        json_format: If True, output JSON (production). If False, pretty console output.
        log_level: Minimum log level to output.
    """
    log_level_int = getattr(logging, log_level.upper(), logging.INFO)

    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        _rename_correlation_id,
        _convert_duration_to_nanoseconds,
    ]

    if json_format:
        renderer: Processor = structlog.processors.JSONRenderer()
        pre_chain.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level_int)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, typically ``get_logger(__name__)``."""
    return structlog.get_logger(name)


def bind_contextvars(**kwargs: Any) -> None:
    """
    Bind key-value pairs to the current context.

    These values are included in all subsequent log messages within the
    current request/task context until ``clear_contextvars`` runs.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_contextvars() -> None:
    """Clear all bound context variables (end of request)."""
    structlog.contextvars.clear_contextvars()


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """
    Bind context for the duration of a block, restoring the previous values after.

    Usage:
        with log_context(sync_session_id=log.id, device_id=log.device_id):
            process_batch(...)
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield
