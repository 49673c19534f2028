"""
Structured logging configuration for the application.

Uses structlog with a console renderer in development and JSON lines
elsewhere. Session and generation context is carried through
contextvars so every line emitted inside a capture pipeline is tagged.
"""

import logging
import sys
from typing import Any, Literal, Mapping

import structlog
from structlog.types import EventDict, Processor

NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "openai", "aiohttp.access")

# Keys that may carry raw audio or credentials
_SCRUBBED_KEYS = frozenset({"audio", "api_key", "authorization", "payload"})


def scrub_event(_: Any, __: str, event_dict: EventDict) -> EventDict:
    """Replace raw audio and credential values with a size marker."""
    for key in _SCRUBBED_KEYS.intersection(event_dict):
        value = event_dict[key]
        size = len(value) if hasattr(value, "__len__") else 0
        event_dict[key] = f"<scrubbed {size}>"
    return event_dict


def setup_logging(
    log_level: str = "INFO",
    environment: Literal["development", "staging", "production"] = "development",
) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Minimum log level to output
        environment: Application environment (affects output format)
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        scrub_event,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if environment == "development":
        renderer: Processor = structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.plain_traceback,
        )
        processors = [*shared_processors, renderer]
    else:
        processors = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=numeric_level,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class LogContext:
    """
    Bind log context for the duration of a block.

    Values an outer context had bound are restored on exit, so nested
    blocks (a session around a segment) unwind cleanly.

    Example:
        with LogContext(session_id="ws-42", generation=3):
            logger.info("chunk_forwarded")  # includes session_id and generation
    """

    def __init__(self, **kwargs: Any) -> None:
        self.context = kwargs
        self._tokens: Mapping[str, Any] = {}

    def __enter__(self) -> "LogContext":
        self._tokens = structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, *args: Any) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)
