"""Structured logging configuration with structlog."""

import logging

import structlog
from structlog.typing import EventDict, WrappedLogger

from boostledger.config import Settings

# Largest integer a JSON consumer using IEEE doubles reads back exactly.
MAX_SAFE_INTEGER = 2**53 - 1


def stringify_large_ints(_logger: WrappedLogger, _method: str, event_dict: EventDict) -> EventDict:
    """Render token amounts beyond the double-precision range as strings."""
    for key, value in event_dict.items():
        if isinstance(value, int) and not isinstance(value, bool) and abs(value) > MAX_SAFE_INTEGER:
            event_dict[key] = str(value)
    return event_dict


def setup_logging(settings: Settings) -> None:
    """Configure structlog once per process.

    JSON output tags every line with ``service`` and ``environment``;
    ``log_format=console`` switches to the dev renderer.
    """
    json_output = settings.log_format == "json"
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    )

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if json_output:
        processors.append(stringify_large_ints)
    processors.append(renderer)

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(service="boost-ledger", environment=settings.environment)

    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
