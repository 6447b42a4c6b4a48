"""Structured logging with structlog.

Modules keep using ``logging.getLogger(__name__)``; records are routed
through structlog's ProcessorFormatter so they come out as JSON lines
or as console output depending on configuration.
"""

import logging
import sys

import structlog

SERVICE_NAME = "aquameter-backend"


def _inject_service(logger_name: str, method_name: str, event_dict: dict) -> dict:
    """Structlog processor: tag every event with the service name."""
    event_dict["service"] = SERVICE_NAME
    return event_dict


def setup_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Initialize structlog + stdlib logging.

    Call once at startup, before anything logs.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _inject_service,
    ]

    if json_logs:
        renderers = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        renderers = [structlog.dev.ConsoleRenderer(colors=False)]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *renderers,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
