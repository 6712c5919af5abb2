"""
Logging setup for command-line entry points.

Library modules log through ``logging.getLogger(__name__)``; entry points
call :func:`configure_logging` once to route records through structlog.
"""

import logging

import structlog


def configure_logging(level: str = "INFO") -> None:
    """
    Configure structlog over the standard library logging module.

    Parameters
    ----------
    level : str
        Logging level name. DEBUG switches to the console renderer,
        any other level renders JSON lines.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
            if level.upper() != "DEBUG"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
    )


def bind_run_context(**values) -> None:
    """Bind key/value pairs (e.g. huc, seed) to every subsequent log record."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**values)
