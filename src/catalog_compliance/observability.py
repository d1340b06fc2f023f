"""Structured logging for catalog-compliance.

Library modules obtain a logger with ``get_logger(__name__)`` and log with
keyword context::

    logger.info("Audit recomputed", tenant_id=tenant_id, failed=3)

``configure_logging`` is called once by the application lifespan. Until then
structlog's defaults apply, which keeps tests quiet and hermetic.
"""

import logging
import sys

import structlog


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ...).
        json_logs: Render JSON lines instead of the human-readable console format.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
        force=True,
    )

    renderer: structlog.typing.Processor
    if json_logs:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.typing.FilteringBoundLogger:
    """Return a keyword-style logger bound to a module name.

    Args:
        name: Usually ``__name__`` of the calling module.

    Returns:
        A structlog logger.
    """
    return structlog.get_logger(name)
