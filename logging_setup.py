import logging
import sys

import structlog


def setup_logging(level: str = "INFO", json: bool = False) -> None:
    """structured logging for client and backend, json lines or colored console output"""

    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json:
        shared_processors.append(structlog.processors.JSONRenderer())
    else:
        shared_processors.append(structlog.dev.ConsoleRenderer())

    log_level = logging.getLevelName(level.upper())
    structlog.configure(
        processors=shared_processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # sqlalchemy and werkzeug log through the stdlib
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)
