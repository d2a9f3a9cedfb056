"""Structured logging setup via structlog."""

import logging

import structlog

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def configure_logging(level: str | int = "WARNING") -> None:
    """Route structlog through a console renderer at ``level``.

    Example:
        >>> configure_logging("DEBUG")
        >>> structlog.get_logger("cubecell").info("cell_compiled", cube="Tax")
    """
    if isinstance(level, str):
        if level.upper() not in LOG_LEVELS:
            raise ValueError(f"unknown log level {level!r}, expected one of {', '.join(LOG_LEVELS)}")
        level = logging.getLevelName(level.upper())
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
