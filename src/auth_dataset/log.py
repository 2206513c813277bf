"""structlog setup for the command-line tools."""

import logging
import sys

import structlog


def configure_logging(verbose: bool = False) -> None:
    """Send key-value logs to stderr; DEBUG when verbose, else WARNING."""
    level = logging.DEBUG if verbose else logging.WARNING
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
    )
