"""structlog setup for passwise entry points."""

import logging

import structlog


def configure_logging(level: str = "INFO", json: bool = False) -> None:
    """
    Configure structlog for console or JSON output.

    Args:
        level: Minimum log level name
        json: Render JSON lines instead of the dev console format
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
    )
