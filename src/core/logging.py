"""Structured logging setup."""

import logging

import structlog

from src.config import Settings


def configure_logging(settings: Settings) -> None:
    """Configure structlog for the API server, worker and CLI.

    JSON lines in production, colored console output when ``debug`` is set.
    Context bound with ``structlog.contextvars`` (execution_id, workflow_id)
    is merged into every event.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer() if not settings.debug else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
