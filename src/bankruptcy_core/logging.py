"""Structured logging configuration using structlog."""

import logging
import sys
from typing import Optional

import structlog
from structlog.types import Processor

from .config import EngineConfig


def configure_logging(config: Optional[EngineConfig] = None) -> None:
    """Configure structlog for the engine.

    Development mode: ConsoleRenderer for readability.
    Other environments: JSONRenderer for structured log shipping.

    Args:
        config: Engine configuration (loaded from the environment if omitted)
    """
    config = config or EngineConfig()
    level = getattr(logging, config.log_level, logging.INFO)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if config.is_development:
        processors: list[Processor] = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(sys.stdout),
        cache_logger_on_first_use=False,
    )


def bind_case_context(case_id: str) -> None:
    """Bind the case id to every log line emitted in the current context."""
    structlog.contextvars.bind_contextvars(case_id=case_id)


def clear_case_context() -> None:
    """Remove bound case context."""
    structlog.contextvars.clear_contextvars()
