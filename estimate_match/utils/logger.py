"""
Structured Logging
==================

structlog setup for the matching service. Every event carries the service
name, version and deployment environment; production renders JSON lines,
other environments a colored console format.
"""

import logging
import sys

import structlog
from structlog.typing import EventDict, Processor, WrappedLogger

from estimate_match import __version__
from estimate_match.config.settings import Settings

SERVICE_NAME = "estimate-match"


def add_service_context(settings: Settings) -> Processor:
    """Build a processor stamping service identity onto each event."""
    context = {
        "service": SERVICE_NAME,
        "version": __version__,
        "environment": settings.environment,
    }

    def processor(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        for key, value in context.items():
            event_dict.setdefault(key, value)
        return event_dict

    return processor


def build_processors(settings: Settings) -> list[Processor]:
    """Processor chain for the given settings, renderer last."""
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_service_context(settings),
    ]

    if settings.is_production:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    return processors


def configure_logging(settings: Settings) -> None:
    """
    Route structlog through the stdlib root logger at settings.log_level.

    Called once by the entry point with the same Settings the app is built
    from; uvicorn's own loggers go through the same handler.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
        force=True,
    )

    structlog.configure(
        processors=build_processors(settings),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger named after the calling module."""
    return structlog.get_logger(name)
