"""
Structured logging shared by every component.

Usage:
    from shared.logging import get_logger

    log = get_logger("voting", "debate")
    log.info("voting.round.complete", round=2, valid_votes=3)

Event names are dotted strings; everything else goes in keyword fields.
"""

import logging
from typing import Any

import structlog


def configure_logging(level: str = "INFO", *, json_output: bool = False) -> None:
    """
    Configure structlog for the process.

    Args:
        level: Minimum level name ("DEBUG", "INFO", ...)
        json_output: Emit one JSON object per line instead of console output
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, module: str) -> Any:
    """
    Get a logger bound to a component and module.

    Args:
        component: Top-level component ("llm", "voting", ...)
        module: Module path inside the component ("client", "debate", ...)

    The returned proxy resolves the structlog configuration on every call,
    so module-level loggers follow a later ``configure_logging``.
    """
    return structlog.get_logger(component=component, module=module)
