"""structlog setup.

Every component accepts a ``logger=`` at construction and otherwise builds
its own component-tagged logger with ``get_logger``.
"""

from __future__ import annotations

import logging
from typing import Any

import structlog


def configure_logging(level: str = "info", *, json: bool = False) -> None:
    """Configure structlog with a level filter and a renderer."""
    renderer: Any
    if json:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
    )


def get_logger(component: str, **initial_values: Any) -> Any:
    """Return a bound logger tagged with the component name."""
    return structlog.get_logger(component).bind(component=component, **initial_values)
