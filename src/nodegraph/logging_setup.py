"""Structured logging setup for the node-graph tools.

Log events go to stderr so that dumps written to stdout stay machine-readable.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Dict, List

import structlog

LEVEL_NAMES = ("DEBUG", "INFO", "WARNING", "ERROR")

# Presets selectable with ``nodegraph demo --env``
CONFIGS: Dict[str, Dict[str, Any]] = {
    "development": {"level": "DEBUG", "enable_colors": True, "enable_json": False},
    "production": {"level": "INFO", "enable_colors": False, "enable_json": True},
    "testing": {"level": "WARNING", "enable_colors": False, "enable_json": False},
}


def _level_number(level: str) -> int:
    name = level.upper()
    if name not in LEVEL_NAMES:
        raise ValueError(f"Unknown log level: {level}")
    return getattr(logging, name)


def configure_logging(
    level: str = "INFO",
    enable_colors: bool = True,
    enable_json: bool = False,
    extra_processors: List[Any] | None = None,
) -> None:
    """Configure structlog for graph construction and finalize events.

    Args:
        level: Minimum level, one of ``LEVEL_NAMES``
        enable_colors: Colored console output when stderr is a terminal
        enable_json: Render one JSON object per event instead
        extra_processors: Processors run before the renderer

    Raises:
        ValueError: If the level is unknown
    """
    log_level = _level_number(level)
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=log_level)

    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="ISO"),
        *(extra_processors or []),
    ]
    if enable_json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=enable_colors and sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.WriteLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def configure_for(environment: str, **overrides: Any) -> Dict[str, Any]:
    """Apply one of the ``CONFIGS`` presets.

    Returns:
        The settings that were applied

    Raises:
        ValueError: If the environment or an overridden level is unknown
    """
    if environment not in CONFIGS:
        raise ValueError(f"Unknown logging environment: {environment}")
    settings = {**CONFIGS[environment], **overrides}
    configure_logging(**settings)
    return settings
