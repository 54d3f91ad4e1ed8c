"""Console logging configuration.

Console output goes through a Rich handler on stderr so it never mixes with
the CLI's stdout rendering.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "uvicorn.access")


def configure_logging(verbosity: int = 0, level: str | None = None) -> None:
    """Configure logging for Code Story.

    Args:
        verbosity: 0=WARNING (default), 1=INFO, 2+=DEBUG
        level: Explicit level name; overrides ``verbosity`` when given
    """
    levels = {0: logging.WARNING, 1: logging.INFO}
    console_level = levels.get(verbosity, logging.DEBUG)
    if level:
        console_level = logging.getLevelName(level.upper())

    handler = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        show_time=verbosity >= 1,
        show_path=verbosity >= 2,
        markup=False,
    )

    logging.basicConfig(
        level=console_level,
        format="%(message)s",
        handlers=[handler],
        force=True,
    )

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
