"""Loguru sink configuration for hosts embedding the engine."""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

from hybrid_rag.utils.config import LoggingConfig

_CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"
)


def setup_logging(config: LoggingConfig | None = None, *, console: bool = True) -> None:
    """Replace Loguru's default sink with the configured console and file sinks."""
    config = config or LoggingConfig()
    level = config.level.upper()
    serialize = config.format == "json"

    logger.remove()

    if console:
        if serialize:
            logger.add(sys.stderr, level=level, serialize=True)
        else:
            logger.add(sys.stderr, format=_CONSOLE_FORMAT, level=level)

    if config.file:
        target = Path(config.file)
        target.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(target),
            level=level,
            rotation=f"{config.max_size_mb} MB",
            retention=config.backup_count,
            serialize=serialize,
        )
