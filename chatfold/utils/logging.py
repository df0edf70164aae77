"""
Loguru setup helpers for Chatfold
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

from loguru import logger


class LoggingManager:
    """Install and track the loguru sinks used by Chatfold."""

    _initialized = False
    _handler_ids: list[int] = []

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._initialized

    @classmethod
    def setup_logging(cls, settings: Any, verbose: bool = False) -> None:
        """Replace the active sinks with ones described by ``settings``.

        ``settings`` is a :class:`chatfold.config.settings.LoggingSettings`
        (or anything exposing the same attributes).
        """

        cls.reset()
        level = getattr(settings.level, "value", settings.level)
        if verbose:
            level = "DEBUG"

        cls._handler_ids.append(
            logger.add(
                sys.stderr,
                level=level,
                format=settings.format,
                serialize=bool(settings.structured_logging),
                backtrace=verbose,
                diagnose=verbose,
            )
        )

        if settings.log_to_file:
            log_path = Path(settings.log_file_path)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            cls._handler_ids.append(
                logger.add(
                    str(log_path),
                    level=level,
                    format=settings.format,
                    rotation=settings.log_rotation,
                    retention=settings.log_retention,
                    compression=settings.log_compression,
                    serialize=bool(settings.structured_logging),
                    enqueue=True,
                )
            )

        cls._initialized = True
        logger.debug("Logging configured at level {}", level)

    @classmethod
    def reset(cls) -> None:
        """Remove every sink, including loguru's default stderr handler."""

        logger.remove()
        cls._handler_ids = []
        cls._initialized = False


__all__ = ["LoggingManager"]
