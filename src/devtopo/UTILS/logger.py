"""
Logging configuration for devtopo.

Every module logs through a child of the ``devtopo`` logger, which is
configured once with a console handler and, when ``LOG_FILE`` is set,
a file handler.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Optional, Union

ROOT_LOGGER = "devtopo"

_FORMAT = "[%(asctime)s] [%(name)s] [%(levelname)s] %(message)s"


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get a logger below the ``devtopo`` root logger.

    Args:
        name: Dotted module name. ``None`` returns the root logger.

    Returns:
        Logger instance.
    """
    root = logging.getLogger(ROOT_LOGGER)
    if not root.handlers:
        configure_logger(root)

    if name is None or name == ROOT_LOGGER:
        return root
    if name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return root.getChild(name)


def configure_logger(
    logger_instance: logging.Logger, level: Union[int, str, None] = None
) -> None:
    """
    Configure a logger instance with console and optional file handlers.

    Args:
        logger_instance: Logger instance to configure.
        level: Log level; defaults to ``DEVTOPO_LOG_LEVEL`` or INFO.
    """
    if level is None:
        level = os.environ.get("DEVTOPO_LOG_LEVEL", "INFO").upper()
    try:
        logger_instance.setLevel(level)
    except (TypeError, ValueError):
        logger_instance.setLevel(logging.INFO)
    logger_instance.propagate = False

    formatter = logging.Formatter(_FORMAT)

    log_file = os.environ.get("LOG_FILE")
    if log_file:
        try:
            path = Path(log_file)
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(path)
            file_handler.setFormatter(formatter)
            logger_instance.addHandler(file_handler)
        except OSError as e:
            print(f"Warning: Could not set up file logging: {e}", file=sys.stderr)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    logger_instance.addHandler(console_handler)


def set_level(level: Union[int, str]) -> None:
    """Change the level of the devtopo root logger. Unknown names fall back to INFO."""
    try:
        get_logger().setLevel(level.upper() if isinstance(level, str) else level)
    except (TypeError, ValueError):
        get_logger().setLevel(logging.INFO)


__all__ = ["get_logger", "configure_logger", "set_level"]
