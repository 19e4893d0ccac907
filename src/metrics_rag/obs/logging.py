"""Logger factory with one consistent console format for every module.

Usage:
    from metrics_rag.obs.logging import get_logger
    logger = get_logger(__name__)
"""

from __future__ import annotations

import logging
import sys

_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_ENV_LEVEL_MAP = {
    "dev": logging.DEBUG,
    "prod": logging.WARNING,
}
_ROOT_NAME = "metrics_rag"

_default_level = logging.INFO


def configure_logging(*, env: str = "dev", level: str | None = None) -> None:
    """Set the level used by loggers created afterwards and by the package root."""

    global _default_level
    if level is not None:
        _default_level = logging.getLevelName(level.upper())
        if not isinstance(_default_level, int):
            _default_level = logging.INFO
    else:
        _default_level = _ENV_LEVEL_MAP.get(env, logging.INFO)
    get_logger(_ROOT_NAME).setLevel(_default_level)


def get_logger(name: str, level: int | None = None) -> logging.Logger:
    """Return a named logger; handlers are attached once, at the package root."""

    root = logging.getLogger(_ROOT_NAME)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(fmt=_FORMAT, datefmt=_DATE_FORMAT))
        root.addHandler(handler)
        root.setLevel(_default_level)
        root.propagate = False

    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level)
    return logger
