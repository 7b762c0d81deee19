"""Logging helpers shared by every mcpforge module."""

from __future__ import annotations

import logging
import sys

ROOT_LOGGER = "mcpforge"
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the mcpforge namespace."""
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


def setup_logging(verbose: bool = False) -> None:
    """Attach a single stream handler to the mcpforge logger.

    Safe to call more than once; the handler is only added the first time
    and later calls rebind it to the current sys.stderr.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in logger.handlers:
        if getattr(handler, "_mcpforge", False):
            handler.setStream(sys.stderr)  # type: ignore[attr-defined]
            break
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._mcpforge = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    logger.propagate = False
