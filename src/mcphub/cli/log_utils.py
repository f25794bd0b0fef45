"""Logging setup for the command line."""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"


def setup_logger(level: str = "INFO") -> logging.Logger:
    """Configure the ``mcphub`` logger hierarchy to write to stderr.

    Calling this more than once replaces the handler instead of stacking them.
    """
    level_num = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger("mcphub")
    for handler in list(root.handlers):
        root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(handler)
    root.setLevel(level_num)
    root.propagate = False

    # The SDK and the HTTP client are noisy below WARNING
    for name in ("mcp", "httpx"):
        logging.getLogger(name).setLevel(max(level_num, logging.WARNING))
    return root


def get_logger(level: str = "INFO") -> logging.Logger:
    """Return the CLI logger after configuring output at *level*."""
    setup_logger(level)
    return logging.getLogger("mcphub.cli")
