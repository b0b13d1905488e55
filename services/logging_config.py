"""
Logging setup for the CipherPay core.

All modules obtain their logger through `get_logger(name)` so that every
record lands under the `cipherpay.` hierarchy and can be tuned with a
single `setup_logging()` call (or the CIPHERPAY_LOG_LEVEL env var).
"""
import logging
import os
import sys
from typing import Optional

ROOT_LOGGER_NAME = "cipherpay"
DEFAULT_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"

_configured = False

logging.getLogger(ROOT_LOGGER_NAME).addHandler(logging.NullHandler())


def setup_logging(level: Optional[str] = None, fmt: str = DEFAULT_FORMAT) -> logging.Logger:
    """
    Configure the `cipherpay` logger once per process.

    Args:
        level: Log level name; falls back to CIPHERPAY_LOG_LEVEL, then INFO
        fmt: logging format string

    Returns:
        The root `cipherpay` logger
    """
    global _configured

    root = logging.getLogger(ROOT_LOGGER_NAME)
    lvl = (level or os.getenv("CIPHERPAY_LOG_LEVEL", "INFO")).upper()
    root.setLevel(getattr(logging, lvl, logging.INFO))

    if not _configured:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(fmt))
        root.addHandler(handler)
        root.propagate = False
        _configured = True

    return root


def get_logger(name: str) -> logging.Logger:
    """Return a child logger of `cipherpay` (e.g. `cipherpay.orchestrator`)."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
