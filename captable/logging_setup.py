"""Process-level logging configuration for operator entry points."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str = "INFO") -> int:
    """Configure root logging once; returns the numeric level applied."""
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise RuntimeError(f"Invalid value for LOG_LEVEL: {level}")
    logging.basicConfig(level=numeric, format=LOG_FORMAT)
    logging.getLogger().setLevel(numeric)
    # web3 request logging is noisy at INFO.
    logging.getLogger("web3").setLevel(max(numeric, logging.WARNING))
    logging.getLogger("urllib3").setLevel(max(numeric, logging.WARNING))
    return numeric
