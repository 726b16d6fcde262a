"""Process-wide logging setup.

Modules obtain their logger with ``logging.getLogger(__name__)``; this module
only configures the root handler once at startup.
"""
from __future__ import annotations

import logging
import sys

from .config import settings

_LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger from settings. Call once at startup."""

    resolved = getattr(logging, (level or settings.log_level).upper(), logging.INFO)
    logging.basicConfig(
        level=resolved,
        format=_LOG_FORMAT,
        datefmt=_DATE_FORMAT,
        stream=sys.stdout,
        force=True,
    )

    # aiortc and its ICE stack are chatty at INFO.
    logging.getLogger("aioice").setLevel(logging.WARNING)
    logging.getLogger("aiortc").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)
