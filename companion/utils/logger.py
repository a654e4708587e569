"""Process-wide log setup for the companion backend and its loops."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from companion.utils.config import get_settings


_configured = False


def configure_logging(level: Optional[str] = None) -> None:
    """Install the stdout handler on first use.

    The level comes from `COMPANION_LOG_LEVEL` unless given. Request retries,
    cache sweeps and the background refresh loops all write to this stream,
    tagged with their module name.
    """

    global _configured
    if _configured:
        return

    resolved_level = (level or get_settings().log_level).upper()
    logging.basicConfig(
        level=resolved_level,
        format="%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    # urllib3 logs every connection at DEBUG; keep it to warnings.
    logging.getLogger("urllib3").setLevel(max(logging.WARNING, logging.getLevelName(resolved_level)))
    _configured = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)
