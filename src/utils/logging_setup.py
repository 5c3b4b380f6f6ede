"""
Logging configuration for ready-sync.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

LOGGER_NAME = "ready_sync"


def setup_logging(log_dir: Optional[Path] = None, verbose: bool = False) -> logging.Logger:
    """Initialize the ready_sync logger hierarchy and return its root logger.

    Console output goes to stderr since stdout carries the JSON report.
    """
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    base_logger = logging.getLogger(LOGGER_NAME)
    base_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    if base_logger.handlers:
        return base_logger

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    base_logger.addHandler(stream_handler)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        date_stamp = datetime.now(timezone.utc).strftime("%Y%m%d")

        file_handler = logging.FileHandler(log_dir / f"master_log_{date_stamp}.log", encoding="utf-8")
        file_handler.setFormatter(formatter)
        base_logger.addHandler(file_handler)

        error_handler = logging.FileHandler(log_dir / f"error_log_{date_stamp}.log", encoding="utf-8")
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)
        base_logger.addHandler(error_handler)

    return base_logger
