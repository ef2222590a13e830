"""
Logging configuration for the drive reconciler.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Dict

LOGGER_NAME = "drive_reconciler"


def setup_logging(log_dir: Path, level: int = logging.INFO) -> Dict[str, logging.Logger]:
    """Initialize loggers and return a mapping of named loggers."""
    log_dir.mkdir(parents=True, exist_ok=True)
    date_stamp = datetime.utcnow().strftime("%Y%m%d")
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    master_log = log_dir / f"reconciler_{date_stamp}.log"
    error_log = log_dir / f"errors_{date_stamp}.log"
    progress_log = log_dir / f"progress_{date_stamp}.log"
    movement_log = log_dir / f"drive_mutations_{date_stamp}.log"

    base_logger = logging.getLogger(LOGGER_NAME)
    if not base_logger.handlers:
        base_logger.setLevel(level)
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        base_logger.addHandler(stream_handler)

        file_handler = logging.FileHandler(master_log, encoding="utf-8")
        file_handler.setFormatter(formatter)
        base_logger.addHandler(file_handler)

        error_handler = logging.FileHandler(error_log, encoding="utf-8")
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)
        base_logger.addHandler(error_handler)

    progress_logger = logging.getLogger(f"{LOGGER_NAME}.progress")
    if not progress_logger.handlers:
        progress_logger.setLevel(logging.INFO)
        progress_handler = logging.FileHandler(progress_log, encoding="utf-8")
        progress_handler.setFormatter(formatter)
        progress_logger.addHandler(progress_handler)
        progress_logger.propagate = False

    # Every remote mutation (move, trash, rename, tag) lands here with its ids.
    movement_logger = logging.getLogger(f"{LOGGER_NAME}.movement")
    if not movement_logger.handlers:
        movement_logger.setLevel(logging.INFO)
        move_handler = logging.FileHandler(movement_log, encoding="utf-8")
        move_handler.setFormatter(formatter)
        movement_logger.addHandler(move_handler)
        movement_logger.propagate = False

    return {"main": base_logger, "progress": progress_logger, "movement": movement_logger}
