"""
Utility helpers for the drive reconciler.
"""

from .activity import ActivityTracker, StallMonitor
from .files import write_json_atomic, write_report
from .flags import env_flag, is_truthy
from .logging_setup import LOGGER_NAME, setup_logging
from .progress import ProgressCounter, ProgressReporter

__all__ = [
    "setup_logging",
    "LOGGER_NAME",
    "ProgressCounter",
    "ProgressReporter",
    "ActivityTracker",
    "StallMonitor",
    "env_flag",
    "is_truthy",
    "write_json_atomic",
    "write_report",
]
