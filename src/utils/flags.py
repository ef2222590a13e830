"""
Boolean-like value parsing shared by config, env gates and manifests.
"""

from __future__ import annotations

import os
from typing import Any

TRUTHY_VALUES = {"1", "true", "yes", "y", "on"}


def is_truthy(value: Any) -> bool:
    """Interpret a boolean-like value. String matching ignores case and padding."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in TRUTHY_VALUES


def env_flag(name: str) -> bool:
    return is_truthy(os.environ.get(name, ""))
