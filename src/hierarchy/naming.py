"""
Folder name parsing for sync-tool collision suffixes.
"""

from __future__ import annotations

import re
from typing import Optional

# "Name (2)" as produced by Finder/iCloud/Drive sync when a name already exists.
APPLE_SUFFIX_PATTERN = re.compile(r"^(?P<base>.*\S) \((?P<number>\d+)\)$")


def split_apple_suffix(name: str) -> tuple[str, Optional[int]]:
    """Split "Acme (2)" into ("Acme", 2). Unsuffixed names return (name, None)."""
    match = APPLE_SUFFIX_PATTERN.match(name)
    if match is None:
        return name, None
    return match.group("base"), int(match.group("number"))


def has_apple_suffix(name: str) -> bool:
    return APPLE_SUFFIX_PATTERN.match(name) is not None
