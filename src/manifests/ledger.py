"""
Generic keyed manifest ledger backed by a versioned JSON file.

A ledger records completed units of work so that batch jobs can be resumed
without repeating them. Entries are grouped by a natural key: adding entries
for a key replaces every existing entry that shares it. Entries are removed by
their own id when a unit of work is rolled back.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Generic, Iterable, Optional, TypeVar

from errors import ManifestCorruptError
from utils import write_json_atomic

MANIFEST_VERSION = 1

E = TypeVar("E")


@dataclass
class Manifest(Generic[E]):
    version: int = MANIFEST_VERSION
    last_updated: str = ""
    entries: list[E] = field(default_factory=list)


class ManifestLedger(Generic[E]):
    """Load, replace-by-key and remove-by-id over a JSON manifest file."""

    def __init__(
        self,
        path: Path,
        entry_from_dict: Callable[[dict], E],
        entry_to_dict: Callable[[E], dict],
        key_of: Callable[[E], str],
        id_of: Callable[[E], str],
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.path = Path(path)
        self.entry_from_dict = entry_from_dict
        self.entry_to_dict = entry_to_dict
        self.key_of = key_of
        self.id_of = id_of
        self.logger = logger or logging.getLogger("drive_reconciler")

    def load(self) -> Manifest[E]:
        """Return the persisted manifest, or an empty one if the file is absent."""
        if not self.path.exists():
            return Manifest(last_updated=datetime.utcnow().isoformat())
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ManifestCorruptError(self.path, str(exc)) from exc
        if not isinstance(raw, dict) or not isinstance(raw.get("entries"), list):
            raise ManifestCorruptError(self.path, "expected an object with an 'entries' list")
        try:
            version = int(raw.get("version", MANIFEST_VERSION))
        except (TypeError, ValueError) as exc:
            raise ManifestCorruptError(self.path, f"invalid version: {exc}") from exc
        try:
            entries = [self.entry_from_dict(item) for item in raw["entries"]]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise ManifestCorruptError(self.path, f"invalid entry: {exc}") from exc
        return Manifest(
            version=version,
            last_updated=str(raw.get("lastUpdated", "")),
            entries=entries,
        )

    def save(self, manifest: Manifest[E]) -> None:
        manifest.last_updated = datetime.utcnow().isoformat()
        write_json_atomic(
            self.path,
            {
                "version": manifest.version,
                "lastUpdated": manifest.last_updated,
                "entries": [self.entry_to_dict(entry) for entry in manifest.entries],
            },
        )

    def add_entries(self, new_entries: Iterable[E]) -> Manifest[E]:
        """Append entries, first dropping existing entries that share a natural key."""
        new_entries = list(new_entries)
        manifest = self.load()
        replaced_keys = {self.key_of(entry) for entry in new_entries}
        kept = [entry for entry in manifest.entries if self.key_of(entry) not in replaced_keys]
        superseded = len(manifest.entries) - len(kept)
        manifest.entries = kept + new_entries
        self.save(manifest)
        if superseded:
            self.logger.info(
                "Manifest %s: superseded %s entr(y/ies) for %s key(s)",
                self.path.name,
                superseded,
                len(replaced_keys),
            )
        return manifest

    def remove_entries(self, ids: Iterable[str]) -> Manifest[E]:
        remove_ids = set(ids)
        manifest = self.load()
        manifest.entries = [entry for entry in manifest.entries if self.id_of(entry) not in remove_ids]
        self.save(manifest)
        return manifest

    def entries(self) -> list[E]:
        return self.load().entries
