"""
Build folder hierarchy snapshots from Drive, with an optional JSON cache.
"""

from __future__ import annotations

import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from cloud.protocol import DriveClient, DriveItem
from config import AppConfig
from errors import CacheCorruptError, CacheMissingError, StructuralError
from hierarchy.tree import HierarchyTree
from utils import ProgressCounter, write_json_atomic


class CacheMode(str, Enum):
    READ_WRITE = "read-write"
    READ = "read"
    WRITE = "write"
    NONE = "none"

    @classmethod
    def parse(cls, value: "str | CacheMode") -> "CacheMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            choices = ", ".join(mode.value for mode in cls)
            raise ValueError(f"Unknown cache mode {value!r}; expected one of {choices}") from exc


class HierarchyTreeBuilder:
    """Walk the folder graph below the configured root and materialize a snapshot."""

    def __init__(
        self,
        config: AppConfig,
        client: DriveClient,
        logger: Optional[logging.Logger] = None,
        progress_logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.client = client
        self.logger = logger or logging.getLogger("drive_reconciler")
        self.progress_logger = progress_logger or logging.getLogger("drive_reconciler.progress")
        self.clock = clock
        self.root_folder_id = self.config.get("drive", "root_folder_id", default=None)
        self.cache_path = self.config.resolve_path(
            "hierarchy", "cache_path", default="data/hierarchy-cache.json"
        )
        self.default_cache_mode = CacheMode.parse(
            self.config.get("hierarchy", "cache_mode", default=CacheMode.READ_WRITE.value)
        )
        self.cache_max_age_seconds = float(
            self.config.get("hierarchy", "cache_max_age_seconds", default=86400)
        )
        self.workers = max(int(self.config.get("hierarchy", "workers", default=4)), 1)
        self.progress_log_interval = int(self.config.get("drive", "progress_log_interval", default=10))

    def build(self, cache_mode: "str | CacheMode | None" = None) -> HierarchyTree:
        """Return a snapshot according to the cache mode. Never returns a partial tree."""
        mode = CacheMode.parse(cache_mode) if cache_mode is not None else self.default_cache_mode
        if mode is CacheMode.READ:
            tree = self.load_cache()
            if tree is None:
                raise CacheMissingError(f"Hierarchy cache not found at {self.cache_path}")
            return tree
        if mode is CacheMode.READ_WRITE and self.is_cache_fresh():
            tree = self.load_cache(require_root=False)
            if tree is not None:
                self.logger.info(
                    "Using cached hierarchy (%s folders, built %s)", tree.total_folders, tree.built_at
                )
                return tree
        tree = self.fetch_live()
        if mode in (CacheMode.READ_WRITE, CacheMode.WRITE):
            self.save_cache(tree)
        return tree

    def fetch_live(self) -> HierarchyTree:
        if not self.root_folder_id:
            raise StructuralError("drive.root_folder_id is not configured")
        started = time.monotonic()
        counter = ProgressCounter(
            "Hierarchy fetch", logger=self.progress_logger, every=max(self.progress_log_interval, 1)
        ).start()
        records: list[tuple[str, str, str]] = []
        seen: set[str] = {self.root_folder_id}
        level = [self.root_folder_id]
        depth = 0
        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="tree-fetch") as executor:
            while level:
                depth += 1
                futures = [executor.submit(self._list_folders, folder_id) for folder_id in level]
                next_level: list[str] = []
                try:
                    # Results are consumed in submission order so the snapshot order is stable.
                    for parent_id, future in zip(level, futures):
                        for item in future.result():
                            if item.id in seen:
                                self.logger.warning(
                                    "Folder %s (%s) has more than one parent; keeping first placement",
                                    item.id,
                                    item.name,
                                )
                                continue
                            seen.add(item.id)
                            records.append((item.id, item.name, parent_id))
                            next_level.append(item.id)
                        counter.advance(note=f"depth={depth} folders={len(records)}")
                except BaseException:
                    for future in futures:
                        future.cancel()
                    self.logger.error("Hierarchy fetch aborted at depth %s; no partial tree kept", depth)
                    raise
                level = next_level
        tree = HierarchyTree.from_records(self.root_folder_id, records, source="live")
        counter.complete(note=f"folders={tree.total_folders} depth={tree.max_depth}")
        self.logger.info(
            "Fetched hierarchy: %s folders, max depth %s in %.1fs",
            tree.total_folders,
            tree.max_depth,
            time.monotonic() - started,
        )
        return tree

    def _list_folders(self, folder_id: str) -> list[DriveItem]:
        items: list[DriveItem] = []
        page_token: Optional[str] = None
        pages = 0
        while True:
            page = self.client.list_children(folder_id, page_token=page_token, folders_only=True)
            items.extend(
                item
                for item in page.items
                if (item.is_folder or not item.mime_type) and item.properties.get("deleted") != "true"
            )
            pages += 1
            if self.progress_log_interval > 0 and pages % self.progress_log_interval == 0:
                self.progress_logger.info("Listing %s: pages=%s folders=%s", folder_id, pages, len(items))
            page_token = page.next_page_token
            if not page_token:
                return items

    def load_cache(self, require_root: bool = True) -> Optional[HierarchyTree]:
        """Read the cached snapshot.

        A cache for a different root raises when require_root is set and is
        otherwise treated as absent.
        """
        if not self.cache_path.exists():
            return None
        try:
            payload = json.loads(self.cache_path.read_text(encoding="utf-8"))
            tree = HierarchyTree.from_dict(payload, source="cache")
        except (OSError, json.JSONDecodeError, KeyError, TypeError, AttributeError) as exc:
            raise CacheCorruptError(f"Hierarchy cache {self.cache_path} is unreadable: {exc}") from exc
        if self.root_folder_id and tree.root_id != self.root_folder_id:
            message = f"Hierarchy cache {self.cache_path} belongs to root {tree.root_id}, not {self.root_folder_id}"
            if require_root:
                raise CacheCorruptError(message)
            self.logger.info("%s; fetching live", message)
            return None
        return tree

    def is_cache_fresh(self) -> bool:
        if not self.cache_path.exists():
            return False
        if self.cache_max_age_seconds <= 0:
            return True
        age = self.clock() - self.cache_path.stat().st_mtime
        return age <= self.cache_max_age_seconds

    def save_cache(self, tree: HierarchyTree) -> Path:
        write_json_atomic(self.cache_path, tree.to_dict())
        self.logger.info("Hierarchy cache written to %s", self.cache_path)
        return self.cache_path

    def clear_cache(self) -> bool:
        """Delete the cache file. Returns True if one existed."""
        if self.cache_path.exists():
            self.cache_path.unlink()
            self.logger.info("Hierarchy cache cleared: %s", self.cache_path)
            return True
        return False
