import json
import threading
from pathlib import Path
from typing import Any, Dict, Optional

import pytest
import yaml

from cloud.protocol import FOLDER_MIME_TYPE, DriveItem, DrivePage
from config import AppConfig
from database import DatabaseManager
from errors import MetadataSizeLimitError, RemoteCallError, TransientRemoteError

ROOT_ID = "root"


class FakeDrive:
    """In-memory DriveClient with paging and failure injection."""

    def __init__(self, page_size: int = 100, metadata_limit: Optional[int] = None) -> None:
        self.page_size = page_size
        self.metadata_limit = metadata_limit
        self.items: Dict[str, Dict[str, Any]] = {}
        self.calls: list[tuple] = []
        self.failures: Dict[tuple[str, str], Exception] = {}
        self.fail_once: Dict[tuple[str, str], Exception] = {}
        self._lock = threading.Lock()
        self._counter = 0

    # Setup helpers

    def add_folder(self, name: str, parent_id: str = ROOT_ID, item_id: Optional[str] = None) -> str:
        return self._add(name, parent_id, FOLDER_MIME_TYPE, item_id)

    def add_file(self, name: str, parent_id: str, item_id: Optional[str] = None) -> str:
        return self._add(name, parent_id, "application/pdf", item_id)

    def _add(self, name: str, parent_id: str, mime_type: str, item_id: Optional[str]) -> str:
        with self._lock:
            self._counter += 1
            item_id = item_id or f"id{self._counter:04d}"
            self.items[item_id] = {
                "name": name,
                "parent": parent_id,
                "mime_type": mime_type,
                "trashed": False,
                "properties": {},
            }
            return item_id

    def children(self, folder_id: str, include_trashed: bool = False) -> list[str]:
        return [
            item_id
            for item_id, item in self.items.items()
            if item["parent"] == folder_id and (include_trashed or not item["trashed"])
        ]

    def child_names(self, folder_id: str) -> list[str]:
        return sorted(self.items[item_id]["name"] for item_id in self.children(folder_id))

    def mutations(self, operation: Optional[str] = None) -> list[tuple]:
        names = {"move_item", "trash_item", "untrash_item", "update_metadata"}
        return [call for call in self.calls if call[0] in names and (operation is None or call[0] == operation)]

    def shape(self, folder_id: str = ROOT_ID) -> dict:
        """Nested {name: shape} of live items, for before/after comparisons."""
        result: dict = {}
        for item_id in self.children(folder_id):
            item = self.items[item_id]
            key = f"{item['name']}#{item_id}"
            result[key] = self.shape(item_id) if item["mime_type"] == FOLDER_MIME_TYPE else None
        return result

    # DriveClient

    def list_children(
        self, folder_id: str, page_token: Optional[str] = None, folders_only: bool = False
    ) -> DrivePage:
        self._record("list_children", folder_id)
        with self._lock:
            ids = [
                item_id
                for item_id in self.children(folder_id)
                if not folders_only or self.items[item_id]["mime_type"] == FOLDER_MIME_TYPE
            ]
            offset = int(page_token or 0)
            chunk = ids[offset : offset + self.page_size]
            next_token = str(offset + self.page_size) if offset + self.page_size < len(ids) else None
            return DrivePage(items=[self._item(item_id) for item_id in chunk], next_page_token=next_token)

    def get_metadata(self, item_id: str) -> DriveItem:
        self._record("get_metadata", item_id)
        with self._lock:
            self._require(item_id, "get_metadata")
            return self._item(item_id)

    def move_item(self, item_id: str, new_parent_id: str) -> None:
        self._record("move_item", item_id, new_parent_id)
        with self._lock:
            self._require(item_id, "move_item")
            self.items[item_id]["parent"] = new_parent_id

    def trash_item(self, item_id: str) -> None:
        self._record("trash_item", item_id)
        with self._lock:
            self._require(item_id, "trash_item")
            self.items[item_id]["trashed"] = True

    def untrash_item(self, item_id: str) -> None:
        self._record("untrash_item", item_id)
        with self._lock:
            self._require(item_id, "untrash_item")
            self.items[item_id]["trashed"] = False

    def update_metadata(self, item_id: str, patch: Dict[str, Any]) -> None:
        self._record("update_metadata", item_id, patch)
        with self._lock:
            self._require(item_id, "update_metadata")
            item = self.items[item_id]
            if "appProperties" in patch:
                properties = patch["appProperties"]
                if self.metadata_limit is not None and len(json.dumps(properties)) > self.metadata_limit:
                    raise MetadataSizeLimitError(item_id, "appProperties too large")
                for key, value in properties.items():
                    if value is None:
                        item["properties"].pop(key, None)
                    else:
                        item["properties"][key] = value
            if "name" in patch:
                item["name"] = patch["name"]

    # Internals

    def _record(self, operation: str, item_id: str, *args: Any) -> None:
        with self._lock:
            self.calls.append((operation, item_id, *args))
            key = (operation, item_id)
            if key in self.fail_once:
                raise self.fail_once.pop(key)
            if key in self.failures:
                raise self.failures[key]

    def _require(self, item_id: str, operation: str) -> None:
        if item_id not in self.items:
            raise RemoteCallError(operation, item_id, "File not found", status=404)

    def _item(self, item_id: str) -> DriveItem:
        item = self.items[item_id]
        return DriveItem(
            id=item_id,
            name=item["name"],
            parent_ids=(item["parent"],),
            mime_type=item["mime_type"],
            trashed=item["trashed"],
            properties=dict(item["properties"]),
        )


def transient(operation: str, item_id: str) -> TransientRemoteError:
    return TransientRemoteError(operation, item_id, "backend error", status=503, attempts=5)


def _merge(base: dict, overrides: dict) -> dict:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def write_config(tmp_path: Path, overrides: Optional[dict] = None) -> AppConfig:
    data = {
        "paths": {"logs": "logs", "data": "data"},
        "databases": {"state": "data/state.sqlite"},
        "drive": {"root_folder_id": ROOT_ID},
        "hierarchy": {"cache_mode": "none", "workers": 2},
        "merge": {"dry_run": False, "workers": 1},
        "rollback": {"max_retries": 2, "retry_delay_seconds": 0},
        "progress": {"enabled": False},
        "safety": {"require_confirmation_for_apply": False, "stall_warning_seconds": 0},
    }
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.safe_dump(_merge(data, overrides or {})), encoding="utf-8")
    return AppConfig.load(config_path)


@pytest.fixture
def drive() -> FakeDrive:
    return FakeDrive(page_size=2)


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    return write_config(tmp_path)


@pytest.fixture
def db(tmp_path: Path):
    manager = DatabaseManager(tmp_path / "state.sqlite")
    manager.initialize()
    yield manager
    manager.close()
