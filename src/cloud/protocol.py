"""
Remote drive capability contract used by the reconciliation engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional, Protocol

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"


@dataclass(frozen=True)
class DriveItem:
    """Metadata for one file or folder."""

    id: str
    name: str
    parent_ids: tuple[str, ...] = ()
    mime_type: str = ""
    size: Optional[int] = None
    modified_time: Optional[str] = None
    trashed: bool = False
    properties: Dict[str, str] = field(default_factory=dict)

    @property
    def is_folder(self) -> bool:
        return self.mime_type == FOLDER_MIME_TYPE

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "DriveItem":
        size = payload.get("size")
        return cls(
            id=str(payload["id"]),
            name=str(payload.get("name", "")),
            parent_ids=tuple(payload.get("parents") or ()),
            mime_type=str(payload.get("mimeType", "")),
            size=int(size) if size is not None else None,
            modified_time=payload.get("modifiedTime"),
            trashed=bool(payload.get("trashed", False)),
            properties=dict(payload.get("appProperties") or {}),
        )


@dataclass(frozen=True)
class DrivePage:
    """One page of a children listing."""

    items: list[DriveItem]
    next_page_token: Optional[str] = None


class DriveClient(Protocol):
    def list_children(
        self,
        folder_id: str,
        page_token: Optional[str] = None,
        folders_only: bool = False,
    ) -> DrivePage: ...

    def move_item(self, item_id: str, new_parent_id: str) -> None: ...

    def trash_item(self, item_id: str) -> None: ...

    def untrash_item(self, item_id: str) -> None: ...

    def get_metadata(self, item_id: str) -> DriveItem: ...

    def update_metadata(self, item_id: str, patch: Dict[str, Any]) -> None: ...


def iter_children(
    client: DriveClient,
    folder_id: str,
    folders_only: bool = False,
) -> Iterator[DriveItem]:
    """Yield every child of a folder, following continuation tokens."""
    page_token: Optional[str] = None
    while True:
        page = client.list_children(folder_id, page_token=page_token, folders_only=folders_only)
        yield from page.items
        page_token = page.next_page_token
        if not page_token:
            return


def list_all_children(
    client: DriveClient,
    folder_id: str,
    folders_only: bool = False,
) -> list[DriveItem]:
    return list(iter_children(client, folder_id, folders_only=folders_only))
