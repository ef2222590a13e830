"""
Reversible removal of emptied source folders.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from cloud.protocol import DriveClient
from errors import MetadataSizeLimitError
from operations.rollback import RENAME, TAG, TRASH, CompensatingAction

DELETION_MODES = (TRASH, TAG, RENAME)


@dataclass(frozen=True)
class SoftDeleteResult:
    item_id: str
    mode: str
    degraded: bool = False


class SoftDeleter:
    """Remove a folder by trashing, tagging or renaming it.

    `plan` returns the compensating action so the caller can log it before
    `apply` touches Drive.
    """

    def __init__(
        self,
        client: DriveClient,
        mode: str = TRASH,
        prefix: str = "DELETED",
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        if mode not in DELETION_MODES:
            raise ValueError(f"Unknown deletion mode {mode!r}; expected one of {', '.join(DELETION_MODES)}")
        self.client = client
        self.mode = mode
        self.prefix = prefix
        self.logger = logger or logging.getLogger("drive_reconciler")
        self.clock = clock

    def plan(self, item_id: str, item_name: str, parent_id: Optional[str] = None) -> CompensatingAction:
        if self.mode == TRASH:
            return CompensatingAction.trash(item_id, item_name, parent_id)
        if self.mode == RENAME:
            return CompensatingAction.rename(item_id, item_name, self._deleted_name(item_name))
        properties = self._tag_properties(item_name, parent_id)
        return CompensatingAction(
            TAG,
            item_id,
            item_name,
            source_parent_id=parent_id,
            details={"properties": sorted(properties)},
        )

    def apply(self, action: CompensatingAction) -> SoftDeleteResult:
        if action.action_type == TRASH:
            self.client.trash_item(action.item_id)
            return SoftDeleteResult(action.item_id, TRASH)
        if action.action_type == RENAME:
            # For renames the logged item_name is the new name.
            self.client.update_metadata(action.item_id, {"name": action.item_name})
            return SoftDeleteResult(action.item_id, RENAME)
        if action.action_type == TAG:
            properties = self._tag_properties(action.item_name, action.source_parent_id)
            try:
                self.client.update_metadata(action.item_id, {"appProperties": properties})
                return SoftDeleteResult(action.item_id, TAG)
            except MetadataSizeLimitError as exc:
                self.logger.warning(
                    "Soft-delete tags too large for %s (%s); writing minimal tags", action.item_id, exc
                )
                self.client.update_metadata(
                    action.item_id, {"appProperties": {"deleted": "true", "deleteMode": TAG}}
                )
                return SoftDeleteResult(action.item_id, TAG, degraded=True)
        raise ValueError(f"Soft delete cannot apply {action.action_type!r}")

    def _deleted_name(self, name: str) -> str:
        return f"{self.prefix}_{name}_{self.clock().strftime('%Y%m%dT%H%M%S')}"

    def _tag_properties(self, name: str, parent_id: Optional[str]) -> dict[str, str]:
        properties = {
            "deleted": "true",
            "deleteMode": self.mode,
            "deletedAt": self.clock().isoformat(timespec="seconds"),
            "originalName": name,
        }
        if parent_id:
            properties["originalParents"] = parent_id
        return properties
