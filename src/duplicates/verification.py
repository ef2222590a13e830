"""
Post-move verification before a source folder is removed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from cloud.protocol import DriveClient, list_all_children


@dataclass(frozen=True)
class MoveVerification:
    source_id: str
    target_id: str
    source_remaining: list[str] = field(default_factory=list)
    missing_in_target: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.source_remaining and not self.missing_in_target

    def describe(self) -> str:
        if self.ok:
            return f"{self.source_id} is empty and {self.target_id} holds every moved item"
        return (
            f"{self.source_id} still holds {len(self.source_remaining)} item(s) "
            f"{self.source_remaining[:5]}; {len(self.missing_in_target)} moved item(s) missing "
            f"from {self.target_id} {self.missing_in_target[:5]}"
        )


def verify_move_complete(
    client: DriveClient,
    source_id: str,
    target_id: str,
    moved_ids: Iterable[str],
) -> MoveVerification:
    """Re-list both folders: the source must be empty and the target must hold every moved id."""
    remaining = [item.id for item in list_all_children(client, source_id)]
    target_ids = {item.id for item in list_all_children(client, target_id)}
    missing = [item_id for item_id in moved_ids if item_id not in target_ids]
    return MoveVerification(
        source_id=source_id,
        target_id=target_id,
        source_remaining=remaining,
        missing_in_target=missing,
    )
