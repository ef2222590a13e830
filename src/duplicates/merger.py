"""
Merge duplicate folder groups into their target folder.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, Optional

from cloud.protocol import DriveClient, DriveItem, list_all_children
from config import AppConfig
from duplicates.detector import APPLE_STYLE, EXACT, DuplicateGroup
from duplicates.report import ABANDONED, MERGED, NOT_STARTED, PLANNED, GroupMergeResult, MergeReport
from duplicates.verification import verify_move_complete
from errors import MergeIncompleteError, VerificationError
from operations.rollback import ACTIVE, CompensatingAction, RollbackManager
from operations.soft_delete import SoftDeleter
from utils import ActivityTracker, ProgressCounter


class FolderMerger:
    """Move every child of each source folder into the group target, then remove the source.

    Groups are independent and may run in parallel. Within a group, moves are
    strictly sequential. Each mutation is appended to the rollback session
    before the Drive call is made.
    """

    def __init__(
        self,
        config: AppConfig,
        client: DriveClient,
        rollback_manager: RollbackManager,
        soft_deleter: Optional[SoftDeleter] = None,
        logger: Optional[logging.Logger] = None,
        movement_logger: Optional[logging.Logger] = None,
        activity_tracker: Optional[ActivityTracker] = None,
    ) -> None:
        self.config = config
        self.client = client
        self.rollback_manager = rollback_manager
        self.logger = logger or logging.getLogger("drive_reconciler")
        self.movement_logger = movement_logger or logging.getLogger("drive_reconciler.movement")
        self.activity_tracker = activity_tracker
        self.dry_run = config.get_bool("merge", "dry_run", default=True)
        self.delete_source_after_merge = config.get_bool("merge", "delete_source_after_merge", default=True)
        self.verify_before_delete = config.get_bool("merge", "verify_before_delete", default=True)
        self.workers = max(int(config.get("merge", "workers", default=4)), 1)
        self.soft_deleter = soft_deleter or SoftDeleter(
            client,
            mode=str(config.get("merge", "deletion_mode", default="trash")),
            prefix=str(config.get("merge", "soft_delete_prefix", default="DELETED")),
            logger=self.logger,
        )

    def merge_duplicate_folders(
        self,
        groups: Iterable[DuplicateGroup],
        dry_run: Optional[bool] = None,
        session_id: Optional[str] = None,
    ) -> MergeReport:
        return self._merge_groups(list(groups), EXACT, dry_run, session_id)

    def merge_apple_style_duplicates(
        self,
        groups: Iterable[DuplicateGroup],
        dry_run: Optional[bool] = None,
        session_id: Optional[str] = None,
    ) -> MergeReport:
        return self._merge_groups(list(groups), APPLE_STYLE, dry_run, session_id)

    def _merge_groups(
        self,
        groups: list[DuplicateGroup],
        kind: str,
        dry_run: Optional[bool],
        session_id: Optional[str],
    ) -> MergeReport:
        dry_run = self.dry_run if dry_run is None else dry_run
        owns_session = False
        if not dry_run and session_id is None and groups:
            session_id = self.rollback_manager.create_session(f"merge {kind} duplicates").session_id
            owns_session = True
        report = MergeReport(kind=kind, dry_run=dry_run, session_id=None if dry_run else session_id)
        if not groups:
            report.finished_at = datetime.utcnow().isoformat()
            return report

        self.logger.info(
            "%s %s %s duplicate group(s)%s",
            "Planning" if dry_run else "Merging",
            len(groups),
            kind,
            "" if dry_run else f" in session {session_id}",
        )
        stop = threading.Event()
        errors: list[BaseException] = []
        errors_lock = threading.Lock()
        counter = ProgressCounter(f"Merge {kind}", total=len(groups), every=10).start()

        def run(group: DuplicateGroup) -> GroupMergeResult:
            if stop.is_set():
                return GroupMergeResult(group=group, status=NOT_STARTED)
            result = GroupMergeResult(group=group, status=PLANNED if dry_run else MERGED)
            try:
                self._merge_group(group, result, session_id, dry_run)
            except Exception as exc:
                stop.set()
                result.status = ABANDONED
                result.error = str(exc)
                with errors_lock:
                    errors.append(exc)
                self.logger.error(
                    "Abandoned %s group %r under %s after %s move(s): %s",
                    kind,
                    group.folder_name,
                    group.parent_id,
                    result.items_moved,
                    exc,
                )
            counter.advance(note=group.folder_name)
            return result

        with ThreadPoolExecutor(max_workers=min(self.workers, len(groups)), thread_name_prefix="merge") as executor:
            report.results = list(executor.map(run, groups))
        report.finished_at = datetime.utcnow().isoformat()
        counter.complete(note=f"merged={report.merged_groups} abandoned={report.abandoned_groups}")

        if not dry_run and session_id:
            if owns_session and report.succeeded:
                self.rollback_manager.complete_session(session_id)
            report.session_open = self.rollback_manager.get_session(session_id).status == ACTIVE
        if errors:
            raise MergeIncompleteError(report, cause=errors[0]) from errors[0]
        return report

    def _merge_group(
        self,
        group: DuplicateGroup,
        result: GroupMergeResult,
        session_id: Optional[str],
        dry_run: bool,
    ) -> None:
        listings: Dict[str, list[DriveItem]] = {}
        if group.kind == EXACT:
            group, listings = self._rank_by_contents(group)
            result.group = group
        target_id = group.target_id
        for source_id in group.source_ids:
            source_name = group.name_of(source_id)
            if source_id in listings:
                children = listings[source_id]
            else:
                children = list_all_children(self.client, source_id)
            moved_ids: list[str] = []
            for child in children:
                if dry_run:
                    self.logger.info(
                        "[dry-run] Would move %s (%s) from %r to %r",
                        child.id,
                        child.name,
                        source_name,
                        group.name_of(target_id),
                    )
                    result.planned_moves += 1
                    continue
                self.rollback_manager.append_operation(
                    session_id, CompensatingAction.move(child.id, child.name, source_id, target_id)
                )
                self.client.move_item(child.id, target_id)
                moved_ids.append(child.id)
                result.items_moved += 1
                if self.activity_tracker is not None:
                    self.activity_tracker.touch(f"merge:{group.folder_name}")

            if not self.delete_source_after_merge:
                continue
            if dry_run:
                self.logger.info(
                    "[dry-run] Would remove emptied folder %s (%r) via %s",
                    source_id,
                    source_name,
                    self.soft_deleter.mode,
                )
                continue
            if self.verify_before_delete:
                verification = verify_move_complete(self.client, source_id, target_id, moved_ids)
                if not verification.ok:
                    raise VerificationError(f"Refusing to remove {source_id}: {verification.describe()}")
            action = self.soft_deleter.plan(source_id, source_name, group.parent_id)
            self.rollback_manager.append_operation(session_id, action)
            self.soft_deleter.apply(action)
            result.sources_removed.append(source_id)
            self.movement_logger.info(
                "MERGED %s (%r) into %s; removed via %s", source_id, source_name, target_id, action.action_type
            )

    def _rank_by_contents(self, group: DuplicateGroup) -> tuple[DuplicateGroup, Dict[str, list[DriveItem]]]:
        """Reorder an exact group so the member holding the most items (files included) is the target."""
        listings = {folder_id: list_all_children(self.client, folder_id) for folder_id in group.folder_ids}
        order = sorted(
            range(len(group.folder_ids)),
            key=lambda index: (-len(listings[group.folder_ids[index]]), index),
        )
        ranked = replace(
            group,
            folder_ids=tuple(group.folder_ids[index] for index in order),
            folder_names=tuple(group.folder_names[index] for index in order) if group.folder_names else (),
        )
        if ranked.target_id != group.target_id:
            self.logger.info(
                "Target for %r under %s is %s (%s items), not %s",
                group.folder_name,
                group.parent_id,
                ranked.target_id,
                len(listings[ranked.target_id]),
                group.target_id,
            )
        return ranked, listings
