"""
Reconciliation workflow and command-line entry point.
"""

from __future__ import annotations

import argparse
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from cloud import DriveClient, GoogleDriveClient
from config import AppConfig, ensure_directories
from database import DatabaseManager
from duplicates import (
    FolderMerger,
    MergeReport,
    detect_apple_style_duplicates,
    detect_exact_duplicates,
    write_merge_report,
)
from errors import MergeIncompleteError, OpenSessionsError, ReconcilerError, classify_error
from hierarchy import (
    CacheMode,
    HierarchyAnalysis,
    HierarchyTree,
    HierarchyTreeBuilder,
    analyze_hierarchy,
    render_tree,
    write_hierarchy_report,
)
from manifests import ExtractionManifest, RenameManifest, RenameRollbackResult, rollback_renames
from mapping import AgencyFolderMapper, AgencyMappingStore, MappingOutput, write_mapping_report
from operations import ACTIVE, RollbackManager, RollbackStats
from utils import ActivityTracker, ProgressReporter, StallMonitor, env_flag, setup_logging

ENV_APPLY = "DRIVE_RECONCILER_APPLY"
ENV_CONFIRM_RESUME = "DRIVE_RECONCILER_CONFIRM_RESUME"
ENV_ROLLBACK_SESSION_ID = "DRIVE_RECONCILER_ROLLBACK_SESSION_ID"
ENV_ROLLBACK_ONLY = "DRIVE_RECONCILER_ROLLBACK_ONLY"


@dataclass
class ReconciliationResult:
    """Outcome of one reconcile run."""

    run_id: str
    dry_run: bool
    session_id: Optional[str] = None
    merge_reports: list[MergeReport] = field(default_factory=list)
    mapping: Optional[MappingOutput] = None
    tree: Optional[HierarchyTree] = None
    report_paths: list[Path] = field(default_factory=list)

    @property
    def items_moved(self) -> int:
        return sum(report.items_moved for report in self.merge_reports)

    @property
    def groups_merged(self) -> int:
        return sum(report.merged_groups for report in self.merge_reports)


class ReconciliationOrchestrator:
    """Build, deduplicate and map the Drive hierarchy inside one rollback session."""

    def __init__(self, config: AppConfig, client: Optional[DriveClient] = None) -> None:
        self.config = config
        self.logs_dir = self.config.resolve_path("paths", "logs", default="logs")
        self.data_dir = self.config.resolve_path("paths", "data", default="data")
        ensure_directories([self.logs_dir, self.data_dir])
        self.loggers = setup_logging(self.logs_dir)
        self.logger = self.loggers["main"]
        self.movement_logger = self.loggers["movement"]
        self.db_path = self.config.resolve_path("databases", "state", default="data/state.sqlite")
        self.db_manager = DatabaseManager(self.db_path)
        self.activity_tracker = ActivityTracker(
            min_interval_seconds=float(self.config.get("safety", "activity_min_interval_seconds", default=2.0))
        )
        self.client = client or GoogleDriveClient(
            config,
            logger=self.logger,
            movement_logger=self.movement_logger,
            activity_tracker=self.activity_tracker,
        )
        self.rollback_manager = RollbackManager(
            self.db_manager,
            client=self.client,
            logger=self.logger,
            movement_logger=self.movement_logger,
            max_retries=int(self.config.get("rollback", "max_retries", default=3)),
            retry_delay_seconds=float(self.config.get("rollback", "retry_delay_seconds", default=1)),
            continue_on_error=self.config.get_bool("rollback", "continue_on_error", default=False),
        )
        self.tree_builder = HierarchyTreeBuilder(
            config, self.client, logger=self.logger, progress_logger=self.loggers["progress"]
        )
        self.merger = FolderMerger(
            config,
            self.client,
            self.rollback_manager,
            logger=self.logger,
            movement_logger=self.movement_logger,
            activity_tracker=self.activity_tracker,
        )
        self.mapping_store = AgencyMappingStore(
            self.config.resolve_path("mapping", "store_path", default="data/agency-mappings.json"),
            logger=self.logger,
        )
        self.mapper = AgencyFolderMapper(config, self.mapping_store, logger=self.logger)
        self.extraction_manifest = ExtractionManifest(
            self.config.resolve_path("manifests", "extraction_path", default="data/extraction-manifest.json"),
            logger=self.logger,
        )
        self.rename_manifest = RenameManifest(
            self.config.resolve_path("manifests", "rename_path", default="data/rename-manifest.json"),
            logger=self.logger,
        )
        self.max_iterations = int(self.config.get("merge", "max_iterations", default=5))
        self._current_session_id: Optional[str] = None
        self.stall_monitor = StallMonitor(
            tracker=self.activity_tracker,
            logger=self.logger,
            warning_seconds=float(self.config.get("safety", "stall_warning_seconds", default=600)),
            abort_seconds=float(self.config.get("safety", "stall_abort_seconds", default=0)),
            check_interval_seconds=float(self.config.get("safety", "stall_check_interval_seconds", default=30)),
            describe_state=lambda: f"(session {self._current_session_id or '-'})",
        )
        self.progress_reporter = ProgressReporter(
            self.db_path,
            logger=self.loggers["progress"],
            interval_seconds=int(self.config.get("progress", "interval_seconds", default=60)),
            enabled=self.config.get_bool("progress", "enabled", default=True),
        )

    # Workflows

    def run(
        self,
        agency_counts: Optional[Dict[str, int]] = None,
        dry_run: Optional[bool] = None,
        cache_mode: Optional[str] = None,
    ) -> ReconciliationResult:
        """Apple-style merge, exact merge, second Apple-style pass, then agency mapping."""
        dry_run = self._resolve_dry_run(dry_run)
        self._startup()
        run_id = self.db_manager.start_operation("reconcile", details="dry_run" if dry_run else "apply")
        result = ReconciliationResult(run_id=run_id, dry_run=dry_run)
        session_state = "not created"
        try:
            tree = self.tree_builder.build(cache_mode)
            result.report_paths.append(write_hierarchy_report(tree, self.logs_dir))
            if not dry_run:
                result.session_id = self.rollback_manager.create_session("reconcile hierarchy").session_id
                self._current_session_id = result.session_id
                session_state = "open"

            passes = (
                ("apple-style", detect_apple_style_duplicates, self.merger.merge_apple_style_duplicates),
                ("exact", detect_exact_duplicates, self.merger.merge_duplicate_folders),
                ("apple-style (second pass)", detect_apple_style_duplicates, self.merger.merge_apple_style_duplicates),
            )
            for label, detect, merge in passes:
                groups = detect(tree)
                self.logger.info("Pass %s: %s duplicate group(s)", label, len(groups))
                report = self._merge(merge, groups, dry_run, result)
                if not dry_run and (report.items_moved or report.sources_removed):
                    tree = self._rebuild()

            if result.session_id:
                self.rollback_manager.complete_session(result.session_id)
                session_state = "completed"
            result.tree = tree
            agencies = agency_counts if agency_counts is not None else self.extraction_manifest.get_agency_counts()
            if agencies:
                result.mapping = self.mapper.map_agencies(agencies, tree, persist=not dry_run)
                result.report_paths.append(write_mapping_report(result.mapping, self.logs_dir))
            else:
                self.logger.info("No agencies supplied and the extraction manifest is empty; mapping skipped")

            self.db_manager.complete_operation(run_id, status="completed")
            self.logger.info(
                "Reconcile %s finished: groups_merged=%s items_moved=%s dry_run=%s",
                run_id,
                result.groups_merged,
                result.items_moved,
                dry_run,
            )
            return result
        except MergeIncompleteError as exc:
            self.db_manager.complete_operation(run_id, status="failed", details=str(exc))
            self._log_failure_summary(result, exc)
            raise
        except Exception as exc:
            self.db_manager.complete_operation(run_id, status="failed", details=str(exc))
            self.logger.error(
                "Reconcile %s failed (%s): %s. Rollback session %s is %s.",
                run_id,
                classify_error(exc),
                exc,
                result.session_id or "-",
                session_state,
            )
            raise
        finally:
            self._current_session_id = None
            self._shutdown()

    def resolve_duplicates(
        self, dry_run: Optional[bool] = None, max_iterations: Optional[int] = None
    ) -> list[MergeReport]:
        """Repeat detect-and-merge passes until the tree is clean or passes stop making progress."""
        dry_run = self._resolve_dry_run(dry_run)
        limit = max_iterations or self.max_iterations
        self._startup()
        reports: list[MergeReport] = []
        try:
            tree = self.tree_builder.build(CacheMode.NONE if not dry_run else None)
            for iteration in range(1, limit + 1):
                apple_groups = detect_apple_style_duplicates(tree)
                exact_groups = detect_exact_duplicates(tree)
                if not apple_groups and not exact_groups:
                    self.logger.info("No duplicates left after %s iteration(s)", iteration - 1)
                    break
                self.logger.info(
                    "Iteration %s/%s: apple-style=%s exact=%s", iteration, limit, len(apple_groups), len(exact_groups)
                )
                iteration_reports = []
                if apple_groups:
                    iteration_reports.append(self.merger.merge_apple_style_duplicates(apple_groups, dry_run=dry_run))
                    if not dry_run:
                        tree = self._rebuild()
                        exact_groups = detect_exact_duplicates(tree)
                if exact_groups:
                    iteration_reports.append(self.merger.merge_duplicate_folders(exact_groups, dry_run=dry_run))
                for report in iteration_reports:
                    self._write_merge_report(report)
                reports.extend(iteration_reports)
                if dry_run:
                    break
                if not any(report.items_moved or report.sources_removed for report in iteration_reports):
                    self.logger.warning("Iteration %s made no progress; stopping", iteration)
                    break
                tree = self._rebuild()
            else:
                self.logger.warning("Stopped after %s iterations with duplicates possibly remaining", limit)
            return reports
        finally:
            self._shutdown()

    def analyze(self, cache_mode: Optional[str] = None, max_depth: Optional[int] = None) -> tuple[HierarchyAnalysis, Path]:
        tree = self.tree_builder.build(cache_mode)
        analysis = analyze_hierarchy(tree)
        report_path = write_hierarchy_report(tree, self.logs_dir, analysis)
        self.logger.info("Hierarchy:\n%s", render_tree(tree, max_depth=max_depth))
        self.logger.info(
            "Folders=%s roots=%s depth=%s issues=%s report=%s",
            analysis.metrics.total_folders,
            analysis.metrics.root_folders,
            analysis.metrics.max_depth,
            analysis.issue_counts(),
            report_path,
        )
        return analysis, report_path

    def rollback(self, session_id: str, dry_run: bool = False, force: bool = False) -> RollbackStats:
        self.db_manager.initialize()
        try:
            return self.rollback_manager.rollback_session(session_id, dry_run=dry_run, force=force)
        finally:
            self.db_manager.close()

    def rollback_renames(self, file_ids: Optional[list[str]] = None, dry_run: bool = False) -> RenameRollbackResult:
        return rollback_renames(self.client, self.rename_manifest, file_ids=file_ids, dry_run=dry_run, logger=self.logger)

    # Plumbing

    def _merge(self, merge, groups, dry_run: bool, result: ReconciliationResult) -> MergeReport:
        try:
            report = merge(groups, dry_run=dry_run, session_id=result.session_id)
        except MergeIncompleteError as exc:
            result.merge_reports.append(exc.report)
            result.report_paths.append(self._write_merge_report(exc.report))
            raise
        result.merge_reports.append(report)
        if report.total_groups:
            result.report_paths.append(self._write_merge_report(report))
        return report

    def _rebuild(self) -> HierarchyTree:
        # Rebuilds always go live; a cached snapshot is stale once anything moved.
        mode = CacheMode.NONE if self.tree_builder.default_cache_mode is CacheMode.NONE else CacheMode.WRITE
        return self.tree_builder.build(mode)

    def _write_merge_report(self, report: MergeReport) -> Path:
        path = write_merge_report(report, self.logs_dir)
        self.logger.info("Merge report (%s): %s", report.kind, path)
        return path

    def _resolve_dry_run(self, dry_run: Optional[bool]) -> bool:
        if dry_run is None:
            dry_run = self.config.get_bool("merge", "dry_run", default=True)
        if dry_run:
            return True
        require_confirmation = self.config.get_bool("safety", "require_confirmation_for_apply", default=True)
        if require_confirmation and not env_flag(ENV_APPLY):
            self.logger.warning("Drive changes require confirmation. Set %s=1 to apply; running as dry run.", ENV_APPLY)
            return True
        return False

    def _startup(self) -> None:
        self.db_manager.initialize()
        self._maybe_run_rollback()
        self._enforce_resume_confirmation()
        self.activity_tracker.touch("startup")
        self.stall_monitor.start()
        self.progress_reporter.start()

    def _shutdown(self) -> None:
        self.progress_reporter.stop()
        self.stall_monitor.stop()
        self.db_manager.close()

    def _maybe_run_rollback(self) -> None:
        session_id = os.environ.get(ENV_ROLLBACK_SESSION_ID)
        if not session_id:
            return
        if not self.config.get_bool("safety", "allow_rollback", default=False):
            self.logger.warning("Rollback of %s requested but safety.allow_rollback is off", session_id)
            return
        self.logger.warning("Rollback requested for session %s", session_id)
        self.rollback_manager.rollback_session(session_id)
        if env_flag(ENV_ROLLBACK_ONLY):
            raise SystemExit("Rollback completed; exiting by request.")

    def _enforce_resume_confirmation(self) -> None:
        """Require explicit confirmation before running while earlier sessions are still open."""
        open_sessions = self.rollback_manager.list_open_sessions()
        if not open_sessions:
            return
        for session in open_sessions:
            counts = self.db_manager.operation_status_summary(session.session_id)
            self.logger.warning(
                "Open rollback session from an earlier run: %s (%s) created %s operations=%s",
                session.session_id,
                session.label,
                session.created_at,
                counts,
            )
        if not self.config.get_bool("safety", "require_confirmation_for_resume", default=True):
            return
        if env_flag(ENV_CONFIRM_RESUME) or self.config.get_bool("safety", "resume_confirmed", default=False):
            self.logger.warning("Resume confirmation provided; continuing with open sessions present.")
            return
        raise OpenSessionsError(
            f"{len(open_sessions)} open rollback session(s) found. Roll them back with "
            f"`drive-reconciler rollback <id>` or set {ENV_CONFIRM_RESUME}=1 to continue."
        )

    def _log_failure_summary(self, result: ReconciliationResult, exc: MergeIncompleteError) -> None:
        merged = sum(report.merged_groups for report in result.merge_reports)
        abandoned = sum(report.abandoned_groups for report in result.merge_reports)
        not_started = sum(report.skipped_groups for report in result.merge_reports)
        session_open = bool(result.session_id) and (
            self.rollback_manager.get_session(result.session_id).status == ACTIVE
        )
        self.logger.error(
            "Reconcile failed mid-merge: groups merged=%s abandoned=%s not started=%s. "
            "Rollback session %s %s. Cause: %s",
            merged,
            abandoned,
            not_started,
            result.session_id or "-",
            "remains open for rollback or resume" if session_open else "is closed",
            exc.cause or exc,
        )


def load_agency_counts(path: Path) -> Dict[str, int]:
    """Read agencies from JSON ({name: count} or [names]) or a text file with one name per line."""
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        data = json.loads(text)
        if isinstance(data, dict):
            return {str(name): int(count) for name, count in data.items()}
        return {str(name): 0 for name in data}
    return {line.strip(): 0 for line in text.splitlines() if line.strip()}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="drive-reconciler",
        description="Reconcile the Drive attachment folder hierarchy and map agencies onto it.",
    )
    parser.add_argument("--config", default=None, help="Optional config path override")
    commands = parser.add_subparsers(dest="command", required=True)

    reconcile = commands.add_parser("reconcile", help="Merge duplicate folders, then map agencies")
    mode = reconcile.add_mutually_exclusive_group()
    mode.add_argument("--apply", dest="dry_run", action="store_false", default=None, help="Apply Drive changes")
    mode.add_argument("--dry-run", dest="dry_run", action="store_true", help="Only log intended changes")
    reconcile.add_argument("--agencies-file", default=None, help="JSON or text file listing agencies")
    reconcile.add_argument("--cache-mode", default=None, choices=[m.value for m in CacheMode])

    resolve = commands.add_parser("resolve", help="Merge duplicates iteratively until none remain")
    resolve_mode = resolve.add_mutually_exclusive_group()
    resolve_mode.add_argument("--apply", dest="dry_run", action="store_false", default=None)
    resolve_mode.add_argument("--dry-run", dest="dry_run", action="store_true")
    resolve.add_argument("--max-iterations", type=int, default=None)

    analyze = commands.add_parser("analyze", help="Build the hierarchy and write an analysis report")
    analyze.add_argument("--cache-mode", default=None, choices=[m.value for m in CacheMode])
    analyze.add_argument("--max-depth", type=int, default=3)

    commands.add_parser("sessions", help="List rollback sessions")

    rollback = commands.add_parser("rollback", help="Replay a rollback session in reverse")
    rollback.add_argument("session_id")
    rollback.add_argument("--dry-run", action="store_true")
    rollback.add_argument("--force", action="store_true", help="Also undo a completed session")

    commands.add_parser("review", help="List agency mappings awaiting review")

    renames = commands.add_parser("rollback-renames", help="Restore original names from the rename manifest")
    renames.add_argument("--file-id", action="append", dest="file_ids", default=None)
    renames.add_argument("--dry-run", action="store_true")

    commands.add_parser("auth", help="Create the Drive OAuth token file")
    commands.add_parser("clear-cache", help="Delete the hierarchy cache")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    config = AppConfig.load(Path(args.config) if args.config else None)
    orchestrator = ReconciliationOrchestrator(config)
    logger = orchestrator.logger
    try:
        if args.command == "reconcile":
            agencies = load_agency_counts(Path(args.agencies_file)) if args.agencies_file else None
            orchestrator.run(agency_counts=agencies, dry_run=args.dry_run, cache_mode=args.cache_mode)
        elif args.command == "resolve":
            orchestrator.resolve_duplicates(dry_run=args.dry_run, max_iterations=args.max_iterations)
        elif args.command == "analyze":
            orchestrator.analyze(cache_mode=args.cache_mode, max_depth=args.max_depth)
        elif args.command == "sessions":
            orchestrator.db_manager.initialize()
            for session in orchestrator.rollback_manager.list_sessions():
                counts = orchestrator.db_manager.operation_status_summary(session.session_id)
                print(f"{session.session_id}\t{session.status}\t{session.created_at}\t{session.label}\t{counts}")
        elif args.command == "rollback":
            stats = orchestrator.rollback(args.session_id, dry_run=args.dry_run, force=args.force)
            print(f"reversed={stats.reversed} irreversible={stats.irreversible} status={stats.status}")
        elif args.command == "review":
            for mapping in orchestrator.mapping_store.get_pending_review():
                flag = " (skipped)" if mapping.is_skipped else ""
                print(f"{mapping.confidence:>3}  {mapping.agency_name} -> {mapping.folder_name}{flag}")
        elif args.command == "rollback-renames":
            outcome = orchestrator.rollback_renames(file_ids=args.file_ids, dry_run=args.dry_run)
            if outcome.failed:
                return 1
        elif args.command == "auth":
            orchestrator.client.authorize()
        elif args.command == "clear-cache":
            orchestrator.tree_builder.clear_cache()
        return 0
    except ReconcilerError as exc:
        logger.error("%s failed [%s]: %s", args.command, classify_error(exc), exc)
        return 1
    finally:
        orchestrator.db_manager.close()


if __name__ == "__main__":
    raise SystemExit(main())
