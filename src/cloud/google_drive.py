"""
Google Drive API integration implementing the remote drive contract.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import google_auth_httplib2
import httplib2
from google.auth.transport.requests import Request
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from cloud.protocol import FOLDER_MIME_TYPE, DriveItem, DrivePage
from config import AppConfig
from errors import MetadataSizeLimitError, RemoteCallError, TransientRemoteError
from utils import ActivityTracker

DEFAULT_SCOPES = ["https://www.googleapis.com/auth/drive"]
ITEM_FIELDS = "id, name, parents, mimeType, size, modifiedTime, trashed, appProperties"
RETRYABLE_STATUSES = {408, 429, 500, 502, 503, 504}
RATE_LIMIT_REASONS = ("rateLimitExceeded", "userRateLimitExceeded")
SIZE_LIMIT_MARKERS = ("124 bytes", "size limit", "too large")


class GoogleDriveClient:
    """Drive v3 client with per-call timeouts, retry with backoff and error wrapping."""

    def __init__(
        self,
        config: AppConfig,
        logger: Optional[logging.Logger] = None,
        movement_logger: Optional[logging.Logger] = None,
        activity_tracker: Optional[ActivityTracker] = None,
    ) -> None:
        self.config = config
        self.logger = logger or logging.getLogger("drive_reconciler")
        self.movement_logger = movement_logger or logging.getLogger("drive_reconciler.movement")
        self.activity_tracker = activity_tracker
        self.scopes = list(self.config.get("drive", "scopes", default=DEFAULT_SCOPES))
        self.service_account_path = self.config.optional_path("drive", "service_account_path")
        self.token_path = self.config.optional_path("drive", "token_path")
        self.credentials_path = self.config.optional_path("drive", "credentials_path")
        self.shared_drive_id = self.config.get("drive", "shared_drive_id", default=None)
        self.page_size = int(self.config.get("drive", "page_size", default=1000))
        self.timeout_seconds = float(self.config.get("drive", "request_timeout_seconds", default=60))
        self.retry_max_attempts = int(self.config.get("drive", "retry_max_attempts", default=5))
        self.retry_base_delay = float(self.config.get("drive", "retry_base_delay_seconds", default=1))
        self.retry_max_delay = float(self.config.get("drive", "retry_max_delay_seconds", default=30))
        self._credentials = None
        self._credentials_lock = threading.Lock()
        self._local = threading.local()

    # Contract

    def list_children(
        self,
        folder_id: str,
        page_token: Optional[str] = None,
        folders_only: bool = False,
    ) -> DrivePage:
        query = f"'{_escape(folder_id)}' in parents and trashed = false"
        if folders_only:
            query += f" and mimeType = '{FOLDER_MIME_TYPE}'"
        params: Dict[str, Any] = {
            "q": query,
            "fields": f"nextPageToken, files({ITEM_FIELDS})",
            "pageSize": self.page_size,
            "pageToken": page_token,
            "supportsAllDrives": True,
            "includeItemsFromAllDrives": True,
        }
        if self.shared_drive_id:
            params["corpora"] = "drive"
            params["driveId"] = self.shared_drive_id
        response = self._execute_with_retry(
            lambda service: service.files().list(**params),
            operation="list_children",
            target_id=folder_id,
        )
        items = [DriveItem.from_api(payload) for payload in response.get("files", [])]
        self._touch(f"list_children:{folder_id}")
        return DrivePage(items=items, next_page_token=response.get("nextPageToken"))

    def get_metadata(self, item_id: str) -> DriveItem:
        response = self._execute_with_retry(
            lambda service: service.files().get(
                fileId=item_id,
                fields=ITEM_FIELDS,
                supportsAllDrives=True,
            ),
            operation="get_metadata",
            target_id=item_id,
        )
        return DriveItem.from_api(response)

    def move_item(self, item_id: str, new_parent_id: str) -> None:
        current = self.get_metadata(item_id)
        remove_parents = [parent for parent in current.parent_ids if parent != new_parent_id]
        if new_parent_id in current.parent_ids and not remove_parents:
            self.logger.debug("Move skipped; %s already under %s", item_id, new_parent_id)
            return
        params: Dict[str, Any] = {
            "fileId": item_id,
            "fields": "id, parents",
            "supportsAllDrives": True,
        }
        if new_parent_id not in current.parent_ids:
            params["addParents"] = new_parent_id
        if remove_parents:
            params["removeParents"] = ",".join(remove_parents)
        self._execute_with_retry(
            lambda service: service.files().update(**params),
            operation="move_item",
            target_id=item_id,
        )
        self.movement_logger.info(
            "MOVE %s (%s) %s -> %s", item_id, current.name, ",".join(remove_parents) or "-", new_parent_id
        )
        self._touch(f"move:{item_id}")

    def trash_item(self, item_id: str) -> None:
        self._set_trashed(item_id, True)

    def untrash_item(self, item_id: str) -> None:
        self._set_trashed(item_id, False)

    def update_metadata(self, item_id: str, patch: Dict[str, Any]) -> None:
        self._execute_with_retry(
            lambda service: service.files().update(
                fileId=item_id,
                body=patch,
                fields="id",
                supportsAllDrives=True,
            ),
            operation="update_metadata",
            target_id=item_id,
        )
        self.movement_logger.info("UPDATE %s %s", item_id, sorted(patch))
        self._touch(f"update:{item_id}")

    # Auth

    def authorize(self) -> Path:
        """Run the installed-app OAuth flow and store the token file."""
        if self.credentials_path is None or self.token_path is None:
            raise RemoteCallError(
                "authorize", None, "drive.credentials_path and drive.token_path must be configured"
            )
        flow = InstalledAppFlow.from_client_secrets_file(str(self.credentials_path), self.scopes)
        creds = flow.run_local_server(port=0)
        self.token_path.parent.mkdir(parents=True, exist_ok=True)
        self.token_path.write_text(creds.to_json(), encoding="utf-8")
        self.logger.info("Stored Drive token at %s", self.token_path)
        return self.token_path

    def _load_credentials(self):
        with self._credentials_lock:
            if self._credentials is not None:
                return self._credentials
            creds = None
            if self.service_account_path:
                creds = service_account.Credentials.from_service_account_file(
                    str(self.service_account_path), scopes=self.scopes
                )
            elif self.token_path and self.token_path.exists():
                creds = Credentials.from_authorized_user_file(str(self.token_path), self.scopes)
                if creds.expired and creds.refresh_token:
                    creds.refresh(Request())
                    self.token_path.write_text(creds.to_json(), encoding="utf-8")
            if creds is None:
                raise RemoteCallError(
                    "authenticate",
                    None,
                    "No Drive credentials configured; set drive.service_account_path or run "
                    "`drive-reconciler auth` to create drive.token_path",
                )
            self._credentials = creds
            return creds

    def _service(self):
        # googleapiclient services are not thread-safe; keep one per worker thread.
        service = getattr(self._local, "service", None)
        if service is None:
            http = google_auth_httplib2.AuthorizedHttp(
                self._load_credentials(),
                http=httplib2.Http(timeout=self.timeout_seconds),
            )
            service = build("drive", "v3", http=http, cache_discovery=False)
            self._local.service = service
        return service

    # Plumbing

    def _set_trashed(self, item_id: str, trashed: bool) -> None:
        self._execute_with_retry(
            lambda service: service.files().update(
                fileId=item_id,
                body={"trashed": trashed},
                fields="id, trashed",
                supportsAllDrives=True,
            ),
            operation="trash_item" if trashed else "untrash_item",
            target_id=item_id,
        )
        self.movement_logger.info("%s %s", "TRASH" if trashed else "UNTRASH", item_id)
        self._touch(f"{'trash' if trashed else 'untrash'}:{item_id}")

    def _execute_with_retry(
        self,
        build_request: Callable[[Any], Any],
        operation: str,
        target_id: Optional[str],
    ) -> Dict[str, Any]:
        attempts = max(self.retry_max_attempts, 1)
        delay = max(self.retry_base_delay, 0.1)
        for attempt in range(1, attempts + 1):
            try:
                return build_request(self._service()).execute() or {}
            except Exception as exc:
                if not self._is_retryable(exc):
                    raise self._wrap(exc, operation, target_id) from exc
                if attempt >= attempts:
                    self.logger.warning("Drive %s(%s) failed after %s attempts: %s", operation, target_id, attempt, exc)
                    raise TransientRemoteError(
                        operation, target_id, str(exc), status=_status_of(exc), attempts=attempt
                    ) from exc
                sleep_for = min(self.retry_max_delay, delay * (2 ** (attempt - 1)))
                sleep_for += random.uniform(0, 0.25 * sleep_for)
                self.logger.warning(
                    "Drive %s(%s) failed (attempt %s/%s). Retrying in %.1fs: %s",
                    operation,
                    target_id,
                    attempt,
                    attempts,
                    sleep_for,
                    exc,
                )
                time.sleep(sleep_for)
        raise TransientRemoteError(operation, target_id, "retry budget exhausted", attempts=attempts)

    def _is_retryable(self, exc: Exception) -> bool:
        if isinstance(exc, HttpError):
            status = _status_of(exc)
            if status in RETRYABLE_STATUSES:
                return True
            return status == 403 and any(reason in str(exc) for reason in RATE_LIMIT_REASONS)
        return isinstance(exc, (OSError, httplib2.HttpLib2Error))

    def _wrap(self, exc: Exception, operation: str, target_id: Optional[str]) -> Exception:
        status = _status_of(exc)
        message = str(exc)
        if status in {400, 403, 413} and any(marker in message.lower() for marker in SIZE_LIMIT_MARKERS):
            return MetadataSizeLimitError(target_id or "", message)
        return RemoteCallError(operation, target_id, message, status=status)

    def _touch(self, note: str) -> None:
        if self.activity_tracker is not None:
            self.activity_tracker.touch(note)


def _status_of(exc: Exception) -> Optional[int]:
    status = getattr(getattr(exc, "resp", None), "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")
