from __future__ import annotations

import logging
from typing import Any

from .bus import ReconciliationBus, notify
from .config import Config
from .errors import ActionResult, InputError, failure, no_change, success
from .models import AssetExport, ExportStatus
from .storage import (
    get_export,
    get_export_for_story,
    get_story,
    insert_generating_export,
    transition_export,
)
from .utils import log_event

logger = logging.getLogger("storydesk.assets")

RESTARTABLE = (ExportStatus.NONE, ExportStatus.COMPLETED, ExportStatus.FAILED)


def parse_report(report: Any) -> dict[str, Any]:
    """Validate an asset generator callback payload."""
    if not isinstance(report, dict):
        raise InputError("report must be an object")
    status = report.get("status")
    if status not in (ExportStatus.COMPLETED.value, ExportStatus.FAILED.value):
        raise InputError("status must be 'completed' or 'failed'")
    file_paths = report.get("file_paths") or []
    if not isinstance(file_paths, list) or not all(isinstance(p, str) for p in file_paths):
        raise InputError("file_paths must be a list of strings")
    error_message = report.get("error_message")
    if error_message is not None and not isinstance(error_message, str):
        raise InputError("error_message must be a string")
    if status == ExportStatus.FAILED.value and not error_message:
        error_message = "asset generation failed"
    return {"status": status, "file_paths": file_paths, "error_message": error_message}


class AssetTracker:
    def __init__(self, conn: Any, config: Config, bus: ReconciliationBus | None = None) -> None:
        self.conn = conn
        self.config = config
        self.bus = bus

    def get_for_story(self, story_id: str) -> AssetExport | None:
        return get_export_for_story(self.conn, story_id)

    def start(self, story_id: str) -> ActionResult:
        if get_story(self.conn, story_id) is None:
            return failure("story_not_found", story_id=story_id)
        with self.conn.transaction():
            started = insert_generating_export(self.conn, story_id)
            export = get_export_for_story(self.conn, story_id)
            if not started and export is not None:
                started = transition_export(
                    self.conn, export.id, ExportStatus.GENERATING, RESTARTABLE
                )
        if export is None:
            return failure("export_not_found", story_id=story_id)
        if not started:
            return failure("already_in_progress", story_id=story_id, export_id=export.id)
        log_event(logger, logging.INFO, "export_started", story_id=story_id, export_id=export.id)
        notify(self.bus, "asset_export", export.id, "started")
        return success(story_id=story_id, export_id=export.id, status=ExportStatus.GENERATING.value)

    def mark_complete(self, export_id: str, file_paths: list[str]) -> ActionResult:
        return self._finish(export_id, ExportStatus.COMPLETED, file_paths=list(file_paths))

    def mark_failed(self, export_id: str, message: str) -> ActionResult:
        return self._finish(export_id, ExportStatus.FAILED, error_message=message)

    def retry(self, export_id: str) -> ActionResult:
        export = get_export(self.conn, export_id)
        if export is None:
            return failure("export_not_found", export_id=export_id)
        if export.status == ExportStatus.GENERATING:
            return failure("already_in_progress", export_id=export_id)
        if export.status != ExportStatus.FAILED:
            return failure("illegal_transition", export_id=export_id, status=export.status.value)
        with self.conn.transaction():
            changed = transition_export(
                self.conn, export_id, ExportStatus.GENERATING, [ExportStatus.FAILED]
            )
        if not changed:
            return failure("already_in_progress", export_id=export_id)
        log_event(
            logger, logging.INFO, "export_retried", export_id=export_id, attempts=export.attempts + 1
        )
        notify(self.bus, "asset_export", export_id, "retried")
        return success(export_id=export_id, status=ExportStatus.GENERATING.value)

    def apply_report(self, export_id: str, report: Any) -> ActionResult:
        parsed = parse_report(report)
        if parsed["status"] == ExportStatus.COMPLETED.value:
            return self.mark_complete(export_id, parsed["file_paths"])
        return self.mark_failed(export_id, parsed["error_message"])

    def _finish(
        self,
        export_id: str,
        status: ExportStatus,
        file_paths: list[str] | None = None,
        error_message: str | None = None,
    ) -> ActionResult:
        export = get_export(self.conn, export_id)
        if export is None:
            return failure("export_not_found", export_id=export_id)
        if export.status == status:
            return no_change(export_id=export_id, status=status.value)
        with self.conn.transaction():
            changed = transition_export(
                self.conn,
                export_id,
                status,
                [ExportStatus.GENERATING],
                error_message=error_message,
                file_paths=file_paths,
            )
        if not changed:
            return failure("illegal_transition", export_id=export_id, status=export.status.value)
        level = logging.INFO if status == ExportStatus.COMPLETED else logging.WARNING
        log_event(logger, level, "export_finished", export_id=export_id, status=status.value)
        notify(self.bus, "asset_export", export_id, status.value)
        return success(export_id=export_id, status=status.value)
