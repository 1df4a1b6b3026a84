"""Read-only status views over the queue and the sync log, shaped for the API."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from tourdesk.config import SUPPORTED_SHEETS, Settings
from tourdesk.models.sync import LogStatus, SyncLog, SyncQueueItem
from tourdesk.sync.queue import WriteBackQueue
from tourdesk.sync.sync_log import PULL_ACTION, WRITE_BACK_PREFIX

RECENT_FAILED_LIMIT = 10
RECENT_LOGS_LIMIT = 20
RECENT_PULL_FAILURES_LIMIT = 20


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _queue_item_dict(item: SyncQueueItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "model": item.model.value,
        "action": item.action.value,
        "recordId": item.record_id,
        "lastError": item.last_error,
        "retries": item.retries,
        "createdAt": _iso(item.created_at),
    }


def _log_dict(log: SyncLog) -> Dict[str, Any]:
    return {
        "id": log.id,
        "sheetName": log.sheet_name,
        "action": log.action,
        "rowIndex": log.row_index,
        "recordId": log.record_id,
        "status": log.status.value,
        "errorMessage": log.error_message,
        "syncedAt": _iso(log.synced_at),
    }


def queue_status(engine, queue: WriteBackQueue, *, detailed: bool) -> Dict[str, Any]:
    """
    Queue counts for everyone; recent failures and write-back logs only when
    `detailed` (admin callers).
    """
    stats = queue.get_queue_stats().to_dict()
    recent_failed: List[Dict[str, Any]] = []
    recent_logs: List[Dict[str, Any]] = []

    if detailed:
        recent_failed = [
            _queue_item_dict(item)
            for item in queue.get_failed_items(RECENT_FAILED_LIMIT)
        ]
        with Session(engine) as s:
            logs = s.exec(
                select(SyncLog)
                .where(SyncLog.action.startswith(WRITE_BACK_PREFIX))
                .order_by(SyncLog.synced_at.desc(), SyncLog.id.desc())
                .limit(RECENT_LOGS_LIMIT)
            ).all()
            recent_logs = [_log_dict(log) for log in logs]

    return {
        "stats": stats,
        "recentFailed": recent_failed,
        "recentLogs": recent_logs,
        "lastProcessed": recent_logs[0]["syncedAt"] if recent_logs else None,
    }


def pull_status(engine, settings: Settings) -> Dict[str, Any]:
    """Configuration, per-sheet log counts, last pull and the rows awaiting reconciliation."""
    with Session(engine) as s:
        grouped = s.exec(
            select(SyncLog.sheet_name, SyncLog.status, func.count(SyncLog.id))
            .group_by(SyncLog.sheet_name, SyncLog.status)
            .order_by(SyncLog.sheet_name)
        ).all()
        stats = [
            {"sheetName": sheet, "status": LogStatus(status).value, "count": count}
            for sheet, status, count in grouped
        ]

        last_syncs = []
        for sheet_name in SUPPORTED_SHEETS:
            last = s.exec(
                select(SyncLog)
                .where(
                    SyncLog.sheet_name == sheet_name,
                    SyncLog.action == PULL_ACTION,
                    SyncLog.status == LogStatus.SUCCESS,
                )
                .order_by(SyncLog.synced_at.desc(), SyncLog.id.desc())
            ).first()
            last_syncs.append({
                "sheetName": sheet_name,
                "lastSync": _iso(last.synced_at) if last else None,
                "lastRow": last.row_index if last else None,
            })

        failures = s.exec(
            select(SyncLog)
            .where(
                SyncLog.action == PULL_ACTION,
                SyncLog.status == LogStatus.FAILED,
            )
            .order_by(SyncLog.synced_at.desc(), SyncLog.id.desc())
            .limit(RECENT_PULL_FAILURES_LIMIT)
        ).all()
        recent_failures = [_log_dict(log) for log in failures]

    return {
        "configured": settings.is_sheets_configured(),
        "sheetConfig": settings.sheet_config_status(),
        "stats": stats,
        "lastSyncs": last_syncs,
        "recentFailures": recent_failures,
    }
