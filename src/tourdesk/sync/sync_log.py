"""Append-only sync audit log helpers and the pull cursor derived from it."""
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlmodel import Session, select

from tourdesk.models.sync import LogStatus, SyncLog

PULL_ACTION = "SYNC"
WRITE_BACK_PREFIX = "WRITE_BACK_"


def write_back_action(action: str) -> str:
    return f"{WRITE_BACK_PREFIX}{action}"


def record_sync_log(
    engine,
    *,
    sheet_name: str,
    action: str,
    status: LogStatus,
    row_index: Optional[int] = None,
    record_id: Optional[str] = None,
    error_message: Optional[str] = None,
) -> SyncLog:
    """Insert one SyncLog row in its own transaction. Rows are never updated."""
    log = SyncLog(
        sheet_name=sheet_name,
        action=action,
        row_index=row_index,
        record_id=record_id,
        status=status,
        error_message=error_message,
        synced_at=datetime.utcnow(),
    )
    with Session(engine) as s:
        s.add(log)
        s.commit()
        s.refresh(log)
    return log


def last_synced_row(engine, sheet_name: str) -> int:
    """
    Pull cursor: highest row index logged SUCCESS by a pull of this sheet, or 0.

    Write-back log rows share sheet_name but are excluded; an appended row
    must not move the pull cursor past rows staff added before it.
    """
    with Session(engine) as s:
        highest = s.exec(
            select(func.max(SyncLog.row_index)).where(
                SyncLog.sheet_name == sheet_name,
                SyncLog.action == PULL_ACTION,
                SyncLog.status == LogStatus.SUCCESS,
            )
        ).one()
    return highest or 0
