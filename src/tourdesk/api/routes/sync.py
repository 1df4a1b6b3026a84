"""Write-back trigger, queue administration and pull-sync routes."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from tourdesk.api.auth import ADMIN_ROLE, authorize_trigger, require_admin, require_user
from tourdesk.config import SUPPORTED_SHEETS, Settings, get_settings
from tourdesk.db.engine import get_engine
from tourdesk.models.booking import User
from tourdesk.models.sync import IllegalTransitionError
from tourdesk.sheets.client import SheetsClient
from tourdesk.sync.dispatcher import build_dispatcher
from tourdesk.sync.importer import SheetImporter
from tourdesk.sync.queue import WriteBackQueue
from tourdesk.sync.status import pull_status, queue_status

logger = logging.getLogger(__name__)

router = APIRouter()

NOT_CONFIGURED_MESSAGE = (
    "Google Sheets not configured. Set GOOGLE_SERVICE_ACCOUNT_EMAIL, "
    "GOOGLE_PRIVATE_KEY, and SHEET_ID_* or GOOGLE_SHEET_ID"
)


class WriteBackRequest(BaseModel):
    run_maintenance: bool = False


class SheetSyncRequest(BaseModel):
    sheet_name: str = Field(alias="sheetName")


def get_sheets_client(settings: Settings = Depends(get_settings)) -> SheetsClient:
    return SheetsClient(settings)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


# ─── Write-back ───────────────────────────────────────────────────────────────

@router.post("/write-back")
async def write_back(
    body: Optional[WriteBackRequest] = None,
    trigger: str = Depends(authorize_trigger),
    engine=Depends(get_engine),
    settings: Settings = Depends(get_settings),
    sheets=Depends(get_sheets_client),
):
    """
    Run one bounded write-back pass.

    Called by the scheduler with the cron bearer secret, or manually by an admin.
    """
    if not settings.is_sheets_configured():
        return _error(400, NOT_CONFIGURED_MESSAGE)

    run_maintenance = body.run_maintenance if body else False
    logger.info("Write-back triggered (%s), maintenance=%s", trigger, run_maintenance)
    try:
        result = await build_dispatcher(engine, settings, sheets).run(
            run_maintenance=run_maintenance
        )
    except Exception:
        logger.exception("Write-back pass failed")
        return _error(500, "Write-back failed. Check server logs.")

    return {
        "success": True,
        "result": result.counts(),
        "queueStats": result.queue_stats.to_dict(),
    }


# ─── Queue status / administration ────────────────────────────────────────────

@router.get("/queue")
def get_queue(
    user: User = Depends(require_user),
    engine=Depends(get_engine),
    settings: Settings = Depends(get_settings),
):
    """Queue counts for any signed-in user; failure details for admins."""
    queue = WriteBackQueue(engine, max_retries=settings.queue_max_retries)
    try:
        data = queue_status(engine, queue, detailed=user.role == ADMIN_ROLE)
    except Exception:
        logger.exception("Queue status failed")
        return _error(500, "Failed to get queue status")
    return {"success": True, "data": data}


@router.post("/queue/{item_id}/retry")
def retry_queue_item(
    item_id: int,
    admin: User = Depends(require_admin),
    engine=Depends(get_engine),
):
    """Move a terminally FAILED item back to PENDING."""
    queue = WriteBackQueue(engine)
    try:
        found = queue.retry_failed(item_id)
    except IllegalTransitionError as exc:
        return _error(409, str(exc))
    if not found:
        raise HTTPException(status_code=404, detail="Queue item not found")
    logger.info("Queue item %d requeued by user %s", item_id, admin.id)
    return {"success": True}


@router.delete("/queue/{item_id}")
def delete_queue_item(
    item_id: int,
    admin: User = Depends(require_admin),
    engine=Depends(get_engine),
):
    if not WriteBackQueue(engine).delete_queue_item(item_id):
        raise HTTPException(status_code=404, detail="Queue item not found")
    logger.info("Queue item %d deleted by user %s", item_id, admin.id)
    return {"success": True}


# ─── Pull-sync ────────────────────────────────────────────────────────────────

@router.post("/sheets")
async def sync_sheet(
    body: SheetSyncRequest,
    admin: User = Depends(require_admin),
    engine=Depends(get_engine),
    settings: Settings = Depends(get_settings),
    sheets=Depends(get_sheets_client),
):
    """Import rows added to one tab since the last pull."""
    if not settings.is_sheets_configured():
        return _error(400, NOT_CONFIGURED_MESSAGE)

    sheet_name = body.sheet_name
    if sheet_name not in SUPPORTED_SHEETS:
        return _error(400, f"Invalid sheet. Use: {', '.join(SUPPORTED_SHEETS)}")
    if not settings.sheet_config_status()[sheet_name]:
        return _error(
            400,
            f"No spreadsheet ID for {sheet_name}. "
            f"Set SHEET_ID_{sheet_name.upper()} or GOOGLE_SHEET_ID",
        )

    logger.info("Pull %s started by user %s", sheet_name, admin.id)
    importer = SheetImporter(sheets, engine, header_rows=settings.sheet_header_rows)
    try:
        result = await importer.sync_sheet(sheet_name)
    except Exception:
        logger.exception("Pull %s failed", sheet_name)
        return _error(500, "Sync failed. Check server logs.")

    if result.last_row_index is None:
        message = "No new rows to sync"
    else:
        message = f"Synced {result.synced} rows, {result.errors} errors"
    return {
        "success": True,
        "message": message,
        "synced": result.synced,
        "errors": result.errors,
        "lastRowIndex": result.last_row_index,
    }


@router.get("/sheets")
def sheets_status(
    user: User = Depends(require_user),
    engine=Depends(get_engine),
    settings: Settings = Depends(get_settings),
):
    """Pull-sync configuration, per-sheet log counts and rows needing reconciliation."""
    try:
        data = pull_status(engine, settings)
    except Exception:
        logger.exception("Pull status failed")
        return _error(500, "Failed to get sync status")
    return {"success": True, "data": data}
