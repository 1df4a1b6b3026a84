"""
APScheduler jobs for background sync.

  write_back         every WRITEBACK_INTERVAL_MINUTES, one bounded pass
  queue_maintenance  weekly, a pass that also purges old COMPLETED items
  pull_sync          optional (PULL_SYNC_INTERVAL_MINUTES > 0), imports new
                     rows from each sheet in PULL_SYNC_SHEETS

Jobs run in-process and call the sync services directly; the HTTP trigger
exists for external cron and manual runs. Overlapping passes are safe
because queue claims are atomic.
"""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from tourdesk.config import get_settings

logger = logging.getLogger(__name__)


def build_scheduler(engine) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        engine: SQLAlchemy engine passed to the sync services.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _write_back,
        trigger="interval",
        minutes=settings.writeback_interval_minutes,
        id="write_back",
        replace_existing=True,
        kwargs={"engine": engine},
    )

    scheduler.add_job(
        _write_back,
        trigger="cron",
        day_of_week=settings.maintenance_day_of_week,
        hour=settings.maintenance_hour,
        minute=0,
        id="queue_maintenance",
        replace_existing=True,
        kwargs={"engine": engine, "run_maintenance": True},
    )

    if settings.pull_sync_interval_minutes > 0:
        scheduler.add_job(
            _pull_sync,
            trigger="interval",
            minutes=settings.pull_sync_interval_minutes,
            id="pull_sync",
            replace_existing=True,
            kwargs={"engine": engine},
        )

    return scheduler


async def _write_back(engine, run_maintenance: bool = False) -> None:
    """Write-back job: drain the queue once. Skipped while Sheets is unconfigured."""
    from tourdesk.sheets.client import SheetsClient
    from tourdesk.sync.dispatcher import build_dispatcher

    settings = get_settings()
    if not settings.is_sheets_configured():
        logger.info("Write-back skipped: Google Sheets not configured")
        return

    try:
        dispatcher = build_dispatcher(engine, settings, SheetsClient(settings))
        await dispatcher.run(run_maintenance=run_maintenance)
    except Exception as exc:
        logger.error("Write-back job failed: %s", exc)


async def _pull_sync(engine) -> None:
    """Pull job: import new rows from every configured sheet, one at a time."""
    from tourdesk.sheets.client import SheetsClient
    from tourdesk.sync.importer import SheetImporter

    settings = get_settings()
    if not settings.is_sheets_configured():
        logger.info("Pull-sync skipped: Google Sheets not configured")
        return

    importer = SheetImporter(
        SheetsClient(settings), engine, header_rows=settings.sheet_header_rows
    )
    configured = settings.sheet_config_status()
    for sheet_name in settings.pull_sync_sheets:
        if not configured.get(sheet_name):
            logger.warning("Pull-sync skipped for %s: no spreadsheet ID", sheet_name)
            continue
        try:
            await importer.sync_sheet(sheet_name)
        except Exception as exc:
            logger.error("Pull-sync of %s failed: %s", sheet_name, exc)
