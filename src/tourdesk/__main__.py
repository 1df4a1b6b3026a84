"""
Main entrypoint: runs the sync scheduler, or a single pass from the shell.

FastAPI runs separately under uvicorn (for the trigger and status endpoints).

Usage:
    python -m tourdesk                  # starts the scheduler
    python -m tourdesk process          # one write-back pass
    python -m tourdesk process --maintenance
    python -m tourdesk pull Operator    # import new rows from one sheet
    uvicorn tourdesk.api.main:app --host 0.0.0.0 --port 8000  # starts API
"""
import argparse
import asyncio
import json
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _require_sheets(settings) -> None:
    if not settings.is_sheets_configured():
        logger.error(
            "Google Sheets not configured. Set GOOGLE_SERVICE_ACCOUNT_EMAIL, "
            "GOOGLE_PRIVATE_KEY and GOOGLE_SHEET_ID (or SHEET_ID_*)."
        )
        sys.exit(1)


async def _process(run_maintenance: bool) -> None:
    from tourdesk.config import get_settings
    from tourdesk.db.engine import get_engine
    from tourdesk.sheets.client import SheetsClient
    from tourdesk.sync.dispatcher import build_dispatcher

    settings = get_settings()
    _require_sheets(settings)
    dispatcher = build_dispatcher(get_engine(), settings, SheetsClient(settings))
    result = await dispatcher.run(run_maintenance=run_maintenance)
    print(json.dumps(result.to_dict(), indent=2))


async def _pull(sheet_name: str) -> None:
    from tourdesk.config import get_settings
    from tourdesk.db.engine import get_engine
    from tourdesk.sheets.client import SheetsClient
    from tourdesk.sync.importer import SheetImporter

    settings = get_settings()
    _require_sheets(settings)
    importer = SheetImporter(
        SheetsClient(settings), get_engine(), header_rows=settings.sheet_header_rows
    )
    result = await importer.sync_sheet(sheet_name)
    print(
        f"{sheet_name}: {result.synced} synced, {result.errors} errors, "
        f"{result.skipped} skipped, last row {result.last_row_index}"
    )


async def _run_scheduler() -> None:
    from tourdesk.config import get_settings
    from tourdesk.db.engine import get_engine
    from tourdesk.scheduler.jobs import build_scheduler

    settings = get_settings()
    scheduler = build_scheduler(get_engine())
    scheduler.start()
    logger.info(
        "Scheduler started (write-back every %d min, maintenance %s %02d:00 UTC)",
        settings.writeback_interval_minutes,
        settings.maintenance_day_of_week,
        settings.maintenance_hour,
    )

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()


def main(argv=None) -> None:
    from tourdesk.config import SUPPORTED_SHEETS

    parser = argparse.ArgumentParser(prog="tourdesk", description="Sheets sync bridge")
    sub = parser.add_subparsers(dest="command")

    process = sub.add_parser("process", help="Run one write-back pass")
    process.add_argument(
        "--maintenance", action="store_true", help="Also purge old completed items"
    )
    pull = sub.add_parser("pull", help="Import new rows from one sheet")
    pull.add_argument("sheet", choices=SUPPORTED_SHEETS)

    args = parser.parse_args(argv)
    if args.command == "process":
        asyncio.run(_process(args.maintenance))
    elif args.command == "pull":
        asyncio.run(_pull(args.sheet))
    else:
        asyncio.run(_run_scheduler())


if __name__ == "__main__":
    main()
