"""
Resync script: re-run a pull from an explicit row, ignoring the cursor.

Usage:
    python -m tourdesk.scripts.resync --sheet Operator --from-row 2
    python -m tourdesk.scripts.resync --all

Used to reconcile rows a pull left FAILED (they sit below the cursor once a
later row succeeds). Requests are upserted by code and cost/revenue rows
already linked to a record are skipped, so re-reading a range is safe.
"""
import argparse
import asyncio
import logging
import sys

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


async def _resync(sheet_names, from_row: int) -> None:
    from tourdesk.config import get_settings
    from tourdesk.db.engine import get_engine
    from tourdesk.sheets.client import SheetsClient
    from tourdesk.sync.importer import SheetImporter

    settings = get_settings()
    if not settings.is_sheets_configured():
        logger.error("Google Sheets not configured.")
        sys.exit(1)

    importer = SheetImporter(
        SheetsClient(settings), get_engine(), header_rows=settings.sheet_header_rows
    )
    for sheet_name in sheet_names:
        logger.info("Resyncing %s from row %d", sheet_name, from_row)
        result = await importer.sync_sheet(sheet_name, from_row=from_row)
        logger.info(
            "%s: %d synced, %d errors, %d skipped, last row %s",
            sheet_name, result.synced, result.errors, result.skipped,
            result.last_row_index,
        )


def main(argv=None) -> None:
    from tourdesk.config import SUPPORTED_SHEETS

    parser = argparse.ArgumentParser(description="Re-import sheet rows from an explicit row")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--sheet", choices=SUPPORTED_SHEETS, help="Sheet to resync")
    target.add_argument("--all", action="store_true", help="Resync every sheet, in order")
    parser.add_argument(
        "--from-row",
        type=int,
        default=2,
        help="First 1-based row to read (default: 2, just below the header)",
    )
    args = parser.parse_args(argv)
    sheets = list(SUPPORTED_SHEETS) if args.all else [args.sheet]
    asyncio.run(_resync(sheets, args.from_row))


if __name__ == "__main__":
    main()
