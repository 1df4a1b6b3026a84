"""
QueueProcessor: applies one write-back queue item to the sheet.

Flow for a single item:
  1. DELETE → success, no sheet call (deleted records keep their sheet row)
  2. Load the live record and the relations its row builder reads;
     a record that no longer exists is an orphan → success
  3. Build the row and blank out columns write-back may not overwrite
  4. No known row (neither on the item nor on the record) and CREATE
     → append, then store the returned row number on the record
  5. Otherwise → update the known row in place

The record is always read fresh, so an older item for a record simply
rewrites its current state. Every exception is caught and returned as the
outcome's error; the dispatcher decides between retry and terminal failure.

Append-then-link is two separate writes. A crash between them leaves the
record unlinked, and the retry appends a second row.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sqlmodel import Session

from tourdesk.models.booking import Operator, Request, Revenue
from tourdesk.models.sync import SyncAction, SyncModel, SyncQueueItem
from tourdesk.sheets.client import RowUpdate
from tourdesk.sheets.row_builder import Cell, filter_writable_values, map_record_to_row

logger = logging.getLogger(__name__)

MODEL_CLASSES = {
    SyncModel.REQUEST: Request,
    SyncModel.OPERATOR: Operator,
    SyncModel.REVENUE: Revenue,
}


@dataclass
class ProcessOutcome:
    success: bool
    error: Optional[str] = None
    row_index: Optional[int] = None
    detail: str = ""  # "appended", "updated", "delete_skipped", "orphan"


class QueueProcessor:
    """Turns one SyncQueueItem into at most one sheet write."""

    def __init__(self, sheets, engine):
        """
        Args:
            sheets: SheetsClient (or AsyncMock in tests) exposing
                    append_row() and update_rows().
            engine: SQLAlchemy engine.
        """
        self.sheets = sheets
        self.engine = engine

    async def process(self, item: SyncQueueItem) -> ProcessOutcome:
        try:
            return await self._process(item)
        except Exception as exc:
            logger.debug("Queue item %s failed", item.id, exc_info=True)
            return ProcessOutcome(success=False, error=str(exc) or type(exc).__name__)

    async def _process(self, item: SyncQueueItem) -> ProcessOutcome:
        model = SyncModel(item.model)
        action = SyncAction(item.action)

        if action == SyncAction.DELETE:
            return ProcessOutcome(success=True, detail="delete_skipped")

        loaded = self._load_row(model, item.record_id)
        if loaded is None:
            logger.info(
                "%s %s no longer exists; dropping %s item %s",
                model.value, item.record_id, action.value, item.id,
            )
            return ProcessOutcome(success=True, detail="orphan")

        values, linked_row = loaded
        values = filter_writable_values(model.value, values)
        row_index = item.sheet_row_index or linked_row

        if row_index is None:
            if action != SyncAction.CREATE:
                return ProcessOutcome(success=False, error="No row index for update")
            new_row = await self.sheets.append_row(model.value, values)
            self._link_row(model, item.record_id, new_row)
            return ProcessOutcome(success=True, row_index=new_row, detail="appended")

        await self.sheets.update_rows(
            model.value, [RowUpdate(row_index=row_index, values=values)]
        )
        return ProcessOutcome(success=True, row_index=row_index, detail="updated")

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _load_row(self, model: SyncModel, record_id: int) -> Optional[Tuple[List[Cell], Optional[int]]]:
        """Build the sheet row while the session is open so relations can lazy-load."""
        with Session(self.engine) as s:
            record = s.get(MODEL_CLASSES[model], record_id)
            if record is None:
                return None
            return map_record_to_row(model.value, record), record.sheet_row_index

    def _link_row(self, model: SyncModel, record_id: int, row_index: int) -> None:
        with Session(self.engine) as s:
            record = s.get(MODEL_CLASSES[model], record_id)
            if record is None:
                return
            record.sheet_row_index = row_index
            s.add(record)
            s.commit()
