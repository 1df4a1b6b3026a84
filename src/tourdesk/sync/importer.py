"""
SheetImporter: imports rows staff added to the shared sheet.

Flow for one sheet:
  1. cursor = highest row logged SUCCESS by an earlier pull (0 if none)
  2. Fetch every row after the cursor (never above the header)
  3. For each row, in sheet order:
       normalize → None means blank/placeholder row, skipped without a log
       Request  → upsert by code (the only idempotent re-import)
       Operator / Revenue → resolve parent request by code, create a new line
     and write one SyncLog row (SUCCESS, or FAILED with the message)
  4. A failed row never aborts the rest of the batch

The cursor is the highest *successful* row, so a FAILED row followed by a
successful one is not fetched again. The sheets status endpoint lists failed
pull rows for manual reconciliation (or a resync from an explicit row).

Operator/Revenue rows already linked to a record (sheet_row_index) are
treated as imported: they are rows write-back appended, or rows a resync
re-read. They are logged SUCCESS so the cursor moves past them.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import or_
from sqlmodel import Session, select

from tourdesk.models.booking import Operator, Request, Revenue, User
from tourdesk.models.sync import LogStatus
from tourdesk.sheets.normalizer import NORMALIZERS, RowMappingError
from tourdesk.sync.sync_log import PULL_ACTION, last_synced_row, record_sync_log

logger = logging.getLogger(__name__)

# Role whose first user owns rows imported into each sheet
DEFAULT_OWNER_ROLES = {
    "Request": "SELLER",
    "Operator": "OPERATOR",
    "Revenue": "ACCOUNTANT",
}

REQUEST_MUTABLE_FIELDS = (
    "booking_code", "customer_name", "contact", "country", "source", "status",
    "stage", "pax", "tour_days", "start_date", "end_date", "expected_revenue",
    "expected_cost", "notes", "sheet_row_index",
)


class ParentNotFoundError(LookupError):
    """Raised when a cost/revenue row references a request code with no match."""


@dataclass
class ImportResult:
    sheet_name: str
    synced: int = 0
    errors: int = 0
    skipped: int = 0
    last_row_index: Optional[int] = None


class SheetImporter:
    """Orchestrates sheet → DB import for one tab at a time."""

    def __init__(self, sheets, engine, header_rows: int = 1):
        """
        Args:
            sheets: SheetsClient (or AsyncMock in tests) exposing list_rows().
            engine: SQLAlchemy engine.
            header_rows: Rows at the top of each tab that are never data.
        """
        self.sheets = sheets
        self.engine = engine
        self.header_rows = header_rows

    def cursor(self, sheet_name: str) -> int:
        return last_synced_row(self.engine, sheet_name)

    async def sync_sheet(self, sheet_name: str, from_row: Optional[int] = None) -> ImportResult:
        """
        Import new rows of one tab.

        Args:
            sheet_name: "Request", "Operator" or "Revenue".
            from_row: Explicit first row (resync); defaults to cursor + 1.

        Returns:
            ImportResult with per-row counts and the last row fetched.
        """
        if sheet_name not in NORMALIZERS:
            raise ValueError(f"Unsupported sheet: {sheet_name}")

        if from_row is None:
            from_row = self.cursor(sheet_name) + 1
        from_row = max(from_row, self.header_rows + 1)

        rows = await self.sheets.list_rows(sheet_name, from_row)
        result = ImportResult(sheet_name=sheet_name)
        if not rows:
            return result

        normalize = NORMALIZERS[sheet_name]
        for row in sorted(rows, key=lambda r: r.row_index):
            result.last_row_index = row.row_index
            try:
                fields = normalize(row.values, row.row_index)
                if fields is None:
                    result.skipped += 1
                    continue
                record_key, imported = self._import_row(sheet_name, fields)
            except Exception as exc:
                result.errors += 1
                logger.warning(
                    "Pull %s row %d failed: %s", sheet_name, row.row_index, exc
                )
                record_sync_log(
                    self.engine,
                    sheet_name=sheet_name,
                    action=PULL_ACTION,
                    status=LogStatus.FAILED,
                    row_index=row.row_index,
                    error_message=str(exc) or type(exc).__name__,
                )
                continue

            if imported:
                result.synced += 1
            else:
                result.skipped += 1
            record_sync_log(
                self.engine,
                sheet_name=sheet_name,
                action=PULL_ACTION,
                status=LogStatus.SUCCESS,
                row_index=row.row_index,
                record_id=record_key,
            )

        logger.info(
            "Pull %s done: %d synced, %d errors, %d skipped, last row %s",
            sheet_name, result.synced, result.errors, result.skipped,
            result.last_row_index,
        )
        return result

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _import_row(self, sheet_name: str, fields: Dict[str, Any]):
        """Persist one normalized row. Returns (record key for the log, imported?)."""
        with Session(self.engine) as s:
            owner_id = self._default_owner_id(s, DEFAULT_OWNER_ROLES[sheet_name])
            if sheet_name == "Request":
                self._upsert_request(s, fields, owner_id)
                s.commit()
                return fields["code"], True

            model_cls = Operator if sheet_name == "Operator" else Revenue
            linked = s.exec(
                select(model_cls.id).where(model_cls.sheet_row_index == fields["sheet_row_index"])
            ).first()
            if linked is not None:
                return fields["request_code"], False

            request = self._find_request(s, fields["request_code"])
            line_fields = {k: v for k, v in fields.items() if k != "request_code"}
            s.add(model_cls(request_id=request.id, user_id=owner_id, **line_fields))
            s.commit()
            return fields["request_code"], True

    def _upsert_request(self, s: Session, fields: Dict[str, Any], seller_id: int) -> Request:
        existing = s.exec(select(Request).where(Request.code == fields["code"])).first()
        if existing:
            for key in REQUEST_MUTABLE_FIELDS:
                setattr(existing, key, fields[key])
            existing.updated_at = datetime.utcnow()
            s.add(existing)
            return existing
        request = Request(seller_id=seller_id, **fields)
        s.add(request)
        return request

    @staticmethod
    def _find_request(s: Session, code: str) -> Request:
        request = s.exec(
            select(Request).where(or_(Request.code == code, Request.booking_code == code))
        ).first()
        if request is None:
            raise ParentNotFoundError(f"Parent not found: no request with code {code}")
        return request

    @staticmethod
    def _default_owner_id(s: Session, role: str) -> int:
        user = s.exec(select(User).where(User.role == role).order_by(User.id)).first()
        if user is None:
            raise RowMappingError(f"No {role} user found for import")
        return user.id
