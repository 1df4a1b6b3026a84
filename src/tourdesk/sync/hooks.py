"""
Outbox producers: enqueue write-back items when synced entities change.

Application code that mutates requests, cost lines or revenue lines uses a
SyncSession (the API's get_session dependency yields one). On flush the
session collects:

  - CREATE for each inserted Request / Operator / Revenue
  - UPDATE for each modified one whose changed columns go beyond
    bookkeeping (sheet_row_index, updated_at)

and adds the SyncQueueItem rows to the same session, so they commit (or
roll back) together with the mutation itself.

Deletes are never queued: rows staff may still be reading stay in the
sheet. Operator and Revenue rows under any accounting lock are skipped.

Sync internals (processor, importer) use plain Sessions, so linkage writes
and pulled rows are not echoed back to the sheet.
"""
from typing import Any, Dict, List

from sqlalchemy import event, inspect
from sqlmodel import Session

from tourdesk.config import get_settings
from tourdesk.models.booking import Operator, Request, Revenue
from tourdesk.models.sync import SyncAction, SyncModel, SyncQueueItem
from tourdesk.sync.queue import new_queue_item

TRACKED_MODELS = {
    Request: SyncModel.REQUEST,
    Operator: SyncModel.OPERATOR,
    Revenue: SyncModel.REVENUE,
}
IGNORED_FIELDS = frozenset({"id", "sheet_row_index", "created_at", "updated_at"})
LOCK_FIELDS = ("lock_kt", "lock_admin", "lock_final", "is_locked")

_PENDING_KEY = "sync_queue_pending"


class SyncSession(Session):
    """Session whose commits also enqueue write-back items."""


def _column_keys(obj: Any) -> List[str]:
    return [attr.key for attr in inspect(obj).mapper.column_attrs]


def _snapshot(obj: Any) -> Dict[str, Any]:
    return {
        key: getattr(obj, key)
        for key in _column_keys(obj)
        if key not in IGNORED_FIELDS
    }


def _changed_fields(obj: Any) -> Dict[str, Any]:
    state = inspect(obj)
    changes = {}
    for key in _column_keys(obj):
        if key in IGNORED_FIELDS:
            continue
        if state.attrs[key].history.has_changes():
            changes[key] = getattr(obj, key)
    return changes


def _was_locked(obj: Any) -> bool:
    """Lock state before this flush; locking and editing in one go still syncs."""
    state = inspect(obj)
    for field in LOCK_FIELDS:
        if field not in state.attrs:
            continue
        history = state.attrs[field].history
        previous = history.deleted[0] if history.deleted else getattr(obj, field)
        if previous:
            return True
    return False


def _queue_item(model: SyncModel, action: SyncAction, obj: Any, payload: Dict[str, Any]) -> SyncQueueItem:
    return new_queue_item(
        model, action, obj.id,
        max_retries=get_settings().queue_max_retries,
        sheet_row_index=obj.sheet_row_index,
        payload=payload,
    )


@event.listens_for(SyncSession, "after_flush")
def _collect_changes(session, flush_context) -> None:
    # new/dirty and attribute history still reflect pre-flush state here,
    # and primary keys of inserted rows are already assigned.
    pending = session.info.setdefault(_PENDING_KEY, [])

    for obj in session.new:
        model = TRACKED_MODELS.get(type(obj))
        if model is None or any(getattr(obj, f, False) for f in LOCK_FIELDS):
            continue
        pending.append(_queue_item(model, SyncAction.CREATE, obj, _snapshot(obj)))

    for obj in session.dirty:
        model = TRACKED_MODELS.get(type(obj))
        if model is None or _was_locked(obj):
            continue
        changes = _changed_fields(obj)
        if changes:
            pending.append(_queue_item(model, SyncAction.UPDATE, obj, changes))


@event.listens_for(SyncSession, "after_flush_postexec")
def _enqueue_changes(session, flush_context) -> None:
    pending = session.info.pop(_PENDING_KEY, None)
    if pending:
        # Flushed by the next flush pass of the same commit
        session.add_all(pending)


@event.listens_for(SyncSession, "after_rollback")
def _discard_changes(session) -> None:
    session.info.pop(_PENDING_KEY, None)
