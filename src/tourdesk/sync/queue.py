"""
Write-back queue (outbox) primitives.

The queue table is the only state shared between concurrent dispatcher
runs. Claiming is a per-item compare-and-set:

    UPDATE syncqueueitem SET status='PROCESSING', locked_at=:now
    WHERE id=:id AND status='PENDING'

A row is claimed only by the caller whose UPDATE matched it, so two
dispatchers racing over the same candidates split them without overlap.
Single-item transitions (settle, manual retry) are checked against
models.sync.TRANSITIONS; the bulk claim and stuck sweep encode theirs in
the WHERE clause.
"""
import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Collection, Dict, List, Optional

from sqlalchemy import delete, func, or_, update
from sqlmodel import Session, select

from tourdesk.models.sync import (
    QueueStatus,
    SyncAction,
    SyncModel,
    SyncQueueItem,
    check_transition,
    retry_target,
)

logger = logging.getLogger(__name__)


@dataclass
class QueueStats:
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def new_queue_item(
    model: SyncModel,
    action: SyncAction,
    record_id: int,
    *,
    max_retries: int,
    sheet_row_index: Optional[int] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> SyncQueueItem:
    """Build an unsaved PENDING item; shared by enqueue() and the session hooks."""
    return SyncQueueItem(
        model=SyncModel(model),
        action=SyncAction(action),
        record_id=record_id,
        sheet_row_index=sheet_row_index,
        payload_json=json.dumps(payload, default=str) if payload else None,
        status=QueueStatus.PENDING,
        max_retries=max_retries,
        created_at=datetime.utcnow(),
    )


class WriteBackQueue:
    """Data-access layer over SyncQueueItem."""

    def __init__(self, engine, max_retries: int = 3):
        """
        Args:
            engine: SQLAlchemy engine.
            max_retries: Failed attempts before an item becomes terminal FAILED.
        """
        self.engine = engine
        self.max_retries = max_retries

    # ─── Producers ────────────────────────────────────────────────────────────

    def enqueue(
        self,
        model: SyncModel,
        action: SyncAction,
        record_id: int,
        *,
        sheet_row_index: Optional[int] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> SyncQueueItem:
        """Add a PENDING item. Items for the same record are not deduplicated."""
        item = new_queue_item(
            model, action, record_id,
            max_retries=self.max_retries,
            sheet_row_index=sheet_row_index,
            payload=payload,
        )
        with Session(self.engine) as s:
            s.add(item)
            s.commit()
            s.refresh(item)
        return item

    # ─── Consumers ────────────────────────────────────────────────────────────

    def dequeue(
        self, batch_size: int = 25, exclude_ids: Optional[Collection[int]] = None
    ) -> List[SyncQueueItem]:
        """
        Claim up to `batch_size` PENDING items, oldest first.

        Args:
            batch_size: Maximum number of items to claim.
            exclude_ids: Items never to claim in this call, e.g. ones a
                dispatcher pass already attempted and returned to PENDING.

        Returns:
            The claimed items (status PROCESSING, locked_at set), in creation
            order. May return fewer than batch_size when another caller wins
            some of the candidates.
        """
        now = datetime.utcnow()
        query = select(SyncQueueItem.id).where(SyncQueueItem.status == QueueStatus.PENDING)
        if exclude_ids:
            query = query.where(SyncQueueItem.id.notin_(list(exclude_ids)))
        with Session(self.engine) as s:
            candidate_ids = s.exec(
                query
                .order_by(SyncQueueItem.created_at, SyncQueueItem.id)
                .limit(batch_size)
            ).all()
            if not candidate_ids:
                return []

            claimed_ids = []
            for item_id in candidate_ids:
                result = s.exec(
                    update(SyncQueueItem)
                    .where(
                        SyncQueueItem.id == item_id,
                        SyncQueueItem.status == QueueStatus.PENDING,
                    )
                    .values(status=QueueStatus.PROCESSING, locked_at=now)
                )
                if result.rowcount == 1:
                    claimed_ids.append(item_id)
            s.commit()

            if not claimed_ids:
                return []
            items = s.exec(
                select(SyncQueueItem)
                .where(SyncQueueItem.id.in_(claimed_ids))
                .order_by(SyncQueueItem.created_at, SyncQueueItem.id)
            ).all()
            for item in items:
                s.expunge(item)
        return list(items)

    def mark_complete(self, item_id: int) -> bool:
        """PROCESSING -> COMPLETED. Returns False if the item no longer exists."""
        return self._transition(
            item_id,
            QueueStatus.COMPLETED,
            processed_at=datetime.utcnow(),
            locked_at=None,
        )

    def mark_failed(self, item_id: int, error: str) -> Optional[QueueStatus]:
        """
        Record a failed attempt: retries += 1, last_error replaced.

        Returns:
            The new status (PENDING to retry, FAILED once retries reach the
            queue's configured ceiling), or None if the item no longer exists.
        """
        with Session(self.engine) as s:
            item = s.get(SyncQueueItem, item_id)
            if item is None:
                return None
            retries = item.retries + 1
            target = retry_target(retries, self.max_retries)
            check_transition(item.status, target)
            item.status = target
            item.retries = retries
            item.max_retries = self.max_retries
            item.last_error = error
            item.locked_at = None
            s.add(item)
            s.commit()
        return target

    def retry_failed(self, item_id: int) -> bool:
        """Manual retry: FAILED -> PENDING with the retry counter and error cleared."""
        return self._transition(
            item_id, QueueStatus.PENDING, retries=0, last_error=None
        )

    def delete_queue_item(self, item_id: int) -> bool:
        with Session(self.engine) as s:
            item = s.get(SyncQueueItem, item_id)
            if item is None:
                return False
            s.delete(item)
            s.commit()
        return True

    # ─── Maintenance ──────────────────────────────────────────────────────────

    def reset_stuck(self, timeout_minutes: int = 10, now: Optional[datetime] = None) -> int:
        """
        Return PROCESSING items claimed more than `timeout_minutes` ago to PENDING.

        Items claimed before locked_at existed (NULL) count as stuck.
        """
        threshold = (now or datetime.utcnow()) - timedelta(minutes=timeout_minutes)
        with Session(self.engine) as s:
            result = s.exec(
                update(SyncQueueItem)
                .where(
                    SyncQueueItem.status == QueueStatus.PROCESSING,
                    or_(
                        SyncQueueItem.locked_at.is_(None),
                        SyncQueueItem.locked_at < threshold,
                    ),
                )
                .values(status=QueueStatus.PENDING, locked_at=None)
            )
            s.commit()
        count = result.rowcount or 0
        if count:
            logger.warning("Reset %d stuck queue items", count)
        return count

    def cleanup_completed(self, older_than_days: int = 7, now: Optional[datetime] = None) -> int:
        """Delete COMPLETED items processed more than `older_than_days` ago."""
        threshold = (now or datetime.utcnow()) - timedelta(days=older_than_days)
        with Session(self.engine) as s:
            result = s.exec(
                delete(SyncQueueItem).where(
                    SyncQueueItem.status == QueueStatus.COMPLETED,
                    SyncQueueItem.processed_at < threshold,
                )
            )
            s.commit()
        return result.rowcount or 0

    # ─── Queries ──────────────────────────────────────────────────────────────

    def get_queue_stats(self) -> QueueStats:
        with Session(self.engine) as s:
            rows = s.exec(
                select(SyncQueueItem.status, func.count(SyncQueueItem.id))
                .group_by(SyncQueueItem.status)
            ).all()
        stats = QueueStats()
        for status, count in rows:
            setattr(stats, QueueStatus(status).value.lower(), count)
        return stats

    def get_failed_items(self, limit: int = 10) -> List[SyncQueueItem]:
        """Most recent terminal failures, newest first."""
        with Session(self.engine) as s:
            items = s.exec(
                select(SyncQueueItem)
                .where(SyncQueueItem.status == QueueStatus.FAILED)
                .order_by(SyncQueueItem.created_at.desc(), SyncQueueItem.id.desc())
                .limit(limit)
            ).all()
            for item in items:
                s.expunge(item)
        return list(items)

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _transition(self, item_id: int, target: QueueStatus, **values) -> bool:
        with Session(self.engine) as s:
            item = s.get(SyncQueueItem, item_id)
            if item is None:
                return False
            check_transition(item.status, target)
            item.status = target
            for key, value in values.items():
                setattr(item, key, value)
            s.add(item)
            s.commit()
        return True
