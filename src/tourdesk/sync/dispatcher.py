"""
WriteBackDispatcher: one bounded write-back pass.

  1. Reclaim items stuck in PROCESSING past the timeout
  2. Claim and process up to max_batches × batch_size items, sequentially,
     stopping early when a claim comes back empty. An item is attempted at
     most once per pass, so a failure waits for the next invocation
  3. Complete or fail each item and log one SyncLog row per outcome
  4. Optionally purge old COMPLETED items (run_maintenance=True, passed by
     the weekly maintenance trigger)

Callers authenticate the trigger before constructing a pass; the dispatcher
itself only touches queue state. Concurrent passes never apply the same item
twice because WriteBackQueue.dequeue claims with a compare-and-set.
"""
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional, Set

from tourdesk.config import Settings
from tourdesk.models.sync import IllegalTransitionError, LogStatus, QueueStatus
from tourdesk.sync.processor import QueueProcessor
from tourdesk.sync.queue import QueueStats, WriteBackQueue
from tourdesk.sync.sync_log import record_sync_log, write_back_action

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    reset: int = 0
    cleaned: int = 0
    queue_stats: QueueStats = field(default_factory=QueueStats)

    def counts(self) -> Dict[str, int]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "reset": self.reset,
            "cleaned": self.cleaned,
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class WriteBackDispatcher:
    """Drains the write-back queue through a QueueProcessor."""

    def __init__(
        self,
        queue: WriteBackQueue,
        processor: QueueProcessor,
        engine,
        *,
        batch_size: int = 25,
        max_batches: int = 4,
        stuck_timeout_minutes: int = 10,
        retention_days: int = 7,
    ):
        self.queue = queue
        self.processor = processor
        self.engine = engine
        self.batch_size = batch_size
        self.max_batches = max_batches
        self.stuck_timeout_minutes = stuck_timeout_minutes
        self.retention_days = retention_days

    async def run(self, run_maintenance: bool = False) -> DispatchResult:
        result = DispatchResult()

        result.reset = self.queue.reset_stuck(self.stuck_timeout_minutes)

        # Each item gets at most one attempt per pass; a failure returned to
        # PENDING waits for a later invocation.
        attempted: Set[int] = set()
        for _ in range(self.max_batches):
            items = self.queue.dequeue(self.batch_size, exclude_ids=attempted)
            if not items:
                break
            result.processed += len(items)

            for item in items:
                attempted.add(item.id)
                outcome = await self.processor.process(item)
                action = write_back_action(item.action.value)
                row_index = outcome.row_index or item.sheet_row_index

                if outcome.success:
                    self._settle(item.id, complete=True)
                    result.succeeded += 1
                    record_sync_log(
                        self.engine,
                        sheet_name=item.model.value,
                        action=action,
                        status=LogStatus.SUCCESS,
                        row_index=row_index,
                        record_id=str(item.record_id),
                    )
                else:
                    error = outcome.error or "Unknown error"
                    new_status = self._settle(item.id, complete=False, error=error)
                    result.failed += 1
                    log_fn = logger.error if new_status == QueueStatus.FAILED else logger.warning
                    log_fn(
                        "Write-back %s %s %s failed (%s): %s",
                        item.action.value, item.model.value, item.record_id,
                        new_status.value if new_status else "gone", error,
                    )
                    record_sync_log(
                        self.engine,
                        sheet_name=item.model.value,
                        action=action,
                        status=LogStatus.FAILED,
                        row_index=row_index,
                        record_id=str(item.record_id),
                        error_message=error,
                    )

        if run_maintenance:
            result.cleaned = self.queue.cleanup_completed(self.retention_days)
            logger.info("Cleaned up %d completed queue items", result.cleaned)

        result.queue_stats = self.queue.get_queue_stats()
        logger.info(
            "Write-back pass done: %s, queue %s",
            result.counts(), result.queue_stats.to_dict(),
        )
        return result

    def _settle(self, item_id: int, *, complete: bool, error: Optional[str] = None) -> Optional[QueueStatus]:
        # An item reclaimed by another pass mid-processing is no longer ours to settle.
        try:
            if complete:
                self.queue.mark_complete(item_id)
                return QueueStatus.COMPLETED
            return self.queue.mark_failed(item_id, error)
        except IllegalTransitionError as exc:
            logger.warning("Queue item %s not settled: %s", item_id, exc)
            return None


def build_dispatcher(engine, settings: Settings, sheets) -> WriteBackDispatcher:
    """Wire a dispatcher from settings."""
    queue = WriteBackQueue(engine, max_retries=settings.queue_max_retries)
    return WriteBackDispatcher(
        queue,
        QueueProcessor(sheets=sheets, engine=engine),
        engine,
        batch_size=settings.writeback_batch_size,
        max_batches=settings.writeback_max_batches,
        stuck_timeout_minutes=settings.stuck_timeout_minutes,
        retention_days=settings.completed_retention_days,
    )
