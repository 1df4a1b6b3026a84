"""Write-back queue and sync audit log models, plus the queue state machine."""
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Optional

from sqlmodel import Field, SQLModel


class SyncModel(str, Enum):
    """Entity kinds mirrored to the spreadsheet. Values double as tab names."""

    REQUEST = "Request"
    OPERATOR = "Operator"
    REVENUE = "Revenue"


class SyncAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class QueueStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class LogStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


# Allowed queue transitions. FAILED -> PENDING is the manual retry path.
TRANSITIONS: Dict[QueueStatus, FrozenSet[QueueStatus]] = {
    QueueStatus.PENDING: frozenset({QueueStatus.PROCESSING}),
    QueueStatus.PROCESSING: frozenset(
        {QueueStatus.COMPLETED, QueueStatus.PENDING, QueueStatus.FAILED}
    ),
    QueueStatus.FAILED: frozenset({QueueStatus.PENDING}),
    QueueStatus.COMPLETED: frozenset(),
}


class IllegalTransitionError(RuntimeError):
    """Raised when a queue item is moved between statuses the state machine forbids."""

    def __init__(self, current: QueueStatus, target: QueueStatus):
        super().__init__(f"Illegal queue transition {current.value} -> {target.value}")
        self.current = current
        self.target = target


def check_transition(current: QueueStatus, target: QueueStatus) -> None:
    """Raise IllegalTransitionError unless current -> target is in TRANSITIONS."""
    if target not in TRANSITIONS[QueueStatus(current)]:
        raise IllegalTransitionError(QueueStatus(current), QueueStatus(target))


def retry_target(retries_after_failure: int, max_retries: int) -> QueueStatus:
    """Status a PROCESSING item moves to after a failed attempt."""
    if retries_after_failure >= max_retries:
        return QueueStatus.FAILED
    return QueueStatus.PENDING


class SyncQueueItem(SQLModel, table=True):
    """One pending (or historical) propagation of a DB mutation to the sheet."""

    id: Optional[int] = Field(default=None, primary_key=True)
    model: SyncModel = Field(index=True)
    action: SyncAction
    record_id: int = Field(index=True)
    sheet_row_index: Optional[int] = None
    payload_json: Optional[str] = None  # changed fields at enqueue time, informational

    status: QueueStatus = Field(default=QueueStatus.PENDING, index=True)
    retries: int = 0
    max_retries: int = 3
    last_error: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    locked_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None


class SyncLog(SQLModel, table=True):
    """Append-only record of one pulled row or one pushed queue item."""

    id: Optional[int] = Field(default=None, primary_key=True)
    sheet_name: str = Field(index=True)
    action: str  # "SYNC" for pull rows, "WRITE_BACK_<ACTION>" for push items
    row_index: Optional[int] = None
    record_id: Optional[str] = None
    status: LogStatus = Field(index=True)
    error_message: Optional[str] = None
    synced_at: datetime = Field(default_factory=datetime.utcnow, index=True)
