"""
CostKitchen - Offline Operation Queue

Remote steps that could not be sent while offline. Operations replay oldest
first; each flush tries every pending operation once. An operation that
fails max_retries times is marked FAILED and left for inspection.
"""

import datetime as dt
import logging
import uuid
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from pydantic import BaseModel, Field

from costkitchen.core.config import settings
from costkitchen.core.errors import MutationFailure, RemoteServiceError
from costkitchen.models.dataset import Collection, EntityId

logger = logging.getLogger(__name__)


class OperationKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SETTINGS = "settings"


class OperationStatus(str, Enum):
    PENDING = "pending"
    SYNCING = "syncing"
    FAILED = "failed"


class SyncOperation(BaseModel):
    """One remote step of an optimistic mutation."""
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    collection: Optional[Collection] = None  # None for settings
    operation: OperationKind
    entity_id: Optional[EntityId] = None
    payload: dict = {}
    retry_count: int = 0
    status: OperationStatus = OperationStatus.PENDING
    created_at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))

    @property
    def lock_key(self) -> Union[str, tuple]:
        if self.operation == OperationKind.SETTINGS:
            return "settings"
        return (self.collection, self.entity_id)

    def describe(self) -> str:
        if self.operation == OperationKind.SETTINGS:
            return "settings update"
        return f"{self.operation.value} {self.collection.value} {self.entity_id}"


class FlushReport(BaseModel):
    processed: int = 0
    failed: int = 0
    remaining: int = 0
    failed_operations: list[SyncOperation] = []


Executor = Callable[[SyncOperation], Awaitable[object]]


class OfflineQueue:

    def __init__(self, max_retries: Optional[int] = None) -> None:
        self.max_retries = max_retries or settings.OFFLINE_MAX_RETRIES
        self._operations: list[SyncOperation] = []
        self._flushing = False

    def enqueue(self, operation: SyncOperation) -> SyncOperation:
        self._operations.append(operation)
        logger.info(f"[QUEUE] Queued {operation.describe()}")
        return operation

    def pending(self) -> list[SyncOperation]:
        return [op for op in self._operations if op.status == OperationStatus.PENDING]

    def failed(self) -> list[SyncOperation]:
        return [op for op in self._operations if op.status == OperationStatus.FAILED]

    def __len__(self) -> int:
        return len(self.pending())

    def clear(self) -> None:
        self._operations.clear()

    async def flush(self, execute: Executor) -> FlushReport:
        """Replay pending operations through execute, oldest first."""
        report = FlushReport()
        if self._flushing or not self.pending():
            report.remaining = len(self.pending())
            return report

        self._flushing = True
        try:
            for op in self.pending():
                op.status = OperationStatus.SYNCING
                try:
                    await execute(op)
                except (RemoteServiceError, MutationFailure) as e:
                    op.retry_count += 1
                    if op.retry_count >= self.max_retries:
                        op.status = OperationStatus.FAILED
                        report.failed += 1
                        report.failed_operations.append(op)
                        logger.error(f"[QUEUE] Gave up on {op.describe()}: {e}")
                    else:
                        op.status = OperationStatus.PENDING
                        logger.warning(f"[QUEUE] Retry {op.retry_count} for {op.describe()}: {e}")
                    continue

                self._operations.remove(op)
                report.processed += 1
        finally:
            self._flushing = False

        report.remaining = len(self.pending())
        if report.processed or report.failed:
            logger.info(f"[QUEUE] Flushed: processed={report.processed} failed={report.failed}")
        return report
