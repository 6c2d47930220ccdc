"""Delivery bookkeeping for a single dispatch call."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class BatchStatus(str, Enum):
    """Lifecycle of one batch of addresses within a dispatch call."""

    pending = "pending"
    attempting = "attempting"
    succeeded = "succeeded"
    transient_failure = "transient_failure"
    exhausted = "exhausted"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchStatus.succeeded, BatchStatus.exhausted)


@dataclass(frozen=True)
class SendResult:
    """Per-address counts returned by a successful transport call."""

    success_count: int
    failure_count: int = 0


@dataclass
class BatchOutcome:
    index: int
    size: int
    status: BatchStatus = BatchStatus.pending
    attempts: int = 0
    succeeded: int = 0
    failed: int = 0
    error: Optional[str] = None


@dataclass
class DeliveryOutcome:
    """Aggregated result of delivering one alert to every recipient."""

    batches: List[BatchOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(batch.succeeded for batch in self.batches)

    @property
    def failed(self) -> int:
        return sum(batch.failed for batch in self.batches)

    @property
    def attempted(self) -> int:
        return sum(batch.size for batch in self.batches)

    @property
    def batch_count(self) -> int:
        return len(self.batches)

    @property
    def exhausted_batches(self) -> List[BatchOutcome]:
        return [batch for batch in self.batches if batch.status is BatchStatus.exhausted]

    @property
    def fully_exhausted(self) -> bool:
        return bool(self.batches) and len(self.exhausted_batches) == len(self.batches)
