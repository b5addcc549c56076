"""
royalty_batch.domain.types -- Pure frozen dataclasses for batch ingestion.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from royalty_kernel.domain.types import LedgerTransactionInfo


class BatchKind(str, Enum):
    """The five bulk input types accepted by the engine."""

    PAYMENT = "payment"
    REJECTION = "rejection"
    SETTLEMENT = "settlement"
    TRANSFER = "transfer"
    ADJUSTMENT = "adjustment"


class BatchStatus(str, Enum):
    """Batch lifecycle status."""

    RUNNING = "running"  # Rows being processed
    COMPLETED = "completed"  # Every row accepted
    PARTIALLY_COMPLETED = "partially_completed"  # Some rows rejected
    FAILED = "failed"  # Every row rejected, or a structural error
    CANCELLED = "cancelled"  # Stopped before the last row

    @property
    def is_final(self) -> bool:
        return self != BatchStatus.RUNNING


class DuplicatePolicy(str, Enum):
    """What to do with a batch whose kind and checksum were seen before."""

    ALLOW = "allow"
    REJECT = "reject"


class UnresolvedSettlementPolicy(str, Enum):
    """What to do with a settlement nobody can receive yet."""

    REJECT = "reject"  # Reject the row
    HOLD = "hold"  # Keep the money in the phonogram's pending pool


@dataclass(frozen=True)
class RejectedRow:
    """A row that was not applied, with the original data and the reason."""

    row_ordinal: int  # 1-based position in the batch
    row: dict[str, Any]
    code: str
    reason: str


@dataclass(frozen=True)
class AirplayReport:
    """Annotated airplay rows and the rows that could not be annotated."""

    rows: tuple[dict[str, Any], ...] = ()
    rejected: tuple[RejectedRow, ...] = ()


@dataclass(frozen=True)
class RowOutcome:
    """What applying one accepted row did."""

    postings: tuple[LedgerTransactionInfo, ...] = ()
    held_pending: Decimal = Decimal("0.00")


@dataclass(frozen=True)
class BatchResult:
    """
    Summary of one ingestion.

    ``accepted`` counts applied rows; ``rejected`` itemizes the others.
    """

    batch_id: UUID
    batch_number: int
    kind: BatchKind
    status: BatchStatus
    total_rows: int
    processed_rows: int
    accepted: int
    rejected: tuple[RejectedRow, ...] = field(default_factory=tuple)
    submitted_at: datetime | None = None
    completed_at: datetime | None = None
    error_summary: str | None = None

    @property
    def is_full_success(self) -> bool:
        return self.status == BatchStatus.COMPLETED

    @property
    def is_partial_success(self) -> bool:
        return self.status == BatchStatus.PARTIALLY_COMPLETED
