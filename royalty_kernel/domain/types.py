"""
Royalty kernel domain types -- enums and frozen DTOs.

Services hand these out instead of ORM instances, so callers never hold a
live, lazily-loading row outside the session that produced it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class TransactionKind(str, Enum):
    SETTLEMENT = "settlement"
    PAYMENT = "payment"
    REJECTION = "rejection"
    TRANSFER = "transfer"
    ADJUSTMENT = "adjustment"


class ConflictState(str, Enum):
    """Conflict lifecycle: OPEN -> IN_PROGRESS -> RESOLVED | REJECTED."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (ConflictState.RESOLVED, ConflictState.REJECTED)


class DecisionValue(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class SplitPolicy(str, Enum):
    """How a resolved conflict redistributes the disputed percentage."""

    EQUAL = "equal"
    PROPORTIONAL = "proportional"


class AttributionStatus(str, Enum):
    """Who a play of a phonogram is attributed to."""

    ASSIGNED = "assigned"
    UNASSIGNED = "unassigned"
    IN_CONFLICT = "in_conflict"


@dataclass(frozen=True)
class ProductoraInfo:
    id: UUID
    cuit: str
    name: str
    email: str | None
    balance: Decimal
    posting_halted: bool


@dataclass(frozen=True)
class PhonogramInfo:
    id: UUID
    isrc: str
    title: str
    artist: str


@dataclass(frozen=True)
class OwnershipShare:
    """One member of the set returned by ``active_ownership``."""

    productora_id: UUID
    percentage: Decimal


@dataclass(frozen=True)
class OwnershipIntervalInfo:
    """A productora's share of a phonogram over ``[start_date, end_date)``."""

    id: UUID
    phonogram_id: UUID
    productora_id: UUID
    percentage: Decimal
    start_date: date
    end_date: date | None
    superseded_by_id: UUID | None
    voided: bool

    def covers(self, at_date: date) -> bool:
        if self.voided:
            return False
        return self.start_date <= at_date and (
            self.end_date is None or at_date < self.end_date
        )


@dataclass(frozen=True)
class AttributedShare:
    productora_id: UUID
    cuit: str
    name: str
    percentage: Decimal


@dataclass(frozen=True)
class PlayAttribution:
    """
    Owners of a phonogram on one date, as used to annotate airplay reports.

    ``shares`` is empty unless ``status`` is ASSIGNED.
    """

    isrc: str
    at_date: date
    status: AttributionStatus
    phonogram_id: UUID | None = None
    conflict_id: UUID | None = None
    shares: tuple[AttributedShare, ...] = ()


@dataclass(frozen=True)
class LedgerTransactionInfo:
    id: UUID
    productora_id: UUID
    sequence: int
    kind: TransactionKind
    amount: Decimal
    balance_after: Decimal
    memo: str | None
    reference: str | None
    batch_id: UUID | None
    row_ordinal: int | None
    posted_at: datetime


@dataclass(frozen=True)
class ChainReport:
    """
    Result of recomputing a productora's balance chain.

    ``first_break_sequence`` is the chain position of the first transaction
    whose snapshot is not previous snapshot + amount (None if none).
    """

    productora_id: UUID
    transaction_count: int
    recomputed_balance: Decimal
    last_snapshot: Decimal
    cached_balance: Decimal
    first_break_sequence: int | None

    @property
    def is_consistent(self) -> bool:
        return (
            self.first_break_sequence is None
            and self.recomputed_balance == self.last_snapshot
            and self.cached_balance == self.last_snapshot
        )


@dataclass(frozen=True)
class DecisionInfo:
    id: UUID
    involved_party_id: UUID
    value: DecisionValue
    decided_at: datetime | None


@dataclass(frozen=True)
class InvolvedPartyInfo:
    id: UUID
    conflict_id: UUID
    productora_id: UUID
    ordinal: int
    claimed_percentage: Decimal | None
    decision: DecisionInfo


@dataclass(frozen=True)
class ConflictInfo:
    id: UUID
    phonogram_id: UUID
    state: ConflictState
    description: str
    disputed_percentage: Decimal
    effective_date: date
    opened_at: datetime
    resolved_at: datetime | None
    parties: tuple[InvolvedPartyInfo, ...]

    @property
    def pending_parties(self) -> tuple[InvolvedPartyInfo, ...]:
        return tuple(
            p for p in self.parties if p.decision.value == DecisionValue.PENDING
        )


@dataclass(frozen=True)
class PendingSettlementInfo:
    phonogram_id: UUID
    isrc: str
    amount: Decimal
