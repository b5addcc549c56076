"""
Module: royalty_kernel.selectors.ledger_selector
Responsibility: Read-only ledger queries: paginated transaction history,
    chain recomputation (ChainReport), the global transaction listing and
    the pending settlement pools.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/types.py and selectors/base.py.

Invariants enforced:
    - History is ordered by the per-productora ``sequence``, descending by
      default.  ``posted_at`` comes from the injected clock and is for
      display and date filtering only; it is not an ordering key.
    - chain_report() recomputes the balance from amounts alone and compares
      it with every stored snapshot and with the cached balance.

Failure modes:
    - ProductoraNotFoundError from chain_report() for an unknown productora.
    - ValueError for an invalid order or page size.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from royalty_kernel.domain.types import (
    ChainReport,
    LedgerTransactionInfo,
    PendingSettlementInfo,
    TransactionKind,
)
from royalty_kernel.exceptions import ProductoraNotFoundError
from royalty_kernel.models.ledger import LedgerTransaction
from royalty_kernel.models.pending_settlement import PendingSettlement
from royalty_kernel.models.phonogram import Phonogram
from royalty_kernel.models.productora import Productora
from royalty_kernel.selectors.base import BaseSelector

DEFAULT_PAGE_SIZE = 50


@dataclass(frozen=True)
class HistoryFilters:
    """
    Filters for ledger history browsing.

    ``date_from`` / ``date_to`` are inclusive calendar days (UTC) on
    posted_at.
    """

    kind: TransactionKind | None = None
    date_from: date | None = None
    date_to: date | None = None
    reference: str | None = None
    batch_id: UUID | None = None
    order: str = "desc"
    page_size: int = DEFAULT_PAGE_SIZE

    def __post_init__(self) -> None:
        if self.order not in ("asc", "desc"):
            raise ValueError(f"order must be 'asc' or 'desc', got {self.order!r}")
        if self.page_size < 1:
            raise ValueError(f"page_size must be positive, got {self.page_size}")


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=UTC)


class LedgerHistory:
    """
    Lazy, finite, restartable view of one productora's transactions.

    Iteration is keyset-paged on ``sequence`` and bounded by the latest
    sequence at the moment iteration starts: posts landing mid-iteration
    are neither yielded nor able to shift a row into a second page.  Each
    new iteration starts over with a fresh bound.
    """

    def __init__(self, session: Session, productora_id: UUID, filters: HistoryFilters):
        self._session = session
        self.productora_id = productora_id
        self.filters = filters

    def _statement(self) -> Select:
        f = self.filters
        stmt = select(LedgerTransaction).where(
            LedgerTransaction.productora_id == self.productora_id
        )
        if f.kind is not None:
            stmt = stmt.where(LedgerTransaction.kind == TransactionKind(f.kind).value)
        if f.date_from is not None:
            stmt = stmt.where(LedgerTransaction.posted_at >= _day_start(f.date_from))
        if f.date_to is not None:
            stmt = stmt.where(
                LedgerTransaction.posted_at < _day_start(f.date_to + timedelta(days=1))
            )
        if f.reference is not None:
            stmt = stmt.where(LedgerTransaction.reference == f.reference)
        if f.batch_id is not None:
            stmt = stmt.where(LedgerTransaction.batch_id == f.batch_id)
        return stmt

    def _ordered(self, stmt: Select) -> Select:
        if self.filters.order == "desc":
            return stmt.order_by(LedgerTransaction.sequence.desc())
        return stmt.order_by(LedgerTransaction.sequence)

    def page(self, number: int) -> tuple[LedgerTransactionInfo, ...]:
        """
        Page ``number`` (1-based); empty past the end.

        Random access by offset: pages fetched at different times reflect
        the ledger at each fetch.  Iterate the history for a consistent walk.
        """
        if number < 1:
            raise ValueError(f"page numbers start at 1, got {number}")
        size = self.filters.page_size
        rows = self._session.execute(
            self._ordered(self._statement()).limit(size).offset((number - 1) * size)
        ).scalars().all()
        return tuple(row.to_dto() for row in rows)

    def count(self) -> int:
        return self._session.execute(
            select(func.count()).select_from(self._statement().subquery())
        ).scalar_one()

    def _upper_bound(self) -> int:
        return self._session.execute(
            select(func.coalesce(func.max(LedgerTransaction.sequence), 0)).where(
                LedgerTransaction.productora_id == self.productora_id
            )
        ).scalar_one()

    def __iter__(self) -> Iterator[LedgerTransactionInfo]:
        size = self.filters.page_size
        descending = self.filters.order == "desc"
        base = self._statement().where(LedgerTransaction.sequence <= self._upper_bound())
        last: int | None = None
        while True:
            stmt = base
            if last is not None:
                stmt = stmt.where(
                    LedgerTransaction.sequence < last
                    if descending
                    else LedgerTransaction.sequence > last
                )
            rows = self._session.execute(self._ordered(stmt).limit(size)).scalars().all()
            for row in rows:
                yield row.to_dto()
            if len(rows) < size:
                return
            last = rows[-1].sequence

    def with_filters(self, **changes) -> LedgerHistory:
        return LedgerHistory(self._session, self.productora_id, replace(self.filters, **changes))


class LedgerSelector(BaseSelector[LedgerTransaction]):
    """Read side of the ledger."""

    def history(
        self,
        productora_id: UUID,
        filters: HistoryFilters | None = None,
    ) -> LedgerHistory:
        return LedgerHistory(self.session, productora_id, filters or HistoryFilters())

    def last_position(self, productora_id: UUID) -> tuple[int, Decimal]:
        """(sequence, balance_after) of the latest transaction, or (0, 0.00)."""
        row = self.session.execute(
            select(LedgerTransaction.sequence, LedgerTransaction.balance_after)
            .where(LedgerTransaction.productora_id == productora_id)
            .order_by(LedgerTransaction.sequence.desc())
            .limit(1)
        ).first()
        if row is None:
            return 0, Decimal("0.00")
        return row.sequence, row.balance_after

    def sum_of_amounts(self, productora_id: UUID) -> Decimal:
        total = self.session.execute(
            select(func.coalesce(func.sum(LedgerTransaction.amount), 0)).where(
                LedgerTransaction.productora_id == productora_id
            )
        ).scalar_one()
        return Decimal(str(total)).quantize(Decimal("0.01"))

    def chain_report(self, productora_id: UUID) -> ChainReport:
        productora = self.session.get(Productora, productora_id)
        if productora is None:
            raise ProductoraNotFoundError(productora_id=str(productora_id))

        rows = self.session.execute(
            select(
                LedgerTransaction.sequence,
                LedgerTransaction.amount,
                LedgerTransaction.balance_after,
            )
            .where(LedgerTransaction.productora_id == productora_id)
            .order_by(LedgerTransaction.sequence)
        ).all()

        running = Decimal("0.00")
        last_snapshot = Decimal("0.00")
        first_break: int | None = None
        for position, row in enumerate(rows, start=1):
            running += row.amount
            expected_snapshot = last_snapshot + row.amount
            if first_break is None and (
                row.sequence != position or row.balance_after != expected_snapshot
            ):
                first_break = row.sequence
            last_snapshot = row.balance_after

        return ChainReport(
            productora_id=productora_id,
            transaction_count=len(rows),
            recomputed_balance=running,
            last_snapshot=last_snapshot,
            cached_balance=productora.balance,
            first_break_sequence=first_break,
        )

    def find_by_reference(
        self,
        productora_id: UUID,
        reference: str,
        kind: TransactionKind | None = None,
    ) -> LedgerTransactionInfo | None:
        """Earliest transaction of the productora carrying ``reference``."""
        stmt = select(LedgerTransaction).where(
            LedgerTransaction.productora_id == productora_id,
            LedgerTransaction.reference == reference,
        )
        if kind is not None:
            stmt = stmt.where(LedgerTransaction.kind == TransactionKind(kind).value)
        row = self.session.execute(
            stmt.order_by(LedgerTransaction.sequence).limit(1)
        ).scalar_one_or_none()
        return row.to_dto() if row else None

    def list_transactions(
        self,
        cuit: str | None = None,
        kind: TransactionKind | None = None,
        batch_id: UUID | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[LedgerTransactionInfo]:
        """Transactions across productoras, newest first."""
        stmt = select(LedgerTransaction)
        if cuit is not None:
            stmt = stmt.join(Productora, Productora.id == LedgerTransaction.productora_id).where(
                Productora.cuit == cuit
            )
        if kind is not None:
            stmt = stmt.where(LedgerTransaction.kind == TransactionKind(kind).value)
        if batch_id is not None:
            stmt = stmt.where(LedgerTransaction.batch_id == batch_id)
        rows = self.session.execute(
            stmt.order_by(
                LedgerTransaction.posted_at.desc(), LedgerTransaction.sequence.desc()
            )
            .limit(limit)
            .offset(offset)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def pending_pool(self, phonogram_id: UUID) -> PendingSettlementInfo | None:
        row = self.session.execute(
            select(PendingSettlement, Phonogram.isrc)
            .join(Phonogram, Phonogram.id == PendingSettlement.phonogram_id)
            .where(PendingSettlement.phonogram_id == phonogram_id)
        ).first()
        if row is None:
            return None
        pool, isrc = row
        return PendingSettlementInfo(phonogram_id=pool.phonogram_id, isrc=isrc, amount=pool.amount)

    def pending_pools(self) -> list[PendingSettlementInfo]:
        rows = self.session.execute(
            select(PendingSettlement, Phonogram.isrc)
            .join(Phonogram, Phonogram.id == PendingSettlement.phonogram_id)
            .where(PendingSettlement.amount > 0)
            .order_by(Phonogram.isrc)
        ).all()
        return [
            PendingSettlementInfo(phonogram_id=pool.phonogram_id, isrc=isrc, amount=pool.amount)
            for pool, isrc in rows
        ]
