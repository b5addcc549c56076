"""
Module: royalty_kernel.models.ledger
Responsibility: ORM persistence for ledger transactions, the append-only,
    balance-chained record of every movement on a productora's account.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/types.py.

Invariants enforced:
    - (productora_id, sequence) is unique: the chain position is a total
      order per productora, consistent with posted_at.
    - For each productora, balance_after of transaction n equals
      balance_after of transaction n-1 plus amount; the first snapshot
      equals its own amount.  Written by LedgerService under the productora
      row lock, verified by LedgerSelector.chain_report.
    - (batch_id, row_ordinal, productora_id) is unique: a batch row posts to
      a given productora at most once.
    - Rows are never updated or deleted (db/immutability.py).  Corrections
      are new offsetting transactions.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from royalty_kernel.db.base import TrackedBase, UUIDString
from royalty_kernel.domain.types import LedgerTransactionInfo, TransactionKind


class LedgerTransaction(TrackedBase):
    """One immutable balance movement."""

    __tablename__ = "ledger_transactions"
    __table_args__ = (
        UniqueConstraint("productora_id", "sequence", name="uq_ledger_chain_position"),
        UniqueConstraint(
            "batch_id", "row_ordinal", "productora_id", name="uq_ledger_batch_row"
        ),
        Index("idx_ledger_productora_posted", "productora_id", "posted_at"),
        Index("idx_ledger_reference", "reference"),
        Index("idx_ledger_batch", "batch_id"),
    )

    productora_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("productoras.id"),
        nullable=False,
    )

    # Position in the productora's chain, starting at 1
    sequence: Mapped[int] = mapped_column(BigInteger, nullable=False)

    kind: Mapped[TransactionKind] = mapped_column(String(20), nullable=False)

    # Signed: credits positive, debits negative
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    balance_after: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    memo: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # External reference from the source file (payment order, invoice, ...)
    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    batch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    row_ordinal: Mapped[int | None] = mapped_column(Integer, nullable=True)

    posted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def to_dto(self) -> LedgerTransactionInfo:
        return LedgerTransactionInfo(
            id=self.id,
            productora_id=self.productora_id,
            sequence=self.sequence,
            kind=TransactionKind(self.kind),
            amount=self.amount,
            balance_after=self.balance_after,
            memo=self.memo,
            reference=self.reference,
            batch_id=self.batch_id,
            row_ordinal=self.row_ordinal,
            posted_at=self.posted_at,
        )

    def __repr__(self) -> str:
        return (
            f"<LedgerTransaction {self.productora_id}#{self.sequence} "
            f"{self.kind} {self.amount} -> {self.balance_after}>"
        )
