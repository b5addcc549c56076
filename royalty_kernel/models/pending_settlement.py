"""
Module: royalty_kernel.models.pending_settlement
Responsibility: Per-phonogram pool of settlement money that could not be
    attributed to any productora (unclaimed share, or settlements held while
    ownership is unresolved).  Transfer rows release it to a productora.
Architecture position: Kernel > Models.

Invariants enforced:
    - One row per phonogram (uq_pending_settlement_phonogram).
    - amount never goes negative; releases are checked under a row lock.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from royalty_kernel.db.base import TrackedBase, UUIDString


class PendingSettlement(TrackedBase):
    """Unattributed settlement money held for one phonogram."""

    __tablename__ = "pending_settlements"
    __table_args__ = (
        UniqueConstraint("phonogram_id", name="uq_pending_settlement_phonogram"),
    )

    phonogram_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("phonograms.id"),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2),
        nullable=False,
        default=Decimal("0.00"),
    )
