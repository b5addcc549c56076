"""
Module: royalty_kernel.models.ownership
Responsibility: ORM persistence for ownership intervals: "productora P owns
    X% of phonogram F over [start_date, end_date)".
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - percentage in [0, 100] (ck_ownership_percentage).
    - start_date < end_date when end_date is set (ck_ownership_interval).
    - Rows are never deleted.  The only permitted updates close the interval
      (set end_date, or move it earlier), void it, and record the
      superseding interval once (db/immutability.py).
    - The 100% ceiling across live intervals is checked by OwnershipService
      under the phonogram row lock, not by a constraint.

A voided interval was superseded before it took effect and covers no date.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, Date, ForeignKey, Index, Numeric
from sqlalchemy.orm import Mapped, mapped_column

from royalty_kernel.db.base import TrackedBase, UUIDString
from royalty_kernel.domain.types import OwnershipIntervalInfo


class OwnershipInterval(TrackedBase):
    """A time-bounded percentage claim of one productora over one phonogram."""

    __tablename__ = "ownership_intervals"
    __table_args__ = (
        CheckConstraint(
            "percentage >= 0 AND percentage <= 100",
            name="ck_ownership_percentage",
        ),
        CheckConstraint(
            "end_date IS NULL OR start_date < end_date",
            name="ck_ownership_interval",
        ),
        Index("idx_ownership_phonogram_start", "phonogram_id", "start_date"),
        Index("idx_ownership_pair", "phonogram_id", "productora_id"),
    )

    phonogram_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("phonograms.id"),
        nullable=False,
    )

    productora_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("productoras.id"),
        nullable=False,
    )

    percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    superseded_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("ownership_intervals.id"),
        nullable=True,
    )

    voided: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Conflict whose resolution created this interval, if any
    conflict_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def covers(self, at_date: date) -> bool:
        if self.voided:
            return False
        return self.start_date <= at_date and (
            self.end_date is None or at_date < self.end_date
        )

    def to_dto(self) -> OwnershipIntervalInfo:
        return OwnershipIntervalInfo(
            id=self.id,
            phonogram_id=self.phonogram_id,
            productora_id=self.productora_id,
            percentage=self.percentage,
            start_date=self.start_date,
            end_date=self.end_date,
            superseded_by_id=self.superseded_by_id,
            voided=self.voided,
        )

    def __repr__(self) -> str:
        end = self.end_date.isoformat() if self.end_date else "open"
        return (
            f"<OwnershipInterval {self.productora_id} {self.percentage}% of "
            f"{self.phonogram_id} [{self.start_date.isoformat()}, {end})>"
        )
