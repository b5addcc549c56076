"""
Module: royalty_kernel.models.conflict
Responsibility: ORM persistence for ownership conflicts, their involved
    parties and each party's decision.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/types.py.

Invariants enforced:
    - One involved-party row per (conflict, productora) (uq_involved_party).
    - Exactly one Decision per involved party (uq_decision_party).
    - decided_at is set iff value is not pending (ck_decision_date).
    - A decision leaves pending at most once (db/immutability.py).
    - Terminal conflicts keep their parties and decisions as an archive;
      nothing here is ever deleted.

State transitions are driven by ConflictService under a FOR UPDATE lock on
the conflict row.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from royalty_kernel.db.base import TrackedBase, UUIDString
from royalty_kernel.domain.types import (
    ConflictInfo,
    ConflictState,
    DecisionInfo,
    DecisionValue,
    InvolvedPartyInfo,
)


class Conflict(TrackedBase):
    """A dispute over who owns a share of a phonogram."""

    __tablename__ = "conflicts"
    __table_args__ = (
        Index("idx_conflict_phonogram_state", "phonogram_id", "state"),
        Index("idx_conflict_state", "state"),
    )

    phonogram_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("phonograms.id"),
        nullable=False,
    )

    state: Mapped[ConflictState] = mapped_column(
        String(20),
        nullable=False,
        default=ConflictState.OPEN.value,
    )

    description: Mapped[str] = mapped_column(String(4000), nullable=False, default="")

    # Share of the phonogram under dispute
    disputed_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)

    # Date from which a resolution changes ownership
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)

    split_policy: Mapped[str] = mapped_column(String(20), nullable=False)

    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    parties: Mapped[list["InvolvedParty"]] = relationship(
        back_populates="conflict",
        order_by="InvolvedParty.ordinal",
        lazy="selectin",
    )

    @property
    def is_terminal(self) -> bool:
        return ConflictState(self.state).is_terminal

    def to_dto(self) -> ConflictInfo:
        return ConflictInfo(
            id=self.id,
            phonogram_id=self.phonogram_id,
            state=ConflictState(self.state),
            description=self.description,
            disputed_percentage=self.disputed_percentage,
            effective_date=self.effective_date,
            opened_at=self.opened_at,
            resolved_at=self.resolved_at,
            parties=tuple(party.to_dto() for party in self.parties),
        )

    def __repr__(self) -> str:
        return f"<Conflict {self.id} on {self.phonogram_id}: {self.state}>"


class InvolvedParty(TrackedBase):
    """A productora claiming a stake in a conflict."""

    __tablename__ = "conflict_parties"
    __table_args__ = (
        UniqueConstraint("conflict_id", "productora_id", name="uq_involved_party"),
    )

    conflict_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("conflicts.id"),
        nullable=False,
    )

    productora_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("productoras.id"),
        nullable=False,
    )

    # Filing order; breaks ties when splitting
    ordinal: Mapped[int] = mapped_column(Integer, nullable=False)

    claimed_percentage: Mapped[Decimal | None] = mapped_column(
        Numeric(5, 2),
        nullable=True,
    )

    conflict: Mapped[Conflict] = relationship(back_populates="parties")

    decision: Mapped["Decision"] = relationship(
        back_populates="involved_party",
        uselist=False,
        lazy="selectin",
    )

    def to_dto(self) -> InvolvedPartyInfo:
        return InvolvedPartyInfo(
            id=self.id,
            conflict_id=self.conflict_id,
            productora_id=self.productora_id,
            ordinal=self.ordinal,
            claimed_percentage=self.claimed_percentage,
            decision=self.decision.to_dto(),
        )


class Decision(TrackedBase):
    """An involved party's vote on the conflict."""

    __tablename__ = "conflict_decisions"
    __table_args__ = (
        UniqueConstraint("involved_party_id", name="uq_decision_party"),
        CheckConstraint(
            "(value = 'pending' AND decided_at IS NULL) OR "
            "(value <> 'pending' AND decided_at IS NOT NULL)",
            name="ck_decision_date",
        ),
    )

    involved_party_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("conflict_parties.id"),
        nullable=False,
    )

    value: Mapped[DecisionValue] = mapped_column(
        String(20),
        nullable=False,
        default=DecisionValue.PENDING.value,
    )

    decided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    involved_party: Mapped[InvolvedParty] = relationship(back_populates="decision")

    def to_dto(self) -> DecisionInfo:
        return DecisionInfo(
            id=self.id,
            involved_party_id=self.involved_party_id,
            value=DecisionValue(self.value),
            decided_at=self.decided_at,
        )
