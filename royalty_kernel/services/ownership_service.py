"""
OwnershipService -- the Ownership Interval Store.

Responsibility:
    Records which productora owns what share of a phonogram over time, and
    answers "who owns this phonogram on date D".  Claims close the pair's
    previous interval and open a new one; nothing is ever deleted, so the
    royalty attribution of any past date stays reproducible.

Architecture position:
    Kernel > Services.  Leaf component: depends only on persistence and the
    AuditorService.  ConflictService calls ``redistribute`` when a conflict
    resolves; the settlement handler calls ``active_ownership``.

Invariants enforced:
    - Intervals are half-open ``[start_date, end_date)``.
    - At every instant the live intervals of a phonogram sum to <= 100%.
      Checked at the claim date and at every later start date of another
      live interval, which covers every point where the total can rise.
    - Claims on one phonogram are serialized by a FOR UPDATE lock on the
      Phonogram row; claims on different phonograms never contend.
    - A claim either fully applies or leaves no trace: each write runs in
      its own SAVEPOINT.

Failure modes:
    - PhonogramNotFoundError / ProductoraNotFoundError.
    - InvalidPercentageError for a percentage outside [0, 100].
    - OverAllocationError when the claim would take the total above 100%.
"""

from collections.abc import Iterable, Mapping
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from royalty_kernel.domain.clock import Clock
from royalty_kernel.domain.types import OwnershipIntervalInfo, OwnershipShare
from royalty_kernel.domain.values import HUNDRED, ZERO, parse_percentage
from royalty_kernel.exceptions import (
    OverAllocationError,
    PhonogramNotFoundError,
    ProductoraNotFoundError,
)
from royalty_kernel.logging_config import get_logger
from royalty_kernel.models.ownership import OwnershipInterval
from royalty_kernel.models.phonogram import Phonogram
from royalty_kernel.models.productora import Productora
from royalty_kernel.services.auditor_service import AuditorService
from royalty_kernel.services.base import BaseService

logger = get_logger("services.ownership")


class OwnershipService(BaseService[OwnershipInterval]):
    """Time-bounded ownership claims over phonograms."""

    def __init__(
        self,
        session: Session,
        auditor: AuditorService | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock)
        self._auditor = auditor or AuditorService(session, self.clock)

    # Reads

    def active_ownership(self, phonogram_id: UUID, at_date: date) -> frozenset[OwnershipShare]:
        """
        Shares covering ``at_date``.  The percentages sum to at most 100.

        Raises:
            PhonogramNotFoundError: if the phonogram does not exist.
        """
        self._require_phonogram(phonogram_id)
        return frozenset(
            OwnershipShare(productora_id=iv.productora_id, percentage=iv.percentage)
            for iv in self._live_intervals(phonogram_id)
            if iv.covers(at_date)
        )

    def allocated_percentage(self, phonogram_id: UUID, at_date: date) -> Decimal:
        return sum(
            (share.percentage for share in self.active_ownership(phonogram_id, at_date)),
            ZERO,
        )

    def history(self, phonogram_id: UUID) -> list[OwnershipIntervalInfo]:
        """Every interval of the phonogram, closed and voided ones included."""
        self._require_phonogram(phonogram_id)
        rows = self.session.execute(
            select(OwnershipInterval)
            .where(OwnershipInterval.phonogram_id == phonogram_id)
            .order_by(
                OwnershipInterval.start_date,
                OwnershipInterval.created_at,
                OwnershipInterval.productora_id,
            )
        ).scalars().all()
        return [row.to_dto() for row in rows]

    # Writes

    def lock_phonogram(self, phonogram_id: UUID) -> Phonogram:
        phonogram = self.session.execute(
            select(Phonogram)
            .where(Phonogram.id == phonogram_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if phonogram is None:
            raise PhonogramNotFoundError(phonogram_id=str(phonogram_id))
        return phonogram

    def register_claim(
        self,
        phonogram_id: UUID,
        productora_id: UUID,
        percentage: Decimal,
        from_date: date,
        actor_id: UUID,
        allow_redistribution: bool = False,
        conflict_id: UUID | None = None,
    ) -> OwnershipIntervalInfo:
        """
        Give ``productora_id`` ``percentage`` of the phonogram from ``from_date``.

        Any live interval of the same pair is closed at ``from_date`` (or
        voided if it had not started yet) and points at the new interval.

        With ``allow_redistribution`` the 100% ceiling is not checked here;
        the caller is rearranging several shares and checks the final state
        (see ``redistribute``).
        """
        pct = parse_percentage(percentage)
        self.lock_phonogram(phonogram_id)
        self._require_productora(productora_id)

        with self.session.begin_nested():
            interval = self._claim_locked(
                phonogram_id, productora_id, pct, from_date, actor_id, conflict_id
            )
            if not allow_redistribution:
                self._check_allocation(phonogram_id, from_date)

        logger.info(
            "ownership_claim_registered",
            extra={
                "phonogram_id": str(phonogram_id),
                "productora_id": str(productora_id),
                "percentage": str(pct),
                "from_date": from_date.isoformat(),
            },
        )
        return interval.to_dto()

    def redistribute(
        self,
        phonogram_id: UUID,
        shares: Mapping[UUID, Decimal],
        from_date: date,
        actor_id: UUID,
        release: Iterable[UUID] = (),
        conflict_id: UUID | None = None,
    ) -> list[OwnershipIntervalInfo]:
        """
        Apply a whole new split atomically.

        Closes the intervals of every productora in ``release``, registers a
        claim for every entry of ``shares``, then checks the 100% ceiling
        once over the final state.
        """
        parsed = {pid: parse_percentage(pct) for pid, pct in shares.items()}
        self.lock_phonogram(phonogram_id)
        for productora_id in parsed:
            self._require_productora(productora_id)

        created: list[OwnershipInterval] = []
        with self.session.begin_nested():
            for productora_id in sorted(set(release) - set(parsed), key=str):
                self._close_pair(phonogram_id, productora_id, from_date, actor_id)
            for productora_id in sorted(parsed, key=str):
                created.append(
                    self._claim_locked(
                        phonogram_id,
                        productora_id,
                        parsed[productora_id],
                        from_date,
                        actor_id,
                        conflict_id,
                    )
                )
            self._check_allocation(phonogram_id, from_date)

        logger.info(
            "ownership_redistributed",
            extra={
                "phonogram_id": str(phonogram_id),
                "from_date": from_date.isoformat(),
                "shares": {str(k): str(v) for k, v in parsed.items()},
            },
        )
        return [interval.to_dto() for interval in created]

    def release_claim(
        self,
        phonogram_id: UUID,
        productora_id: UUID,
        from_date: date,
        actor_id: UUID,
    ) -> int:
        """End the pair's ownership at ``from_date``.  Returns intervals closed."""
        self.lock_phonogram(phonogram_id)
        with self.session.begin_nested():
            closed = self._close_pair(phonogram_id, productora_id, from_date, actor_id)
        logger.info(
            "ownership_claim_released",
            extra={
                "phonogram_id": str(phonogram_id),
                "productora_id": str(productora_id),
                "closed": closed,
            },
        )
        return closed

    # Internals

    def _claim_locked(
        self,
        phonogram_id: UUID,
        productora_id: UUID,
        pct: Decimal,
        from_date: date,
        actor_id: UUID,
        conflict_id: UUID | None,
    ) -> OwnershipInterval:
        interval = OwnershipInterval(
            phonogram_id=phonogram_id,
            productora_id=productora_id,
            percentage=pct,
            start_date=from_date,
            end_date=None,
            voided=False,
            conflict_id=conflict_id,
            created_by_id=actor_id,
        )
        self.session.add(interval)
        # Flushes: the new id exists before older intervals point at it
        self._auditor.record_created(interval, actor_id)
        self._close_pair(
            phonogram_id,
            productora_id,
            from_date,
            actor_id,
            superseded_by=interval.id,
            exclude=interval.id,
        )
        return interval

    def _close_pair(
        self,
        phonogram_id: UUID,
        productora_id: UUID,
        at_date: date,
        actor_id: UUID,
        superseded_by: UUID | None = None,
        exclude: UUID | None = None,
    ) -> int:
        stmt = select(OwnershipInterval).where(
            OwnershipInterval.phonogram_id == phonogram_id,
            OwnershipInterval.productora_id == productora_id,
            OwnershipInterval.voided.is_(False),
            or_(OwnershipInterval.end_date.is_(None), OwnershipInterval.end_date > at_date),
        )
        if exclude is not None:
            stmt = stmt.where(OwnershipInterval.id != exclude)

        closed = 0
        for interval in self.session.execute(stmt).scalars().all():
            with self._auditor.mutation(interval, actor_id):
                if interval.start_date < at_date:
                    interval.end_date = at_date
                else:
                    interval.voided = True
                if superseded_by is not None and interval.superseded_by_id is None:
                    interval.superseded_by_id = superseded_by
            closed += 1
        return closed

    def _live_intervals(self, phonogram_id: UUID) -> list[OwnershipInterval]:
        return list(
            self.session.execute(
                select(OwnershipInterval).where(
                    OwnershipInterval.phonogram_id == phonogram_id,
                    OwnershipInterval.voided.is_(False),
                )
            ).scalars()
        )

    def _check_allocation(self, phonogram_id: UUID, from_date: date) -> None:
        live = self._live_intervals(phonogram_id)
        checkpoints = {from_date} | {iv.start_date for iv in live if iv.start_date > from_date}
        for at_date in sorted(checkpoints):
            total = sum((iv.percentage for iv in live if iv.covers(at_date)), ZERO)
            if total > HUNDRED:
                logger.warning(
                    "ownership_over_allocation_refused",
                    extra={
                        "phonogram_id": str(phonogram_id),
                        "at_date": at_date.isoformat(),
                        "total_percentage": str(total),
                    },
                )
                raise OverAllocationError(str(phonogram_id), at_date.isoformat(), str(total))

    def _require_phonogram(self, phonogram_id: UUID) -> None:
        if self.session.get(Phonogram, phonogram_id) is None:
            raise PhonogramNotFoundError(phonogram_id=str(phonogram_id))

    def _require_productora(self, productora_id: UUID) -> None:
        if self.session.get(Productora, productora_id) is None:
            raise ProductoraNotFoundError(productora_id=str(productora_id))
