"""
ConflictService -- the Conflict Resolver.

Responsibility:
    Files ownership disputes over a phonogram, collects each involved
    party's accept/reject decision, and once every party has decided,
    closes the conflict and applies the resulting split through the
    OwnershipService.

Architecture position:
    Kernel > Services.  Depends on OwnershipService (resolution writes) and
    AuditorService.  The outcome itself is computed by the pure
    ``domain.conflict_outcome.evaluate_conflict``.

State machine (Conflict.state):
    OPEN --first decision--> IN_PROGRESS --all decided--> RESOLVED | REJECTED

    - All decisions rejected: REJECTED, ownership unchanged.
    - Otherwise RESOLVED: the disputed percentage is split among accepting
      parties (equal, or proportional to their claimed percentages) from
      the conflict's effective date; rejecting parties' intervals close.

Invariants enforced:
    - One non-terminal conflict per phonogram.
    - Decisions on one conflict are serialized by a FOR UPDATE lock on the
      conflict row, taken before the decisions are re-read, so the "all
      decided" check never races.
    - The phonogram row is locked right after the conflict row, before any
      audited write (lock ordering, see LedgerService).
    - A decision leaves ``pending`` once.  Terminal conflicts keep their
      parties and decisions as an archive.
    - resolve_if_complete is idempotent.

Failure modes:
    - ConflictNotFoundError, InvolvedPartyNotFoundError.
    - AlreadyDecidedError, ConflictClosedError, ConflictAlreadyOpenError.
    - ValidationError when nothing would be in dispute (0%).
    - OverAllocationError if ownership changed while the conflict was open
      and the resolved split no longer fits; the cast is rolled back with
      the caller's transaction.
"""

from collections.abc import Iterable, Mapping
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from royalty_kernel.domain.clock import Clock
from royalty_kernel.domain.conflict_outcome import evaluate_conflict
from royalty_kernel.domain.types import (
    ConflictInfo,
    ConflictState,
    DecisionInfo,
    DecisionValue,
    SplitPolicy,
)
from royalty_kernel.domain.values import HUNDRED, ZERO, parse_percentage
from royalty_kernel.exceptions import (
    AlreadyDecidedError,
    ConflictAlreadyOpenError,
    ConflictClosedError,
    ConflictNotFoundError,
    InvolvedPartyNotFoundError,
    MissingFieldError,
    OverAllocationError,
    ProductoraNotFoundError,
    ValidationError,
)
from royalty_kernel.logging_config import LogContext, get_logger
from royalty_kernel.models.conflict import Conflict, Decision, InvolvedParty
from royalty_kernel.models.productora import Productora
from royalty_kernel.services.auditor_service import AuditorService
from royalty_kernel.services.base import BaseService
from royalty_kernel.services.ownership_service import OwnershipService

logger = get_logger("services.conflict")

_OPEN_STATES = (ConflictState.OPEN.value, ConflictState.IN_PROGRESS.value)


class ConflictService(BaseService[Conflict]):
    """
    Ownership conflict workflow.

    Non-goals:
        - Does NOT notify the parties; collaborators poll ConflictSelector.
    """

    def __init__(
        self,
        session: Session,
        ownership: OwnershipService | None = None,
        auditor: AuditorService | None = None,
        clock: Clock | None = None,
        split_policy: SplitPolicy = SplitPolicy.EQUAL,
    ):
        super().__init__(session, clock)
        self._auditor = auditor or AuditorService(session, self.clock)
        self._ownership = ownership or OwnershipService(session, self._auditor, self.clock)
        self._split_policy = SplitPolicy(split_policy)

    def file_conflict(
        self,
        phonogram_id: UUID,
        claimant_productora_ids: Iterable[UUID],
        description: str,
        actor_id: UUID,
        disputed_percentage: Decimal | None = None,
        claimed_percentages: Mapping[UUID, Decimal] | None = None,
        effective_date: date | None = None,
    ) -> ConflictInfo:
        """
        Open a conflict with one pending decision per claimant.

        ``disputed_percentage`` defaults to the claimants' combined active
        share on the effective date, or to the unclaimed remainder when the
        claimants hold nothing.
        A dispute over 0% is refused.
        """
        claimants = list(dict.fromkeys(claimant_productora_ids))
        if not claimants:
            raise MissingFieldError("claimant_productora_ids")
        for productora_id in claimants:
            if self.session.get(Productora, productora_id) is None:
                raise ProductoraNotFoundError(productora_id=str(productora_id))

        claimed = {pid: parse_percentage(pct) for pid, pct in (claimed_percentages or {}).items()}
        strangers = set(claimed) - set(claimants)
        if strangers:
            raise ValidationError(
                f"Claimed percentage given for non-claimant(s): {sorted(map(str, strangers))}"
            )

        effective = effective_date or self.clock.today()
        self._ownership.lock_phonogram(phonogram_id)

        existing = self._find_open(phonogram_id)
        if existing is not None:
            raise ConflictAlreadyOpenError(str(phonogram_id), str(existing.id))

        shares = self._ownership.active_ownership(phonogram_id, effective)
        total = sum((s.percentage for s in shares), ZERO)
        held = sum((s.percentage for s in shares if s.productora_id in claimants), ZERO)
        available = held + (HUNDRED - total)
        if disputed_percentage is None:
            disputed = held if held > 0 else HUNDRED - total
        else:
            disputed = parse_percentage(disputed_percentage)
            if disputed > available:
                raise OverAllocationError(
                    str(phonogram_id), effective.isoformat(), str(total - held + disputed)
                )
        if disputed <= ZERO:
            raise ValidationError(
                f"Nothing in dispute on phonogram {phonogram_id} at {effective.isoformat()}"
            )

        conflict = Conflict(
            phonogram_id=phonogram_id,
            state=ConflictState.OPEN.value,
            description=description or "",
            disputed_percentage=disputed,
            effective_date=effective,
            split_policy=self._split_policy.value,
            opened_at=self.clock.now(),
            resolved_at=None,
            created_by_id=actor_id,
        )
        self.session.add(conflict)
        self._auditor.record_created(conflict, actor_id)

        for ordinal, productora_id in enumerate(claimants, start=1):
            party = InvolvedParty(
                conflict=conflict,
                productora_id=productora_id,
                ordinal=ordinal,
                claimed_percentage=claimed.get(productora_id),
                created_by_id=actor_id,
            )
            self.session.add(party)
            self._auditor.record_created(party, actor_id)

            decision = Decision(
                involved_party=party,
                value=DecisionValue.PENDING.value,
                decided_at=None,
                created_by_id=actor_id,
            )
            self.session.add(decision)
            self._auditor.record_created(decision, actor_id)

        logger.info(
            "conflict_filed",
            extra={
                "conflict_id": str(conflict.id),
                "phonogram_id": str(phonogram_id),
                "parties": len(claimants),
                "disputed_percentage": str(disputed),
                "effective_date": effective.isoformat(),
            },
        )
        return conflict.to_dto()

    def cast_decision(
        self,
        conflict_id: UUID,
        involved_party_id: UUID,
        decision: DecisionValue | str,
        actor_id: UUID,
    ) -> DecisionInfo:
        """
        Record one party's decision, then resolve the conflict if it was the
        last one outstanding.
        """
        with LogContext.bind(conflict_id=str(conflict_id)):
            conflict = self._lock_conflict(conflict_id)
            if conflict.is_terminal:
                raise ConflictClosedError(str(conflict_id), conflict.state)

            parties = self._load_parties(conflict)
            party = next((p for p in parties if p.id == involved_party_id), None)
            if party is None:
                raise InvolvedPartyNotFoundError(str(conflict_id), str(involved_party_id))

            try:
                value = DecisionValue(decision)
            except ValueError:
                raise ValidationError(f"Unknown decision value: {decision!r}") from None
            if value == DecisionValue.PENDING:
                raise ValidationError("A decision cannot be cast as pending")

            if party.decision.value != DecisionValue.PENDING.value:
                raise AlreadyDecidedError(str(involved_party_id), party.decision.value)

            self._ownership.lock_phonogram(conflict.phonogram_id)
            self._decide(conflict, party, value, actor_id)

            logger.info(
                "conflict_decision_cast",
                extra={
                    "involved_party_id": str(involved_party_id),
                    "productora_id": str(party.productora_id),
                    "decision": value.value,
                },
            )
            self._resolve_locked(conflict, actor_id)
            return party.decision.to_dto()

    def resolve_if_complete(self, conflict_id: UUID, actor_id: UUID) -> ConflictInfo:
        """
        Close the conflict if every party has decided.  A no-op on a
        terminal conflict or while any decision is pending.
        """
        conflict = self._lock_conflict(conflict_id)
        if not conflict.is_terminal:
            self._ownership.lock_phonogram(conflict.phonogram_id)
            self._resolve_locked(conflict, actor_id)
        return conflict.to_dto()

    def withdraw(self, conflict_id: UUID, actor_id: UUID) -> ConflictInfo:
        """
        Cast ``rejected`` for every pending party.

        With no prior acceptance the conflict ends REJECTED and ownership is
        untouched; parties that already accepted still share the disputed
        percentage.
        """
        conflict = self._lock_conflict(conflict_id)
        if conflict.is_terminal:
            raise ConflictClosedError(str(conflict_id), conflict.state)

        self._ownership.lock_phonogram(conflict.phonogram_id)
        for party in self._load_parties(conflict):
            if party.decision.value == DecisionValue.PENDING.value:
                self._decide(conflict, party, DecisionValue.REJECTED, actor_id)

        logger.info("conflict_withdrawn", extra={"conflict_id": str(conflict_id)})
        self._resolve_locked(conflict, actor_id)
        return conflict.to_dto()

    def get_conflict(self, conflict_id: UUID) -> ConflictInfo:
        conflict = self.session.get(Conflict, conflict_id)
        if conflict is None:
            raise ConflictNotFoundError(str(conflict_id))
        return conflict.to_dto()

    def open_conflict_for(
        self,
        phonogram_id: UUID,
        at_date: date | None = None,
    ) -> ConflictInfo | None:
        """
        The phonogram's non-terminal conflict, if any.  With ``at_date``,
        only a conflict already effective on that date is returned.
        """
        conflict = self._find_open(phonogram_id)
        if conflict is None:
            return None
        if at_date is not None and conflict.effective_date > at_date:
            return None
        return conflict.to_dto()

    # Internals

    def _lock_conflict(self, conflict_id: UUID) -> Conflict:
        conflict = self.session.execute(
            select(Conflict)
            .where(Conflict.id == conflict_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if conflict is None:
            raise ConflictNotFoundError(str(conflict_id))
        return conflict

    def _load_parties(self, conflict: Conflict) -> list[InvolvedParty]:
        # Decisions cast by other transactions become visible once the
        # conflict lock is held; re-read them rather than trust the cache
        self.session.execute(
            select(Decision)
            .join(InvolvedParty, InvolvedParty.id == Decision.involved_party_id)
            .where(InvolvedParty.conflict_id == conflict.id)
            .execution_options(populate_existing=True)
        ).scalars().all()
        return list(conflict.parties)

    def _find_open(self, phonogram_id: UUID) -> Conflict | None:
        return self.session.execute(
            select(Conflict)
            .where(Conflict.phonogram_id == phonogram_id, Conflict.state.in_(_OPEN_STATES))
            .order_by(Conflict.opened_at)
            .limit(1)
        ).scalar_one_or_none()

    def _decide(
        self,
        conflict: Conflict,
        party: InvolvedParty,
        value: DecisionValue,
        actor_id: UUID,
    ) -> None:
        decision = party.decision
        with self._auditor.mutation(decision, actor_id):
            decision.value = value.value
            decision.decided_at = self.clock.now()

        if conflict.state == ConflictState.OPEN.value:
            with self._auditor.mutation(conflict, actor_id):
                conflict.state = ConflictState.IN_PROGRESS.value

    def _resolve_locked(self, conflict: Conflict, actor_id: UUID) -> None:
        if conflict.is_terminal:
            return

        parties = [p.to_dto() for p in self._load_parties(conflict)]
        outcome = evaluate_conflict(
            parties,
            conflict.disputed_percentage,
            SplitPolicy(conflict.split_policy),
        )
        if not outcome.is_terminal:
            return

        if outcome.state == ConflictState.RESOLVED:
            self._ownership.redistribute(
                conflict.phonogram_id,
                outcome.shares,
                conflict.effective_date,
                actor_id,
                release=outcome.excluded,
                conflict_id=conflict.id,
            )

        with self._auditor.mutation(conflict, actor_id):
            conflict.state = outcome.state.value
            conflict.resolved_at = self.clock.now()

        logger.info(
            "conflict_resolved" if outcome.state == ConflictState.RESOLVED else "conflict_rejected",
            extra={
                "conflict_id": str(conflict.id),
                "phonogram_id": str(conflict.phonogram_id),
                "shares": {str(k): str(v) for k, v in outcome.shares.items()},
                "excluded": [str(pid) for pid in outcome.excluded],
            },
        )
