"""
Conflict outcome evaluation -- pure function over the parties' decisions.

Given every involved party's decision, decides whether the conflict can
close and, if it resolves, how the disputed percentage is split among the
accepting parties.  The ConflictService applies the result; nothing here
touches the database.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from royalty_kernel.domain.allocation import allocate
from royalty_kernel.domain.types import (
    ConflictState,
    DecisionValue,
    InvolvedPartyInfo,
    SplitPolicy,
)
from royalty_kernel.domain.values import PERCENT_DECIMAL_PLACES


@dataclass(frozen=True)
class ConflictOutcome:
    """
    ``state`` is None while any decision is pending.

    ``shares`` maps every accepting productora to its new percentage;
    ``excluded`` lists the rejecting productoras, whose shares are closed.
    """

    state: ConflictState | None
    shares: dict[UUID, Decimal] = field(default_factory=dict)
    excluded: tuple[UUID, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.state is not None


def _weight(party: InvolvedPartyInfo, policy: SplitPolicy, equal_claim: Decimal) -> Decimal:
    if policy != SplitPolicy.PROPORTIONAL:
        return Decimal("1")
    if party.claimed_percentage is None:
        return equal_claim
    return party.claimed_percentage


def evaluate_conflict(
    parties: Sequence[InvolvedPartyInfo],
    disputed_percentage: Decimal,
    policy: SplitPolicy = SplitPolicy.EQUAL,
) -> ConflictOutcome:
    """
    Decide the outcome of a conflict.

    - Any pending decision: not terminal.
    - Every decision rejected: REJECTED, no ownership change.
    - Otherwise RESOLVED: the disputed percentage is split among accepting
      parties (equally, or proportionally to their claimed percentages);
      under the proportional policy a party that claimed nothing counts as
      claiming an equal share of the disputed percentage among all parties;
      cents go to the largest remainders, first in filing order on ties.
    """
    ordered = sorted(parties, key=lambda p: p.ordinal)
    if any(p.decision.value == DecisionValue.PENDING for p in ordered):
        return ConflictOutcome(state=None)

    accepting = [p for p in ordered if p.decision.value == DecisionValue.ACCEPTED]
    rejecting = tuple(
        p.productora_id for p in ordered if p.decision.value == DecisionValue.REJECTED
    )
    if not accepting:
        return ConflictOutcome(state=ConflictState.REJECTED)

    equal_claim = disputed_percentage / len(ordered)
    weights = [(p.productora_id, _weight(p, policy, equal_claim)) for p in accepting]
    if sum(w for _, w in weights) == 0:
        # Proportional split with nothing claimed degrades to equal
        weights = [(p.productora_id, Decimal("1")) for p in accepting]

    split = allocate(disputed_percentage, weights, decimal_places=PERCENT_DECIMAL_PLACES)
    return ConflictOutcome(
        state=ConflictState.RESOLVED,
        shares={line.target_id: line.allocated for line in split.lines},
        excluded=rejecting,
    )
