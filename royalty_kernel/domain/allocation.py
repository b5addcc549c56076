"""
Module: royalty_kernel.domain.allocation
Responsibility:
    Split a fixed-point quantity across weighted targets with deterministic
    rounding.  Used for settlement amounts (weights are ownership
    percentages) and for redistributing a disputed percentage among the
    accepting parties of a conflict (equal or proportional weights).

Architecture position:
    Kernel > Domain -- pure calculation, zero I/O.

Invariants enforced:
    - Largest remainder: every line starts at its exact share truncated to
      the precision, then the leftover units go one each to the lines with
      the largest truncated remainder (first in target order on ties).
    - When the weights cover the whole basis, the lines sum to exactly the
      source amount.  When they cover only part of it, the lines sum to the
      covered share rounded half-up and the rest is ``unallocated``.
    - No line is ever negative and no line exceeds its exact share by a
      full unit.

Usage:
    result = allocate(
        Decimal("1000.00"),
        [(owner_a, Decimal("60.00")), (owner_b, Decimal("40.00"))],
        basis=Decimal("100"),
    )
    # lines: 600.00, 400.00; unallocated: 0.00
"""

from collections.abc import Hashable, Sequence
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal

from royalty_kernel.domain.values import MONEY_DECIMAL_PLACES, round_money


@dataclass(frozen=True)
class AllocationLine:
    target_id: Hashable
    weight: Decimal
    allocated: Decimal


@dataclass(frozen=True)
class AllocationResult:
    """
    Outcome of one allocation.

    ``total_allocated + unallocated == source_amount`` always holds.
    ``rounding_adjustment`` is the part of ``total_allocated`` handed out
    by largest remainder on top of the truncated shares.
    """

    source_amount: Decimal
    lines: tuple[AllocationLine, ...]
    total_allocated: Decimal
    unallocated: Decimal
    rounding_adjustment: Decimal

    def amount_for(self, target_id: Hashable) -> Decimal:
        for line in self.lines:
            if line.target_id == target_id:
                return line.allocated
        raise KeyError(target_id)


def allocate(
    amount: Decimal,
    targets: Sequence[tuple[Hashable, Decimal]],
    basis: Decimal | None = None,
    decimal_places: int = MONEY_DECIMAL_PLACES,
) -> AllocationResult:
    """
    Allocate ``amount`` across ``targets`` by weight.

    Args:
        amount: Non-negative quantity to split.
        targets: (target_id, weight) pairs, in a stable order.
        basis: Weight that represents the whole amount.  Defaults to the sum
            of the weights (full allocation).
        decimal_places: Precision of every allocated line.

    Raises:
        ValueError: negative amount or weight, or weights exceeding the basis.
    """
    if amount < 0:
        raise ValueError(f"Allocation amount must be non-negative, got {amount}")
    weights = [weight for _, weight in targets]
    if any(weight < 0 for weight in weights):
        raise ValueError("Allocation weights must be non-negative")

    total_weight = sum(weights, Decimal("0"))
    if basis is None:
        basis = total_weight
    if total_weight > basis:
        raise ValueError(f"Weights {total_weight} exceed allocation basis {basis}")

    unit = Decimal(1).scaleb(-decimal_places)
    zero = round_money(Decimal("0"), decimal_places)
    if not targets or total_weight == 0:
        return AllocationResult(
            source_amount=amount,
            lines=tuple(AllocationLine(t, w, zero) for t, w in targets),
            total_allocated=zero,
            unallocated=amount,
            rounding_adjustment=zero,
        )

    exact = [amount * weight / basis for weight in weights]
    allocated = [share.quantize(unit, rounding=ROUND_DOWN) for share in exact]
    truncated_total = sum(allocated, zero)

    if total_weight == basis:
        target_total = amount
    else:
        target_total = min(round_money(amount * total_weight / basis, decimal_places), amount)

    leftover_units = int((target_total - truncated_total) / unit)
    order = sorted(
        range(len(allocated)),
        key=lambda i: (-(exact[i] - allocated[i]), i),
    )
    for index in order[:max(leftover_units, 0)]:
        allocated[index] += unit

    lines = tuple(
        AllocationLine(target_id=target_id, weight=weight, allocated=value)
        for (target_id, weight), value in zip(targets, allocated)
    )
    total_allocated = sum(allocated, zero)
    return AllocationResult(
        source_amount=amount,
        lines=lines,
        total_allocated=total_allocated,
        unallocated=amount - total_allocated,
        rounding_adjustment=total_allocated - truncated_total,
    )
