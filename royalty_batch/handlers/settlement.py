"""
Settlement rows: royalty money for a phonogram, split among its owners.

Fields: ``isrc``, ``amount`` (positive), optional ``date`` (the ownership
instant, default the batch date) and ``reference``.

The amount is split pro rata by the active ownership percentages on the
row date, against a 100% basis.  Cents left over by truncation go to the
largest remainders (first by productora id on ties); the unclaimed remainder,
if the owners hold less than 100%, goes to the phonogram's pending pool.

Unresolved rows (nobody owns the phonogram on the date, or a live conflict
covers it) are rejected, or with the ``hold`` policy kept whole in the
pending pool.
"""

from collections.abc import Mapping
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from royalty_batch.domain.types import BatchKind, RowOutcome, UnresolvedSettlementPolicy
from royalty_batch.handlers import fields
from royalty_batch.handlers.base import RowContext
from royalty_kernel.domain.allocation import allocate
from royalty_kernel.domain.types import TransactionKind
from royalty_kernel.domain.values import HUNDRED, ZERO
from royalty_kernel.exceptions import OwnershipDisputedError, UnresolvedOwnershipError
from royalty_kernel.logging_config import get_logger

logger = get_logger("batch.settlement")


class SettlementHandler:
    kind = BatchKind.SETTLEMENT

    def apply(self, row: Mapping[str, Any], ctx: RowContext) -> RowOutcome:
        phonogram = ctx.registry.get_phonogram_by_isrc(fields.isrc(row))
        value = fields.amount(row)
        at_date = fields.optional_date(row, "date", ctx.batch_date)
        reference = fields.optional_text(row, "reference")
        hold = ctx.unresolved_settlement_policy == UnresolvedSettlementPolicy.HOLD

        conflict = ctx.conflicts.open_conflict_for(phonogram.id, at_date)
        if conflict is not None:
            if hold:
                return self._hold_whole(phonogram.id, value, at_date, ctx, "disputed")
            raise OwnershipDisputedError(str(phonogram.id), str(conflict.id))

        shares = sorted(
            (s for s in ctx.ownership.active_ownership(phonogram.id, at_date) if s.percentage > 0),
            key=lambda s: str(s.productora_id),
        )
        if not shares:
            if hold:
                return self._hold_whole(phonogram.id, value, at_date, ctx, "unowned")
            raise UnresolvedOwnershipError(str(phonogram.id), at_date.isoformat())

        split = allocate(value, [(s.productora_id, s.percentage) for s in shares], basis=HUNDRED)

        # Lock every receiver, then the pool, before the first audited write
        ctx.ledger.lock_productoras(s.productora_id for s in shares)
        pool = None
        if split.unallocated > 0:
            pool = ctx.ledger.lock_pending_pool(phonogram.id, ctx.actor_id)

        postings = []
        for line in split.lines:
            if line.allocated <= 0:
                continue
            postings.append(
                ctx.ledger.post(
                    line.target_id,
                    TransactionKind.SETTLEMENT,
                    line.allocated,
                    memo=f"{ctx.memo}: {phonogram.isrc} at {line.weight}%",
                    batch_id=ctx.batch_id,
                    actor_id=ctx.actor_id,
                    reference=reference,
                    row_ordinal=ctx.row_ordinal,
                )
            )

        held = ZERO
        if pool is not None:
            held = split.unallocated
            ctx.ledger.hold_pending(pool, held, ctx.actor_id)

        logger.info(
            "settlement_distributed",
            extra={
                "isrc": phonogram.isrc,
                "amount": str(value),
                "receivers": len(postings),
                "held_pending": str(held),
            },
        )
        return RowOutcome(postings=tuple(postings), held_pending=held)

    def _hold_whole(
        self,
        phonogram_id: UUID,
        value: Decimal,
        at_date: date,
        ctx: RowContext,
        cause: str,
    ) -> RowOutcome:
        pool = ctx.ledger.lock_pending_pool(phonogram_id, ctx.actor_id)
        ctx.ledger.hold_pending(pool, value, ctx.actor_id)
        logger.info(
            "settlement_held",
            extra={
                "phonogram_id": str(phonogram_id),
                "amount": str(value),
                "at_date": at_date.isoformat(),
                "cause": cause,
            },
        )
        return RowOutcome(held_pending=value)
