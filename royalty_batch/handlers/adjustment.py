"""
Manual adjustment rows: an operator-supplied corrected balance.

Fields: ``cuit``, ``amount`` (the balance the productora should have,
>= 0), optional ``reference``.  Posts the difference as one ADJUSTMENT.
"""

from collections.abc import Mapping
from typing import Any

from royalty_batch.domain.types import BatchKind, RowOutcome
from royalty_batch.handlers import fields
from royalty_batch.handlers.base import RowContext


class AdjustmentHandler:
    kind = BatchKind.ADJUSTMENT

    def apply(self, row: Mapping[str, Any], ctx: RowContext) -> RowOutcome:
        productora = ctx.registry.get_productora_by_cuit(fields.cuit(row))
        target = fields.amount(row, allow_zero=True)
        posting = ctx.ledger.adjust_to(
            productora.id,
            target,
            memo=ctx.memo,
            batch_id=ctx.batch_id,
            actor_id=ctx.actor_id,
            reference=fields.optional_text(row, "reference"),
            row_ordinal=ctx.row_ordinal,
        )
        return RowOutcome(postings=(posting,))
