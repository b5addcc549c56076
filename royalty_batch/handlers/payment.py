"""
Payment rows: money paid out to a productora.

Fields: ``cuit``, ``amount`` (positive), optional ``reference``.  Posts one
negative PAYMENT movement; the balance may not go below zero.
"""

from collections.abc import Mapping
from typing import Any

from royalty_batch.domain.types import BatchKind, RowOutcome
from royalty_batch.handlers import fields
from royalty_batch.handlers.base import RowContext
from royalty_kernel.domain.types import TransactionKind


class PaymentHandler:
    kind = BatchKind.PAYMENT

    def apply(self, row: Mapping[str, Any], ctx: RowContext) -> RowOutcome:
        productora = ctx.registry.get_productora_by_cuit(fields.cuit(row))
        value = fields.amount(row)
        posting = ctx.ledger.post(
            productora.id,
            TransactionKind.PAYMENT,
            -value,
            memo=ctx.memo,
            batch_id=ctx.batch_id,
            actor_id=ctx.actor_id,
            reference=fields.optional_text(row, "reference"),
            row_ordinal=ctx.row_ordinal,
        )
        return RowOutcome(postings=(posting,))
