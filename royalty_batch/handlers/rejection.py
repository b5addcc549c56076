"""
Rejection rows: a payment the bank bounced, credited back to the productora.

Fields: ``cuit``, ``amount`` and/or ``reference``.  When ``reference``
names an earlier payment of the same productora, the credit is that
payment's amount; otherwise ``amount`` is credited.
"""

from collections.abc import Mapping
from typing import Any

from royalty_batch.domain.types import BatchKind, RowOutcome
from royalty_batch.handlers import fields
from royalty_batch.handlers.base import RowContext
from royalty_kernel.domain.types import TransactionKind
from royalty_kernel.exceptions import ReferencedTransactionNotFoundError


class RejectionHandler:
    kind = BatchKind.REJECTION

    def apply(self, row: Mapping[str, Any], ctx: RowContext) -> RowOutcome:
        productora = ctx.registry.get_productora_by_cuit(fields.cuit(row))
        reference = fields.optional_text(row, "reference")

        credit = None
        if reference is not None:
            payment = ctx.ledger_selector.find_by_reference(
                productora.id, reference, kind=TransactionKind.PAYMENT
            )
            if payment is not None:
                credit = -payment.amount
            elif not fields.has(row, "amount"):
                raise ReferencedTransactionNotFoundError(reference)
        if credit is None:
            credit = fields.amount(row)

        posting = ctx.ledger.post(
            productora.id,
            TransactionKind.REJECTION,
            credit,
            memo=ctx.memo,
            batch_id=ctx.batch_id,
            actor_id=ctx.actor_id,
            reference=reference,
            row_ordinal=ctx.row_ordinal,
        )
        return RowOutcome(postings=(posting,))
