"""
Transfer rows, in two shapes.

- ``origin_cuit`` + ``destination_cuit`` + ``amount``: move money between
  two productoras (two TRANSFER legs, atomically).
- ``isrc`` + ``percentage`` + ``destination_cuit``: release that share of
  the phonogram's pending settlement pool to the destination.
"""

from collections.abc import Mapping
from typing import Any

from royalty_batch.domain.types import BatchKind, RowOutcome
from royalty_batch.handlers import fields
from royalty_batch.handlers.base import RowContext


class TransferHandler:
    kind = BatchKind.TRANSFER

    def apply(self, row: Mapping[str, Any], ctx: RowContext) -> RowOutcome:
        destination = ctx.registry.get_productora_by_cuit(
            fields.cuit(row, "destination_cuit")
        )
        reference = fields.optional_text(row, "reference")

        if fields.has(row, "isrc") and not fields.has(row, "origin_cuit"):
            phonogram = ctx.registry.get_phonogram_by_isrc(fields.isrc(row))
            posting = ctx.ledger.release_pending(
                phonogram.id,
                fields.percentage(row),
                destination.id,
                memo=f"{ctx.memo}: pending release {phonogram.isrc}",
                batch_id=ctx.batch_id,
                actor_id=ctx.actor_id,
                reference=reference,
                row_ordinal=ctx.row_ordinal,
            )
            return RowOutcome(postings=(posting,))

        origin = ctx.registry.get_productora_by_cuit(fields.cuit(row, "origin_cuit"))
        legs = ctx.ledger.transfer(
            origin.id,
            destination.id,
            fields.amount(row),
            memo=ctx.memo,
            batch_id=ctx.batch_id,
            actor_id=ctx.actor_id,
            reference=reference,
            row_ordinal=ctx.row_ordinal,
        )
        return RowOutcome(postings=legs)
