"""
ORM models for batch ingestion.

Contract:
    BatchModel persists one ingestion (kind, counts, status, checksum);
    BatchRejectedRowModel keeps every rejected row with its original data
    and reason.  ``to_dto()`` rebuilds the BatchResult.

Architecture: royalty_batch/models.  Imports from royalty_kernel.db and
    royalty_batch.domain only.

Invariants enforced:
    - batch_number is unique and allocated by SequenceService.
    - A finalized batch (any status but RUNNING) is immutable; rejected rows
      are append-only; nothing is deleted (register_batch_listeners).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from royalty_batch.domain.types import BatchKind, BatchResult, BatchStatus, RejectedRow
from royalty_kernel.db.base import TrackedBase, UUIDString
from royalty_kernel.db.immutability import block, changed_columns, register_listener
from royalty_kernel.services.auditor_service import register_audited_entity


class BatchModel(TrackedBase):
    """One bulk ingestion."""

    __tablename__ = "batches"

    __table_args__ = (
        Index("ix_batches_kind_checksum", "kind", "checksum"),
        Index("ix_batches_status", "status"),
    )

    batch_number: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    total_rows: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processed_rows: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    accepted_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rejected_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    error_summary: Mapped[str | None] = mapped_column(Text, nullable=True)

    rejected_rows: Mapped[list["BatchRejectedRowModel"]] = relationship(
        back_populates="batch",
        order_by="BatchRejectedRowModel.row_ordinal",
    )

    def to_dto(self) -> BatchResult:
        return BatchResult(
            batch_id=self.id,
            batch_number=self.batch_number,
            kind=BatchKind(self.kind),
            status=BatchStatus(self.status),
            total_rows=self.total_rows,
            processed_rows=self.processed_rows,
            accepted=self.accepted_count,
            rejected=tuple(row.to_dto() for row in self.rejected_rows),
            submitted_at=self.submitted_at,
            completed_at=self.completed_at,
            error_summary=self.error_summary,
        )


class BatchRejectedRowModel(TrackedBase):
    """A row of a batch that was not applied."""

    __tablename__ = "batch_rejected_rows"

    __table_args__ = (
        UniqueConstraint("batch_id", "row_ordinal", name="uq_batch_rejected_row"),
    )

    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("batches.id"),
        nullable=False,
    )
    row_ordinal: Mapped[int] = mapped_column(Integer, nullable=False)
    row_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    code: Mapped[str] = mapped_column(String(100), nullable=False)
    reason: Mapped[str] = mapped_column(String(1000), nullable=False)

    batch: Mapped[BatchModel] = relationship(back_populates="rejected_rows")

    def to_dto(self) -> RejectedRow:
        return RejectedRow(
            row_ordinal=self.row_ordinal,
            row=dict(self.row_data),
            code=self.code,
            reason=self.reason,
        )


_METADATA_COLUMNS = frozenset({"updated_at", "updated_by_id"})


def _check_batch_update(mapper, connection, target):
    changes = changed_columns(target)
    if not set(changes) - _METADATA_COLUMNS:
        return
    old_status = changes["status"][0] if "status" in changes else target.status
    if old_status is not None and BatchStatus(old_status).is_final:
        block("Batch", target, "UPDATE", f"batch is finalized ({old_status})")


def _check_rejected_row_update(mapper, connection, target):
    if set(changed_columns(target)) - _METADATA_COLUMNS:
        block("BatchRejectedRow", target, "UPDATE", "rejected rows are append-only")


def _block_delete(entity_type: str):
    def _check_delete(mapper, connection, target):
        block(entity_type, target, "DELETE", f"{entity_type} rows are never deleted")

    return _check_delete


_batch_delete = _block_delete("Batch")
_rejected_row_delete = _block_delete("BatchRejectedRow")


def register_batch_listeners() -> None:
    """Register the batch immutability listeners (idempotent)."""
    register_listener(BatchModel, "before_update", _check_batch_update)
    register_listener(BatchModel, "before_delete", _batch_delete)
    register_listener(BatchRejectedRowModel, "before_update", _check_rejected_row_update)
    register_listener(BatchRejectedRowModel, "before_delete", _rejected_row_delete)


register_audited_entity(BatchModel, "batches")
