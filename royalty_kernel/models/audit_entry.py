"""
Module: royalty_kernel.models.audit_entry
Responsibility: ORM persistence for the audit trail: one row per mutation,
    recording table, operation, actor and the row state before and after.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only; no UPDATE or DELETE (db/immutability.py).
    - seq is globally increasing, drawn from the audit_entry_seq database
      sequence (PostgreSQL) without any row lock.  It may have gaps.
    - Hashes chain per audited entity: prev_hash is the entry_hash of the
      previous entry for the same (table_name, entity_id), so tampering with
      any earlier row of that entity breaks validation.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, BigInteger, DateTime, Index, Sequence, String
from sqlalchemy.orm import Mapped, mapped_column

from royalty_kernel.db.base import Base, UUIDString

# Ignored by SQLite, where AuditorService allocates max(seq) + 1 under the
# database-wide write lock
AUDIT_ENTRY_SEQ = Sequence("audit_entry_seq", metadata=Base.metadata)


class AuditOperation(str, Enum):
    INSERT = "insert"
    UPDATE = "update"


class AuditEntry(Base):
    """One audited mutation."""

    __tablename__ = "audit_entries"
    __table_args__ = (
        Index("idx_audit_table_entity", "table_name", "entity_id"),
        Index("idx_audit_actor", "actor_id"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, AUDIT_ENTRY_SEQ, nullable=False, unique=True)

    table_name: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    operation: Mapped[AuditOperation] = mapped_column(String(20), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    before: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    after: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEntry #{self.seq} {self.operation} {self.table_name}:{self.entity_id}>"
