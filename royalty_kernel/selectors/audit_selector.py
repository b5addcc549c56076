"""
Module: royalty_kernel.selectors.audit_selector
Responsibility: Chronological retrieval of audit entries by table, actor and
    date range, and single-entry hash verification, for reporting
    collaborators.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Entries are returned in ``seq`` order.  Within one entity that is the
      order of its mutations; across entities it is allocation order.
    - verify_entry recomputes one entry's hash against the stored link to
      the previous entry of the same entity.  Whole-chain validation is
      AuditorService.validate_chain().
"""

from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import select

from royalty_kernel.models.audit_entry import AuditEntry
from royalty_kernel.selectors.base import BaseSelector
from royalty_kernel.utils.hashing import hash_audit_entry


@dataclass(frozen=True)
class AuditRecord:
    seq: int
    table_name: str
    entity_id: UUID
    operation: str
    actor_id: UUID
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    occurred_at: datetime
    entry_hash: str


def _to_record(entry: AuditEntry) -> AuditRecord:
    return AuditRecord(
        seq=entry.seq,
        table_name=entry.table_name,
        entity_id=entry.entity_id,
        operation=entry.operation,
        actor_id=entry.actor_id,
        before=entry.before,
        after=entry.after,
        occurred_at=entry.occurred_at,
        entry_hash=entry.entry_hash,
    )


class AuditSelector(BaseSelector[AuditEntry]):
    """Read-only access to the audit trail."""

    def query(
        self,
        table: str | None = None,
        actor_id: UUID | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        entity_id: UUID | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditRecord]:
        """Entries matching every given filter, oldest first.  Dates are inclusive."""
        stmt = select(AuditEntry)
        if table is not None:
            stmt = stmt.where(AuditEntry.table_name == table)
        if actor_id is not None:
            stmt = stmt.where(AuditEntry.actor_id == actor_id)
        if entity_id is not None:
            stmt = stmt.where(AuditEntry.entity_id == entity_id)
        if date_from is not None:
            stmt = stmt.where(
                AuditEntry.occurred_at >= datetime.combine(date_from, time.min, tzinfo=UTC)
            )
        if date_to is not None:
            stmt = stmt.where(
                AuditEntry.occurred_at
                < datetime.combine(date_to + timedelta(days=1), time.min, tzinfo=UTC)
            )
        rows = self.session.execute(
            stmt.order_by(AuditEntry.seq).limit(limit).offset(offset)
        ).scalars().all()
        return [_to_record(row) for row in rows]

    def entity_trail(self, entity_id: UUID) -> list[AuditRecord]:
        """Every entry for one entity, oldest first."""
        rows = self.session.execute(
            select(AuditEntry).where(AuditEntry.entity_id == entity_id).order_by(AuditEntry.seq)
        ).scalars().all()
        return [_to_record(row) for row in rows]

    def verify_entry(self, seq: int) -> bool:
        """
        True if entry ``seq`` hashes to its stored value and links to the
        previous entry of the same entity.  False for an unknown ``seq``.
        """
        entry = self.session.execute(
            select(AuditEntry).where(AuditEntry.seq == seq)
        ).scalar_one_or_none()
        if entry is None:
            return False

        previous_hash = self.session.execute(
            select(AuditEntry.entry_hash)
            .where(
                AuditEntry.table_name == entry.table_name,
                AuditEntry.entity_id == entry.entity_id,
                AuditEntry.seq < seq,
            )
            .order_by(AuditEntry.seq.desc())
            .limit(1)
        ).scalar_one_or_none()
        if entry.prev_hash != previous_hash:
            return False

        expected = hash_audit_entry(
            entry.table_name,
            str(entry.entity_id),
            entry.operation,
            entry.before,
            entry.after,
            entry.prev_hash,
        )
        return expected == entry.entry_hash
