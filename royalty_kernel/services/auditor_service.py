"""
AuditorService -- the Audit Recorder.

Responsibility:
    Writes one immutable AuditEntry per mutation (table, operation, actor,
    before/after state) inside the caller's transaction, so the entry and
    the mutation commit or roll back together.  Each audited entity carries
    its own hash chain for tamper detection.

Architecture position:
    Kernel > Services.  Called by RegistryService, LedgerService,
    OwnershipService, ConflictService and the batch engine.

    Instead of one ``record_*`` method per table, every component goes
    through the same two entry points, parameterized by the audited entity:

        auditor.record_created(interval, actor_id)

        with auditor.mutation(productora, actor_id):
            productora.balance = new_balance

    The entity's class selects its table name and snapshot (the audited
    entity registry below).

Invariants enforced:
    - No lock is shared across entities.  seq comes from a database
      sequence, and the previous hash is that of the same entity's last
      entry.  An UPDATE is flushed before its entry is written, so the
      entity's row lock is held and its chain is linear; an INSERT starts a
      new chain.  Writers for different productoras never wait on each
      other here.
    - entry_hash = H(table | entity | operation | H(before) | H(after) |
      prev_hash).

Failure modes:
    - AuditChainBrokenError from validate_chain() on a hash mismatch.
    - KeyError if an entity class is not registered as auditable.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import func, inspect, select
from sqlalchemy.orm import Session

from royalty_kernel.db.base import Base
from royalty_kernel.domain.clock import Clock, SystemClock
from royalty_kernel.exceptions import AuditChainBrokenError
from royalty_kernel.logging_config import get_logger
from royalty_kernel.models.audit_entry import AUDIT_ENTRY_SEQ, AuditEntry, AuditOperation
from royalty_kernel.models.conflict import Conflict, Decision, InvolvedParty
from royalty_kernel.models.ledger import LedgerTransaction
from royalty_kernel.models.ownership import OwnershipInterval
from royalty_kernel.models.pending_settlement import PendingSettlement
from royalty_kernel.models.phonogram import Phonogram
from royalty_kernel.models.productora import Productora
from royalty_kernel.utils.hashing import hash_audit_entry

logger = get_logger("services.auditor")

# Row metadata maintained by TrackedBase; not part of the audited state
_METADATA_COLUMNS = frozenset({"created_at", "updated_at", "created_by_id", "updated_by_id"})

# Audited entity registry: model class -> audit table name.  Extended by
# outer packages (the batch models) through register_audited_entity().
_AUDITED_ENTITIES: dict[type, str] = {
    Productora: "productoras",
    Phonogram: "phonograms",
    OwnershipInterval: "ownership_intervals",
    Conflict: "conflicts",
    InvolvedParty: "conflict_parties",
    Decision: "conflict_decisions",
    LedgerTransaction: "ledger_transactions",
    PendingSettlement: "pending_settlements",
}


def register_audited_entity(model: type, table_name: str) -> None:
    _AUDITED_ENTITIES[model] = table_name


def audited_table(entity: Base) -> str:
    return _AUDITED_ENTITIES[type(entity)]


def _json_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (dict, list)):
        return value
    return str(value)


def snapshot(entity: Base) -> dict[str, Any]:
    """JSON-safe dict of the entity's audited columns."""
    mapper = inspect(entity).mapper
    return {
        attr.key: _json_value(getattr(entity, attr.key))
        for attr in mapper.column_attrs
        if attr.key not in _METADATA_COLUMNS
    }


class AuditorService:
    """
    Records audited mutations and validates the audit chain.

    Non-goals:
        - Does NOT commit; entries share the caller's transaction.
        - Reporting queries live in AuditSelector.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
    def _next_seq(self) -> int:
        if self._session.get_bind().dialect.supports_sequences:
            return self._session.execute(select(AUDIT_ENTRY_SEQ.next_value())).scalar_one()
        # SQLite: BEGIN IMMEDIATE already serializes writers
        last = self._session.execute(select(func.max(AuditEntry.seq))).scalar()
        return (last or 0) + 1

    def _get_last_hash(self, table: str, entity_id: UUID) -> str | None:
        return self._session.execute(
            select(AuditEntry.entry_hash)
            .where(AuditEntry.table_name == table, AuditEntry.entity_id == entity_id)
            .order_by(AuditEntry.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

    def record(
        self,
        table: str,
        operation: AuditOperation,
        actor_id: UUID,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
        entity_id: UUID | None = None,
    ) -> AuditEntry:
        """
        Append one audit entry to the current transaction.

        ``entity_id`` defaults to the ``id`` found in ``after`` (or
        ``before``).
        """
        if entity_id is None:
            source = after if after is not None else before
            entity_id = UUID(str(source["id"])) if source else None
        if entity_id is None:
            raise ValueError("Audit entry needs an entity id")

        seq = self._next_seq()
        prev_hash = self._get_last_hash(table, entity_id)

        op = AuditOperation(operation).value
        entry = AuditEntry(
            seq=seq,
            table_name=table,
            entity_id=entity_id,
            operation=op,
            actor_id=actor_id,
            before=before,
            after=after,
            occurred_at=self._clock.now(),
            prev_hash=prev_hash,
            entry_hash=hash_audit_entry(table, str(entity_id), op, before, after, prev_hash),
        )
        self._session.add(entry)
        self._session.flush()

        logger.debug(
            "audit_entry_created",
            extra={"table": table, "entity_id": str(entity_id), "operation": op, "seq": seq},
        )
        return entry

    def record_created(self, entity: Base, actor_id: UUID) -> AuditEntry:
        """Audit an INSERT.  Flushes first so server-side defaults and the id exist."""
        self._session.flush()
        return self.record(
            audited_table(entity),
            AuditOperation.INSERT,
            actor_id,
            before=None,
            after=snapshot(entity),
            entity_id=entity.id,
        )

    @contextmanager
    def mutation(self, entity: Base, actor_id: UUID) -> Iterator[Base]:
        """
        Audit an UPDATE performed inside the ``with`` block.

        Nothing is recorded if the block raises or leaves the audited
        columns unchanged.
        """
        table = audited_table(entity)
        before = snapshot(entity)
        yield entity
        if hasattr(entity, "updated_by_id"):
            entity.updated_by_id = actor_id
        self._session.flush()
        after = snapshot(entity)
        if after != before:
            self.record(
                table,
                AuditOperation.UPDATE,
                actor_id,
                before=before,
                after=after,
                entity_id=entity.id,
            )

    def validate_chain(self) -> bool:
        """
        Recompute every entry hash and check each prev_hash link against the
        previous entry of the same entity.

        Raises:
            AuditChainBrokenError: at the first entry that does not verify.
        """
        entries = self._session.execute(
            select(AuditEntry).order_by(AuditEntry.seq)
        ).scalars().all()

        last_hash: dict[tuple[str, UUID], str] = {}
        for entry in entries:
            key = (entry.table_name, entry.entity_id)
            prev_hash = last_hash.get(key)
            expected = hash_audit_entry(
                entry.table_name,
                str(entry.entity_id),
                entry.operation,
                entry.before,
                entry.after,
                prev_hash,
            )
            if entry.prev_hash != prev_hash or entry.entry_hash != expected:
                logger.critical(
                    "audit_chain_broken",
                    extra={"seq": entry.seq, "table": entry.table_name},
                )
                raise AuditChainBrokenError(entry.seq, expected, entry.entry_hash)
            last_hash[key] = entry.entry_hash

        return True
