"""
Module: royalty_kernel.db.immutability
Responsibility: ORM event listeners that refuse mutations of append-only
    records at flush time, inside the same transaction as the offending
    change.
Architecture position: Kernel > DB.  Imports models lazily inside
    register_immutability_listeners().

Rules:
    - LedgerTransaction, AuditEntry: no UPDATE, no DELETE.
    - OwnershipInterval: no DELETE.  UPDATE may only close the interval
      (set end_date, or move it earlier), void it, or record the
      superseding interval once.
    - Phonogram: ISRC never changes; no DELETE.
    - Productora: CUIT never changes; no DELETE.
    - Decision: the value leaves ``pending`` at most once; no DELETE.
    - Conflict: a terminal state never changes; no DELETE.
    - TrackedBase metadata columns (updated_at, updated_by_id) may always change.

Failure modes:
    - ImmutabilityViolationError raised from the flush; the session must be
      rolled back by the caller.

Bulk ``session.execute(update(...))`` statements bypass mapper events; the
ledger chain check (LedgerSelector.chain_report) is what detects tampering
of that kind.
"""

from typing import Any

from sqlalchemy import event, inspect

from royalty_kernel.exceptions import ImmutabilityViolationError
from royalty_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_METADATA_COLUMNS = frozenset({"updated_at", "updated_by_id"})


def changed_columns(target: Any) -> dict[str, tuple[Any, Any]]:
    """Map of column key -> (old, new) for every pending column change."""
    state = inspect(target)
    changes: dict[str, tuple[Any, Any]] = {}
    for attr in state.mapper.column_attrs:
        hist = state.attrs[attr.key].history
        if hist.has_changes() and hist.added:
            old = hist.deleted[0] if hist.deleted else None
            changes[attr.key] = (old, hist.added[0])
    return changes


def block(entity_type: str, target: Any, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _append_only(entity_type: str):
    def _check_update(mapper, connection, target):
        if set(changed_columns(target)) - _METADATA_COLUMNS:
            block(entity_type, target, "UPDATE", f"{entity_type} rows are append-only")

    def _check_delete(mapper, connection, target):
        block(entity_type, target, "DELETE", f"{entity_type} rows are never deleted")

    return _check_update, _check_delete


def _never_deleted(entity_type: str):
    def _check_delete(mapper, connection, target):
        block(entity_type, target, "DELETE", f"{entity_type} rows are never deleted")

    return _check_delete


def _check_ownership_interval_update(mapper, connection, target):
    for key, (old, new) in changed_columns(target).items():
        if key in _METADATA_COLUMNS:
            continue
        if key == "end_date" and new is not None and (old is None or new < old):
            continue
        if key == "voided" and new and not old:
            continue
        if key == "superseded_by_id" and old is None:
            continue
        block(
            "OwnershipInterval",
            target,
            "UPDATE",
            f"{key} cannot change from {old!r} to {new!r}; intervals are only closed or voided",
        )


def _check_phonogram_update(mapper, connection, target):
    if "isrc" in changed_columns(target):
        block("Phonogram", target, "UPDATE", "ISRC is immutable")


def _check_productora_update(mapper, connection, target):
    if "cuit" in changed_columns(target):
        block("Productora", target, "UPDATE", "CUIT is immutable")


def _check_decision_update(mapper, connection, target):
    changes = changed_columns(target)
    if "value" in changes:
        old, _ = changes["value"]
        if old is not None and old != "pending":
            block("Decision", target, "UPDATE", f"decision already cast: {old}")


def _check_conflict_update(mapper, connection, target):
    changes = changed_columns(target)
    if "state" in changes:
        old, _ = changes["state"]
        if old in ("resolved", "rejected"):
            block("Conflict", target, "UPDATE", f"conflict is closed ({old})")


_registered: list[tuple[Any, str, Any]] = []
_kernel_registered = False


def _listen(target, event_name, fn) -> None:
    event.listen(target, event_name, fn)
    _registered.append((target, event_name, fn))


def register_immutability_listeners() -> None:
    """
    Register all immutability listeners (idempotent).

    Call once at application start-up, after the models are importable.
    """
    global _kernel_registered
    if _kernel_registered:
        return
    _kernel_registered = True

    from royalty_kernel.models.audit_entry import AuditEntry
    from royalty_kernel.models.conflict import Conflict, Decision
    from royalty_kernel.models.ledger import LedgerTransaction
    from royalty_kernel.models.ownership import OwnershipInterval
    from royalty_kernel.models.phonogram import Phonogram
    from royalty_kernel.models.productora import Productora

    for model, name in ((LedgerTransaction, "LedgerTransaction"), (AuditEntry, "AuditEntry")):
        check_update, check_delete = _append_only(name)
        _listen(model, "before_update", check_update)
        _listen(model, "before_delete", check_delete)

    _listen(OwnershipInterval, "before_update", _check_ownership_interval_update)
    _listen(OwnershipInterval, "before_delete", _never_deleted("OwnershipInterval"))

    _listen(Phonogram, "before_update", _check_phonogram_update)
    _listen(Phonogram, "before_delete", _never_deleted("Phonogram"))

    _listen(Productora, "before_update", _check_productora_update)
    _listen(Productora, "before_delete", _never_deleted("Productora"))

    _listen(Decision, "before_update", _check_decision_update)
    _listen(Decision, "before_delete", _never_deleted("Decision"))

    _listen(Conflict, "before_update", _check_conflict_update)
    _listen(Conflict, "before_delete", _never_deleted("Conflict"))

    logger.debug("immutability_listeners_registered", extra={"count": len(_registered)})


def register_listener(target, event_name, fn) -> None:
    """Register an additional immutability listener (used by outer packages)."""
    if (target, event_name, fn) not in _registered:
        _listen(target, event_name, fn)


def unregister_immutability_listeners() -> None:
    """Remove every listener registered here.  FOR TESTING ONLY."""
    global _kernel_registered
    _kernel_registered = False
    while _registered:
        target, event_name, fn = _registered.pop()
        if event.contains(target, event_name, fn):
            event.remove(target, event_name, fn)
