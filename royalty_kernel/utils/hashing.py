"""
Deterministic hashing utilities.

Audit entries and batch checksums must hash identically for identical
content, whatever the key order or Decimal scale of the input.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        # 600, 600.0 and 600.00 hash the same
        return format(obj.normalize(), "f")
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, bytes):
        return obj.hex()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: Any) -> str:
    """
    Convert data to a canonical JSON string.

    Keys are sorted, there is no whitespace, and Decimal / datetime / UUID
    values are rendered consistently.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def to_json_safe(data: Any) -> Any:
    """Round-trip ``data`` through canonical JSON so it fits a JSON column."""
    return json.loads(canonicalize_json(data))


def hash_payload(payload: Any) -> str:
    """Hex-encoded SHA-256 of the canonical JSON form of ``payload``."""
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_audit_entry(
    table_name: str,
    entity_id: str,
    operation: str,
    before: Mapping[str, Any] | None,
    after: Mapping[str, Any] | None,
    prev_hash: str | None,
) -> str:
    """
    Compute the chained hash of an audit entry.

    Args:
        table_name: Table of the audited entity.
        entity_id: ID of the entity.
        operation: Operation being recorded.
        before: Row state before the mutation (None on insert).
        after: Row state after the mutation.
        prev_hash: Hash of the same entity's previous audit entry (None for
            its first entry).

    Returns:
        Hex-encoded SHA-256 hash.
    """
    components = [
        table_name,
        str(entity_id),
        operation,
        hash_payload(before) if before is not None else "NONE",
        hash_payload(after) if after is not None else "NONE",
        prev_hash or "GENESIS",
    ]
    data = "|".join(components)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def hash_rows(kind: str, rows: Iterable[Mapping[str, Any]]) -> str:
    """
    Checksum of a batch: its kind plus every row in submission order.

    Used for the optional cross-batch duplicate check.
    """
    return hash_payload({"kind": kind, "rows": [dict(row) for row in rows]})
