"""
RowHandler protocol, RowContext, and HandlerRegistry.

Contract:
    ``RowHandler`` defines the interface every batch kind implements: apply
    ONE decoded row inside the SAVEPOINT the engine opened for it.
    ``HandlerRegistry`` stores handlers keyed by ``BatchKind``.

Architecture:
    royalty_batch/handlers.  Handlers call kernel services; they never
    commit, roll back or open savepoints themselves.

Error contract:
    A handler signals a bad row by raising a RoyaltyKernelError.  The engine
    rolls the row's SAVEPOINT back and records ``exc.code`` / ``exc.reason``
    unless ``exc.fatal`` is set.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy.orm import Session

from royalty_batch.domain.types import BatchKind, RowOutcome, UnresolvedSettlementPolicy
from royalty_kernel.selectors.ledger_selector import LedgerSelector
from royalty_kernel.services.conflict_service import ConflictService
from royalty_kernel.services.ledger_service import LedgerService
from royalty_kernel.services.ownership_service import OwnershipService
from royalty_kernel.services.registry_service import RegistryService


@dataclass(frozen=True)
class RowContext:
    """Everything a handler needs to apply one row."""

    session: Session
    batch_id: UUID
    row_ordinal: int
    actor_id: UUID
    batch_date: date
    registry: RegistryService
    ledger: LedgerService
    ownership: OwnershipService
    conflicts: ConflictService
    ledger_selector: LedgerSelector
    unresolved_settlement_policy: UnresolvedSettlementPolicy = UnresolvedSettlementPolicy.REJECT

    @property
    def memo(self) -> str:
        return f"batch {self.batch_id} row {self.row_ordinal}"


@runtime_checkable
class RowHandler(Protocol):
    """Applies rows of one batch kind."""

    @property
    def kind(self) -> BatchKind: ...

    def apply(self, row: Mapping[str, Any], ctx: RowContext) -> RowOutcome:
        """
        Apply one row.

        Raises:
            RoyaltyKernelError: the row cannot be applied.  Non-fatal errors
                reject the row; fatal ones abort the batch.
        """
        ...


class HandlerRegistry:
    """
    Registry mapping batch kinds to handlers.

    Contract:
        - ``register()`` adds a handler; raises ValueError on duplicate.
        - ``get()`` retrieves by kind; raises KeyError if missing.
    """

    def __init__(self) -> None:
        self._handlers: dict[BatchKind, RowHandler] = {}

    def register(self, handler: RowHandler) -> None:
        kind = BatchKind(handler.kind)
        if kind in self._handlers:
            raise ValueError(f"Handler for batch kind '{kind.value}' is already registered")
        self._handlers[kind] = handler

    def get(self, kind: BatchKind | str) -> RowHandler:
        try:
            return self._handlers[BatchKind(kind)]
        except KeyError:
            raise KeyError(
                f"No handler registered for batch kind '{kind}'. "
                f"Available: {sorted(k.value for k in self._handlers)}"
            ) from None

    def kinds(self) -> tuple[BatchKind, ...]:
        return tuple(sorted(self._handlers, key=lambda k: k.value))

    def __contains__(self, kind: object) -> bool:
        try:
            return BatchKind(kind) in self._handlers
        except ValueError:
            return False

    def __len__(self) -> int:
        return len(self._handlers)
