"""Read-only query selectors for the royalty kernel."""

from royalty_kernel.selectors.audit_selector import AuditRecord, AuditSelector
from royalty_kernel.selectors.conflict_selector import ConflictSelector
from royalty_kernel.selectors.ledger_selector import (
    HistoryFilters,
    LedgerHistory,
    LedgerSelector,
)

__all__ = [
    "AuditRecord",
    "AuditSelector",
    "ConflictSelector",
    "HistoryFilters",
    "LedgerHistory",
    "LedgerSelector",
]
