"""Kernel services.  None of them commit."""

from royalty_kernel.services.attribution_service import AttributionService
from royalty_kernel.services.auditor_service import AuditorService
from royalty_kernel.services.conflict_service import ConflictService
from royalty_kernel.services.ledger_service import LedgerService
from royalty_kernel.services.notification import (
    CollectingSink,
    LedgerNotification,
    NotificationSink,
    PostCommitNotifier,
)
from royalty_kernel.services.ownership_service import OwnershipService
from royalty_kernel.services.registry_service import RegistryService
from royalty_kernel.services.sequence_service import SequenceService

__all__ = [
    "AttributionService",
    "AuditorService",
    "CollectingSink",
    "ConflictService",
    "LedgerNotification",
    "LedgerService",
    "NotificationSink",
    "OwnershipService",
    "PostCommitNotifier",
    "RegistryService",
    "SequenceService",
]
