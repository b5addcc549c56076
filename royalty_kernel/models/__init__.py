"""ORM models for the royalty kernel."""

from royalty_kernel.models.audit_entry import AuditEntry, AuditOperation
from royalty_kernel.models.conflict import Conflict, Decision, InvolvedParty
from royalty_kernel.models.ledger import LedgerTransaction
from royalty_kernel.models.ownership import OwnershipInterval
from royalty_kernel.models.pending_settlement import PendingSettlement
from royalty_kernel.models.phonogram import Phonogram
from royalty_kernel.models.productora import Productora
from royalty_kernel.models.sequence import SequenceCounter

__all__ = [
    "AuditEntry",
    "AuditOperation",
    "Conflict",
    "Decision",
    "InvolvedParty",
    "LedgerTransaction",
    "OwnershipInterval",
    "PendingSettlement",
    "Phonogram",
    "Productora",
    "SequenceCounter",
]
