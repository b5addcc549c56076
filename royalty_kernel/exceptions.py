"""
Typed Exception Hierarchy for the Royalty Kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from RoyaltyKernelError:

    RoyaltyKernelError (base)
    |
    +-- NotFoundError
    |   +-- ProductoraNotFoundError
    |   +-- PhonogramNotFoundError
    |   +-- ConflictNotFoundError
    |   +-- InvolvedPartyNotFoundError
    |   +-- BatchNotFoundError
    |   +-- ReferencedTransactionNotFoundError
    |
    +-- ValidationError
    |   +-- MissingFieldError
    |   +-- InvalidTaxIdError
    |   +-- InvalidIsrcError
    |   +-- InvalidAmountError
    |   +-- InvalidPercentageError
    |   +-- InvalidIntervalError
    |   +-- DuplicateProductoraError
    |   +-- DuplicatePhonogramError
    |   +-- SameProductoraTransferError
    |
    +-- OwnershipError
    |   +-- OverAllocationError
    |   +-- UnresolvedOwnershipError
    |   +-- OwnershipDisputedError
    |
    +-- LedgerError
    |   +-- InsufficientFundsError
    |   +-- InsufficientPendingFundsError
    |   +-- DuplicatePostingError
    |   +-- ChainInconsistencyError          (fatal)
    |       +-- PostingHaltedError           (fatal)
    |
    +-- ConflictError
    |   +-- AlreadyDecidedError
    |   +-- ConflictClosedError
    |   +-- ConflictAlreadyOpenError
    |
    +-- BatchError
    |   +-- DuplicateBatchError              (fatal)
    |   +-- BatchCancelledError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError            (fatal)
    |
    +-- ImmutabilityViolationError           (fatal)
    |
    +-- ConfigurationError                   (fatal)

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Not found       | PRODUCTORA_NOT_FOUND        | No productora with that id / CUIT
                | PHONOGRAM_NOT_FOUND         | No phonogram with that id / ISRC
                | CONFLICT_NOT_FOUND          | Conflict id doesn't exist
                | INVOLVED_PARTY_NOT_FOUND    | Party isn't part of the conflict
                | BATCH_NOT_FOUND             | Batch id doesn't exist
                | REFERENCED_TXN_NOT_FOUND    | Rejection reference matches nothing
----------------|-----------------------------|-----------------------------------------
Validation      | MISSING_FIELD               | Required row field absent or blank
                | INVALID_TAX_ID              | CUIT is not 11 digits
                | INVALID_ISRC                | ISRC doesn't match its fixed format
                | INVALID_AMOUNT              | Not a decimal / wrong sign / >2 places
                | INVALID_PERCENTAGE          | Outside [0, 100] or >2 places
                | INVALID_INTERVAL            | Start does not precede end
                | DUPLICATE_PRODUCTORA        | CUIT already registered
                | DUPLICATE_PHONOGRAM         | ISRC already registered
                | SAME_PRODUCTORA_TRANSFER    | Transfer origin equals destination
----------------|-----------------------------|-----------------------------------------
Ownership       | OVER_ALLOCATION             | Active shares would exceed 100%
                | UNRESOLVED_OWNERSHIP        | Nobody owns the phonogram on that date
                | OWNERSHIP_DISPUTED          | Open conflict covers the date
----------------|-----------------------------|-----------------------------------------
Ledger          | INSUFFICIENT_FUNDS          | Debit would leave a negative balance
                | INSUFFICIENT_PENDING_FUNDS  | Pending pool can't cover a release
                | DUPLICATE_POSTING           | (batch, row, productora) already posted
                | CHAIN_INCONSISTENCY         | Cached balance / snapshots diverge
                | POSTING_HALTED              | Productora awaits manual reconciliation
----------------|-----------------------------|-----------------------------------------
Conflict        | ALREADY_DECIDED             | Party already cast a decision
                | CONFLICT_CLOSED             | Conflict is RESOLVED or REJECTED
                | CONFLICT_ALREADY_OPEN       | Phonogram already has a live conflict
----------------|-----------------------------|-----------------------------------------
Batch           | DUPLICATE_BATCH             | Same kind + checksum already ingested
                | BATCH_CANCELLED             | Worker stopped before the batch ran
----------------|-----------------------------|-----------------------------------------
Audit           | AUDIT_CHAIN_BROKEN          | Audit hash chain validation failed
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying an append-only record
Configuration   | CONFIGURATION_ERROR         | Invalid YAML configuration

===============================================================================
HANDLING PATTERNS
===============================================================================

Row processing inside a batch catches RoyaltyKernelError and records
``exc.code`` and ``exc.reason`` against the rejected row, unless ``exc.fatal``
is set, in which case the error propagates and fails the whole batch:

    try:
        handler.apply(row)
    except RoyaltyKernelError as e:
        if e.fatal:
            raise
        reject(row, code=e.code, reason=e.reason)

Every exception stores its context as attributes so it survives logging
(the JSON formatter emits them as ``exc_<name>`` fields).
"""


class RoyaltyKernelError(Exception):
    """
    Base exception for all royalty kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    identification.  ``fatal`` errors are never downgraded to a row rejection.
    """

    code: str = "ROYALTY_KERNEL_ERROR"
    fatal: bool = False

    @property
    def reason(self) -> str:
        """Short human-readable reason, recorded against rejected rows."""
        return str(self)


# Not-found exceptions


class NotFoundError(RoyaltyKernelError):
    """Base exception for a referenced entity that does not exist."""

    code: str = "NOT_FOUND"


class ProductoraNotFoundError(NotFoundError):
    """No productora matches the given id or tax id."""

    code: str = "PRODUCTORA_NOT_FOUND"

    def __init__(self, productora_id: str | None = None, cuit: str | None = None):
        self.productora_id = productora_id
        self.cuit = cuit
        super().__init__(f"Productora not found: {cuit or productora_id}")

    @property
    def reason(self) -> str:
        return "productora not found"


class PhonogramNotFoundError(NotFoundError):
    """No phonogram matches the given id or ISRC."""

    code: str = "PHONOGRAM_NOT_FOUND"

    def __init__(self, phonogram_id: str | None = None, isrc: str | None = None):
        self.phonogram_id = phonogram_id
        self.isrc = isrc
        super().__init__(f"Phonogram not found: {isrc or phonogram_id}")

    @property
    def reason(self) -> str:
        return "phonogram not found"


class ConflictNotFoundError(NotFoundError):
    """Conflict with given ID was not found."""

    code: str = "CONFLICT_NOT_FOUND"

    def __init__(self, conflict_id: str):
        self.conflict_id = conflict_id
        super().__init__(f"Conflict not found: {conflict_id}")


class InvolvedPartyNotFoundError(NotFoundError):
    """The involved party does not belong to the conflict."""

    code: str = "INVOLVED_PARTY_NOT_FOUND"

    def __init__(self, conflict_id: str, involved_party_id: str):
        self.conflict_id = conflict_id
        self.involved_party_id = involved_party_id
        super().__init__(
            f"Involved party {involved_party_id} not found in conflict {conflict_id}"
        )


class BatchNotFoundError(NotFoundError):
    """Batch with given ID was not found."""

    code: str = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(f"Batch not found: {batch_id}")


class ReferencedTransactionNotFoundError(NotFoundError):
    """A row references a ledger transaction that does not exist."""

    code: str = "REFERENCED_TXN_NOT_FOUND"

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"No ledger transaction with reference: {reference}")

    @property
    def reason(self) -> str:
        return "referenced transaction not found"


# Validation exceptions


class ValidationError(RoyaltyKernelError):
    """Base exception for malformed input fields."""

    code: str = "VALIDATION_ERROR"


class MissingFieldError(ValidationError):
    """A required field is absent or blank."""

    code: str = "MISSING_FIELD"

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Missing required field: {field}")


class InvalidTaxIdError(ValidationError):
    """CUIT is not exactly eleven digits."""

    code: str = "INVALID_TAX_ID"

    def __init__(self, value: object):
        self.value = str(value)
        super().__init__(f"Invalid CUIT (expected 11 digits): {value!r}")

    @property
    def reason(self) -> str:
        return "invalid tax id"


class InvalidIsrcError(ValidationError):
    """ISRC does not match CCXXXYYNNNNN."""

    code: str = "INVALID_ISRC"

    def __init__(self, value: object):
        self.value = str(value)
        super().__init__(f"Invalid ISRC: {value!r}")

    @property
    def reason(self) -> str:
        return "invalid isrc"


class InvalidAmountError(ValidationError):
    """Amount is not a decimal, has the wrong sign, or more than 2 places."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, value: object, detail: str):
        self.value = str(value)
        self.detail = detail
        super().__init__(f"Invalid amount {value!r}: {detail}")

    @property
    def reason(self) -> str:
        return f"invalid amount: {self.detail}"


class InvalidPercentageError(ValidationError):
    """Percentage outside [0, 100] or with more than 2 decimal places."""

    code: str = "INVALID_PERCENTAGE"

    def __init__(self, value: object):
        self.value = str(value)
        super().__init__(f"Invalid percentage: {value!r}")

    @property
    def reason(self) -> str:
        return "invalid percentage"


class InvalidIntervalError(ValidationError):
    """An ownership interval's start does not precede its end."""

    code: str = "INVALID_INTERVAL"

    def __init__(self, start_date: str, end_date: str):
        self.start_date = start_date
        self.end_date = end_date
        super().__init__(f"Interval start {start_date} must precede end {end_date}")


class DuplicateProductoraError(ValidationError):
    """A productora with this CUIT already exists."""

    code: str = "DUPLICATE_PRODUCTORA"

    def __init__(self, cuit: str):
        self.cuit = cuit
        super().__init__(f"Productora already registered for CUIT {cuit}")


class DuplicatePhonogramError(ValidationError):
    """A phonogram with this ISRC already exists."""

    code: str = "DUPLICATE_PHONOGRAM"

    def __init__(self, isrc: str):
        self.isrc = isrc
        super().__init__(f"Phonogram already registered for ISRC {isrc}")


class SameProductoraTransferError(ValidationError):
    """Transfer origin and destination are the same productora."""

    code: str = "SAME_PRODUCTORA_TRANSFER"

    def __init__(self, productora_id: str):
        self.productora_id = productora_id
        super().__init__(f"Transfer origin and destination are both {productora_id}")

    @property
    def reason(self) -> str:
        return "origin and destination are the same productora"


# Ownership exceptions


class OwnershipError(RoyaltyKernelError):
    """Base exception for ownership interval errors."""

    code: str = "OWNERSHIP_ERROR"


class OverAllocationError(OwnershipError):
    """Active ownership for a phonogram would exceed 100%."""

    code: str = "OVER_ALLOCATION"

    def __init__(self, phonogram_id: str, at_date: str, total_percentage: str):
        self.phonogram_id = phonogram_id
        self.at_date = at_date
        self.total_percentage = total_percentage
        super().__init__(
            f"Ownership of phonogram {phonogram_id} would reach "
            f"{total_percentage}% on {at_date}"
        )

    @property
    def reason(self) -> str:
        return "ownership would exceed 100%"


class UnresolvedOwnershipError(OwnershipError):
    """No productora holds an active share of the phonogram on the date."""

    code: str = "UNRESOLVED_OWNERSHIP"

    def __init__(self, phonogram_id: str, at_date: str):
        self.phonogram_id = phonogram_id
        self.at_date = at_date
        super().__init__(f"No active ownership for phonogram {phonogram_id} on {at_date}")

    @property
    def reason(self) -> str:
        return "no resolvable ownership"


class OwnershipDisputedError(OwnershipError):
    """A live conflict covers the phonogram on the date."""

    code: str = "OWNERSHIP_DISPUTED"

    def __init__(self, phonogram_id: str, conflict_id: str):
        self.phonogram_id = phonogram_id
        self.conflict_id = conflict_id
        super().__init__(
            f"Ownership of phonogram {phonogram_id} is disputed by conflict {conflict_id}"
        )

    @property
    def reason(self) -> str:
        return "ownership under dispute"


# Ledger exceptions


class LedgerError(RoyaltyKernelError):
    """Base exception for ledger posting errors."""

    code: str = "LEDGER_ERROR"


class InsufficientFundsError(LedgerError):
    """A debit-type posting would leave the balance negative."""

    code: str = "INSUFFICIENT_FUNDS"

    def __init__(self, productora_id: str, balance: str, amount: str):
        self.productora_id = productora_id
        self.balance = balance
        self.amount = amount
        super().__init__(
            f"Insufficient funds for productora {productora_id}: "
            f"balance {balance}, posting {amount}"
        )

    @property
    def reason(self) -> str:
        return "insufficient funds"


class InsufficientPendingFundsError(LedgerError):
    """The pending settlement pool of a phonogram cannot cover a release."""

    code: str = "INSUFFICIENT_PENDING_FUNDS"

    def __init__(self, isrc: str, available: str):
        self.isrc = isrc
        self.available = available
        super().__init__(f"Pending pool for {isrc} holds only {available}")

    @property
    def reason(self) -> str:
        return "no pending funds to release"


class DuplicatePostingError(LedgerError):
    """The (batch, row, productora) key has already been posted."""

    code: str = "DUPLICATE_POSTING"

    def __init__(self, batch_id: str, row_ordinal: int, productora_id: str):
        self.batch_id = batch_id
        self.row_ordinal = row_ordinal
        self.productora_id = productora_id
        super().__init__(
            f"Row {row_ordinal} of batch {batch_id} already posted to {productora_id}"
        )


class ChainInconsistencyError(LedgerError):
    """
    The cached balance or the snapshot chain diverges from recomputation.

    Fatal: the productora must not receive further posts until reconciled.
    """

    code: str = "CHAIN_INCONSISTENCY"
    fatal: bool = True

    def __init__(self, productora_id: str, expected: str, actual: str, detail: str = ""):
        self.productora_id = productora_id
        self.expected = expected
        self.actual = actual
        self.detail = detail
        message = (
            f"Ledger chain inconsistent for productora {productora_id}: "
            f"expected {expected}, found {actual}"
        )
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class PostingHaltedError(ChainInconsistencyError):
    """The productora is halted pending manual reconciliation."""

    code: str = "POSTING_HALTED"

    def __init__(self, productora_id: str, halted_reason: str | None):
        super().__init__(
            productora_id,
            expected="reconciled",
            actual="halted",
            detail=halted_reason or "",
        )


# Conflict exceptions


class ConflictError(RoyaltyKernelError):
    """Base exception for conflict workflow errors."""

    code: str = "CONFLICT_ERROR"


class AlreadyDecidedError(ConflictError):
    """The involved party already cast a non-pending decision."""

    code: str = "ALREADY_DECIDED"

    def __init__(self, involved_party_id: str, decision: str):
        self.involved_party_id = involved_party_id
        self.decision = decision
        super().__init__(f"Involved party {involved_party_id} already decided: {decision}")


class ConflictClosedError(ConflictError):
    """The conflict is already RESOLVED or REJECTED."""

    code: str = "CONFLICT_CLOSED"

    def __init__(self, conflict_id: str, state: str):
        self.conflict_id = conflict_id
        self.state = state
        super().__init__(f"Conflict {conflict_id} is closed ({state})")


class ConflictAlreadyOpenError(ConflictError):
    """The phonogram already has a non-terminal conflict."""

    code: str = "CONFLICT_ALREADY_OPEN"

    def __init__(self, phonogram_id: str, conflict_id: str):
        self.phonogram_id = phonogram_id
        self.conflict_id = conflict_id
        super().__init__(
            f"Phonogram {phonogram_id} already has an open conflict: {conflict_id}"
        )


# Batch exceptions


class BatchError(RoyaltyKernelError):
    """Base exception for batch ingestion errors."""

    code: str = "BATCH_ERROR"


class DuplicateBatchError(BatchError):
    """A batch with the same kind and checksum was already ingested."""

    code: str = "DUPLICATE_BATCH"
    fatal: bool = True

    def __init__(self, kind: str, checksum: str, existing_batch_id: str):
        self.kind = kind
        self.checksum = checksum
        self.existing_batch_id = existing_batch_id
        super().__init__(
            f"Duplicate {kind} batch (checksum {checksum[:12]}...) "
            f"already ingested as {existing_batch_id}"
        )


class BatchCancelledError(BatchError):
    """The batch was cancelled before its worker started."""

    code: str = "BATCH_CANCELLED"

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"Batch of kind {kind} was cancelled before it started")


# Audit exceptions


class AuditError(RoyaltyKernelError):
    """Base exception for audit trail errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """An audit entry hash does not match its recomputation."""

    code: str = "AUDIT_CHAIN_BROKEN"
    fatal: bool = True

    def __init__(self, seq: int, expected_hash: str, actual_hash: str):
        self.seq = seq
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at entry {seq}: expected {expected_hash[:16]}..., "
            f"found {actual_hash[:16]}..."
        )


# Immutability and configuration


class ImmutabilityViolationError(RoyaltyKernelError):
    """An append-only record was modified or deleted."""

    code: str = "IMMUTABILITY_VIOLATION"
    fatal: bool = True

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.violation = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")


class ConfigurationError(RoyaltyKernelError):
    """The YAML configuration is invalid."""

    code: str = "CONFIGURATION_ERROR"
    fatal: bool = True

    def __init__(self, path: str, detail: str):
        self.path = path
        self.detail = detail
        super().__init__(f"Invalid configuration at {path}: {detail}")
