"""
LedgerService -- the Ledger.

Responsibility:
    Appends balance movements to a productora's chain and keeps the cached
    balance on Productora aligned with the latest snapshot.  Also owns the
    pending settlement pool (unattributed settlement money per phonogram),
    chain verification, halting and manual reconciliation.

Architecture position:
    Kernel > Services.  Called by the batch handlers and by administrative
    callers.  Reads through LedgerSelector; records every mutation through
    AuditorService; queues post-commit notifications on PostCommitNotifier.

Invariants enforced:
    - Serialized posting per productora: the productora row is locked
      ``SELECT ... FOR UPDATE`` before the latest snapshot is read, so two
      concurrent posts never compute from the same snapshot.
    - balance_after(n) = balance_after(n-1) + amount(n); the first snapshot
      equals its own amount.  Chain positions are gap-free.
    - Cached balance == latest snapshot.  Checked before every post; a
      mismatch raises ChainInconsistencyError and nothing is written.
    - Payments and outgoing transfer legs never take the balance below zero.
    - (batch_id, row_ordinal, productora_id) posts at most once.

Lock ordering (all callers):
    productoras in ascending id order, then the phonogram, then its pending
    pool.  The audit counter is always locked last, by the first audited
    write, so every multi-entity operation takes its locks up front.

Failure modes:
    - ProductoraNotFoundError, InvalidAmountError, InsufficientFundsError,
      DuplicatePostingError (row-level, not fatal).
    - ChainInconsistencyError, PostingHaltedError (fatal).
    - InsufficientPendingFundsError when a pending pool cannot cover a release.
"""

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from royalty_kernel.domain.clock import Clock
from royalty_kernel.domain.types import (
    ChainReport,
    LedgerTransactionInfo,
    TransactionKind,
)
from royalty_kernel.domain.values import (
    HUNDRED,
    ZERO,
    parse_amount,
    parse_percentage,
    round_money,
)
from royalty_kernel.exceptions import (
    ChainInconsistencyError,
    DuplicatePostingError,
    InsufficientFundsError,
    InsufficientPendingFundsError,
    InvalidAmountError,
    PhonogramNotFoundError,
    PostingHaltedError,
    ProductoraNotFoundError,
    SameProductoraTransferError,
)
from royalty_kernel.logging_config import get_logger
from royalty_kernel.models.ledger import LedgerTransaction
from royalty_kernel.models.pending_settlement import PendingSettlement
from royalty_kernel.models.phonogram import Phonogram
from royalty_kernel.models.productora import Productora
from royalty_kernel.selectors.ledger_selector import (
    HistoryFilters,
    LedgerHistory,
    LedgerSelector,
)
from royalty_kernel.services.auditor_service import AuditorService
from royalty_kernel.services.base import BaseService
from royalty_kernel.services.notification import LedgerNotification, PostCommitNotifier

logger = get_logger("services.ledger")

# Kinds whose negative legs must leave a non-negative balance
_NON_NEGATIVE_KINDS = frozenset({TransactionKind.PAYMENT, TransactionKind.TRANSFER})


def _check_sign(kind: TransactionKind, amount: Decimal) -> None:
    if kind == TransactionKind.SETTLEMENT and amount <= 0:
        raise InvalidAmountError(amount, "settlements must be positive")
    if kind == TransactionKind.REJECTION and amount <= 0:
        raise InvalidAmountError(amount, "rejections must be positive")
    if kind == TransactionKind.PAYMENT and amount >= 0:
        raise InvalidAmountError(amount, "payments must be negative")
    if kind == TransactionKind.TRANSFER and amount == 0:
        raise InvalidAmountError(amount, "must be non-zero")


class LedgerService(BaseService[LedgerTransaction]):
    """
    Balance-chained posting for productoras.

    Non-goals:
        - Does NOT commit.  The caller's transaction (or the batch engine's
          row SAVEPOINT) decides whether a post survives.
        - Does NOT decide who owns a settlement; the settlement handler
          resolves ownership and calls ``post`` once per receiving productora.
    """

    def __init__(
        self,
        session: Session,
        auditor: AuditorService | None = None,
        clock: Clock | None = None,
        notifier: PostCommitNotifier | None = None,
        halt_on_inconsistency: bool = True,
    ):
        super().__init__(session, clock)
        self._auditor = auditor or AuditorService(session, self.clock)
        self._selector = LedgerSelector(session)
        self._notifier = notifier
        self._halt_on_inconsistency = halt_on_inconsistency

    # Locking

    def lock_productoras(self, productora_ids: Iterable[UUID]) -> dict[UUID, Productora]:
        """
        Lock productora rows FOR UPDATE in ascending id order.

        Raises:
            ProductoraNotFoundError: for the first id that does not exist.
        """
        locked: dict[UUID, Productora] = {}
        for productora_id in sorted(set(productora_ids), key=str):
            productora = self.session.execute(
                select(Productora)
                .where(Productora.id == productora_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if productora is None:
                raise ProductoraNotFoundError(productora_id=str(productora_id))
            locked[productora_id] = productora
        return locked

    def lock_pending_pool(self, phonogram_id: UUID, actor_id: UUID) -> PendingSettlement:
        """
        Lock the phonogram row, then return its pending pool (created empty
        on first use).
        """
        phonogram = self.session.execute(
            select(Phonogram).where(Phonogram.id == phonogram_id).with_for_update()
        ).scalar_one_or_none()
        if phonogram is None:
            raise PhonogramNotFoundError(phonogram_id=str(phonogram_id))

        pool = self.session.execute(
            select(PendingSettlement)
            .where(PendingSettlement.phonogram_id == phonogram_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if pool is None:
            pool = PendingSettlement(
                phonogram_id=phonogram_id,
                amount=ZERO,
                created_by_id=actor_id,
            )
            self.session.add(pool)
            self._auditor.record_created(pool, actor_id)
        return pool

    # Posting

    def post(
        self,
        productora_id: UUID,
        kind: TransactionKind,
        amount: Decimal,
        memo: str | None,
        batch_id: UUID | None,
        actor_id: UUID,
        reference: str | None = None,
        row_ordinal: int | None = None,
    ) -> LedgerTransactionInfo:
        """
        Append one signed movement to the productora's chain.

        Locks the productora, checks the cached balance against the latest
        snapshot, writes the transaction, updates the cached balance and
        audits both writes.
        """
        productora = self.lock_productoras([productora_id])[productora_id]
        return self._post_locked(
            productora, kind, amount, memo, batch_id, actor_id, reference, row_ordinal
        )

    def transfer(
        self,
        origin_id: UUID,
        destination_id: UUID,
        amount: Decimal,
        memo: str | None,
        batch_id: UUID | None,
        actor_id: UUID,
        reference: str | None = None,
        row_ordinal: int | None = None,
    ) -> tuple[LedgerTransactionInfo, LedgerTransactionInfo]:
        """Move ``amount`` from origin to destination.  Returns (out, in) legs."""
        value = parse_amount(amount)
        if origin_id == destination_id:
            raise SameProductoraTransferError(str(origin_id))

        locked = self.lock_productoras([origin_id, destination_id])
        out_leg = self._post_locked(
            locked[origin_id], TransactionKind.TRANSFER, -value,
            memo, batch_id, actor_id, reference, row_ordinal,
        )
        in_leg = self._post_locked(
            locked[destination_id], TransactionKind.TRANSFER, value,
            memo, batch_id, actor_id, reference, row_ordinal,
        )
        return out_leg, in_leg

    def adjust_to(
        self,
        productora_id: UUID,
        target_balance: Decimal,
        memo: str | None,
        batch_id: UUID | None,
        actor_id: UUID,
        reference: str | None = None,
        row_ordinal: int | None = None,
    ) -> LedgerTransactionInfo:
        """
        Bring the balance to ``target_balance`` with one adjustment.

        The posted amount is target - current and may be zero, so the
        correction is on record even when it changes nothing.
        """
        target = parse_amount(target_balance, allow_zero=True)
        productora = self.lock_productoras([productora_id])[productora_id]
        delta = target - productora.balance
        return self._post_locked(
            productora, TransactionKind.ADJUSTMENT, delta,
            memo, batch_id, actor_id, reference, row_ordinal,
        )

    def _post_locked(
        self,
        productora: Productora,
        kind: TransactionKind,
        amount: Decimal,
        memo: str | None,
        batch_id: UUID | None,
        actor_id: UUID,
        reference: str | None,
        row_ordinal: int | None,
    ) -> LedgerTransactionInfo:
        kind = TransactionKind(kind)
        amount = parse_amount(amount, allow_zero=True, allow_negative=True)
        _check_sign(kind, amount)

        if productora.posting_halted:
            raise PostingHaltedError(str(productora.id), productora.halted_reason)

        last_sequence, last_snapshot = self._selector.last_position(productora.id)
        if productora.balance != last_snapshot or productora.last_sequence != last_sequence:
            logger.critical(
                "ledger_chain_inconsistent",
                extra={
                    "productora_id": str(productora.id),
                    "cached_balance": str(productora.balance),
                    "last_snapshot": str(last_snapshot),
                },
            )
            raise ChainInconsistencyError(
                str(productora.id),
                expected=str(last_snapshot),
                actual=str(productora.balance),
                detail="cached balance does not match the latest snapshot",
            )

        if batch_id is not None and row_ordinal is not None:
            self._check_not_posted(batch_id, row_ordinal, productora.id)

        new_balance = last_snapshot + amount
        if amount < 0 and kind in _NON_NEGATIVE_KINDS and new_balance < 0:
            raise InsufficientFundsError(str(productora.id), str(last_snapshot), str(amount))

        txn = LedgerTransaction(
            productora_id=productora.id,
            sequence=last_sequence + 1,
            kind=kind.value,
            amount=amount,
            balance_after=new_balance,
            memo=memo,
            reference=reference,
            batch_id=batch_id,
            row_ordinal=row_ordinal,
            posted_at=self.clock.now(),
            created_by_id=actor_id,
        )
        self.session.add(txn)
        self._auditor.record_created(txn, actor_id)

        with self._auditor.mutation(productora, actor_id):
            productora.balance = new_balance
            productora.last_sequence = txn.sequence

        if self._notifier is not None:
            self._notifier.enqueue(
                self.session,
                LedgerNotification(
                    productora_id=productora.id,
                    event_kind=kind.value,
                    amount=amount,
                    transaction_id=txn.id,
                    batch_id=batch_id,
                ),
            )

        logger.info(
            "ledger_posted",
            extra={
                "productora_id": str(productora.id),
                "kind": kind.value,
                "amount": str(amount),
                "balance_after": str(new_balance),
                "sequence": txn.sequence,
            },
        )
        return txn.to_dto()

    def _check_not_posted(self, batch_id: UUID, row_ordinal: int, productora_id: UUID) -> None:
        existing = self.session.execute(
            select(LedgerTransaction.id).where(
                LedgerTransaction.batch_id == batch_id,
                LedgerTransaction.row_ordinal == row_ordinal,
                LedgerTransaction.productora_id == productora_id,
            )
        ).first()
        if existing is not None:
            raise DuplicatePostingError(str(batch_id), row_ordinal, str(productora_id))

    # Pending settlement pool

    def hold_pending(
        self,
        pool: PendingSettlement,
        amount: Decimal,
        actor_id: UUID,
    ) -> Decimal:
        """Add unattributed money to a pool locked by ``lock_pending_pool``."""
        value = parse_amount(amount)
        with self._auditor.mutation(pool, actor_id):
            pool.amount = pool.amount + value
        logger.info(
            "settlement_held_pending",
            extra={"phonogram_id": str(pool.phonogram_id), "amount": str(value)},
        )
        return pool.amount

    def release_pending(
        self,
        phonogram_id: UUID,
        percentage: Decimal,
        destination_id: UUID,
        memo: str | None,
        batch_id: UUID | None,
        actor_id: UUID,
        reference: str | None = None,
        row_ordinal: int | None = None,
    ) -> LedgerTransactionInfo:
        """
        Transfer ``percentage`` of the phonogram's pending pool to a productora.

        Raises:
            InsufficientPendingFundsError: the pool is empty, or the share
                rounds to less than a cent.
        """
        pct = parse_percentage(percentage)
        destination = self.lock_productoras([destination_id])[destination_id]
        pool = self.lock_pending_pool(phonogram_id, actor_id)

        released = round_money(pool.amount * pct / HUNDRED)
        if released <= 0:
            isrc = self.session.get(Phonogram, phonogram_id).isrc
            raise InsufficientPendingFundsError(isrc, str(pool.amount))

        with self._auditor.mutation(pool, actor_id):
            pool.amount = pool.amount - released

        return self._post_locked(
            destination, TransactionKind.TRANSFER, released,
            memo, batch_id, actor_id, reference, row_ordinal,
        )

    # Reads

    def current_balance(self, productora_id: UUID) -> Decimal:
        productora = self.session.get(Productora, productora_id)
        if productora is None:
            raise ProductoraNotFoundError(productora_id=str(productora_id))
        return productora.balance

    def history(
        self,
        productora_id: UUID,
        filters: HistoryFilters | None = None,
    ) -> LedgerHistory:
        if self.session.get(Productora, productora_id) is None:
            raise ProductoraNotFoundError(productora_id=str(productora_id))
        return self._selector.history(productora_id, filters)

    # Integrity

    def verify_chain(self, productora_id: UUID, actor_id: UUID) -> ChainReport:
        """
        Recompute the productora's chain.

        An inconsistent chain halts further posting for the productora
        (unless halting is disabled); the report is returned either way.
        """
        report = self._selector.chain_report(productora_id)
        if not report.is_consistent:
            logger.critical(
                "ledger_chain_verification_failed",
                extra={
                    "productora_id": str(productora_id),
                    "recomputed_balance": str(report.recomputed_balance),
                    "last_snapshot": str(report.last_snapshot),
                    "cached_balance": str(report.cached_balance),
                    "first_break_sequence": report.first_break_sequence,
                },
            )
            if self._halt_on_inconsistency:
                self.halt(productora_id, "chain verification failed", actor_id)
        return report

    def halt(self, productora_id: UUID, reason: str, actor_id: UUID) -> None:
        productora = self.lock_productoras([productora_id])[productora_id]
        if productora.posting_halted:
            return
        with self._auditor.mutation(productora, actor_id):
            productora.posting_halted = True
            productora.halted_reason = reason
        logger.critical(
            "ledger_posting_halted",
            extra={"productora_id": str(productora_id), "halted_reason": reason},
        )

    def reconcile(self, productora_id: UUID, actor_id: UUID) -> ChainReport:
        """
        Realign the cached balance with the last snapshot and resume posting.

        Only the cached columns are repaired.  A broken snapshot chain needs
        offsetting transactions entered by an operator, so it is refused.

        Raises:
            ChainInconsistencyError: the stored chain itself does not verify.
        """
        productora = self.lock_productoras([productora_id])[productora_id]
        report = self._selector.chain_report(productora_id)
        if (
            report.first_break_sequence is not None
            or report.recomputed_balance != report.last_snapshot
        ):
            raise ChainInconsistencyError(
                str(productora_id),
                expected=str(report.recomputed_balance),
                actual=str(report.last_snapshot),
                detail=f"snapshot chain breaks at sequence {report.first_break_sequence}",
            )

        with self._auditor.mutation(productora, actor_id):
            productora.balance = report.last_snapshot
            productora.last_sequence = report.transaction_count
            productora.posting_halted = False
            productora.halted_reason = None

        logger.warning(
            "ledger_reconciled",
            extra={
                "productora_id": str(productora_id),
                "balance": str(report.last_snapshot),
            },
        )
        return self._selector.chain_report(productora_id)
