"""
ReconciliationEngine -- SAVEPOINT-per-row batch ingestion.

Contract:
    ``ingest(kind, rows, actor_id)`` opens a Batch, applies every row through
    the handler of its kind, and returns a BatchResult that distinguishes
    full success, partial success (itemized rejected rows) and total
    failure.

Architecture: royalty_batch/services.  Imports from royalty_batch.domain,
    royalty_batch.models, royalty_batch.handlers and kernel services.

Invariants enforced:
    - Each row runs in its own SAVEPOINT: a rejected row leaves no trace
      but its BatchRejectedRow, and never aborts the batch.
    - Rows are applied sequentially in submission order, so pro-rata
      settlements and rejection reports are deterministic.
    - Each row maps to at most one ledger post per productora, keyed by
      (batch id, row ordinal, productora).
    - Non-fatal RoyaltyKernelErrors become rejected rows.  Fatal errors
      (chain inconsistency, immutability violation) and unexpected
      exceptions propagate and fail the whole operation.
    - ``checkpoint`` (typically ``session.commit``) runs after every row, so
      a cancelled or aborted run keeps the rows it already applied.
    - batch_number is allocated by SequenceService; all timestamps come
      from the injected Clock.

Non-goals:
    - Does NOT commit by itself; the caller (or ``checkpoint``) does.
    - Does NOT manage threads; see BatchWorkerPool.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable, Mapping
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from royalty_batch.domain.types import (
    BatchKind,
    BatchResult,
    BatchStatus,
    DuplicatePolicy,
    RejectedRow,
    UnresolvedSettlementPolicy,
)
from royalty_batch.handlers.base import HandlerRegistry, RowContext
from royalty_batch.models.batch import BatchModel, BatchRejectedRowModel
from royalty_kernel.domain.clock import Clock, SystemClock
from royalty_kernel.exceptions import (
    BatchError,
    BatchNotFoundError,
    DuplicateBatchError,
    RoyaltyKernelError,
)
from royalty_kernel.logging_config import LogContext, get_logger
from royalty_kernel.selectors.ledger_selector import LedgerSelector
from royalty_kernel.services.auditor_service import AuditorService
from royalty_kernel.services.conflict_service import ConflictService
from royalty_kernel.services.ledger_service import LedgerService
from royalty_kernel.services.notification import PostCommitNotifier
from royalty_kernel.services.ownership_service import OwnershipService
from royalty_kernel.services.registry_service import RegistryService
from royalty_kernel.services.sequence_service import SequenceService
from royalty_kernel.utils.hashing import hash_rows, to_json_safe

logger = get_logger("batch.engine")


class ReconciliationEngine:
    """
    Batch ingestion engine.

    Contract:
        - ``open_batch()`` creates a RUNNING batch (duplicate check first).
        - ``process()`` applies the rows of an open batch and finalizes it.
        - ``ingest()`` = ``open_batch()`` + ``process()``.
        - ``fail_batch()`` records a structural failure after a rollback.
        - ``get_batch()`` rebuilds the BatchResult of any batch.
    """

    def __init__(
        self,
        session: Session,
        handlers: HandlerRegistry,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
        ledger: LedgerService | None = None,
        ownership: OwnershipService | None = None,
        conflicts: ConflictService | None = None,
        registry: RegistryService | None = None,
        notifier: PostCommitNotifier | None = None,
        duplicate_policy: DuplicatePolicy = DuplicatePolicy.ALLOW,
        unresolved_settlement_policy: UnresolvedSettlementPolicy = UnresolvedSettlementPolicy.REJECT,
    ):
        self._session = session
        self._handlers = handlers
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditorService(session, self._clock)
        self._sequence = SequenceService(session)
        self._notifier = notifier
        self._ledger = ledger or LedgerService(
            session, self._auditor, self._clock, notifier=notifier
        )
        self._ownership = ownership or OwnershipService(session, self._auditor, self._clock)
        self._conflicts = conflicts or ConflictService(
            session, self._ownership, self._auditor, self._clock
        )
        self._registry = registry or RegistryService(session, self._auditor, self._clock)
        self._ledger_selector = LedgerSelector(session)
        self._duplicate_policy = DuplicatePolicy(duplicate_policy)
        self._unresolved_policy = UnresolvedSettlementPolicy(unresolved_settlement_policy)

    # -------------------------------------------------------------------------
    # Ingest
    # -------------------------------------------------------------------------

    def ingest(
        self,
        kind: BatchKind | str,
        rows: Iterable[Mapping[str, Any]],
        actor_id: UUID,
        cancel_event: threading.Event | None = None,
        checkpoint: Callable[[], None] | None = None,
    ) -> BatchResult:
        """Open a batch for ``rows`` and process it.  See ``process``."""
        materialized = list(rows)
        batch_id = self.open_batch(kind, materialized, actor_id)
        if checkpoint is not None:
            checkpoint()
        return self.process(
            batch_id, materialized, actor_id, cancel_event=cancel_event, checkpoint=checkpoint
        )

    def open_batch(
        self,
        kind: BatchKind | str,
        rows: list[Mapping[str, Any]],
        actor_id: UUID,
    ) -> UUID:
        """
        Create the RUNNING batch record.

        Raises:
            DuplicateBatchError: under the ``reject`` duplicate policy, when a
                batch of the same kind and checksum already exists.
            KeyError: no handler for ``kind``.
        """
        batch_kind = BatchKind(kind)
        self._handlers.get(batch_kind)
        checksum = hash_rows(batch_kind.value, rows)

        if self._duplicate_policy == DuplicatePolicy.REJECT:
            existing = self._session.execute(
                select(BatchModel.id)
                .where(BatchModel.kind == batch_kind.value, BatchModel.checksum == checksum)
                .limit(1)
            ).scalar_one_or_none()
            if existing is not None:
                logger.warning(
                    "batch_duplicate_refused",
                    extra={"kind": batch_kind.value, "existing_batch_id": str(existing)},
                )
                raise DuplicateBatchError(batch_kind.value, checksum, str(existing))

        batch_number = self._sequence.next_value(SequenceService.BATCH_NUMBER)
        batch = BatchModel(
            batch_number=batch_number,
            kind=batch_kind.value,
            status=BatchStatus.RUNNING.value,
            checksum=checksum,
            total_rows=len(rows),
            processed_rows=0,
            accepted_count=0,
            rejected_count=0,
            submitted_at=self._clock.now(),
            created_by_id=actor_id,
        )
        self._session.add(batch)
        self._auditor.record_created(batch, actor_id)

        logger.info(
            "batch_opened",
            extra={
                "batch_id": str(batch.id),
                "batch_number": batch_number,
                "kind": batch_kind.value,
                "total_rows": len(rows),
            },
        )
        return batch.id

    def process(
        self,
        batch_id: UUID,
        rows: list[Mapping[str, Any]],
        actor_id: UUID,
        cancel_event: threading.Event | None = None,
        checkpoint: Callable[[], None] | None = None,
    ) -> BatchResult:
        """
        Apply every row of an open batch and finalize it.

        Processing stops before the next row once ``cancel_event`` is set;
        the batch is then CANCELLED with the rows applied so far.

        Raises:
            BatchNotFoundError: unknown batch.
            BatchError: the batch is already finalized.
            RoyaltyKernelError: any fatal error raised by a row.
        """
        start_time = time.monotonic()
        batch = self._lock_batch(batch_id)
        if BatchStatus(batch.status).is_final:
            raise BatchError(f"Batch {batch_id} is already {batch.status}")

        kind = BatchKind(batch.kind)
        handler = self._handlers.get(kind)
        batch_date = batch.submitted_at.date()

        accepted = 0
        rejected: list[RejectedRow] = []
        cancelled = False

        with LogContext.bind(batch_id=str(batch_id), actor_id=str(actor_id)):
            for ordinal, row in enumerate(rows, start=1):
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    break

                ctx = RowContext(
                    session=self._session,
                    batch_id=batch_id,
                    row_ordinal=ordinal,
                    actor_id=actor_id,
                    batch_date=batch_date,
                    registry=self._registry,
                    ledger=self._ledger,
                    ownership=self._ownership,
                    conflicts=self._conflicts,
                    ledger_selector=self._ledger_selector,
                    unresolved_settlement_policy=self._unresolved_policy,
                )
                rejection = self._apply_row(handler, row, ctx)
                if rejection is None:
                    accepted += 1
                else:
                    rejected.append(rejection)
                    self._session.add(
                        BatchRejectedRowModel(
                            batch_id=batch_id,
                            row_ordinal=ordinal,
                            row_data=to_json_safe(dict(row)),
                            code=rejection.code,
                            reason=rejection.reason,
                            created_by_id=actor_id,
                        )
                    )

                batch.processed_rows = ordinal
                batch.accepted_count = accepted
                batch.rejected_count = len(rejected)
                self._session.flush()

                if checkpoint is not None:
                    checkpoint()

            status = self._final_status(accepted, rejected, cancelled)
            with self._auditor.mutation(batch, actor_id):
                batch.status = status.value
                batch.completed_at = self._clock.now()
                if rejected:
                    batch.error_summary = f"{len(rejected)} row(s) rejected"
                if cancelled:
                    batch.error_summary = (
                        f"cancelled after {batch.processed_rows} of {batch.total_rows} row(s)"
                    )

            logger.info(
                "batch_finalized",
                extra={
                    "status": status.value,
                    "accepted": accepted,
                    "rejected": len(rejected),
                    "processed_rows": batch.processed_rows,
                    "duration_ms": int((time.monotonic() - start_time) * 1000),
                },
            )

        return BatchResult(
            batch_id=batch_id,
            batch_number=batch.batch_number,
            kind=kind,
            status=status,
            total_rows=batch.total_rows,
            processed_rows=batch.processed_rows,
            accepted=accepted,
            rejected=tuple(rejected),
            submitted_at=batch.submitted_at,
            completed_at=batch.completed_at,
            error_summary=batch.error_summary,
        )

    def _apply_row(self, handler, row: Mapping[str, Any], ctx: RowContext) -> RejectedRow | None:
        mark = self._notifier.mark(self._session) if self._notifier else 0
        savepoint = self._session.begin_nested()
        try:
            handler.apply(row, ctx)
            savepoint.commit()
            return None
        except RoyaltyKernelError as exc:
            savepoint.rollback()
            if self._notifier:
                self._notifier.discard_since(self._session, mark)
            if exc.fatal:
                logger.error(
                    "batch_row_fatal",
                    extra={"row_ordinal": ctx.row_ordinal, "error_code": exc.code},
                )
                raise
            logger.info(
                "batch_row_rejected",
                extra={
                    "row_ordinal": ctx.row_ordinal,
                    "error_code": exc.code,
                    "reason": exc.reason,
                },
            )
            return RejectedRow(
                row_ordinal=ctx.row_ordinal,
                row=dict(row),
                code=exc.code,
                reason=exc.reason,
            )
        except Exception:
            savepoint.rollback()
            if self._notifier:
                self._notifier.discard_since(self._session, mark)
            raise

    @staticmethod
    def _final_status(accepted: int, rejected: list[RejectedRow], cancelled: bool) -> BatchStatus:
        if cancelled:
            return BatchStatus.CANCELLED
        if not rejected:
            return BatchStatus.COMPLETED
        if accepted == 0:
            return BatchStatus.FAILED
        return BatchStatus.PARTIALLY_COMPLETED

    # -------------------------------------------------------------------------
    # Failure and queries
    # -------------------------------------------------------------------------

    def fail_batch(self, batch_id: UUID, actor_id: UUID, error: BaseException) -> BatchResult:
        """
        Mark a batch FAILED after a structural error.

        Call in a fresh transaction, after the failing one was rolled back.
        Rows committed by earlier checkpoints stay applied and counted.
        """
        batch = self._lock_batch(batch_id)
        if not BatchStatus(batch.status).is_final:
            code = getattr(error, "code", type(error).__name__)
            with self._auditor.mutation(batch, actor_id):
                batch.status = BatchStatus.FAILED.value
                batch.completed_at = self._clock.now()
                batch.error_summary = f"{code}: {error}"[:4000]
            logger.error(
                "batch_failed",
                extra={"batch_id": str(batch_id), "error_code": code},
            )
        return batch.to_dto()

    def get_batch(self, batch_id: UUID) -> BatchResult:
        batch = self._session.get(BatchModel, batch_id)
        if batch is None:
            raise BatchNotFoundError(str(batch_id))
        return batch.to_dto()

    def _lock_batch(self, batch_id: UUID) -> BatchModel:
        batch = self._session.execute(
            select(BatchModel)
            .where(BatchModel.id == batch_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if batch is None:
            raise BatchNotFoundError(str(batch_id))
        return batch

    @property
    def ledger(self) -> LedgerService:
        return self._ledger
