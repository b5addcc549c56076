"""
BatchWorkerPool -- one worker thread per submitted batch.

Contract:
    ``submit(kind, rows, actor_id)`` schedules an ingestion on a thread pool
    and returns a BatchHandle.  Each worker opens its own session from
    ``session_factory`` and its own ReconciliationEngine from
    ``engine_factory``; rows inside one batch stay sequential.

Architecture: royalty_batch/services.  Threads and sessions live here;
    ReconciliationEngine never sees either.

Invariants enforced:
    - A session is never shared between workers.
    - The batch record is committed before its first row, and every row is
      committed as it completes (``checkpoint=session.commit``).
    - On a structural error the worker rolls back, marks the batch FAILED
      in a fresh transaction (halting the productora on chain
      inconsistency when configured), then re-raises through the handle.
    - Graceful shutdown: ``shutdown()`` waits for running batches.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from royalty_batch.domain.types import BatchKind, BatchResult
from royalty_batch.services.reconciliation_engine import ReconciliationEngine
from royalty_kernel.exceptions import BatchCancelledError, ChainInconsistencyError, PostingHaltedError
from royalty_kernel.logging_config import LogContext, get_logger

logger = get_logger("batch.worker_pool")


class BatchHandle:
    """Caller's view of a submitted batch."""

    def __init__(self, kind: BatchKind, cancel_event: threading.Event):
        self.kind = kind
        self._cancel_event = cancel_event
        self._future: Future | None = None
        self._batch_id: UUID | None = None
        self._opened = threading.Event()

    def cancel(self) -> None:
        """
        Ask the worker to stop.

        A batch that has not started fails with BatchCancelledError; a
        running one stops before its next row and ends CANCELLED.
        """
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def batch_id(self) -> UUID | None:
        """Id of the batch record, once the worker has opened it."""
        return self._batch_id

    def wait_opened(self, timeout: float | None = None) -> UUID | None:
        self._opened.wait(timeout)
        return self._batch_id

    def result(self, timeout: float | None = None) -> BatchResult:
        """Block until the batch finishes; re-raises the worker's exception."""
        return self._future.result(timeout)

    def done(self) -> bool:
        return self._future.done()

    def _set_batch_id(self, batch_id: UUID) -> None:
        self._batch_id = batch_id
        self._opened.set()


class BatchWorkerPool:
    """
    Thread pool running independent batches concurrently.

    Non-goals:
        - NOT a distributed queue; submissions live in this process.
        - Does NOT retry failed batches.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        engine_factory: Callable[[Session], ReconciliationEngine],
        max_workers: int = 4,
        halt_on_inconsistency: bool = True,
    ):
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self._session_factory = session_factory
        self._engine_factory = engine_factory
        self._halt_on_inconsistency = halt_on_inconsistency
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="royalty-batch",
        )

    def submit(
        self,
        kind: BatchKind | str,
        rows: Iterable[Mapping[str, Any]],
        actor_id: UUID,
    ) -> BatchHandle:
        batch_kind = BatchKind(kind)
        materialized = [dict(row) for row in rows]
        handle = BatchHandle(batch_kind, threading.Event())
        handle._future = self._executor.submit(
            self._run, handle, batch_kind, materialized, actor_id
        )
        logger.info(
            "batch_submitted",
            extra={"kind": batch_kind.value, "total_rows": len(materialized)},
        )
        return handle

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        logger.info("worker_pool_stopped")

    def __enter__(self) -> BatchWorkerPool:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown(wait=True)

    # -------------------------------------------------------------------------
    # Worker
    # -------------------------------------------------------------------------

    def _run(
        self,
        handle: BatchHandle,
        kind: BatchKind,
        rows: list[dict[str, Any]],
        actor_id: UUID,
    ) -> BatchResult:
        if handle.cancelled:
            logger.info("batch_cancelled_before_start", extra={"kind": kind.value})
            raise BatchCancelledError(kind.value)

        session = self._session_factory()
        batch_id: UUID | None = None
        try:
            with LogContext.bind(actor_id=str(actor_id)):
                engine = self._engine_factory(session)
                batch_id = engine.open_batch(kind, rows, actor_id)
                session.commit()
                handle._set_batch_id(batch_id)

                result = engine.process(
                    batch_id,
                    rows,
                    actor_id,
                    cancel_event=handle._cancel_event,
                    checkpoint=session.commit,
                )
                session.commit()
                return result
        except Exception as exc:
            session.rollback()
            logger.exception(
                "batch_worker_failed",
                extra={"kind": kind.value, "batch_id": str(batch_id) if batch_id else None},
            )
            if batch_id is not None:
                self._record_failure(batch_id, actor_id, exc)
            raise
        finally:
            handle._opened.set()
            session.close()

    def _record_failure(self, batch_id: UUID, actor_id: UUID, error: Exception) -> None:
        session = self._session_factory()
        try:
            engine = self._engine_factory(session)
            engine.fail_batch(batch_id, actor_id, error)
            if (
                self._halt_on_inconsistency
                and isinstance(error, ChainInconsistencyError)
                and not isinstance(error, PostingHaltedError)
            ):
                engine.ledger.halt(UUID(error.productora_id), str(error)[:1000], actor_id)
            session.commit()
        except Exception:
            session.rollback()
            logger.exception("batch_failure_not_recorded", extra={"batch_id": str(batch_id)})
        finally:
            session.close()
