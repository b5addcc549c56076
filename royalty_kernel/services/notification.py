"""
PostCommitNotifier -- hands ledger events to an external sink after commit.

Responsibility:
    Queues one LedgerNotification per ledger post on the session that made
    it, and dispatches the queue to a NotificationSink once the outermost
    transaction commits.  Nothing is delivered for work that rolls back.

Architecture position:
    Kernel > Services.  The sink (mail, message bus, ...) is owned by a
    collaborator outside the kernel and is reached only through the
    NotificationSink protocol.

Invariants enforced:
    - Delivery happens strictly after COMMIT; a rolled-back transaction
      drops its queued notifications.
    - A rolled-back row SAVEPOINT drops only the notifications queued since
      its mark (``mark`` / ``discard_since``, used by the batch engine).
    - The committing thread never waits for the sink: dispatch goes through
      an executor, and sink failures are logged, not raised.
"""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy import event
from sqlalchemy.orm import Session, SessionTransaction

from royalty_kernel.logging_config import get_logger

logger = get_logger("services.notification")

_QUEUE_KEY = "royalty_kernel.pending_notifications"
_ATTACHED_KEY = "royalty_kernel.notifier_attached"


@dataclass(frozen=True)
class LedgerNotification:
    """``productora X was <kind> <amount>``, emitted once per ledger post."""

    productora_id: UUID
    event_kind: str
    amount: Decimal
    transaction_id: UUID | None = None
    batch_id: UUID | None = None


@runtime_checkable
class NotificationSink(Protocol):
    """Receives committed ledger events.  Must not assume any ordering."""

    def notify(self, notification: LedgerNotification) -> None: ...


class CollectingSink:
    """In-process sink that keeps every notification it receives."""

    def __init__(self) -> None:
        self.received: list[LedgerNotification] = []

    def notify(self, notification: LedgerNotification) -> None:
        self.received.append(notification)


class _InlineExecutor(Executor):
    """Runs submitted work on the calling thread."""

    def submit(self, fn: Callable, /, *args, **kwargs):  # type: ignore[override]
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future


class PostCommitNotifier:
    """
    Session-scoped queue of ledger notifications.

    Usage:
        notifier = PostCommitNotifier(sink)
        notifier.enqueue(session, LedgerNotification(...))
        session.commit()        # dispatched here
    """

    def __init__(
        self,
        sink: NotificationSink,
        executor: Executor | None = None,
        max_workers: int = 2,
    ):
        self._sink = sink
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="royalty-notify",
        )

    @classmethod
    def inline(cls, sink: NotificationSink) -> PostCommitNotifier:
        """Notifier that delivers synchronously on commit (tests, scripts)."""
        return cls(sink, executor=_InlineExecutor())

    def enqueue(self, session: Session, notification: LedgerNotification) -> None:
        self._attach(session)
        session.info.setdefault(_QUEUE_KEY, []).append(notification)

    def pending(self, session: Session) -> tuple[LedgerNotification, ...]:
        return tuple(session.info.get(_QUEUE_KEY, ()))

    def mark(self, session: Session) -> int:
        return len(session.info.get(_QUEUE_KEY, ()))

    def discard_since(self, session: Session, mark: int) -> None:
        queue = session.info.get(_QUEUE_KEY)
        if queue:
            del queue[mark:]

    def shutdown(self, wait: bool = True) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    def _attach(self, session: Session) -> None:
        if session.info.get(_ATTACHED_KEY) is self:
            return
        session.info[_ATTACHED_KEY] = self
        event.listen(session, "after_commit", self._on_commit)
        event.listen(session, "after_soft_rollback", self._on_rollback)

    def _on_commit(self, session: Session) -> None:
        if session.in_nested_transaction():
            # A SAVEPOINT released; the outer transaction is still open
            return
        queue = session.info.pop(_QUEUE_KEY, [])
        for notification in queue:
            self._executor.submit(self._deliver, notification)
        if queue:
            logger.debug("notifications_dispatched", extra={"count": len(queue)})

    def _on_rollback(self, session: Session, previous_transaction: SessionTransaction) -> None:
        if previous_transaction.nested:
            return
        dropped = session.info.pop(_QUEUE_KEY, [])
        if dropped:
            logger.info("notifications_discarded", extra={"count": len(dropped)})

    def _deliver(self, notification: LedgerNotification) -> None:
        try:
            self._sink.notify(notification)
        except Exception:
            logger.exception(
                "notification_delivery_failed",
                extra={
                    "productora_id": str(notification.productora_id),
                    "event_kind": notification.event_kind,
                },
            )
