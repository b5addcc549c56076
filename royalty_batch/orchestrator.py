"""
BatchOrchestrator -- DI container for batch reconciliation.

Contract:
    Wires the HandlerRegistry, kernel services and configured policies into
    ReconciliationEngine instances, optionally a BatchWorkerPool, and the
    AttributionService behind airplay annotation.
    Single place where all batch dependencies are composed.

Architecture: royalty_batch (top-level).  This is the canonical entry point
    for configuring and running batch ingestion.

Invariants enforced:
    - Every engine built here shares the orchestrator's Clock and notifier.
    - Batch immutability listeners are registered before the first engine.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

from sqlalchemy.orm import Session

from royalty_batch.domain.types import DuplicatePolicy, UnresolvedSettlementPolicy
from royalty_batch.handlers import HandlerRegistry, default_handler_registry
from royalty_batch.models.batch import register_batch_listeners
from royalty_batch.services.reconciliation_engine import ReconciliationEngine
from royalty_batch.services.worker_pool import BatchWorkerPool
from royalty_kernel.domain.clock import Clock, SystemClock
from royalty_kernel.domain.types import SplitPolicy
from royalty_kernel.logging_config import get_logger
from royalty_kernel.services.attribution_service import AttributionService
from royalty_kernel.services.auditor_service import AuditorService
from royalty_kernel.services.conflict_service import ConflictService
from royalty_kernel.services.ledger_service import LedgerService
from royalty_kernel.services.notification import PostCommitNotifier
from royalty_kernel.services.ownership_service import OwnershipService
from royalty_kernel.services.registry_service import RegistryService

if TYPE_CHECKING:
    from royalty_config.schema import RoyaltyConfig

logger = get_logger("batch.orchestrator")


class BatchOrchestrator:
    """DI container for the batch reconciliation system.

    Contract:
        - ``from_config()`` factory applies a RoyaltyConfig.
        - ``create_engine()`` returns a ReconciliationEngine for a session.
        - ``create_worker_pool()`` returns a BatchWorkerPool whose workers
          each get a fresh session and engine.

    Non-goals:
        - Does NOT manage session lifecycle -- caller controls commits.
    """

    def __init__(
        self,
        handlers: HandlerRegistry | None = None,
        clock: Clock | None = None,
        notifier: PostCommitNotifier | None = None,
        duplicate_policy: DuplicatePolicy = DuplicatePolicy.ALLOW,
        unresolved_settlement_policy: UnresolvedSettlementPolicy = UnresolvedSettlementPolicy.REJECT,
        split_policy: SplitPolicy = SplitPolicy.EQUAL,
        halt_on_inconsistency: bool = True,
        max_workers: int = 4,
    ) -> None:
        self._handlers = handlers if handlers is not None else default_handler_registry()
        self._clock = clock or SystemClock()
        self._notifier = notifier
        self._duplicate_policy = DuplicatePolicy(duplicate_policy)
        self._unresolved_policy = UnresolvedSettlementPolicy(unresolved_settlement_policy)
        self._split_policy = SplitPolicy(split_policy)
        self._halt_on_inconsistency = halt_on_inconsistency
        self._max_workers = max_workers
        register_batch_listeners()

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        config: RoyaltyConfig,
        clock: Clock | None = None,
        notifier: PostCommitNotifier | None = None,
        handlers: HandlerRegistry | None = None,
    ) -> BatchOrchestrator:
        """Create an orchestrator carrying the policies of ``config``."""
        logger.info(
            "batch_orchestrator_configured",
            extra={
                "duplicate_policy": config.batch.duplicate_policy,
                "unresolved_settlement_policy": config.batch.unresolved_settlement_policy,
                "split_policy": config.conflicts.split_policy,
                "max_workers": config.batch.max_workers,
            },
        )
        return cls(
            handlers=handlers,
            clock=clock,
            notifier=notifier,
            duplicate_policy=DuplicatePolicy(config.batch.duplicate_policy),
            unresolved_settlement_policy=UnresolvedSettlementPolicy(
                config.batch.unresolved_settlement_policy
            ),
            split_policy=SplitPolicy(config.conflicts.split_policy),
            halt_on_inconsistency=config.ledger.halt_on_inconsistency,
            max_workers=config.batch.max_workers,
        )

    # -------------------------------------------------------------------------
    # Engine
    # -------------------------------------------------------------------------

    def create_engine(self, session: Session) -> ReconciliationEngine:
        """Create a ReconciliationEngine with services bound to ``session``."""
        auditor = AuditorService(session=session, clock=self._clock)
        ledger = LedgerService(
            session,
            auditor,
            self._clock,
            notifier=self._notifier,
            halt_on_inconsistency=self._halt_on_inconsistency,
        )
        ownership = OwnershipService(session, auditor, self._clock)
        conflicts = ConflictService(
            session, ownership, auditor, self._clock, split_policy=self._split_policy
        )
        return ReconciliationEngine(
            session=session,
            handlers=self._handlers,
            clock=self._clock,
            auditor=auditor,
            ledger=ledger,
            ownership=ownership,
            conflicts=conflicts,
            registry=RegistryService(session, auditor, self._clock),
            notifier=self._notifier,
            duplicate_policy=self._duplicate_policy,
            unresolved_settlement_policy=self._unresolved_policy,
        )

    def create_attribution(self, session: Session) -> AttributionService:
        """Create the ownership lookup used by ``annotate_airplay``."""
        auditor = AuditorService(session=session, clock=self._clock)
        ownership = OwnershipService(session, auditor, self._clock)
        return AttributionService(
            session,
            registry=RegistryService(session, auditor, self._clock),
            ownership=ownership,
            conflicts=ConflictService(session, ownership, auditor, self._clock),
            clock=self._clock,
        )

    # -------------------------------------------------------------------------
    # Worker pool
    # -------------------------------------------------------------------------

    def create_worker_pool(
        self,
        session_factory: Callable[[], Session],
        max_workers: int | None = None,
    ) -> BatchWorkerPool:
        """Create a BatchWorkerPool building one engine per worker session."""
        return BatchWorkerPool(
            session_factory=session_factory,
            engine_factory=self.create_engine,
            max_workers=max_workers or self._max_workers,
            halt_on_inconsistency=self._halt_on_inconsistency,
        )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def handlers(self) -> HandlerRegistry:
        return self._handlers

    @property
    def clock(self) -> Clock:
        return self._clock
