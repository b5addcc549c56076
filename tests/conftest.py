"""
Pytest fixtures for the royalty ledger test suite.

Provides:
- Structured logging configuration and log capture
- In-memory SQLite sessions (single connection) for unit and service tests
- A file-backed SQLite session factory for multi-threaded tests
- A DeterministicClock, a test actor and wired services
- Factories for productoras, phonograms and funded balances
"""

import itertools
import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from royalty_batch.handlers import default_handler_registry
from royalty_batch.models.batch import register_batch_listeners
from royalty_batch.services.reconciliation_engine import ReconciliationEngine
from royalty_kernel.db.engine import (
    create_tables,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from royalty_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from royalty_kernel.domain.clock import DeterministicClock
from royalty_kernel.domain.types import TransactionKind
from royalty_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from royalty_kernel.selectors.ledger_selector import LedgerSelector
from royalty_kernel.services.auditor_service import AuditorService
from royalty_kernel.services.conflict_service import ConflictService
from royalty_kernel.services.ledger_service import LedgerService
from royalty_kernel.services.ownership_service import OwnershipService
from royalty_kernel.services.registry_service import RegistryService

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

BATCH_TIME = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture royalty_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger):
            ledger.post(...)
            assert any(r["message"] == "ledger_posted" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("royalty_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


def _register_listeners():
    register_immutability_listeners()
    register_batch_listeners()


@pytest.fixture
def db_engine():
    """In-memory SQLite with every table and immutability listener."""
    engine = init_engine_from_url("sqlite:///:memory:")
    create_tables()
    _register_listeners()
    yield engine
    unregister_immutability_listeners()
    reset_engine()


@pytest.fixture
def session(db_engine):
    s = get_session()
    try:
        yield s
    finally:
        s.rollback()
        s.close()


@pytest.fixture
def file_session_factory(tmp_path):
    """
    File-backed SQLite session factory for tests that use several threads.

    Every transaction starts with BEGIN IMMEDIATE, so writers queue on the
    database lock instead of failing.
    """
    init_engine_from_url(f"sqlite:///{tmp_path / 'royalty.db'}", pool_timeout=60)
    create_tables()
    _register_listeners()
    yield get_session_factory()
    unregister_immutability_listeners()
    reset_engine()


# =============================================================================
# Clock / actor
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(BATCH_TIME)


@pytest.fixture
def actor_id():
    return TEST_ACTOR_ID


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def auditor(session, clock):
    return AuditorService(session, clock)


@pytest.fixture
def registry(session, auditor, clock):
    return RegistryService(session, auditor, clock)


@pytest.fixture
def ledger(session, auditor, clock):
    return LedgerService(session, auditor, clock)


@pytest.fixture
def ownership(session, auditor, clock):
    return OwnershipService(session, auditor, clock)


@pytest.fixture
def conflicts(session, ownership, auditor, clock):
    return ConflictService(session, ownership, auditor, clock)


@pytest.fixture
def ledger_selector(session):
    return LedgerSelector(session)


@pytest.fixture
def reconciliation_engine(session, auditor, clock, ledger, ownership, conflicts, registry):
    return ReconciliationEngine(
        session=session,
        handlers=default_handler_registry(),
        clock=clock,
        auditor=auditor,
        ledger=ledger,
        ownership=ownership,
        conflicts=conflicts,
        registry=registry,
    )


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def make_productora(registry, actor_id):
    """Register a productora with a unique CUIT (30000000001, 30000000002, ...)."""
    counter = itertools.count(1)

    def _make(name: str | None = None, cuit: str | None = None):
        n = next(counter)
        return registry.register_productora(
            cuit or f"30{n:09d}",
            name or f"Productora {n}",
            actor_id,
        )

    return _make


@pytest.fixture
def make_phonogram(registry, actor_id):
    """Register a phonogram with a unique ISRC (ARABC2400001, ...)."""
    counter = itertools.count(1)

    def _make(title: str | None = None, isrc: str | None = None):
        n = next(counter)
        return registry.register_phonogram(
            isrc or f"ARABC24{n:05d}",
            title or f"Track {n}",
            "Test Artist",
            actor_id,
        )

    return _make


@pytest.fixture
def fund(ledger, actor_id):
    """Credit a productora with a settlement outside any batch."""

    def _fund(productora_id, amount: str):
        return ledger.post(
            productora_id,
            TransactionKind.SETTLEMENT,
            Decimal(amount),
            "opening balance",
            None,
            actor_id,
        )

    return _fund
