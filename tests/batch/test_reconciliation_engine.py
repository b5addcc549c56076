"""
Tests for ReconciliationEngine: per-row SAVEPOINT isolation, the final
status of a batch, itemized rejections, duplicate detection, cancellation
and structural failure.
"""

import threading
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import update

from royalty_batch.domain.types import (
    BatchKind,
    BatchStatus,
    DuplicatePolicy,
    RowOutcome,
    UnresolvedSettlementPolicy,
)
from royalty_batch.handlers import default_handler_registry
from royalty_batch.handlers.base import HandlerRegistry
from royalty_batch.models.batch import BatchModel
from royalty_batch.services.reconciliation_engine import ReconciliationEngine
from royalty_kernel.domain.types import TransactionKind
from royalty_kernel.exceptions import (
    BatchError,
    BatchNotFoundError,
    ChainInconsistencyError,
    DuplicateBatchError,
    ImmutabilityViolationError,
    ValidationError,
)
from royalty_kernel.models.productora import Productora
from royalty_kernel.services.notification import CollectingSink, PostCommitNotifier

JAN = date(2024, 1, 1)


@pytest.fixture
def make_engine(session, auditor, clock, ledger, ownership, conflicts, registry):
    """Build an engine over the shared services with custom options."""

    def _make(**options):
        options.setdefault("handlers", default_handler_registry())
        options.setdefault("ledger", ledger)
        return ReconciliationEngine(
            session=session,
            clock=clock,
            auditor=auditor,
            ownership=ownership,
            conflicts=conflicts,
            registry=registry,
            **options,
        )

    return _make


def _payments(cuits, amount="10.00"):
    return [
        {"cuit": cuit, "amount": Decimal(amount), "reference": f"OP-{n}"}
        for n, cuit in enumerate(cuits, start=1)
    ]


class TestPaymentBatches:
    def test_all_rows_accepted(self, reconciliation_engine, ledger, make_productora, fund,
                               actor_id):
        productora = make_productora()
        fund(productora.id, "100.00")

        result = reconciliation_engine.ingest(
            "payment", _payments([productora.cuit] * 3), actor_id
        )

        assert result.status == BatchStatus.COMPLETED
        assert result.is_full_success
        assert (result.total_rows, result.processed_rows, result.accepted) == (3, 3, 3)
        assert result.rejected == ()
        assert result.error_summary is None
        assert ledger.current_balance(productora.id) == Decimal("70.00")

    def test_bad_row_is_itemized_and_skipped(
        self, reconciliation_engine, ledger, ledger_selector, make_productora, fund, actor_id
    ):
        productora = make_productora()
        fund(productora.id, "100.00")
        cuits = [productora.cuit] * 5
        cuits[2] = "30999999999"

        result = reconciliation_engine.ingest("payment", _payments(cuits), actor_id)

        assert result.status == BatchStatus.PARTIALLY_COMPLETED
        assert result.is_partial_success
        assert result.accepted == 4
        assert result.error_summary == "1 row(s) rejected"
        [rejected] = result.rejected
        assert rejected.row_ordinal == 3
        assert rejected.code == "PRODUCTORA_NOT_FOUND"
        assert rejected.reason == "productora not found"
        assert rejected.row["cuit"] == "30999999999"

        assert ledger.current_balance(productora.id) == Decimal("60.00")
        batch_rows = ledger_selector.list_transactions(batch_id=result.batch_id)
        assert sorted(t.row_ordinal for t in batch_rows) == [1, 2, 4, 5]

    def test_overdraft_rejects_only_the_row(self, reconciliation_engine, ledger, make_productora,
                                            fund, actor_id):
        productora = make_productora()
        fund(productora.id, "25.00")

        result = reconciliation_engine.ingest(
            "payment", _payments([productora.cuit] * 3), actor_id
        )

        assert result.status == BatchStatus.PARTIALLY_COMPLETED
        assert [(r.row_ordinal, r.reason) for r in result.rejected] == [(3, "insufficient funds")]
        assert ledger.current_balance(productora.id) == Decimal("5.00")

    def test_every_row_rejected_fails_the_batch(self, reconciliation_engine, make_productora,
                                                actor_id):
        productora = make_productora()

        result = reconciliation_engine.ingest(
            "payment", _payments([productora.cuit] * 2), actor_id
        )

        assert result.status == BatchStatus.FAILED
        assert result.accepted == 0
        assert {r.reason for r in result.rejected} == {"insufficient funds"}

    @pytest.mark.parametrize(
        "row, reason",
        [
            ({"cuit": "123", "amount": Decimal("1.00")}, "invalid tax id"),
            ({"cuit": "30000000001", "amount": Decimal("1.001")},
             "invalid amount: more than 2 decimal places"),
            ({"cuit": "30000000001", "amount": Decimal("-1.00")},
             "invalid amount: must be positive"),
            ({"cuit": "30000000001", "amount": "ten"}, "invalid amount: not a decimal number"),
        ],
    )
    def test_malformed_rows_are_rejected(
        self, reconciliation_engine, make_productora, fund, actor_id, row, reason
    ):
        fund(make_productora().id, "100.00")
        good = _payments(["30000000001"])[0]

        result = reconciliation_engine.ingest("payment", [good, row], actor_id)

        assert result.status == BatchStatus.PARTIALLY_COMPLETED
        assert [(r.row_ordinal, r.reason) for r in result.rejected] == [(2, reason)]

    def test_empty_batch_completes(self, reconciliation_engine, actor_id):
        result = reconciliation_engine.ingest("payment", [], actor_id)
        assert result.status == BatchStatus.COMPLETED
        assert result.total_rows == 0

    def test_batch_numbers_increase(self, reconciliation_engine, actor_id):
        first = reconciliation_engine.ingest("payment", [], actor_id)
        second = reconciliation_engine.ingest("adjustment", [], actor_id)
        assert second.batch_number == first.batch_number + 1

    def test_finalized_log_carries_batch_id(self, reconciliation_engine, actor_id, captured_logs):
        result = reconciliation_engine.ingest("payment", [], actor_id)

        [record] = [r for r in captured_logs() if r["message"] == "batch_finalized"]
        assert record["batch_id"] == str(result.batch_id)
        assert record["status"] == "completed"


class TestSettlementBatches:
    @pytest.fixture
    def phonogram(self, make_phonogram):
        return make_phonogram()

    def test_split_by_ownership(self, reconciliation_engine, ledger, ownership, phonogram,
                                make_productora, actor_id):
        a, b = make_productora(), make_productora()
        ownership.register_claim(phonogram.id, a.id, Decimal("60"), JAN, actor_id)
        ownership.register_claim(phonogram.id, b.id, Decimal("40"), JAN, actor_id)

        result = reconciliation_engine.ingest(
            BatchKind.SETTLEMENT, [{"isrc": phonogram.isrc, "amount": Decimal("1000.00")}],
            actor_id,
        )

        assert result.status == BatchStatus.COMPLETED
        assert ledger.current_balance(a.id) == Decimal("600.00")
        assert ledger.current_balance(b.id) == Decimal("400.00")

    def test_odd_cents_are_conserved(self, reconciliation_engine, ledger, ownership, phonogram,
                                     make_productora, actor_id):
        owners = [make_productora() for _ in range(3)]
        for owner, pct in zip(owners, ["33.33", "33.33", "33.34"]):
            ownership.register_claim(phonogram.id, owner.id, Decimal(pct), JAN, actor_id)

        reconciliation_engine.ingest(
            "settlement", [{"isrc": phonogram.isrc, "amount": Decimal("0.10")}], actor_id
        )

        balances = [ledger.current_balance(o.id) for o in owners]
        assert sum(balances) == Decimal("0.10")
        assert all(b >= 0 for b in balances)

    def test_unowned_share_goes_to_pending_pool(
        self, reconciliation_engine, ledger, ledger_selector, ownership, phonogram,
        make_productora, actor_id,
    ):
        owner = make_productora()
        ownership.register_claim(phonogram.id, owner.id, Decimal("75"), JAN, actor_id)

        reconciliation_engine.ingest(
            "settlement", [{"isrc": phonogram.isrc, "amount": Decimal("1000.00")}], actor_id
        )

        assert ledger.current_balance(owner.id) == Decimal("750.00")
        assert ledger_selector.pending_pool(phonogram.id).amount == Decimal("250.00")

    def test_row_date_selects_the_owners(self, reconciliation_engine, ledger, ownership,
                                         phonogram, make_productora, actor_id):
        old, new = make_productora(), make_productora()
        ownership.register_claim(phonogram.id, old.id, Decimal("100"), JAN, actor_id)
        ownership.redistribute(
            phonogram.id, {new.id: Decimal("100")}, date(2024, 3, 1), actor_id, release=[old.id]
        )

        reconciliation_engine.ingest(
            "settlement",
            [
                {"isrc": phonogram.isrc, "amount": Decimal("10.00"), "date": date(2024, 2, 1)},
                {"isrc": phonogram.isrc, "amount": Decimal("20.00")},
            ],
            actor_id,
        )

        assert ledger.current_balance(old.id) == Decimal("10.00")
        assert ledger.current_balance(new.id) == Decimal("20.00")

    def test_unowned_phonogram_rejected(self, reconciliation_engine, phonogram, actor_id):
        result = reconciliation_engine.ingest(
            "settlement", [{"isrc": phonogram.isrc, "amount": Decimal("5.00")}], actor_id
        )

        assert result.status == BatchStatus.FAILED
        assert result.rejected[0].reason == "no resolvable ownership"

    def test_unknown_isrc_rejected(self, reconciliation_engine, actor_id):
        result = reconciliation_engine.ingest(
            "settlement", [{"isrc": "ARZZZ2499999", "amount": Decimal("5.00")}], actor_id
        )
        assert result.rejected[0].reason == "phonogram not found"

    def test_hold_policy_keeps_unowned_money(self, make_engine, ledger_selector, phonogram,
                                             actor_id):
        engine = make_engine(unresolved_settlement_policy=UnresolvedSettlementPolicy.HOLD)

        result = engine.ingest(
            "settlement", [{"isrc": phonogram.isrc, "amount": Decimal("5.00")}], actor_id
        )

        assert result.status == BatchStatus.COMPLETED
        assert ledger_selector.pending_pool(phonogram.id).amount == Decimal("5.00")

    def test_disputed_phonogram_rejected(self, reconciliation_engine, ledger, ownership,
                                         conflicts, phonogram, make_productora, actor_id):
        a, c = make_productora(), make_productora()
        ownership.register_claim(phonogram.id, a.id, Decimal("100"), JAN, actor_id)
        conflicts.file_conflict(phonogram.id, [a.id, c.id], "claim", actor_id,
                                effective_date=JAN)

        result = reconciliation_engine.ingest(
            "settlement", [{"isrc": phonogram.isrc, "amount": Decimal("5.00")}], actor_id
        )

        assert result.rejected[0].code == "OWNERSHIP_DISPUTED"
        assert result.rejected[0].reason == "ownership under dispute"
        assert ledger.current_balance(a.id) == Decimal("0.00")

    def test_hold_policy_keeps_disputed_money(self, make_engine, ledger, ledger_selector,
                                              ownership, conflicts, phonogram, make_productora,
                                              actor_id):
        a, c = make_productora(), make_productora()
        ownership.register_claim(phonogram.id, a.id, Decimal("100"), JAN, actor_id)
        conflicts.file_conflict(phonogram.id, [a.id, c.id], "claim", actor_id,
                                effective_date=JAN)
        engine = make_engine(unresolved_settlement_policy="hold")

        engine.ingest(
            "settlement", [{"isrc": phonogram.isrc, "amount": Decimal("5.00")}], actor_id
        )

        assert ledger.current_balance(a.id) == Decimal("0.00")
        assert ledger_selector.pending_pool(phonogram.id).amount == Decimal("5.00")


class TestDuplicates:
    def test_reject_policy_refuses_identical_batch(self, make_engine, make_productora, fund,
                                                   actor_id):
        productora = make_productora()
        fund(productora.id, "100.00")
        engine = make_engine(duplicate_policy=DuplicatePolicy.REJECT)
        rows = _payments([productora.cuit])

        first = engine.ingest("payment", rows, actor_id)

        with pytest.raises(DuplicateBatchError) as exc_info:
            engine.ingest("payment", rows, actor_id)
        assert exc_info.value.fatal
        assert str(first.batch_id) in str(exc_info.value)

    def test_reject_policy_is_per_kind(self, make_engine, actor_id):
        engine = make_engine(duplicate_policy=DuplicatePolicy.REJECT)
        engine.ingest("payment", [], actor_id)
        engine.ingest("rejection", [], actor_id)

    def test_allow_policy_opens_a_new_batch(self, reconciliation_engine, ledger, make_productora,
                                            fund, actor_id):
        productora = make_productora()
        fund(productora.id, "100.00")
        rows = _payments([productora.cuit])

        first = reconciliation_engine.ingest("payment", rows, actor_id)
        second = reconciliation_engine.ingest("payment", rows, actor_id)

        assert first.batch_id != second.batch_id
        assert ledger.current_balance(productora.id) == Decimal("80.00")


class TestCancellation:
    def test_cancelled_before_first_row(self, reconciliation_engine, make_productora, fund,
                                        actor_id):
        productora = make_productora()
        fund(productora.id, "100.00")
        cancel = threading.Event()
        cancel.set()

        result = reconciliation_engine.ingest(
            "payment", _payments([productora.cuit] * 5), actor_id, cancel_event=cancel
        )

        assert result.status == BatchStatus.CANCELLED
        assert result.processed_rows == 0
        assert result.error_summary == "cancelled after 0 of 5 row(s)"

    def test_cancelled_mid_batch_keeps_applied_rows(
        self, reconciliation_engine, ledger, make_productora, fund, actor_id
    ):
        productora = make_productora()
        fund(productora.id, "100.00")
        rows = _payments([productora.cuit] * 5)
        cancel = threading.Event()
        applied = []

        def checkpoint():
            applied.append(1)
            if len(applied) == 2:
                cancel.set()

        batch_id = reconciliation_engine.open_batch("payment", rows, actor_id)
        result = reconciliation_engine.process(
            batch_id, rows, actor_id, cancel_event=cancel, checkpoint=checkpoint
        )

        assert result.status == BatchStatus.CANCELLED
        assert (result.processed_rows, result.accepted) == (2, 2)
        assert result.error_summary == "cancelled after 2 of 5 row(s)"
        assert ledger.current_balance(productora.id) == Decimal("80.00")


class TestStructuralFailure:
    def test_fatal_row_error_aborts_and_fail_batch_records_it(
        self, session, reconciliation_engine, make_productora, fund, actor_id
    ):
        productora = make_productora()
        fund(productora.id, "100.00")
        session.execute(
            update(Productora).where(Productora.id == productora.id).values(balance=Decimal("999"))
        )
        session.commit()
        rows = _payments([productora.cuit] * 2)
        batch_id = reconciliation_engine.open_batch("payment", rows, actor_id)
        session.commit()

        with pytest.raises(ChainInconsistencyError) as exc_info:
            reconciliation_engine.process(batch_id, rows, actor_id)
        session.rollback()

        result = reconciliation_engine.fail_batch(batch_id, actor_id, exc_info.value)
        assert result.status == BatchStatus.FAILED
        assert result.error_summary.startswith("CHAIN_INCONSISTENCY:")
        assert result.processed_rows == 0

    def test_finalized_batch_cannot_be_reprocessed(self, reconciliation_engine, actor_id):
        result = reconciliation_engine.ingest("payment", [], actor_id)

        with pytest.raises(BatchError):
            reconciliation_engine.process(result.batch_id, [], actor_id)

    def test_finalized_batch_row_is_immutable(self, session, reconciliation_engine, actor_id):
        result = reconciliation_engine.ingest("payment", [], actor_id)
        batch = session.get(BatchModel, result.batch_id)
        batch.status = BatchStatus.RUNNING.value

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_unknown_kind(self, reconciliation_engine, actor_id):
        with pytest.raises(ValueError):
            reconciliation_engine.ingest("royalties", [], actor_id)

    def test_kind_without_handler(self, make_engine, actor_id):
        engine = make_engine(handlers=HandlerRegistry())
        with pytest.raises(KeyError):
            engine.ingest("payment", [], actor_id)


class _PostThenFailHandler:
    """Credits the productora, then rejects rows flagged ``fail``."""

    kind = BatchKind.ADJUSTMENT

    def apply(self, row, ctx):
        productora = ctx.registry.get_productora_by_cuit(row["cuit"])
        posting = ctx.ledger.post(
            productora.id, TransactionKind.SETTLEMENT, Decimal("1.00"), ctx.memo,
            ctx.batch_id, ctx.actor_id, row_ordinal=ctx.row_ordinal,
        )
        if row.get("fail"):
            raise ValidationError("flagged row")
        return RowOutcome(postings=(posting,))


class TestRowIsolation:
    def test_rejected_row_leaves_no_posting_or_notification(
        self, session, make_engine, make_productora, actor_id
    ):
        productora = make_productora()
        session.commit()
        sink = CollectingSink()
        handlers = HandlerRegistry()
        handlers.register(_PostThenFailHandler())
        engine = make_engine(
            handlers=handlers, ledger=None, notifier=PostCommitNotifier.inline(sink)
        )

        result = engine.ingest(
            "adjustment",
            [{"cuit": productora.cuit}, {"cuit": productora.cuit, "fail": True},
             {"cuit": productora.cuit}],
            actor_id,
        )
        session.commit()

        assert [(r.row_ordinal, r.code) for r in result.rejected] == [(2, "VALIDATION_ERROR")]
        assert engine.ledger.current_balance(productora.id) == Decimal("2.00")
        assert len(sink.received) == 2
        assert {n.batch_id for n in sink.received} == {result.batch_id}


class TestQueries:
    def test_get_batch_rebuilds_the_result(self, reconciliation_engine, make_productora, fund,
                                           actor_id):
        productora = make_productora()
        fund(productora.id, "100.00")
        rows = _payments([productora.cuit, "30999999999"])

        result = reconciliation_engine.ingest("payment", rows, actor_id)
        stored = reconciliation_engine.get_batch(result.batch_id)

        assert stored.status == BatchStatus.PARTIALLY_COMPLETED
        assert stored.batch_number == result.batch_number
        assert stored.accepted == 1
        [rejected] = stored.rejected
        assert (rejected.row_ordinal, rejected.code) == (2, "PRODUCTORA_NOT_FOUND")
        assert rejected.row["cuit"] == "30999999999"
        assert rejected.row["reference"] == "OP-2"

    def test_unknown_batch(self, reconciliation_engine):
        with pytest.raises(BatchNotFoundError):
            reconciliation_engine.get_batch(uuid4())
