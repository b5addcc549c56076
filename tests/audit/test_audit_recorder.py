"""
Tests for AuditorService and AuditSelector.

Every audited mutation leaves one entry, chained per entity, in the caller's
transaction; no-op mutations leave none; tampering breaks validation.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select, update

from royalty_kernel.domain.types import TransactionKind
from royalty_kernel.exceptions import AuditChainBrokenError
from royalty_kernel.models.audit_entry import AuditEntry
from royalty_kernel.models.productora import Productora
from royalty_kernel.models.sequence import SequenceCounter
from royalty_kernel.selectors.audit_selector import AuditSelector


@pytest.fixture
def audit_selector(session):
    return AuditSelector(session)


class TestRecording:
    def test_post_audits_transaction_and_balance(
        self, ledger, make_productora, audit_selector, actor_id
    ):
        productora = make_productora()
        txn = ledger.post(
            productora.id, TransactionKind.SETTLEMENT, Decimal("10.00"), None, None, actor_id
        )

        txn_trail = audit_selector.entity_trail(txn.id)
        assert [(r.table_name, r.operation) for r in txn_trail] == [
            ("ledger_transactions", "insert")
        ]

        productora_trail = audit_selector.entity_trail(productora.id)
        assert [r.operation for r in productora_trail] == ["insert", "update"]
        update_entry = productora_trail[-1]
        assert update_entry.before["balance"] == "0.00"
        assert update_entry.after["balance"] == "10.00"

    def test_sequence_is_increasing(self, session, make_productora, audit_selector):
        make_productora()
        make_productora()
        seqs = [r.seq for r in audit_selector.query()]
        assert len(seqs) == 2
        assert seqs[0] >= 1
        assert seqs == sorted(set(seqs))

    def test_posting_takes_no_shared_counter(self, session, make_productora, fund):
        first = make_productora()
        second = make_productora()
        fund(first.id, "10.00")
        fund(second.id, "5.00")

        assert session.query(SequenceCounter).count() == 0

    def test_unchanged_mutation_is_not_recorded(
        self, session, auditor, make_productora, audit_selector, actor_id
    ):
        productora = session.get(Productora, make_productora().id)
        before = len(audit_selector.query())

        with auditor.mutation(productora, actor_id):
            productora.name = productora.name

        assert len(audit_selector.query()) == before

    def test_failed_mutation_is_not_recorded(
        self, session, auditor, make_productora, audit_selector, actor_id
    ):
        productora = session.get(Productora, make_productora().id)
        before = len(audit_selector.query())

        with pytest.raises(RuntimeError):
            with auditor.mutation(productora, actor_id):
                productora.name = "Renamed"
                raise RuntimeError("boom")

        assert len(audit_selector.query()) == before

    def test_entity_id_required(self, auditor, actor_id):
        with pytest.raises(ValueError):
            auditor.record("productoras", "insert", actor_id, before=None, after=None)

    def test_unregistered_entity_refused(self, auditor, actor_id):
        with pytest.raises(KeyError):
            auditor.record_created(object(), actor_id)


class TestQueries:
    def test_filter_by_table_and_actor(self, make_productora, make_phonogram, audit_selector,
                                       actor_id):
        make_productora()
        make_phonogram()

        assert {r.table_name for r in audit_selector.query(table="phonograms")} == {"phonograms"}
        assert len(audit_selector.query(actor_id=actor_id)) == 2
        assert audit_selector.query(actor_id=uuid4()) == []

    def test_filter_by_date(self, make_productora, audit_selector):
        make_productora()

        day = date(2024, 6, 1)
        assert len(audit_selector.query(date_from=day, date_to=day)) == 1
        assert audit_selector.query(date_from=date(2024, 6, 2)) == []


class TestChain:
    def test_valid_chain(self, auditor, ledger, make_productora, fund, actor_id):
        productora = make_productora()
        fund(productora.id, "10.00")
        ledger.post(productora.id, TransactionKind.PAYMENT, Decimal("-3.00"), None, None, actor_id)

        assert auditor.validate_chain()

    def test_each_entry_links_to_its_predecessor(self, make_productora, audit_selector):
        make_productora()
        make_productora()
        entries = audit_selector.query()

        assert all(audit_selector.verify_entry(r.seq) for r in entries)
        assert not audit_selector.verify_entry(999)

    def test_tampering_breaks_the_chain(self, session, auditor, make_productora, audit_selector):
        make_productora(name="Original")
        make_productora()
        session.execute(
            update(AuditEntry)
            .where(AuditEntry.seq == 1)
            .values(after={"name": "Forged"})
            .execution_options(synchronize_session=False)
        )
        session.expire_all()

        with pytest.raises(AuditChainBrokenError) as exc_info:
            auditor.validate_chain()
        assert exc_info.value.seq == 1
        assert exc_info.value.fatal
        assert not audit_selector.verify_entry(1)

    def test_chains_are_per_entity(self, session, make_productora, fund):
        first = make_productora()
        second = make_productora()
        fund(first.id, "10.00")
        fund(second.id, "5.00")

        rows = session.execute(
            select(AuditEntry).where(AuditEntry.entity_id == first.id).order_by(AuditEntry.seq)
        ).scalars().all()
        assert [r.operation for r in rows] == ["insert", "update"]
        assert rows[0].prev_hash is None
        assert rows[1].prev_hash == rows[0].entry_hash

    def test_tampering_is_confined_to_its_entity(
        self, session, auditor, make_productora, audit_selector
    ):
        forged = make_productora()
        intact = make_productora()
        forged_seq = audit_selector.entity_trail(forged.id)[0].seq
        session.execute(
            update(AuditEntry)
            .where(AuditEntry.seq == forged_seq)
            .values(after={"name": "Forged"})
            .execution_options(synchronize_session=False)
        )
        session.expire_all()

        assert not audit_selector.verify_entry(forged_seq)
        intact_trail = audit_selector.entity_trail(intact.id)
        assert all(audit_selector.verify_entry(r.seq) for r in intact_trail)
        with pytest.raises(AuditChainBrokenError) as exc_info:
            auditor.validate_chain()
        assert exc_info.value.seq == forged_seq
