"""
Tests for LedgerSelector and LedgerHistory: paging, filtering, restartable
iteration and the cross-productora listings.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from royalty_kernel.domain.types import TransactionKind
from royalty_kernel.selectors.ledger_selector import HistoryFilters


@pytest.fixture
def productora_with_history(make_productora, fund, ledger, clock, actor_id):
    """Five settlements of 1..5 on consecutive days, then one payment."""
    productora = make_productora()
    for day in range(1, 6):
        clock.set_time(datetime(2024, 6, day, 12, tzinfo=timezone.utc))
        fund(productora.id, f"{day}.00")
    clock.set_time(datetime(2024, 6, 6, 12, tzinfo=timezone.utc))
    ledger.post(
        productora.id, TransactionKind.PAYMENT, Decimal("-2.50"), None, None, actor_id,
        reference="OP-77",
    )
    return productora


class TestPaging:
    def test_pages_newest_first(self, ledger_selector, productora_with_history):
        history = ledger_selector.history(productora_with_history.id, HistoryFilters(page_size=4))

        assert [t.sequence for t in history.page(1)] == [6, 5, 4, 3]
        assert [t.sequence for t in history.page(2)] == [2, 1]
        assert history.page(3) == ()
        assert history.count() == 6

    def test_iteration_is_restartable(self, ledger_selector, productora_with_history):
        history = ledger_selector.history(productora_with_history.id, HistoryFilters(page_size=2))

        first = [t.sequence for t in history]
        second = [t.sequence for t in history]
        assert first == second == [6, 5, 4, 3, 2, 1]

    def test_post_during_iteration_is_not_seen(
        self, ledger_selector, fund, productora_with_history
    ):
        history = ledger_selector.history(productora_with_history.id, HistoryFilters(page_size=2))

        walk = iter(history)
        seen = [next(walk).sequence, next(walk).sequence]
        fund(productora_with_history.id, "9.00")
        seen.extend(t.sequence for t in walk)

        assert seen == [6, 5, 4, 3, 2, 1]
        assert [t.sequence for t in history][0] == 7

    def test_ascending_walk_stops_at_its_start_bound(
        self, ledger_selector, fund, productora_with_history
    ):
        history = ledger_selector.history(
            productora_with_history.id, HistoryFilters(order="asc", page_size=2)
        )

        walk = iter(history)
        seen = [next(walk).sequence for _ in range(3)]
        fund(productora_with_history.id, "9.00")
        seen.extend(t.sequence for t in walk)

        assert seen == [1, 2, 3, 4, 5, 6]

    def test_order_follows_sequence_when_clock_moves_back(
        self, ledger_selector, fund, clock, productora_with_history
    ):
        clock.set_time(datetime(2024, 1, 1, 12, tzinfo=timezone.utc))
        fund(productora_with_history.id, "1.00")

        history = ledger_selector.history(productora_with_history.id, HistoryFilters(page_size=3))

        assert [t.sequence for t in history] == [7, 6, 5, 4, 3, 2, 1]
        assert [t.sequence for t in history.page(1)] == [7, 6, 5]

    def test_ascending_order(self, ledger_selector, productora_with_history):
        history = ledger_selector.history(
            productora_with_history.id, HistoryFilters(order="asc")
        )
        assert [t.sequence for t in history] == [1, 2, 3, 4, 5, 6]

    def test_page_numbers_start_at_one(self, ledger_selector, productora_with_history):
        with pytest.raises(ValueError):
            ledger_selector.history(productora_with_history.id).page(0)

    @pytest.mark.parametrize("changes", [{"order": "sideways"}, {"page_size": 0}])
    def test_invalid_filters(self, changes):
        with pytest.raises(ValueError):
            HistoryFilters(**changes)


class TestFilters:
    def test_inclusive_date_range(self, ledger_selector, productora_with_history):
        history = ledger_selector.history(
            productora_with_history.id,
            HistoryFilters(date_from=date(2024, 6, 2), date_to=date(2024, 6, 4)),
        )
        assert sorted(t.amount for t in history) == [
            Decimal("2.00"),
            Decimal("3.00"),
            Decimal("4.00"),
        ]

    def test_kind_and_reference(self, ledger_selector, productora_with_history):
        history = ledger_selector.history(productora_with_history.id)

        payments = list(history.with_filters(kind=TransactionKind.PAYMENT))
        by_reference = list(history.with_filters(reference="OP-77"))

        assert [t.amount for t in payments] == [Decimal("-2.50")]
        assert payments == by_reference

    def test_balance_equals_sum_of_history(self, ledger, ledger_selector, productora_with_history):
        productora_id = productora_with_history.id
        total = sum((t.amount for t in ledger_selector.history(productora_id)), Decimal("0.00"))

        assert total == Decimal("12.50")
        assert ledger.current_balance(productora_id) == total
        assert ledger_selector.sum_of_amounts(productora_id) == total


class TestLookups:
    def test_find_by_reference(self, ledger_selector, productora_with_history):
        found = ledger_selector.find_by_reference(
            productora_with_history.id, "OP-77", kind=TransactionKind.PAYMENT
        )
        assert found.amount == Decimal("-2.50")
        assert ledger_selector.find_by_reference(productora_with_history.id, "nope") is None

    def test_list_transactions_by_cuit(self, ledger_selector, productora_with_history,
                                       make_productora, fund):
        other = make_productora()
        fund(other.id, "1.00")

        listed = ledger_selector.list_transactions(cuit=productora_with_history.cuit)
        assert len(listed) == 6
        assert {t.productora_id for t in listed} == {productora_with_history.id}
        assert ledger_selector.list_transactions(batch_id=uuid4()) == []

    def test_pending_pools_lists_only_funded_pools(
        self, ledger, ledger_selector, make_phonogram, actor_id
    ):
        funded, empty = make_phonogram(), make_phonogram()
        ledger.hold_pending(ledger.lock_pending_pool(funded.id, actor_id), Decimal("9.99"), actor_id)
        ledger.lock_pending_pool(empty.id, actor_id)

        pools = ledger_selector.pending_pools()
        assert [(p.isrc, p.amount) for p in pools] == [(funded.isrc, Decimal("9.99"))]
