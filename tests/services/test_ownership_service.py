"""
Tests for OwnershipService: half-open intervals, the 100% ceiling at every
instant, supersession and history.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from royalty_kernel.domain.types import OwnershipShare
from royalty_kernel.exceptions import (
    InvalidPercentageError,
    OverAllocationError,
    PhonogramNotFoundError,
    ProductoraNotFoundError,
)

JAN = date(2024, 1, 1)
MAR = date(2024, 3, 1)
JUL = date(2024, 7, 1)


@pytest.fixture
def phonogram(make_phonogram):
    return make_phonogram()


class TestClaims:
    def test_claim_is_active_from_its_start(self, ownership, phonogram, make_productora, actor_id):
        owner = make_productora()
        ownership.register_claim(phonogram.id, owner.id, Decimal("60"), JAN, actor_id)

        assert ownership.active_ownership(phonogram.id, date(2023, 12, 31)) == frozenset()
        assert ownership.active_ownership(phonogram.id, JAN) == frozenset(
            {OwnershipShare(owner.id, Decimal("60.00"))}
        )

    def test_two_owners_share(self, ownership, phonogram, make_productora, actor_id):
        a, b = make_productora(), make_productora()
        ownership.register_claim(phonogram.id, a.id, Decimal("60"), JAN, actor_id)
        ownership.register_claim(phonogram.id, b.id, Decimal("40"), JAN, actor_id)

        assert ownership.allocated_percentage(phonogram.id, MAR) == Decimal("100.00")

    def test_over_allocation_refused_without_trace(
        self, ownership, phonogram, make_productora, actor_id
    ):
        a, b = make_productora(), make_productora()
        ownership.register_claim(phonogram.id, a.id, Decimal("60"), JAN, actor_id)

        with pytest.raises(OverAllocationError) as exc_info:
            ownership.register_claim(phonogram.id, b.id, Decimal("50"), JAN, actor_id)

        assert exc_info.value.reason == "ownership would exceed 100%"
        assert len(ownership.history(phonogram.id)) == 1

    def test_later_start_dates_are_checked(self, ownership, phonogram, make_productora, actor_id):
        a, b, c = make_productora(), make_productora(), make_productora()
        ownership.register_claim(phonogram.id, a.id, Decimal("50"), JAN, actor_id)
        ownership.register_claim(phonogram.id, b.id, Decimal("50"), JUL, actor_id)

        # 60% in March, but 110% from July
        with pytest.raises(OverAllocationError):
            ownership.register_claim(phonogram.id, c.id, Decimal("10"), MAR, actor_id)

    def test_invalid_percentage(self, ownership, phonogram, make_productora, actor_id):
        owner = make_productora()
        with pytest.raises(InvalidPercentageError):
            ownership.register_claim(phonogram.id, owner.id, Decimal("100.5"), JAN, actor_id)

    def test_unknown_phonogram(self, ownership, make_productora, actor_id):
        owner = make_productora()
        with pytest.raises(PhonogramNotFoundError):
            ownership.register_claim(uuid4(), owner.id, Decimal("10"), JAN, actor_id)

    def test_unknown_productora(self, ownership, phonogram, actor_id):
        with pytest.raises(ProductoraNotFoundError):
            ownership.register_claim(phonogram.id, uuid4(), Decimal("10"), JAN, actor_id)


class TestSupersession:
    def test_new_claim_closes_the_previous_interval(
        self, ownership, phonogram, make_productora, actor_id
    ):
        owner = make_productora()
        first = ownership.register_claim(phonogram.id, owner.id, Decimal("60"), JAN, actor_id)
        second = ownership.register_claim(phonogram.id, owner.id, Decimal("40"), MAR, actor_id)

        history = {iv.id: iv for iv in ownership.history(phonogram.id)}
        assert history[first.id].end_date == MAR
        assert history[first.id].superseded_by_id == second.id
        assert history[second.id].end_date is None

    def test_intervals_are_half_open(self, ownership, phonogram, make_productora, actor_id):
        owner = make_productora()
        ownership.register_claim(phonogram.id, owner.id, Decimal("60"), JAN, actor_id)
        ownership.register_claim(phonogram.id, owner.id, Decimal("40"), MAR, actor_id)

        assert ownership.allocated_percentage(phonogram.id, date(2024, 2, 29)) == Decimal("60.00")
        assert ownership.allocated_percentage(phonogram.id, MAR) == Decimal("40.00")

    def test_same_day_reclaim_voids_the_previous_interval(
        self, ownership, phonogram, make_productora, actor_id
    ):
        owner = make_productora()
        first = ownership.register_claim(phonogram.id, owner.id, Decimal("60"), JAN, actor_id)
        ownership.register_claim(phonogram.id, owner.id, Decimal("70"), JAN, actor_id)

        history = {iv.id: iv for iv in ownership.history(phonogram.id)}
        assert history[first.id].voided
        assert ownership.allocated_percentage(phonogram.id, JAN) == Decimal("70.00")

    def test_past_attribution_is_preserved(self, ownership, phonogram, make_productora, actor_id):
        a, b = make_productora(), make_productora()
        ownership.register_claim(phonogram.id, a.id, Decimal("100"), JAN, actor_id)
        ownership.release_claim(phonogram.id, a.id, JUL, actor_id)
        ownership.register_claim(phonogram.id, b.id, Decimal("100"), JUL, actor_id)

        assert {s.productora_id for s in ownership.active_ownership(phonogram.id, MAR)} == {a.id}
        assert {s.productora_id for s in ownership.active_ownership(phonogram.id, JUL)} == {b.id}


class TestRedistribute:
    def test_whole_split_replaced_atomically(
        self, ownership, phonogram, make_productora, actor_id
    ):
        a, b, c = make_productora(), make_productora(), make_productora()
        ownership.register_claim(phonogram.id, a.id, Decimal("60"), JAN, actor_id)
        ownership.register_claim(phonogram.id, b.id, Decimal("40"), JAN, actor_id)

        # Each step alone would exceed 100%; the final state does not
        ownership.redistribute(
            phonogram.id,
            {b.id: Decimal("50"), c.id: Decimal("50")},
            JUL,
            actor_id,
            release=[a.id],
        )

        shares = {s.productora_id: s.percentage for s in ownership.active_ownership(phonogram.id, JUL)}
        assert shares == {b.id: Decimal("50.00"), c.id: Decimal("50.00")}

    def test_over_allocated_split_leaves_ownership_unchanged(
        self, ownership, phonogram, make_productora, actor_id
    ):
        a, b = make_productora(), make_productora()
        ownership.register_claim(phonogram.id, a.id, Decimal("60"), JAN, actor_id)

        with pytest.raises(OverAllocationError):
            ownership.redistribute(phonogram.id, {b.id: Decimal("50")}, JUL, actor_id)

        assert ownership.allocated_percentage(phonogram.id, JUL) == Decimal("60.00")
