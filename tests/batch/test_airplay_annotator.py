"""
Tests for airplay annotation: one output row per owner, marker rows for
unassigned and disputed phonograms, rejected rows for bad ISRCs.
"""

from datetime import date
from decimal import Decimal

import pytest

from royalty_batch.orchestrator import BatchOrchestrator
from royalty_batch.services.airplay_annotator import annotate_airplay
from royalty_kernel.services.attribution_service import AttributionService

JAN = date(2024, 1, 1)
MAR = date(2024, 3, 1)


@pytest.fixture
def attribution(session, registry, ownership, conflicts, clock):
    return AttributionService(session, registry, ownership, conflicts, clock)


@pytest.fixture
def shared_phonogram(ownership, make_phonogram, make_productora, actor_id):
    """Owned 70/30 by 30000000001 and 30000000002 since January."""
    phonogram = make_phonogram()
    a, b = make_productora("A"), make_productora("B")
    ownership.register_claim(phonogram.id, a.id, Decimal("70"), JAN, actor_id)
    ownership.register_claim(phonogram.id, b.id, Decimal("30"), JAN, actor_id)
    return phonogram


class TestAnnotate:
    def test_one_row_per_owner(self, attribution, shared_phonogram):
        play = {"isrc": shared_phonogram.isrc, "channel": "Radio 1", "time": "10:00"}

        report = annotate_airplay([play], attribution, MAR)

        assert report.rejected == ()
        assert [
            (r["play_id"], r["holder_cuit"], r["ownership_percentage"], r["channel"])
            for r in report.rows
        ] == [
            ("1_1", "30000000001", Decimal("70.00"), "Radio 1"),
            ("1_2", "30000000002", Decimal("30.00"), "Radio 1"),
        ]
        assert {r["attribution"] for r in report.rows} == {"assigned"}

    def test_unknown_and_unowned_phonograms_are_marked(self, attribution, make_phonogram):
        unowned = make_phonogram()

        report = annotate_airplay(
            [{"isrc": "ARZZZ2499999"}, {"isrc": unowned.isrc}], attribution, MAR
        )

        assert [(r["play_id"], r["attribution"]) for r in report.rows] == [
            ("1_1", "unassigned"),
            ("2_1", "unassigned"),
        ]
        assert all(r["holder_cuit"] is None for r in report.rows)
        assert all(r["ownership_percentage"] == Decimal("0") for r in report.rows)

    def test_disputed_phonogram_is_marked(
        self, attribution, conflicts, shared_phonogram, make_productora, actor_id
    ):
        claimant = make_productora("C")
        owners = attribution.attribute(shared_phonogram.isrc, MAR).shares
        conflicts.file_conflict(
            shared_phonogram.id,
            [owners[0].productora_id, claimant.id],
            "Disputed master",
            actor_id,
            effective_date=MAR,
        )

        report = annotate_airplay([{"isrc": shared_phonogram.isrc}], attribution, MAR)

        assert [r["attribution"] for r in report.rows] == ["in_conflict"]

    def test_row_date_overrides_report_date(self, attribution, ownership, make_phonogram,
                                            make_productora, actor_id):
        phonogram = make_phonogram()
        ownership.register_claim(phonogram.id, make_productora().id, Decimal("100"), MAR, actor_id)

        report = annotate_airplay(
            [{"isrc": phonogram.isrc, "date": JAN}, {"isrc": phonogram.isrc}], attribution, MAR
        )

        assert [r["attribution"] for r in report.rows] == ["unassigned", "assigned"]

    def test_bad_rows_rejected_with_reason(self, attribution, shared_phonogram):
        report = annotate_airplay(
            [{"channel": "Radio 1"}, {"isrc": "bogus"}, {"isrc": shared_phonogram.isrc}],
            attribution,
            MAR,
        )

        assert [(r.row_ordinal, r.code) for r in report.rejected] == [
            (1, "MISSING_FIELD"),
            (2, "INVALID_ISRC"),
        ]
        assert report.rejected[0].row == {"channel": "Radio 1"}
        assert {r["play_id"] for r in report.rows} == {"3_1", "3_2"}

    def test_writes_nothing(self, session, attribution, shared_phonogram, captured_logs):
        annotate_airplay([{"isrc": shared_phonogram.isrc}] * 3, attribution, MAR)

        assert not session.new and not session.dirty
        event = next(r for r in captured_logs() if r["message"] == "airplay_annotated")
        assert event["output_rows"] == 6
        assert event["phonograms"] == 1

    def test_orchestrator_attribution_uses_its_clock(self, session, clock, shared_phonogram):
        attribution = BatchOrchestrator(clock=clock).create_attribution(session)

        report = annotate_airplay([{"isrc": shared_phonogram.isrc}], attribution)

        assert attribution.clock is clock
        assert [r["holder_cuit"] for r in report.rows] == ["30000000001", "30000000002"]
