"""
Unit tests for the event selection and per-event counting.

Events are loaded straight into an EventRecord, without going through ROOT.
"""

from __future__ import annotations

import math

import pytest

from ktopi.modules.event_record import EventRecord
from ktopi.modules.parameters import AnalysisParameters
from ktopi.modules.selection import (
    EventSelector,
    clamp_tag_multiplicity,
    count_gen_species,
    count_reco_tags,
    polar_angle,
    tag_multiplicity,
)
from ktopi.tests.utils import fill_record, gen_particle, make_event, passing_event, reco_particle


@pytest.fixture
def selector() -> EventSelector:
    return EventSelector(AnalysisParameters())


@pytest.mark.unit
class TestHelpers:
    """Test the per-event helper functions."""

    def test_polar_angle(self) -> None:
        assert polar_angle(0.0) == pytest.approx(math.pi / 2)
        assert polar_angle(1.0) == pytest.approx(0.0)
        assert polar_angle(-1.0) == pytest.approx(math.pi)

    def test_polar_angle_clips_rounding(self) -> None:
        assert polar_angle(1.0000001) == 0.0
        assert polar_angle(-1.0000001) == pytest.approx(math.pi)

    def test_tag_multiplicity(self) -> None:
        # Tagged by any of the three scores, each track counted once
        assert tag_multiplicity([2, 0, 0, 3, 1], [0, 2, 0, 3, 1], [0, 0, 4, 0, 1]) == 4

    def test_tag_multiplicity_empty(self) -> None:
        assert tag_multiplicity([], [], []) == 0

    @pytest.mark.parametrize("nch_tag, expected", [(0, 0), (5, 5), (60, 60), (75, 60), (-2, 0)])
    def test_clamp(self, nch_tag: int, expected: int) -> None:
        assert clamp_tag_multiplicity(nch_tag, 60) == expected

    def test_count_gen_species(self) -> None:
        assert count_gen_species([321, -321, 211, 211, 211, 22, 2212, -211]) == (2, 4)

    def test_count_reco_tags(self) -> None:
        assert count_reco_tags([2, 1, 3, 0], [2, 2, 0, 1]) == (2, 2)


@pytest.mark.unit
class TestEventSelector:
    """Test the three event cuts and the cut flow."""

    def test_passing_event(self, selector: EventSelector, record: EventRecord) -> None:
        fill_record(record, passing_event(2, 3))

        assert selector.first_failed_cut(record, len(record.Reco)) is None
        assert selector.select(record, len(record.Reco))
        assert selector.cutflow == {
            "total": 1, "visible_energy": 1, "charged_multiplicity": 1, "thrust_angle": 1,
        }

    def test_low_visible_energy(self, selector: EventSelector, record: EventRecord) -> None:
        # 3 x 9.12 GeV = 0.3 of 91.2 GeV
        event = make_event(reco=[reco_particle(energy=9.12) for _ in range(3)], nch=10)
        fill_record(record, event)

        assert selector.first_failed_cut(record, 3) == "visible_energy"
        assert not selector.select(record, 3)
        assert selector.cutflow["visible_energy"] == 0

    def test_visible_fraction_exactly_half_fails(self, selector: EventSelector, record: EventRecord) -> None:
        event = make_event(reco=[reco_particle(energy=45.6)], nch=10)
        fill_record(record, event)

        assert selector.first_failed_cut(record, 1) == "visible_energy"

    def test_low_multiplicity(self, selector: EventSelector, record: EventRecord) -> None:
        fill_record(record, passing_event(1, 1, nch=5))

        assert selector.first_failed_cut(record, len(record.Reco)) == "charged_multiplicity"
        selector.select(record, len(record.Reco))
        assert selector.cutflow["visible_energy"] == 1
        assert selector.cutflow["charged_multiplicity"] == 0

    def test_multiplicity_at_minimum_passes(self, selector: EventSelector, record: EventRecord) -> None:
        fill_record(record, passing_event(1, 1, nch=7))

        assert selector.first_failed_cut(record, len(record.Reco)) is None

    @pytest.mark.parametrize("thrust_z", [0.9, -0.9, 0.87])
    def test_forward_thrust_axis(self, selector: EventSelector, record: EventRecord, thrust_z: float) -> None:
        fill_record(record, passing_event(1, 1, thrust_z=thrust_z))

        assert selector.first_failed_cut(record, len(record.Reco)) == "thrust_angle"

    def test_energy_uses_clipped_count(self, selector: EventSelector, record: EventRecord) -> None:
        fill_record(record, passing_event(2, 3))

        # Only the first two particles: 20 GeV < 45.6 GeV
        assert selector.first_failed_cut(record, 2) == "visible_energy"


@pytest.mark.unit
class TestCounting:
    """Test tag multiplicity and K/pi counts of selected events."""

    def test_reco_counts(self, selector: EventSelector, record: EventRecord) -> None:
        fill_record(record, passing_event(2, 3))

        counts = selector.count(record, len(record.Reco), 0)

        assert counts.nch_tag == 5
        assert counts.n_kaon == 2
        assert counts.n_pion == 3

    def test_gen_counts_ignore_reco_scores(self, record: EventRecord) -> None:
        selector = EventSelector(AnalysisParameters(is_gen=True))
        gen = [gen_particle(pdg) for pdg in (321, -321, 211, 211, 211)]
        fill_record(record, passing_event(4, 0, gen=gen))

        counts = selector.count(record, len(record.Reco), len(record.Gen))

        assert counts.nch_tag == 4
        assert (counts.n_kaon, counts.n_pion) == (2, 3)

    def test_nch_tag_clamped(self, record: EventRecord) -> None:
        selector = EventSelector(AnalysisParameters(max_nch_tag=3))
        fill_record(record, passing_event(2, 3))

        assert selector.count(record, len(record.Reco), 0).nch_tag == 3

    def test_log_cutflow(self, selector: EventSelector, record: EventRecord, caplog) -> None:
        fill_record(record, passing_event(1, 1))
        selector.select(record, len(record.Reco))

        with caplog.at_level("INFO", logger="KtoPi.EventSelector"):
            selector.log_cutflow()

        assert "thrust_angle" in caplog.text
