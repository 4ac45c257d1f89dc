"""
Event selection and per-event K/pi counting

All functions work on the valid prefix of the record's collections, so
they never see entries past the array capacity.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np

from .event_record import EventRecord
from .parameters import AnalysisParameters

KAON_PDG_ID = 321
PION_PDG_ID = 211
PID_TAG_THRESHOLD = 2   # RecoPID* score for a track to count as tagged
MIN_VISIBLE_FRACTION = 0.5

# Names of the cuts in the order they are applied
CUTS = ("visible_energy", "charged_multiplicity", "thrust_angle")


@dataclass(frozen=True)
class EventCounts:
    """Per-event quantities filled into the yield histograms"""

    nch_tag: int
    n_kaon: int
    n_pion: int


def polar_angle(thrust_z: float) -> float:
    """Polar angle of the thrust axis, acos(ThrustZ), in radians."""
    return math.acos(min(1.0, max(-1.0, float(thrust_z))))


def tag_multiplicity(pid_kaon, pid_pion, pid_proton) -> int:
    """Number of tracks tagged as kaon, pion or proton."""
    tagged = (
        (np.asarray(pid_kaon) >= PID_TAG_THRESHOLD)
        | (np.asarray(pid_pion) >= PID_TAG_THRESHOLD)
        | (np.asarray(pid_proton) >= PID_TAG_THRESHOLD)
    )
    return int(np.count_nonzero(tagged))


def clamp_tag_multiplicity(nch_tag: int, max_nch_tag: int) -> int:
    """Fold overflow into the last bin: clamp into [0, max_nch_tag]."""
    return max(0, min(int(nch_tag), int(max_nch_tag)))


def count_gen_species(gen_id) -> tuple[int, int]:
    """(charged kaons, charged pions) among generator particles, by |PDG ID|."""
    abs_id = np.abs(np.asarray(gen_id))
    return int(np.count_nonzero(abs_id == KAON_PDG_ID)), int(np.count_nonzero(abs_id == PION_PDG_ID))


def count_reco_tags(pid_kaon, pid_pion) -> tuple[int, int]:
    """(kaon-tagged, pion-tagged) reconstructed tracks."""
    n_kaon = int(np.count_nonzero(np.asarray(pid_kaon) >= PID_TAG_THRESHOLD))
    n_pion = int(np.count_nonzero(np.asarray(pid_pion) >= PID_TAG_THRESHOLD))
    return n_kaon, n_pion


class EventSelector:
    """Hadronic event selection on top of the bound record"""

    def __init__(self, params: AnalysisParameters):
        self.params = params
        self.logger = logging.getLogger("KtoPi.EventSelector")
        self.cutflow = {"total": 0, **{cut: 0 for cut in CUTS}}

    def first_failed_cut(self, record: EventRecord, nreco: int) -> str | None:
        """
        Apply the event selection

        Parameters:
        - record: Event record of the current entry
        - nreco: Number of reconstructed particles to use (already clipped)

        Returns:
        - Name of the first failed cut, or None if the event passes
        """
        visible_energy = float(np.sum(record.Reco.view("E", limit=nreco)))
        if not visible_energy / self.params.ecm_ref > MIN_VISIBLE_FRACTION:
            return "visible_energy"

        if record.Nch < self.params.min_nch:
            return "charged_multiplicity"

        theta = polar_angle(record.ThrustZ)
        if not self.params.min_theta < theta < self.params.max_theta:
            return "thrust_angle"

        return None

    def select(self, record: EventRecord, nreco: int) -> bool:
        """Apply the selection and book the outcome in the cut flow."""
        self.cutflow["total"] += 1
        failed = self.first_failed_cut(record, nreco)
        for cut in CUTS:
            if cut == failed:
                return False
            self.cutflow[cut] += 1
        return True

    def count(self, record: EventRecord, nreco: int, ngen: int) -> EventCounts:
        """
        Tag multiplicity and K/pi counts of a selected event

        The tag multiplicity is always taken from reconstructed PID scores;
        in generator mode the K/pi counts come from the truth IDs.
        """
        reco = record.Reco
        pid_kaon = reco.view("PIDKaon", limit=nreco)
        pid_pion = reco.view("PIDPion", limit=nreco)
        nch_tag = tag_multiplicity(pid_kaon, pid_pion, reco.view("PIDProton", limit=nreco))

        if self.params.is_gen:
            n_kaon, n_pion = count_gen_species(record.Gen.view("ID", limit=ngen))
        else:
            n_kaon, n_pion = count_reco_tags(pid_kaon, pid_pion)

        return EventCounts(clamp_tag_multiplicity(nch_tag, self.params.max_nch_tag), n_kaon, n_pion)

    def log_cutflow(self) -> None:
        total = self.cutflow["total"]
        self.logger.info(f"Cut flow ({total} events read):")
        for cut in CUTS:
            passed = self.cutflow[cut]
            fraction = 100.0 * passed / total if total else 0.0
            self.logger.info(f"  {cut:<22} {passed:>10} ({fraction:.2f}%)")
