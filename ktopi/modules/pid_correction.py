"""
K/pi PID efficiency and fake-rate correction

The tagged yields relate to the true yields through a 2×2 response
matrix built from the per-track calibration values:

    [ N(tag K)  ]   [ eKAsK   ePiAsK  ] [ N_true(K)  ]
    [ N(tag pi) ] = [ eKAsPi  ePiAsPi ] [ N_true(pi) ]

e.g. PiAsK is the probability for a true pion to be tagged as a kaon.
The calibration depends on track kinematics, but the species of a track
is unknown outside simulation, so the matrix is the average over all
charged tracks of the selected events.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from .histogram import HistogramAccumulator

SINGULAR_DETERMINANT = 1.0e-8


@dataclass(frozen=True)
class PIDResponseMatrix:
    """Average K/pi tagging response (columns = true species, rows = tag)"""

    k_as_k: float
    pi_as_k: float
    k_as_pi: float
    pi_as_pi: float

    @property
    def determinant(self) -> float:
        return self.k_as_k * self.pi_as_pi - self.pi_as_k * self.k_as_pi

    def is_singular(self, tolerance: float = SINGULAR_DETERMINANT) -> bool:
        return abs(self.determinant) < tolerance

    def as_array(self) -> np.ndarray:
        return np.array([[self.k_as_k, self.pi_as_k], [self.k_as_pi, self.pi_as_pi]])

    def tag(self, true_k, true_pi):
        """Tagged yields expected from true yields (forward folding)."""
        true_k = np.asarray(true_k, dtype=float)
        true_pi = np.asarray(true_pi, dtype=float)
        tagged_k = self.k_as_k * true_k + self.pi_as_k * true_pi
        tagged_pi = self.k_as_pi * true_k + self.pi_as_pi * true_pi
        return tagged_k, tagged_pi

    def unfold(self, tagged_k, tagged_pi, clip_negative: bool = True):
        """
        Invert the 2×2 system in closed form

        Parameters:
        - tagged_k, tagged_pi: Tagged yields (scalars or arrays)
        - clip_negative: Floor the recovered yields at zero

        Returns:
        - (true_k, true_pi) as numpy arrays
        """
        det = self.determinant
        tagged_k = np.asarray(tagged_k, dtype=float)
        tagged_pi = np.asarray(tagged_pi, dtype=float)

        true_k = (self.pi_as_pi * tagged_k - self.pi_as_k * tagged_pi) / det
        true_pi = (-self.k_as_pi * tagged_k + self.k_as_k * tagged_pi) / det

        if clip_negative:
            true_k = np.maximum(true_k, 0.0)
            true_pi = np.maximum(true_pi, 0.0)
        return true_k, true_pi

    def unfold_errors(self, error_k, error_pi):
        """
        Propagate uncorrelated tagged-yield errors through the inversion

        Returns:
        - (error_true_k, error_true_pi) as numpy arrays
        """
        det = self.determinant
        error_k = np.asarray(error_k, dtype=float)
        error_pi = np.asarray(error_pi, dtype=float)

        error_true_k = np.sqrt((self.pi_as_pi * error_k / det) ** 2 + (self.pi_as_k * error_pi / det) ** 2)
        error_true_pi = np.sqrt((self.k_as_pi * error_k / det) ** 2 + (self.k_as_k * error_pi / det) ** 2)
        return error_true_k, error_true_pi


class PIDCalibrationAccumulator:
    """Running sums of the K/pi calibration values over charged tracks"""

    FIELDS = {
        "k_as_k": "EfficiencyKAsK",
        "k_as_pi": "EfficiencyKAsPi",
        "pi_as_k": "EfficiencyPiAsK",
        "pi_as_pi": "EfficiencyPiAsPi",
    }

    def __init__(self):
        self.sums = {key: 0.0 for key in self.FIELDS}
        self.n_tracks = 0

    def add_tracks(self, charge, calibration: dict) -> int:
        """
        Accumulate the calibration of every charged track

        Parameters:
        - charge: Track charges (valid prefix of RecoCharge)
        - calibration: Branch field name -> values, aligned with `charge`

        Returns:
        - Number of tracks added
        """
        charged = np.asarray(charge) != 0.0
        n = int(np.count_nonzero(charged))
        if n == 0:
            return 0
        for key, field in self.FIELDS.items():
            self.sums[key] += float(np.sum(np.asarray(calibration[field])[charged]))
        self.n_tracks += n
        return n

    def merge(self, other: "PIDCalibrationAccumulator") -> None:
        for key in self.sums:
            self.sums[key] += other.sums[key]
        self.n_tracks += other.n_tracks

    def average(self) -> PIDResponseMatrix | None:
        """Average response matrix, or None without any charged track."""
        if self.n_tracks == 0:
            return None
        return PIDResponseMatrix(**{key: total / self.n_tracks for key, total in self.sums.items()})


def correct_yields(
    matrix: PIDResponseMatrix,
    h_kaon: HistogramAccumulator,
    h_pion: HistogramAccumulator,
    h_kaon_corrected: HistogramAccumulator,
    h_pion_corrected: HistogramAccumulator,
) -> None:
    """
    Fill the corrected histograms bin by bin from the tagged ones

    The caller checks the matrix is not singular.
    """
    logger = logging.getLogger("KtoPi.PIDCorrection")

    true_k, true_pi = matrix.unfold(h_kaon.values(), h_pion.values())
    error_k, error_pi = matrix.unfold_errors(h_kaon.errors(), h_pion.errors())

    h_kaon_corrected.set_contents(true_k, error_k)
    h_pion_corrected.set_contents(true_pi, error_pi)
    logger.debug(
        f"Corrected yields: K {h_kaon.values().sum():.1f} -> {true_k.sum():.1f}, "
        f"pi {h_pion.values().sum():.1f} -> {true_pi.sum():.1f}"
    )
