"""
Weighted 1D histogram with per-bin variances

Thin layer over a hist.Hist with a regular axis and Weight() storage, so
each bin carries the sum of weights and the sum of squared weights. The
axis keeps ROOT's underflow and overflow bins; the API here uses 0-based
indices over the in-range bins only. uproot writes the underlying Hist
as a TH1D with its sumw2 array.
"""

from __future__ import annotations

import numpy as np
import hist
from hist import Hist


class HistogramAccumulator:
    """Running sum of weights and sum of squared weights per bin"""

    def __init__(self, name: str, title: str, nbins: int, low: float, high: float):
        if nbins <= 0:
            raise ValueError(f"Histogram '{name}' needs at least one bin, got {nbins}")
        if not high > low:
            raise ValueError(f"Histogram '{name}' has empty range [{low}, {high})")

        self.name = name
        self.title = title
        self.nbins = int(nbins)
        self.low = float(low)
        self.high = float(high)
        self.entries = 0
        self.hist = Hist(
            hist.axis.Regular(self.nbins, self.low, self.high, name="x", label=self._axis_label()),
            storage=hist.storage.Weight(),
            name=name,
            label=title,
        )

    def _axis_label(self) -> str:
        parts = self.title.split(";")
        return parts[1] if len(parts) > 1 else ""

    @property
    def axis(self):
        return self.hist.axes[0]

    @property
    def edges(self) -> np.ndarray:
        return np.asarray(self.axis.edges)

    @property
    def centers(self) -> np.ndarray:
        return np.asarray(self.axis.centers)

    @property
    def bin_width(self) -> float:
        return (self.high - self.low) / self.nbins

    def find_bin(self, x: float) -> int:
        """
        0-based bin index of `x`

        Returns -1 for underflow and nbins for overflow.
        """
        return int(self.axis.index(x))

    def fill(self, x: float, weight: float = 1.0) -> int:
        """Add `weight` at `x`; returns the 0-based bin that was filled."""
        self.hist.fill(x, weight=weight)
        self.entries += 1
        return self.find_bin(x)

    def _slot(self, index: int) -> int:
        if not 0 <= index < self.nbins:
            raise IndexError(f"Bin {index} outside [0, {self.nbins}) of '{self.name}'")
        return index + 1

    def _view(self):
        # Shares memory with the histogram; slot 0 is the underflow
        return self.hist.view(flow=True)

    def get_bin_content(self, index: int) -> float:
        return float(self._view().value[self._slot(index)])

    def set_bin_content(self, index: int, value: float) -> None:
        self._view().value[self._slot(index)] = value

    def get_bin_error(self, index: int) -> float:
        return float(np.sqrt(self._view().variance[self._slot(index)]))

    def set_bin_error(self, index: int, error: float) -> None:
        self._view().variance[self._slot(index)] = error * error

    def values(self, flow: bool = False) -> np.ndarray:
        return np.array(self.hist.view(flow=flow).value)

    def variances(self, flow: bool = False) -> np.ndarray:
        return np.array(self.hist.view(flow=flow).variance)

    def errors(self, flow: bool = False) -> np.ndarray:
        return np.sqrt(self.variances(flow))

    def set_contents(self, values, errors) -> None:
        """Overwrite all in-range bins at once."""
        values = np.asarray(values, dtype=float)
        errors = np.asarray(errors, dtype=float)
        if values.shape != (self.nbins,) or errors.shape != (self.nbins,):
            raise ValueError(f"Expected {self.nbins} values and errors for '{self.name}'")
        view = self.hist.view()
        view.value = values
        view.variance = errors * errors

    def is_empty(self) -> bool:
        view = self._view()
        return not np.any(view.value) and not np.any(view.variance)

    def reset(self) -> None:
        self.hist.reset()
        self.entries = 0

    def clone(self, name: str | None = None, title: str | None = None) -> "HistogramAccumulator":
        copy = HistogramAccumulator(
            name if name is not None else self.name,
            title if title is not None else self.title,
            self.nbins, self.low, self.high,
        )
        view, source = copy._view(), self._view()
        view.value = source.value
        view.variance = source.variance
        copy.entries = self.entries
        return copy

    def _check_compatible(self, other: "HistogramAccumulator") -> None:
        if (self.nbins, self.low, self.high) != (other.nbins, other.low, other.high):
            raise ValueError(
                f"Incompatible binning: '{self.name}' {self.nbins} x [{self.low}, {self.high}) "
                f"vs '{other.name}' {other.nbins} x [{other.low}, {other.high})"
            )

    def add(self, other: "HistogramAccumulator") -> None:
        """Merge another accumulator with the same binning (sums and variances add)."""
        self._check_compatible(other)
        view, source = self._view(), other._view()
        view.value = view.value + source.value
        view.variance = view.variance + source.variance
        self.entries += other.entries

    def divide(self, other: "HistogramAccumulator") -> None:
        """
        Divide bin-wise by `other` in place

        Relative errors add in quadrature:
            c = a / b,  σc² = (σa² b² + σb² a²) / b⁴
        Bins with a zero denominator are set to 0 with error 0.
        """
        self._check_compatible(other)
        a, b = self.values(flow=True), other.values(flow=True)
        va, vb = self.variances(flow=True), other.variances(flow=True)

        nonzero = b != 0
        ratio = np.zeros_like(a)
        variance = np.zeros_like(a)
        ratio[nonzero] = a[nonzero] / b[nonzero]
        b2 = b[nonzero] ** 2
        variance[nonzero] = (va[nonzero] * b2 + vb[nonzero] * a[nonzero] ** 2) / (b2 * b2)

        view = self._view()
        view.value = ratio
        view.variance = variance

    def __truediv__(self, other: "HistogramAccumulator") -> "HistogramAccumulator":
        result = self.clone()
        result.divide(other)
        return result

    def __repr__(self) -> str:
        return (
            f"HistogramAccumulator({self.name!r}, nbins={self.nbins}, "
            f"range=[{self.low}, {self.high}), entries={self.entries})"
        )
