"""
Histogram persistence with uproot

Each accumulator wraps a hist.Hist with Weight() storage, which uproot
writes as a TH1D carrying its per-bin sums of squared weights, so errors
survive the round trip to ROOT.
"""

from __future__ import annotations

import logging
from pathlib import Path

import uproot

from .exceptions import OutputError
from .histogram import HistogramAccumulator


class HistogramWriter:
    """Owns the output ROOT file of a run"""

    def __init__(self, output_path):
        self.output_path = Path(output_path)
        self.logger = logging.getLogger("KtoPi.HistogramWriter")
        self._file = None
        self.written: list[str] = []

    @property
    def is_open(self) -> bool:
        return self._file is not None

    def open(self) -> None:
        """
        Create (or overwrite) the output file

        Raises:
        - OutputError: directory cannot be created or file cannot be written
        """
        try:
            self.output_path.parent.mkdir(parents=True, exist_ok=True)
            self._file = uproot.recreate(self.output_path)
        except OSError as e:
            raise OutputError(f"Cannot create output file '{self.output_path}': {e}") from e
        self.logger.info(f"Output file: {self.output_path}")

    def write(self, *histograms: HistogramAccumulator) -> None:
        if self._file is None:
            raise OutputError(f"Output file '{self.output_path}' is not open")
        for hist in histograms:
            try:
                self._file[hist.name] = hist.hist
            except (OSError, ValueError, TypeError) as e:
                raise OutputError(f"Failed to write '{hist.name}' to '{self.output_path}': {e}") from e
            self.written.append(hist.name)
            self.logger.debug(f"Wrote {hist.name}")

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> "HistogramWriter":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
