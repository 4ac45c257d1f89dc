"""
K/pi yields versus tag multiplicity

Single pass over the strangeness tree:
    1. Select hadronic Z events (visible energy, Nch, thrust axis angle)
    2. Count kaons and pions per event (reconstructed PID tags, or
       generator-level PDG IDs when IsGen is set)
    3. Fill the yields in bins of N_ch^tag
    4. Build K/pi, and in reco mode unfold the K/pi tagging matrix

The analyzer moves through UNOPENED -> BOUND -> ITERATING -> FINALIZING
-> WRITTEN -> CLOSED. A fatal error (input, binding, output) moves it to
FAILED and the remaining stages are skipped. Non-fatal anomalies are kept
in `diagnostics` and logged as warnings.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from tqdm import tqdm

from ktopi.utils.logging_config import get_tqdm_kwargs

from .branch_config import EventSchema
from .event_record import EventRecord, ParticleCollection
from .exceptions import AnalysisError, OutputError
from .histogram import HistogramAccumulator
from .output_writer import HistogramWriter
from .parameters import AnalysisParameters
from .pid_correction import PIDCalibrationAccumulator, correct_yields
from .selection import EventCounts, EventSelector
from .tree_messenger import TreeMessenger


class AnalysisState(Enum):
    UNOPENED = "unopened"
    BOUND = "bound"
    ITERATING = "iterating"
    FINALIZING = "finalizing"
    WRITTEN = "written"
    CLOSED = "closed"
    FAILED = "failed"


@dataclass(frozen=True)
class Diagnostic:
    """A degraded-but-continue condition met during the run"""

    kind: str
    message: str
    entry: Optional[int] = None


TITLES = {
    "hK": {
        False: "Kaon candidates vs N_{ch}^{tag};N_{ch}^{tag};Yield (sum over events)",
        True: "Generator-level kaons vs N_{ch}^{tag};N_{ch}^{tag};N_{K}^{gen}",
    },
    "hPi": {
        False: "Pion candidates vs N_{ch}^{tag};N_{ch}^{tag};Yield (sum over events)",
        True: "Generator-level pions vs N_{ch}^{tag};N_{ch}^{tag};N_{#pi}^{gen}",
    },
    "hKoverPi": {
        False: "K/#pi yield ratio vs N_{ch}^{tag};N_{ch}^{tag};K/#pi (reco)",
        True: "Generator-level K/#pi yield ratio vs N_{ch}^{tag};N_{ch}^{tag};K/#pi (gen)",
    },
    "hKCorrected": "PID-corrected K yield vs N_{ch}^{tag};N_{ch}^{tag};Corrected K yield",
    "hPiCorrected": "PID-corrected #pi yield vs N_{ch}^{tag};N_{ch}^{tag};Corrected #pi yield",
    "hKoverPiCorrected": "K/#pi vs N_{ch}^{tag};N_{ch}^{tag};K/#pi (PID-corrected)",
}


class KtoPiAnalyzer:
    """Event loop, histogramming and PID correction for one run"""

    def __init__(self, params: AnalysisParameters, schema: Optional[EventSchema] = None):
        self.params = params
        self.schema = schema
        self.logger = logging.getLogger("KtoPi.Analyzer")
        self.state = AnalysisState.UNOPENED
        self.messenger: Optional[TreeMessenger] = None
        self.writer: Optional[HistogramWriter] = None
        self.selector = EventSelector(params)
        self.calibration = PIDCalibrationAccumulator()
        self.response_matrix = None
        self.corrected = False
        self.diagnostics: list[Diagnostic] = []
        self.n_processed = 0
        self.n_selected = 0
        self.plots: list[Path] = []
        self._book_histograms()

    def _book_histograms(self) -> None:
        max_nch_tag = self.params.max_nch_tag
        mode = self.params.is_gen

        self.h_kaon = HistogramAccumulator(
            "hK", TITLES["hK"][mode], self.params.n_bins, -0.5, max_nch_tag + 0.5
        )
        self.h_pion = self.h_kaon.clone("hPi", TITLES["hPi"][mode])

        # Corrected versions stay empty unless the matrix inversion succeeds
        self.h_kaon_corrected = self.h_kaon.clone("hKCorrected", TITLES["hKCorrected"])
        self.h_pion_corrected = self.h_kaon.clone("hPiCorrected", TITLES["hPiCorrected"])

        self.h_k_over_pi: Optional[HistogramAccumulator] = None
        self.h_k_over_pi_corrected: Optional[HistogramAccumulator] = None

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def _diagnose(self, kind: str, message: str, entry: Optional[int] = None) -> None:
        self.diagnostics.append(Diagnostic(kind, message, entry))
        self.logger.warning(message)

    def diagnostics_of(self, kind: str) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.kind == kind]

    def _fail(self, error: AnalysisError) -> None:
        self.state = AnalysisState.FAILED
        self.logger.error(f"{type(error).__name__}: {error}")

    def _require(self, *states: AnalysisState) -> None:
        if self.state not in states:
            raise RuntimeError(
                f"Analyzer is {self.state.value}, expected one of "
                f"{[s.value for s in states]}"
            )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def open(self) -> None:
        """
        Open and bind the input, then create the output file

        Raises:
        - DataLoadError, BindError, OutputError (analyzer left FAILED)
        """
        self._require(AnalysisState.UNOPENED)
        try:
            self.messenger = TreeMessenger.from_file(
                self.params.input,
                self.params.tree_name,
                schema=self.schema,
                chunk_size=self.params.chunk_size,
            )
            self.writer = HistogramWriter(self.params.output)
            self.writer.open()
        except AnalysisError as e:
            self._fail(e)
            self.close()
            raise
        self.state = AnalysisState.BOUND

    def analyze(self) -> None:
        """Run the event loop over the bound tree, then finalize."""
        self.event_loop()
        self.finalize()

    def event_loop(self) -> None:
        """Fill yields and calibration sums from every entry of the bound tree."""
        self._require(AnalysisState.BOUND)
        self.state = AnalysisState.ITERATING

        n_entries = self.messenger.entry_count()
        if 0 < self.params.max_events < n_entries:
            n_entries = self.params.max_events
        self.logger.info(f"Total entries to process: {n_entries}")

        record = self.messenger.record
        for ientry in tqdm(range(n_entries), total=n_entries, **get_tqdm_kwargs("Events")):
            if not self.messenger.read_entry(ientry):
                self._diagnose("read_failure", f"Could not read entry {ientry}; skipping it.", ientry)
                continue
            self.process_event(record, ientry)

        self.logger.info("Event loop finished.")
        self.selector.log_cutflow()

    def _clipped_count(self, collection: ParticleCollection, ientry: Optional[int]) -> int:
        if collection.overflow:
            self._diagnose(
                "count_overflow",
                f"{collection.spec.count_branch} = {collection.count} > capacity "
                f"{collection.capacity} at entry {ientry}. Clipping to {collection.capacity}.",
                ientry,
            )
        return collection.clipped_count

    def process_event(self, record: EventRecord, ientry: Optional[int] = None) -> Optional[EventCounts]:
        """
        Select one event and fill its yields

        Returns:
        - The filled counts, or None when the event fails the selection
        """
        self.n_processed += 1
        nreco = self._clipped_count(record.Reco, ientry)
        ngen = self._clipped_count(record.Gen, ientry) if self.params.is_gen else 0

        if not self.selector.select(record, nreco):
            return None
        self.n_selected += 1

        counts = self.selector.count(record, nreco, ngen)

        if not self.params.is_gen:
            reco = record.Reco
            self.calibration.add_tracks(
                reco.view("Charge", limit=nreco),
                {field: reco.view(field, limit=nreco) for field in PIDCalibrationAccumulator.FIELDS.values()},
            )

        self.h_kaon.fill(counts.nch_tag, counts.n_kaon)
        self.h_pion.fill(counts.nch_tag, counts.n_pion)
        return counts

    def finalize(self) -> None:
        """Build the ratio and, in reco mode, the PID-corrected histograms."""
        self._require(AnalysisState.ITERATING)
        self.state = AnalysisState.FINALIZING
        mode = self.params.is_gen

        self.h_k_over_pi = self.h_kaon.clone("hKoverPi", TITLES["hKoverPi"][mode])
        self.h_k_over_pi.divide(self.h_pion)

        if mode:
            return

        self.response_matrix = self.calibration.average()
        if self.response_matrix is None:
            self._diagnose(
                "empty_calibration",
                "No tracks accumulated for efficiency calibration; "
                "PID-corrected histograms will remain empty.",
            )
        else:
            self._log_matrix()
            if self.response_matrix.is_singular():
                self._diagnose(
                    "singular_matrix",
                    f"PID 2x2 K/pi matrix determinant is tiny ({self.response_matrix.determinant:.3g}). "
                    "Skipping efficiency/fake-rate correction.",
                )
            else:
                correct_yields(
                    self.response_matrix,
                    self.h_kaon,
                    self.h_pion,
                    self.h_kaon_corrected,
                    self.h_pion_corrected,
                )
                self.corrected = True

        self.h_k_over_pi_corrected = self.h_kaon_corrected.clone(
            "hKoverPiCorrected", TITLES["hKoverPiCorrected"]
        )
        self.h_k_over_pi_corrected.divide(self.h_pion_corrected)

    def _log_matrix(self) -> None:
        m = self.response_matrix
        self.logger.info(
            f"Average K/pi PID matrix from {self.calibration.n_tracks} charged tracks "
            "(rows = tag K, tag pi; cols = true K, true pi)"
        )
        self.logger.info(f"  [tagK]  KAsK={m.k_as_k:.5f}   PiAsK={m.pi_as_k:.5f}")
        self.logger.info(f"  [tagPi] KAsPi={m.k_as_pi:.5f}   PiAsPi={m.pi_as_pi:.5f}")

    def output_histograms(self) -> list[HistogramAccumulator]:
        histograms = [self.h_kaon, self.h_pion, self.h_k_over_pi]
        if not self.params.is_gen:
            histograms += [self.h_kaon_corrected, self.h_pion_corrected, self.h_k_over_pi_corrected]
        return histograms

    def write_histograms(self) -> None:
        """Write the histograms and render the ratio plots."""
        self._require(AnalysisState.FINALIZING)
        try:
            self.writer.write(*self.output_histograms())
            if self.params.make_plots:
                self._make_plots()
        except AnalysisError as e:
            self._fail(e)
            raise
        self.state = AnalysisState.WRITTEN

    def _make_plots(self) -> None:
        from ktopi.plotter import RatioPlotter

        output = Path(self.params.output)
        plotter = RatioPlotter(output.parent, stem=output.stem, fmt=self.params.plot_format)
        try:
            self.plots.append(plotter.plot_ratio(self.h_k_over_pi, "KoverPi", marker="o"))
            if self.corrected:
                self.plots.append(
                    plotter.plot_ratio(self.h_k_over_pi_corrected, "KoverPi_corrected", marker="s", color="tab:red")
                )
        except (OSError, ValueError) as e:
            raise OutputError(f"Failed to render plots next to '{output}': {e}") from e

    def close(self) -> None:
        if self.messenger is not None:
            self.messenger.close()
        if self.writer is not None:
            self.writer.close()
        if self.state is not AnalysisState.FAILED:
            self.state = AnalysisState.CLOSED

    def merge(self, other: "KtoPiAnalyzer") -> None:
        """Add the yields and calibration sums of another (shard) analyzer."""
        self.h_kaon.add(other.h_kaon)
        self.h_pion.add(other.h_pion)
        self.calibration.merge(other.calibration)
        for cut, passed in other.selector.cutflow.items():
            self.selector.cutflow[cut] += passed
        self.n_processed += other.n_processed
        self.n_selected += other.n_selected
        self.diagnostics.extend(other.diagnostics)

    def run(self) -> "KtoPiAnalyzer":
        """All stages in order; the files are closed whatever happens."""
        try:
            self.open()
            self.analyze()
            self.write_histograms()
        finally:
            self.close()
        self.logger.info(
            f"Selected {self.n_selected}/{self.n_processed} events; "
            f"output written to {self.params.output}"
        )
        return self
