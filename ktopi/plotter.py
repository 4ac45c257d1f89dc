"""
Module for creating K/pi ratio plots

Example usage:
    plotter = RatioPlotter(output_dir="output", stem="KtoPi")
    plotter.plot_ratio(h_k_over_pi, "KoverPi")
"""

import logging
import warnings
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import mplhep as hep

from ktopi.modules.histogram import HistogramAccumulator

# Suppress all font-related warnings
warnings.filterwarnings('ignore', category=UserWarning, module='matplotlib')
logging.getLogger('matplotlib.font_manager').setLevel(logging.ERROR)

matplotlib.rcParams['font.family'] = 'sans-serif'
matplotlib.rcParams['font.sans-serif'] = ['DejaVu Sans', 'Arial', 'Helvetica', 'sans-serif']

plt.style.use(hep.style.ROOT)

# Override any serif settings from the style
matplotlib.rcParams['font.family'] = 'sans-serif'


def root_to_mathtext(title):
    """Translate ROOT TLatex markup (#pi, N_{ch}^{tag}) into matplotlib mathtext"""
    if not title:
        return ""
    if "#" not in title and "_{" not in title and "^{" not in title:
        return title
    return "$" + title.replace("#", "\\").replace(" ", "\\ ") + "$"


class RatioPlotter:
    """Class for rendering yield and ratio histograms"""

    def __init__(self, output_dir, stem="KtoPi", fmt="pdf"):
        """
        Initialize with output directory

        Parameters:
        - output_dir: Directory to save plots
        - stem: Prefix of the plot file names
        - fmt: File format understood by matplotlib (pdf, png, ...)
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.stem = stem
        self.fmt = fmt
        self.logger = logging.getLogger("KtoPi.RatioPlotter")

    def plot_ratio(self, hist: HistogramAccumulator, suffix, marker="o", color="black"):
        """
        Draw one histogram as points with error bars

        Parameters:
        - hist: Histogram to draw (usually a K/pi ratio)
        - suffix: Appended to the stem to build the file name
        - marker, color: Marker style

        Returns:
        - Path of the saved plot
        """
        _, x_label, y_label = (hist.title.split(";") + ["", "", ""])[:3]

        fig, ax = plt.subplots(figsize=(10, 7.5))
        hep.histplot(
            hist.values(),
            bins=hist.edges,
            yerr=hist.errors(),
            histtype="errorbar",
            marker=marker,
            markersize=5,
            color=color,
            label=root_to_mathtext(y_label) or hist.name,
            ax=ax,
        )

        ax.set_xlabel(root_to_mathtext(x_label), fontsize=14)
        ax.set_ylabel(root_to_mathtext(y_label), fontsize=14)
        ax.set_xlim(hist.low, hist.high)
        ax.set_ylim(bottom=0)
        ax.grid(alpha=0.3, linestyle='--')
        ax.legend(fontsize=12, loc='best')

        plt.tight_layout()

        plot_path = self.output_dir / f"{self.stem}_{suffix}.{self.fmt}"
        fig.savefig(plot_path, dpi=300, bbox_inches='tight')
        plt.close(fig)

        self.logger.info(f"Created plot: {plot_path}")
        return plot_path
