#!/usr/bin/env python3
"""
Main control script for the K/pi vs N_ch^tag analysis

Computes kaon and pion yields in bins of tag multiplicity and their ratio,
using the strangeness tree. In reco mode (IsGen=false) the yields are also
corrected for K/pi tagging efficiency and fake rates with the 2×2 K/pi
block of the per-track calibration.

Usage:
    # Run with all defaults
    python -m ktopi.main

    # Key=Value parameters
    python -m ktopi.main Input=sample/Strangeness/merged_mc_v2.root \\
        Output=output/KtoPi.root MaxNchTag=60 MaxEvents=-1

    # Generator-level counting from the truth PDG IDs
    python -m ktopi.main IsGen=true

    # Parameters from a TOML file, overridden on the command line
    python -m ktopi.main --config config/ktopi.toml MaxEvents=1000
"""

import argparse
import sys

from ktopi.modules.ktopi_analyzer import KtoPiAnalyzer
from ktopi.modules.exceptions import AnalysisError
from ktopi.modules.parameters import AnalysisParameters
from ktopi.utils.logging_config import setup_logging, suppress_warnings


def parse_args(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="K/pi yields vs N_ch^tag from the strangeness tree",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Parameters (Key=Value, all optional):
  Input        input ROOT file            (default: sample/Strangeness/merged_mc_v2.root)
  Output       output ROOT file           (default: output/KtoPi.root)
  TreeName     tree in the input file     (default: Tree)
  MaxNchTag    last N_ch^tag bin          (default: 60, overflow goes there)
  NchTagBins   number of bins             (default: MaxNchTag + 1)
  MaxEvents    events to process          (default: -1 = all)
  EcmRef       reference energy in GeV    (default: 91.2)
  MinNch       minimum Nch                (default: 7)
  MinThetaDeg  thrust axis lower bound    (default: 30)
  MaxThetaDeg  thrust axis upper bound    (default: 150)
  IsGen        count K/pi at gen level    (default: false; true/false, yes/no, 1/0)
  ChunkSize    entries read per chunk     (default: 10000)
  MakePlots    render K/pi plots          (default: true)
  PlotFormat   plot file format           (default: pdf)
        """
    )

    parser.add_argument(
        "parameters",
        nargs="*",
        metavar="Key=Value",
        help="Analysis parameters"
    )

    parser.add_argument(
        "--config",
        default=None,
        help="Flat TOML file with Key = value parameters"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )

    return parser.parse_args(argv)


def main(argv=None):
    """Main analysis function"""
    args = parse_args(argv)
    logger = setup_logging(args.verbose)
    suppress_warnings("all" if args.verbose else "off")

    try:
        params = AnalysisParameters.from_sources(args.config, args.parameters)
    except AnalysisError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    logger.info("=" * 70)
    params.log(logger)
    logger.info("=" * 70)

    analyzer = KtoPiAnalyzer(params)
    try:
        analyzer.run()
    except AnalysisError as e:
        logger.error(f"Analysis aborted: {e}")
        return 1

    for diagnostic in analyzer.diagnostics:
        logger.debug(f"Diagnostic [{diagnostic.kind}] {diagnostic.message}")
    if analyzer.diagnostics:
        logger.info(f"{len(analyzer.diagnostics)} warning(s) raised during the run")

    logger.info(f"Done. Output written to {params.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
