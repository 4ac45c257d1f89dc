"""
Test utilities: synthetic strangeness-tree events and ROOT files.
"""

from .mock_data_generator import (
    DEFAULT_CALIBRATION,
    build_branches,
    fill_record,
    gen_particle,
    make_event,
    passing_event,
    reco_particle,
    write_strangeness_file,
)

__all__ = [
    "DEFAULT_CALIBRATION",
    "build_branches",
    "fill_record",
    "gen_particle",
    "make_event",
    "passing_event",
    "reco_particle",
    "write_strangeness_file",
]
