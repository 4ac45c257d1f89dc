"""
Analysis modules: event schema and record binding, selection,
histogramming and the K/pi PID correction.
"""

from .branch_config import CollectionSpec, EventSchema, get_event_schema
from .event_record import EventRecord, ParticleCollection
from .exceptions import (
    AnalysisError,
    BindError,
    BranchMissingError,
    ConfigurationError,
    DataLoadError,
    OutputError,
)
from .histogram import HistogramAccumulator
from .ktopi_analyzer import AnalysisState, Diagnostic, KtoPiAnalyzer
from .parameters import AnalysisParameters
from .pid_correction import PIDCalibrationAccumulator, PIDResponseMatrix
from .tree_messenger import TreeMessenger

__all__ = [
    "AnalysisError",
    "AnalysisParameters",
    "AnalysisState",
    "BindError",
    "BranchMissingError",
    "CollectionSpec",
    "ConfigurationError",
    "DataLoadError",
    "Diagnostic",
    "EventRecord",
    "EventSchema",
    "HistogramAccumulator",
    "KtoPiAnalyzer",
    "OutputError",
    "PIDCalibrationAccumulator",
    "PIDResponseMatrix",
    "ParticleCollection",
    "TreeMessenger",
    "get_event_schema",
]
