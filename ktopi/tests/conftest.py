"""
Global pytest fixtures and configuration for the test suite.

Provides reusable fixtures for testing the analysis components without
duplicating setup code across test modules.
"""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest

from ktopi.modules.branch_config import EventSchema
from ktopi.modules.event_record import EventRecord
from ktopi.modules.parameters import AnalysisParameters


@pytest.fixture
def tmp_test_dir() -> Generator[Path, None, None]:
    """
    Create a temporary directory for test operations.

    Automatically cleaned up after test completion.

    Yields:
        Path to temporary directory
    """
    tmp_dir = Path(tempfile.mkdtemp(prefix="ktopi_test_"))
    try:
        yield tmp_dir
    finally:
        if tmp_dir.exists():
            shutil.rmtree(tmp_dir)


@pytest.fixture
def tmp_output_dir(tmp_test_dir: Path) -> Path:
    """Create a temporary output directory."""
    output_dir = tmp_test_dir / "output"
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


@pytest.fixture(scope="session")
def schema() -> EventSchema:
    """Packaged event schema."""
    return EventSchema()


@pytest.fixture
def small_schema(schema: EventSchema) -> EventSchema:
    """
    Schema with tiny Reco and Gen capacities, to provoke count overflows
    with a handful of particles.
    """
    return schema.with_capacities(Reco=4, Gen=4)


@pytest.fixture
def record(schema: EventSchema) -> EventRecord:
    """Empty event record on the packaged schema."""
    return EventRecord(schema)


@pytest.fixture
def params(tmp_output_dir: Path) -> AnalysisParameters:
    """
    Default parameters writing into the temporary output directory.

    Plots are off; tests that need them switch them back on.
    """
    return AnalysisParameters(
        input=str(tmp_output_dir.parent / "input.root"),
        output=str(tmp_output_dir / "KtoPi.root"),
        make_plots=False,
    )
