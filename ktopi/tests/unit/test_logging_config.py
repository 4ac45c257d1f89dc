"""
Unit tests for logging, warning and progress-bar configuration.
"""

from __future__ import annotations

import logging

import pytest

from ktopi.utils.logging_config import enable_progress_bars, get_tqdm_kwargs, setup_logging


@pytest.mark.unit
class TestLoggingConfig:
    """Test the shared logging helpers."""

    def test_setup_logging_levels(self) -> None:
        assert setup_logging(verbose=True).level == logging.DEBUG
        assert setup_logging(verbose=False).level == logging.INFO
        assert setup_logging().name == "KtoPi"

    @pytest.mark.parametrize("value, enabled", [("on", True), ("1", True), ("off", False), ("no", False)])
    def test_progress_env(self, monkeypatch, value: str, enabled: bool) -> None:
        monkeypatch.setenv("ANALYSIS_PROGRESS", value)

        assert enable_progress_bars() is enabled
        assert get_tqdm_kwargs("Events")["disable"] is not enabled

    def test_tqdm_kwargs_override(self, monkeypatch) -> None:
        monkeypatch.delenv("ANALYSIS_PROGRESS", raising=False)

        kwargs = get_tqdm_kwargs("Events", unit="entry")

        assert kwargs["desc"] == "Events"
        assert kwargs["unit"] == "entry"
        assert kwargs["disable"] is False
