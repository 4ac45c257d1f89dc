"""
Run parameters for the K/pi analysis

Parameters come from three layers, later layers winning:
    1. built-in defaults
    2. an optional flat TOML file (e.g. config/ktopi.toml)
    3. Key=Value tokens from the command line

Example:
    params = AnalysisParameters.from_sources(
        config_path="config/ktopi.toml",
        overrides=["Input=merged_mc_v2.root", "IsGen=yes"],
    )
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Iterable, Mapping

import tomli

from .exceptions import ConfigurationError

TRUE_LITERALS = {"true", "yes", "1"}
FALSE_LITERALS = {"false", "no", "0"}


def parse_bool(value: Any, key: str = "value") -> bool:
    """Parse true/false/yes/no/1/0 (case-insensitive) or a native bool."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    text = str(value).strip().lower()
    if text in TRUE_LITERALS:
        return True
    if text in FALSE_LITERALS:
        return False
    raise ConfigurationError(
        f"Invalid boolean for {key}: '{value}' (expected true/false, yes/no or 1/0)"
    )


@dataclass(frozen=True)
class AnalysisParameters:
    """Resolved parameters of one run"""

    input: str = "sample/Strangeness/merged_mc_v2.root"
    output: str = "output/KtoPi.root"
    tree_name: str = "Tree"
    max_nch_tag: int = 60       # overflow goes into the last bin
    nch_tag_bins: int = 0       # 0 = one bin per integer in [0, max_nch_tag]
    max_events: int = -1        # -1 = all
    ecm_ref: float = 91.2       # GeV
    min_nch: int = 7
    min_theta_deg: float = 30.0
    max_theta_deg: float = 150.0
    is_gen: bool = False
    chunk_size: int = 10000
    make_plots: bool = True
    plot_format: str = "pdf"

    # Command-line / TOML key -> (field, type)
    KEYS = {
        "Input": ("input", str),
        "Output": ("output", str),
        "TreeName": ("tree_name", str),
        "MaxNchTag": ("max_nch_tag", int),
        "NchTagBins": ("nch_tag_bins", int),
        "MaxEvents": ("max_events", int),
        "EcmRef": ("ecm_ref", float),
        "MinNch": ("min_nch", int),
        "MinThetaDeg": ("min_theta_deg", float),
        "MaxThetaDeg": ("max_theta_deg", float),
        "IsGen": ("is_gen", bool),
        "ChunkSize": ("chunk_size", int),
        "MakePlots": ("make_plots", bool),
        "PlotFormat": ("plot_format", str),
    }

    @property
    def min_theta(self) -> float:
        """Lower polar-angle bound in radians."""
        return math.radians(self.min_theta_deg)

    @property
    def max_theta(self) -> float:
        """Upper polar-angle bound in radians."""
        return math.radians(self.max_theta_deg)

    @property
    def n_bins(self) -> int:
        return self.nch_tag_bins if self.nch_tag_bins > 0 else self.max_nch_tag + 1

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any], base: "AnalysisParameters | None" = None) -> "AnalysisParameters":
        """
        Apply Key -> value pairs on top of `base` (defaults if None)

        Raises:
        - ConfigurationError: unknown key or unparseable value
        """
        base = base if base is not None else cls()
        changes = {}
        for key, raw in values.items():
            if key not in cls.KEYS:
                raise ConfigurationError(
                    f"Unknown parameter '{key}'. Known parameters: {', '.join(cls.KEYS)}"
                )
            name, kind = cls.KEYS[key]
            changes[name] = _convert(key, raw, kind)
        params = replace(base, **changes)
        params.validate()
        return params

    @classmethod
    def from_toml(cls, path, base: "AnalysisParameters | None" = None) -> "AnalysisParameters":
        """Load a flat TOML parameter file."""
        path = Path(path)
        try:
            with open(path, "rb") as f:
                values = tomli.load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {path}")
        except tomli.TOMLDecodeError as e:
            raise ConfigurationError(f"Error parsing TOML file {path}: {e}")

        nested = [key for key, value in values.items() if isinstance(value, dict)]
        if nested:
            raise ConfigurationError(f"{path}: parameters must be flat Key = value pairs, found tables {nested}")
        return cls.from_mapping(values, base)

    @classmethod
    def from_sources(cls, config_path=None, overrides: Iterable[str] = ()) -> "AnalysisParameters":
        params = cls()
        if config_path is not None:
            params = cls.from_toml(config_path, params)
        return cls.from_mapping(parse_key_values(overrides), params)

    def validate(self) -> None:
        if self.max_nch_tag < 0:
            raise ConfigurationError(f"MaxNchTag must be >= 0, got {self.max_nch_tag}")
        if self.nch_tag_bins < 0:
            raise ConfigurationError(f"NchTagBins must be >= 0, got {self.nch_tag_bins}")
        if self.ecm_ref <= 0:
            raise ConfigurationError(f"EcmRef must be positive, got {self.ecm_ref}")
        if not self.min_theta_deg < self.max_theta_deg:
            raise ConfigurationError(
                f"MinThetaDeg ({self.min_theta_deg}) must be below MaxThetaDeg ({self.max_theta_deg})"
            )
        if self.chunk_size <= 0:
            raise ConfigurationError(f"ChunkSize must be positive, got {self.chunk_size}")

    def as_dict(self) -> dict[str, Any]:
        """Key -> value, in the command-line spelling."""
        by_field = {name: key for key, (name, _) in self.KEYS.items()}
        return {by_field[f.name]: getattr(self, f.name) for f in fields(self)}

    def log(self, logger: logging.Logger) -> None:
        logger.info("Running KtoPiAnalysis with parameters:")
        for key, value in self.as_dict().items():
            logger.info(f"  {key:<12} = {value}")


def _convert(key: str, raw: Any, kind: type) -> Any:
    if kind is bool:
        return parse_bool(raw, key)
    if kind is int and isinstance(raw, float) and not raw.is_integer():
        raise ConfigurationError(f"Invalid integer for {key}: '{raw}'")
    try:
        return kind(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid {kind.__name__} for {key}: '{raw}'") from None


def parse_key_values(tokens: Iterable[str]) -> dict[str, str]:
    """
    Parse Key=Value command-line tokens

    Raises:
    - ConfigurationError: token without '=' or with an empty key
    """
    values = {}
    for token in tokens:
        key, sep, value = token.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ConfigurationError(f"Expected Key=Value, got '{token}'")
        values[key] = value.strip()
    return values
