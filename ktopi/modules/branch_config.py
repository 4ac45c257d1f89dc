"""
Event schema descriptor

Handles loading and parsing the fixed event-record layout from
branches_config.toml: the scalar branches, and for every particle
collection its count branch, capacity, fields and cross-collection
references.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import numpy as np
import tomli

from .exceptions import ConfigurationError


@dataclass(frozen=True)
class CollectionSpec:
    """Layout of one fixed-capacity particle collection.

    Attributes:
        name: Collection prefix used in branch names (e.g. 'Reco')
        count_branch: Branch holding the per-event number of entries
        capacity: Size of the in-memory arrays
        fields: Field name -> numpy dtype, in declaration order
        references: Field name -> name of the collection it indexes into
        description: Free-text description
    """

    name: str
    count_branch: str
    capacity: int
    fields: dict[str, np.dtype]
    references: dict[str, str] = field(default_factory=dict)
    description: str = ""

    def branch_name(self, field_name: str) -> str:
        """On-disk branch name for a field, e.g. Reco + PIDKaon."""
        return f"{self.name}{field_name}"

    def branch_names(self) -> list[str]:
        return [self.branch_name(f) for f in self.fields]


class EventSchema:
    """Manager for the event-record schema.

    Attributes:
        logger: Logger instance for this class
        config: Loaded TOML configuration dictionary
        scalars: Scalar branch name -> numpy dtype
        collections: Collection name -> CollectionSpec
        tree_name: Default tree name
        unmatched: Sentinel value of an unmatched cross-collection reference
    """

    def __init__(self, config_path: str | None = None) -> None:
        """
        Initialize the schema.

        Args:
            config_path: Path to branches_config.toml (auto-detected if None)

        Raises:
            ConfigurationError: If configuration file not found or malformed
        """
        self.logger: logging.Logger = logging.getLogger("KtoPi.EventSchema")

        # Auto-detect config file
        if config_path is None:
            config_path = Path(__file__).parent / "branches_config.toml"
        else:
            config_path = Path(config_path)

        if not config_path.exists():
            raise ConfigurationError(
                f"Schema configuration file not found: {config_path}\n"
                f"Expected location: {Path(__file__).parent / 'branches_config.toml'}"
            )

        with open(config_path, "rb") as f:
            try:
                self.config: dict[str, Any] = tomli.load(f)
            except tomli.TOMLDecodeError as e:
                raise ConfigurationError(f"Error parsing schema file {config_path}: {e}")

        self._parse()
        self.logger.debug(
            f"Loaded schema from {config_path}: {len(self.scalars)} scalars, "
            f"{len(self.collections)} collections"
        )

    def _parse(self) -> None:
        """Build the typed scalar and collection descriptors."""
        header = self.config.get("schema", {})
        self.tree_name: str = header.get("tree_name", "Tree")
        self.unmatched: int = int(header.get("unmatched", -1))

        self.scalars: dict[str, np.dtype] = {
            name: self._dtype(name, type_name)
            for name, type_name in self.config.get("scalars", {}).items()
        }

        self.collections: dict[str, CollectionSpec] = {}
        for name, body in self.config.get("collections", {}).items():
            try:
                count_branch = body["count"]
                capacity = int(body["capacity"])
                fields = body["fields"]
            except KeyError as e:
                raise ConfigurationError(f"Collection '{name}' is missing required key {e}")
            if capacity <= 0:
                raise ConfigurationError(f"Collection '{name}' has non-positive capacity {capacity}")

            references = dict(body.get("references", {}))
            for ref_field, target in references.items():
                if ref_field not in fields:
                    raise ConfigurationError(
                        f"Reference field '{ref_field}' of '{name}' is not a declared field"
                    )
                if target not in self.config["collections"]:
                    raise ConfigurationError(
                        f"Reference '{name}.{ref_field}' points to unknown collection '{target}'"
                    )

            self.collections[name] = CollectionSpec(
                name=name,
                count_branch=count_branch,
                capacity=capacity,
                fields={f: self._dtype(f"{name}{f}", t) for f, t in fields.items()},
                references=references,
                description=body.get("description", ""),
            )

    @staticmethod
    def _dtype(branch: str, type_name: str) -> np.dtype:
        try:
            return np.dtype(type_name)
        except TypeError:
            raise ConfigurationError(f"Unknown dtype '{type_name}' for branch '{branch}'")

    def with_capacities(self, **capacities: int) -> "EventSchema":
        """
        Copy of this schema with some collection capacities replaced

        Parameters:
        - capacities: collection name -> new capacity (e.g. Reco=64)

        Returns:
        - New EventSchema sharing the parsed TOML
        """
        unknown = set(capacities) - set(self.collections)
        if unknown:
            raise ConfigurationError(f"Unknown collections: {sorted(unknown)}")

        schema = object.__new__(EventSchema)
        schema.logger = self.logger
        schema.config = self.config
        schema.tree_name = self.tree_name
        schema.unmatched = self.unmatched
        schema.scalars = dict(self.scalars)
        schema.collections = {
            name: replace(spec, capacity=int(capacities.get(name, spec.capacity)))
            for name, spec in self.collections.items()
        }
        return schema

    def count_branches(self) -> list[str]:
        return [spec.count_branch for spec in self.collections.values()]

    def array_branches(self) -> list[str]:
        branches = []
        for spec in self.collections.values():
            branches.extend(spec.branch_names())
        return branches

    def branch_names(self) -> list[str]:
        """
        All branches the record binds, scalars first

        Returns:
        - List of branch names without duplicates
        """
        names = list(self.scalars) + self.count_branches() + self.array_branches()
        return list(dict.fromkeys(names))

    def validate_branches(self, available_branches: list[str]) -> dict[str, Any]:
        """
        Validate that every declared branch exists in the file.

        Args:
            available_branches: List of available branches from ROOT file

        Returns:
            Dictionary with keys:
                - 'valid': List of found branches
                - 'missing': List of missing branches
                - 'found': Count of found branches
                - 'total_requested': Total number declared
        """
        requested = self.branch_names()
        available_set = set(available_branches)

        valid = [b for b in requested if b in available_set]
        missing = [b for b in requested if b not in available_set]

        if missing:
            self.logger.warning(f"Missing {len(missing)} declared branches: {missing[:5]}...")

        return {
            "valid": valid,
            "missing": missing,
            "found": len(valid),
            "total_requested": len(requested),
        }


def get_event_schema(config_path: str | None = None) -> EventSchema:
    """
    Convenience function to get an EventSchema instance

    Parameters:
    - config_path: Path to configuration file

    Returns:
    - EventSchema instance
    """
    return EventSchema(config_path)
