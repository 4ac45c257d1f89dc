#!/usr/bin/env python3
"""
Custom exceptions for the K/pi yield analysis

Provides a hierarchy of exceptions for the fatal failure modes of a run.
All custom exceptions inherit from AnalysisError for easy catching.
Degraded-but-continue conditions are not exceptions; they are recorded
as diagnostics by the analyzer.
"""


class AnalysisError(Exception):
    """
    Base exception for all analysis errors

    All custom exceptions inherit from this class, allowing users to catch
    all analysis-specific errors with a single except clause.
    """
    pass


class ConfigurationError(AnalysisError):
    """
    Raised when configuration is invalid or missing required fields

    Examples:
    - Unknown Key=Value parameter
    - Unparseable number or boolean literal
    - Broken TOML parameter file
    """
    pass


class DataLoadError(AnalysisError):
    """
    Raised when the input ROOT file cannot be opened

    Examples:
    - File not found
    - Corrupted ROOT file
    """
    pass


class OutputError(AnalysisError):
    """
    Raised when the output file cannot be created or written

    Examples:
    - Output directory not writable
    - Disk full while writing histograms
    """
    pass


class BindError(AnalysisError):
    """
    Raised when the event record cannot be bound to a tree

    Examples:
    - Tree not present in the file
    - Object with the tree name is not a TTree
    """
    pass


class BranchMissingError(BindError):
    """
    Raised when declared branches are not found in the tree

    Examples:
    - Schema declares RecoPIDKaon but the file predates it
    - Branch name typo in branches_config.toml
    """
    def __init__(self, branch_names, file_path: str = None):
        """
        Initialize BranchMissingError

        Args:
            branch_names: Name (or list of names) of the missing branches
            file_path: Optional path to the file being read
        """
        if isinstance(branch_names, str):
            branch_names = [branch_names]
        self.branch_names = list(branch_names)
        self.branch_name = self.branch_names[0] if self.branch_names else None
        self.file_path = file_path

        if len(self.branch_names) == 1:
            message = f"Required branch '{self.branch_name}' not found"
        else:
            message = (
                f"{len(self.branch_names)} required branches not found: "
                f"{', '.join(self.branch_names)}"
            )
        if file_path:
            message += f" in file: {file_path}"

        super().__init__(message)
