#!/usr/bin/env python3
"""
Custom exceptions for the Upsilon mass-fit pipeline

Provides a hierarchy of exceptions for better error handling and diagnostics.
All custom exceptions inherit from AnalysisError for easy catching.

Structural errors (bad names, empty subsets, missing variables) abort a fit
batch. Numerical problems of a single fit are never raised: they are recorded
on the FitResult instead.
"""

from __future__ import annotations


class AnalysisError(Exception):
    """
    Base exception for all analysis pipeline errors

    All custom exceptions inherit from this class, allowing users to catch
    all analysis-specific errors with a single except clause.
    """

    pass


class ConfigurationError(AnalysisError):
    """
    Raised when configuration is invalid or missing required fields

    Examples:
    - Missing required config file
    - Fit range outside the observable range
    - Unknown binning scheme
    """

    pass


class DataLoadError(AnalysisError):
    """
    Raised when the input data cannot be loaded

    Examples:
    - File not found
    - Corrupted ROOT file
    - Missing tree in ROOT file
    """

    pass


class PersistenceError(AnalysisError):
    """
    Raised when the workspace cannot be written or read back

    Examples:
    - Output directory not writable
    - Workspace file without metadata
    """

    pass


class StructuralError(AnalysisError):
    """
    Base class for errors that abort a fit batch

    A structural error means the batch itself is malformed, as opposed to a
    single fit that converged poorly.
    """

    pass


class MissingVariableError(StructuralError):
    """
    Raised when a required variable is not available

    Examples:
    - Observable not declared in the workspace
    - Selection referencing a field the dataset does not carry
    - Branch missing from the input tree
    """

    def __init__(self, variable_name: str, context: str | None = None):
        """
        Initialize MissingVariableError

        Args:
            variable_name: Name of the missing variable
            context: Optional description of where it was looked up
        """
        self.variable_name = variable_name
        self.context = context

        message = f"Required variable '{variable_name}' not found"
        if context:
            message += f" in {context}"

        super().__init__(message)


class SelectionError(StructuralError):
    """
    Raised when a cut cannot be built

    Examples:
    - Range cut with low >= high
    - Non-finite bin edge
    - Duplicate selection names inside one scheme
    """

    pass


class BinIndexError(SelectionError, IndexError):
    """Raised when a bin index is outside [1, len(edges) - 1]"""

    def __init__(self, bin_index: int, n_edges: int):
        self.bin_index = bin_index
        self.n_edges = n_edges
        super().__init__(
            f"Bin index {bin_index} out of range: valid bins are 1..{n_edges - 1}"
        )


class DuplicateNameError(StructuralError):
    """
    Raised when a name is registered twice

    Examples:
    - Two selections with the same name in one batch
    - Importing an object into the workspace without overwrite
    """

    pass


class EmptySubsetError(StructuralError):
    """Raised when a selection leaves no entries in the dataset"""

    def __init__(self, selection_name: str, expression: str | None = None):
        self.selection_name = selection_name
        self.expression = expression

        message = f"Selection '{selection_name}' selects no entries"
        if expression:
            message += f" (cut: {expression})"

        super().__init__(message)


class MissingObjectError(StructuralError):
    """Raised when a named object is not present in the workspace"""

    pass


class FittingError(AnalysisError):
    """
    Raised when mass fitting cannot proceed

    Examples:
    - No entries inside the fit range
    - Invalid fit configuration
    """

    pass


class ModelError(FittingError):
    """
    Raised when the model cannot be evaluated at a parameter point

    Examples:
    - Signal and background fractions summing above one
    - Non-positive component normalisation
    """

    pass
