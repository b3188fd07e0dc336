"""Model, selections, fit orchestration and persistence for the Upsilon mass fits."""

from .dataset import Dataset
from .exceptions import AnalysisError
from .fit_orchestrator import FitOrchestrator, FitRecord
from .mass_model import MassModel, Snapshot, build_model, implied_fraction
from .minimizer import FitOptions, FitResult, MinuitMinimizer
from .selection import (
    AllOf,
    AnyOf,
    RangeCut,
    ThresholdCut,
    bin_expr,
    bin_name,
    build_scheme,
    combine,
    threshold_expr,
    threshold_name,
)
from .variables import Observable, Parameter
from .workspace import Workspace

__all__ = [
    "AllOf",
    "AnalysisError",
    "AnyOf",
    "Dataset",
    "FitOptions",
    "FitOrchestrator",
    "FitRecord",
    "FitResult",
    "MassModel",
    "MinuitMinimizer",
    "Observable",
    "Parameter",
    "RangeCut",
    "Snapshot",
    "ThresholdCut",
    "Workspace",
    "bin_expr",
    "bin_name",
    "build_model",
    "build_scheme",
    "combine",
    "implied_fraction",
    "threshold_expr",
    "threshold_name",
]
