"""
Mock data generators for testing pipeline components.

Provides toy Monte Carlo drawn from the mass model, synthetic ROOT files with
the branches of the selected-candidate tree, and a deterministic minimizer
stand-in for orchestration tests.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union

import numpy as np
import uproot
from scipy import stats

from upsilon_fits.modules.dataset import Dataset
from upsilon_fits.modules.mass_model import MassModel, build_model
from upsilon_fits.modules.minimizer import FitOptions, FitResult
from upsilon_fits.modules.variables import Observable
from upsilon_fits.modules.workspace import Workspace

# Declared ranges of the selected-candidate tree
VARIABLE_RANGES: Dict[str, tuple] = {
    "pT": ("p_{T}", 10.0, 70.0),
    "mass": ("m_{B}", 8.4, 11.6),
    "Nch": ("Nch", 0.0, 180.0),
    "costh_HX": ("cos#theta^{HX}", -1.0, 1.0),
    "phi_HX": ("phi^{HX}", -180.0, 180.0),
    "ctau": ("c#tau", -40.0, 40.0),
    "ctauErr": ("#sigma_{c#tau}", 0.0, 5.0),
}


def make_observables() -> List[Observable]:
    return [Observable(name, *fields) for name, fields in VARIABLE_RANGES.items()]


def make_workspace() -> Workspace:
    """Workspace with every input variable declared"""
    ws = Workspace("test_workspace")
    for observable in make_observables():
        ws.import_var(observable)
    return ws


def sample_masses(
    model: MassModel,
    n_events: int,
    values: Optional[Mapping[str, float]] = None,
    seed: int = 42,
) -> np.ndarray:
    """
    Draw masses from the model mixture inside its fit range.

    Peaks are sampled by inverting the truncated Crystal Ball CDF, the
    background by accept-reject.

    Args:
        model: Mass model
        n_events: Number of masses to draw
        values: Parameter values to generate with (model values otherwise)
        seed: Random seed for reproducibility

    Returns:
        Array of masses, in random component order
    """
    rng = np.random.default_rng(seed)
    v = model.values()
    v.update(values or {})
    lo, hi = model.fit_range

    fractions = model.fractions(v)
    names = list(fractions)
    counts = rng.multinomial(n_events, [fractions[name] for name in names])

    parts = []
    for name, count in zip(names, counts):
        if count == 0:
            continue
        if name == "bkgPoly":
            grid = np.linspace(lo, hi, 1001)
            ceiling = 1.1 * model.component_densities(grid, v)["bkgPoly"].max()
            accepted: List[float] = []
            while len(accepted) < count:
                x = rng.uniform(lo, hi, 2 * count)
                y = rng.uniform(0.0, ceiling, 2 * count)
                density = model.component_densities(x, v)["bkgPoly"]
                accepted.extend(x[y < density].tolist())
            parts.append(np.array(accepted[:count]))
        else:
            mean, sigma = model.peak_shape(name[-2:], v)
            shape = stats.crystalball(v["alpha"], v["n"], loc=mean, scale=sigma)
            u = rng.uniform(shape.cdf(lo), shape.cdf(hi), count)
            parts.append(shape.ppf(u))

    masses = np.concatenate(parts)
    rng.shuffle(masses)
    return masses


def generate_toy_events(
    n_events: int = 1000,
    masses: Optional[np.ndarray] = None,
    seed: int = 42,
) -> Dict[str, np.ndarray]:
    """
    Generate the branches of the selected-candidate tree.

    Args:
        n_events: Number of events
        masses: Mass values (drawn from the default model if None)
        seed: Random seed for reproducibility

    Returns:
        Dictionary mapping branch names to numpy arrays
    """
    rng = np.random.default_rng(seed)

    if masses is None:
        model = build_model(make_workspace())
        masses = sample_masses(model, n_events, seed=seed)
    n_events = len(masses)

    return {
        "pT": rng.uniform(10.5, 69.5, n_events),
        "mass": np.asarray(masses, dtype=np.float64),
        "Nch": rng.integers(1, 180, n_events).astype(np.float64),
        "costh_HX": rng.uniform(-0.99, 0.99, n_events),
        "phi_HX": rng.uniform(-179.0, 179.0, n_events),
        "ctau": rng.normal(0.0, 1.0, n_events),
        "ctauErr": rng.uniform(0.01, 1.0, n_events),
    }


def make_toy_dataset(
    n_events: int = 1000, name: str = "fullData", seed: int = 42
) -> Dataset:
    return Dataset.from_arrays(name, generate_toy_events(n_events, seed=seed))


def create_mock_root_file(
    output_path: Union[str, Path],
    tree_name: str = "selectedData",
    n_events: int = 1000,
    n_out_of_range: int = 0,
    seed: int = 42,
    drop_branches: Optional[List[str]] = None,
) -> Path:
    """
    Create a mock ROOT file with the selected-candidate tree.

    Args:
        output_path: Path where ROOT file will be created
        tree_name: Name of the TTree
        n_events: Number of in-range events
        n_out_of_range: Extra events with pT above its declared range
        seed: Random seed for reproducibility
        drop_branches: Branches to leave out

    Returns:
        Path to created ROOT file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    data = generate_toy_events(n_events, seed=seed)
    if n_out_of_range:
        extra = generate_toy_events(n_out_of_range, seed=seed + 1)
        extra["pT"] = np.full(n_out_of_range, 100.0)
        data = {k: np.concatenate([data[k], extra[k]]) for k in data}

    for branch in drop_branches or []:
        data.pop(branch)

    with uproot.recreate(output_path) as file:
        file[tree_name] = data

    return output_path


class StubMinimizer:
    """
    Deterministic closed-form stand-in for the minimizer.

    Sets mean1S to the mean mass inside the 1S window and fBkg to the
    fraction of in-range events outside all three peak windows. Records the
    parameter values each call started from and the options it received.

    Attributes:
        calls: List of (dataset name, initial model values, options)
        status_by_dataset: Forced (status, covQual) per dataset name
    """

    WINDOW = 0.15

    def __init__(self, status_by_dataset: Optional[Dict[str, tuple]] = None) -> None:
        self.calls: List[tuple] = []
        self.status_by_dataset = status_by_dataset or {}

    def fit(
        self,
        model: MassModel,
        dataset: Dataset,
        fit_range: tuple,
        options: FitOptions,
    ) -> Optional[FitResult]:
        initial = model.values()
        self.calls.append((dataset.name, initial, options))

        lo, hi = fit_range
        masses = dataset.values(model.observable.name)
        masses = masses[(masses >= lo) & (masses <= hi)]

        in_peak = np.zeros(len(masses), dtype=bool)
        for state in ("1S", "2S", "3S"):
            mean, _ = model.peak_shape(state)
            in_peak |= np.abs(masses - mean) < self.WINDOW

        window_1s = np.abs(masses - initial["mean1S"]) < self.WINDOW
        mean1s = float(masses[window_1s].mean()) if window_1s.any() else initial["mean1S"]
        fbkg = float(np.count_nonzero(~in_peak)) / max(len(masses), 1)
        fbkg = min(fbkg, 1.0 - initial["f1S"] - initial["f2S"])

        model.set_values({"mean1S": mean1s, "fBkg": fbkg}, {"mean1S": 0.001, "fBkg": 0.01})

        status, cov_qual = self.status_by_dataset.get(dataset.name, (0, 3))
        floating = [p.name for p in model.floating_parameters()]
        final = model.values()
        errors = model.errors()

        if not options.save_result:
            return None
        return FitResult(
            name=f"fitResults_{dataset.name}",
            status=status,
            cov_qual=cov_qual,
            edm=0.0,
            min_nll=0.0,
            num_entries=len(masses),
            parameters={p: (final[p], errors[p]) for p in floating},
            initial_parameters={p: initial[p] for p in floating},
            num_workers=options.num_workers,
        )
