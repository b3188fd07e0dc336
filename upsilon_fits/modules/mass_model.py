"""
Mass model for the Upsilon(1S, 2S, 3S) region

Composite density over the di-muon invariant mass:

    fBkg * Chebychev + f1S * CB(1S) + f2S * CB(2S) + f3S * CB(3S)

- Background: Chebychev polynomial (default cubic, coefficients a0..a2 in [-1, 1])
- Signal: three Crystal Ball peaks sharing the tail parameters alpha and n
- The 2S and 3S mean and width are the 1S values scaled by the fixed PDG
  mass ratios r2S1S and r3S1S, so only mean1S and sigma1S float
- f3S = 1 - fBkg - f1S - f2S is derived by implied_fraction()

Every component is normalised over the fit range. The density mathematics is
delegated to scipy.stats.crystalball and numpy.polynomial.chebyshev.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

import numpy as np
from numpy.polynomial import chebyshev
from scipy import stats

from .exceptions import ConfigurationError, ModelError
from .variables import Observable, Parameter

logger = logging.getLogger("UpsilonFits.MassModel")

# PDG masses in GeV/c^2
UPSILON_PDG_MASSES: dict[str, float] = {
    "1S": 9.460,
    "2S": 10.023,
    "3S": 10.355,
}

STATES = ("1S", "2S", "3S")

DEFAULT_FIT_RANGE = (8.6, 11.4)

# (seed, low, high); mean1S bounds default to the observable range
DEFAULT_SEEDS: dict[str, tuple[float, float, float]] = {
    "a0": (0.5, -1.0, 1.0),
    "a1": (0.0, -1.0, 1.0),
    "a2": (0.0, -1.0, 1.0),
    "sigma1S": (0.1, 0.001, 2.5),
    "alpha": (1.33, 0.01, 2.5),
    "n": (6.6, 1.01, 10.0),
    "fBkg": (0.5, 0.0, 1.0),
    "f1S": (0.2, 0.0, 1.0),
    "f2S": (0.15, 0.0, 1.0),
}

FRACTION_TOLERANCE = 1e-9


def implied_fraction(fractions: Sequence[float]) -> float:
    """
    Fraction of the last component of a normalised mixture.

    Args:
        fractions: Fractions of all other components, each in [0, 1]

    Returns:
        1 - sum(fractions)

    Raises:
        ModelError: If a fraction is outside [0, 1] or the sum exceeds 1
    """
    for f in fractions:
        if not 0.0 <= f <= 1.0:
            raise ModelError(f"Fraction {f} outside [0, 1]")
    total = float(sum(fractions))
    if total > 1.0 + FRACTION_TOLERANCE:
        raise ModelError(f"Fractions sum to {total:.6f} > 1")
    return max(0.0, 1.0 - total)


@dataclass(frozen=True)
class Snapshot:
    """All model parameter values at one point in time"""

    name: str
    values: dict[str, float]


class MassModel:
    """
    Three Crystal Ball peaks on a Chebychev background over one observable.

    The model is a mutable handle: each fit leaves its fitted values in the
    parameters, and the next fit starts from them. Use reset() to go back to
    the seeds and load_snapshot() to restore a stored fit.

    Attributes:
        name: Model name in the workspace
        observable: Fitted observable
        fit_range: (low, high) range used for normalisation and the likelihood
        background_order: Number of Chebychev coefficients
        parameters: Ordered {name: Parameter}, floating and constant
    """

    name = "fullModel"
    fit_range_name = "fitRange"

    def __init__(
        self,
        observable: Observable,
        fit_range: tuple[float, float],
        parameters: Mapping[str, Parameter],
        background_order: int,
    ) -> None:
        self.observable = observable
        self.fit_range = (float(fit_range[0]), float(fit_range[1]))
        self.parameters: dict[str, Parameter] = dict(parameters)
        self.background_order = background_order
        self.background_coefficients = [f"a{i}" for i in range(background_order)]

    def __repr__(self) -> str:
        return (
            f"MassModel(observable={self.observable.name!r}, fit_range={self.fit_range}, "
            f"floating={len(self.floating_parameters())})"
        )

    # Parameter access

    def floating_parameters(self) -> list[Parameter]:
        return [p for p in self.parameters.values() if not p.constant]

    def values(self) -> dict[str, float]:
        return {name: p.value for name, p in self.parameters.items()}

    def errors(self) -> dict[str, float]:
        return {name: p.error for name, p in self.parameters.items()}

    def set_values(
        self, values: Mapping[str, float], errors: Mapping[str, float] | None = None
    ) -> None:
        unknown = set(values) - set(self.parameters)
        if unknown:
            raise ModelError(f"Unknown parameters: {sorted(unknown)}")
        for name, value in values.items():
            self.parameters[name].value = float(value)
        for name, error in (errors or {}).items():
            self.parameters[name].error = float(error)

    def snapshot(self, name: str) -> Snapshot:
        return Snapshot(name, self.values())

    def load_snapshot(self, snapshot: Snapshot) -> None:
        self.set_values(snapshot.values)

    def reset(self) -> None:
        """Restore every parameter to its seed value"""
        for p in self.parameters.values():
            p.reset()
        logger.debug("Model parameters reset to seeds")

    def _resolve(self, values: Mapping[str, float] | None) -> dict[str, float]:
        current = self.values()
        if values:
            current.update(values)
        return current

    # Derived quantities

    def derived_values(self, values: Mapping[str, float] | None = None) -> dict[str, float]:
        v = self._resolve(values)
        derived = {}
        for state in ("2S", "3S"):
            ratio = v[f"r{state}1S"]
            derived[f"mean{state}"] = v["mean1S"] * ratio
            derived[f"sigma{state}"] = v["sigma1S"] * ratio
        return derived

    def peak_shape(self, state: str, values: Mapping[str, float] | None = None) -> tuple[float, float]:
        """(mean, sigma) of one peak"""
        v = self._resolve(values)
        if state == "1S":
            return v["mean1S"], v["sigma1S"]
        derived = self.derived_values(v)
        return derived[f"mean{state}"], derived[f"sigma{state}"]

    def fractions(self, values: Mapping[str, float] | None = None) -> dict[str, float]:
        v = self._resolve(values)
        given = [v["fBkg"], v["f1S"], v["f2S"]]
        return {
            "bkgPoly": given[0],
            "sigCB1S": given[1],
            "sigCB2S": given[2],
            "sigCB3S": implied_fraction(given),
        }

    # Densities

    def _chebychev(self, x: np.ndarray, v: Mapping[str, float]) -> np.ndarray:
        xmin, xmax = self.observable.low, self.observable.high
        lo, hi = self.fit_range
        coefficients = [1.0] + [v[c] for c in self.background_coefficients]

        def to_unit(m):
            return (2.0 * np.asarray(m, dtype=float) - (xmin + xmax)) / (xmax - xmin)

        antiderivative = chebyshev.chebint(coefficients)
        norm = 0.5 * (xmax - xmin) * (
            chebyshev.chebval(to_unit(hi), antiderivative) - chebyshev.chebval(to_unit(lo), antiderivative)
        )
        if not norm > 0:
            raise ModelError(f"Background normalisation {norm} is not positive")
        return chebyshev.chebval(to_unit(x), coefficients) / norm

    def _crystal_ball(
        self, x: np.ndarray, mean: float, sigma: float, alpha: float, n: float
    ) -> np.ndarray:
        lo, hi = self.fit_range
        shape = stats.crystalball(alpha, n, loc=mean, scale=sigma)
        norm = shape.cdf(hi) - shape.cdf(lo)
        if not norm > 0:
            raise ModelError(f"Crystal Ball normalisation {norm} is not positive (mean={mean})")
        return shape.pdf(x) / norm

    def component_densities(
        self, x: np.ndarray, values: Mapping[str, float] | None = None
    ) -> dict[str, np.ndarray]:
        """
        Each component evaluated at x, normalised over the fit range.

        Raises:
            ModelError: If a normalisation integral is not positive
        """
        v = self._resolve(values)
        x = np.asarray(x, dtype=float)
        components = {"bkgPoly": self._chebychev(x, v)}
        for state in STATES:
            mean, sigma = self.peak_shape(state, v)
            components[f"sigCB{state}"] = self._crystal_ball(x, mean, sigma, v["alpha"], v["n"])
        return components

    def density(self, x: np.ndarray, values: Mapping[str, float] | None = None) -> np.ndarray:
        """
        Mixture density at x.

        Raises:
            ModelError: If the fractions are invalid or a normalisation fails
        """
        v = self._resolve(values)
        fractions = self.fractions(v)
        components = self.component_densities(x, v)
        return sum(fractions[name] * components[name] for name in components)


def _seed(
    seeds: Mapping[str, Sequence[float]], name: str, default: tuple[float, float, float]
) -> tuple[float, float, float]:
    triple = seeds.get(name, default)
    if len(triple) != 3:
        raise ConfigurationError(f"Seed for '{name}' must be [value, low, high], got {triple}")
    return float(triple[0]), float(triple[1]), float(triple[2])


def build_model(
    workspace: Any,
    fit_range: tuple[float, float] = DEFAULT_FIT_RANGE,
    *,
    observable: str = "mass",
    background_order: int = 3,
    pdg_masses: Mapping[str, float] | None = None,
    seeds: Mapping[str, Sequence[float]] | None = None,
) -> MassModel:
    """
    Define the three-peak plus background model over a declared observable.

    Args:
        workspace: Workspace holding the declared observables
        fit_range: (low, high) range for normalisation and likelihood
        observable: Name of the fitted observable
        background_order: Number of free Chebychev coefficients
        pdg_masses: {'1S': m1, '2S': m2, '3S': m3}, PDG values by default
        seeds: {parameter: [value, low, high]} overriding DEFAULT_SEEDS

    Returns:
        Newly constructed MassModel

    Raises:
        MissingVariableError: If the observable is not declared in the workspace
        ConfigurationError: If the fit range is outside the observable range
    """
    mass = workspace.var(observable)
    if not mass.contains(*fit_range):
        raise ConfigurationError(
            f"Fit range {tuple(fit_range)} is not inside '{mass.name}' [{mass.low}, {mass.high}]"
        )
    if background_order < 1:
        raise ConfigurationError(f"Background order must be >= 1, got {background_order}")

    masses = dict(UPSILON_PDG_MASSES)
    masses.update(pdg_masses or {})
    seeds = dict(seeds or {})

    params: dict[str, Parameter] = {}

    for i in range(background_order):
        name = f"a{i}"
        value, low, high = _seed(seeds, name, DEFAULT_SEEDS.get(name, (0.0, -1.0, 1.0)))
        params[name] = Parameter(name, value, low, high)

    value, low, high = _seed(seeds, "mean1S", (masses["1S"], mass.low, mass.high))
    params["mean1S"] = Parameter("mean1S", value, low, high)

    for name in ("sigma1S", "alpha", "n"):
        value, low, high = _seed(seeds, name, DEFAULT_SEEDS[name])
        params[name] = Parameter(name, value, low, high)

    for name in ("fBkg", "f1S", "f2S"):
        value, low, high = _seed(seeds, name, DEFAULT_SEEDS[name])
        params[name] = Parameter(name, value, low, high)

    for state in ("2S", "3S"):
        name = f"r{state}1S"
        params[name] = Parameter(name, masses[state] / masses["1S"], constant=True)

    model = MassModel(mass, fit_range, params, background_order)

    # seeds must describe a valid mixture
    model.fractions()

    logger.info(
        f"Built {model.name}: {len(model.floating_parameters())} floating parameters, "
        f"fit range {model.fit_range} on '{mass.name}'"
    )
    return model
