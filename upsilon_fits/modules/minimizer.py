"""
Minimizer adapter

The orchestrator only sees the Minimizer protocol: fit(model, dataset,
fit_range, options) -> FitResult. MinuitMinimizer implements it with iminuit
(Minuit2 MIGRAD / HESSE / MINOS) on an unbinned negative log-likelihood.

Status codes follow the Minuit2 convention:
    0 converged, 1 covariance made pos-def, 2 HESSE failed,
    3 EDM above maximum, 4 call limit reached, 5 other failure
Covariance quality:
    0 not calculated, 1 approximation only, 2 forced pos-def, 3 full accurate
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Mapping, Optional, Protocol, Sequence

import numpy as np
from iminuit import Minuit

from .dataset import Dataset
from .exceptions import FittingError, ModelError
from .mass_model import MassModel

logger = logging.getLogger("UpsilonFits.Minimizer")

COV_QUAL_FULL_ACCURATE = 3


@dataclass(frozen=True)
class FitOptions:
    """
    Options passed through to the minimizer

    Attributes:
        num_workers: Threads used to evaluate the likelihood of one fit
        compute_minos: Run MINOS after HESSE
        save_result: Return a FitResult (None otherwise)
        strategy: Minuit strategy (0, 1, 2)
    """

    num_workers: int = 1
    compute_minos: bool = False
    save_result: bool = True
    strategy: int = 1


@dataclass(frozen=True)
class FitResult:
    """
    Outcome of one minimisation

    Attributes:
        name: Result name (fitResults_<selection name>)
        status: Minimizer status code (0 = success)
        cov_qual: Covariance quality (3 = full accurate)
        edm: Estimated distance to minimum
        min_nll: Negative log-likelihood at the minimum
        num_entries: Entries inside the fit range
        parameters: {name: (value, error)} of the floating parameters
        initial_parameters: {name: value} of the floating parameters at the start
        minos_errors: {name: (lower, upper)} if MINOS was run
        num_workers: Worker-count hint the fit ran with
    """

    name: str
    status: int
    cov_qual: int
    edm: float
    min_nll: float
    num_entries: int
    parameters: dict[str, tuple[float, float]]
    initial_parameters: dict[str, float]
    minos_errors: dict[str, tuple[float, float]] = field(default_factory=dict)
    num_workers: int = 1

    @property
    def converged(self) -> bool:
        return self.status == 0 and self.cov_qual == COV_QUAL_FULL_ACCURATE

    def value(self, name: str) -> float:
        return self.parameters[name][0]

    def error(self, name: str) -> float:
        return self.parameters[name][1]

    def renamed(self, name: str) -> FitResult:
        return FitResult(
            name=name,
            status=self.status,
            cov_qual=self.cov_qual,
            edm=self.edm,
            min_nll=self.min_nll,
            num_entries=self.num_entries,
            parameters=dict(self.parameters),
            initial_parameters=dict(self.initial_parameters),
            minos_errors=dict(self.minos_errors),
            num_workers=self.num_workers,
        )


class Minimizer(Protocol):
    def fit(
        self,
        model: MassModel,
        dataset: Dataset,
        fit_range: tuple[float, float],
        options: FitOptions,
    ) -> Optional[FitResult]: ...


class NegativeLogLikelihood:
    """
    Unbinned NLL of the model over the events inside the fit range.

    With more than one worker the events are split into chunks whose partial
    sums are evaluated on a thread pool. Parameter points where the model is
    not defined (fractions summing above one, negative density) return a value
    above the largest NLL seen so far, growing with the distance from the
    valid region, so that MIGRAD is pushed back.
    """

    WALL_OFFSET = 1000.0
    WALL_SLOPE = 1.0e4

    def __init__(
        self,
        model: MassModel,
        data: np.ndarray,
        names: Sequence[str],
        num_workers: int = 1,
    ) -> None:
        self.model = model
        self.names = list(names)
        self.num_workers = max(1, int(num_workers))
        self.n_calls = 0
        self.max_valid = 0.0
        if self.num_workers > 1 and len(data) >= self.num_workers:
            self._chunks = [c for c in np.array_split(data, self.num_workers) if len(c)]
            self._executor: ThreadPoolExecutor | None = ThreadPoolExecutor(max_workers=len(self._chunks))
        else:
            self._chunks = [data]
            self._executor = None

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def _partial(self, chunk: np.ndarray, values: Mapping[str, float]) -> tuple[float, float]:
        density = self.model.density(chunk, values)
        bad = ~(density > 0)
        if np.any(bad):
            return 0.0, float(np.sum(np.abs(np.nan_to_num(density[bad]))) + np.count_nonzero(bad))
        return float(-np.sum(np.log(density))), 0.0

    def _wall(self, excess: float) -> float:
        return self.max_valid + self.WALL_OFFSET + self.WALL_SLOPE * excess

    def fraction_excess(self, values: Mapping[str, float]) -> float:
        fractions = [values["fBkg"], values["f1S"], values["f2S"]]
        return max(0.0, sum(fractions) - 1.0)

    def __call__(self, par: Sequence[float]) -> float:
        self.n_calls += 1
        values = dict(zip(self.names, par))
        full = self.model.values()
        full.update(values)

        try:
            if self._executor is None:
                partials = [self._partial(self._chunks[0], full)]
            else:
                partials = list(self._executor.map(lambda c: self._partial(c, full), self._chunks))
        except ModelError:
            return self._wall(self.fraction_excess(full) + 1.0)

        excess = sum(p[1] for p in partials)
        if excess > 0:
            return self._wall(excess)

        nll = sum(p[0] for p in partials)
        if not np.isfinite(nll):
            return self._wall(1.0)
        self.max_valid = max(self.max_valid, nll)
        return nll


def fit_status(fmin) -> int:
    """Minuit2-style status code from an iminuit FMin"""
    if fmin.has_reached_call_limit:
        return 4
    if fmin.is_above_max_edm:
        return 3
    if fmin.hesse_failed:
        return 2
    if fmin.has_made_posdef_covar:
        return 1
    if not fmin.is_valid:
        return 5
    return 0


def covariance_quality(fmin) -> int:
    """RooFit-style covariance quality from an iminuit FMin"""
    if not fmin.has_covariance:
        return 0
    if fmin.has_made_posdef_covar:
        return 2
    if not fmin.has_accurate_covar:
        return 1
    return COV_QUAL_FULL_ACCURATE


class MinuitMinimizer:
    """
    Unbinned maximum-likelihood fits with iminuit.

    The fit starts from the model's current parameter values and writes the
    fitted values and errors back into the model.
    """

    def __init__(self, tolerance: float = 0.1, max_calls: int = 0) -> None:
        self.tolerance = tolerance
        self.max_calls = max_calls

    def fit(
        self,
        model: MassModel,
        dataset: Dataset,
        fit_range: tuple[float, float],
        options: FitOptions,
    ) -> Optional[FitResult]:
        """
        Fit ``model`` to ``dataset`` inside ``fit_range``.

        Raises:
            FittingError: If no entry of the dataset is inside the fit range
        """
        lo, hi = fit_range
        masses = dataset.values(model.observable.name)
        masses = masses[(masses >= lo) & (masses <= hi)]
        if len(masses) == 0:
            raise FittingError(f"No entries of '{dataset.name}' inside fit range [{lo}, {hi}]")

        floating = model.floating_parameters()
        names = [p.name for p in floating]
        initial = {p.name: p.value for p in floating}

        nll = NegativeLogLikelihood(model, masses, names, options.num_workers)
        try:
            minuit = Minuit(nll, [p.value for p in floating], name=names)
            minuit.errordef = Minuit.LIKELIHOOD
            minuit.strategy = options.strategy
            minuit.tol = self.tolerance
            minuit.print_level = 0
            for p in floating:
                minuit.limits[p.name] = (p.low, p.high)
                minuit.errors[p.name] = p.step

            ncall = self.max_calls or None
            minuit.migrad(ncall=ncall)
            minuit.hesse()

            minos_errors: dict[str, tuple[float, float]] = {}
            if options.compute_minos and minuit.valid:
                minuit.minos()
                for name in names:
                    merror = minuit.merrors[name]
                    minos_errors[name] = (float(merror.lower), float(merror.upper))
        finally:
            nll.close()

        fitted = {name: float(minuit.values[name]) for name in names}
        errors = {name: float(minuit.errors[name]) for name in names}
        model.set_values(fitted, errors)

        fmin = minuit.fmin
        status = fit_status(fmin)
        cov_qual = covariance_quality(fmin)

        logger.debug(
            f"{dataset.name}: status={status} covQual={cov_qual} edm={fmin.edm:.2e} "
            f"nll={fmin.fval:.3f} calls={nll.n_calls}"
        )

        if not options.save_result:
            return None

        return FitResult(
            name=f"fitResults_{dataset.name}",
            status=status,
            cov_qual=cov_qual,
            edm=float(fmin.edm),
            min_nll=float(fmin.fval),
            num_entries=int(len(masses)),
            parameters={name: (fitted[name], errors[name]) for name in names},
            initial_parameters=initial,
            minos_errors=minos_errors,
            num_workers=options.num_workers,
        )
