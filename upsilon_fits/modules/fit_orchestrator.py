"""
Repeated mass fits over a list of selections

One shared MassModel is fitted to each selected subset of the full dataset,
in the given order. The model is not reset between fits: every fit starts
from the parameters the previous fit converged to. For each selection the
subset, the fit result and a snapshot of all parameters are stored in the
workspace under the selection name:

    data_<name>, fitResults_<name>, snap_<name>

Structural problems (name collision, empty subset, missing field) abort the
batch. A fit that does not converge is only recorded and reported.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from tqdm import tqdm

from ..utils.logging_config import get_tqdm_kwargs
from .dataset import Dataset
from .exceptions import DuplicateNameError
from .mass_model import MassModel, Snapshot
from .minimizer import COV_QUAL_FULL_ACCURATE, FitOptions, FitResult, Minimizer
from .selection import Selection
from .workspace import Workspace

logger = logging.getLogger("UpsilonFits.FitOrchestrator")


class FitStage(Enum):
    PENDING = "Pending"
    SUBSETTED = "Subsetted"
    FITTED = "Fitted"
    SNAPSHOTTED = "Snapshotted"
    REGISTERED = "Registered"


@dataclass(frozen=True)
class FitRecord:
    """Everything one selection produced"""

    name: str
    subset_name: str
    result: FitResult
    snapshot: Snapshot


class FitOrchestrator:
    """
    Drive one fit per selection against a shared model and workspace

    Attributes:
        workspace: Destination of subsets, fit results and snapshots
        model: Shared model, mutated in place by every fit
        minimizer: Object implementing the Minimizer protocol
        options: Options passed through to the minimizer on every fit
    """

    def __init__(
        self,
        workspace: Workspace,
        model: MassModel,
        minimizer: Minimizer,
        options: FitOptions | None = None,
    ) -> None:
        self.workspace = workspace
        self.model = model
        self.minimizer = minimizer
        self.options = options or FitOptions()
        self._batch_names: set[str] | None = None
        self.stages: dict[str, FitStage] = {}

    @property
    def registered_names(self) -> list[str]:
        return [n for n, s in self.stages.items() if s is FitStage.REGISTERED]

    def reset_model(self) -> None:
        """Return the shared model to its seed values before the next fit"""
        self.model.reset()

    def _advance(self, name: str, stage: FitStage) -> None:
        self.stages[name] = stage
        logger.debug(f"{name}: {stage.value}")

    def _claim(self, name: str, overwrite: bool) -> None:
        if self._batch_names is not None:
            if name in self._batch_names:
                raise DuplicateNameError(f"Selection name '{name}' already used in this batch")
            self._batch_names.add(name)
        if not overwrite:
            for key in (f"fitResults_{name}", f"snap_{name}"):
                if self.workspace.has(key):
                    raise DuplicateNameError(
                        f"'{key}' already exists in the workspace; pass overwrite=True to refit"
                    )
        self._advance(name, FitStage.PENDING)

    def _fit_and_register(
        self, name: str, data: Dataset, import_data: bool, overwrite: bool
    ) -> FitRecord:
        options = FitOptions(
            num_workers=self.options.num_workers,
            compute_minos=self.options.compute_minos,
            save_result=True,
            strategy=self.options.strategy,
        )
        result = self.minimizer.fit(self.model, data, self.model.fit_range, options)
        result = result.renamed(f"fitResults_{name}")
        self._advance(name, FitStage.FITTED)

        if result.status != 0 or result.cov_qual < COV_QUAL_FULL_ACCURATE:
            logger.warning(
                f"Fit '{name}' did not converge cleanly: status={result.status}, "
                f"covQual={result.cov_qual}"
            )

        snapshot = self.model.snapshot(f"snap_{name}")
        self._advance(name, FitStage.SNAPSHOTTED)

        if import_data:
            self.workspace.import_data(data, overwrite=overwrite)
        self.workspace.import_fit_result(result, overwrite=overwrite)
        self.workspace.save_snapshot(snapshot, overwrite=overwrite)
        self._advance(name, FitStage.REGISTERED)

        return FitRecord(name, data.name, result, snapshot)

    def fit_dataset(
        self, data: Dataset, name: str, import_data: bool = False, overwrite: bool = False
    ) -> FitRecord:
        """
        Fit the model to a whole dataset and store the result as ``name``.

        Args:
            data: Dataset to fit (usually already in the workspace)
            name: Name for fitResults_<name> and snap_<name>
            import_data: Also import ``data`` into the workspace
            overwrite: Replace existing entries stored under ``name``
        """
        self._claim(name, overwrite)
        return self._fit_and_register(name, data, import_data, overwrite)

    def fit_one(
        self, full_data: Dataset, selection: Selection, overwrite: bool = True
    ) -> FitRecord:
        """
        Fit the model to the subset of ``full_data`` passing ``selection``.

        Fitting a selection again, e.g. after reset_model(), replaces the
        data_/fitResults_/snap_ entries of the earlier attempt.

        Args:
            full_data: Dataset to select from
            selection: Typed selection; its name keys the stored objects
            overwrite: If False, fail when the selection was already fitted

        Raises:
            DuplicateNameError: If the name repeats within a batch, or is
                already stored and overwrite is False
            EmptySubsetError: If no entry passes the selection
            MissingVariableError: If the selection uses an unknown field
        """
        name = selection.name
        self._claim(name, overwrite)

        subset = full_data.reduce(selection, name=f"data_{name}")
        self._advance(name, FitStage.SUBSETTED)
        logger.info(f"{name}: {subset.num_entries} entries ({selection.expression})")

        return self._fit_and_register(name, subset, import_data=True, overwrite=overwrite)

    def run_batch(
        self, full_data: Dataset, selections: Sequence[Selection]
    ) -> list[tuple[str, FitResult]]:
        """
        Fit every selection in order and return (name, result) pairs.

        Selection names must be unique within one call. The first structural
        error is propagated and later selections are not processed. Poorly
        converged fits do not stop the batch.
        """
        results: list[tuple[str, FitResult]] = []
        self._batch_names = set()

        try:
            with tqdm(total=len(selections), **get_tqdm_kwargs(desc="Fitting", unit="selection")) as pbar:
                for selection in selections:
                    record = self.fit_one(full_data, selection)
                    results.append((record.name, record.result))

                    if not record.result.converged:
                        pbar.write(
                            f"  WARNING: {record.name}: status={record.result.status} "
                            f"covQual={record.result.cov_qual}"
                        )
                    pbar.update(1)
        finally:
            self._batch_names = None

        n_bad = sum(1 for _, r in results if not r.converged)
        logger.info(f"Batch done: {len(results)} fits, {n_bad} not fully converged")
        return results
