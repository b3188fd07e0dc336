"""
Workspace: named container for everything a fit run produces

Holds the declared observables, the model, datasets, fit results and
parameter snapshots under unique names, and serialises all of it into one
ROOT file with uproot:

    <dataset name>          TTree, one branch per field
    fitResults_<name>       one-entry TTree (status, covQual, edm, minNll,
                            numEntries, numWorkers, <p>, <p>_err, <p>_init,
                            <p>_minosLo, <p>_minosHi)
    snap_<name>             one-entry TTree, one branch per parameter
    workspace_metadata      JSON string (observables, object index, cuts)
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import numpy as np
import uproot

from .dataset import Dataset
from .exceptions import (
    DuplicateNameError,
    MissingObjectError,
    MissingVariableError,
    PersistenceError,
)
from .mass_model import MassModel, Snapshot
from .minimizer import FitResult
from .variables import Observable

logger = logging.getLogger("UpsilonFits.Workspace")

METADATA_KEY = "workspace_metadata"


class Workspace:
    """
    Named object store with single-file serialisation

    Every import fails on an existing name unless overwrite=True.
    """

    def __init__(self, name: str = "workspace") -> None:
        self.name = name
        self._vars: dict[str, Observable] = {}
        self._pdfs: dict[str, MassModel] = {}
        self._data: dict[str, Dataset] = {}
        self._results: dict[str, FitResult] = {}
        self._snapshots: dict[str, Snapshot] = {}

    def __repr__(self) -> str:
        return (
            f"Workspace({self.name!r}: {len(self._vars)} vars, {len(self._data)} datasets, "
            f"{len(self._results)} fit results, {len(self._snapshots)} snapshots)"
        )

    @staticmethod
    def _store(container: dict, key: str, obj: Any, kind: str, overwrite: bool) -> None:
        if key in container and not overwrite:
            raise DuplicateNameError(f"{kind} '{key}' already exists in the workspace")
        container[key] = obj

    @staticmethod
    def _fetch(container: dict, key: str, kind: str) -> Any:
        try:
            return container[key]
        except KeyError:
            raise MissingObjectError(f"No {kind} named '{key}' in the workspace")

    # Observables

    def import_var(self, observable: Observable, overwrite: bool = False) -> None:
        self._store(self._vars, observable.name, observable, "Variable", overwrite)

    def var(self, name: str) -> Observable:
        if name not in self._vars:
            raise MissingVariableError(name, context=f"workspace '{self.name}'")
        return self._vars[name]

    # Model

    def import_model(self, model: MassModel, overwrite: bool = False) -> None:
        self._store(self._pdfs, model.name, model, "Model", overwrite)

    def pdf(self, name: str) -> MassModel:
        return self._fetch(self._pdfs, name, "model")

    # Datasets

    def import_data(self, dataset: Dataset, overwrite: bool = False) -> None:
        self._store(self._data, dataset.name, dataset, "Dataset", overwrite)

    def data(self, name: str) -> Dataset:
        return self._fetch(self._data, name, "dataset")

    # Fit results

    def import_fit_result(self, result: FitResult, overwrite: bool = False) -> None:
        self._store(self._results, result.name, result, "Fit result", overwrite)

    def fit_result(self, name: str) -> FitResult:
        return self._fetch(self._results, name, "fit result")

    # Snapshots

    def save_snapshot(self, snapshot: Snapshot, overwrite: bool = False) -> None:
        self._store(self._snapshots, snapshot.name, snapshot, "Snapshot", overwrite)

    def snapshot(self, name: str) -> Snapshot:
        return self._fetch(self._snapshots, name, "snapshot")

    def load_snapshot(self, name: str, model: MassModel | None = None) -> Snapshot:
        """Set the model's parameters to a stored snapshot"""
        snapshot = self.snapshot(name)
        target = model or self.pdf(MassModel.name)
        target.load_snapshot(snapshot)
        return snapshot

    # Listings

    def has(self, name: str) -> bool:
        return any(
            name in c for c in (self._vars, self._pdfs, self._data, self._results, self._snapshots)
        )

    def dataset_names(self) -> list[str]:
        return list(self._data)

    def fit_result_names(self) -> list[str]:
        return list(self._results)

    def snapshot_names(self) -> list[str]:
        return list(self._snapshots)

    # Serialisation

    def _metadata(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "observables": {
                name: {"title": o.title, "low": o.low, "high": o.high, "ranges": o.ranges}
                for name, o in self._vars.items()
            },
            "datasets": {name: d.title for name, d in self._data.items()},
            "fit_results": {
                name: {"parameters": list(r.parameters), "minos": list(r.minos_errors)}
                for name, r in self._results.items()
            },
            "snapshots": list(self._snapshots),
        }

    @staticmethod
    def _fit_result_branches(result: FitResult) -> dict[str, np.ndarray]:
        branches = {
            "status": np.array([result.status], dtype=np.int32),
            "covQual": np.array([result.cov_qual], dtype=np.int32),
            "edm": np.array([result.edm], dtype=np.float64),
            "minNll": np.array([result.min_nll], dtype=np.float64),
            "numEntries": np.array([result.num_entries], dtype=np.int64),
            "numWorkers": np.array([result.num_workers], dtype=np.int32),
        }
        for name, (value, error) in result.parameters.items():
            branches[name] = np.array([value], dtype=np.float64)
            branches[f"{name}_err"] = np.array([error], dtype=np.float64)
            branches[f"{name}_init"] = np.array(
                [result.initial_parameters.get(name, np.nan)], dtype=np.float64
            )
        for name, (lower, upper) in result.minos_errors.items():
            branches[f"{name}_minosLo"] = np.array([lower], dtype=np.float64)
            branches[f"{name}_minosHi"] = np.array([upper], dtype=np.float64)
        return branches

    def write_to_file(self, path: str | Path) -> Path:
        """
        Write every stored object into one ROOT file.

        Raises:
            PersistenceError: If the file cannot be written
        """
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with uproot.recreate(path) as f:
                for name, dataset in self._data.items():
                    f[name] = dataset.to_numpy()
                for name, result in self._results.items():
                    f[name] = self._fit_result_branches(result)
                for name, snapshot in self._snapshots.items():
                    f[name] = {
                        p: np.array([v], dtype=np.float64) for p, v in snapshot.values.items()
                    }
                f[METADATA_KEY] = json.dumps(self._metadata())
        except OSError as e:
            raise PersistenceError(f"Cannot write workspace to {path}: {e}")

        logger.info(
            f"Wrote {len(self._data)} datasets, {len(self._results)} fit results and "
            f"{len(self._snapshots)} snapshots to {path}"
        )
        return path

    @classmethod
    def read_from_file(cls, path: str | Path) -> Workspace:
        """
        Restore observables, datasets, fit results and snapshots from a file
        written by write_to_file(). The model itself is not stored; rebuild it
        and use load_snapshot() to restore a fit.

        Raises:
            PersistenceError: If the file cannot be opened or lacks metadata
        """
        path = Path(path)
        try:
            f = uproot.open(path)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Cannot open workspace file {path}: {e}")

        with f:
            if METADATA_KEY not in f:
                raise PersistenceError(f"{path} has no '{METADATA_KEY}': not a workspace file")
            meta = json.loads(str(f[METADATA_KEY]))

            ws = cls(meta.get("name", "workspace"))
            for name, obs in meta["observables"].items():
                observable = Observable(name, obs["title"], obs["low"], obs["high"])
                for range_name, (lo, hi) in obs["ranges"].items():
                    observable.set_range(range_name, lo, hi)
                ws.import_var(observable)

            for name, title in meta["datasets"].items():
                arrays = f[name].arrays(library="np")
                ws.import_data(Dataset.from_arrays(name, arrays, title=title))

            for name, info in meta["fit_results"].items():
                row = {k: v[0] for k, v in f[name].arrays(library="np").items()}
                ws.import_fit_result(
                    FitResult(
                        name=name,
                        status=int(row["status"]),
                        cov_qual=int(row["covQual"]),
                        edm=float(row["edm"]),
                        min_nll=float(row["minNll"]),
                        num_entries=int(row["numEntries"]),
                        parameters={
                            p: (float(row[p]), float(row[f"{p}_err"])) for p in info["parameters"]
                        },
                        initial_parameters={p: float(row[f"{p}_init"]) for p in info["parameters"]},
                        minos_errors={
                            p: (float(row[f"{p}_minosLo"]), float(row[f"{p}_minosHi"]))
                            for p in info["minos"]
                        },
                        num_workers=int(row["numWorkers"]),
                    )
                )

            for name in meta["snapshots"]:
                row = {k: float(v[0]) for k, v in f[name].arrays(library="np").items()}
                ws.save_snapshot(Snapshot(name, row))

        logger.info(f"Read {ws!r} from {path}")
        return ws
