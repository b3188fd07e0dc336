"""
Configuration and input data handling

TOMLConfig loads the TOML files of a configuration directory:
- physics.toml: PDG masses of the Upsilon states
- fitting.toml: model, fit range, parameter seeds, minimizer options
- binning.toml: kinematic fit scans (bins, thresholds, combinations)
- data.toml: input tree, declared variables, output paths

DataManager reads the input tree with uproot into a Dataset.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import awkward as ak
import numpy as np
import tomli
import uproot

from .dataset import Dataset
from .exceptions import ConfigurationError, DataLoadError, MissingVariableError
from .minimizer import FitOptions
from .variables import Observable

logger = logging.getLogger("UpsilonFits.DataHandler")

DEFAULT_CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"


class TOMLConfig:
    """
    Load and manage all TOML configuration files

    Attributes:
        config_dir: Directory holding the TOML files
        physics, fitting, binning, data: Parsed contents of each file
    """

    REQUIRED_FILES = ("physics", "fitting", "binning", "data")

    def __init__(self, config_dir: str | Path | None = None) -> None:
        self.config_dir = Path(config_dir) if config_dir is not None else DEFAULT_CONFIG_DIR

        self.physics = self._load_toml("physics.toml")
        self.fitting = self._load_toml("fitting.toml")
        self.binning = self._load_toml("binning.toml")
        self.data = self._load_toml("data.toml")

    def _load_toml(self, filename: str) -> dict:
        """
        Load TOML configuration file with proper error handling

        Args:
            filename: Name of the TOML file to load

        Returns:
            dict: Parsed TOML configuration

        Raises:
            ConfigurationError: If file not found or parsing fails
        """
        config_path = self.config_dir / filename
        try:
            with open(config_path, "rb") as f:
                return tomli.load(f)
        except FileNotFoundError:
            raise ConfigurationError(
                f"Configuration file not found: {config_path}\n"
                f"Please ensure all config files are present in {self.config_dir}"
            )
        except tomli.TOMLDecodeError as e:
            raise ConfigurationError(f"Error parsing TOML file {config_path}: {e}")

    def _section(self, content: dict, key: str, filename: str) -> Any:
        try:
            return content[key]
        except KeyError:
            raise ConfigurationError(f"Missing section '{key}' in {self.config_dir / filename}")

    def get_pdg_mass(self, state: str) -> float:
        """Get PDG mass of an Upsilon state ('1S', '2S', '3S') in GeV/c²"""
        return self.get_pdg_masses()[state]

    def get_pdg_masses(self) -> dict[str, float]:
        return dict(self._section(self.physics, "pdg_masses", "physics.toml"))

    def get_fit_range(self) -> tuple[float, float]:
        fit_range = self._section(self.fitting, "fit_range", "fitting.toml")
        low, high = float(fit_range["min"]), float(fit_range["max"])
        if not low < high:
            raise ConfigurationError(f"Fit range needs min < max, got [{low}, {high}]")
        return (low, high)

    def get_model_options(self) -> dict[str, Any]:
        model = self.fitting.get("model", {})
        return {
            "observable": model.get("observable", "mass"),
            "background_order": int(model.get("background_order", 3)),
        }

    def get_parameter_seeds(self) -> dict[str, list[float]]:
        return dict(self.fitting.get("parameters", {}))

    def get_minimizer_options(self) -> FitOptions:
        opts = self.fitting.get("minimizer", {})
        return FitOptions(
            num_workers=int(opts.get("num_workers", 1)),
            compute_minos=bool(opts.get("minos", False)),
            save_result=True,
            strategy=int(opts.get("strategy", 1)),
        )

    def get_minimizer_settings(self) -> dict[str, Any]:
        opts = self.fitting.get("minimizer", {})
        return {
            "tolerance": float(opts.get("tolerance", 0.1)),
            "max_calls": int(opts.get("max_calls", 0)),
        }

    def get_scheme_names(self) -> list[str]:
        return list(self.binning.get("schemes", {}))

    def get_default_scheme(self) -> str:
        return self.binning.get("batch", {}).get("default_scheme", "nch_pt_combinations")

    def get_scheme(self, name: str) -> dict[str, Any]:
        schemes = self.binning.get("schemes", {})
        if name not in schemes:
            raise ConfigurationError(
                f"Unknown binning scheme '{name}'\n"
                f"Available schemes: {', '.join(schemes) or 'none'}"
            )
        return schemes[name]

    def get_variables(self) -> list[Observable]:
        """Observables declared in data.toml, in file order"""
        variables = self._section(self.data, "variables", "data.toml")
        observables = []
        for name, entry in variables.items():
            if len(entry) != 3:
                raise ConfigurationError(f"Variable '{name}' must be [title, min, max], got {entry}")
            title, low, high = entry
            observables.append(Observable(name, title, low, high))
        return observables

    def get_input_options(self) -> dict[str, str]:
        inp = self.data.get("input", {})
        return {
            "tree_name": inp.get("tree_name", "selectedData"),
            "full_data_name": inp.get("full_data_name", "fullData"),
            "fit_data_name": inp.get("fit_data_name", "fitData"),
        }

    def get_output_path(self, scheme: str) -> Path:
        output = self.data.get("output", {})
        base = Path(output.get("base_path", "."))
        filename = self.get_scheme(scheme).get("output", f"ws_fit_result_{scheme}.root")
        return base / filename

    def get_plots_dir(self) -> Path:
        output = self.data.get("output", {})
        return Path(output.get("base_path", ".")) / output.get("plots_dir", "plots")


class DataManager:
    """
    Load the selected-candidate tree into a Dataset

    Only the declared observables are read. Entries with any observable
    outside its declared range are dropped, as RooDataSet does on import.
    """

    def __init__(self, observables: list[Observable], tree_name: str = "selectedData") -> None:
        self.observables = observables
        self.tree_name = tree_name

    def load_dataset(self, file_path: str | Path, name: str = "fullData") -> Dataset:
        """
        Read the input tree.

        Args:
            file_path: Path to the ROOT file
            name: Name of the returned dataset

        Returns:
            Dataset with one field per declared observable

        Raises:
            DataLoadError: If the file or tree cannot be read
            MissingVariableError: If a declared observable has no branch
        """
        file_path = Path(file_path)
        branches = [o.name for o in self.observables]

        try:
            with uproot.open(file_path) as f:
                if self.tree_name not in f:
                    raise DataLoadError(f"Tree '{self.tree_name}' not found in {file_path}")
                tree = f[self.tree_name]
                for branch in branches:
                    if branch not in tree.keys():
                        raise MissingVariableError(branch, file_path.name)
                events = tree.arrays(branches, library="ak")
        except (OSError, ValueError) as e:
            raise DataLoadError(f"Cannot open input file {file_path}: {e}")

        n_total = len(events)
        in_range = np.ones(n_total, dtype=bool)
        for o in self.observables:
            values = ak.to_numpy(events[o.name])
            in_range &= (values >= o.low) & (values <= o.high)
        events = events[in_range]

        logger.info(
            f"Loaded {len(events)}/{n_total} entries from {file_path.name}:{self.tree_name} "
            f"({n_total - len(events)} outside variable ranges)"
        )
        return Dataset(name, events, title="dataset without cuts")
