"""
Global pytest fixtures and configuration for the test suite.

Provides reusable fixtures for testing pipeline components without
duplicating setup code across test modules.
"""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, Generator

import pytest
import tomli

from upsilon_fits.modules.data_handler import DEFAULT_CONFIG_DIR
from upsilon_fits.modules.dataset import Dataset
from upsilon_fits.modules.mass_model import MassModel, build_model
from upsilon_fits.modules.workspace import Workspace

from upsilon_fits.tests.utils.mock_data_generator import (
    StubMinimizer,
    make_toy_dataset,
    make_workspace,
)


@pytest.fixture
def tmp_test_dir() -> Generator[Path, None, None]:
    """
    Create a temporary directory for test operations.

    Automatically cleaned up after test completion.

    Yields:
        Path to temporary directory
    """
    tmp_dir = Path(tempfile.mkdtemp(prefix="upsilon_test_"))
    try:
        yield tmp_dir
    finally:
        if tmp_dir.exists():
            shutil.rmtree(tmp_dir)


@pytest.fixture
def workspace() -> Workspace:
    """Workspace with all seven input variables declared"""
    return make_workspace()


@pytest.fixture
def model(workspace: Workspace) -> MassModel:
    """Default model over 'mass', registered in the workspace"""
    mass_model = build_model(workspace)
    workspace.import_model(mass_model)
    return mass_model


@pytest.fixture(scope="session")
def toy_dataset() -> Dataset:
    """
    2000 toy events drawn from the default model.

    Returns:
        Dataset named 'fullData' with all seven fields
    """
    return make_toy_dataset(2000, name="fullData", seed=7)


@pytest.fixture
def stub_minimizer() -> StubMinimizer:
    return StubMinimizer()


@pytest.fixture
def packaged_config() -> Dict[str, Dict[str, Any]]:
    """Contents of the packaged TOML files, keyed by file name"""
    contents = {}
    for path in sorted(DEFAULT_CONFIG_DIR.glob("*.toml")):
        with open(path, "rb") as f:
            contents[path.name] = tomli.load(f)
    return contents


@pytest.fixture
def config_dir_fixture(tmp_test_dir: Path, packaged_config: Dict[str, Dict[str, Any]]) -> Path:
    """
    Create a temporary config directory from the packaged TOML files.

    Outputs are redirected into the temporary directory, the likelihood
    runs on two workers and a small threshold scheme is added for quick
    end-to-end runs.

    Args:
        tmp_test_dir: Temporary test directory
        packaged_config: Parsed packaged configuration

    Returns:
        Path to config directory
    """
    import tomli_w

    config_dir = tmp_test_dir / "config"
    config_dir.mkdir(parents=True, exist_ok=True)

    configs = {name: dict(content) for name, content in packaged_config.items()}
    configs["data.toml"]["output"] = {
        "base_path": str(tmp_test_dir / "output"),
        "plots_dir": "plots",
    }
    configs["fitting.toml"]["minimizer"] = dict(configs["fitting.toml"]["minimizer"], num_workers=2)
    schemes = dict(configs["binning.toml"]["schemes"])
    schemes["quick_nch"] = {
        "type": "thresholds",
        "variable": "Nch",
        "values": [40.0, 90.0],
        "output": "ws_quick_nch.root",
    }
    configs["binning.toml"] = {"batch": {"default_scheme": "quick_nch"}, "schemes": schemes}

    for filename, content in configs.items():
        with open(config_dir / filename, "wb") as f:
            tomli_w.dump(content, f)

    return config_dir


def pytest_configure(config: pytest.Config) -> None:
    """
    Configure pytest with custom markers.

    Args:
        config: pytest configuration object
    """
    config.addinivalue_line("markers", "unit: Fast tests of a single component")
    config.addinivalue_line("markers", "integration: Tests running several components together")
    config.addinivalue_line("markers", "validation: Statistical checks of the fit on toy data")
    config.addinivalue_line("markers", "slow: Tests running real minimisations")
