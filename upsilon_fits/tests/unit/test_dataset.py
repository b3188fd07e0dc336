"""
Unit tests for Dataset, Observable and Parameter.
"""

from __future__ import annotations

import numpy as np
import pytest

from upsilon_fits.modules.dataset import Dataset
from upsilon_fits.modules.exceptions import (
    ConfigurationError,
    EmptySubsetError,
    MissingVariableError,
)
from upsilon_fits.modules.selection import RangeCut, threshold_expr
from upsilon_fits.modules.variables import Observable, Parameter


@pytest.fixture
def small_dataset() -> Dataset:
    return Dataset.from_arrays(
        "fullData",
        {
            "mass": np.array([9.4, 9.5, 10.0, 10.4, 11.0]),
            "Nch": np.array([1.0, 5.0, 12.0, 30.0, 60.0]),
            "pT": np.array([11.0, 14.0, 20.0, 40.0, 65.0]),
        },
    )


@pytest.mark.unit
class TestDataset:
    """Test naming and subsetting of datasets."""

    def test_basic_properties(self, small_dataset) -> None:
        assert small_dataset.name == "fullData"
        assert small_dataset.title == "fullData"
        assert small_dataset.num_entries == 5
        assert len(small_dataset) == 5
        assert small_dataset.fields == ["mass", "Nch", "pT"]

    def test_reduce(self, small_dataset) -> None:
        cut = threshold_expr("Nch", 5)
        subset = small_dataset.reduce(cut)

        assert subset.name == "data_Nch_5p0"
        assert subset.title == "Nch > 5"
        np.testing.assert_array_equal(subset.values("Nch"), [12.0, 30.0, 60.0])
        np.testing.assert_array_equal(subset.values("pT"), [20.0, 40.0, 65.0])

    def test_reduce_leaves_parent_untouched(self, small_dataset) -> None:
        small_dataset.reduce(RangeCut("pT", 10, 15), name="low_pt")
        assert small_dataset.num_entries == 5

    def test_reduce_empty(self, small_dataset) -> None:
        with pytest.raises(EmptySubsetError) as exc_info:
            small_dataset.reduce(threshold_expr("Nch", 100))
        assert exc_info.value.selection_name == "Nch_100p0"

    def test_missing_field(self, small_dataset) -> None:
        with pytest.raises(MissingVariableError):
            small_dataset.values("costh_HX")

    def test_renamed(self, small_dataset) -> None:
        renamed = small_dataset.renamed("fitData")
        assert renamed.name == "fitData"
        assert renamed.num_entries == small_dataset.num_entries

    def test_to_numpy(self, small_dataset) -> None:
        arrays = small_dataset.to_numpy()
        assert set(arrays) == {"mass", "Nch", "pT"}
        assert isinstance(arrays["mass"], np.ndarray)


@pytest.mark.unit
class TestObservable:
    """Test bounded observables and named ranges."""

    def test_inverted_range(self) -> None:
        with pytest.raises(ConfigurationError):
            Observable("mass", "m", 11.6, 8.4)

    def test_named_range(self) -> None:
        mass = Observable("mass", "m", 8.4, 11.6)
        mass.set_range("fitRange", 8.6, 11.4)
        assert mass.get_range("fitRange") == (8.6, 11.4)
        assert mass.get_range() == (8.4, 11.6)

    def test_range_outside(self) -> None:
        mass = Observable("mass", "m", 8.4, 11.6)
        with pytest.raises(ConfigurationError):
            mass.set_range("wide", 8.0, 12.0)

    def test_unknown_range(self) -> None:
        with pytest.raises(ConfigurationError):
            Observable("mass", "m", 8.4, 11.6).get_range("sideband")


@pytest.mark.unit
class TestParameter:
    """Test parameter seeds, steps and resets."""

    def test_seed_outside_bounds(self) -> None:
        with pytest.raises(ConfigurationError):
            Parameter("fBkg", 1.5, 0.0, 1.0)

    def test_constant_ignores_bounds(self) -> None:
        assert Parameter("r2S1S", 1.06, constant=True).value == 1.06

    def test_step(self) -> None:
        p = Parameter("a0", 0.5, -1.0, 1.0)
        assert p.step == pytest.approx(0.2)
        p.error = 0.03
        assert p.step == 0.03

    def test_reset(self) -> None:
        p = Parameter("mean1S", 9.46, 8.4, 11.6)
        p.value, p.error = 9.5, 0.01
        p.reset()
        assert (p.value, p.error) == (9.46, 0.0)
