"""
Named, immutable event datasets

A Dataset wraps an awkward record array. Subsets are new Dataset objects built
by applying one selection; they do not keep a reference to their parent.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import awkward as ak
import numpy as np

from .exceptions import EmptySubsetError, MissingVariableError

if TYPE_CHECKING:
    from .selection import Selection

logger = logging.getLogger("UpsilonFits.Dataset")


class Dataset:
    """
    Immutable named collection of records

    Attributes:
        name: Dataset name (key in the workspace)
        title: Free text description
        records: awkward record array, one record per event
    """

    def __init__(self, name: str, records: ak.Array, title: str = "") -> None:
        self._name = name
        self._title = title or name
        self._records = records

    @property
    def name(self) -> str:
        return self._name

    @property
    def title(self) -> str:
        return self._title

    @property
    def records(self) -> ak.Array:
        return self._records

    @property
    def fields(self) -> list[str]:
        return list(self._records.fields)

    @property
    def num_entries(self) -> int:
        return len(self._records)

    def __len__(self) -> int:
        return self.num_entries

    def __repr__(self) -> str:
        return f"Dataset(name={self._name!r}, entries={self.num_entries}, fields={self.fields})"

    @classmethod
    def from_arrays(cls, name: str, arrays: dict[str, np.ndarray], title: str = "") -> Dataset:
        """Build a dataset from a {field: array} mapping"""
        return cls(name, ak.zip({k: np.asarray(v) for k, v in arrays.items()}), title=title)

    def values(self, field: str) -> np.ndarray:
        """Column ``field`` as a numpy array"""
        if field not in self._records.fields:
            raise MissingVariableError(field, context=f"dataset '{self._name}'")
        return ak.to_numpy(self._records[field])

    def to_numpy(self) -> dict[str, np.ndarray]:
        """All columns as {field: numpy array}"""
        return {field: ak.to_numpy(self._records[field]) for field in self._records.fields}

    def renamed(self, name: str, title: str = "") -> Dataset:
        """Same records under another name"""
        return Dataset(name, self._records, title=title or self._title)

    def reduce(self, selection: Selection, name: str | None = None) -> Dataset:
        """
        Subset of the events passing ``selection``.

        Args:
            selection: Typed selection (see modules.selection)
            name: Name of the subset (defaults to 'data_<selection name>')

        Returns:
            New Dataset carrying every field of this one

        Raises:
            MissingVariableError: If the selection uses a field this dataset lacks
            EmptySubsetError: If no event passes
        """
        mask = selection.mask(self._records)
        subset = self._records[mask]
        subset_name = name or f"data_{selection.name}"

        logger.debug(f"{subset_name}: {len(subset)}/{self.num_entries} entries pass {selection.expression}")

        if len(subset) == 0:
            raise EmptySubsetError(selection.name, selection.expression)

        return Dataset(subset_name, subset, title=selection.expression)
