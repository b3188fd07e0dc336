"""
Cut and bin definitions for the kinematic fit scans

Every analysis bin is a typed selection (range, threshold, AND, OR) with a
deterministic identifier-safe name and a human readable expression. The
expression is only ever displayed and persisted; filtering always goes through
``mask()`` on the typed selection.

Example usage:
    edges = [0.0, 0.1, 0.2, 0.3]
    cut = bin_expr(edges, 1, "costh_HX", label="absCosth", absolute=True)
    cut.name        # 'absCosth_0p0to0p1'
    cut.expression  # '(abs(costh_HX) > 0 && abs(costh_HX) < 0.1)'

    combined = combine(RangeCut("Nch", 0, 180), RangeCut("pT", 15, 70))
    combined.name   # 'Nch_0p0to180p0_pT_15p0to70p0'
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Sequence, Union

import awkward as ak
import numpy as np

from .exceptions import (
    BinIndexError,
    ConfigurationError,
    MissingVariableError,
    SelectionError,
)

logger = logging.getLogger("UpsilonFits.Selection")


def format_number(value: float) -> str:
    """
    Render a number so it can be used inside identifiers and file names.

    The shortest round-trip digits of the float are written in fixed-point
    notation and the decimal point is replaced by ``p``: 0.5 -> '0p5',
    15 -> '15p0', -0.25 -> '-0p25', 1e-5 -> '0p00001'.

    Args:
        value: Finite number

    Returns:
        Identifier-safe text without '.', '+' or an exponent

    Raises:
        SelectionError: If value is NaN or infinite
    """
    number = float(value)
    if not math.isfinite(number):
        raise SelectionError(f"Cannot build a cut name from non-finite value {value!r}")

    text = np.format_float_positional(number, unique=True, trim="0")
    return text.replace(".", "p")


def _format_literal(value: float) -> str:
    """Number as it appears in a cut expression (e.g. 180.0 -> '180', 0.1234567 unchanged)"""
    return np.format_float_positional(float(value), unique=True, trim="-")


def _column(records: ak.Array, variable: str) -> np.ndarray:
    if variable not in records.fields:
        raise MissingVariableError(variable, context=f"dataset fields {records.fields}")
    return ak.to_numpy(records[variable])


@dataclass(frozen=True)
class RangeCut:
    """Open interval low < variable < high"""

    variable: str
    low: float
    high: float
    label: str | None = None
    absolute: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "low", float(self.low))
        object.__setattr__(self, "high", float(self.high))
        if not (math.isfinite(self.low) and math.isfinite(self.high)):
            raise SelectionError(f"Range cut on {self.variable} needs finite edges")
        if not self.low < self.high:
            raise SelectionError(
                f"Range cut on {self.variable} needs low < high, got {self.low} and {self.high}"
            )

    @property
    def term(self) -> str:
        return f"abs({self.variable})" if self.absolute else self.variable

    @property
    def name(self) -> str:
        return f"{self.label or self.variable}_{format_number(self.low)}to{format_number(self.high)}"

    @property
    def expression(self) -> str:
        return (
            f"({self.term} > {_format_literal(self.low)} && "
            f"{self.term} < {_format_literal(self.high)})"
        )

    @property
    def variables(self) -> tuple[str, ...]:
        return (self.variable,)

    def mask(self, records: ak.Array) -> np.ndarray:
        values = _column(records, self.variable)
        if self.absolute:
            values = np.abs(values)
        return (values > self.low) & (values < self.high)


@dataclass(frozen=True)
class ThresholdCut:
    """
    Lower-bound cut ``variable > value``.

    Only strictly-greater-than is supported. There is no upper-bound or
    inclusive variant; use a RangeCut for those selections.
    """

    variable: str
    value: float
    label: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", float(self.value))
        if not math.isfinite(self.value):
            raise SelectionError(f"Threshold cut on {self.variable} needs a finite value")

    @property
    def name(self) -> str:
        return f"{self.label or self.variable}_{format_number(self.value)}"

    @property
    def expression(self) -> str:
        return f"{self.variable} > {_format_literal(self.value)}"

    @property
    def variables(self) -> tuple[str, ...]:
        return (self.variable,)

    def mask(self, records: ak.Array) -> np.ndarray:
        return _column(records, self.variable) > self.value


@dataclass(frozen=True)
class AllOf:
    """Logical AND of selections, evaluated and named in the given order"""

    selections: tuple[Selection, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "selections", tuple(self.selections))
        if not self.selections:
            raise SelectionError("AllOf needs at least one selection")

    @property
    def name(self) -> str:
        return "_".join(s.name for s in self.selections)

    @property
    def expression(self) -> str:
        return " && ".join(s.expression for s in self.selections)

    @property
    def variables(self) -> tuple[str, ...]:
        return tuple(v for s in self.selections for v in s.variables)

    def mask(self, records: ak.Array) -> np.ndarray:
        result = np.ones(len(records), dtype=bool)
        for selection in self.selections:
            result &= selection.mask(records)
        return result


@dataclass(frozen=True)
class AnyOf:
    """Logical OR of selections"""

    selections: tuple[Selection, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "selections", tuple(self.selections))
        if not self.selections:
            raise SelectionError("AnyOf needs at least one selection")

    @property
    def name(self) -> str:
        return "_or_".join(s.name for s in self.selections)

    @property
    def expression(self) -> str:
        return "(" + " || ".join(s.expression for s in self.selections) + ")"

    @property
    def variables(self) -> tuple[str, ...]:
        return tuple(v for s in self.selections for v in s.variables)

    def mask(self, records: ak.Array) -> np.ndarray:
        result = np.zeros(len(records), dtype=bool)
        for selection in self.selections:
            result |= selection.mask(records)
        return result


Selection = Union[RangeCut, ThresholdCut, AllOf, AnyOf]


def _check_bin_index(edges: Sequence[float], bin_index: int) -> None:
    if not 1 <= bin_index <= len(edges) - 1:
        raise BinIndexError(bin_index, len(edges))


def bin_expr(
    edges: Sequence[float],
    bin_index: int,
    variable: str,
    *,
    label: str | None = None,
    absolute: bool = False,
) -> RangeCut:
    """
    Selection for bin ``bin_index`` of an edge array.

    Bins are numbered from 1: bin i covers edges[i-1] < variable < edges[i],
    both boundaries excluded.

    Raises:
        BinIndexError: If bin_index is outside [1, len(edges) - 1]
    """
    _check_bin_index(edges, bin_index)
    return RangeCut(
        variable, edges[bin_index - 1], edges[bin_index], label=label, absolute=absolute
    )


def bin_name(edges: Sequence[float], bin_index: int, variable: str) -> str:
    """Name of bin ``bin_index``: '<variable>_<low>to<high>'"""
    _check_bin_index(edges, bin_index)
    return f"{variable}_{format_number(edges[bin_index - 1])}to{format_number(edges[bin_index])}"


def threshold_expr(variable: str, value: float, *, label: str | None = None) -> ThresholdCut:
    """Selection ``variable > value`` (greater-than only)"""
    return ThresholdCut(variable, value, label=label)


def threshold_name(variable: str, value: float) -> str:
    """Name of a threshold cut: '<variable>_<value>'"""
    return f"{variable}_{format_number(value)}"


def combine(*selections: Selection) -> AllOf:
    """AND of the selections; the first selection comes first in name and expression"""
    return AllOf(selections)


def either(*selections: Selection) -> AnyOf:
    """OR of the selections"""
    return AnyOf(selections)


def bin_cuts(
    edges: Sequence[float],
    variable: str,
    *,
    label: str | None = None,
    absolute: bool = False,
) -> list[RangeCut]:
    """One RangeCut per bin of the edge array, in bin order"""
    return [
        bin_expr(edges, i, variable, label=label, absolute=absolute)
        for i in range(1, len(edges))
    ]


def threshold_cuts(variable: str, values: Sequence[float], *, label: str | None = None) -> list[ThresholdCut]:
    """One ThresholdCut per value, in the given order"""
    return [threshold_expr(variable, v, label=label) for v in values]


def range_combinations(
    variables: Sequence[str], ranges: Sequence[dict[str, Sequence[float]]]
) -> list[AllOf]:
    """
    Composite cuts over several variables.

    Args:
        variables: Variable order used for every composite (first variable first)
        ranges: One mapping per composite, {variable: [low, high]}

    Returns:
        List of AllOf selections, one per entry of ``ranges``
    """
    combos = []
    for entry in ranges:
        missing = [v for v in variables if v not in entry]
        if missing:
            raise SelectionError(f"Combination {entry} has no range for {missing}")
        cuts = [RangeCut(v, entry[v][0], entry[v][1]) for v in variables]
        combos.append(combine(*cuts))
    return combos


def check_unique_names(selections: Sequence[Selection]) -> None:
    """Raise SelectionError if two selections share a name"""
    seen: set[str] = set()
    for selection in selections:
        if selection.name in seen:
            raise SelectionError(f"Duplicate selection name '{selection.name}'")
        seen.add(selection.name)


def build_scheme(scheme: dict[str, Any]) -> list[Selection]:
    """
    Build the selections of one binning scheme from its configuration table.

    Supported scheme types:
        bins:          edges + variable (+ label, absolute)
        thresholds:    values + variable (+ label)
        combinations:  variables + cuts (list of {variable: [low, high]})

    Args:
        scheme: Scheme table from binning.toml

    Returns:
        Ordered list of selections with unique names

    Raises:
        ConfigurationError: If the scheme type is unknown or incomplete
        SelectionError: If a cut is invalid or names collide
    """
    scheme_type = scheme.get("type")
    try:
        if scheme_type == "bins":
            selections: list[Selection] = list(
                bin_cuts(
                    scheme["edges"],
                    scheme["variable"],
                    label=scheme.get("label"),
                    absolute=scheme.get("absolute", False),
                )
            )
        elif scheme_type == "thresholds":
            selections = list(
                threshold_cuts(scheme["variable"], scheme["values"], label=scheme.get("label"))
            )
        elif scheme_type == "combinations":
            selections = list(range_combinations(scheme["variables"], scheme["cuts"]))
        else:
            raise ConfigurationError(
                f"Unknown binning scheme type '{scheme_type}'\n"
                f"Expected one of: bins, thresholds, combinations"
            )
    except KeyError as e:
        raise ConfigurationError(f"Binning scheme of type '{scheme_type}' is missing key {e}")

    check_unique_names(selections)
    logger.debug(f"Built {len(selections)} selections of type '{scheme_type}'")
    return selections
