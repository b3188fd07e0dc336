"""
Observables and fit parameters
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .exceptions import ConfigurationError


@dataclass
class Observable:
    """
    Bounded measured quantity with optional named sub-ranges.

    Attributes:
        name: Branch name in the input tree
        title: Axis title
        low: Lower edge of the full range
        high: Upper edge of the full range
        ranges: Named sub-ranges {name: (low, high)}, each inside [low, high]
    """

    name: str
    title: str
    low: float
    high: float
    ranges: dict[str, tuple[float, float]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.low = float(self.low)
        self.high = float(self.high)
        if not self.low < self.high:
            raise ConfigurationError(
                f"Observable '{self.name}' needs low < high, got [{self.low}, {self.high}]"
            )

    def contains(self, low: float, high: float) -> bool:
        return self.low <= low < high <= self.high

    def set_range(self, range_name: str, low: float, high: float) -> None:
        """Declare a named sub-range; it must lie inside the full range"""
        if not self.contains(low, high):
            raise ConfigurationError(
                f"Range '{range_name}' [{low}, {high}] is not inside "
                f"'{self.name}' [{self.low}, {self.high}]"
            )
        self.ranges[range_name] = (float(low), float(high))

    def get_range(self, range_name: str | None = None) -> tuple[float, float]:
        if range_name is None:
            return (self.low, self.high)
        try:
            return self.ranges[range_name]
        except KeyError:
            raise ConfigurationError(f"Observable '{self.name}' has no range '{range_name}'")


@dataclass
class Parameter:
    """
    Model parameter with bounds, current value and error.

    Constant parameters (e.g. mass ratios) are never varied by the minimizer
    but are part of every snapshot.
    """

    name: str
    value: float
    low: float = float("-inf")
    high: float = float("inf")
    constant: bool = False
    error: float = 0.0
    initial: float = field(init=False)

    def __post_init__(self) -> None:
        self.value = float(self.value)
        if not self.constant and not self.low <= self.value <= self.high:
            raise ConfigurationError(
                f"Parameter '{self.name}' seed {self.value} outside [{self.low}, {self.high}]"
            )
        self.initial = self.value

    @property
    def step(self) -> float:
        """Initial step size for the minimizer"""
        if self.error > 0:
            return self.error
        span = self.high - self.low
        if span != float("inf") and span > 0:
            return 0.1 * span
        return 0.1 * abs(self.value) or 0.1

    def reset(self) -> None:
        self.value = self.initial
        self.error = 0.0
