"""Upsilon(1S, 2S, 3S) invariant-mass fits in kinematic bins."""

__version__ = "0.1.0"
