"""
Test utilities and helper functions.

Provides toy data generation, mock input files and a deterministic
minimizer for orchestration tests.
"""

from .mock_data_generator import (
    VARIABLE_RANGES,
    StubMinimizer,
    create_mock_root_file,
    generate_toy_events,
    make_observables,
    make_toy_dataset,
    make_workspace,
    sample_masses,
)

__all__ = [
    "VARIABLE_RANGES",
    "StubMinimizer",
    "create_mock_root_file",
    "generate_toy_events",
    "make_observables",
    "make_toy_dataset",
    "make_workspace",
    "sample_masses",
]
