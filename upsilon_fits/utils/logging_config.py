"""
Logging and Warning Configuration Utilities

This module provides centralized control over logging, warning messages and
progress bars throughout the fit pipeline.

Usage:
    from upsilon_fits.utils.logging_config import setup_logging, suppress_warnings
    logger = setup_logging(verbose=False)
    suppress_warnings()  # Suppress all warnings by default

    # Or with more control:
    suppress_warnings(level='error')  # Only show errors
    suppress_warnings(level='default')  # Show all warnings

    # Via environment variable:
    export UPSILON_WARNINGS=on  # Show warnings
    export UPSILON_WARNINGS=off  # Suppress warnings (default)
"""

from __future__ import annotations

import logging
import os
import warnings
from typing import Literal

LOGGER_NAME = "UpsilonFits"


def setup_logging(verbose: bool = False) -> logging.Logger:
    """Configure the root logging level and return the pipeline logger"""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    return logger


def suppress_warnings(level: Literal["off", "error", "default", "all"] = "off") -> None:
    """
    Configure warning levels for the fits.

    Args:
        level: Warning level to set
            - 'off': Suppress all warnings (default for the pipeline)
            - 'error': Turn warnings into errors
            - 'default': Show important warnings but filter common noise
            - 'all': Show everything (useful for debugging)

    Environment variable UPSILON_WARNINGS overrides the level parameter.
    """
    env_level = os.environ.get("UPSILON_WARNINGS", "").lower()
    if env_level in ["on", "yes", "true", "1"]:
        level = "all"
    elif env_level in ["off", "no", "false", "0"]:
        level = "off"
    elif env_level in ["error", "default"]:
        level = env_level

    if level == "off":
        warnings.filterwarnings("ignore")

        import numpy as np

        np.seterr(all="ignore")

    elif level == "error":
        warnings.filterwarnings("error")
        warnings.filterwarnings("ignore", category=DeprecationWarning)
        warnings.filterwarnings("ignore", category=FutureWarning)

    elif level == "default":
        warnings.filterwarnings("default")
        warnings.filterwarnings("ignore", category=DeprecationWarning)
        warnings.filterwarnings("ignore", message=".*uproot.*")
        warnings.filterwarnings("ignore", message=".*awkward.*")

    elif level == "all":
        warnings.filterwarnings("default")
        import numpy as np

        np.seterr(all="warn")

    _suppress_library_warnings(level)


def _suppress_library_warnings(level: str) -> None:
    """Suppress known noisy warnings from specific libraries."""
    if level in ["off", "error", "default"]:
        warnings.filterwarnings("ignore", module="awkward.*")

        # Matplotlib font and backend warnings
        warnings.filterwarnings("ignore", message=".*Matplotlib.*")
        logging.getLogger("matplotlib.font_manager").setLevel(logging.ERROR)

        # iminuit warnings (e.g. parameters at limit, EDM above max)
        warnings.filterwarnings("ignore", module="iminuit.*")


def enable_progress_bars() -> bool:
    """
    Check if progress bars should be enabled.

    Returns:
        True if progress bars should be shown, False otherwise.

    Can be controlled via UPSILON_PROGRESS environment variable.
    """
    env_progress = os.environ.get("UPSILON_PROGRESS", "on").lower()
    return env_progress in ["on", "yes", "true", "1"]


def get_tqdm_kwargs(desc: str = "", **kwargs) -> dict:
    """
    Get standard kwargs for tqdm progress bars with consistent styling.

    Args:
        desc: Description for the progress bar
        **kwargs: Additional tqdm parameters

    Returns:
        Dictionary of tqdm parameters
    """
    default_kwargs = {
        "desc": desc,
        "unit": "it",
        "ncols": 80,
        "bar_format": "{l_bar}{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}]",
        "disable": not enable_progress_bars(),
    }
    default_kwargs.update(kwargs)
    return default_kwargs
