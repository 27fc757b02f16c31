"""Monte Carlo path simulation models package.

Provides the stochastic models behind the simulators:
- GBM: Geometric Brownian Motion, optionally with a daily jump overlay
- CORRELATED: multi-asset GBM driven by Cholesky-correlated shocks
"""

from enum import Enum
from typing import TypedDict

import numpy as np

TRADING_DAYS_PER_YEAR = 252


class SimModel(str, Enum):
    GBM = "gbm"
    JUMP_DIFFUSION = "jump_diffusion"
    CORRELATED = "correlated"


class PathResult(TypedDict):
    """Standard return type for single-asset path simulation."""
    model: str
    paths: np.ndarray  # (num_paths, days + 1), column 0 = initial price
    final_values: np.ndarray  # (num_paths,)


class CorrelatedPathResult(TypedDict):
    """Raw output of the correlated simulator before statistics."""
    paths: np.ndarray  # portfolio value paths (num_paths, days + 1)
    final_values: np.ndarray
    asset_paths: np.ndarray  # (n_assets, num_paths, days + 1)


__all__ = [
    "TRADING_DAYS_PER_YEAR",
    "SimModel",
    "PathResult",
    "CorrelatedPathResult",
]
