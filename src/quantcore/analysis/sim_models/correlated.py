"""Correlated multi-asset GBM simulation.

Independent normals Z are correlated through the Cholesky factor L of the
correlation matrix (L·Lᵀ = Σ), then each asset takes its own GBM step:
  S_i(t+1) = S_i(t)·exp((μ_i − ½σ_i²)·dt + σ_i·sqrt(dt)·(L·Z)_i)
Portfolio value per day = Σ w_i·S_i(t).
"""

import logging
import math
from typing import Sequence

import numpy as np

from quantcore.errors import InvalidCorrelationMatrixError, InvalidParameterError
from quantcore.schemas import PortfolioAsset

from . import CorrelatedPathResult
from .gbm import DT
from ..random_source import RandomSource

logger = logging.getLogger(__name__)

SYMMETRY_TOLERANCE = 1e-9
DIAGONAL_TOLERANCE = 1e-9


def validate_assets(assets: Sequence[PortfolioAsset]) -> None:
    if not assets:
        raise InvalidParameterError("at least one asset is required")

    seen: set[str] = set()
    for asset in assets:
        if asset.ticker in seen:
            raise InvalidParameterError(f"duplicate ticker: {asset.ticker}")
        seen.add(asset.ticker)

        if not math.isfinite(asset.weight) or not 0.0 <= asset.weight <= 1.0:
            raise InvalidParameterError(
                f"{asset.ticker}: weight must be in [0, 1], got {asset.weight}"
            )
        if not math.isfinite(asset.current_price) or asset.current_price <= 0:
            raise InvalidParameterError(
                f"{asset.ticker}: current_price must be > 0, got {asset.current_price}"
            )
        if not math.isfinite(asset.expected_return):
            raise InvalidParameterError(f"{asset.ticker}: expected_return must be finite")
        if not math.isfinite(asset.volatility) or asset.volatility < 0:
            raise InvalidParameterError(
                f"{asset.ticker}: volatility must be >= 0, got {asset.volatility}"
            )


def validate_correlation_matrix(correlation: Sequence[Sequence[float]], n_assets: int) -> np.ndarray:
    """Check shape, symmetry, unit diagonal and entry range.

    Returns:
        The matrix as a float ndarray.
    """
    try:
        matrix = np.asarray(correlation, dtype=float)
    except (TypeError, ValueError) as e:
        raise InvalidCorrelationMatrixError(f"correlation matrix is not numeric: {e}") from e

    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        raise InvalidCorrelationMatrixError(f"correlation matrix must be square, got shape {matrix.shape}")
    if matrix.shape[0] != n_assets:
        raise InvalidCorrelationMatrixError(
            f"correlation matrix is {matrix.shape[0]}x{matrix.shape[0]} but there are {n_assets} assets"
        )
    if not np.all(np.isfinite(matrix)):
        raise InvalidCorrelationMatrixError("correlation matrix contains non-finite entries")
    if not np.allclose(matrix, matrix.T, rtol=0.0, atol=SYMMETRY_TOLERANCE):
        raise InvalidCorrelationMatrixError("correlation matrix is not symmetric")
    if not np.allclose(np.diag(matrix), 1.0, rtol=0.0, atol=DIAGONAL_TOLERANCE):
        raise InvalidCorrelationMatrixError("correlation matrix must have a unit diagonal")
    if np.any(np.abs(matrix) > 1.0 + SYMMETRY_TOLERANCE):
        raise InvalidCorrelationMatrixError("correlation entries must lie in [-1, 1]")

    return matrix


def cholesky(matrix: Sequence[Sequence[float]]) -> np.ndarray:
    """Lower-triangular L with L·Lᵀ = matrix.

    L[i][i] = sqrt(Σ_ii − Σ_k L[i][k]²)
    L[i][j] = (Σ_ij − Σ_k L[i][k]·L[j][k]) / L[j][j]

    Raises:
        InvalidCorrelationMatrixError: if a pivot is not strictly positive,
            i.e. the matrix is not positive definite.
    """
    a = np.asarray(matrix, dtype=float)
    n = a.shape[0]
    lower = np.zeros((n, n))

    for i in range(n):
        for j in range(i + 1):
            partial = float(np.dot(lower[i, :j], lower[j, :j]))
            if i == j:
                pivot = a[i, i] - partial
                if not math.isfinite(pivot) or pivot <= 0.0:
                    raise InvalidCorrelationMatrixError(
                        f"matrix is not positive definite (pivot {pivot:.3e} at row {i})"
                    )
                lower[i, i] = math.sqrt(pivot)
            else:
                lower[i, j] = (a[i, j] - partial) / lower[j, j]

    return lower


def simulate_correlated_paths(
    assets: Sequence[PortfolioAsset],
    lower: np.ndarray,
    time_horizon_days: int,
    num_paths: int,
    source: RandomSource,
) -> CorrelatedPathResult:
    """Simulate correlated asset paths and the weighted portfolio value path.

    Args:
        assets: Validated portfolio assets.
        lower: Cholesky factor of the correlation matrix.
        time_horizon_days: Trading days to simulate.
        num_paths: Number of paths in this batch.
        source: Random source for the independent shocks.
    """
    k = len(assets)
    prices0 = np.array([a.current_price for a in assets])
    weights = np.array([a.weight for a in assets])
    mu = np.array([a.expected_return for a in assets])
    sigma = np.array([a.volatility for a in assets])

    drift = (mu - 0.5 * sigma**2) * DT
    diffusion = sigma * math.sqrt(DT)
    logger.debug(
        "Correlated GBM: %d assets, %d paths, %d days", k, num_paths, time_horizon_days
    )

    # One independent draw per asset per day, then correlated[i] = Σ_{k≤i} L[i][k]·z[k]
    z = source.standard_normal((num_paths, time_horizon_days, k))
    correlated = z @ lower.T

    cumulative = np.cumsum(drift + diffusion * correlated, axis=1)

    asset_paths = np.empty((k, num_paths, time_horizon_days + 1))
    asset_paths[:, :, 0] = prices0[:, None]
    asset_paths[:, :, 1:] = np.moveaxis(prices0 * np.exp(cumulative), 2, 0)

    portfolio = np.tensordot(weights, asset_paths, axes=1)

    return CorrelatedPathResult(
        paths=portfolio,
        final_values=portfolio[:, -1].copy(),
        asset_paths=asset_paths,
    )
