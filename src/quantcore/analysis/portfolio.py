"""Portfolio construction heuristics and stress testing.

The weighting schemes here are closed-form heuristics, not solvers:
  - equal weight             w_i = 1 / n
  - risk parity              w_i ∝ 1 / σ_i
  - minimum variance         w_i ∝ 1 / σ_i²  (covariance diagonal only)
Every result reports the scheme in its ``method`` field.
"""

import logging
import math
from typing import Sequence

import numpy as np

from quantcore.errors import InvalidParameterError
from quantcore.schemas import (
    FrontierPoint,
    PortfolioOptimization,
    ScenarioResult,
    StressEvent,
    StressTestResult,
)

from .random_source import RandomSource, as_random_source
from .sim_models import TRADING_DAYS_PER_YEAR
from .sim_models.correlated import validate_correlation_matrix
from .statistics import percentile_table, safe_ratio

logger = logging.getLogger(__name__)

STRESS_PERCENTILES = {"p5": 0.05, "p25": 0.25, "p50": 0.50, "p75": 0.75, "p95": 0.95}


def _as_vector(values: Sequence[float] | np.ndarray, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float).ravel()
    if arr.size == 0:
        raise InvalidParameterError(f"{name} must not be empty")
    if not np.all(np.isfinite(arr)):
        raise InvalidParameterError(f"{name} must be finite")
    return arr


def _normalized(raw: np.ndarray) -> list[float]:
    total = float(raw.sum())
    if total <= 0:
        return [1.0 / raw.size] * raw.size
    return [float(w) for w in raw / total]


def covariance_from_correlation(
    volatilities: Sequence[float] | np.ndarray,
    correlation: Sequence[Sequence[float]] | np.ndarray,
) -> np.ndarray:
    """Σ_ij = σ_i·σ_j·ρ_ij"""
    vols = _as_vector(volatilities, "volatilities")
    if np.any(vols < 0):
        raise InvalidParameterError("volatilities must be >= 0")
    rho = validate_correlation_matrix(correlation, vols.size)
    return np.outer(vols, vols) * rho


def _as_covariance(covariance: Sequence[Sequence[float]] | np.ndarray) -> np.ndarray:
    cov = np.asarray(covariance, dtype=float)
    if cov.ndim != 2 or cov.shape[0] != cov.shape[1] or cov.shape[0] == 0:
        raise InvalidParameterError(f"covariance matrix must be square and non-empty, got shape {cov.shape}")
    if not np.all(np.isfinite(cov)):
        raise InvalidParameterError("covariance matrix must be finite")
    return cov


def portfolio_volatility(
    weights: Sequence[float] | np.ndarray,
    volatilities: Sequence[float] | np.ndarray,
    correlation: Sequence[Sequence[float]] | np.ndarray,
) -> float:
    """sqrt(wᵀ·Σ·w) with Σ built from volatilities and correlations."""
    w = _as_vector(weights, "weights")
    cov = covariance_from_correlation(volatilities, correlation)
    if w.size != cov.shape[0]:
        raise InvalidParameterError(f"{w.size} weights for {cov.shape[0]} assets")
    return math.sqrt(max(float(w @ cov @ w), 0.0))


def _evaluate(
    method: str,
    weights: list[float],
    expected_returns: np.ndarray,
    cov: np.ndarray,
    risk_free_rate: float,
) -> PortfolioOptimization:
    w = np.asarray(weights)
    exp_return = float(w @ expected_returns)
    vol = math.sqrt(max(float(w @ cov @ w), 0.0))
    weighted_avg_vol = float(w @ np.sqrt(np.clip(np.diag(cov), 0.0, None)))
    # Conventional definition: >= 1 when correlations below one diversify risk
    diversification = weighted_avg_vol / vol if vol > 0 else 1.0
    return PortfolioOptimization(
        method=method,
        weights=weights,
        expected_return=exp_return,
        volatility=vol,
        sharpe_ratio=safe_ratio(exp_return - risk_free_rate, vol, "sharpe_ratio"),
        diversification_ratio=diversification,
    )


def mean_variance_optimization(
    expected_returns: Sequence[float] | np.ndarray,
    covariance: Sequence[Sequence[float]] | np.ndarray,
    risk_free_rate: float = 0.02,
) -> PortfolioOptimization:
    """Equal-weight portfolio with its mean-variance statistics.

    This is the equal-weight heuristic, reported with ``method="equal_weight"``;
    no quadratic program is solved.
    """
    mu = _as_vector(expected_returns, "expected_returns")
    cov = _as_covariance(covariance)
    if cov.shape[0] != mu.size:
        raise InvalidParameterError(
            f"covariance is {cov.shape[0]}x{cov.shape[0]} but there are {mu.size} expected returns"
        )
    weights = [1.0 / mu.size] * mu.size
    return _evaluate("equal_weight", weights, mu, cov, risk_free_rate)


def risk_parity_weights(covariance: Sequence[Sequence[float]] | np.ndarray) -> list[float]:
    """Inverse-volatility weights; zero-volatility assets get no weight.

    Falls back to equal weights when every asset has zero volatility.
    """
    cov = _as_covariance(covariance)
    vols = np.sqrt(np.clip(np.diag(cov), 0.0, None))
    inv = np.divide(1.0, vols, out=np.zeros_like(vols), where=vols > 0)
    return _normalized(inv)


def minimum_variance_weights(covariance: Sequence[Sequence[float]] | np.ndarray) -> list[float]:
    """Inverse-variance weights from the covariance diagonal."""
    cov = _as_covariance(covariance)
    var = np.diag(cov)
    inv = np.divide(1.0, var, out=np.zeros_like(var), where=var > 0)
    return _normalized(inv)


def efficient_frontier(
    expected_returns: Sequence[float] | np.ndarray,
    volatilities: Sequence[float] | np.ndarray,
    correlation: Sequence[Sequence[float]] | np.ndarray,
    num_points: int = 30,
    risk_free_rate: float = 0.0,
) -> list[FrontierPoint]:
    """Approximate frontier by blending heuristic portfolios.

    Points run from the minimum-variance weights to a full allocation in the
    highest-return asset, in ``num_points`` equal blending steps, and are
    returned sorted by volatility.
    """
    mu = _as_vector(expected_returns, "expected_returns")
    cov = covariance_from_correlation(volatilities, correlation)
    if cov.shape[0] != mu.size:
        raise InvalidParameterError(f"{mu.size} expected returns for {cov.shape[0]} assets")
    if num_points < 1:
        raise InvalidParameterError(f"num_points must be >= 1, got {num_points}")

    start = np.asarray(minimum_variance_weights(cov))
    end = np.zeros(mu.size)
    end[int(np.argmax(mu))] = 1.0

    points = []
    for t in np.linspace(0.0, 1.0, num_points + 1):
        weights = [float(w) for w in (1.0 - t) * start + t * end]
        result = _evaluate("frontier_blend", weights, mu, cov, risk_free_rate)
        points.append(
            FrontierPoint(
                expected_return=result.expected_return,
                volatility=result.volatility,
                sharpe_ratio=result.sharpe_ratio,
                weights=weights,
            )
        )

    return sorted(points, key=lambda p: p.volatility)


# ---------------------------------------------------------------------------
# Stress testing
# ---------------------------------------------------------------------------


def _returns_matrix(
    weights: Sequence[float] | np.ndarray,
    asset_returns: Sequence[Sequence[float]] | np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    w = _as_vector(weights, "weights")
    try:
        returns = np.asarray(asset_returns, dtype=float)
    except ValueError as e:
        raise InvalidParameterError("asset return series must all have the same length") from e
    if returns.ndim != 2 or returns.shape[0] != w.size or returns.shape[1] == 0:
        raise InvalidParameterError(
            f"asset_returns must be {w.size} non-empty series, got shape {returns.shape}"
        )
    if not np.all(np.isfinite(returns)):
        raise InvalidParameterError("asset returns must be finite")
    return w, returns


def bootstrap_stress_test(
    weights: Sequence[float] | np.ndarray,
    asset_returns: Sequence[Sequence[float]] | np.ndarray,
    source: RandomSource | int | None = None,
    num_paths: int = 1000,
    time_horizon_days: int = TRADING_DAYS_PER_YEAR,
) -> StressTestResult:
    """Bootstrap portfolio outcomes from historical daily returns.

    Each simulated day draws an independent historical day per asset,
    portfolio return = Σ w_i·r_i, and value compounds from 1.0.

    Args:
        weights: Portfolio weights in asset order.
        asset_returns: One daily return series per asset (equal lengths).
        source: RandomSource, integer seed, or None.
        num_paths: Number of bootstrap paths.
        time_horizon_days: Days compounded per path.

    Returns:
        StressTestResult over the horizon returns (final value − 1).
    """
    w, returns = _returns_matrix(weights, asset_returns)
    if num_paths <= 0:
        raise InvalidParameterError(f"num_paths must be > 0, got {num_paths}")
    if time_horizon_days <= 0:
        raise InvalidParameterError(f"time_horizon_days must be > 0, got {time_horizon_days}")

    rs = as_random_source(source)
    n_assets, n_hist = returns.shape

    # floor(u·N) picks a historical day uniformly
    picks = np.minimum(
        (rs.uniform((num_paths, time_horizon_days, n_assets)) * n_hist).astype(int), n_hist - 1
    )
    sampled = returns[np.arange(n_assets), picks]
    daily = sampled @ w
    horizon_returns = np.prod(1.0 + daily, axis=1) - 1.0

    table = percentile_table(horizon_returns, tuple(STRESS_PERCENTILES.values()))
    logger.info(
        "Bootstrap stress test: %d assets, %d paths x %d days", n_assets, num_paths, time_horizon_days
    )
    return StressTestResult(
        percentiles={name: table[p] for name, p in STRESS_PERCENTILES.items()},
        max_loss=float(horizon_returns.min()),
        average_return=float(horizon_returns.mean()),
        num_paths=num_paths,
        time_horizon_days=time_horizon_days,
    )


def historical_scenarios(
    weights: Sequence[float] | np.ndarray,
    asset_returns: Sequence[Sequence[float]] | np.ndarray,
    events: Sequence[StressEvent],
) -> list[ScenarioResult]:
    """Sum of weighted daily portfolio returns over each event window.

    Windows are inclusive index ranges into the return series; an end past
    the data is truncated to the last available day.
    """
    w, returns = _returns_matrix(weights, asset_returns)
    daily = w @ returns
    last = daily.size - 1

    results = []
    for event in events:
        if event.start_index < 0 or event.start_index > last or event.end_index < event.start_index:
            raise InvalidParameterError(
                f"{event.name}: invalid window [{event.start_index}, {event.end_index}]"
            )
        end = min(event.end_index, last)
        results.append(
            ScenarioResult(
                event=event.name,
                portfolio_return=float(daily[event.start_index : end + 1].sum()),
                duration=event.end_index - event.start_index + 1,
            )
        )
    return results
