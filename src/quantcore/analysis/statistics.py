"""Statistics over simulated terminal values and paths.

Pure computation functions; operate on arrays passed as arguments.

Percentiles use the nearest-rank rule without interpolation: the p-th
percentile of N sorted values is the element at index floor(p·N), clamped
to the last element.

Degenerate denominators resolve to sentinels rather than NaN:
  - Sharpe ratio is 0.0 when volatility is zero.
  - Sortino ratio is 0.0 when there are no returns below the target.
  - A path whose running peak is not positive contributes drawdown 0.0.
"""

import logging
import math
from typing import Sequence

import numpy as np

from quantcore.errors import InvalidParameterError
from quantcore.schemas import RiskMetrics, SimulationStatistics

from .sim_models import TRADING_DAYS_PER_YEAR

logger = logging.getLogger(__name__)

ZERO_TOLERANCE = 1e-12


def _as_values(values: Sequence[float] | np.ndarray) -> np.ndarray:
    arr = np.asarray(values, dtype=float).ravel()
    if arr.size == 0:
        raise InvalidParameterError("at least one value is required")
    if not np.all(np.isfinite(arr)):
        raise InvalidParameterError("values must be finite")
    return arr


def _check_initial_value(initial_value: float) -> None:
    if not math.isfinite(initial_value) or initial_value <= 0:
        raise InvalidParameterError(f"initial_value must be > 0, got {initial_value}")


def percentile_index(p: float, n: int) -> int:
    """Nearest-rank index floor(p·n), clamped to [0, n-1]."""
    return min(max(int(math.floor(p * n)), 0), n - 1)


def value_at_percentile(sorted_values: np.ndarray, p: float) -> float:
    return float(sorted_values[percentile_index(p, len(sorted_values))])


def percentile_table(
    values: Sequence[float] | np.ndarray,
    levels: tuple[float, ...] = (0.05, 0.25, 0.50, 0.75, 0.95),
) -> dict[float, float]:
    """Nearest-rank percentiles for several levels at once."""
    sorted_values = np.sort(_as_values(values))
    return {p: value_at_percentile(sorted_values, p) for p in levels}


def probability_above(values: Sequence[float] | np.ndarray, threshold: float) -> float:
    """Fraction of values strictly above ``threshold``."""
    arr = _as_values(values)
    return float(np.mean(arr > threshold))


def safe_ratio(numerator: float, denominator: float, metric: str) -> float:
    """numerator / denominator, or 0.0 when the denominator vanishes."""
    if abs(denominator) < ZERO_TOLERANCE or not math.isfinite(denominator):
        logger.debug("%s: zero denominator, returning 0.0", metric)
        return 0.0
    return numerator / denominator


def max_drawdown(path: Sequence[float] | np.ndarray) -> float:
    """Maximum of (running_peak − value) / running_peak over one path."""
    return ensemble_max_drawdown(np.atleast_2d(np.asarray(path, dtype=float)))


def ensemble_max_drawdown(paths: np.ndarray) -> float:
    """Worst single-path maximum drawdown across an ensemble."""
    arr = np.atleast_2d(np.asarray(paths, dtype=float))
    if arr.size == 0:
        return 0.0
    peaks = np.maximum.accumulate(arr, axis=1)
    with np.errstate(divide="ignore", invalid="ignore"):
        drawdowns = np.where(peaks > 0, (peaks - arr) / peaks, 0.0)
    return float(max(drawdowns.max(), 0.0))


def summarize(
    final_values: Sequence[float] | np.ndarray,
    initial_value: float,
    annualization_factor: float = TRADING_DAYS_PER_YEAR,
    risk_free_rate: float = 0.0,
) -> SimulationStatistics:
    """Reduce terminal values into distribution statistics.

    Args:
        final_values: Terminal value of every simulated path.
        initial_value: Starting value the returns are measured against.
        annualization_factor: Number of return periods per year. For
            horizon returns over ``d`` trading days pass ``252 / d``.
        risk_free_rate: Annual rate subtracted in the Sharpe ratio.

    Returns:
        SimulationStatistics with nearest-rank 5th/95th percentiles.
    """
    values = _as_values(final_values)
    _check_initial_value(initial_value)
    if annualization_factor <= 0:
        raise InvalidParameterError("annualization_factor must be > 0")

    sorted_values = np.sort(values)
    returns = (values - initial_value) / initial_value

    ann_return = float(np.mean(returns)) * annualization_factor
    ann_vol = float(np.std(returns)) * math.sqrt(annualization_factor)
    sharpe = safe_ratio(ann_return - risk_free_rate, ann_vol, "sharpe_ratio")

    return SimulationStatistics(
        average_ending_value=float(np.mean(values)),
        probability_of_gain=float(np.mean(values > initial_value)),
        percentile_5=value_at_percentile(sorted_values, 0.05),
        percentile_95=value_at_percentile(sorted_values, 0.95),
        max_value=float(sorted_values[-1]),
        min_value=float(sorted_values[0]),
        annualized_expected_return=ann_return,
        annualized_volatility=ann_vol,
        sharpe_ratio=sharpe,
    )


def value_at_risk(sorted_values: np.ndarray, initial_value: float, confidence: float) -> float:
    """initial_value − value at the ``confidence`` percentile."""
    return initial_value - value_at_percentile(sorted_values, confidence)


def expected_shortfall(sorted_values: np.ndarray, initial_value: float, confidence: float) -> float:
    """Mean of the values at or below the VaR index, as a fractional loss."""
    idx = percentile_index(confidence, len(sorted_values))
    tail_mean = float(np.mean(sorted_values[: idx + 1]))
    return (initial_value - tail_mean) / initial_value


def sortino(
    returns: np.ndarray,
    annualization_factor: float,
    target_return: float = 0.0,
) -> float:
    """Annualised mean excess over target divided by downside deviation."""
    downside = returns[returns < target_return]
    if downside.size == 0:
        logger.debug("sortino: no downside returns, returning 0.0")
        return 0.0
    downside_dev = math.sqrt(float(np.mean((downside - target_return) ** 2)) * annualization_factor)
    mean_excess = (float(np.mean(returns)) - target_return) * annualization_factor
    return safe_ratio(mean_excess, downside_dev, "sortino")


def risk_metrics(
    final_values: Sequence[float] | np.ndarray,
    initial_value: float,
    confidence: float = 0.05,
    risk_free_rate: float = 0.0,
    annualization_factor: float = TRADING_DAYS_PER_YEAR,
    paths: np.ndarray | None = None,
    target_return: float = 0.0,
) -> RiskMetrics:
    """VaR, CVaR, Sharpe, Sortino and max drawdown of a simulated ensemble.

    Args:
        final_values: Terminal value of every path.
        initial_value: Starting value.
        confidence: Tail probability for VaR/CVaR (0.05 means 95% VaR).
        risk_free_rate: Annual rate for the Sharpe ratio.
        annualization_factor: Return periods per year (see ``summarize``).
        paths: Optional full paths; when given, max drawdown is the worst
            path drawdown, otherwise (initial − min) / initial.
        target_return: Per-period target for the Sortino downside.
    """
    values = _as_values(final_values)
    _check_initial_value(initial_value)
    if not 0.0 < confidence < 1.0:
        raise InvalidParameterError(f"confidence must be in (0, 1), got {confidence}")
    if annualization_factor <= 0:
        raise InvalidParameterError("annualization_factor must be > 0")

    sorted_values = np.sort(values)
    returns = (values - initial_value) / initial_value

    ann_return = float(np.mean(returns)) * annualization_factor
    ann_vol = float(np.std(returns)) * math.sqrt(annualization_factor)

    if paths is not None:
        mdd = ensemble_max_drawdown(paths)
    else:
        mdd = max((initial_value - float(sorted_values[0])) / initial_value, 0.0)

    return RiskMetrics(
        var=value_at_risk(sorted_values, initial_value, confidence),
        cvar=expected_shortfall(sorted_values, initial_value, confidence),
        sharpe=safe_ratio(ann_return - risk_free_rate, ann_vol, "sharpe"),
        sortino=sortino(returns, annualization_factor, target_return),
        max_drawdown=mdd,
    )
