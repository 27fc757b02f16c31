"""Risk analysis on historical return series.

Pure computation functions for return-based risk metrics (VaR, drawdown,
risk-adjusted ratios, benchmark statistics) and position sizing.
No simulation dependency - operates on daily return series passed as
arguments, chronological order, oldest first.
"""

import logging
import math
from typing import Sequence

import numpy as np

from quantcore.errors import InvalidParameterError
from quantcore.schemas import PositionSizing, ReturnRiskMetrics

from .sim_models import TRADING_DAYS_PER_YEAR
from .statistics import percentile_index, safe_ratio, sortino

logger = logging.getLogger(__name__)

DEFAULT_RISK_FREE_RATE = 0.02
OPTIMAL_F_STEPS = 100


def _as_returns(returns: Sequence[float] | np.ndarray, minimum: int = 1) -> np.ndarray:
    arr = np.asarray(returns, dtype=float).ravel()
    if arr.size < minimum:
        raise InvalidParameterError(f"at least {minimum} return(s) required, got {arr.size}")
    if not np.all(np.isfinite(arr)):
        raise InvalidParameterError("returns must be finite")
    return arr


def _aligned(
    asset_returns: Sequence[float] | np.ndarray,
    benchmark_returns: Sequence[float] | np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    asset = _as_returns(asset_returns, minimum=2)
    bench = _as_returns(benchmark_returns, minimum=2)
    if asset.size != bench.size:
        raise InvalidParameterError(
            f"return series must be aligned: {asset.size} asset vs {bench.size} benchmark returns"
        )
    return asset, bench


# ---------------------------------------------------------------------------
# Tail risk
# ---------------------------------------------------------------------------


def historical_var(returns: Sequence[float] | np.ndarray, confidence: float = 0.05) -> float:
    """Historical Value at Risk as a positive fractional loss.

    The nearest-rank ``confidence`` percentile of the sorted returns, negated
    and floored at zero (a percentile above zero means no loss at that level).
    """
    arr = _as_returns(returns)
    if not 0.0 < confidence < 1.0:
        raise InvalidParameterError(f"confidence must be in (0, 1), got {confidence}")
    sorted_returns = np.sort(arr)
    return max(-float(sorted_returns[percentile_index(confidence, arr.size)]), 0.0)


def historical_cvar(returns: Sequence[float] | np.ndarray, confidence: float = 0.05) -> float:
    """Mean loss of the returns at or below the VaR index."""
    arr = _as_returns(returns)
    if not 0.0 < confidence < 1.0:
        raise InvalidParameterError(f"confidence must be in (0, 1), got {confidence}")
    sorted_returns = np.sort(arr)
    idx = percentile_index(confidence, arr.size)
    return max(-float(np.mean(sorted_returns[: idx + 1])), 0.0)


def max_drawdown_from_returns(returns: Sequence[float] | np.ndarray) -> float:
    """Worst peak-to-trough decline of the compounded equity curve.

    The curve starts at 1.0, which counts as the first peak.
    """
    arr = _as_returns(returns)
    equity = np.concatenate(([1.0], np.cumprod(1.0 + arr)))
    peaks = np.maximum.accumulate(equity)
    with np.errstate(divide="ignore", invalid="ignore"):
        drawdowns = np.where(peaks > 0, (peaks - equity) / peaks, 0.0)
    return float(drawdowns.max())


# ---------------------------------------------------------------------------
# Risk-adjusted ratios
# ---------------------------------------------------------------------------


def annualized_volatility(
    returns: Sequence[float] | np.ndarray,
    periods: int = TRADING_DAYS_PER_YEAR,
) -> float:
    """Sample standard deviation of returns times sqrt(periods)."""
    arr = _as_returns(returns, minimum=2)
    return float(np.std(arr, ddof=1)) * math.sqrt(periods)


def sharpe_ratio(
    returns: Sequence[float] | np.ndarray,
    risk_free_rate: float = DEFAULT_RISK_FREE_RATE,
    periods: int = TRADING_DAYS_PER_YEAR,
) -> float:
    arr = _as_returns(returns, minimum=2)
    ann_return = float(np.mean(arr)) * periods
    return safe_ratio(ann_return - risk_free_rate, annualized_volatility(arr, periods), "sharpe_ratio")


def sortino_ratio(
    returns: Sequence[float] | np.ndarray,
    target_return: float = 0.0,
    periods: int = TRADING_DAYS_PER_YEAR,
) -> float:
    """Annualised Sortino ratio; 0.0 when no return falls below the target."""
    return sortino(_as_returns(returns), periods, target_return)


def calmar_ratio(
    returns: Sequence[float] | np.ndarray,
    periods: int = TRADING_DAYS_PER_YEAR,
) -> float:
    """Annualised mean return over maximum drawdown."""
    arr = _as_returns(returns)
    ann_return = float(np.mean(arr)) * periods
    return safe_ratio(ann_return, max_drawdown_from_returns(arr), "calmar_ratio")


# ---------------------------------------------------------------------------
# Benchmark-relative
# ---------------------------------------------------------------------------


def beta(
    asset_returns: Sequence[float] | np.ndarray,
    benchmark_returns: Sequence[float] | np.ndarray,
) -> float:
    """Beta = Cov(asset, benchmark) / Var(benchmark)."""
    asset, bench = _aligned(asset_returns, benchmark_returns)
    cov = np.cov(asset, bench)
    return safe_ratio(float(cov[0, 1]), float(cov[1, 1]), "beta")


def alpha(
    asset_returns: Sequence[float] | np.ndarray,
    benchmark_returns: Sequence[float] | np.ndarray,
    risk_free_rate: float = DEFAULT_RISK_FREE_RATE,
    periods: int = TRADING_DAYS_PER_YEAR,
) -> float:
    """Annualised CAPM alpha: R_a − (r_f + β·(R_b − r_f))."""
    asset, bench = _aligned(asset_returns, benchmark_returns)
    asset_return = float(np.mean(asset)) * periods
    bench_return = float(np.mean(bench)) * periods
    b = beta(asset, bench)
    return asset_return - (risk_free_rate + b * (bench_return - risk_free_rate))


def tracking_error(
    asset_returns: Sequence[float] | np.ndarray,
    benchmark_returns: Sequence[float] | np.ndarray,
    periods: int = TRADING_DAYS_PER_YEAR,
) -> float:
    """Annualised sample volatility of excess returns."""
    asset, bench = _aligned(asset_returns, benchmark_returns)
    return annualized_volatility(asset - bench, periods)


def information_ratio(
    asset_returns: Sequence[float] | np.ndarray,
    benchmark_returns: Sequence[float] | np.ndarray,
    periods: int = TRADING_DAYS_PER_YEAR,
) -> float:
    asset, bench = _aligned(asset_returns, benchmark_returns)
    mean_excess = float(np.mean(asset - bench)) * periods
    return safe_ratio(mean_excess, tracking_error(asset, bench, periods), "information_ratio")


def compute_return_risk_metrics(
    asset_returns: Sequence[float] | np.ndarray,
    benchmark_returns: Sequence[float] | np.ndarray | None = None,
    confidence: float = 0.05,
    risk_free_rate: float = DEFAULT_RISK_FREE_RATE,
    periods: int = TRADING_DAYS_PER_YEAR,
) -> ReturnRiskMetrics:
    """Compute every return-based risk metric in one pass.

    Args:
        asset_returns: Daily returns of the asset or strategy.
        benchmark_returns: Optional aligned benchmark returns. When omitted
            the benchmark-relative fields are None.
        confidence: Tail probability for VaR/CVaR.
        risk_free_rate: Annual rate for Sharpe and alpha.
        periods: Return periods per year.

    Returns:
        ReturnRiskMetrics
    """
    arr = _as_returns(asset_returns, minimum=2)

    relative = {}
    if benchmark_returns is not None:
        relative = {
            "beta": beta(arr, benchmark_returns),
            "alpha": alpha(arr, benchmark_returns, risk_free_rate, periods),
            "information_ratio": information_ratio(arr, benchmark_returns, periods),
            "tracking_error": tracking_error(arr, benchmark_returns, periods),
        }

    return ReturnRiskMetrics(
        var=historical_var(arr, confidence),
        cvar=historical_cvar(arr, confidence),
        max_drawdown=max_drawdown_from_returns(arr),
        volatility=annualized_volatility(arr, periods),
        sharpe_ratio=sharpe_ratio(arr, risk_free_rate, periods),
        sortino_ratio=sortino_ratio(arr, periods=periods),
        calmar_ratio=calmar_ratio(arr, periods),
        **relative,
    )


# ---------------------------------------------------------------------------
# Position sizing
# ---------------------------------------------------------------------------


def kelly_fraction(win_rate: float, avg_win: float, avg_loss: float) -> float:
    """Kelly criterion f* = (p·b − q) / b with b = avg_win / avg_loss.

    ``avg_loss`` is a loss magnitude. The result is clamped to [0, 1]; a
    non-positive average win or loss gives 0.
    """
    if not 0.0 <= win_rate <= 1.0:
        raise InvalidParameterError(f"win_rate must be in [0, 1], got {win_rate}")
    if avg_loss <= 0 or avg_win <= 0:
        return 0.0
    ratio = avg_win / avg_loss
    return min(max((win_rate * ratio - (1.0 - win_rate)) / ratio, 0.0), 1.0)


def optimal_f(returns: Sequence[float] | np.ndarray) -> float:
    """Ralph Vince's optimal f by grid search over f = 0.01 .. 1.00.

    Maximises the terminal wealth relative Π(1 + f·r / |largest loss|).
    Returns 0 when the series has no losing return.
    """
    arr = _as_returns(returns)
    losses = arr[arr < 0]
    if losses.size == 0:
        return 0.0

    scaled = arr / abs(float(losses.min()))
    best_f, best_twr = 0.0, 0.0
    for step in range(1, OPTIMAL_F_STEPS + 1):
        f = step / OPTIMAL_F_STEPS
        twr = float(np.prod(1.0 + f * scaled))
        if twr > best_twr:
            best_f, best_twr = f, twr
    return best_f


def fixed_fractional(account_value: float, risk_per_trade: float, stop_loss: float) -> float:
    """Position size risking ``risk_per_trade`` of the account per ``stop_loss`` unit."""
    if stop_loss <= 0:
        return 0.0
    return account_value * risk_per_trade / stop_loss


def volatility_scaled(base_size: float, current_vol: float, target_vol: float) -> float:
    """Scale ``base_size`` by target_vol / current_vol; unchanged if vol is 0."""
    if current_vol <= 0:
        return base_size
    return base_size * target_vol / current_vol


def position_sizing(
    returns: Sequence[float] | np.ndarray,
    win_rate: float,
    avg_win: float,
    avg_loss: float,
    account_value: float,
    stop_loss: float,
    risk_per_trade: float = 0.02,
    target_volatility: float = 0.15,
    periods: int = TRADING_DAYS_PER_YEAR,
) -> PositionSizing:
    """All position sizing rules side by side.

    ``volatility_scaled`` is the multiplier applied to a unit base size.
    """
    arr = _as_returns(returns, minimum=2)
    return PositionSizing(
        kelly_fraction=kelly_fraction(win_rate, avg_win, avg_loss),
        optimal_f=optimal_f(arr),
        fixed_fractional=fixed_fractional(account_value, risk_per_trade, stop_loss),
        volatility_scaled=volatility_scaled(1.0, annualized_volatility(arr, periods), target_volatility),
    )
