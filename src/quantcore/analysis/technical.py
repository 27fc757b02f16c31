"""Technical analysis indicators module.

Pure computation functions for technical indicators. Close-based indicators
take a price sequence (chronological order, oldest first) and return numpy
arrays; OHLCV indicators take a pandas DataFrame with ``high``, ``low``,
``close`` (and ``volume``) columns and return objects sharing its index.
Every output has the same length as the input, with NaN until the
indicator's warm-up period is complete.
"""

import logging
from typing import Sequence

import numpy as np
import pandas as pd

from quantcore.errors import InvalidParameterError

logger = logging.getLogger(__name__)


def _as_closes(prices: Sequence[float] | np.ndarray | pd.Series) -> np.ndarray:
    arr = np.asarray(prices, dtype=float).ravel()
    if not np.all(np.isfinite(arr)):
        raise InvalidParameterError("prices must be finite")
    return arr


def _check_period(period: int, name: str = "period") -> None:
    if period < 1:
        raise InvalidParameterError(f"{name} must be >= 1, got {period}")


def _require_columns(df: pd.DataFrame, columns: tuple[str, ...]) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise InvalidParameterError(f"OHLCV frame is missing columns: {', '.join(missing)}")


def sma(prices: Sequence[float] | np.ndarray, period: int) -> np.ndarray:
    """Simple moving average over the trailing ``period`` closes."""
    _check_period(period)
    closes = _as_closes(prices)
    return pd.Series(closes).rolling(period).mean().to_numpy()


def ema(prices: Sequence[float] | np.ndarray, period: int) -> np.ndarray:
    """Exponential moving average seeded with the SMA of the first period.

    EMA_t = (P_t − EMA_{t−1})·k + EMA_{t−1},  k = 2 / (period + 1)
    """
    _check_period(period)
    closes = _as_closes(prices)
    values = np.full(closes.size, np.nan)
    if closes.size < period:
        return values

    multiplier = 2.0 / (period + 1)
    values[period - 1] = closes[:period].mean()
    for i in range(period, closes.size):
        values[i] = (closes[i] - values[i - 1]) * multiplier + values[i - 1]
    return values


def rsi(prices: Sequence[float] | np.ndarray, period: int = 14) -> np.ndarray:
    """Relative Strength Index with Wilder smoothing.

    The first value, at index ``period``, uses simple averages of the first
    ``period`` gains and losses; later values smooth as
    avg = (avg·(period − 1) + current) / period.
    A window without losses reads 100 (50 if it has no gains either).
    """
    _check_period(period)
    closes = _as_closes(prices)
    values = np.full(closes.size, np.nan)
    if closes.size <= period:
        return values

    changes = np.diff(closes)
    gains = np.clip(changes, 0.0, None)
    losses = np.clip(-changes, 0.0, None)

    avg_gain = gains[:period].mean()
    avg_loss = losses[:period].mean()
    values[period] = _rsi_value(avg_gain, avg_loss)

    for i in range(period + 1, closes.size):
        avg_gain = (avg_gain * (period - 1) + gains[i - 1]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i - 1]) / period
        values[i] = _rsi_value(avg_gain, avg_loss)

    return values


def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0 if avg_gain > 0 else 50.0
    return 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)


def bollinger_bands(
    prices: Sequence[float] | np.ndarray,
    period: int = 20,
    num_std: float = 2.0,
) -> dict[str, np.ndarray]:
    """Bollinger Bands around the SMA using the population standard deviation.

    Returns:
        {upper, middle, lower} arrays aligned to ``prices``
    """
    _check_period(period)
    closes = pd.Series(_as_closes(prices))
    middle = closes.rolling(period).mean()
    std = closes.rolling(period).std(ddof=0)
    return {
        "upper": (middle + num_std * std).to_numpy(),
        "middle": middle.to_numpy(),
        "lower": (middle - num_std * std).to_numpy(),
    }


def macd(
    prices: Sequence[float] | np.ndarray,
    fast: int = 12,
    slow: int = 26,
    signal_period: int = 9,
) -> dict[str, np.ndarray]:
    """MACD (Moving Average Convergence Divergence).

    MACD Line = EMA(fast) − EMA(slow)
    Signal Line = EMA(MACD, signal_period), seeded once the MACD line exists
    Histogram = MACD − Signal

    Returns:
        {macd, signal, histogram} arrays aligned to ``prices``
    """
    _check_period(fast, "fast")
    _check_period(slow, "slow")
    _check_period(signal_period, "signal_period")
    if fast >= slow:
        raise InvalidParameterError(f"fast period ({fast}) must be shorter than slow period ({slow})")

    closes = _as_closes(prices)
    macd_line = ema(closes, fast) - ema(closes, slow)

    signal_line = np.full(closes.size, np.nan)
    valid = np.flatnonzero(~np.isnan(macd_line))
    if valid.size:
        start = valid[0]
        signal_line[start:] = ema(macd_line[start:], signal_period)

    return {
        "macd": macd_line,
        "signal": signal_line,
        "histogram": macd_line - signal_line,
    }


# ---------------------------------------------------------------------------
# OHLCV indicators
# ---------------------------------------------------------------------------


def vwap(df: pd.DataFrame) -> pd.Series:
    """Cumulative volume-weighted average of the typical price (H + L + C) / 3.

    Rows before any volume has traded carry the typical price itself.
    """
    _require_columns(df, ("high", "low", "close", "volume"))
    typical = (df["high"] + df["low"] + df["close"]) / 3.0
    cum_volume = df["volume"].cumsum()
    cum_pv = (typical * df["volume"]).cumsum()
    result = (cum_pv / cum_volume.where(cum_volume > 0)).fillna(typical)
    return result.rename("vwap")


def stochastic(df: pd.DataFrame, k_period: int = 14, d_period: int = 3) -> pd.DataFrame:
    """Stochastic oscillator.

    %K = 100·(close − lowest low) / (highest high − lowest low), 50 for a flat
    window; %D = SMA(%K, d_period).

    Returns:
        DataFrame with ``k`` and ``d`` columns
    """
    _check_period(k_period, "k_period")
    _check_period(d_period, "d_period")
    _require_columns(df, ("high", "low", "close"))

    highest = df["high"].rolling(k_period).max()
    lowest = df["low"].rolling(k_period).min()
    span = highest - lowest

    k = 100.0 * (df["close"] - lowest) / span.where(span != 0)
    k = k.mask(span == 0, 50.0)
    d = k.rolling(d_period).mean()
    return pd.DataFrame({"k": k, "d": d}, index=df.index)


def atr(df: pd.DataFrame, period: int = 14) -> pd.Series:
    """Average True Range with Wilder smoothing.

    TR_t = max(H − L, |H − C_{t−1}|, |L − C_{t−1}|) from the second row on.
    The first ATR, at row ``period``, is the mean of the first ``period``
    true ranges.
    """
    _check_period(period)
    _require_columns(df, ("high", "low", "close"))

    high = df["high"].to_numpy(dtype=float)
    low = df["low"].to_numpy(dtype=float)
    close = df["close"].to_numpy(dtype=float)

    values = np.full(len(df), np.nan)
    if len(df) <= period:
        return pd.Series(values, index=df.index, name="atr")

    prev_close = close[:-1]
    true_range = np.maximum.reduce([
        high[1:] - low[1:],
        np.abs(high[1:] - prev_close),
        np.abs(low[1:] - prev_close),
    ])

    current = true_range[:period].mean()
    values[period] = current
    for i in range(period, true_range.size):
        current = (current * (period - 1) + true_range[i]) / period
        values[i + 1] = current

    return pd.Series(values, index=df.index, name="atr")
