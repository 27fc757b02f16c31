"""Strategy signals and a single-asset, long-only backtest engine.

Strategies are plain data (see ``quantcore.schemas.TradingStrategy``); the
behaviour lives in ``generate_signal`` and ``position_size`` here. The engine
walks the closes in order, fills at the close adjusted for slippage, and
books round trips when a position is closed.
"""

import logging
import math
from typing import Any, Sequence

import numpy as np
import pandas as pd
from pydantic import TypeAdapter, ValidationError

from quantcore.errors import InvalidParameterError
from quantcore.schemas import (
    BacktestResult,
    BollingerBandsStrategy,
    EquityPoint,
    MovingAverageCrossover,
    PerformanceMetrics,
    RoundTrip,
    RSIMeanReversion,
    Signal,
    SignalPoint,
    Trade,
    TradingStrategy,
)

from .sim_models import TRADING_DAYS_PER_YEAR
from .statistics import safe_ratio
from .technical import rsi

logger = logging.getLogger(__name__)

DEFAULT_INITIAL_CAPITAL = 100000.0
DEFAULT_RISK_FREE_RATE = 0.02

_strategy_adapter = TypeAdapter(TradingStrategy)


def parse_strategy(data: dict[str, Any]) -> TradingStrategy:
    """Build a strategy from a ``{"kind": ..., **parameters}`` mapping."""
    try:
        return _strategy_adapter.validate_python(data)
    except ValidationError as e:
        raise InvalidParameterError(f"invalid strategy definition: {e}") from e


def available_strategies() -> list[TradingStrategy]:
    """Every built-in strategy with its default parameters."""
    return [MovingAverageCrossover(), RSIMeanReversion(), BollingerBandsStrategy()]


def validate_strategy(strategy: TradingStrategy) -> None:
    if not 0.0 < strategy.position_size <= 1.0:
        raise InvalidParameterError(f"position_size must be in (0, 1], got {strategy.position_size}")
    if isinstance(strategy, MovingAverageCrossover):
        if not 1 <= strategy.fast_period < strategy.slow_period:
            raise InvalidParameterError("moving average crossover requires 1 <= fast_period < slow_period")
    elif isinstance(strategy, RSIMeanReversion):
        if strategy.rsi_period < 1:
            raise InvalidParameterError("rsi_period must be >= 1")
        if not 0.0 <= strategy.oversold_level < strategy.overbought_level <= 100.0:
            raise InvalidParameterError("RSI levels must satisfy 0 <= oversold < overbought <= 100")
    elif isinstance(strategy, BollingerBandsStrategy):
        if strategy.period < 2 or strategy.num_std <= 0:
            raise InvalidParameterError("bollinger strategy requires period >= 2 and num_std > 0")


# ---------------------------------------------------------------------------
# Signals
# ---------------------------------------------------------------------------


def _window(closes: np.ndarray, period: int, index: int) -> np.ndarray | None:
    if index < period - 1 or index >= closes.size:
        return None
    return closes[index - period + 1 : index + 1]


def _ma_crossover_signal(
    strategy: MovingAverageCrossover, closes: np.ndarray, index: int, position_qty: int
) -> Signal:
    windows = [
        _window(closes, strategy.fast_period, index),
        _window(closes, strategy.slow_period, index),
        _window(closes, strategy.fast_period, index - 1),
        _window(closes, strategy.slow_period, index - 1),
    ]
    if any(w is None for w in windows):
        return Signal.HOLD
    fast, slow, prev_fast, prev_slow = (float(w.mean()) for w in windows)

    if prev_fast <= prev_slow and fast > slow and position_qty == 0:
        return Signal.BUY
    if prev_fast >= prev_slow and fast < slow and position_qty > 0:
        return Signal.SELL
    return Signal.HOLD


def _rsi_signal(strategy: RSIMeanReversion, closes: np.ndarray, index: int, position_qty: int) -> Signal:
    value = rsi(closes[: index + 1], strategy.rsi_period)[-1] if index >= 0 else math.nan
    if math.isnan(value):
        return Signal.HOLD

    if value < strategy.oversold_level and position_qty == 0:
        return Signal.BUY
    if value > strategy.overbought_level and position_qty > 0:
        return Signal.SELL
    return Signal.HOLD


def _bollinger_signal(
    strategy: BollingerBandsStrategy, closes: np.ndarray, index: int, position_qty: int
) -> Signal:
    window = _window(closes, strategy.period, index)
    if window is None:
        return Signal.HOLD
    std = float(window.std())
    # A flat window collapses the bands onto the price
    if std == 0.0:
        return Signal.HOLD

    middle = float(window.mean())
    price = float(closes[index])
    if price <= middle - strategy.num_std * std and position_qty == 0:
        return Signal.BUY
    if price >= middle + strategy.num_std * std and position_qty > 0:
        return Signal.SELL
    return Signal.HOLD


def generate_signal(
    strategy: TradingStrategy,
    closes: Sequence[float] | np.ndarray,
    index: int,
    position_qty: int = 0,
) -> Signal:
    """Signal for bar ``index`` using only closes up to and including it.

    Entries are only signalled while flat and exits only while long.
    """
    arr = np.asarray(closes, dtype=float)
    if isinstance(strategy, MovingAverageCrossover):
        return _ma_crossover_signal(strategy, arr, index, position_qty)
    if isinstance(strategy, RSIMeanReversion):
        return _rsi_signal(strategy, arr, index, position_qty)
    if isinstance(strategy, BollingerBandsStrategy):
        return _bollinger_signal(strategy, arr, index, position_qty)
    raise InvalidParameterError(f"unknown strategy: {strategy!r}")


def position_size(
    strategy: TradingStrategy,
    signal: Signal,
    price: float,
    cash: float,
    position_qty: int = 0,
) -> int:
    """Whole units to trade: a ``position_size`` share of cash on entry, everything on exit."""
    if signal == Signal.BUY:
        if price <= 0:
            return 0
        return int(math.floor(cash * strategy.position_size / price))
    if signal == Signal.SELL:
        return position_qty
    return 0


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _dates(prices: pd.DataFrame) -> list[str]:
    if "date" in prices.columns:
        return [str(d) for d in prices["date"]]
    if isinstance(prices.index, pd.DatetimeIndex):
        return [d.strftime("%Y-%m-%d") for d in prices.index]
    return [str(d) for d in prices.index]


def run_backtest(
    prices: pd.DataFrame,
    strategy: TradingStrategy,
    initial_capital: float = DEFAULT_INITIAL_CAPITAL,
    commission: float = 0.0,
    slippage: float = 0.0,
    risk_free_rate: float = DEFAULT_RISK_FREE_RATE,
) -> BacktestResult:
    """Run ``strategy`` over a price history.

    Args:
        prices: DataFrame with a ``close`` column, oldest row first. Bar
            labels come from a ``date`` column if present, else the index.
        strategy: Strategy definition.
        initial_capital: Starting cash.
        commission: Flat fee charged per executed trade.
        slippage: Fractional price penalty; buys fill at close·(1 + s),
            sells at close·(1 − s).
        risk_free_rate: Annual rate for Sharpe and Sortino.

    Returns:
        BacktestResult with trades, realised round trips, the marked-to-market
        equity curve and performance metrics. An open position at the end is
        left open and valued at the last close.
    """
    validate_strategy(strategy)
    if "close" not in prices.columns:
        raise InvalidParameterError("price frame must have a 'close' column")
    if prices.empty:
        raise InvalidParameterError("price frame is empty")
    if not math.isfinite(initial_capital) or initial_capital <= 0:
        raise InvalidParameterError(f"initial_capital must be > 0, got {initial_capital}")
    if commission < 0:
        raise InvalidParameterError(f"commission must be >= 0, got {commission}")
    if not 0.0 <= slippage < 1.0:
        raise InvalidParameterError(f"slippage must be in [0, 1), got {slippage}")

    closes = prices["close"].to_numpy(dtype=float)
    if not np.all(np.isfinite(closes)) or np.any(closes <= 0):
        raise InvalidParameterError("close prices must be finite and > 0")
    dates = _dates(prices)

    cash = initial_capital
    qty = 0
    entry: Trade | None = None
    peak = initial_capital

    trades: list[Trade] = []
    round_trips: list[RoundTrip] = []
    signals: list[SignalPoint] = []
    equity_curve: list[EquityPoint] = []

    for i, close in enumerate(closes):
        signal = generate_signal(strategy, closes, i, qty)
        signals.append(SignalPoint(date=dates[i], signal=signal, price=float(close)))

        quantity = position_size(strategy, signal, float(close), cash, qty)
        if quantity > 0:
            if signal == Signal.BUY:
                fill = close * (1.0 + slippage)
                cost = fill * quantity + commission
                if cost <= cash:
                    cash -= cost
                    qty += quantity
                    entry = Trade(
                        side=Signal.BUY, date=dates[i], price=float(fill), quantity=quantity,
                        commission=commission, slippage_cost=float(close * slippage * quantity),
                    )
                    trades.append(entry)
                else:
                    logger.debug("Skipping buy on %s: cost %.2f exceeds cash %.2f", dates[i], cost, cash)

            elif signal == Signal.SELL and entry is not None:
                fill = close * (1.0 - slippage)
                cash += fill * quantity - commission
                qty -= quantity
                trades.append(
                    Trade(
                        side=Signal.SELL, date=dates[i], price=float(fill), quantity=quantity,
                        commission=commission, slippage_cost=float(close * slippage * quantity),
                    )
                )
                round_trips.append(_close_round_trip(entry, dates[i], float(fill), quantity, commission))
                entry = None

        value = cash + qty * close
        peak = max(peak, value)
        equity_curve.append(
            EquityPoint(date=dates[i], value=float(value), drawdown=float((peak - value) / peak))
        )

    performance = compute_performance(
        [p.value for p in equity_curve],
        [p.drawdown for p in equity_curve],
        initial_capital,
        trades,
        round_trips,
        risk_free_rate,
    )

    logger.info(
        "Backtest %s: %d bars, %d trades, total return %.4f",
        strategy.kind, len(closes), len(trades), performance.total_return,
    )

    return BacktestResult(
        strategy=strategy.kind,
        trades=trades,
        round_trips=round_trips,
        equity_curve=equity_curve,
        signals=signals,
        final_position=qty,
        final_cash=float(cash),
        performance=performance,
    )


def _close_round_trip(entry: Trade, exit_date: str, exit_price: float, quantity: int, commission: float) -> RoundTrip:
    pnl = (exit_price - entry.price) * quantity - entry.commission - commission
    invested = entry.price * quantity + entry.commission
    return RoundTrip(
        entry_date=entry.date,
        exit_date=exit_date,
        entry_price=entry.price,
        exit_price=exit_price,
        quantity=quantity,
        pnl=float(pnl),
        return_pct=float(pnl / invested) if invested > 0 else 0.0,
    )


def _longest_streak(flags: list[bool], target: bool) -> int:
    best = current = 0
    for flag in flags:
        current = current + 1 if flag == target else 0
        best = max(best, current)
    return best


def compute_performance(
    equity: Sequence[float],
    drawdowns: Sequence[float],
    initial_capital: float,
    trades: Sequence[Trade],
    round_trips: Sequence[RoundTrip],
    risk_free_rate: float = DEFAULT_RISK_FREE_RATE,
) -> PerformanceMetrics:
    """Performance statistics of an equity curve and its realised round trips.

    Win rate, profit factor and the per-trade figures are computed from
    closed round trips only.
    """
    values = np.asarray(equity, dtype=float)
    total_return = float((values[-1] - initial_capital) / initial_capital)
    annualized_return = (1.0 + total_return) ** (TRADING_DAYS_PER_YEAR / values.size) - 1.0

    if values.size > 1:
        returns = values[1:] / values[:-1] - 1.0
        volatility = float(np.std(returns)) * math.sqrt(TRADING_DAYS_PER_YEAR)
        downside = np.minimum(returns, 0.0)
        downside_dev = math.sqrt(float(np.mean(downside**2)) * TRADING_DAYS_PER_YEAR)
    else:
        volatility = downside_dev = 0.0

    max_dd = float(max(drawdowns)) if len(drawdowns) else 0.0

    pnls = [rt.pnl for rt in round_trips]
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p <= 0]
    gross_profit = sum(wins)
    gross_loss = -sum(losses)
    if gross_loss > 0:
        profit_factor = gross_profit / gross_loss
    else:
        profit_factor = math.inf if gross_profit > 0 else 0.0

    outcomes = [p > 0 for p in pnls]

    return PerformanceMetrics(
        total_return=total_return,
        annualized_return=annualized_return,
        sharpe_ratio=safe_ratio(annualized_return - risk_free_rate, volatility, "sharpe_ratio"),
        sortino_ratio=safe_ratio(annualized_return - risk_free_rate, downside_dev, "sortino_ratio"),
        max_drawdown=max_dd,
        volatility=volatility,
        win_rate=len(wins) / len(pnls) if pnls else 0.0,
        profit_factor=profit_factor,
        calmar_ratio=safe_ratio(annualized_return, max_dd, "calmar_ratio"),
        total_trades=len(trades),
        round_trips=len(pnls),
        average_trade=float(np.mean(pnls)) if pnls else 0.0,
        best_trade=max(pnls) if pnls else 0.0,
        worst_trade=min(pnls) if pnls else 0.0,
        average_winning_trade=float(np.mean(wins)) if wins else 0.0,
        average_losing_trade=float(np.mean(losses)) if losses else 0.0,
        max_consecutive_wins=_longest_streak(outcomes, True),
        max_consecutive_losses=_longest_streak(outcomes, False),
    )
