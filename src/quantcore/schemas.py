"""Pydantic data models for quantcore inputs and results.

Models are frozen and carry no validation constraints of their own: domain
checks live in the operations so that every invalid input surfaces as an
``InvalidParameterError`` rather than a pydantic ``ValidationError``.
"""

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class OptionType(str, Enum):
    CALL = "call"
    PUT = "put"


class LegAction(str, Enum):
    BUY = "buy"
    SELL = "sell"


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


# --- Simulation inputs ---


class SimulationParameters(FrozenModel):
    current_price: float = Field(description="Starting price (> 0)")
    expected_return: float = Field(description="Annualised drift, may be negative")
    volatility: float = Field(description="Annualised volatility (>= 0)")
    time_horizon_days: int = Field(description="Number of trading days to simulate")
    num_paths: int = Field(description="Number of independent paths")


class JumpConfig(FrozenModel):
    jump_intensity: float = Field(0.02, description="Daily probability of a jump")
    jump_mean: float = Field(0.0, description="Mean jump size in log-return space")
    jump_std: float = Field(0.05, description="Jump size standard deviation")


class PortfolioAsset(FrozenModel):
    ticker: str
    weight: float = Field(description="Fractional allocation in [0, 1]")
    current_price: float
    expected_return: float
    volatility: float


# --- Simulation results ---


class SimulationStatistics(FrozenModel):
    average_ending_value: float
    probability_of_gain: float
    percentile_5: float
    percentile_95: float
    max_value: float
    min_value: float
    annualized_expected_return: float
    annualized_volatility: float
    sharpe_ratio: float


class RiskMetrics(FrozenModel):
    var: float = Field(description="Value at risk in price units")
    cvar: float = Field(description="Expected shortfall as a fractional loss")
    sharpe: float
    sortino: float
    max_drawdown: float


class PortfolioRiskMetrics(FrozenModel):
    var_95: float
    var_99: float
    expected_shortfall: float
    max_drawdown: float


# --- Options ---


class OptionParameters(FrozenModel):
    spot: float
    strike: float
    time_to_expiry: float = Field(description="Years to expiry")
    risk_free_rate: float
    volatility: float
    dividend_yield: float = 0.0


class OptionPrice(FrozenModel):
    call: float
    put: float


class Greeks(FrozenModel):
    delta: float
    gamma: float
    theta: float = Field(description="Per calendar day")
    vega: float = Field(description="Per 1% volatility move")
    rho: float = Field(description="Per 1% rate move")


class ImpliedVolatilityResult(FrozenModel):
    volatility: float
    converged: bool
    iterations: int
    price_error: float


class OptionLeg(FrozenModel):
    type: OptionType
    action: LegAction
    strike: float
    quantity: float = 1.0
    premium: float = 0.0


class OptionStrategy(FrozenModel):
    name: str = "custom"
    legs: list[OptionLeg] = Field(default_factory=list)
    underlying_quantity: float = Field(0.0, description="Units of the underlying held alongside the legs (negative if short)")
    underlying_cost: float = Field(0.0, description="Entry price of the underlying position")


class PayoffPoint(FrozenModel):
    spot: float
    payoff: float


class PayoffSummary(FrozenModel):
    max_profit: float
    max_loss: float
    breakevens: list[float]


# --- Return-series risk ---


class ReturnRiskMetrics(FrozenModel):
    var: float = Field(description="Historical VaR as a positive fractional loss")
    cvar: float
    max_drawdown: float
    volatility: float
    sharpe_ratio: float
    sortino_ratio: float
    calmar_ratio: float
    beta: float | None = None
    alpha: float | None = None
    information_ratio: float | None = None
    tracking_error: float | None = None


class PositionSizing(FrozenModel):
    kelly_fraction: float
    optimal_f: float
    fixed_fractional: float
    volatility_scaled: float


# --- Portfolio construction ---


class PortfolioOptimization(FrozenModel):
    method: str
    weights: list[float]
    expected_return: float
    volatility: float
    sharpe_ratio: float
    diversification_ratio: float


class FrontierPoint(FrozenModel):
    expected_return: float
    volatility: float
    sharpe_ratio: float
    weights: list[float]


# --- Stress testing ---


class StressTestResult(FrozenModel):
    percentiles: dict[str, float] = Field(description="p5/p25/p50/p75/p95 of horizon returns")
    max_loss: float = Field(description="Worst horizon return")
    average_return: float
    num_paths: int
    time_horizon_days: int


class StressEvent(FrozenModel):
    name: str
    start_index: int
    end_index: int = Field(description="Inclusive")


class ScenarioResult(FrozenModel):
    event: str
    portfolio_return: float
    duration: int


# --- Backtesting ---


class Signal(str, Enum):
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"


class Trade(FrozenModel):
    side: Signal
    date: str
    price: float = Field(description="Fill price including slippage")
    quantity: int
    commission: float
    slippage_cost: float


class RoundTrip(FrozenModel):
    entry_date: str
    exit_date: str
    entry_price: float
    exit_price: float
    quantity: int
    pnl: float = Field(description="Realised P&L net of both commissions")
    return_pct: float


class EquityPoint(FrozenModel):
    date: str
    value: float
    drawdown: float


class SignalPoint(FrozenModel):
    date: str
    signal: Signal
    price: float


class PerformanceMetrics(FrozenModel):
    total_return: float
    annualized_return: float
    sharpe_ratio: float
    sortino_ratio: float
    max_drawdown: float
    volatility: float
    win_rate: float
    profit_factor: float
    calmar_ratio: float
    total_trades: int
    round_trips: int
    average_trade: float
    best_trade: float
    worst_trade: float
    average_winning_trade: float
    average_losing_trade: float
    max_consecutive_wins: int
    max_consecutive_losses: int


class BacktestResult(FrozenModel):
    strategy: str
    trades: list[Trade]
    round_trips: list[RoundTrip]
    equity_curve: list[EquityPoint]
    signals: list[SignalPoint]
    final_position: int
    final_cash: float
    performance: PerformanceMetrics


# --- Strategy definitions ---


class MovingAverageCrossover(FrozenModel):
    kind: Literal["ma_crossover"] = "ma_crossover"
    fast_period: int = 20
    slow_period: int = 50
    position_size: float = Field(0.95, description="Fraction of cash committed per entry")


class RSIMeanReversion(FrozenModel):
    kind: Literal["rsi_mean_reversion"] = "rsi_mean_reversion"
    rsi_period: int = 14
    oversold_level: float = 30.0
    overbought_level: float = 70.0
    position_size: float = 0.5


class BollingerBandsStrategy(FrozenModel):
    kind: Literal["bollinger_bands"] = "bollinger_bands"
    period: int = 20
    num_std: float = 2.0
    position_size: float = 0.8


TradingStrategy = Annotated[
    Union[MovingAverageCrossover, RSIMeanReversion, BollingerBandsStrategy],
    Field(discriminator="kind"),
]
