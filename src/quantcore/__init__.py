"""quantcore - Monte Carlo simulation, option pricing and risk analytics."""

from quantcore.analysis.options import black_scholes_greeks, black_scholes_price, implied_volatility
from quantcore.analysis.payoff import strategy_payoff
from quantcore.analysis.random_source import RandomSource
from quantcore.analysis.simulation import PortfolioResults, simulate_gbm, simulate_portfolio
from quantcore.analysis.statistics import risk_metrics as compute_risk_metrics
from quantcore.analysis.statistics import summarize as summarize_simulation
from quantcore.errors import (
    InvalidCorrelationMatrixError,
    InvalidParameterError,
    NonConvergenceError,
    NumericDegenerateError,
    QuantCoreError,
)
from quantcore.schemas import (
    Greeks,
    ImpliedVolatilityResult,
    JumpConfig,
    LegAction,
    OptionLeg,
    OptionParameters,
    OptionPrice,
    OptionStrategy,
    OptionType,
    PayoffPoint,
    PortfolioAsset,
    PortfolioRiskMetrics,
    RiskMetrics,
    SimulationParameters,
    SimulationStatistics,
)

__all__ = [
    "RandomSource",
    "simulate_gbm",
    "simulate_portfolio",
    "PortfolioResults",
    "summarize_simulation",
    "compute_risk_metrics",
    "black_scholes_price",
    "black_scholes_greeks",
    "implied_volatility",
    "strategy_payoff",
    "QuantCoreError",
    "InvalidParameterError",
    "InvalidCorrelationMatrixError",
    "NumericDegenerateError",
    "NonConvergenceError",
    "SimulationParameters",
    "JumpConfig",
    "PortfolioAsset",
    "SimulationStatistics",
    "RiskMetrics",
    "PortfolioRiskMetrics",
    "OptionParameters",
    "OptionPrice",
    "Greeks",
    "ImpliedVolatilityResult",
    "OptionType",
    "LegAction",
    "OptionLeg",
    "OptionStrategy",
    "PayoffPoint",
]
