"""Pytest configuration and shared fixtures."""

import numpy as np
import pandas as pd
import pytest

from quantcore.schemas import OptionParameters, PortfolioAsset, SimulationParameters


@pytest.fixture
def atm_option():
    """At-the-money one-year option, 20% vol, 5% rate, no dividend."""
    return OptionParameters(
        spot=100.0,
        strike=100.0,
        time_to_expiry=1.0,
        risk_free_rate=0.05,
        volatility=0.2,
    )


@pytest.fixture
def gbm_params():
    return SimulationParameters(
        current_price=100.0,
        expected_return=0.08,
        volatility=0.2,
        time_horizon_days=60,
        num_paths=500,
    )


@pytest.fixture
def two_assets():
    return [
        PortfolioAsset(ticker="AAA", weight=0.6, current_price=50.0, expected_return=0.08, volatility=0.2),
        PortfolioAsset(ticker="BBB", weight=0.4, current_price=200.0, expected_return=0.05, volatility=0.3),
    ]


@pytest.fixture
def daily_returns():
    """Realistic daily returns (~20% annual vol)."""
    rng = np.random.default_rng(42)
    return rng.normal(0.08 / 252, 0.20 / np.sqrt(252), 250)


@pytest.fixture
def ohlcv_frame():
    """Thirty bars of synthetic OHLCV data on a business-day index."""
    rng = np.random.default_rng(7)
    close = 100.0 * np.cumprod(1.0 + rng.normal(0.0005, 0.01, 30))
    open_ = np.concatenate(([100.0], close[:-1]))
    high = np.maximum(open_, close) * 1.005
    low = np.minimum(open_, close) * 0.995
    volume = rng.integers(100_000, 1_000_000, 30).astype(float)
    index = pd.bdate_range("2024-01-01", periods=30)
    return pd.DataFrame(
        {"open": open_, "high": high, "low": low, "close": close, "volume": volume},
        index=index,
    )
