"""Expiry payoff diagrams for multi-leg option strategies.

Per spot S and leg:
  intrinsic = max(S − K, 0) for calls, max(K − S, 0) for puts
  leg P&L   = (intrinsic − premium) if bought, (premium − intrinsic) if sold
Strategy payoff = Σ leg P&L · quantity, plus (S − cost) per unit of any
underlying held alongside the legs (a covered call holds the stock).
"""

import math
from typing import Sequence

import numpy as np

from quantcore.errors import InvalidParameterError
from quantcore.schemas import (
    LegAction,
    OptionLeg,
    OptionStrategy,
    OptionType,
    PayoffPoint,
    PayoffSummary,
)


def validate_leg(leg: OptionLeg) -> None:
    if not math.isfinite(leg.strike) or leg.strike <= 0:
        raise InvalidParameterError(f"leg strike must be > 0, got {leg.strike}")
    if not math.isfinite(leg.quantity) or leg.quantity <= 0:
        raise InvalidParameterError(f"leg quantity must be > 0, got {leg.quantity}")
    if not math.isfinite(leg.premium):
        raise InvalidParameterError("leg premium must be finite")


def payoff_curve(strategy: OptionStrategy, spots: Sequence[float] | np.ndarray) -> np.ndarray:
    """Vectorised strategy payoff at each spot."""
    spot_arr = np.asarray(spots, dtype=float)
    total = np.zeros_like(spot_arr)

    for leg in strategy.legs:
        validate_leg(leg)
        if leg.type == OptionType.CALL:
            intrinsic = np.maximum(spot_arr - leg.strike, 0.0)
        else:
            intrinsic = np.maximum(leg.strike - spot_arr, 0.0)

        if leg.action == LegAction.BUY:
            leg_pnl = intrinsic - leg.premium
        else:
            leg_pnl = leg.premium - intrinsic
        total += leg_pnl * leg.quantity

    if not math.isfinite(strategy.underlying_quantity):
        raise InvalidParameterError("underlying_quantity must be finite")
    if strategy.underlying_quantity != 0.0:
        if not math.isfinite(strategy.underlying_cost) or strategy.underlying_cost <= 0:
            raise InvalidParameterError(f"underlying_cost must be > 0, got {strategy.underlying_cost}")
        total += (spot_arr - strategy.underlying_cost) * strategy.underlying_quantity

    return total


def strategy_payoff(strategy: OptionStrategy, spot_range: Sequence[float]) -> list[PayoffPoint]:
    """Payoff at expiry for every spot in ``spot_range``."""
    spots = np.asarray(spot_range, dtype=float)
    if not np.all(np.isfinite(spots)):
        raise InvalidParameterError("spot_range must contain finite values")
    payoffs = payoff_curve(strategy, spots)
    return [PayoffPoint(spot=float(s), payoff=float(p)) for s, p in zip(spots, payoffs)]


def spot_grid(center: float, width: float = 0.5, num_points: int = 101) -> list[float]:
    """Evenly spaced spots over center·(1 ± width), floored above zero."""
    if center <= 0 or num_points < 2 or width <= 0:
        raise InvalidParameterError("spot grid needs center > 0, width > 0, num_points >= 2")
    low = max(center * (1.0 - width), center * 1e-3)
    return [float(s) for s in np.linspace(low, center * (1.0 + width), num_points)]


def payoff_summary(points: Sequence[PayoffPoint]) -> PayoffSummary:
    """Max profit, max loss and breakevens over an evaluated grid.

    Breakevens are found by linear interpolation wherever the payoff
    crosses zero between consecutive grid points. Where it lands exactly on
    zero, only the first and last spot of each zero run are reported.
    Profit and loss are bounded by the grid; they do not detect unlimited
    payoffs beyond its edges.
    """
    if not points:
        raise InvalidParameterError("at least one payoff point is required")

    spots = np.array([p.spot for p in points])
    payoffs = np.array([p.payoff for p in points])

    breakevens: list[float] = []
    last = len(points) - 1
    for i in range(len(points)):
        if payoffs[i] == 0.0:
            starts_run = i == 0 or payoffs[i - 1] != 0.0
            ends_run = i == last or payoffs[i + 1] != 0.0
            if starts_run or ends_run:
                breakevens.append(float(spots[i]))
        elif i + 1 < len(points) and payoffs[i] * payoffs[i + 1] < 0:
            frac = payoffs[i] / (payoffs[i] - payoffs[i + 1])
            breakevens.append(float(spots[i] + frac * (spots[i + 1] - spots[i])))

    return PayoffSummary(
        max_profit=float(payoffs.max()),
        max_loss=float(payoffs.min()),
        breakevens=breakevens,
    )


# ---------------------------------------------------------------------------
# Strategy presets
# ---------------------------------------------------------------------------


def long_call(strike: float, premium: float, quantity: float = 1.0) -> OptionStrategy:
    return OptionStrategy(
        name="long_call",
        legs=[OptionLeg(type=OptionType.CALL, action=LegAction.BUY, strike=strike,
                        quantity=quantity, premium=premium)],
    )


def long_put(strike: float, premium: float, quantity: float = 1.0) -> OptionStrategy:
    return OptionStrategy(
        name="long_put",
        legs=[OptionLeg(type=OptionType.PUT, action=LegAction.BUY, strike=strike,
                        quantity=quantity, premium=premium)],
    )


def bull_call_spread(
    lower_strike: float,
    upper_strike: float,
    lower_premium: float,
    upper_premium: float,
    quantity: float = 1.0,
) -> OptionStrategy:
    """Buy the lower-strike call, sell the upper-strike call."""
    if lower_strike >= upper_strike:
        raise InvalidParameterError("bull call spread requires lower_strike < upper_strike")
    return OptionStrategy(
        name="bull_call_spread",
        legs=[
            OptionLeg(type=OptionType.CALL, action=LegAction.BUY, strike=lower_strike,
                      quantity=quantity, premium=lower_premium),
            OptionLeg(type=OptionType.CALL, action=LegAction.SELL, strike=upper_strike,
                      quantity=quantity, premium=upper_premium),
        ],
    )


def long_straddle(
    strike: float, call_premium: float, put_premium: float, quantity: float = 1.0
) -> OptionStrategy:
    return OptionStrategy(
        name="long_straddle",
        legs=[
            OptionLeg(type=OptionType.CALL, action=LegAction.BUY, strike=strike,
                      quantity=quantity, premium=call_premium),
            OptionLeg(type=OptionType.PUT, action=LegAction.BUY, strike=strike,
                      quantity=quantity, premium=put_premium),
        ],
    )


def iron_condor(
    strikes: tuple[float, float, float, float],
    premiums: tuple[float, float, float, float],
    quantity: float = 1.0,
) -> OptionStrategy:
    """Short strangle inside a long strangle.

    Args:
        strikes: (long put, short put, short call, long call), ascending.
        premiums: Premiums in the same order.
    """
    lp, sp, sc, lc = strikes
    if not lp < sp <= sc < lc:
        raise InvalidParameterError("iron condor strikes must satisfy long put < short put <= short call < long call")
    p_lp, p_sp, p_sc, p_lc = premiums
    return OptionStrategy(
        name="iron_condor",
        legs=[
            OptionLeg(type=OptionType.PUT, action=LegAction.BUY, strike=lp, quantity=quantity, premium=p_lp),
            OptionLeg(type=OptionType.PUT, action=LegAction.SELL, strike=sp, quantity=quantity, premium=p_sp),
            OptionLeg(type=OptionType.CALL, action=LegAction.SELL, strike=sc, quantity=quantity, premium=p_sc),
            OptionLeg(type=OptionType.CALL, action=LegAction.BUY, strike=lc, quantity=quantity, premium=p_lc),
        ],
    )


def covered_call(
    stock_price: float, strike: float, premium: float, quantity: float = 1.0
) -> OptionStrategy:
    """Hold the stock bought at ``stock_price`` and sell a call against it."""
    return OptionStrategy(
        name="covered_call",
        legs=[OptionLeg(type=OptionType.CALL, action=LegAction.SELL, strike=strike,
                        quantity=quantity, premium=premium)],
        underlying_quantity=quantity,
        underlying_cost=stock_price,
    )
