"""Tests for Black-Scholes pricing, Greeks and implied volatility."""

import math

import pytest

from quantcore.analysis.options import (
    black_scholes_greeks,
    black_scholes_price,
    implied_volatility,
    norm_cdf,
    strategy_greeks,
)
from quantcore.analysis.payoff import covered_call, long_straddle
from quantcore.errors import InvalidParameterError, NonConvergenceError, NumericDegenerateError
from quantcore.schemas import OptionParameters, OptionType

PARITY_CASES = [
    (100.0, 100.0, 1.0, 0.05, 0.2, 0.0),
    (100.0, 90.0, 0.5, 0.03, 0.35, 0.01),
    (50.0, 60.0, 2.0, 0.01, 0.5, 0.02),
    (120.0, 100.0, 0.25, 0.0, 0.15, 0.0),
    (80.0, 85.0, 1.5, 0.07, 0.8, 0.03),
]


def _params(spot=100.0, strike=100.0, t=1.0, r=0.05, sigma=0.2, q=0.0):
    return OptionParameters(spot=spot, strike=strike, time_to_expiry=t,
                            risk_free_rate=r, volatility=sigma, dividend_yield=q)


class TestNormCdf:
    @pytest.mark.parametrize("x, expected", [
        (0.0, 0.5),
        (1.0, 0.8413447),
        (-1.96, 0.0249979),
        (0.35, 0.6368307),
    ])
    def test_known_values(self, x, expected):
        assert norm_cdf(x) == pytest.approx(expected, abs=2e-7)

    def test_symmetry(self):
        for x in (0.1, 0.7, 2.3):
            assert norm_cdf(x) + norm_cdf(-x) == pytest.approx(1.0, abs=1e-15)


class TestPrice:
    def test_reference_values(self, atm_option):
        prices = black_scholes_price(atm_option)
        assert prices.call == pytest.approx(10.4506, abs=1e-4)
        assert prices.put == pytest.approx(5.5735, abs=1e-4)

    @pytest.mark.parametrize("spot, strike", [(120.0, 100.0), (80.0, 100.0), (100.0, 100.0)])
    def test_expiry_returns_intrinsic(self, spot, strike):
        prices = black_scholes_price(_params(spot=spot, strike=strike, t=0.0))
        assert prices.call == max(spot - strike, 0.0)
        assert prices.put == max(strike - spot, 0.0)

    def test_negative_time_treated_as_expired(self):
        prices = black_scholes_price(_params(spot=110.0, t=-0.1))
        assert prices.call == 10.0
        assert prices.put == 0.0

    @pytest.mark.parametrize("spot, strike, t, r, sigma, q", PARITY_CASES)
    def test_put_call_parity(self, spot, strike, t, r, sigma, q):
        prices = black_scholes_price(_params(spot, strike, t, r, sigma, q))
        forward_diff = spot * math.exp(-q * t) - strike * math.exp(-r * t)
        assert prices.call - prices.put == pytest.approx(forward_diff, abs=1e-6)

    def test_zero_volatility_is_discounted_intrinsic(self):
        prices = black_scholes_price(_params(spot=100.0, strike=90.0, sigma=0.0))
        assert prices.call == pytest.approx(100.0 - 90.0 * math.exp(-0.05))
        assert prices.put == 0.0

    def test_prices_non_negative_deep_otm(self):
        prices = black_scholes_price(_params(spot=10.0, strike=200.0, t=0.1, sigma=0.1))
        assert prices.call >= 0.0
        assert prices.put > 0.0

    def test_dividend_lowers_call(self, atm_option):
        with_div = atm_option.model_copy(update={"dividend_yield": 0.03})
        assert black_scholes_price(with_div).call < black_scholes_price(atm_option).call

    @pytest.mark.parametrize("overrides", [
        {"spot": 0.0},
        {"strike": -1.0},
        {"sigma": -0.2},
        {"q": -0.01},
        {"r": float("nan")},
    ])
    def test_invalid_params_rejected(self, overrides):
        with pytest.raises(InvalidParameterError):
            black_scholes_price(_params(**overrides))


class TestGreeks:
    def test_call_reference_values(self, atm_option):
        g = black_scholes_greeks(atm_option, "call")
        assert g.delta == pytest.approx(0.6368, abs=1e-4)
        assert g.gamma == pytest.approx(0.018762, abs=1e-5)
        assert g.vega == pytest.approx(0.37524, abs=1e-4)
        assert g.theta == pytest.approx(-0.017573, abs=1e-5)
        assert g.rho == pytest.approx(0.532325, abs=1e-4)

    def test_put_reference_values(self, atm_option):
        g = black_scholes_greeks(atm_option, OptionType.PUT)
        assert g.delta == pytest.approx(0.6368 - 1.0, abs=1e-4)
        assert g.gamma == pytest.approx(0.018762, abs=1e-5)
        assert g.vega == pytest.approx(0.37524, abs=1e-4)
        assert g.rho < 0

    @pytest.mark.parametrize("spot, strike, t, r, sigma, q", PARITY_CASES)
    def test_delta_difference_is_dividend_discount(self, spot, strike, t, r, sigma, q):
        params = _params(spot, strike, t, r, sigma, q)
        call = black_scholes_greeks(params, "call")
        put = black_scholes_greeks(params, "put")
        assert call.delta - put.delta == pytest.approx(math.exp(-q * t), abs=1e-9)
        assert call.gamma == pytest.approx(put.gamma)
        assert call.vega == pytest.approx(put.vega)

    def test_expired_greeks_are_zero(self):
        g = black_scholes_greeks(_params(t=0.0), "call")
        assert (g.delta, g.gamma, g.theta, g.vega, g.rho) == (0.0, 0.0, 0.0, 0.0, 0.0)

    def test_zero_volatility_limit(self):
        g = black_scholes_greeks(_params(spot=100.0, strike=90.0, sigma=0.0), "call")
        assert g.delta == 1.0
        assert g.gamma == 0.0
        assert g.vega == 0.0
        assert math.isfinite(g.theta)

    def test_invalid_option_type(self, atm_option):
        with pytest.raises(InvalidParameterError):
            black_scholes_greeks(atm_option, "straddle")


class TestImpliedVolatility:
    @pytest.mark.parametrize("sigma", [0.05, 0.1, 0.2, 0.5, 0.75, 1.0])
    def test_round_trip_call(self, sigma):
        params = _params(sigma=sigma)
        market = black_scholes_price(params).call
        result = implied_volatility(market, params, "call")
        assert result.converged
        assert result.volatility == pytest.approx(sigma, abs=1e-3)

    @pytest.mark.parametrize("sigma", [0.15, 0.6])
    def test_round_trip_put(self, sigma):
        params = _params(spot=95.0, strike=100.0, t=0.5, sigma=sigma, q=0.01)
        market = black_scholes_price(params).put
        result = implied_volatility(market, params, OptionType.PUT)
        assert result.converged
        assert result.volatility == pytest.approx(sigma, abs=1e-3)
        assert abs(result.price_error) < 1e-4

    @pytest.mark.parametrize("t", [0.1, 0.25])
    @pytest.mark.parametrize("sigma", [0.4, 0.5, 0.6, 0.8, 1.0])
    def test_round_trip_out_of_the_money_short_expiry(self, t, sigma):
        params = _params(spot=80.0, strike=100.0, t=t, sigma=sigma)
        market = black_scholes_price(params).call
        result = implied_volatility(market, params, "call")
        assert result.converged
        assert result.volatility == pytest.approx(sigma, abs=1e-3)

    @pytest.mark.parametrize("spot", [80.0, 90.0, 110.0, 120.0])
    @pytest.mark.parametrize("sigma", [0.3, 1.0])
    def test_round_trip_across_moneyness(self, spot, sigma):
        params = _params(spot=spot, strike=100.0, t=0.1, sigma=sigma)
        market = black_scholes_price(params).put
        result = implied_volatility(market, params, "put")
        assert result.converged
        assert result.volatility == pytest.approx(sigma, abs=1e-3)

    def test_price_below_zero_vol_bound(self):
        # deep in the money: no volatility prices the call this low
        params = _params(spot=200.0, strike=100.0)
        result = implied_volatility(100.0, params, "call")
        assert not result.converged
        assert result.price_error > 0
        assert result.volatility == pytest.approx(0.001, abs=1e-6)

    def test_price_below_zero_vol_bound_strict(self):
        with pytest.raises(NumericDegenerateError):
            implied_volatility(100.0, _params(spot=200.0, strike=100.0), "call", strict=True)


    def test_ignores_params_volatility(self, atm_option):
        market = black_scholes_price(atm_option).call
        result = implied_volatility(market, atm_option.model_copy(update={"volatility": 3.0}), "call")
        assert result.volatility == pytest.approx(0.2, abs=1e-3)

    def test_unreachable_price_flags_non_convergence(self, atm_option):
        result = implied_volatility(150.0, atm_option, "call")
        assert not result.converged
        assert result.iterations == 100
        assert 0.001 <= result.volatility <= 5.0
        assert result.price_error < 0

    def test_strict_mode_raises(self, atm_option):
        with pytest.raises(NonConvergenceError) as exc_info:
            implied_volatility(150.0, atm_option, "call", strict=True)
        assert exc_info.value.iterations == 100
        assert exc_info.value.estimate <= 5.0

    def test_negative_market_price_rejected(self, atm_option):
        with pytest.raises(InvalidParameterError):
            implied_volatility(-1.0, atm_option, "call")

    def test_invalid_bounds_rejected(self, atm_option):
        with pytest.raises(InvalidParameterError):
            implied_volatility(10.0, atm_option, "call", min_vol=1.0, max_vol=0.5)


class TestStrategyGreeks:
    def test_straddle_is_sum_of_legs(self, atm_option):
        net = strategy_greeks(long_straddle(100.0, 10.45, 5.57), atm_option)
        call = black_scholes_greeks(atm_option, "call")
        put = black_scholes_greeks(atm_option, "put")
        assert net.delta == pytest.approx(call.delta + put.delta)
        assert net.gamma == pytest.approx(2 * call.gamma)

    def test_sold_leg_negates(self, atm_option):
        from quantcore.schemas import LegAction, OptionLeg, OptionStrategy

        strategy = OptionStrategy(legs=[OptionLeg(type="call", action=LegAction.SELL, strike=100.0, quantity=2)])
        net = strategy_greeks(strategy, atm_option)
        call = black_scholes_greeks(atm_option, "call")
        assert net.delta == pytest.approx(-2 * call.delta)
        assert net.vega == pytest.approx(-2 * call.vega)

    def test_covered_call_adds_stock_delta(self, atm_option):
        net = strategy_greeks(covered_call(100.0, 100.0, 10.45), atm_option)
        call = black_scholes_greeks(atm_option, "call")
        assert net.delta == pytest.approx(1.0 - call.delta)
        assert net.gamma == pytest.approx(-call.gamma)
