"""Black-Scholes option pricing, Greeks and implied volatility.

Pure computation functions for European options with a continuous dividend
yield. Unit conventions for Greeks follow trading-desk practice:
  - theta is per calendar day (annual theta / 365)
  - vega is per 1% volatility move (/ 100)
  - rho is per 1% rate move (/ 100)
"""

import logging
import math

from quantcore.errors import InvalidParameterError, NonConvergenceError, NumericDegenerateError
from quantcore.schemas import (
    Greeks,
    ImpliedVolatilityResult,
    LegAction,
    OptionParameters,
    OptionPrice,
    OptionStrategy,
    OptionType,
)

logger = logging.getLogger(__name__)

DAYS_PER_YEAR = 365.0

# Abramowitz & Stegun 7.1.26 coefficients, |error| <= 1.5e-7
_AS_A1 = 0.254829592
_AS_A2 = -0.284496736
_AS_A3 = 1.421413741
_AS_A4 = -1.453152027
_AS_A5 = 1.061405429
_AS_P = 0.3275911

IV_INITIAL_GUESS = 0.2
IV_TOLERANCE = 1e-4
IV_MAX_ITERATIONS = 100
IV_MIN_VOL = 0.001
IV_MAX_VOL = 5.0
IV_MIN_VEGA = 1e-10
IV_MIN_BRACKET = 1e-12


def norm_cdf(x: float) -> float:
    """Standard normal CDF via the Abramowitz-Stegun rational approximation."""
    sign = -1.0 if x < 0 else 1.0
    z = abs(x) / math.sqrt(2.0)
    t = 1.0 / (1.0 + _AS_P * z)
    y = 1.0 - (((((_AS_A5 * t + _AS_A4) * t) + _AS_A3) * t + _AS_A2) * t + _AS_A1) * t * math.exp(-z * z)
    return 0.5 * (1.0 + sign * y)


def norm_pdf(x: float) -> float:
    return math.exp(-0.5 * x * x) / math.sqrt(2.0 * math.pi)


def as_option_type(option_type: OptionType | str) -> OptionType:
    try:
        return OptionType(option_type)
    except ValueError as e:
        raise InvalidParameterError(f"option type must be 'call' or 'put', got {option_type!r}") from e


def validate_option_params(params: OptionParameters) -> None:
    if not math.isfinite(params.spot) or params.spot <= 0:
        raise InvalidParameterError(f"spot must be > 0, got {params.spot}")
    if not math.isfinite(params.strike) or params.strike <= 0:
        raise InvalidParameterError(f"strike must be > 0, got {params.strike}")
    if not math.isfinite(params.time_to_expiry):
        raise InvalidParameterError("time_to_expiry must be finite")
    if not math.isfinite(params.risk_free_rate):
        raise InvalidParameterError("risk_free_rate must be finite")
    if not math.isfinite(params.volatility) or params.volatility < 0:
        raise InvalidParameterError(f"volatility must be >= 0, got {params.volatility}")
    if not math.isfinite(params.dividend_yield) or params.dividend_yield < 0:
        raise InvalidParameterError(f"dividend_yield must be >= 0, got {params.dividend_yield}")


def _d1_d2(params: OptionParameters) -> tuple[float, float] | None:
    """d1 and d2, or None when σ·sqrt(T) is zero."""
    t = params.time_to_expiry
    sig_sqrt_t = params.volatility * math.sqrt(t)
    if sig_sqrt_t == 0.0:
        return None
    d1 = (
        math.log(params.spot / params.strike)
        + (params.risk_free_rate - params.dividend_yield + 0.5 * params.volatility**2) * t
    ) / sig_sqrt_t
    return d1, d1 - sig_sqrt_t


def _zero_vol_probability(params: OptionParameters) -> float:
    """Limit of N(d1) = N(d2) as σ → 0: a step on forward moneyness."""
    t = params.time_to_expiry
    forward_diff = (
        params.spot * math.exp(-params.dividend_yield * t)
        - params.strike * math.exp(-params.risk_free_rate * t)
    )
    if forward_diff > 0:
        return 1.0
    if forward_diff < 0:
        return 0.0
    return 0.5


def black_scholes_price(params: OptionParameters) -> OptionPrice:
    """Black-Scholes call and put prices, each floored at zero.

    At or past expiry (T <= 0) the intrinsic values are returned directly.
    """
    validate_option_params(params)
    s, k, t = params.spot, params.strike, params.time_to_expiry

    if t <= 0:
        return OptionPrice(call=max(s - k, 0.0), put=max(k - s, 0.0))

    disc_s = s * math.exp(-params.dividend_yield * t)
    disc_k = k * math.exp(-params.risk_free_rate * t)

    d = _d1_d2(params)
    if d is None:
        logger.debug("Black-Scholes: zero volatility, using discounted forward intrinsic")
        return OptionPrice(call=max(disc_s - disc_k, 0.0), put=max(disc_k - disc_s, 0.0))

    d1, d2 = d
    call = disc_s * norm_cdf(d1) - disc_k * norm_cdf(d2)
    put = disc_k * norm_cdf(-d2) - disc_s * norm_cdf(-d1)
    return OptionPrice(call=max(call, 0.0), put=max(put, 0.0))


def _option_price(params: OptionParameters, option_type: OptionType) -> float:
    prices = black_scholes_price(params)
    return prices.call if option_type == OptionType.CALL else prices.put


def _raw_vega(params: OptionParameters) -> float:
    """∂price/∂σ per unit volatility (not per 1%)."""
    t = params.time_to_expiry
    if t <= 0:
        return 0.0
    d = _d1_d2(params)
    if d is None:
        return 0.0
    return params.spot * math.exp(-params.dividend_yield * t) * norm_pdf(d[0]) * math.sqrt(t)


def black_scholes_greeks(params: OptionParameters, option_type: OptionType | str) -> Greeks:
    """Analytic Black-Scholes Greeks.

    Returns all zeros at or past expiry. With zero volatility the
    deterministic limit is used: gamma and vega vanish and delta is a step
    function of forward moneyness.
    """
    validate_option_params(params)
    kind = as_option_type(option_type)
    s, k, t = params.spot, params.strike, params.time_to_expiry
    r, q, sigma = params.risk_free_rate, params.dividend_yield, params.volatility

    if t <= 0:
        return Greeks(delta=0.0, gamma=0.0, theta=0.0, vega=0.0, rho=0.0)

    sqrt_t = math.sqrt(t)
    div_disc = math.exp(-q * t)
    rate_disc = math.exp(-r * t)

    d = _d1_d2(params)
    if d is None:
        nd1 = nd2 = _zero_vol_probability(params)
        n_minus_d1 = n_minus_d2 = 1.0 - nd1
        pdf1 = 0.0
        gamma = 0.0
    else:
        d1, d2 = d
        nd1, nd2 = norm_cdf(d1), norm_cdf(d2)
        n_minus_d1, n_minus_d2 = norm_cdf(-d1), norm_cdf(-d2)
        pdf1 = norm_pdf(d1)
        gamma = div_disc * pdf1 / (s * sigma * sqrt_t)

    decay = -s * pdf1 * sigma * div_disc / (2.0 * sqrt_t)
    carry_k = r * k * rate_disc
    carry_s = q * s * div_disc

    if kind == OptionType.CALL:
        delta = div_disc * nd1
        theta = decay - carry_k * nd2 + carry_s * nd1
        rho = k * t * rate_disc * nd2
    else:
        delta = -div_disc * n_minus_d1
        theta = decay + carry_k * n_minus_d2 - carry_s * n_minus_d1
        rho = -k * t * rate_disc * n_minus_d2

    vega = s * div_disc * pdf1 * sqrt_t

    return Greeks(
        delta=delta,
        gamma=gamma,
        theta=theta / DAYS_PER_YEAR,
        vega=vega / 100.0,
        rho=rho / 100.0,
    )


def implied_volatility(
    market_price: float,
    params: OptionParameters,
    option_type: OptionType | str,
    initial_guess: float = IV_INITIAL_GUESS,
    tolerance: float = IV_TOLERANCE,
    max_iterations: int = IV_MAX_ITERATIONS,
    min_vol: float = IV_MIN_VOL,
    max_vol: float = IV_MAX_VOL,
    strict: bool = False,
) -> ImpliedVolatilityResult:
    """Invert Black-Scholes for volatility with safeguarded Newton-Raphson.

    σ ← σ − (price(σ) − market) / vega(σ), clamped to [min_vol, max_vol]
    after every step. Each evaluated σ also tightens a bracket around the
    root; a Newton step that leaves the bracket, or a vanishing vega, is
    replaced by the bracket midpoint. ``params.volatility`` is ignored.

    Args:
        market_price: Observed option price (>= 0).
        params: Option parameters; the volatility field is replaced.
        option_type: 'call' or 'put'.
        initial_guess: Starting volatility.
        tolerance: Absolute price error that counts as converged.
        max_iterations: Iteration budget.
        min_vol: Lower clamp for the iterate.
        max_vol: Upper clamp for the iterate.
        strict: Raise instead of returning an unconverged estimate.

    Returns:
        ImpliedVolatilityResult. When not converged, ``volatility`` is the
        evaluated iterate with the smallest price error.

    Raises:
        NonConvergenceError: strict mode, iteration budget exhausted.
        NumericDegenerateError: strict mode, vega vanished with the bracket
            already collapsed.
    """
    kind = as_option_type(option_type)
    if not math.isfinite(market_price) or market_price < 0:
        raise InvalidParameterError(f"market_price must be >= 0, got {market_price}")
    if not 0 < min_vol < max_vol:
        raise InvalidParameterError("require 0 < min_vol < max_vol")
    validate_option_params(params)

    vol = min(max(initial_guess, min_vol), max_vol)
    best_vol, best_error = vol, math.inf
    # Price is increasing in σ, so the sign of each price error narrows [lo, hi]
    lo, hi = min_vol, max_vol

    for i in range(1, max_iterations + 1):
        trial = params.model_copy(update={"volatility": vol})
        price_diff = _option_price(trial, kind) - market_price

        if abs(price_diff) < abs(best_error):
            best_vol, best_error = vol, price_diff

        if abs(price_diff) < tolerance:
            return ImpliedVolatilityResult(
                volatility=vol, converged=True, iterations=i, price_error=price_diff
            )

        if price_diff > 0:
            hi = vol
        else:
            lo = vol

        vega = _raw_vega(trial)
        if vega > IV_MIN_VEGA:
            step = min(max(vol - price_diff / vega, min_vol), max_vol)
        else:
            step = math.nan

        if lo < step < hi:
            vol = step
        elif hi - lo > IV_MIN_BRACKET:
            logger.debug("Implied vol: bisecting [%.6f, %.6f] at iteration %d", lo, hi, i)
            vol = 0.5 * (lo + hi)
        elif vega <= IV_MIN_VEGA:
            logger.debug("Implied vol: vega vanished at sigma=%.6f after %d iterations", vol, i)
            if strict:
                raise NumericDegenerateError(f"vega is zero at volatility {vol:.6f}")
            return ImpliedVolatilityResult(
                volatility=best_vol, converged=False, iterations=i, price_error=best_error
            )
        else:
            vol = step

    logger.debug(
        "Implied vol: no convergence in %d iterations (best sigma=%.6f, error=%.6f)",
        max_iterations, best_vol, best_error,
    )
    if strict:
        raise NonConvergenceError("implied volatility did not converge", best_vol, max_iterations)
    return ImpliedVolatilityResult(
        volatility=best_vol, converged=False, iterations=max_iterations, price_error=best_error
    )


def strategy_greeks(strategy: OptionStrategy, params: OptionParameters) -> Greeks:
    """Net Greeks of a multi-leg strategy.

    Each leg is priced with ``params`` at its own strike; sold legs count
    negatively and every leg is scaled by its quantity. A held underlying
    adds one unit of delta per unit.
    """
    totals = {"delta": 0.0, "gamma": 0.0, "theta": 0.0, "vega": 0.0, "rho": 0.0}
    for leg in strategy.legs:
        leg_params = params.model_copy(update={"strike": leg.strike})
        greeks = black_scholes_greeks(leg_params, leg.type)
        sign = 1.0 if leg.action == LegAction.BUY else -1.0
        for name in totals:
            totals[name] += getattr(greeks, name) * sign * leg.quantity
    totals["delta"] += strategy.underlying_quantity
    return Greeks(**totals)
