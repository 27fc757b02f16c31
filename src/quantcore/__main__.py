import json
import logging
import math
import sys

import click
from pydantic import ValidationError

from quantcore.config import Settings
from quantcore.errors import InvalidParameterError, QuantCoreError
from quantcore.logging_config import setup_logging

logger = logging.getLogger(__name__)


def _json_safe(value):
    """Replace non-finite floats (an all-winning profit factor, say) with None."""
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_json_safe(v) for v in value]
    return value


def _emit(payload: dict) -> None:
    click.echo(json.dumps(_json_safe(payload), indent=2, allow_nan=False))


def _load_json(path: str) -> dict:
    with open(path, encoding="utf-8") as f:
        try:
            return json.load(f)
        except json.JSONDecodeError as e:
            raise InvalidParameterError(f"{path} is not valid JSON: {e}") from e


def _build(model, data: dict):
    """Construct a schema model, reporting bad input as InvalidParameterError."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InvalidParameterError(f"invalid {model.__name__}: {e}") from e


def option_inputs(func):
    """Shared Black-Scholes inputs for the option commands."""
    options = [
        click.option("--spot", "-s", type=float, required=True, help="Underlying price"),
        click.option("--strike", "-k", type=float, required=True, help="Strike price"),
        click.option("--expiry", "-t", type=float, required=True, help="Time to expiry in years"),
        click.option("--rate", "-r", type=float, default=None,
                     help="Risk-free rate (default: QC_RISK_FREE_RATE)"),
        click.option("--dividend", "-q", type=float, default=0.0, help="Continuous dividend yield"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


class QuantCoreGroup(click.Group):
    """Report library errors as a clean CLI failure."""

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except QuantCoreError as e:
            logger.debug("Command failed", exc_info=True)
            click.echo(f"Error: {e}", err=True)
            sys.exit(2)


@click.group(cls=QuantCoreGroup)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx, verbose: bool):
    """quantcore - Monte Carlo simulation, option pricing and risk analytics"""
    settings = Settings()
    setup_logging(settings.log_dir, settings.log_file)
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    ctx.obj = settings


@cli.command()
@click.option("--price", "-p", type=float, required=True, help="Current price")
@click.option("--drift", "-m", type=float, required=True, help="Annualised expected return")
@click.option("--volatility", "-s", type=float, required=True, help="Annualised volatility")
@click.option("--days", "-d", type=int, default=252, help="Trading days to simulate")
@click.option("--paths", "-n", type=int, default=None, help="Number of paths (default: QC_NUM_PATHS)")
@click.option("--seed", type=int, default=None, help="Random seed (default: QC_SEED)")
@click.option("--workers", "-w", type=int, default=None, help="Process pool size (default: QC_MAX_WORKERS)")
@click.option("--jumps", is_flag=True, help="Enable the jump-diffusion overlay")
@click.pass_obj
def simulate(settings: Settings, price: float, drift: float, volatility: float, days: int,
             paths: int | None, seed: int | None, workers: int | None, jumps: bool):
    """Simulate single-asset GBM paths and summarise the terminal values."""
    from quantcore.analysis.simulation import simulate_gbm
    from quantcore.analysis.statistics import risk_metrics, summarize
    from quantcore.schemas import JumpConfig, SimulationParameters

    params = SimulationParameters(
        current_price=price,
        expected_return=drift,
        volatility=volatility,
        time_horizon_days=days,
        num_paths=paths if paths is not None else settings.num_paths,
    )
    jump = None
    if jumps:
        jump = JumpConfig(
            jump_intensity=settings.jump_intensity,
            jump_mean=settings.jump_mean,
            jump_std=settings.jump_std,
        )

    result = simulate_gbm(
        params,
        jump=jump,
        source=seed if seed is not None else settings.seed,
        max_workers=workers if workers is not None else settings.max_workers,
    )

    factor = 252 / days
    stats = summarize(result["final_values"], price, annualization_factor=factor,
                      risk_free_rate=settings.risk_free_rate)
    risk = risk_metrics(result["final_values"], price, confidence=settings.var_confidence,
                        risk_free_rate=settings.risk_free_rate, annualization_factor=factor,
                        paths=result["paths"])

    _emit({
        "model": result["model"],
        "num_paths": params.num_paths,
        "time_horizon_days": days,
        "statistics": stats.model_dump(mode="json"),
        "risk_metrics": risk.model_dump(mode="json"),
    })


@cli.command()
@click.argument("config_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--days", "-d", type=int, default=None, help="Override time_horizon_days")
@click.option("--paths", "-n", type=int, default=None, help="Override num_paths")
@click.option("--seed", type=int, default=None, help="Random seed (default: QC_SEED)")
@click.option("--workers", "-w", type=int, default=None, help="Process pool size (default: QC_MAX_WORKERS)")
@click.pass_obj
def portfolio(settings: Settings, config_file: str, days: int | None, paths: int | None,
              seed: int | None, workers: int | None):
    """Simulate a correlated portfolio described by CONFIG_FILE (JSON).

    The file holds ``assets`` (ticker, weight, current_price, expected_return,
    volatility), a ``correlation`` matrix and optionally ``time_horizon_days``
    and ``num_paths``.
    """
    from quantcore.analysis.simulation import simulate_portfolio
    from quantcore.schemas import PortfolioAsset

    config = _load_json(config_file)
    assets = [_build(PortfolioAsset, a) for a in config.get("assets", [])]
    horizon = days if days is not None else int(config.get("time_horizon_days", 252))
    num_paths = paths if paths is not None else int(config.get("num_paths", settings.num_paths))

    result = simulate_portfolio(
        assets,
        config.get("correlation", []),
        horizon,
        num_paths=num_paths,
        source=seed if seed is not None else settings.seed,
        max_workers=workers if workers is not None else settings.max_workers,
        risk_free_rate=settings.risk_free_rate,
    )

    _emit({
        "tickers": [a.ticker for a in assets],
        "initial_value": result["initial_value"],
        "num_paths": num_paths,
        "time_horizon_days": horizon,
        "statistics": result["statistics"].model_dump(mode="json"),
        "risk_metrics": result["risk_metrics"].model_dump(mode="json"),
    })


@cli.command()
@option_inputs
@click.option("--volatility", "-v", "volatility", type=float, required=True, help="Annualised volatility")
@click.pass_obj
def price(settings: Settings, spot: float, strike: float, expiry: float, rate: float | None,
          dividend: float, volatility: float):
    """Black-Scholes call and put prices."""
    from quantcore.analysis.options import black_scholes_price
    from quantcore.schemas import OptionParameters

    params = OptionParameters(
        spot=spot, strike=strike, time_to_expiry=expiry,
        risk_free_rate=rate if rate is not None else settings.risk_free_rate,
        volatility=volatility, dividend_yield=dividend,
    )
    _emit(black_scholes_price(params).model_dump(mode="json"))


@cli.command()
@option_inputs
@click.option("--volatility", "-v", "volatility", type=float, required=True, help="Annualised volatility")
@click.option("--type", "option_type", type=click.Choice(["call", "put"]), default="call")
@click.pass_obj
def greeks(settings: Settings, spot: float, strike: float, expiry: float, rate: float | None,
           dividend: float, volatility: float, option_type: str):
    """Black-Scholes Greeks (theta per day, vega and rho per 1%)."""
    from quantcore.analysis.options import black_scholes_greeks
    from quantcore.schemas import OptionParameters

    params = OptionParameters(
        spot=spot, strike=strike, time_to_expiry=expiry,
        risk_free_rate=rate if rate is not None else settings.risk_free_rate,
        volatility=volatility, dividend_yield=dividend,
    )
    _emit({"type": option_type, **black_scholes_greeks(params, option_type).model_dump(mode="json")})


@cli.command()
@option_inputs
@click.option("--market-price", "-p", type=float, required=True, help="Observed option price")
@click.option("--type", "option_type", type=click.Choice(["call", "put"]), default="call")
@click.option("--strict", is_flag=True, help="Fail instead of returning an unconverged estimate")
@click.pass_obj
def iv(settings: Settings, spot: float, strike: float, expiry: float, rate: float | None,
       dividend: float, market_price: float, option_type: str, strict: bool):
    """Implied volatility by Newton-Raphson."""
    from quantcore.analysis.options import implied_volatility
    from quantcore.schemas import OptionParameters

    params = OptionParameters(
        spot=spot, strike=strike, time_to_expiry=expiry,
        risk_free_rate=rate if rate is not None else settings.risk_free_rate,
        volatility=settings.iv_initial_guess, dividend_yield=dividend,
    )
    result = implied_volatility(
        market_price,
        params,
        option_type,
        initial_guess=settings.iv_initial_guess,
        tolerance=settings.iv_tolerance,
        max_iterations=settings.iv_max_iterations,
        min_vol=settings.iv_min_vol,
        max_vol=settings.iv_max_vol,
        strict=strict,
    )
    _emit(result.model_dump(mode="json"))


@cli.command()
@click.argument("strategy_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--spot", "-s", type=float, required=True, help="Center of the spot grid")
@click.option("--width", type=float, default=0.5, help="Grid half-width as a fraction of spot")
@click.option("--points", type=int, default=101, help="Number of grid points")
def payoff(strategy_file: str, spot: float, width: float, points: int):
    """Expiry payoff of the option strategy in STRATEGY_FILE (JSON)."""
    from quantcore.analysis.payoff import payoff_summary, spot_grid, strategy_payoff
    from quantcore.schemas import OptionStrategy

    strategy = _build(OptionStrategy, _load_json(strategy_file))
    curve = strategy_payoff(strategy, spot_grid(spot, width, points))

    _emit({
        "strategy": strategy.name,
        "summary": payoff_summary(curve).model_dump(mode="json"),
        "points": [p.model_dump(mode="json") for p in curve],
    })


@cli.command()
@click.argument("prices_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--strategy", "kind", type=click.Choice(["ma_crossover", "rsi_mean_reversion", "bollinger_bands"]),
              default="ma_crossover", help="Built-in strategy")
@click.option("--param", "params", multiple=True, help="Strategy parameter as name=value")
@click.option("--capital", type=float, default=100000.0, help="Initial capital")
@click.option("--commission", type=float, default=0.0, help="Flat fee per trade")
@click.option("--slippage", type=float, default=0.0, help="Fractional slippage per fill")
@click.pass_obj
def backtest(settings: Settings, prices_file: str, kind: str, params: tuple[str, ...],
             capital: float, commission: float, slippage: float):
    """Backtest a built-in strategy on PRICES_FILE (CSV with a close column)."""
    import pandas as pd

    from quantcore.analysis.backtest import parse_strategy, run_backtest

    definition: dict = {"kind": kind}
    for item in params:
        name, sep, value = item.partition("=")
        if not sep:
            raise click.BadParameter(f"expected name=value, got {item!r}", param_hint="--param")
        definition[name.strip()] = value.strip()

    prices = pd.read_csv(prices_file)
    result = run_backtest(
        prices,
        parse_strategy(definition),
        initial_capital=capital,
        commission=commission,
        slippage=slippage,
        risk_free_rate=settings.risk_free_rate,
    )

    _emit({
        "strategy": result.strategy,
        "final_cash": result.final_cash,
        "final_position": result.final_position,
        "performance": result.performance.model_dump(mode="json"),
        "trades": [t.model_dump(mode="json") for t in result.trades],
    })


if __name__ == "__main__":
    cli()
