"""Geometric Brownian Motion path simulation with optional jump overlay.

Per trading day (dt = 1/252):
  log_ret = (mu - sigma^2/2)·dt + sigma·sqrt(dt)·Z  [+ J with prob λ]
  J ~ N(jump_mean, jump_std^2)
"""

import logging
import math

import numpy as np

from quantcore.errors import InvalidParameterError
from quantcore.schemas import JumpConfig, SimulationParameters

from . import TRADING_DAYS_PER_YEAR, PathResult, SimModel
from ..random_source import RandomSource

logger = logging.getLogger(__name__)

DT = 1.0 / TRADING_DAYS_PER_YEAR


def validate_simulation_params(params: SimulationParameters) -> None:
    """Reject parameters that make the simulation meaningless."""
    if not math.isfinite(params.current_price) or params.current_price <= 0:
        raise InvalidParameterError(f"current_price must be > 0, got {params.current_price}")
    if not math.isfinite(params.expected_return):
        raise InvalidParameterError("expected_return must be finite")
    if not math.isfinite(params.volatility) or params.volatility < 0:
        raise InvalidParameterError(f"volatility must be >= 0, got {params.volatility}")
    if params.time_horizon_days <= 0:
        raise InvalidParameterError(
            f"time_horizon_days must be > 0, got {params.time_horizon_days}"
        )
    if params.num_paths <= 0:
        raise InvalidParameterError(f"num_paths must be > 0, got {params.num_paths}")


def validate_jump_config(jump: JumpConfig) -> None:
    if not 0.0 <= jump.jump_intensity <= 1.0:
        raise InvalidParameterError(
            f"jump_intensity must be a daily probability in [0, 1], got {jump.jump_intensity}"
        )
    if not math.isfinite(jump.jump_mean):
        raise InvalidParameterError("jump_mean must be finite")
    if not math.isfinite(jump.jump_std) or jump.jump_std < 0:
        raise InvalidParameterError(f"jump_std must be >= 0, got {jump.jump_std}")


def daily_drift_and_diffusion(expected_return: float, volatility: float) -> tuple[float, float]:
    """Ito-corrected daily log drift and per-step diffusion scale."""
    drift = (expected_return - 0.5 * volatility**2) * DT
    diffusion = volatility * math.sqrt(DT)
    return drift, diffusion


def simulate_paths(
    params: SimulationParameters,
    source: RandomSource,
    jump: JumpConfig | None = None,
    num_paths: int | None = None,
) -> PathResult:
    """Simulate GBM price paths for a single asset.

    Args:
        params: Validated simulation parameters.
        source: Random source supplying the standard normals.
        jump: Optional jump-diffusion overlay.
        num_paths: Override of ``params.num_paths``, used when the caller
            splits the work into chunks.

    Returns:
        PathResult with the (num_paths, days + 1) path matrix and the
        terminal values.
    """
    validate_simulation_params(params)
    if jump is not None:
        validate_jump_config(jump)

    n = params.num_paths if num_paths is None else num_paths
    days = params.time_horizon_days
    drift, diffusion = daily_drift_and_diffusion(params.expected_return, params.volatility)

    z = source.standard_normal((n, days))
    daily_log_ret = drift + diffusion * z

    if jump is not None and jump.jump_intensity > 0:
        occurs = source.uniform((n, days)) < jump.jump_intensity
        sizes = jump.jump_mean + jump.jump_std * source.standard_normal((n, days))
        daily_log_ret = daily_log_ret + np.where(occurs, sizes, 0.0)
        logger.debug("Jump overlay: %d jumps across %d paths", int(occurs.sum()), n)

    cumulative = np.cumsum(daily_log_ret, axis=1)
    paths = np.empty((n, days + 1))
    paths[:, 0] = params.current_price
    paths[:, 1:] = params.current_price * np.exp(cumulative)

    model = SimModel.JUMP_DIFFUSION if jump is not None else SimModel.GBM
    return PathResult(
        model=model.value,
        paths=paths,
        final_values=paths[:, -1].copy(),
    )
