"""Monte Carlo simulation orchestrator.

Validates inputs, splits path generation into independent chunks, and
reduces the results into statistics. Each chunk gets its own child
RandomSource and writes only its own slice of the output arrays, so chunks
can run in a process pool without shared mutable state.
"""

import logging
from concurrent.futures import ProcessPoolExecutor, as_completed
from typing import Any, Callable, Sequence, TypedDict

import numpy as np

from quantcore.errors import InvalidParameterError
from quantcore.schemas import (
    JumpConfig,
    PortfolioAsset,
    PortfolioRiskMetrics,
    SimulationParameters,
    SimulationStatistics,
)
from quantcore.analysis.random_source import RandomSource, as_random_source
from quantcore.analysis.sim_models import TRADING_DAYS_PER_YEAR, PathResult, SimModel
from quantcore.analysis.sim_models.correlated import (
    cholesky,
    simulate_correlated_paths,
    validate_assets,
    validate_correlation_matrix,
)
from quantcore.analysis.sim_models.gbm import (
    simulate_paths,
    validate_jump_config,
    validate_simulation_params,
)
from quantcore.analysis.statistics import (
    ensemble_max_drawdown,
    percentile_index,
    summarize,
    value_at_risk,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_NUM_SIMULATIONS = 10000
PORTFOLIO_VAR_LEVELS = {"var_95": 0.05, "var_99": 0.01}


class PortfolioResults(TypedDict):
    paths: np.ndarray
    final_values: np.ndarray
    initial_value: float
    asset_paths: dict[str, np.ndarray]
    statistics: SimulationStatistics
    risk_metrics: PortfolioRiskMetrics


# ---------------------------------------------------------------------------
# Chunked execution
# ---------------------------------------------------------------------------


def chunk_bounds(total: int, chunks: int) -> list[tuple[int, int]]:
    """Split ``total`` items into ``chunks`` contiguous [start, end) ranges."""
    chunks = max(1, min(chunks, total))
    base, extra = divmod(total, chunks)
    bounds = []
    start = 0
    for i in range(chunks):
        end = start + base + (1 if i < extra else 0)
        bounds.append((start, end))
        start = end
    return bounds


def _gbm_chunk_worker(
    start: int,
    params: SimulationParameters,
    jump: JumpConfig | None,
    source: RandomSource,
    n: int,
) -> tuple[int, PathResult]:
    """Picklable worker for ProcessPoolExecutor."""
    return start, simulate_paths(params, source, jump=jump, num_paths=n)


def _portfolio_chunk_worker(
    start: int,
    assets: list[PortfolioAsset],
    lower: np.ndarray,
    days: int,
    source: RandomSource,
    n: int,
) -> tuple[int, dict[str, Any]]:
    """Picklable worker for ProcessPoolExecutor."""
    return start, dict(simulate_correlated_paths(assets, lower, days, n, source))


def _run_chunks(
    worker: Callable[..., tuple[int, Any]],
    source: RandomSource,
    total: int,
    max_workers: int,
    args: tuple,
) -> list[tuple[int, int, Any]]:
    """Run ``worker`` over contiguous chunks of ``total`` paths.

    With ``max_workers == 1`` the single chunk runs inline on ``source``
    itself; otherwise every chunk gets a spawned child source.

    Returns:
        (start, end, result) per chunk, ordered by start.
    """
    if max_workers <= 1:
        _, result = worker(0, *args, source, total)
        return [(0, total, result)]

    bounds = chunk_bounds(total, max_workers)
    children = source.spawn(len(bounds))
    results: list[tuple[int, int, Any]] = []

    logger.info("Running %d path chunks with %d workers", len(bounds), max_workers)

    with ProcessPoolExecutor(max_workers=max_workers) as executor:
        futures = {
            executor.submit(worker, start, *args, child, end - start): (start, end)
            for (start, end), child in zip(bounds, children)
        }
        for future in as_completed(futures):
            start, end = futures[future]
            _, result = future.result()
            results.append((start, end, result))

    results.sort(key=lambda r: r[0])
    return results


# ---------------------------------------------------------------------------
# Single asset
# ---------------------------------------------------------------------------


def simulate_gbm(
    params: SimulationParameters,
    jump: JumpConfig | None = None,
    source: RandomSource | int | None = None,
    max_workers: int = 1,
) -> PathResult:
    """Simulate GBM (optionally jump-diffusion) price paths.

    Args:
        params: Simulation parameters.
        jump: Optional jump overlay.
        source: RandomSource, integer seed, or None for OS entropy.
        max_workers: Process pool size; 1 runs inline. Results are
            deterministic for a fixed (seed, max_workers).

    Returns:
        PathResult with ``paths`` (num_paths, days + 1) and ``final_values``.
    """
    validate_simulation_params(params)
    if jump is not None:
        validate_jump_config(jump)
    if max_workers < 1:
        raise InvalidParameterError(f"max_workers must be >= 1, got {max_workers}")

    rs = as_random_source(source)
    chunks = _run_chunks(_gbm_chunk_worker, rs, params.num_paths, max_workers, (params, jump))

    days = params.time_horizon_days
    paths = np.empty((params.num_paths, days + 1))
    for start, end, result in chunks:
        paths[start:end] = result["paths"]

    model = SimModel.JUMP_DIFFUSION if jump is not None else SimModel.GBM
    logger.info(
        "%s simulation complete: %d paths x %d days", model.value, params.num_paths, days
    )
    return PathResult(model=model.value, paths=paths, final_values=paths[:, -1].copy())


# ---------------------------------------------------------------------------
# Portfolio
# ---------------------------------------------------------------------------


def simulate_portfolio(
    assets: Sequence[PortfolioAsset],
    correlation: Sequence[Sequence[float]] | np.ndarray,
    time_horizon_days: int,
    num_paths: int = DEFAULT_NUM_SIMULATIONS,
    source: RandomSource | int | None = None,
    max_workers: int = 1,
    risk_free_rate: float = 0.0,
) -> PortfolioResults:
    """Run a correlated multi-asset Monte Carlo simulation.

    All inputs are validated, and the correlation matrix factorised, before
    any path is generated.

    Args:
        assets: Portfolio assets; weights are fractional dollar allocations
            and are not normalised.
        correlation: Correlation matrix in asset order.
        time_horizon_days: Trading days to simulate.
        num_paths: Number of simulated paths.
        source: RandomSource, integer seed, or None.
        max_workers: Process pool size; 1 runs inline.
        risk_free_rate: Annual rate for the Sharpe ratio.

    Returns:
        PortfolioResults with portfolio and per-asset paths, statistics and
        risk metrics.
    """
    validate_assets(assets)
    if time_horizon_days <= 0:
        raise InvalidParameterError(f"time_horizon_days must be > 0, got {time_horizon_days}")
    if num_paths <= 0:
        raise InvalidParameterError(f"num_paths must be > 0, got {num_paths}")
    if max_workers < 1:
        raise InvalidParameterError(f"max_workers must be >= 1, got {max_workers}")

    matrix = validate_correlation_matrix(correlation, len(assets))
    lower = cholesky(matrix)

    initial_value = float(sum(a.weight * a.current_price for a in assets))
    if initial_value <= 0:
        raise InvalidParameterError("portfolio initial value must be > 0 (all weights are zero)")

    rs = as_random_source(source)
    asset_list = list(assets)
    chunks = _run_chunks(
        _portfolio_chunk_worker, rs, num_paths, max_workers,
        (asset_list, lower, time_horizon_days),
    )

    k = len(asset_list)
    paths = np.empty((num_paths, time_horizon_days + 1))
    asset_block = np.empty((k, num_paths, time_horizon_days + 1))
    for start, end, result in chunks:
        paths[start:end] = result["paths"]
        asset_block[:, start:end] = result["asset_paths"]

    final_values = paths[:, -1].copy()
    sorted_values = np.sort(final_values)

    statistics = summarize(
        final_values,
        initial_value,
        annualization_factor=TRADING_DAYS_PER_YEAR / time_horizon_days,
        risk_free_rate=risk_free_rate,
    )

    es_idx = percentile_index(PORTFOLIO_VAR_LEVELS["var_95"], num_paths)
    risk = PortfolioRiskMetrics(
        var_95=value_at_risk(sorted_values, initial_value, PORTFOLIO_VAR_LEVELS["var_95"]),
        var_99=value_at_risk(sorted_values, initial_value, PORTFOLIO_VAR_LEVELS["var_99"]),
        expected_shortfall=initial_value - float(np.mean(sorted_values[: es_idx + 1])),
        max_drawdown=ensemble_max_drawdown(paths),
    )

    logger.info(
        "Portfolio simulation complete: %d assets, %d paths x %d days, initial value %.2f",
        k, num_paths, time_horizon_days, initial_value,
    )

    return PortfolioResults(
        paths=paths,
        final_values=final_values,
        initial_value=initial_value,
        asset_paths={a.ticker: asset_block[i] for i, a in enumerate(asset_list)},
        statistics=statistics,
        risk_metrics=risk,
    )
