"""Unit tests for single-asset path simulation."""

import math

import numpy as np
import pytest

from quantcore.analysis.random_source import RandomSource
from quantcore.analysis.sim_models import TRADING_DAYS_PER_YEAR, SimModel
from quantcore.analysis.sim_models.gbm import DT, simulate_paths
from quantcore.analysis.simulation import chunk_bounds, simulate_gbm
from quantcore.errors import InvalidParameterError
from quantcore.schemas import JumpConfig, SimulationParameters


def _params(**overrides):
    base = dict(current_price=100.0, expected_return=0.08, volatility=0.2,
                time_horizon_days=20, num_paths=100)
    base.update(overrides)
    return SimulationParameters(**base)


# ---------------------------------------------------------------------------
# GBM Tests
# ---------------------------------------------------------------------------

class TestGBM:
    def test_returns_path_result(self, gbm_params):
        result = simulate_gbm(gbm_params, source=1)
        assert result["model"] == SimModel.GBM.value
        assert result["paths"].shape == (500, 61)
        assert result["final_values"].shape == (500,)

    def test_first_column_is_initial_price(self, gbm_params):
        result = simulate_gbm(gbm_params, source=1)
        assert np.all(result["paths"][:, 0] == 100.0)

    def test_final_values_are_last_column(self, gbm_params):
        result = simulate_gbm(gbm_params, source=1)
        np.testing.assert_array_equal(result["final_values"], result["paths"][:, -1])

    def test_prices_stay_positive(self, gbm_params):
        result = simulate_gbm(gbm_params, source=3)
        assert np.all(result["paths"] > 0)

    def test_zero_volatility_example(self):
        params = _params(expected_return=0.0, volatility=0.0, time_horizon_days=10, num_paths=1)
        result = simulate_gbm(params, source=0)
        assert result["final_values"].tolist() == [100.0]

    def test_zero_volatility_is_deterministic_drift(self):
        params = _params(expected_return=0.1, volatility=0.0, time_horizon_days=30, num_paths=4)
        result = simulate_gbm(params, source=None)
        days = np.arange(31)
        expected = 100.0 * np.exp(0.1 * DT * days)
        for path in result["paths"]:
            np.testing.assert_allclose(path, expected, rtol=1e-12)

    def test_reproducibility(self, gbm_params):
        a = simulate_gbm(gbm_params, source=42)
        b = simulate_gbm(gbm_params, source=42)
        np.testing.assert_array_equal(a["paths"], b["paths"])

    def test_different_seeds_differ(self, gbm_params):
        a = simulate_gbm(gbm_params, source=1)
        b = simulate_gbm(gbm_params, source=2)
        assert not np.allclose(a["final_values"], b["final_values"])

    def test_log_return_moments(self):
        params = _params(time_horizon_days=TRADING_DAYS_PER_YEAR, num_paths=20000)
        result = simulate_gbm(params, source=7)
        log_ret = np.log(result["final_values"] / 100.0)
        assert log_ret.mean() == pytest.approx(0.08 - 0.5 * 0.2**2, abs=0.01)
        assert log_ret.std() == pytest.approx(0.2, abs=0.01)

    def test_step_uses_supplied_normals(self):
        params = _params(num_paths=2, time_horizon_days=3)
        result = simulate_paths(params, RandomSource(seed=9))
        z = RandomSource(seed=9).standard_normal((2, 3))
        drift = (0.08 - 0.5 * 0.04) * DT
        diffusion = 0.2 * math.sqrt(DT)
        expected = 100.0 * np.exp(np.cumsum(drift + diffusion * z, axis=1))
        np.testing.assert_allclose(result["paths"][:, 1:], expected, rtol=1e-12)


class TestParameterValidation:
    @pytest.mark.parametrize("overrides", [
        {"current_price": 0.0},
        {"current_price": -5.0},
        {"volatility": -0.1},
        {"time_horizon_days": 0},
        {"num_paths": 0},
        {"expected_return": float("nan")},
    ])
    def test_rejects_invalid_params(self, overrides):
        with pytest.raises(InvalidParameterError):
            simulate_gbm(_params(**overrides), source=1)

    def test_rejects_invalid_workers(self):
        with pytest.raises(InvalidParameterError):
            simulate_gbm(_params(), source=1, max_workers=0)

    @pytest.mark.parametrize("jump", [
        JumpConfig(jump_intensity=1.5),
        JumpConfig(jump_intensity=-0.1),
        JumpConfig(jump_std=-0.01),
    ])
    def test_rejects_invalid_jump_config(self, jump):
        with pytest.raises(InvalidParameterError):
            simulate_gbm(_params(), jump=jump, source=1)

    def test_invalid_error_is_value_error(self):
        with pytest.raises(ValueError):
            simulate_gbm(_params(num_paths=-1), source=1)


# ---------------------------------------------------------------------------
# Jump-diffusion Tests
# ---------------------------------------------------------------------------

class TestJumpDiffusion:
    def test_model_label(self):
        result = simulate_gbm(_params(), jump=JumpConfig(), source=1)
        assert result["model"] == SimModel.JUMP_DIFFUSION.value

    def test_zero_intensity_matches_plain_gbm(self):
        plain = simulate_gbm(_params(), source=5)
        jumpy = simulate_gbm(_params(), jump=JumpConfig(jump_intensity=0.0), source=5)
        np.testing.assert_allclose(plain["paths"], jumpy["paths"])

    def test_certain_jumps_shift_log_returns(self):
        params = _params(volatility=0.0, expected_return=0.0, time_horizon_days=5, num_paths=3)
        jump = JumpConfig(jump_intensity=1.0, jump_mean=-0.1, jump_std=0.0)
        result = simulate_gbm(params, jump=jump, source=1)
        np.testing.assert_allclose(result["final_values"], 100.0 * math.exp(-0.5), rtol=1e-12)

    def test_jumps_widen_distribution(self):
        params = _params(time_horizon_days=TRADING_DAYS_PER_YEAR, num_paths=5000)
        plain = simulate_gbm(params, source=11)
        jumpy = simulate_gbm(params, jump=JumpConfig(jump_intensity=0.1, jump_std=0.1), source=11)
        assert np.log(jumpy["final_values"]).std() > np.log(plain["final_values"]).std()


# ---------------------------------------------------------------------------
# Parallel chunking
# ---------------------------------------------------------------------------

class TestChunking:
    def test_chunk_bounds_cover_total(self):
        bounds = chunk_bounds(10, 3)
        assert bounds == [(0, 4), (4, 7), (7, 10)]

    def test_more_chunks_than_items(self):
        assert chunk_bounds(2, 5) == [(0, 1), (1, 2)]

    def test_parallel_is_deterministic(self):
        params = _params(num_paths=40)
        a = simulate_gbm(params, source=123, max_workers=2)
        b = simulate_gbm(params, source=123, max_workers=2)
        np.testing.assert_array_equal(a["paths"], b["paths"])
        assert a["paths"].shape == (40, 21)
        assert np.all(a["paths"][:, 0] == 100.0)

    def test_parallel_zero_volatility_matches_inline(self):
        params = _params(volatility=0.0, num_paths=9)
        inline = simulate_gbm(params, source=1)
        parallel = simulate_gbm(params, source=1, max_workers=3)
        np.testing.assert_allclose(inline["paths"], parallel["paths"], rtol=1e-12)
