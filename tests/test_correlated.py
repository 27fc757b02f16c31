"""Tests for Cholesky factorisation and correlated portfolio simulation."""

import numpy as np
import pytest

from quantcore.analysis.random_source import RandomSource
from quantcore.analysis.sim_models.correlated import (
    cholesky,
    simulate_correlated_paths,
    validate_correlation_matrix,
)
from quantcore.analysis.simulation import simulate_gbm, simulate_portfolio
from quantcore.errors import InvalidCorrelationMatrixError, InvalidParameterError
from quantcore.schemas import PortfolioAsset, PortfolioRiskMetrics, SimulationParameters, SimulationStatistics


def _asset(ticker, weight=0.5, price=100.0, mu=0.05, sigma=0.2):
    return PortfolioAsset(ticker=ticker, weight=weight, current_price=price,
                          expected_return=mu, volatility=sigma)


class TestCholesky:
    def test_two_by_two_reconstructs(self):
        matrix = np.array([[1.0, 0.5], [0.5, 1.0]])
        lower = cholesky(matrix)
        np.testing.assert_allclose(lower @ lower.T, matrix, atol=1e-9)

    def test_two_by_two_values(self):
        lower = cholesky([[1.0, 0.5], [0.5, 1.0]])
        assert lower[0, 0] == pytest.approx(1.0)
        assert lower[1, 0] == pytest.approx(0.5)
        assert lower[1, 1] == pytest.approx(np.sqrt(0.75))
        assert lower[0, 1] == 0.0

    def test_three_by_three_matches_numpy(self):
        matrix = np.array([[1.0, 0.3, 0.2], [0.3, 1.0, 0.4], [0.2, 0.4, 1.0]])
        np.testing.assert_allclose(cholesky(matrix), np.linalg.cholesky(matrix), atol=1e-12)

    def test_identity(self):
        np.testing.assert_array_equal(cholesky(np.eye(3)), np.eye(3))

    def test_singular_matrix_rejected(self):
        with pytest.raises(InvalidCorrelationMatrixError):
            cholesky([[1.0, 1.0], [1.0, 1.0]])

    def test_indefinite_matrix_rejected(self):
        matrix = [[1.0, 0.9, -0.9], [0.9, 1.0, 0.9], [-0.9, 0.9, 1.0]]
        with pytest.raises(InvalidCorrelationMatrixError):
            cholesky(matrix)


class TestCorrelationValidation:
    def test_accepts_valid(self):
        matrix = validate_correlation_matrix([[1.0, 0.2], [0.2, 1.0]], 2)
        assert matrix.shape == (2, 2)

    @pytest.mark.parametrize("matrix, n", [
        ([[1.0, 0.2], [0.2, 1.0]], 3),
        ([[1.0, 0.2, 0.1], [0.2, 1.0, 0.3]], 2),
        ([[1.0, 0.2], [0.3, 1.0]], 2),
        ([[0.9, 0.2], [0.2, 1.0]], 2),
        ([[1.0, 1.5], [1.5, 1.0]], 2),
        ([[1.0, float("nan")], [float("nan"), 1.0]], 2),
    ])
    def test_rejects_invalid(self, matrix, n):
        with pytest.raises(InvalidCorrelationMatrixError):
            validate_correlation_matrix(matrix, n)

    def test_correlation_error_is_parameter_error(self):
        with pytest.raises(InvalidParameterError):
            validate_correlation_matrix([[1.0]], 2)


class TestCorrelatedPaths:
    def test_shapes(self, two_assets):
        lower = cholesky([[1.0, 0.3], [0.3, 1.0]])
        result = simulate_correlated_paths(two_assets, lower, 10, 50, RandomSource(seed=1))
        assert result["paths"].shape == (50, 11)
        assert result["asset_paths"].shape == (2, 50, 11)

    def test_portfolio_is_weighted_sum(self, two_assets):
        lower = cholesky([[1.0, 0.3], [0.3, 1.0]])
        result = simulate_correlated_paths(two_assets, lower, 10, 50, RandomSource(seed=1))
        expected = 0.6 * result["asset_paths"][0] + 0.4 * result["asset_paths"][1]
        np.testing.assert_allclose(result["paths"], expected, rtol=1e-12)

    def test_single_asset_matches_gbm(self):
        asset = _asset("ONE", weight=1.0, mu=0.07, sigma=0.25)
        lower = cholesky([[1.0]])
        corr = simulate_correlated_paths([asset], lower, 15, 20, RandomSource(seed=4))
        params = SimulationParameters(current_price=100.0, expected_return=0.07, volatility=0.25,
                                      time_horizon_days=15, num_paths=20)
        gbm = simulate_gbm(params, source=4)
        np.testing.assert_allclose(corr["paths"], gbm["paths"], rtol=1e-12)

    def test_identity_correlation_gives_independent_assets(self):
        assets = [_asset("A"), _asset("B")]
        result = simulate_correlated_paths(assets, np.eye(2), 1, 20000, RandomSource(seed=8))
        r_a = np.log(result["asset_paths"][0][:, 1] / 100.0)
        r_b = np.log(result["asset_paths"][1][:, 1] / 100.0)
        assert abs(np.corrcoef(r_a, r_b)[0, 1]) < 0.03

    def test_correlation_is_reproduced(self):
        assets = [_asset("A"), _asset("B")]
        lower = cholesky([[1.0, 0.8], [0.8, 1.0]])
        result = simulate_correlated_paths(assets, lower, 1, 20000, RandomSource(seed=8))
        r_a = np.log(result["asset_paths"][0][:, 1] / 100.0)
        r_b = np.log(result["asset_paths"][1][:, 1] / 100.0)
        assert np.corrcoef(r_a, r_b)[0, 1] == pytest.approx(0.8, abs=0.02)


class TestSimulatePortfolio:
    def test_result_structure(self, two_assets):
        result = simulate_portfolio(two_assets, [[1.0, 0.3], [0.3, 1.0]], 20, num_paths=200, source=1)
        assert result["initial_value"] == pytest.approx(0.6 * 50 + 0.4 * 200)
        assert result["paths"].shape == (200, 21)
        assert set(result["asset_paths"]) == {"AAA", "BBB"}
        assert result["asset_paths"]["BBB"].shape == (200, 21)
        assert isinstance(result["statistics"], SimulationStatistics)
        assert isinstance(result["risk_metrics"], PortfolioRiskMetrics)

    def test_paths_start_at_initial_value(self, two_assets):
        result = simulate_portfolio(two_assets, np.eye(2), 5, num_paths=10, source=1)
        np.testing.assert_allclose(result["paths"][:, 0], result["initial_value"])

    def test_risk_metric_ordering(self, two_assets):
        result = simulate_portfolio(two_assets, [[1.0, 0.3], [0.3, 1.0]], 60, num_paths=2000, source=3)
        risk = result["risk_metrics"]
        assert risk.var_99 >= risk.var_95
        assert risk.expected_shortfall >= risk.var_95
        assert 0.0 <= risk.max_drawdown < 1.0

    def test_statistics_percentile_bounds(self, two_assets):
        stats = simulate_portfolio(two_assets, np.eye(2), 30, num_paths=1000, source=2)["statistics"]
        assert stats.percentile_5 <= stats.average_ending_value <= stats.percentile_95
        assert 0.0 <= stats.probability_of_gain <= 1.0

    def test_reproducible(self, two_assets):
        a = simulate_portfolio(two_assets, np.eye(2), 10, num_paths=50, source=9)
        b = simulate_portfolio(two_assets, np.eye(2), 10, num_paths=50, source=9)
        np.testing.assert_array_equal(a["paths"], b["paths"])

    def test_parallel_reproducible(self, two_assets):
        a = simulate_portfolio(two_assets, np.eye(2), 10, num_paths=30, source=9, max_workers=2)
        b = simulate_portfolio(two_assets, np.eye(2), 10, num_paths=30, source=9, max_workers=2)
        np.testing.assert_array_equal(a["paths"], b["paths"])
        np.testing.assert_array_equal(a["asset_paths"]["AAA"], b["asset_paths"]["AAA"])

    def test_empty_assets_rejected(self):
        with pytest.raises(InvalidParameterError):
            simulate_portfolio([], [], 10, num_paths=10, source=1)

    def test_duplicate_tickers_rejected(self):
        assets = [_asset("A"), _asset("A")]
        with pytest.raises(InvalidParameterError):
            simulate_portfolio(assets, np.eye(2), 10, num_paths=10, source=1)

    @pytest.mark.parametrize("kwargs", [
        {"weight": 1.5},
        {"weight": -0.1},
        {"price": 0.0},
        {"sigma": -0.2},
    ])
    def test_invalid_asset_rejected(self, kwargs):
        assets = [_asset("A"), _asset("B", **kwargs)]
        with pytest.raises(InvalidParameterError):
            simulate_portfolio(assets, np.eye(2), 10, num_paths=10, source=1)

    def test_all_zero_weights_rejected(self):
        assets = [_asset("A", weight=0.0), _asset("B", weight=0.0)]
        with pytest.raises(InvalidParameterError):
            simulate_portfolio(assets, np.eye(2), 10, num_paths=10, source=1)

    def test_bad_matrix_rejected_before_simulation(self, two_assets):
        with pytest.raises(InvalidCorrelationMatrixError):
            simulate_portfolio(two_assets, [[1.0, 1.0], [1.0, 1.0]], 10, num_paths=10, source=1)

    def test_wrong_dimension_rejected(self, two_assets):
        with pytest.raises(InvalidCorrelationMatrixError):
            simulate_portfolio(two_assets, np.eye(3), 10, num_paths=10, source=1)

    @pytest.mark.parametrize("days, paths", [(0, 10), (10, 0)])
    def test_invalid_sizes_rejected(self, two_assets, days, paths):
        with pytest.raises(InvalidParameterError):
            simulate_portfolio(two_assets, np.eye(2), days, num_paths=paths, source=1)
