"""Tests for the closed-form posterior mean of E."""

import numpy as np
import pytest

from mocasa.exact import calculate_mu
from mocasa.matrix import Matrix
from mocasa.params import Params


class TestCalculateMu:
    """Analytic posterior mean."""

    def test_single_endo_formula(self, params_one_endo):
        """K = 1 reduces to a weighted sum over traits."""
        betas_obs = np.array([1.0, 1.5])
        ses = np.array([0.2, 0.2])
        weights = 1 / (0.25 + 0.04)
        expected = (2.0 * 1.0 * weights + 3.0 * 1.5 * weights + 0.0) / (4.0 * weights + 9.0 * weights + 1.0)
        result = calculate_mu(params_one_endo, betas_obs, ses)
        assert result.shape == (1,)
        assert result[0] == pytest.approx(expected)
        assert result[0] == pytest.approx(0.4891, abs=1e-4)

    def test_prior_only_without_signal(self):
        """Huge standard errors leave the prior mean."""
        params = Params(["a"], [0.7], [1.0], Matrix(1, 1, [2.0]), [0.1])
        result = calculate_mu(params, np.array([5.0]), np.array([1e8]))
        assert result[0] == pytest.approx(0.7)

    def test_multi_endo_matches_direct_solve(self, params_two_endos):
        """K > 1 agrees with the precision system solved directly."""
        betas_obs = np.array([0.4, -0.2, 1.3])
        ses = np.array([0.1, 0.3, 0.2])
        loadings = params_two_endos.betas.elements
        w = np.diag(1 / (params_two_endos.sigmas ** 2 + ses ** 2))
        prior_precision = np.diag(1 / params_two_endos.taus ** 2)
        precision = prior_precision + loadings @ w @ loadings.T
        rhs = prior_precision @ params_two_endos.mus + loadings @ w @ betas_obs
        np.testing.assert_allclose(
            calculate_mu(params_two_endos, betas_obs, ses), np.linalg.solve(precision, rhs), rtol=1e-10,
        )

    def test_shape_mismatch(self, params_one_endo):
        """One beta and se per trait are required."""
        with pytest.raises(ValueError):
            calculate_mu(params_one_endo, np.array([1.0]), np.array([0.1]))
