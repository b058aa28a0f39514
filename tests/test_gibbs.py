"""Tests for the Gibbs conditionals and the sampler sweep."""

import numpy as np
import pytest

from mocasa.gibbs import GibbsSampler
from mocasa.matrix import Matrix
from mocasa.params import Params
from mocasa.sampler import Sampler, Tracer
from mocasa.vars import Vars

from conftest import make_data

N_DRAWS = 100_000


def replicated(data_row_betas, data_row_ses, n=N_DRAWS):
    betas = np.tile(np.asarray(data_row_betas, dtype=float), (n, 1))
    ses = np.tile(np.asarray(data_row_ses, dtype=float), (n, 1))
    return make_data(betas, ses)


class TestDrawE:
    """E given T, one endophenotype."""

    def test_matches_conjugate_posterior(self, rng):
        """1e5 independent draws have the analytic mean and variance."""
        params = Params(["t1", "t2"], [0.5], [1.2], Matrix(1, 2, [2.0, -1.0]), [0.5, 0.8])
        data = replicated([0.0, 0.0], [1.0, 1.0])
        vars = Vars.initial_vars(data, params)
        vars.ts.elements[:] = [1.5, -0.3]
        draws = GibbsSampler(rng).draw_e(vars, params, 0)
        precision = 1 / 1.2 ** 2 + (2.0 / 0.5) ** 2 + (1.0 / 0.8) ** 2
        variance = 1 / precision
        mean = variance * (0.5 / 1.2 ** 2 + 2.0 * 1.5 / 0.25 + (-1.0) * (-0.3) / 0.64)
        assert draws.mean() == pytest.approx(mean, abs=5 * np.sqrt(variance / N_DRAWS))
        assert draws.var() == pytest.approx(variance, rel=0.02)
        np.testing.assert_array_equal(vars.es.elements[:, 0], draws)

    def test_residual_excludes_other_endos(self, rng, params_two_endos):
        """With two endophenotypes the other one's contribution is subtracted from T."""
        params = params_two_endos
        data = replicated([0.0, 0.0, 0.0], [1.0, 1.0, 1.0])
        vars = Vars.initial_vars(data, params)
        vars.es.elements[:, 1] = 0.7
        t = np.array([0.4, 1.1, -0.2])
        vars.ts.elements[:] = t
        draws = GibbsSampler(rng).draw_e(vars, params, 0)
        beta0 = params.betas[0]
        beta1 = params.betas[1]
        sigma2 = params.sigmas ** 2
        residual = t - beta1 * 0.7
        precision = 1 / params.taus[0] ** 2 + np.sum(beta0 ** 2 / sigma2)
        variance = 1 / precision
        mean = variance * (params.mus[0] / params.taus[0] ** 2 + np.sum(beta0 * residual / sigma2))
        assert draws.mean() == pytest.approx(mean, abs=5 * np.sqrt(variance / N_DRAWS))
        assert draws.var() == pytest.approx(variance, rel=0.02)


class TestDrawT:
    """T given E and the observation."""

    def test_inverse_variance_fusion(self, rng, params_one_endo):
        """Model prediction and observation are combined by precision weighting."""
        data = replicated([1.0, 2.0], [0.2, 0.4])
        vars = Vars.initial_vars(data, params_one_endo)
        vars.es.elements[:] = 0.8
        draws = GibbsSampler(rng).draw_t(data, vars, params_one_endo, 1)
        prediction = 3.0 * 0.8
        precision = 1 / 0.25 + 1 / 0.16
        variance = 1 / precision
        mean = variance * (prediction / 0.25 + 2.0 / 0.16)
        assert draws.mean() == pytest.approx(mean, abs=5 * np.sqrt(variance / N_DRAWS))
        assert draws.var() == pytest.approx(variance, rel=0.02)


class RecordingTracer(Tracer):
    def __init__(self):
        self.calls = []

    def trace_e(self, i_endo, es, i_chain):
        self.calls.append(("E", i_endo, i_chain))

    def trace_t(self, i_trait, ts, i_chain):
        self.calls.append(("T", i_trait, i_chain))


class TestSampler:
    """Sweeps, visitation order and accumulation."""

    def test_sweep_order_and_tracer(self, rng, params_two_endos):
        """Each sweep visits all E then all T, per chain, and accumulates once."""
        data = make_data([[0.1, 0.2, 0.3]], [[0.1, 0.1, 0.1]], trait_names=["a", "b", "c"], n_endos=2)
        vars_list = [Vars.initial_vars(data, params_two_endos) for _ in range(2)]
        sampler = Sampler(data.meta, rng, n_chains=2)
        tracer = RecordingTracer()
        sampler.sample_n(data, params_two_endos, vars_list, 3, tracer)
        one_chain = [("E", 0), ("E", 1), ("T", 0), ("T", 1), ("T", 2)]
        expected = [(kind, i, i_chain) for _ in range(3) for i_chain in range(2) for kind, i in one_chain]
        assert tracer.calls == expected
        assert sampler.chain_var_stats(0).n == 3
        assert sampler.var_stats().n == 6

    def test_tracer_does_not_change_draws(self, params_one_endo):
        """Same seed with and without a tracer gives identical draws."""
        data = make_data([[1.0, 2.0]], [[0.2, 0.2]])
        results = []
        for tracer in (None, RecordingTracer()):
            sampler = Sampler(data.meta, np.random.default_rng(7))
            vars_list = [Vars.initial_vars(data, params_one_endo)]
            sampler.sample_n(data, params_one_endo, vars_list, 20, tracer)
            results.append(vars_list[0].es.elements.copy())
        np.testing.assert_array_equal(results[0], results[1])

    def test_initial_vars(self, params_two_endos):
        """E starts at the prior means and T at the implied loadings."""
        data = make_data([[0.0, 0.0, 0.0]], [[1.0, 1.0, 1.0]], trait_names=["a", "b", "c"], n_endos=2)
        vars = Vars.initial_vars(data, params_two_endos)
        np.testing.assert_allclose(vars.es[0], [0.5, -1.0])
        np.testing.assert_allclose(vars.ts[0], np.array([0.5, -1.0]) @ params_two_endos.betas.elements)
