"""Tests for the per-chain convergence statistics over parameter estimates."""

import math

import numpy as np
import pytest

from mocasa.errors import NumericalError
from mocasa.matrix import Matrix
from mocasa.param_meta_stats import ParamMetaStats
from mocasa.params import Params

from conftest import make_data


def shifted(params, delta):
    return type(params).from_vec(params.to_vec() + delta, params.trait_names, params.n_endos())


def with_tau(params, tau):
    vec = params.to_vec()
    vec[1] = tau
    return type(params).from_vec(vec, params.trait_names, params.n_endos())


@pytest.fixture
def meta():
    return make_data([[0.0, 0.0]], [[1.0, 1.0]]).meta


class TestParamMetaStats:
    """Pooling, chain exclusion and convergence figures."""

    def test_invalid_bootstrap_chain_excluded(self, meta, params_one_endo):
        """A chain with an invalid bootstrap estimate is left out for the rest of the round."""
        p = params_one_endo
        stats = ParamMetaStats(meta, [p, p, with_tau(p, -1.0)], [p, p, p])
        assert stats.i_chains_used == [0, 1]
        assert stats.n_chains_used() == 2

    def test_summary_values(self, meta, params_one_endo):
        """Pooled value, intra and inter chain variances, ratios and errors."""
        p = params_one_endo
        base = p.to_vec()
        stats = ParamMetaStats(meta, [p, shifted(p, 1.0)], [shifted(p, 0.2), shifted(p, 1.2)])
        summary = stats.summary()
        np.testing.assert_allclose(summary.params.to_vec(), base + 0.6)
        np.testing.assert_allclose(summary.intra_chain_vars, 0.01)
        np.testing.assert_allclose(summary.inter_chain_vars, 0.25)
        np.testing.assert_allclose(summary.inter_intra_ratios, 25.0)
        np.testing.assert_allclose(summary.relative_errors, np.sqrt(0.01 / 2) / np.abs(base + 0.6))
        assert np.all(np.isinf(summary.drifts))
        assert summary.n_chains_used == 2
        again = stats.summary(previous=summary.params)
        np.testing.assert_allclose(again.drifts, 0.0)
        assert again.drifts_mean == 0.0
        assert "beta_0_trait2" in str(again)

    def test_zero_spread(self, meta, params_one_endo):
        """No spread anywhere counts as converged, including a zero-valued parameter."""
        p = params_one_endo
        stats = ParamMetaStats(meta, [p, p], [p, p])
        summary = stats.summary(previous=p)
        assert summary.params.to_vec()[0] == 0.0
        np.testing.assert_array_equal(summary.inter_intra_ratios, 0.0)
        np.testing.assert_array_equal(summary.relative_errors, 0.0)
        np.testing.assert_array_equal(summary.drifts, 0.0)

    def test_add_skips_invalid_estimates(self, meta, params_one_endo):
        """An invalid M-step estimate is skipped for its chain only."""
        p = params_one_endo
        stats = ParamMetaStats(meta, [p, p], [p, p])
        stats.add([shifted(p, 0.3), with_tau(p, math.nan)])
        assert stats.n_skipped == 1
        assert stats.stats[0][0].n() == 3
        assert stats.stats[1][0].n() == 2

    def test_no_chains(self, meta, params_one_endo):
        """Without any valid chain no summary can be produced."""
        bad = with_tau(params_one_endo, 0.0)
        stats = ParamMetaStats(meta, [bad], [bad])
        with pytest.raises(NumericalError):
            stats.summary()

    def test_add_counts_valid_estimates(self, meta, params_one_endo):
        """add returns how many chains produced a usable estimate."""
        p = params_one_endo
        stats = ParamMetaStats(meta, [p, p, p], [p, p, p])
        assert stats.add([p, shifted(p, 0.1), p]) == 3
        assert stats.add([with_tau(p, math.nan), p, with_tau(p, -2.0)]) == 1
        assert stats.n_valid == [1, 2, 1]

    def test_chain_without_valid_estimates_left_out_of_summary(self, meta, params_one_endo):
        """A chain whose iteration estimates were all invalid does not count towards the pooled figures."""
        p = params_one_endo
        far = shifted(p, 5.0)
        stats = ParamMetaStats(meta, [p, far], [p, far])
        stats.add([p, with_tau(far, math.nan)])
        stats.add([p, with_tau(far, math.inf)])
        summary = stats.summary()
        assert summary.n_chains_used == 1
        np.testing.assert_allclose(summary.params.to_vec(), p.to_vec())
        np.testing.assert_array_equal(summary.inter_chain_vars, 0.0)

    def test_summary_fails_when_every_chain_went_bad(self, meta, params_one_endo):
        """If no chain produced a valid estimate during the iterations there is nothing to pool."""
        p = params_one_endo
        stats = ParamMetaStats(meta, [p, p], [p, p])
        stats.add([with_tau(p, 0.0), with_tau(p, 0.0)])
        with pytest.raises(NumericalError):
            stats.summary()

    def test_table_shows_full_names(self):
        """Long parameter names are printed in full, with the value columns still lined up."""
        trait_names = ["a_rather_long_trait_name", "b"]
        params = Params(trait_names, [0.5], [1.0], Matrix(1, 2, [2.0, 3.0]), [0.5, 0.5])
        meta = make_data([[0.0, 0.0]], [[1.0, 1.0]], trait_names=trait_names).meta
        stats = ParamMetaStats(meta, [params, params], [params, params])
        lines = str(stats.summary()).splitlines()
        table = lines[-len(params.names()) - 1:]
        assert [row.split()[0] for row in table[1:]] == params.names()
        assert "beta_0_a_rather_long_trait_name" in table[3]
        assert len({len(row) for row in table}) == 1
