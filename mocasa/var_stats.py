from __future__ import annotations
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np
from scipy import linalg

from mocasa.data import Meta
from mocasa.matrix import Matrix
from mocasa.params import Params
from mocasa.vars import Vars


@dataclass
class SampledClassification:
    e_mean: np.ndarray
    e_std: np.ndarray
    t_means: np.ndarray


class VarStats:
    """Running sums of sampled E and T over sweeps of one or more chains.

    Per data point it keeps sums and sums of squares of E and T. For the
    M-step it also keeps the cross moments E E^T (K x K) and E T^T (K x T),
    summed over data points. All fields are plain sums, so merging the
    accumulators of several chains is exact.
    """

    def __init__(self, meta: Meta) -> None:
        self.meta = meta
        n_data_points = meta.n_data_points()
        n_endos = meta.n_endos()
        n_traits = meta.n_traits()
        self.n = 0
        self.e_sums = Matrix.zeros(n_data_points, n_endos)
        self.e2_sums = Matrix.zeros(n_data_points, n_endos)
        self.t_sums = Matrix.zeros(n_data_points, n_traits)
        self.t2_sums = Matrix.zeros(n_data_points, n_traits)
        self.ee_sums = Matrix.zeros(n_endos, n_endos)
        self.et_sums = Matrix.zeros(n_endos, n_traits)

    def add(self, vars: Vars) -> None:
        es = vars.es.elements
        ts = vars.ts.elements
        self.n += 1
        self.e_sums.elements += es
        self.e2_sums.elements += es ** 2
        self.t_sums.elements += ts
        self.t2_sums.elements += ts ** 2
        self.ee_sums.elements += es.T @ es
        self.et_sums.elements += es.T @ ts

    @staticmethod
    def sum(stats_list: Sequence["VarStats"]) -> "VarStats":
        if not stats_list:
            raise ValueError("Need at least one VarStats to sum.")
        meta = stats_list[0].meta
        total = VarStats(meta)
        for stats in stats_list:
            if (stats.meta.n_data_points(), stats.meta.n_endos(), stats.meta.n_traits()) != (
                    meta.n_data_points(), meta.n_endos(), meta.n_traits()):
                raise ValueError("Cannot sum VarStats of different shapes.")
            total.n += stats.n
            for name in ("e_sums", "e2_sums", "t_sums", "t2_sums", "ee_sums", "et_sums"):
                getattr(total, name).elements += getattr(stats, name).elements
        return total

    def _denom(self) -> float:
        return float(self.n * self.meta.n_data_points())

    def calculate_classification(self) -> SampledClassification:
        denom = self._denom()
        e_mean = self.e_sums.elements.sum(axis=0) / denom
        e2_mean = self.e2_sums.elements.sum(axis=0) / denom
        t_means = self.t_sums.elements.sum(axis=0) / denom
        e_std = np.sqrt(np.maximum(e2_mean - e_mean ** 2, 0.0))
        return SampledClassification(e_mean=e_mean, e_std=e_std, t_means=t_means)

    def compute_new_params(self) -> Params:
        """Closed-form M-step from the accumulated moments.

        A singular E E^T system or a non-positive variance gives NaN entries,
        which mark the estimate invalid for the caller to discard.
        """
        denom = self._denom()
        mus = self.e_sums.elements.sum(axis=0) / denom
        e2_mean = self.e2_sums.elements.sum(axis=0) / denom
        tau2 = e2_mean - mus ** 2
        taus = np.where(tau2 > 0.0, np.sqrt(np.maximum(tau2, 0.0)), np.nan)
        ee_mean = self.ee_sums.elements / denom
        et_mean = self.et_sums.elements / denom
        t2_mean = self.t2_sums.elements.sum(axis=0) / denom
        try:
            betas = linalg.solve(ee_mean, et_mean, assume_a="pos")
        except (linalg.LinAlgError, ValueError):
            betas = np.full(et_mean.shape, np.nan)
        sigma2 = t2_mean - 2.0 * np.sum(betas * et_mean, axis=0) + np.sum(betas * (ee_mean @ betas), axis=0)
        sigmas = np.where(sigma2 > 0.0, np.sqrt(np.maximum(sigma2, 0.0)), np.nan)
        return Params(self.meta.trait_names, mus, taus, Matrix.from_array(betas), sigmas)

    @staticmethod
    def calculate_convergences(stats_list: Sequence["VarStats"]) -> List[float]:
        """Inter-chain over intra-chain variance of posterior means, per endophenotype then per trait."""

        def ratios(sums_name: str, sums2_name: str) -> List[float]:
            means = np.stack([getattr(s, sums_name).elements / s.n for s in stats_list])
            mean2s = np.stack([getattr(s, sums2_name).elements / s.n for s in stats_list])
            intra = np.mean(mean2s - means ** 2, axis=0)
            inter = np.var(means, axis=0)
            ratio = np.divide(inter, intra, out=np.zeros_like(inter), where=intra > 0.0)
            return [float(x) for x in ratio.mean(axis=0)]

        return ratios("e_sums", "e2_sums") + ratios("t_sums", "t2_sums")
