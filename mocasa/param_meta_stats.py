from __future__ import annotations
import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from mocasa.data import Meta
from mocasa.errors import NumericalError
from mocasa.params import Params
from mocasa.stats import MAX_SNAPSHOTS_DEFAULT, WootzStats

logger = logging.getLogger(__name__)


@dataclass
class Summary:
    """Pooled estimate and convergence figures over the chains of one round."""

    meta: Meta
    n_chains_used: int
    params: Params
    intra_chain_vars: np.ndarray
    inter_chain_vars: np.ndarray
    inter_intra_ratios: np.ndarray
    relative_errors: np.ndarray
    drifts: np.ndarray
    autocities: np.ndarray
    burnednesses: np.ndarray
    inter_intra_ratios_mean: float
    relative_errors_mean: float
    drifts_mean: float
    autocities_mean: float
    burnednesses_mean: float

    def __str__(self) -> str:
        names = self.params.names()
        name_width = max([12] + [len(name) for name in names])
        lines = [
            f"Chains used: {self.n_chains_used}",
            f"Relative errors mean: {self.relative_errors_mean}",
            f"Drifts mean: {self.drifts_mean}",
            f"Inter/intra ratios mean: {self.inter_intra_ratios_mean}",
            f"Mean autocity: {self.autocities_mean}",
            f"Mean burnedness: {self.burnednesses_mean}",
            " ".join([f"{'param':<{name_width}}"] + [_str12(head) for head in (
                "value", "rel.err.", "drift", "inter_chains", "intra_chains", "ratio",
                "autocity", "burnedness",
            )]),
        ]
        values = self.params.to_vec()
        for i, name in enumerate(names):
            lines.append(" ".join([f"{name:<{name_width}}"] + [_str12(item) for item in (
                values[i], self.relative_errors[i], self.drifts[i],
                math.sqrt(self.inter_chain_vars[i]), math.sqrt(self.intra_chain_vars[i]),
                self.inter_intra_ratios[i], self.autocities[i], self.burnednesses[i],
            )]))
        return "\n".join(lines)


def _str12(item) -> str:
    return f"{item:<12}"[:12]


def _ratio(numerator: np.ndarray, denominator: np.ndarray) -> np.ndarray:
    # 0/0 means no spread at all, which counts as converged
    out = np.zeros_like(numerator)
    np.divide(numerator, denominator, out=out, where=denominator > 0.0)
    out[(denominator <= 0.0) & (numerator > 0.0)] = np.inf
    return out


def relative_drifts(values: np.ndarray, previous: np.ndarray) -> np.ndarray:
    """How far each value moved from the previous one, relative to its size."""
    return _ratio(np.abs(values - previous), np.abs(values))


class ParamMetaStats:
    """Per chain and per parameter WootzStats over successive M-step estimates."""

    def __init__(self, meta: Meta, params0: Sequence[Params], params1: Sequence[Params],
                 max_snapshots: int = MAX_SNAPSHOTS_DEFAULT) -> None:
        if len(params0) != len(params1):
            raise ValueError("Need the same number of chains for both bootstrap estimates.")
        self.meta = meta
        self.i_chains_used = [
            i_chain for i_chain, (p0, p1) in enumerate(zip(params0, params1)) if p0.is_valid() and p1.is_valid()
        ]
        self.n_skipped = 0
        self.n_adds = 0
        self.n_valid = [0] * len(self.i_chains_used)
        self.stats: List[List[WootzStats]] = []
        for i_chain in self.i_chains_used:
            values0 = params0[i_chain].to_vec()
            values1 = params1[i_chain].to_vec()
            self.stats.append([WootzStats(x0, x1, max_snapshots) for x0, x1 in zip(values0, values1)])

    def n_chains_used(self) -> int:
        return len(self.i_chains_used)

    def add(self, params_list: Sequence[Params]) -> int:
        """Add one estimate per chain, skipping invalid ones. Returns the number of valid estimates."""
        self.n_adds += 1
        n_valid = 0
        for i_used, (stats, i_chain) in enumerate(zip(self.stats, self.i_chains_used)):
            params = params_list[i_chain]
            reason = params.invalid_reason()
            if reason is not None:
                logger.debug("Skipping estimate of chain %d: %s", i_chain, reason)
                self.n_skipped += 1
                continue
            for wootz, value in zip(stats, params.to_vec()):
                wootz.add(float(value))
            self.n_valid[i_used] += 1
            n_valid += 1
        return n_valid

    def _stats_for_summary(self) -> List[List[WootzStats]]:
        if self.n_adds == 0:
            return self.stats
        # once iterations have run, chains that never produced a valid estimate are left out
        return [stats for stats, n_valid in zip(self.stats, self.n_valid) if n_valid > 0]

    def summary(self, previous: Optional[Params] = None) -> Summary:
        chain_stats = self._stats_for_summary()
        n_chains = len(chain_stats)
        if n_chains == 0:
            raise NumericalError("Not enough data: no chain has valid estimates.")
        means = np.array([[w.mean() for w in stats] for stats in chain_stats])
        variances = np.array([[w.variance() for w in stats] for stats in chain_stats])
        autocities = np.array([[
            np.nan if w.autocity() is None else w.autocity() for w in stats
        ] for stats in chain_stats])
        burnednesses = np.array([[w.burnedness for w in stats] for stats in chain_stats], dtype=float)
        values = means.mean(axis=0)
        intra = variances.mean(axis=0)
        inter = means.var(axis=0)
        ratios = _ratio(inter, intra)
        relative_errors = _ratio(np.sqrt(intra / n_chains), np.abs(values))
        if previous is None:
            drifts = np.full_like(values, np.inf)
        else:
            drifts = relative_drifts(values, previous.to_vec())
        autocity_means = np.array([
            float(np.mean(column[np.isfinite(column)])) if np.any(np.isfinite(column)) else math.nan
            for column in autocities.T
        ])
        burnedness_means = burnednesses.mean(axis=0)
        params = Params.from_vec(values, self.meta.trait_names, self.meta.n_endos())
        finite_autocities = autocity_means[np.isfinite(autocity_means)]
        return Summary(
            meta=self.meta,
            n_chains_used=n_chains,
            params=params,
            intra_chain_vars=intra,
            inter_chain_vars=inter,
            inter_intra_ratios=ratios,
            relative_errors=relative_errors,
            drifts=drifts,
            autocities=autocity_means,
            burnednesses=burnedness_means,
            inter_intra_ratios_mean=float(ratios.mean()),
            relative_errors_mean=float(relative_errors.mean()),
            drifts_mean=float(drifts.mean()),
            autocities_mean=float(finite_autocities.mean()) if finite_autocities.size else math.nan,
            burnednesses_mean=float(burnedness_means.mean()),
        )
