from __future__ import annotations
from typing import List, Optional

import numpy as np

from mocasa.data import GwasData, Meta
from mocasa.gibbs import GibbsSampler
from mocasa.params import Params
from mocasa.var_stats import VarStats
from mocasa.vars import Vars


class Tracer:
    """Receives every draw; the default does nothing."""

    def trace_e(self, i_endo: int, es: np.ndarray, i_chain: int) -> None:
        pass

    def trace_t(self, i_trait: int, ts: np.ndarray, i_chain: int) -> None:
        pass

    def close(self) -> None:
        pass


class NoOpTracer(Tracer):
    pass


class Sampler:
    def __init__(self, meta: Meta, rng: np.random.Generator, n_chains: int = 1) -> None:
        self.meta = meta
        self.gibbs = GibbsSampler(rng)
        self.n_chains = n_chains
        self._var_stats = [VarStats(meta) for _ in range(n_chains)]

    def sample_n(self, data: GwasData, params: Params, vars_list: List[Vars], n_steps: int,
                 tracer: Optional[Tracer] = None) -> None:
        for _ in range(n_steps):
            self.sample_one(data, params, vars_list, tracer)

    def sample_one(self, data: GwasData, params: Params, vars_list: List[Vars],
                   tracer: Optional[Tracer] = None) -> None:
        """One sweep per chain: every E column, then every T column, then the accumulator update."""
        if len(vars_list) != self.n_chains:
            raise ValueError(f"Expected {self.n_chains} chains, got {len(vars_list)}.")
        tracer = tracer or NoOpTracer()
        for i_chain, vars in enumerate(vars_list):
            for i_endo in range(params.n_endos()):
                es = self.gibbs.draw_e(vars, params, i_endo)
                tracer.trace_e(i_endo, es, i_chain)
            for i_trait in range(params.n_traits()):
                ts = self.gibbs.draw_t(data, vars, params, i_trait)
                tracer.trace_t(i_trait, ts, i_chain)
            self._var_stats[i_chain].add(vars)

    def var_stats(self) -> VarStats:
        if self.n_chains == 1:
            return self._var_stats[0]
        return VarStats.sum(self._var_stats)

    def chain_var_stats(self, i_chain: int) -> VarStats:
        return self._var_stats[i_chain]

    def reset_var_stats(self) -> None:
        self._var_stats = [VarStats(self.meta) for _ in range(self.n_chains)]
