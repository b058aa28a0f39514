from __future__ import annotations
from dataclasses import dataclass

import numpy as np

from mocasa.data import GwasData, Meta
from mocasa.matrix import Matrix
from mocasa.params import Params


@dataclass
class Vars:
    """Latent state of one chain: endophenotypes E (n x K) and true trait effects T (n x T)."""

    meta: Meta
    es: Matrix
    ts: Matrix

    @staticmethod
    def initial_vars(data: GwasData, params: Params) -> "Vars":
        n_data_points = data.n_data_points()
        es = np.tile(params.mus[None, :], (n_data_points, 1))
        ts = es @ params.betas.elements
        return Vars(meta=data.meta, es=Matrix.from_array(es), ts=Matrix.from_array(ts))
