from __future__ import annotations
import numpy as np

from mocasa.data import GwasData
from mocasa.params import Params
from mocasa.vars import Vars


class GibbsSampler:
    """Conjugate Gaussian conditionals for E and T.

    Given the parameters, data points are independent, so each draw updates
    one endophenotype (or trait) column for all data points at once.
    """

    def __init__(self, rng: np.random.Generator) -> None:
        self.rng = rng

    def draw_e(self, vars: Vars, params: Params, i_endo: int) -> np.ndarray:
        betas = params.betas.elements
        beta_k = betas[i_endo]
        sigma2 = params.sigmas ** 2
        tau2 = params.taus[i_endo] ** 2
        es = vars.es.elements
        # T minus the contribution of the other endophenotypes
        residuals = vars.ts.elements - es @ betas + np.outer(es[:, i_endo], beta_k)
        precision = 1.0 / tau2 + np.sum(beta_k ** 2 / sigma2)
        variance = 1.0 / precision
        mean = variance * (params.mus[i_endo] / tau2 + residuals @ (beta_k / sigma2))
        draw = mean + np.sqrt(variance) * self.rng.standard_normal(len(mean))
        es[:, i_endo] = draw
        return draw

    def draw_t(self, data: GwasData, vars: Vars, params: Params, i_trait: int) -> np.ndarray:
        sigma2 = params.sigmas[i_trait] ** 2
        mean_model = vars.es.elements @ params.betas.elements[:, i_trait]
        betas_obs = data.betas.elements[:, i_trait]
        se2 = data.ses.elements[:, i_trait] ** 2
        precision = 1.0 / sigma2 + 1.0 / se2
        variance = 1.0 / precision
        mean = variance * (mean_model / sigma2 + betas_obs / se2)
        draw = mean + np.sqrt(variance) * self.rng.standard_normal(len(mean))
        vars.ts.elements[:, i_trait] = draw
        return draw
