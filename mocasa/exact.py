from __future__ import annotations
import numpy as np
from scipy import linalg

from mocasa.params import Params


def calculate_mu(params: Params, betas_obs: np.ndarray, ses: np.ndarray) -> np.ndarray:
    """Posterior mean of the endophenotypes for one variant, T integrated out.

    Observed effects are o = B^T E + noise with noise covariance
    diag(sigma^2 + se^2), so the posterior precision of E is
    diag(1/tau^2) + B W B^T and its mean solves
    precision * m = mu/tau^2 + B W o, with W the inverse noise variance.
    """
    betas_obs = np.asarray(betas_obs, dtype=float)
    ses = np.asarray(ses, dtype=float)
    if betas_obs.shape != ses.shape or betas_obs.shape != params.sigmas.shape:
        raise ValueError(
            f"Need one beta and se per trait ({params.n_traits()}), got {betas_obs.shape} and {ses.shape}."
        )
    loadings = params.betas.elements
    weights = 1.0 / (params.sigmas ** 2 + ses ** 2)
    tau2 = params.taus ** 2
    if params.n_endos() == 1:
        numerator = np.sum(loadings[0] * betas_obs * weights) + params.mus[0] / tau2[0]
        denominator = np.sum(loadings[0] ** 2 * weights) + 1.0 / tau2[0]
        return np.array([numerator / denominator])
    precision = np.diag(1.0 / tau2) + (loadings * weights) @ loadings.T
    rhs = params.mus / tau2 + loadings @ (weights * betas_obs)
    return linalg.cho_solve(linalg.cho_factor(precision), rhs)
