from __future__ import annotations
import logging
import queue
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from mocasa.check import check_prerequisites
from mocasa.config import Config, ParamsOverride, TrainConfig
from mocasa.data import GwasData, Meta, load_training_data
from mocasa.errors import DataError, NumericalError, WorkerError
from mocasa.matrix import Matrix
from mocasa.param_meta_stats import ParamMetaStats, Summary, relative_drifts
from mocasa.params import Params, write_params_to_file
from mocasa.report import Reporter
from mocasa.sampler import Sampler
from mocasa.threads import Shutdown, WorkerPool, default_n_threads
from mocasa.trace_file import ParamTraceFileWriter
from mocasa.vars import Vars

logger = logging.getLogger(__name__)

MAX_BOOTSTRAP_ATTEMPTS = 10
MAX_FAILED_ITERATIONS = 10
DRIFT_WINDOW = 5
MIN_EXCESS_VARIANCE = 1e-6
OFF_AXIS_LOADING = 0.1


@dataclass(frozen=True)
class TakeNSamples:
    n_samples: int


@dataclass(frozen=True)
class SetNewParams:
    params: Params


@dataclass
class ParamsReport:
    i_thread: int
    params: Params


def estimate_initial_params(data: GwasData, n_endos: int, override: Optional[ParamsOverride] = None) -> Params:
    """Method-of-moments starting point.

    The variance of the observed betas beyond their sampling error is split
    evenly between loading and residual for each trait. With several
    endophenotypes, each trait loads mainly on one of them (cyclically) so the
    chains do not start in a symmetric state.
    """
    betas_obs = data.betas.elements
    ses = data.ses.elements
    excess = np.var(betas_obs, axis=0) - np.mean(ses ** 2, axis=0)
    base = np.sqrt(np.maximum(excess, MIN_EXCESS_VARIANCE) / 2.0)
    n_traits = data.n_traits()
    loadings = Matrix.fill(
        n_endos, n_traits,
        lambda i_endo, i_trait: base[i_trait] if i_trait % n_endos == i_endo else OFF_AXIS_LOADING * base[i_trait],
    )
    params = Params(data.meta.trait_names, np.zeros(n_endos), np.ones(n_endos), loadings, base)
    return params.plus_overwrite(override)


class TrainWorkerLauncher:
    def __init__(self, data: GwasData, params: Params, config: TrainConfig,
                 seeds: Sequence[np.random.SeedSequence]) -> None:
        self.data = data
        self.params = params
        self.config = config
        self.seeds = seeds

    def launch(self, sender: "queue.Queue", receiver: "queue.Queue", i_thread: int) -> None:
        rng = np.random.default_rng(self.seeds[i_thread])
        train_worker(self.data, self.params, sender, receiver, i_thread, self.config, rng)


def train_worker(data: GwasData, params: Params, sender: "queue.Queue", receiver: "queue.Queue",
                 i_thread: int, config: TrainConfig, rng: np.random.Generator) -> None:
    """One chain. Answers TakeNSamples with a fresh M-step estimate; SetNewParams restarts the chain."""
    vars = Vars.initial_vars(data, params)
    sampler = Sampler(data.meta, rng)
    sampler.sample_n(data, params, [vars], config.n_steps_burn_in)
    while True:
        message = receiver.get()
        if isinstance(message, TakeNSamples):
            sampler.reset_var_stats()
            sampler.sample_n(data, params, [vars], message.n_samples)
            params_new = sampler.var_stats().compute_new_params().plus_overwrite(config.params_override)
            sender.put(ParamsReport(i_thread, params_new))
        elif isinstance(message, SetNewParams):
            params = message.params
            vars = Vars.initial_vars(data, params)
            sampler.reset_var_stats()
            sampler.sample_n(data, params, [vars], config.n_steps_burn_in)
        elif isinstance(message, Shutdown):
            break
        else:
            raise WorkerError(f"Unexpected message {message!r}.")


def _collect_estimates(pool: WorkerPool, n_samples: int) -> List[Params]:
    return [report.params for report in pool.broadcast(TakeNSamples(n_samples))]


def bootstrap(pool: WorkerPool, meta: Meta, config: TrainConfig) -> ParamMetaStats:
    """Seed the per-chain statistics with two estimates, retrying while too few chains are usable."""
    n_chains_min = min(config.n_chains_min, pool.n_threads)
    for attempt in range(1, MAX_BOOTSTRAP_ATTEMPTS + 1):
        params0 = _collect_estimates(pool, config.n_samples_per_iteration)
        params1 = _collect_estimates(pool, config.n_samples_per_iteration)
        meta_stats = ParamMetaStats(meta, params0, params1)
        if meta_stats.n_chains_used() >= n_chains_min:
            return meta_stats
        logger.warning(
            "Only %d of %d chains gave valid estimates, need %d (attempt %d of %d)",
            meta_stats.n_chains_used(), pool.n_threads, n_chains_min, attempt, MAX_BOOTSTRAP_ATTEMPTS,
        )
    raise NumericalError(
        f"Fewer than {n_chains_min} chains gave valid estimates after {MAX_BOOTSTRAP_ATTEMPTS} attempts."
    )


def train_round(pool: WorkerPool, meta: Meta, params: Params, config: TrainConfig, reporter: Reporter,
                i_round: int) -> Tuple[Summary, bool]:
    """Iterate until the chains agree (inter/intra ratio below one) or the check limit is hit.

    An iteration in which fewer than the minimum number of chains gave a valid
    estimate does not count and is repeated, up to MAX_FAILED_ITERATIONS times
    in a row. Returns the last summary and whether the chains agreed.
    """
    meta_stats = bootstrap(pool, meta, config)
    n_chains_min = min(config.n_chains_min, pool.n_threads)
    i_iteration = 0
    for i_check in range(1, config.max_checks_per_round + 1):
        n_done = 0
        n_failed = 0
        while n_done < config.n_iterations_per_round:
            n_valid = meta_stats.add(_collect_estimates(pool, config.n_samples_per_iteration))
            if n_valid < n_chains_min:
                n_failed += 1
                logger.warning(
                    "Round %d: only %d of %d chains gave valid estimates, need %d, repeating iteration",
                    i_round, n_valid, meta_stats.n_chains_used(), n_chains_min,
                )
                if n_failed >= MAX_FAILED_ITERATIONS:
                    raise NumericalError(
                        f"Fewer than {n_chains_min} chains gave valid estimates "
                        f"in {MAX_FAILED_ITERATIONS} iterations in a row."
                    )
                continue
            n_failed = 0
            n_done += 1
            i_iteration += 1
        summary = meta_stats.summary(previous=params)
        n_steps = i_iteration * config.n_samples_per_iteration
        if summary.inter_intra_ratios_mean < 1.0:
            reporter.report(summary, i_round, i_iteration, n_steps)
            return summary, True
        reporter.maybe_report(summary, i_round, i_iteration, n_steps)
    logger.warning(
        "Round %d: chains still disagree after %d checks (inter/intra ratio %g), keeping previous estimate",
        i_round, config.max_checks_per_round, summary.inter_intra_ratios_mean,
    )
    return summary, False


def train(data: GwasData, config: Config) -> Params:
    """Stochastic EM over a pool of chains. Returns the last adopted parameters.

    A round's pooled estimate is adopted only when the chains agree. Training
    is complete once an adopted estimate is precise and has moved less than the
    precision over the last DRIFT_WINDOW adopted rounds.
    """
    if not data.is_complete():
        raise DataError("Training needs a beta and standard error for every variant and trait.")
    train_config = config.train
    override = train_config.params_override
    params = estimate_initial_params(data, train_config.n_endos, override)
    logger.info("Initial params:\n%s", params)
    n_threads = config.shared.n_threads or default_n_threads()
    seeds = np.random.SeedSequence(config.shared.seed).spawn(n_threads)
    trace = None
    if config.files.trace:
        trace = ParamTraceFileWriter(config.files.trace, train_config.n_endos, data.meta.trait_names)
    reporter = Reporter()
    launcher = TrainWorkerLauncher(data, params, train_config, seeds)
    with WorkerPool(launcher, n_threads, name="train") as pool:
        adopted: List[np.ndarray] = []
        for i_round in range(1, train_config.n_rounds + 1):
            reporter.reset_round_timer()
            summary, agreed = train_round(pool, data.meta, params, train_config, reporter, i_round)
            if not agreed:
                continue
            params = summary.params.plus_overwrite(override)
            adopted.append(params.to_vec())
            if trace is not None:
                trace.write(params)
            if summary.relative_errors_mean < train_config.precision and len(adopted) > DRIFT_WINDOW:
                window_drift = float(relative_drifts(adopted[-1], adopted[-1 - DRIFT_WINDOW]).mean())
                logger.info("Round %d: drift over the last %d adopted rounds is %g",
                            i_round, DRIFT_WINDOW, window_drift)
                if window_drift < train_config.precision:
                    logger.info("Round %d: estimates are precise and stable, training complete", i_round)
                    break
            if i_round < train_config.n_rounds:
                pool.send_to_all(SetNewParams(params))
        else:
            logger.warning("Reached %d rounds without meeting the precision target", train_config.n_rounds)
    logger.info("Final params:\n%s", params)
    return params


def train_or_check(config: Config, dry: bool) -> Optional[Params]:
    check_prerequisites(config, train=True)
    data = load_training_data(config)
    logger.info("%s", data)
    if dry:
        logger.info("Dry run, not training")
        return None
    params = train(data, config)
    write_params_to_file(params, config.files.params)
    return params
