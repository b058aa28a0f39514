from __future__ import annotations
import logging
import queue
from dataclasses import dataclass
from typing import IO, List, Optional, Sequence

import numpy as np
import polars as pl

from mocasa.check import check_params, check_prerequisites
from mocasa.config import ClassifyConfig, Config
from mocasa.data import GwasData, Meta, load_classification_data
from mocasa.errors import WorkerError, for_file
from mocasa.exact import calculate_mu
from mocasa.params import Params, read_params_from_file
from mocasa.sampler import NoOpTracer, Sampler, Tracer
from mocasa.threads import Shutdown, TaskQueueObserver, WorkerPool, default_n_threads
from mocasa.var_stats import SampledClassification, VarStats
from mocasa.vars import Vars

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DataPointTask:
    i_data_point: int
    var_id: str


@dataclass
class Classification:
    i_data_point: int
    is_cols: List[bool]
    sampled: SampledClassification
    e_mean_calculated: np.ndarray


@dataclass
class ClassificationReport:
    i_thread: int
    classification: Classification


class ClassifyTracer(Tracer):
    """Writes every draw of one variant, one file per latent variable, as ``value<TAB>chain`` lines
    under a header naming the variable.

    A trace file that cannot be opened or written only produces a warning.
    """

    def __init__(self, meta: Meta, out_file: str, var_id: str) -> None:
        self.e_writers = [
            self._open(f"{out_file}_{var_id}_trace_E_{i_endo}", f"E_{i_endo}") for i_endo in range(meta.n_endos())
        ]
        self.t_writers = [
            self._open(f"{out_file}_{var_id}_trace_T_{trait_name}", f"T_{trait_name}") for trait_name in meta.trait_names
        ]

    @staticmethod
    def _open(file_name: str, var_name: str) -> Optional[IO[str]]:
        try:
            writer = open(file_name, "w")
            writer.write(f"{var_name}\tchain\n")
            return writer
        except OSError as exc:
            logger.warning("Could not write trace %s: %s", file_name, exc)
            return None

    @staticmethod
    def _write(writer: Optional[IO[str]], values: np.ndarray, i_chain: int) -> None:
        if writer is None:
            return
        try:
            for value in values:
                writer.write(f"{value}\t{i_chain}\n")
        except OSError as exc:
            logger.warning("Could not write trace %s: %s", writer.name, exc)

    def trace_e(self, i_endo: int, es: np.ndarray, i_chain: int) -> None:
        self._write(self.e_writers[i_endo], es, i_chain)

    def trace_t(self, i_trait: int, ts: np.ndarray, i_chain: int) -> None:
        self._write(self.t_writers[i_trait], ts, i_chain)

    def close(self) -> None:
        for writer in self.e_writers + self.t_writers:
            if writer is not None:
                writer.close()


def classify_data_point(data: GwasData, params: Params, i_data_point: int, config: ClassifyConfig,
                        rng: np.random.Generator) -> Classification:
    """Sample the posterior of one variant with several chains, using only its observed traits."""
    n_traits_total = data.n_traits()
    data_point, is_cols = data.only_data_point(i_data_point)
    meta = data_point.meta
    var_id = meta.var_ids[0]
    if meta.n_traits() < n_traits_total:
        logger.warning(
            "For %s, of the %d traits, we only have data for %d traits (%s).",
            var_id, n_traits_total, meta.n_traits(), ", ".join(meta.trait_names),
        )
    params_reduced = params.reduce_to(meta.trait_names, is_cols)
    vars_list = [Vars.initial_vars(data_point, params_reduced) for _ in range(config.n_chains)]
    sampler = Sampler(meta, rng, n_chains=config.n_chains)
    tracer: Tracer = NoOpTracer()
    if config.trace_ids and var_id in config.trace_ids:
        tracer = ClassifyTracer(meta, config.out_file, var_id)
    try:
        sampler.sample_n(data_point, params_reduced, vars_list, config.n_steps_burn_in, tracer)
        sampler.reset_var_stats()
        sampler.sample_n(data_point, params_reduced, vars_list, config.n_samples, tracer)
    finally:
        tracer.close()
    chain_stats = [sampler.chain_var_stats(i_chain) for i_chain in range(config.n_chains)]
    if config.n_chains > 1:
        names = [f"E_{i_endo}" for i_endo in range(meta.n_endos())] + [f"T_{name}" for name in meta.trait_names]
        ratios = VarStats.calculate_convergences(chain_stats)
        logger.debug(
            "For %s, inter/intra chain variance ratios: %s", var_id,
            ", ".join(f"{name}={ratio:.3g}" for name, ratio in zip(names, ratios)),
        )
    stats = VarStats.sum(chain_stats)
    e_mean_calculated = calculate_mu(params_reduced, data_point.betas[0], data_point.ses[0])
    return Classification(i_data_point, is_cols, stats.calculate_classification(), e_mean_calculated)


class ClassifyWorkerLauncher:
    def __init__(self, data: GwasData, params: Params, config: ClassifyConfig,
                 seeds: Sequence[np.random.SeedSequence]) -> None:
        self.data = data
        self.params = params
        self.config = config
        self.seeds = seeds

    def launch(self, sender: "queue.Queue", receiver: "queue.Queue", i_thread: int) -> None:
        rng = np.random.default_rng(self.seeds[i_thread])
        while True:
            message = receiver.get()
            if isinstance(message, DataPointTask):
                classification = classify_data_point(self.data, self.params, message.i_data_point,
                                                     self.config, rng)
                sender.put(ClassificationReport(i_thread, classification))
            elif isinstance(message, Shutdown):
                break
            else:
                raise WorkerError(f"Unexpected message {message!r}.")


class ClassifyProgressObserver(TaskQueueObserver):
    """Logs how far the task queue has got, roughly every tenth of the variants."""

    def __init__(self, n_tasks: int) -> None:
        self.n_tasks = n_tasks
        self.n_received = 0
        self.step = max(n_tasks // 10, 1)

    def going_to_start_queue(self) -> None:
        logger.info("Classifying %d variants", self.n_tasks)

    def have_received(self, response, i_task: int, i_thread: int) -> None:
        self.n_received += 1
        if self.n_received % self.step == 0:
            logger.info("Classified %d of %d variants", self.n_received, self.n_tasks)

    def nothing_more_to_send(self) -> None:
        logger.debug("All variants sent to workers")

    def completed_queue(self) -> None:
        logger.info("Completed classification of %d variants", self.n_received)


def classifications_to_frame(meta: Meta, classifications: Sequence[Classification]) -> pl.DataFrame:
    """One row per variant in input order; traits a variant lacks get NaN for T_mean."""
    n_endos = meta.n_endos()
    n_traits = meta.n_traits()
    e_means = np.full((len(classifications), n_endos), np.nan)
    e_stds = np.full((len(classifications), n_endos), np.nan)
    t_means = np.full((len(classifications), n_traits), np.nan)
    e_calculated = np.full((len(classifications), n_endos), np.nan)
    for row, classification in enumerate(classifications):
        e_means[row] = classification.sampled.e_mean
        e_stds[row] = classification.sampled.e_std
        t_means[row, np.asarray(classification.is_cols, dtype=bool)] = classification.sampled.t_means
        e_calculated[row] = classification.e_mean_calculated
    columns = {"id": [meta.var_ids[c.i_data_point] for c in classifications]}
    for i_endo in range(n_endos):
        columns[f"E_mean_{i_endo}"] = e_means[:, i_endo]
        columns[f"E_std_{i_endo}"] = e_stds[:, i_endo]
    for i_trait, trait_name in enumerate(meta.trait_names):
        columns[f"T_mean_{trait_name}"] = t_means[:, i_trait]
    for i_endo in range(n_endos):
        columns[f"E_mean_calculated_{i_endo}"] = e_calculated[:, i_endo]
    return pl.DataFrame(columns)


def write_classifications(out_file: str, meta: Meta, classifications: Sequence[Classification]) -> None:
    df = classifications_to_frame(meta, classifications)
    for_file(out_file, lambda: df.write_csv(out_file, separator="\t"))


def classify(data: GwasData, params: Params, config: Config) -> List[Classification]:
    classify_config = config.classify
    n_threads = config.shared.n_threads or default_n_threads()
    seeds = np.random.SeedSequence(config.shared.seed).spawn(n_threads)
    launcher = ClassifyWorkerLauncher(data, params, classify_config, seeds)
    tasks = (DataPointTask(i, var_id) for i, var_id in enumerate(data.meta.var_ids))
    with WorkerPool(launcher, n_threads, name="classify") as pool:
        reports = pool.task_queue(tasks, ClassifyProgressObserver(data.n_data_points()))
    classifications = [report.classification for report in reports]
    write_classifications(classify_config.out_file, data.meta, classifications)
    return classifications


def classify_or_check(config: Config, dry: bool) -> Optional[List[Classification]]:
    check_prerequisites(config, train=False)
    params = read_params_from_file(config.files.params)
    check_params(config, params)
    params.check_valid()
    data = load_classification_data(config, params.n_endos())
    logger.info("%s", data)
    if dry:
        logger.info("Dry run, not classifying")
        return None
    return classify(data, params, config)
