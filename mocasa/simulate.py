from __future__ import annotations
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
import polars as pl

from mocasa.config import DEFAULT_EFFECT_COL, DEFAULT_ID_COL, DEFAULT_SE_COL
from mocasa.params import Params


def simulate_betas(params: Params, n_variants: int, ses: Union[float, np.ndarray],
                   rng: np.random.Generator) -> Dict[str, np.ndarray]:
    """Draw E, T and observed betas from the generative model.

    Returns a dict with ``es`` (n x K), ``ts`` (n x T), ``betas`` and ``ses`` (n x T).
    """
    n_endos = params.n_endos()
    n_traits = params.n_traits()
    es = params.mus[None, :] + params.taus[None, :] * rng.standard_normal((n_variants, n_endos))
    ts = es @ params.betas.elements + params.sigmas[None, :] * rng.standard_normal((n_variants, n_traits))
    ses_arr = np.broadcast_to(np.asarray(ses, dtype=float), (n_variants, n_traits)).copy()
    betas = ts + ses_arr * rng.standard_normal((n_variants, n_traits))
    return {"es": es, "ts": ts, "betas": betas, "ses": ses_arr}


def write_gwas_files(out_dir: Union[str, Path], trait_names: Sequence[str], var_ids: Sequence[str],
                     betas: np.ndarray, ses: np.ndarray, delimiter: str = "\t",
                     missing: Optional[np.ndarray] = None) -> List[Path]:
    """Write one GWAS file per trait; entries flagged in `missing` are left out of that trait's file."""
    out_dir = Path(out_dir)
    paths = []
    for i_trait, trait_name in enumerate(trait_names):
        keep = np.ones(len(var_ids), dtype=bool) if missing is None else ~missing[:, i_trait]
        df = pl.DataFrame({
            DEFAULT_ID_COL: [var_id for var_id, k in zip(var_ids, keep) if k],
            DEFAULT_EFFECT_COL: betas[keep, i_trait],
            DEFAULT_SE_COL: ses[keep, i_trait],
        })
        path = out_dir / f"{trait_name}.tsv"
        df.write_csv(path, separator=delimiter)
        paths.append(path)
    return paths


def write_config(path: Union[str, Path], gwas_paths: Sequence[Path], trait_names: Sequence[str],
                 out_dir: Union[str, Path], ids_file: Union[str, Path], n_endos: int = 1,
                 n_threads: Optional[int] = None, seed: Optional[int] = None,
                 params_override: Optional[Dict[str, float]] = None) -> None:
    """Write a TOML configuration matching the simulated files, with moderate sampling settings."""
    out_dir = Path(out_dir)
    lines = [
        "[files]",
        f'params = "{(out_dir / "params.json").as_posix()}"',
        f'trace = "{(out_dir / "trace.tsv").as_posix()}"',
        "",
    ]
    for trait_name, gwas_path in zip(trait_names, gwas_paths):
        lines += ["[[gwas]]", f'name = "{trait_name}"', f'file = "{Path(gwas_path).as_posix()}"', ""]
    shared = []
    if n_threads is not None:
        shared.append(f"n_threads = {n_threads}")
    if seed is not None:
        shared.append(f"seed = {seed}")
    if shared:
        lines += ["[shared]"] + shared + [""]
    lines += [
        "[train]",
        f'ids_file = "{Path(ids_file).as_posix()}"',
        f"n_endos = {n_endos}",
        "n_steps_burn_in = 20",
        "n_samples_per_iteration = 10",
        "n_iterations_per_round = 5",
        "n_rounds = 30",
        "precision = 0.01",
    ]
    if params_override:
        pins = ", ".join(f"{key} = {value}" for key, value in params_override.items())
        lines.append(f"params_override = {{ {pins} }}")
    lines += [
        "",
        "[classify]",
        "n_steps_burn_in = 100",
        "n_samples = 1000",
        f'out_file = "{(out_dir / "classification.tsv").as_posix()}"',
        "",
    ]
    Path(path).write_text("\n".join(lines))
