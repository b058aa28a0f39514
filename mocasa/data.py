from __future__ import annotations
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import polars as pl

from mocasa.config import Config, GwasConfig
from mocasa.errors import DataError, for_file
from mocasa.matrix import Matrix

logger = logging.getLogger(__name__)

NULL_VALUES = ["", "NA", "NaN", "nan", "."]


@dataclass(frozen=True)
class Meta:
    """Variant ids, trait names and endophenotype count shared read-only by all workers."""

    var_ids: Tuple[str, ...]
    trait_names: Tuple[str, ...]
    n_endos_: int = 1

    def n_data_points(self) -> int:
        return len(self.var_ids)

    def n_traits(self) -> int:
        return len(self.trait_names)

    def n_endos(self) -> int:
        return self.n_endos_


class GwasData:
    """Observed betas and standard errors, one row per variant and one column per trait."""

    def __init__(self, meta: Meta, betas: Matrix, ses: Matrix) -> None:
        expected = (meta.n_data_points(), meta.n_traits())
        for name, matrix in (("betas", betas), ("ses", ses)):
            if (matrix.n_rows, matrix.n_cols) != expected:
                raise DataError(
                    f"{name} has shape {matrix.n_rows}x{matrix.n_cols}, expected {expected[0]}x{expected[1]}."
                )
        self.meta = meta
        self.betas = betas
        self.ses = ses

    def n_data_points(self) -> int:
        return self.meta.n_data_points()

    def n_traits(self) -> int:
        return self.meta.n_traits()

    def is_complete(self) -> bool:
        return bool(np.all(np.isfinite(self.betas.elements)) and np.all(np.isfinite(self.ses.elements)))

    def only_data_point(self, i_row: int) -> Tuple["GwasData", List[bool]]:
        """Data of a single variant restricted to the traits observed for it."""
        betas_row = self.betas[i_row]
        ses_row = self.ses[i_row]
        is_cols = [bool(np.isfinite(b) and np.isfinite(s)) for b, s in zip(betas_row, ses_row)]
        trait_names = tuple(name for name, keep in zip(self.meta.trait_names, is_cols) if keep)
        meta = Meta((self.meta.var_ids[i_row],), trait_names, self.meta.n_endos())
        mask = np.asarray(is_cols, dtype=bool)
        betas = Matrix(1, len(trait_names), betas_row[mask])
        ses = Matrix(1, len(trait_names), ses_row[mask])
        return GwasData(meta, betas, ses), is_cols

    def __str__(self) -> str:
        n_missing = int(np.sum(~np.isfinite(self.betas.elements) | ~np.isfinite(self.ses.elements)))
        return (
            f"GWAS data: {self.n_data_points()} variants, {self.n_traits()} traits "
            f"({', '.join(self.meta.trait_names)}), {self.meta.n_endos()} endophenotypes, "
            f"{n_missing} missing values"
        )


def read_gwas_file(gwas: GwasConfig, delimiter: str = "\t") -> pl.DataFrame:
    """Read one GWAS file into columns id, beta, se.

    Empty fields and NA-like strings become nulls. Any other value that does
    not parse as a number is an error, as is a variant listed twice.
    """
    cols = gwas.cols
    path = Path(gwas.file)
    df = for_file(path, lambda: pl.read_csv(
        path, separator=delimiter, infer_schema_length=0, null_values=NULL_VALUES,
    ))
    missing = [c for c in (cols.id, cols.effect, cols.se) if c not in df.columns]
    if missing:
        raise DataError(f"Missing required columns: {missing}", path=path)
    df = df.select(
        pl.col(cols.id).alias("id"),
        pl.col(cols.effect).alias("beta_raw"),
        pl.col(cols.se).alias("se_raw"),
    ).with_columns(
        pl.col("beta_raw").cast(pl.Float64, strict=False).alias("beta"),
        pl.col("se_raw").cast(pl.Float64, strict=False).alias("se"),
    )
    for raw, parsed in (("beta_raw", "beta"), ("se_raw", "se")):
        bad = df.filter(pl.col(raw).is_not_null() & pl.col(parsed).is_null())
        if bad.height > 0:
            row = bad.row(0, named=True)
            raise DataError(f"Cannot parse '{row[raw]}' as a number for {row['id']}.", path=path)
    if df["id"].null_count() > 0:
        raise DataError("Missing variant id.", path=path)
    duplicated = df.filter(pl.col("id").is_duplicated())
    if duplicated.height > 0:
        raise DataError(f"Duplicate lines for {duplicated['id'][0]}.", path=path)
    bad_se = df.filter(pl.col("se") <= 0.0)
    if bad_se.height > 0:
        raise DataError(f"Standard error must be positive for {bad_se['id'][0]}.", path=path)
    return df.select("id", "beta", "se")


def read_ids_file(file: str) -> List[str]:
    text = for_file(file, lambda: Path(file).read_text())
    ids = [line.strip() for line in text.splitlines() if line.strip()]
    seen = set()
    for var_id in ids:
        if var_id in seen:
            raise DataError(f"Duplicate id {var_id}.", path=file)
        seen.add(var_id)
    return ids


def _fill_columns(var_ids: Sequence[str], frames: Sequence[pl.DataFrame]) -> Tuple[np.ndarray, np.ndarray]:
    i_rows: Dict[str, int] = {var_id: i for i, var_id in enumerate(var_ids)}
    betas = np.full((len(var_ids), len(frames)), np.nan)
    ses = np.full((len(var_ids), len(frames)), np.nan)
    for i_trait, df in enumerate(frames):
        for var_id, beta, se in df.iter_rows():
            i_row = i_rows.get(var_id)
            if i_row is not None:
                betas[i_row, i_trait] = np.nan if beta is None else beta
                ses[i_row, i_trait] = np.nan if se is None else se
    return betas, ses


def _build(var_ids: Sequence[str], config: Config, n_endos: int, frames: Sequence[pl.DataFrame]) -> GwasData:
    betas, ses = _fill_columns(var_ids, frames)
    trait_names = tuple(gwas.name for gwas in config.gwas)
    meta = Meta(tuple(var_ids), trait_names, n_endos)
    n_rows, n_cols = betas.shape
    return GwasData(meta, Matrix(n_rows, n_cols, betas), Matrix(n_rows, n_cols, ses))


def load_training_data(config: Config) -> GwasData:
    """Training data: the variants of the ids file, every trait required for each."""
    var_ids = read_ids_file(config.train.ids_file)
    if not var_ids:
        raise DataError("No variant ids.", path=config.train.ids_file)
    frames = [read_gwas_file(gwas, config.shared.delimiter) for gwas in config.gwas]
    data = _build(var_ids, config, config.train.n_endos, frames)
    observed = np.isfinite(data.betas.elements) & np.isfinite(data.ses.elements)
    if not observed.all():
        i_row, i_trait = (int(i) for i in np.argwhere(~observed)[0])
        raise DataError(f"Missing value for {var_ids[i_row]} in {config.gwas[i_trait].name}.")
    logger.info("Loaded training data for %d variants and %d traits", data.n_data_points(), data.n_traits())
    return data


def _classification_ids(config: Config, frames: Sequence[pl.DataFrame]) -> List[str]:
    wanted: Optional[List[str]] = None
    if config.classify.only_ids is not None or config.classify.only_ids_file is not None:
        wanted = list(config.classify.only_ids or [])
        if config.classify.only_ids_file is not None:
            wanted.extend(read_ids_file(config.classify.only_ids_file))
    var_ids: List[str] = []
    seen = set()
    candidates = wanted if wanted is not None else (var_id for df in frames for var_id in df["id"])
    for var_id in candidates:
        if var_id not in seen:
            seen.add(var_id)
            var_ids.append(var_id)
    return var_ids


def load_classification_data(config: Config, n_endos: int = 1) -> GwasData:
    """Classification data: all variants (or the requested subset), missing traits left as NaN."""
    frames = [read_gwas_file(gwas, config.shared.delimiter) for gwas in config.gwas]
    var_ids = _classification_ids(config, frames)
    data = _build(var_ids, config, n_endos, frames)
    n_unobserved = int(np.sum(~np.any(np.isfinite(data.betas.elements), axis=1))) if var_ids else 0
    if n_unobserved:
        logger.warning("%d variants have no observed trait and will be classified from the prior only",
                       n_unobserved)
    logger.info("Loaded classification data for %d variants and %d traits", data.n_data_points(), data.n_traits())
    return data
