from __future__ import annotations
import json
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from mocasa.config import ParamsOverride
from mocasa.errors import ParamsError, for_file
from mocasa.matrix import Matrix

MU = "mu"
TAU = "tau"
BETA = "beta"
SIGMA = "sigma"


@dataclass(frozen=True)
class ParamIndex:
    """Position of one scalar parameter: mu_k, tau_k, beta_k_i or sigma_i."""

    kind: str
    i_endo: Optional[int] = None
    i_trait: Optional[int] = None

    @staticmethod
    def all(n_endos: int, n_traits: int) -> Iterator["ParamIndex"]:
        for i_endo in range(n_endos):
            yield ParamIndex(MU, i_endo)
        for i_endo in range(n_endos):
            yield ParamIndex(TAU, i_endo)
        for i_endo in range(n_endos):
            for i_trait in range(n_traits):
                yield ParamIndex(BETA, i_endo, i_trait)
        for i_trait in range(n_traits):
            yield ParamIndex(SIGMA, None, i_trait)

    @staticmethod
    def n_params(n_endos: int, n_traits: int) -> int:
        return n_endos * (2 + n_traits) + n_traits

    def with_trait_name(self, trait_names: Sequence[str]) -> str:
        if self.kind in (MU, TAU):
            return f"{self.kind}_{self.i_endo}"
        if self.kind == BETA:
            return f"beta_{self.i_endo}_{trait_names[self.i_trait]}"
        return f"sigma_{trait_names[self.i_trait]}"

    def __str__(self) -> str:
        if self.kind in (MU, TAU):
            return f"{self.kind}_{self.i_endo}"
        if self.kind == BETA:
            return f"beta_{self.i_endo}_{self.i_trait}"
        return f"sigma_{self.i_trait}"


class Params:
    """Model parameters: per endophenotype mu and tau, loadings betas (K x T), per trait sigma."""

    def __init__(self, trait_names: Sequence[str], mus: Sequence[float], taus: Sequence[float],
                 betas: Matrix, sigmas: Sequence[float]) -> None:
        self.trait_names = list(trait_names)
        self.mus = np.asarray(mus, dtype=float)
        self.taus = np.asarray(taus, dtype=float)
        self.betas = betas
        self.sigmas = np.asarray(sigmas, dtype=float)
        n_endos = betas.n_rows
        n_traits = len(self.trait_names)
        if len(self.mus) != n_endos or len(self.taus) != n_endos:
            raise ParamsError(f"Need {n_endos} values for mus and taus, got {len(self.mus)} and {len(self.taus)}.")
        if betas.n_cols != n_traits or len(self.sigmas) != n_traits:
            raise ParamsError(
                f"Need {n_traits} trait columns for betas and sigmas, got {betas.n_cols} and {len(self.sigmas)}."
            )

    @classmethod
    def from_vec(cls, values: Sequence[float], trait_names: Sequence[str], n_endos: int) -> "Params":
        n_traits = len(trait_names)
        n_values_needed = ParamIndex.n_params(n_endos, n_traits)
        if len(values) != n_values_needed:
            raise ParamsError(
                f"Need {n_values_needed} values for {n_endos} endophenotypes and {n_traits} traits, "
                f"but got {len(values)}."
            )
        values = np.asarray(values, dtype=float)
        i_tau0 = n_endos
        i_beta00 = 2 * n_endos
        i_sigma0 = i_beta00 + n_endos * n_traits
        return cls(
            trait_names,
            values[:i_tau0],
            values[i_tau0:i_beta00],
            Matrix(n_endos, n_traits, values[i_beta00:i_sigma0]),
            values[i_sigma0:],
        )

    def to_vec(self) -> np.ndarray:
        return np.concatenate([self.mus, self.taus, self.betas.elements.ravel(), self.sigmas])

    def n_endos(self) -> int:
        return self.betas.n_rows

    def n_traits(self) -> int:
        return len(self.trait_names)

    def indices(self) -> Iterator[ParamIndex]:
        return ParamIndex.all(self.n_endos(), self.n_traits())

    def names(self) -> List[str]:
        return [index.with_trait_name(self.trait_names) for index in self.indices()]

    def __getitem__(self, index: ParamIndex) -> float:
        if index.kind == MU:
            return float(self.mus[index.i_endo])
        if index.kind == TAU:
            return float(self.taus[index.i_endo])
        if index.kind == BETA:
            return self.betas[index.i_endo, index.i_trait]
        return float(self.sigmas[index.i_trait])

    def reduce_to(self, trait_names: Sequence[str], is_cols: Sequence[bool]) -> "Params":
        mask = np.asarray(is_cols, dtype=bool)
        return Params(trait_names, self.mus.copy(), self.taus.copy(), self.betas.only_cols(mask),
                      self.sigmas[mask])

    def plus_overwrite(self, overwrite: Optional[ParamsOverride]) -> "Params":
        mus = self.mus.copy()
        taus = self.taus.copy()
        if overwrite is not None:
            if overwrite.mu is not None:
                mus.fill(overwrite.mu)
            if overwrite.tau is not None:
                taus.fill(overwrite.tau)
        return Params(self.trait_names, mus, taus, self.betas.copy(), self.sigmas.copy())

    def scaled_sigmas(self, scale: float) -> "Params":
        if not scale > 0.0:
            raise ParamsError(f"Scale must be positive, got {scale}.")
        return Params(self.trait_names, self.mus.copy(), self.taus.copy(), self.betas.copy(),
                      self.sigmas * scale)

    def invalid_reason(self) -> Optional[str]:
        for index in self.indices():
            value = self[index]
            name = index.with_trait_name(self.trait_names)
            if not math.isfinite(value):
                return f"{name} is {value}"
            if index.kind in (TAU, SIGMA) and value <= 0.0:
                return f"{name} is not positive ({value})"
        return None

    def is_valid(self) -> bool:
        return self.invalid_reason() is None

    def check_valid(self) -> None:
        for index in self.indices():
            value = self[index]
            if not math.isfinite(value) or (index.kind in (TAU, SIGMA) and value <= 0.0):
                raise ParamsError(f"Invalid value {value}.", name=index.with_trait_name(self.trait_names))

    def to_json_dict(self) -> dict:
        return {
            "trait_names": list(self.trait_names),
            "mus": [float(x) for x in self.mus],
            "taus": [float(x) for x in self.taus],
            "betas": {
                "n_rows": self.betas.n_rows,
                "n_cols": self.betas.n_cols,
                "elements": self.betas.to_list(),
            },
            "sigmas": [float(x) for x in self.sigmas],
        }

    @classmethod
    def from_json_dict(cls, doc: dict) -> "Params":
        try:
            betas_doc = doc["betas"]
            betas = Matrix(betas_doc["n_rows"], betas_doc["n_cols"], betas_doc["elements"])
            return cls(doc["trait_names"], doc["mus"], doc["taus"], betas, doc["sigmas"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ParamsError(f"Malformed params document: {exc!r}") from exc

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Params):
            return NotImplemented
        return (
            self.trait_names == other.trait_names
            and np.array_equal(self.mus, other.mus)
            and np.array_equal(self.taus, other.taus)
            and self.betas == other.betas
            and np.array_equal(self.sigmas, other.sigmas)
        )

    def __str__(self) -> str:
        return "".join(f"{name} = {self[index]}\n" for name, index in zip(self.names(), self.indices()))

    def __repr__(self) -> str:
        return f"Params({self.to_json_dict()!r})"


def parse_params_lines(text: str) -> Params:
    """Parse the `name = value` rendering produced by `str(params)`."""
    mus: List[float] = []
    taus: List[float] = []
    betas: List[Tuple[int, str, float]] = []
    sigmas: List[Tuple[str, float]] = []
    for i_line, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        name, sep, value_str = line.partition("=")
        name = name.strip()
        try:
            value = float(value_str)
        except ValueError:
            raise ParamsError(f"Line {i_line}: cannot parse '{line}'.") from None
        kind, _, rest = name.partition("_")
        if not sep or not rest:
            raise ParamsError(f"Line {i_line}: cannot parse '{line}'.")
        if kind == MU:
            mus.append(value)
        elif kind == TAU:
            taus.append(value)
        elif kind == BETA:
            i_endo_str, _, trait_name = rest.partition("_")
            if not i_endo_str.isdigit() or not trait_name:
                raise ParamsError(f"Line {i_line}: cannot parse '{line}'.")
            betas.append((int(i_endo_str), trait_name, value))
        elif kind == SIGMA:
            sigmas.append((rest, value))
        else:
            raise ParamsError(f"Line {i_line}: unknown parameter {name}.")
    trait_names = [trait_name for trait_name, _ in sigmas]
    n_endos = len(mus)
    i_traits = {trait_name: i_trait for i_trait, trait_name in enumerate(trait_names)}
    loadings = np.full((n_endos, len(trait_names)), np.nan)
    for i_endo, trait_name, value in betas:
        if i_endo >= n_endos or trait_name not in i_traits:
            raise ParamsError(f"Unexpected parameter beta_{i_endo}_{trait_name}.")
        loadings[i_endo, i_traits[trait_name]] = value
    if np.isnan(loadings).any():
        raise ParamsError("Missing beta values.")
    return Params(trait_names, mus, taus, Matrix.from_array(loadings), [value for _, value in sigmas])


def read_params_from_file(file: Union[str, Path]) -> Params:
    """Read params from JSON, or from `name = value` lines when the file is not JSON."""
    text = for_file(file, lambda: Path(file).read_text())
    if not text.lstrip().startswith("{"):
        try:
            return parse_params_lines(text)
        except ParamsError as exc:
            raise ParamsError(exc.message, path=file) from exc
    try:
        doc = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ParamsError(f"Cannot parse params JSON: {exc}", path=file) from exc
    try:
        return Params.from_json_dict(doc)
    except ParamsError as exc:
        raise ParamsError(exc.message, path=file) from exc


def write_params_to_file(params: Params, output_file: Union[str, Path]) -> None:
    def _write() -> None:
        with open(output_file, "w") as fh:
            json.dump(params.to_json_dict(), fh, indent=2)
            fh.write("\n")

    for_file(output_file, _write)


def scale_sigmas(in_file: Union[str, Path], scale: float, out_file: Union[str, Path]) -> Params:
    params = read_params_from_file(in_file).scaled_sigmas(scale)
    write_params_to_file(params, out_file)
    return params
