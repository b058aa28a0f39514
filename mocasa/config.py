from __future__ import annotations
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from mocasa.errors import ConfigError, for_file

DEFAULT_ID_COL = "VAR_ID"
DEFAULT_EFFECT_COL = "BETA"
DEFAULT_SE_COL = "SE"

_SECTIONS = {"files", "gwas", "shared", "train", "classify"}


@dataclass(frozen=True)
class GwasCols:
    id: str = DEFAULT_ID_COL
    effect: str = DEFAULT_EFFECT_COL
    se: str = DEFAULT_SE_COL


@dataclass(frozen=True)
class GwasConfig:
    name: str
    file: str
    cols: GwasCols = field(default_factory=GwasCols)


@dataclass(frozen=True)
class FilesConfig:
    params: str
    trace: Optional[str] = None


@dataclass(frozen=True)
class SharedConfig:
    n_threads: Optional[int] = None
    seed: Optional[int] = None
    delimiter: str = "\t"


@dataclass(frozen=True)
class ParamsOverride:
    """Values pinned for every endophenotype, which makes the model identifiable."""

    mu: Optional[float] = None
    tau: Optional[float] = None


@dataclass(frozen=True)
class TrainConfig:
    ids_file: str
    n_steps_burn_in: int
    n_samples_per_iteration: int
    n_iterations_per_round: int
    n_rounds: int
    n_endos: int = 1
    precision: float = 1e-3
    n_chains_min: int = 3
    max_checks_per_round: int = 100
    params_override: Optional[ParamsOverride] = None


@dataclass(frozen=True)
class ClassifyConfig:
    n_steps_burn_in: int
    n_samples: int
    out_file: str
    n_chains: int = 4
    trace_ids: Optional[List[str]] = None
    only_ids: Optional[List[str]] = None
    only_ids_file: Optional[str] = None


@dataclass(frozen=True)
class Config:
    files: FilesConfig
    gwas: List[GwasConfig]
    train: TrainConfig
    classify: ClassifyConfig
    shared: SharedConfig = field(default_factory=SharedConfig)


class _Section:
    """Typed access to one table of the TOML document, with errors naming the key."""

    def __init__(self, table: Any, name: str, path: str) -> None:
        if not isinstance(table, dict):
            raise ConfigError(f"'{name}' must be a table.", path=path)
        self.table = table
        self.name = name
        self.path = path

    def _err(self, key: str, message: str) -> ConfigError:
        return ConfigError(f"{self.name}.{key}: {message}", path=self.path)

    def _get(self, key: str, required: bool) -> Any:
        if key not in self.table:
            if required:
                raise self._err(key, "missing required key.")
            return None
        return self.table[key]

    def get_str(self, key: str, required: bool = True, default: Optional[str] = None) -> Optional[str]:
        value = self._get(key, required)
        if value is None:
            return default
        if not isinstance(value, str):
            raise self._err(key, f"expected a string, got {value!r}.")
        return value

    def get_count(self, key: str, required: bool = True, default: Optional[int] = None) -> Optional[int]:
        value = self._get(key, required)
        if value is None:
            return default
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise self._err(key, f"expected a positive integer, got {value!r}.")
        return value

    def get_int(self, key: str, default: Optional[int] = None) -> Optional[int]:
        value = self._get(key, False)
        if value is None:
            return default
        if isinstance(value, bool) or not isinstance(value, int):
            raise self._err(key, f"expected an integer, got {value!r}.")
        return value

    def get_float(self, key: str, required: bool = True, default: Optional[float] = None) -> Optional[float]:
        value = self._get(key, required)
        if value is None:
            return default
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise self._err(key, f"expected a number, got {value!r}.")
        return float(value)

    def str_list(self, key: str) -> Optional[List[str]]:
        value = self._get(key, False)
        if value is None:
            return None
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            raise self._err(key, "expected a list of strings.")
        return list(value)

    def sub(self, key: str) -> Optional["_Section"]:
        value = self._get(key, False)
        if value is None:
            return None
        return _Section(value, f"{self.name}.{key}", self.path)


def _parse_gwas(items: Any, path: str) -> List[GwasConfig]:
    if not isinstance(items, list):
        raise ConfigError("'gwas' must be an array of tables ([[gwas]]).", path=path)
    gwas_list = []
    for i, item in enumerate(items):
        section = _Section(item, f"gwas[{i}]", path)
        cols_section = section.sub("cols")
        cols = GwasCols()
        if cols_section is not None:
            cols = GwasCols(
                id=cols_section.get_str("id", required=False, default=DEFAULT_ID_COL),
                effect=cols_section.get_str("effect", required=False, default=DEFAULT_EFFECT_COL),
                se=cols_section.get_str("se", required=False, default=DEFAULT_SE_COL),
            )
        gwas_list.append(GwasConfig(name=section.get_str("name"), file=section.get_str("file"), cols=cols))
    names = [gwas.name for gwas in gwas_list]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise ConfigError(f"Duplicate GWAS names: {', '.join(duplicates)}.", path=path)
    return gwas_list


def _parse_train(section: _Section) -> TrainConfig:
    override_section = section.sub("params_override")
    params_override = None
    if override_section is not None:
        params_override = ParamsOverride(
            mu=override_section.get_float("mu", required=False),
            tau=override_section.get_float("tau", required=False),
        )
        if params_override.tau is not None and params_override.tau <= 0.0:
            raise ConfigError("train.params_override.tau must be positive.", path=section.path)
    precision = section.get_float("precision", required=False, default=1e-3)
    if precision <= 0.0:
        raise ConfigError("train.precision must be positive.", path=section.path)
    return TrainConfig(
        ids_file=section.get_str("ids_file"),
        n_steps_burn_in=section.get_count("n_steps_burn_in"),
        n_samples_per_iteration=section.get_count("n_samples_per_iteration"),
        n_iterations_per_round=section.get_count("n_iterations_per_round"),
        n_rounds=section.get_count("n_rounds"),
        n_endos=section.get_count("n_endos", required=False, default=1),
        precision=precision,
        n_chains_min=section.get_count("n_chains_min", required=False, default=3),
        max_checks_per_round=section.get_count("max_checks_per_round", required=False, default=100),
        params_override=params_override,
    )


def _parse_classify(section: _Section) -> ClassifyConfig:
    return ClassifyConfig(
        n_steps_burn_in=section.get_count("n_steps_burn_in"),
        n_samples=section.get_count("n_samples"),
        out_file=section.get_str("out_file"),
        n_chains=section.get_count("n_chains", required=False, default=4),
        trace_ids=section.str_list("trace_ids"),
        only_ids=section.str_list("only_ids"),
        only_ids_file=section.get_str("only_ids_file", required=False),
    )


def parse_config(doc: Dict[str, Any], path: str = "<config>") -> Config:
    unknown = sorted(set(doc) - _SECTIONS)
    if unknown:
        raise ConfigError(f"Unknown sections: {', '.join(unknown)}.", path=path)
    for name in ("files", "gwas", "train", "classify"):
        if name not in doc:
            raise ConfigError(f"Missing section '{name}'.", path=path)
    files = _Section(doc["files"], "files", path)
    shared_section = _Section(doc.get("shared", {}), "shared", path)
    delimiter = shared_section.get_str("delimiter", required=False, default="\t")
    if len(delimiter) != 1:
        raise ConfigError("shared.delimiter must be a single character.", path=path)
    return Config(
        files=FilesConfig(params=files.get_str("params"), trace=files.get_str("trace", required=False)),
        gwas=_parse_gwas(doc["gwas"], path),
        train=_parse_train(_Section(doc["train"], "train", path)),
        classify=_parse_classify(_Section(doc["classify"], "classify", path)),
        shared=SharedConfig(
            n_threads=shared_section.get_count("n_threads", required=False),
            seed=shared_section.get_int("seed"),
            delimiter=delimiter,
        ),
    )


def load_config(file: str) -> Config:
    """Read and validate a TOML configuration file."""
    path = Path(file)
    raw = for_file(path, path.read_bytes)
    try:
        doc = tomllib.loads(raw.decode("utf-8"))
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Cannot parse TOML: {exc}", path=file) from exc
    return parse_config(doc, file)
