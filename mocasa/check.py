from __future__ import annotations
import os

from mocasa.config import Config
from mocasa.errors import ConfigError, ParamsError
from mocasa.params import Params
from mocasa.utils import parent_dir_exists


def check_config(config: Config) -> None:
    if not config.gwas:
        raise ConfigError("No GWAS specified.")


def check_params(config: Config, params: Params) -> None:
    if len(config.gwas) != len(params.trait_names):
        raise ParamsError(
            f"Number GWAS files ({len(config.gwas)}) does not match number of traits in params "
            f"({len(params.trait_names)})"
        )
    for i_trait, (gwas, trait_name) in enumerate(zip(config.gwas, params.trait_names)):
        if gwas.name != trait_name:
            raise ParamsError(
                f"Trait name in GWAS file {i_trait} ({gwas.name}) does not match trait name in params "
                f"({trait_name})"
            )


def check_prerequisites(config: Config, train: bool) -> None:
    """Fail early on missing inputs or output directories, before any sampling starts."""
    check_config(config)
    for gwas in config.gwas:
        if not os.path.isfile(gwas.file):
            raise ConfigError(f"GWAS file for {gwas.name} does not exist.", path=gwas.file)
    if train:
        if not os.path.isfile(config.train.ids_file):
            raise ConfigError("Ids file does not exist.", path=config.train.ids_file)
        outputs = [config.files.params] + ([config.files.trace] if config.files.trace else [])
    else:
        if not os.path.isfile(config.files.params):
            raise ConfigError("Params file does not exist.", path=config.files.params)
        if config.classify.only_ids_file is not None and not os.path.isfile(config.classify.only_ids_file):
            raise ConfigError("Ids file does not exist.", path=config.classify.only_ids_file)
        outputs = [config.classify.out_file]
    for output in outputs:
        if not parent_dir_exists(output):
            raise ConfigError("Output directory does not exist.", path=output)
