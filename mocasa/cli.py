import logging
from pathlib import Path

import typer

from mocasa import classify as classify_mod
from mocasa import train as train_mod
from mocasa.config import load_config
from mocasa.errors import MocasaError
from mocasa.params import scale_sigmas


app = typer.Typer(help="Endophenotype model for GWAS summary statistics: train parameters and classify variants.")

LOG_FORMAT = "[%(levelname)s] %(message)s"


def _exit_with(error: MocasaError) -> typer.Exit:
    typer.echo(f"{error.kind}: {error}", err=True)
    return typer.Exit(code=1)


@app.callback()
def setup(
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Log debug messages, including worker lifecycle."),
) -> None:
    """Configure logging for all commands."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT, force=True)


@app.command("train", help="Estimate model parameters from the training variants.")
def train_cmd(
    conf_file: Path = typer.Option(..., "-f", "--conf-file", help="TOML configuration file."),
    dry: bool = typer.Option(False, "-d", "--dry", help="Load and check data, then stop before sampling."),
) -> None:
    """Train and write the params file named in the configuration."""
    try:
        config = load_config(str(conf_file))
        params = train_mod.train_or_check(config, dry)
    except MocasaError as error:
        raise _exit_with(error) from error
    if params is not None:
        typer.echo(f"Wrote {config.files.params}")


@app.command("classify", help="Sample the posterior of every variant under trained parameters.")
def classify_cmd(
    conf_file: Path = typer.Option(..., "-f", "--conf-file", help="TOML configuration file."),
    dry: bool = typer.Option(False, "-d", "--dry", help="Load and check data, then stop before sampling."),
) -> None:
    """Classify and write the posterior table named in the configuration."""
    try:
        config = load_config(str(conf_file))
        classifications = classify_mod.classify_or_check(config, dry)
    except MocasaError as error:
        raise _exit_with(error) from error
    if classifications is not None:
        typer.echo(f"Wrote {config.classify.out_file}")


@app.command("scale-sigmas", help="Multiply every sigma of a params file by a factor.")
def scale_sigmas_cmd(
    in_file: Path = typer.Option(..., "-i", "--in-file", help="Params file to read."),
    scale: float = typer.Option(..., "-s", "--scale", help="Factor applied to each sigma (must be positive)."),
    out_file: Path = typer.Option(..., "-o", "--out-file", help="Params file to write."),
) -> None:
    try:
        scale_sigmas(in_file, scale, out_file)
    except MocasaError as error:
        raise _exit_with(error) from error
    typer.echo(f"Wrote {out_file}")


def main() -> None:
    """Entry point for the `mocasa` command."""
    app()
