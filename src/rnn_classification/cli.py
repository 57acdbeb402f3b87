"""
Command-line interface for rnn_classification.

Typical usage (after `pip install -e .`):

    rnn-classification make-data --events 10000 --ntime 10 --ndim 30
    rnn-classification train --use-type 1 --config configs/rnn_classification.yaml
    rnn-classification show-options --use-type 3

The console script entry point in pyproject.toml is:

    [project.scripts]
    rnn-classification = "rnn_classification.cli:app"

Library errors (AppError) are reported on stderr and end the command with
exit code 1.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, NoReturn, Optional

import typer

from . import __version__
from .config import load_config
from .data.generator import make_time_data
from .exceptions import AppError
from .logging_config import configure_logging_from_app_config, get_logger
from .pipeline import (
    FACTORY_OPTIONS,
    method_option_strings,
    run_classification,
    split_options_from_config,
)
from .runtime import architecture_for, select_device

app = typer.Typer(
    help="Signal/background classification of time-series events with recurrent networks.",
    no_args_is_help=True,
)

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _fail(exc: AppError) -> NoReturn:
    logger.error("Command failed: %s", exc.to_dict())
    typer.echo(f"Error: {exc}", err=True)
    raise typer.Exit(code=1) from exc


def _runtime_overrides(device: Optional[str], num_threads: Optional[int]) -> Dict[str, Any]:
    runtime: Dict[str, Any] = {}
    if device is not None:
        runtime["device"] = device.lower()
    if num_threads is not None:
        runtime["num_threads"] = num_threads
    return {"runtime": runtime} if runtime else {}


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("version")
def version() -> None:
    """Print the installed rnn_classification version."""
    typer.echo(f"rnn_classification version: {__version__}")


@app.command("make-data")
def make_data(
    events: int = typer.Option(10000, "--events", "-n", help="Events per class (1 = plot only)."),
    ntime: int = typer.Option(10, "--ntime", help="Time steps per event."),
    ndim: int = typer.Option(30, "--ndim", help="Histogram bins per time step."),
    seed: Optional[int] = typer.Option(
        None, "--seed", help="Generator seed. Omit for a different dataset on every run."
    ),
    output_dir: Path = typer.Option(Path("."), "--output-dir", "-o", file_okay=False),
    fmt: str = typer.Option("parquet", "--format", help="parquet, csv or feather."),
    plot: Optional[Path] = typer.Option(
        None,
        "--plot",
        dir_okay=False,
        help="Where to save the histograms when --events 1 (default: in --output-dir).",
    ),
) -> None:
    """Generate the toy signal/background time-series dataset."""
    if events == 1 and plot is None:
        plot = output_dir / f"time_histograms_t{ntime}_d{ndim}.png"

    try:
        result = make_time_data(
            events, ntime, ndim, output_dir=output_dir, seed=seed, fmt=fmt.lower(), plot_path=plot
        )
    except AppError as exc:
        _fail(exc)

    if isinstance(result, Path):
        typer.echo(f"Wrote {result}")
    else:
        typer.echo(f"Plotted one event to {plot}")


@app.command("train")
def train(
    use_type: Optional[int] = typer.Option(
        None,
        "--use-type",
        "-t",
        help="0 = RNN, 1 = LSTM, 2 = GRU, anything else = all three. Defaults to the config.",
    ),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        dir_okay=False,
        help="YAML config file. If omitted, RNN_CLASSIFICATION_CONFIG_PATH or ./config.yaml.",
    ),
    env: Optional[str] = typer.Option(
        None, "--env", help="Config environment/profile name (e.g. 'dev', 'prod')."
    ),
    device: Optional[str] = typer.Option(
        None,
        "--device",
        case_sensitive=False,
        help="Device to use: 'auto' (CUDA if available, else CPU), 'cpu', or 'cuda'.",
    ),
    num_threads: Optional[int] = typer.Option(
        None,
        "--num-threads",
        help="0 = all cores, >0 = that many threads, <0 = single-threaded.",
    ),
    no_mlflow: bool = typer.Option(
        False, "--no-mlflow", help="Disable MLflow logging even if configured."
    ),
) -> None:
    """Book, train, test and evaluate the recurrent classifiers."""
    try:
        cfg = load_config(config, env=env, overrides=_runtime_overrides(device, num_threads))
        configure_logging_from_app_config(cfg, force=True)
        logger.info("Loaded config from %s (env=%s)", config, cfg.env)
        result = run_classification(cfg, use_type, use_mlflow=not no_mlflow)
    except AppError as exc:
        _fail(exc)

    typer.echo(result.ranking.to_string(index=False))
    if result.output_file is not None:
        typer.echo(f"Results written to {result.output_file}")


@app.command("show-options")
def show_options(
    use_type: Optional[int] = typer.Option(None, "--use-type", "-t"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", dir_okay=False),
    env: Optional[str] = typer.Option(None, "--env"),
) -> None:
    """Print the factory, split and method option strings a run would use."""
    try:
        cfg = load_config(config, env=env)
        architecture = architecture_for(select_device(cfg.runtime.device))
        booked = method_option_strings(cfg, use_type, architecture=architecture)
    except AppError as exc:
        _fail(exc)

    typer.echo(f"Factory: {FACTORY_OPTIONS}")
    typer.echo(f"Split:   {split_options_from_config(cfg).to_string()}")
    for name, (method_type, options) in booked.items():
        typer.echo(f"{name} [{method_type}]: {options}")


# ---------------------------------------------------------------------------
# Entry point for `python -m rnn_classification.cli`
# ---------------------------------------------------------------------------


if __name__ == "__main__":
    app()
