from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from rnn_classification.config import AppConfig, get_config
from rnn_classification.exceptions import AppError, PipelineError
from rnn_classification.logging_config import get_logger

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _get_cfg(cfg: Optional[AppConfig] = None) -> AppConfig:
    """Return an AppConfig, using get_config() if one is not provided."""
    return cfg or get_config()


def _import_mlflow() -> Any:
    """Import the mlflow package or raise a PipelineError if unavailable.

    Only called once tracking is enabled and a run or log call needs it.
    """
    try:
        import mlflow  # type: ignore
    except ImportError as exc:
        raise PipelineError(
            "The 'mlflow' package is not installed. "
            "Install it with `pip install mlflow` or include the 'mlops' extra "
            "from this project (e.g. `pip install -e '.[mlops]'`).",
            code="mlflow_not_installed",
            cause=exc,
            context={},
            location="rnn_classification.mlops.mlflow_utils._import_mlflow",
        ) from exc
    return mlflow


def mlflow_is_enabled(cfg: Optional[AppConfig] = None) -> bool:
    """Return True if MLflow is enabled in configuration.

    Only reflects the config flag; the import is validated lazily.
    """
    cfg = _get_cfg(cfg)
    return bool(cfg.mlflow.enabled)


def _active_mlflow(cfg: AppConfig, caller: str) -> Any:
    """mlflow module when enabled and inside a run, else None."""
    if not cfg.mlflow.enabled:
        logger.debug("MLflow disabled; skipping %s.", caller)
        return None

    mlflow = _import_mlflow()
    if mlflow.active_run() is None:
        logger.warning(
            "%s called but no active MLflow run is present. "
            "Did you forget to use mlflow_run()?",
            caller,
        )
        return None
    return mlflow


def _flatten_dict(
    d: Mapping[str, Any],
    parent_key: str = "",
    sep: str = ".",
) -> Dict[str, Any]:
    """Flatten a nested mapping into a single-level dict with dotted keys.

    {"training": {"max_epochs": 20}} -> {"training.max_epochs": 20}
    """
    items: Dict[str, Any] = {}
    for key, value in d.items():
        new_key = f"{parent_key}{sep}{key}" if parent_key else str(key)
        if isinstance(value, Mapping):
            items.update(_flatten_dict(value, parent_key=new_key, sep=sep))
        else:
            items[new_key] = value
    return items


# ---------------------------------------------------------------------------
# Context manager for MLflow runs
# ---------------------------------------------------------------------------


@contextmanager
def mlflow_run(
    cfg: Optional[AppConfig] = None,
    *,
    experiment_name: Optional[str] = None,
    run_name: Optional[str] = None,
    tags: Optional[Dict[str, str]] = None,
):
    """Context manager that starts/stops an MLflow run if enabled.

    Usage:

        with mlflow_run(cfg, run_name="TMVA_LSTM") as mlflow:
            log_params({"method": "TMVA_LSTM"}, cfg=cfg)
            log_metrics({"roc_auc": 0.81}, cfg=cfg)

    Yields None when tracking is disabled, otherwise the mlflow module.
    The experiment is ``cfg.mlflow.experiment_name`` or ``cfg.experiment_name``.
    """
    cfg = _get_cfg(cfg)

    if not cfg.mlflow.enabled:
        logger.info("MLflow is disabled in configuration; skipping MLflow run.")
        yield None
        return

    mlflow = _import_mlflow()

    if cfg.mlflow.tracking_uri:
        logger.info("Setting MLflow tracking URI to %s", cfg.mlflow.tracking_uri)
        mlflow.set_tracking_uri(cfg.mlflow.tracking_uri)

    exp_name = experiment_name or cfg.mlflow.experiment_name or cfg.experiment_name
    if exp_name:
        logger.info("Setting MLflow experiment to '%s'", exp_name)
        mlflow.set_experiment(exp_name)

    effective_run_name = run_name or cfg.mlflow.run_name

    logger.info(
        "Starting MLflow run (experiment=%s, run_name=%s)",
        exp_name,
        effective_run_name,
    )

    try:
        with mlflow.start_run(run_name=effective_run_name):
            if tags:
                mlflow.set_tags(tags)
            yield mlflow
    except AppError:
        raise
    except Exception as exc:
        raise PipelineError(
            "An error occurred during MLflow run context.",
            code="mlflow_run_error",
            cause=exc,
            context={"experiment_name": exp_name, "run_name": effective_run_name},
            location="rnn_classification.mlops.mlflow_utils.mlflow_run",
        ) from exc
    finally:
        logger.info("MLflow run finished.")


# ---------------------------------------------------------------------------
# Logging helpers
# ---------------------------------------------------------------------------


def log_params(
    params: Mapping[str, Any],
    *,
    prefix: Optional[str] = None,
    flatten: bool = False,
    cfg: Optional[AppConfig] = None,
) -> None:
    """Log parameters to the current MLflow run if enabled.

    Non-primitive values are stringified; option strings longer than MLflow's
    parameter limit are truncated by MLflow itself.
    """
    cfg = _get_cfg(cfg)
    mlflow = _active_mlflow(cfg, "log_params")
    if mlflow is None:
        return

    data: Mapping[str, Any] = _flatten_dict(params) if flatten else params

    to_log: Dict[str, Any] = {}
    for key, value in data.items():
        full_key = f"{prefix}{key}" if prefix else str(key)
        if isinstance(value, (str, int, float, bool)) or value is None:
            to_log[full_key] = value
        else:
            to_log[full_key] = str(value)

    if not to_log:
        logger.debug("No parameters to log after processing; skipping.")
        return

    logger.info("Logging %d MLflow params.", len(to_log))
    mlflow.log_params(to_log)


def log_metrics(
    metrics: Mapping[str, float],
    *,
    step: Optional[int] = None,
    cfg: Optional[AppConfig] = None,
) -> None:
    """Log metrics to the current MLflow run if enabled."""
    cfg = _get_cfg(cfg)
    mlflow = _active_mlflow(cfg, "log_metrics")
    if mlflow is None:
        return

    if not metrics:
        logger.debug("Empty metrics mapping provided; skipping log_metrics.")
        return

    logger.info("Logging %d MLflow metrics (step=%s).", len(metrics), step)
    mlflow.log_metrics({k: float(v) for k, v in metrics.items()}, step=step)


def log_artifact(
    file_path: Path | str,
    *,
    artifact_path: Optional[str] = None,
    cfg: Optional[AppConfig] = None,
) -> None:
    """Log a single file (ROC plot, output bundle) as an MLflow artifact if enabled."""
    cfg = _get_cfg(cfg)
    if not cfg.mlflow.log_artifacts:
        logger.debug("Artifact logging disabled; skipping log_artifact.")
        return
    mlflow = _active_mlflow(cfg, "log_artifact")
    if mlflow is None:
        return

    path = Path(file_path).resolve()
    if not path.is_file():
        raise PipelineError(
            f"Artifact file does not exist: {path}",
            code="mlflow_artifact_missing",
            context={"file_path": str(path)},
            location="rnn_classification.mlops.mlflow_utils.log_artifact",
        )

    logger.info("Logging artifact %s (artifact_path=%s).", path, artifact_path)
    mlflow.log_artifact(str(path), artifact_path=artifact_path)
