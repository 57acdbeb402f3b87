from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, MutableMapping, Optional, Tuple

import torch
from torch import nn
from torch.utils.data import DataLoader

from rnn_classification.config import AppConfig
from rnn_classification.exceptions import TrainingError
from rnn_classification.logging_config import get_logger
from rnn_classification.mlops.mlflow_utils import (
    log_metrics as mlflow_log_metrics,
    mlflow_is_enabled,
)

logger = get_logger(__name__)

MetricFn = Callable[[torch.Tensor, torch.Tensor], float]
LossFn = Callable[..., torch.Tensor]
Regularizer = Callable[[nn.Module], torch.Tensor]


# ---------------------------------------------------------------------------
# Early stopping helper
# ---------------------------------------------------------------------------


@dataclass
class EarlyStopping:
    """Early stopping on a validation metric.

    Parameters
    ----------
    monitor:
        Name of the metric being monitored (e.g., "val_loss").
    mode:
        "min" -> lower is better, "max" -> higher is better.
    patience:
        Evaluations without improvement before training stops
        (the ConvergenceSteps of a training strategy).
    min_delta:
        Minimum absolute change to qualify as an improvement.
    """

    monitor: str = "val_loss"
    mode: str = "min"
    patience: int = 5
    min_delta: float = 0.0

    best_score: Optional[float] = None
    num_bad_epochs: int = 0
    should_stop: bool = False

    def __post_init__(self) -> None:
        mode_lower = self.mode.lower()
        if mode_lower not in {"min", "max"}:
            raise TrainingError(
                f"Invalid mode for EarlyStopping: {self.mode!r}. Must be 'min' or 'max'.",
                code="early_stopping_bad_mode",
                context={"mode": self.mode},
                location="rnn_classification.torch.training.loops.EarlyStopping.__post_init__",
            )
        self.mode = mode_lower

    @property
    def improved(self) -> bool:
        """True if the most recent step set a new best score."""
        return self.best_score is not None and self.num_bad_epochs == 0

    def _is_improvement(self, current: float, best: float) -> bool:
        if self.mode == "min":
            return (best - current) > self.min_delta
        return (current - best) > self.min_delta

    def step(self, metrics: Mapping[str, float]) -> None:
        """Update the state with metrics from the latest evaluation."""
        if self.monitor not in metrics:
            raise TrainingError(
                f"Metric '{self.monitor}' not found in metrics dict.",
                code="early_stopping_missing_metric",
                context={"available_metrics": list(metrics.keys())},
                location="rnn_classification.torch.training.loops.EarlyStopping.step",
            )

        current = float(metrics[self.monitor])

        if self.best_score is None or self._is_improvement(current, self.best_score):
            self.best_score = current
            self.num_bad_epochs = 0
            logger.debug("EarlyStopping: new best %s=%.6f", self.monitor, current)
            return

        self.num_bad_epochs += 1
        logger.info(
            "EarlyStopping: no improvement on %s (current=%.6f, best=%.6f). "
            "num_bad_epochs=%d/%d",
            self.monitor,
            current,
            self.best_score,
            self.num_bad_epochs,
            self.patience,
        )
        if self.num_bad_epochs >= self.patience:
            self.should_stop = True


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _move_batch_to_device(
    batch: Any,
    device: torch.device,
) -> Tuple[torch.Tensor, torch.Tensor, Optional[torch.Tensor]]:
    """Move an ``(x, y)`` or ``(x, y, w)`` batch to ``device``."""
    if not isinstance(batch, (list, tuple)) or len(batch) not in (2, 3):
        raise TrainingError(
            "Expected batch to be (inputs, targets) or (inputs, targets, weights).",
            code="batch_bad_structure",
            context={"len_batch": len(batch) if isinstance(batch, (list, tuple)) else None},
            location="rnn_classification.torch.training.loops._move_batch_to_device",
        )

    x, y = batch[0].to(device), batch[1].to(device)
    w = batch[2].to(device) if len(batch) == 3 else None
    return x, y, w


def _compute_loss(
    loss_fn: LossFn, preds: torch.Tensor, y: torch.Tensor, w: Optional[torch.Tensor]
) -> torch.Tensor:
    return loss_fn(preds, y) if w is None else loss_fn(preds, y, w)


def _update_metric_accumulators(
    metric_fns: Mapping[str, MetricFn],
    accumulators: MutableMapping[str, float],
    counts: MutableMapping[str, int],
    y_true: torch.Tensor,
    y_pred: torch.Tensor,
) -> None:
    """Running sums of per-batch metrics, weighted by batch size."""
    batch_size = int(y_true.shape[0])
    y_true_cpu = y_true.detach().cpu()
    y_pred_cpu = y_pred.detach().cpu()

    for name, fn in metric_fns.items():
        try:
            value = float(fn(y_true_cpu, y_pred_cpu))
        except Exception as exc:
            raise TrainingError(
                f"Error while computing metric '{name}'.",
                code="metric_computation_error",
                cause=exc,
                context={"metric_name": name},
                location="rnn_classification.torch.training.loops._update_metric_accumulators",
            ) from exc

        accumulators[name] = accumulators.get(name, 0.0) + value * batch_size
        counts[name] = counts.get(name, 0) + batch_size


def _finalize_metrics(
    loss_sum: float,
    weight_sum: float,
    metric_accumulators: Mapping[str, float],
    metric_counts: Mapping[str, int],
) -> Dict[str, float]:
    if weight_sum <= 0:
        raise TrainingError(
            "No samples were seen during the loop. "
            "Check that your DataLoader is not empty.",
            code="no_samples_seen",
            context={},
            location="rnn_classification.torch.training.loops._finalize_metrics",
        )

    results: Dict[str, float] = {"loss": loss_sum / weight_sum}
    for name, total in metric_accumulators.items():
        count = metric_counts.get(name, 0)
        if count:
            results[name] = total / count
    return results


def binary_accuracy(y_true: torch.Tensor, logits: torch.Tensor) -> float:
    """Fraction of events on the right side of logit 0 (probability 0.5)."""
    return float(((logits > 0).float() == y_true).float().mean().item())


# ---------------------------------------------------------------------------
# Public training/evaluation loops
# ---------------------------------------------------------------------------


def train_one_epoch(
    model: nn.Module,
    dataloader: DataLoader,
    optimizer: torch.optim.Optimizer,
    loss_fn: LossFn,
    device: torch.device,
    *,
    metrics: Optional[Mapping[str, MetricFn]] = None,
    regularizer: Optional[Regularizer] = None,
    log_interval: Optional[int] = None,
) -> Dict[str, float]:
    """Run a single training epoch.

    Batches are ``(x, y)`` or ``(x, y, w)``; with weights the loss is called
    as ``loss_fn(preds, y, w)`` and the epoch loss is the weight-averaged
    batch loss. ``regularizer(model)`` is added to the optimised loss but
    not to the reported one.

    Returns a dict with "loss" and any metric names, averaged over the epoch.
    """
    model.train()

    metric_fns = metrics or {}
    loss_sum = 0.0
    weight_sum = 0.0
    metric_accumulators: Dict[str, float] = {}
    metric_counts: Dict[str, int] = {}

    for batch_idx, batch in enumerate(dataloader, start=1):
        x, y, w = _move_batch_to_device(batch, device)

        optimizer.zero_grad(set_to_none=True)
        preds = model(x)
        loss = _compute_loss(loss_fn, preds, y, w)

        if not torch.isfinite(loss):
            raise TrainingError(
                "Non-finite loss encountered during training.",
                code="non_finite_loss",
                context={"loss": float(loss.detach().cpu().item()), "batch": batch_idx},
                location="rnn_classification.torch.training.loops.train_one_epoch",
            )

        objective = loss + regularizer(model) if regularizer is not None else loss
        objective.backward()
        optimizer.step()

        batch_weight = float(w.sum().item()) if w is not None else float(x.shape[0])
        loss_sum += float(loss.detach().cpu().item()) * batch_weight
        weight_sum += batch_weight

        if metric_fns:
            _update_metric_accumulators(metric_fns, metric_accumulators, metric_counts, y, preds)

        if log_interval is not None and batch_idx % log_interval == 0:
            logger.info("Train batch %d: loss=%.6f", batch_idx, float(loss.detach().cpu().item()))

    return _finalize_metrics(loss_sum, weight_sum, metric_accumulators, metric_counts)


def evaluate(
    model: nn.Module,
    dataloader: DataLoader,
    loss_fn: LossFn,
    device: torch.device,
    *,
    metrics: Optional[Mapping[str, MetricFn]] = None,
) -> Dict[str, float]:
    """Evaluate a model on a validation/test DataLoader (weighted like training)."""
    model.eval()

    metric_fns = metrics or {}
    loss_sum = 0.0
    weight_sum = 0.0
    metric_accumulators: Dict[str, float] = {}
    metric_counts: Dict[str, int] = {}

    with torch.no_grad():
        for batch in dataloader:
            x, y, w = _move_batch_to_device(batch, device)
            preds = model(x)
            loss = _compute_loss(loss_fn, preds, y, w)

            batch_weight = float(w.sum().item()) if w is not None else float(x.shape[0])
            loss_sum += float(loss.detach().cpu().item()) * batch_weight
            weight_sum += batch_weight

            if metric_fns:
                _update_metric_accumulators(metric_fns, metric_accumulators, metric_counts, y, preds)

    return _finalize_metrics(loss_sum, weight_sum, metric_accumulators, metric_counts)


# ---------------------------------------------------------------------------
# High-level fit loop
# ---------------------------------------------------------------------------


def fit(
    model: nn.Module,
    train_loader: DataLoader,
    val_loader: Optional[DataLoader],
    optimizer: torch.optim.Optimizer,
    loss_fn: LossFn,
    device: torch.device,
    *,
    num_epochs: int,
    metrics: Optional[Mapping[str, MetricFn]] = None,
    regularizer: Optional[Regularizer] = None,
    repetitions: int = 1,
    eval_every: int = 1,
    log_interval: Optional[int] = None,
    early_stopping: Optional[EarlyStopping] = None,
    restore_best_weights: bool = False,
    use_mlflow: bool = True,
    mlflow_prefix: str = "",
    epoch_offset: int = 0,
    cfg: Optional[AppConfig] = None,
) -> Dict[str, List[float]]:
    """Train for up to ``num_epochs`` epochs with validation and early stopping.

    Parameters
    ----------
    repetitions:
        Passes over the training data per epoch.
    eval_every:
        Validate every this many epochs (and always on the last one). Early
        stopping counts evaluations, not epochs.
    restore_best_weights:
        When validating, reload the weights of the best validation loss
        before returning.
    mlflow_prefix, epoch_offset:
        Prefix for metric names and offset for the step index, so several
        methods and training phases can share one MLflow run.

    Returns
    -------
    history:
        ``epoch`` and ``train_<metric>`` lists, one entry per epoch, plus
        ``val_epoch`` and ``val_<metric>`` lists, one entry per evaluation.
    """
    if num_epochs <= 0:
        raise TrainingError(
            "num_epochs must be a positive integer.",
            code="fit_bad_num_epochs",
            context={"num_epochs": num_epochs},
            location="rnn_classification.torch.training.loops.fit",
        )
    if repetitions <= 0 or eval_every <= 0:
        raise TrainingError(
            "repetitions and eval_every must be positive integers.",
            code="fit_bad_schedule",
            context={"repetitions": repetitions, "eval_every": eval_every},
            location="rnn_classification.torch.training.loops.fit",
        )

    model.to(device)
    history: Dict[str, List[float]] = {"epoch": []}
    best_state: Optional[Dict[str, torch.Tensor]] = None
    best_val: Optional[float] = None

    mlflow_enabled = use_mlflow and mlflow_is_enabled(cfg)

    for epoch in range(1, num_epochs + 1):
        for _ in range(repetitions):
            train_metrics = train_one_epoch(
                model=model,
                dataloader=train_loader,
                optimizer=optimizer,
                loss_fn=loss_fn,
                device=device,
                metrics=metrics,
                regularizer=regularizer,
                log_interval=log_interval,
            )

        epoch_summary: Dict[str, float] = {f"train_{k}": float(v) for k, v in train_metrics.items()}
        history["epoch"].append(float(epoch + epoch_offset))
        for key, value in epoch_summary.items():
            history.setdefault(key, []).append(value)

        validate = val_loader is not None and (epoch % eval_every == 0 or epoch == num_epochs)
        if validate:
            assert val_loader is not None
            val_metrics = evaluate(
                model=model,
                dataloader=val_loader,
                loss_fn=loss_fn,
                device=device,
                metrics=metrics,
            )
            history.setdefault("val_epoch", []).append(float(epoch + epoch_offset))
            for name, value in val_metrics.items():
                epoch_summary[f"val_{name}"] = float(value)
                history.setdefault(f"val_{name}", []).append(float(value))

            if best_val is None or val_metrics["loss"] < best_val:
                best_val = val_metrics["loss"]
                if restore_best_weights:
                    best_state = copy.deepcopy(model.state_dict())

        logger.info(
            "Epoch %d/%d: %s",
            epoch,
            num_epochs,
            {k: round(v, 6) for k, v in epoch_summary.items()},
        )

        if mlflow_enabled:
            mlflow_log_metrics(
                {f"{mlflow_prefix}{k}": v for k, v in epoch_summary.items()},
                step=epoch + epoch_offset,
                cfg=cfg,
            )

        if early_stopping is not None and validate:
            early_stopping.step(epoch_summary)
            if early_stopping.should_stop:
                logger.info(
                    "Early stopping triggered at epoch %d (best %s=%.6f).",
                    epoch,
                    early_stopping.monitor,
                    early_stopping.best_score,
                )
                break

    if best_state is not None:
        model.load_state_dict(best_state)
        logger.info("Restored weights with best val_loss=%.6f", best_val)

    return history
