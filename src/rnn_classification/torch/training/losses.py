from __future__ import annotations

from typing import Callable, Optional

import torch
from torch import Tensor, nn
import torch.nn.functional as F

from rnn_classification.exceptions import TrainingError


def _weighted_mean(per_event: Tensor, weights: Optional[Tensor]) -> Tensor:
    if weights is None:
        return per_event.mean()
    total = weights.sum()
    if total <= 0:
        raise TrainingError(
            "Batch weights must sum to a positive value.",
            code="loss_bad_weights",
            context={"weight_sum": float(total.detach().cpu().item())},
            location="rnn_classification.torch.training.losses._weighted_mean",
        )
    return (per_event * weights).sum() / total


class WeightedBCEWithLogitsLoss(nn.Module):
    """Cross entropy on logits, averaged with per-event weights (CROSSENTROPY)."""

    def forward(self, logits: Tensor, targets: Tensor, weights: Optional[Tensor] = None) -> Tensor:
        per_event = F.binary_cross_entropy_with_logits(logits, targets, reduction="none")
        return _weighted_mean(per_event, weights)


class WeightedMSELoss(nn.Module):
    """Squared error between sigmoid(logits) and the label (SUMOFSQUARES)."""

    def forward(self, logits: Tensor, targets: Tensor, weights: Optional[Tensor] = None) -> Tensor:
        per_event = (torch.sigmoid(logits) - targets) ** 2
        return _weighted_mean(per_event, weights)


def loss_for_error_strategy(error_strategy: str) -> nn.Module:
    name = error_strategy.upper()
    if name == "CROSSENTROPY":
        return WeightedBCEWithLogitsLoss()
    if name == "SUMOFSQUARES":
        return WeightedMSELoss()
    raise TrainingError(
        f"Unsupported error strategy: {error_strategy!r}",
        code="loss_bad_error_strategy",
        context={"error_strategy": error_strategy},
        location="rnn_classification.torch.training.losses.loss_for_error_strategy",
    )


def l1_penalty(strength: float) -> Callable[[nn.Module], Tensor]:
    """Return ``model -> strength * sum(|w|)`` over weight matrices (biases excluded)."""

    def _penalty(model: nn.Module) -> Tensor:
        terms = [p.abs().sum() for name, p in model.named_parameters() if "bias" not in name]
        if not terms:
            return torch.zeros(())
        return strength * torch.stack(terms).sum()

    return _penalty
