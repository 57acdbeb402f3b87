"""
Training loops and utilities for rnn_classification.

Typical contents:

- train_one_epoch: single-epoch weighted training loop.
- evaluate: evaluation loop over a DataLoader.
- fit: multi-epoch training with early stopping and optional MLflow logging.
- losses: per-event weighted loss functions.

Import from the module directly, e.g.:

    from rnn_classification.torch.training.loops import fit, EarlyStopping
"""

from __future__ import annotations

__all__: list[str] = []
