"""
PyTorch-related components for rnn_classification.

Subpackages:

- datasets: Dataset wrapping prepared event samples.
- models: the layout-driven recurrent classifier.
- training: training loops, weighted losses and early stopping.

In most cases you will import from the subpackages directly:

    from rnn_classification.torch.models import recurrent
    from rnn_classification.torch.training import loops
"""

from __future__ import annotations

__all__: list[str] = []
