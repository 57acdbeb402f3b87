"""
Dataset definitions for PyTorch-based training.

- sequence: EventSequenceDataset yielding (x, y, weight) per event.
"""

from __future__ import annotations

__all__: list[str] = []
