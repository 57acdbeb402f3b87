"""
Neural network architectures.

- recurrent: RecurrentClassifier assembled from a parsed layer layout.
"""

from __future__ import annotations

__all__: list[str] = []
