"""
Evaluation helpers: ROC curves, signal efficiencies, separation and plots.
"""

from __future__ import annotations

__all__: list[str] = []
