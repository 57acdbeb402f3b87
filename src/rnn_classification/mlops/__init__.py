"""
Experiment-tracking helpers for rnn_classification.

MLflow is optional: every helper is a no-op when tracking is disabled in the
config, so training code can call them unconditionally. With tracking
enabled, a missing mlflow package is reported as a PipelineError.
"""

from __future__ import annotations

__all__: list[str] = []
