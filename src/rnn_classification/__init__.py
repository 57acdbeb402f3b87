"""
rnn_classification: signal/background classification of time-series events
with recurrent networks (RNN, LSTM, GRU) built on PyTorch.

The public API covers the pieces a run is assembled from:

    from rnn_classification import (
        get_config,
        load_config,
        EventLoader,
        Factory,
        make_time_data,
        run_classification,
    )
"""

from __future__ import annotations

from importlib import metadata as _metadata

# ---------------------------------------------------------------------------
# Version
# ---------------------------------------------------------------------------

try:
    __version__ = _metadata.version("rnn-classification")
except _metadata.PackageNotFoundError:
    # Running from a source checkout without installation
    __version__ = "0.0.0"

# ---------------------------------------------------------------------------
# Public API re-exports
# ---------------------------------------------------------------------------

from .config import AppConfig, get_config, get_paths, load_config  # noqa: E402,F401
from .exceptions import (  # noqa: E402,F401
    AppError,
    ConfigError,
    DataError,
    ModelError,
    PipelineError,
    TrainingError,
)
from .logging_config import get_logger  # noqa: E402,F401

from .data.event_loader import EventLoader  # noqa: E402,F401
from .data.generator import make_time_data  # noqa: E402,F401
from .factory import Factory  # noqa: E402,F401
from .pipeline import ClassificationResult, run_classification  # noqa: E402,F401
from .torch.models.recurrent import RecurrentClassifier  # noqa: E402,F401

__all__ = [
    "__version__",
    # Config
    "AppConfig",
    "get_config",
    "get_paths",
    "load_config",
    # Logging
    "get_logger",
    # Exceptions
    "AppError",
    "ConfigError",
    "DataError",
    "ModelError",
    "PipelineError",
    "TrainingError",
    # Data
    "EventLoader",
    "make_time_data",
    # Classification
    "Factory",
    "RecurrentClassifier",
    "ClassificationResult",
    "run_classification",
]
