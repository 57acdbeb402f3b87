from __future__ import annotations

import logging
import random
from pathlib import Path
from typing import Any, Dict, Generator, Tuple

import numpy as np
import pandas as pd
import pytest
import torch
import yaml

from rnn_classification.config import load_config
from rnn_classification.data.event_loader import EventLoader
from rnn_classification.data.generator import generate_events
from rnn_classification.data.loading import events_to_frame
from rnn_classification.logging_config import PACKAGE_LOGGER

# Tiny sizes so every model trains in well under a second.
N_EVENTS = 60
NTIME = 4
NDIM = 6


# ---------------------------------------------------------------------------
# Global test seed
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _set_test_seed() -> Generator[None, None, None]:
    """Set a deterministic random seed for every test.

    This keeps small numeric tests (loss going down, etc.) more stable. If a
    test needs its own custom seed, it can override inside the test.
    """
    seed = 1234
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(seed)
    yield


@pytest.fixture(autouse=True)
def _isolated_config_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's RNN_CLASSIFICATION_* variables out of the tests."""
    for key in ("RNN_CLASSIFICATION_CONFIG_PATH", "RNN_CLASSIFICATION_ENV"):
        monkeypatch.delenv(key, raising=False)


# ---------------------------------------------------------------------------
# In-memory events
# ---------------------------------------------------------------------------


@pytest.fixture
def small_events() -> Tuple[np.ndarray, np.ndarray]:
    """(signal, background) with shape (N_EVENTS, NTIME, NDIM).

    Few draws and little noise so the two classes are easy to tell apart.
    """
    rng = np.random.default_rng(7)
    return generate_events(N_EVENTS, NTIME, NDIM, n_draws=200, noise_std=1.0, rng=rng)


@pytest.fixture
def small_trees(small_events: Tuple[np.ndarray, np.ndarray]) -> Dict[str, pd.DataFrame]:
    signal, background = small_events
    return {
        "sgn": events_to_frame(signal, "sgn").drop(columns=["tree"]),
        "bkg": events_to_frame(background, "bkg").drop(columns=["tree"]),
    }


@pytest.fixture
def small_loader(small_trees: Dict[str, pd.DataFrame]) -> EventLoader:
    """A loader with NTIME arrays of width NDIM and both trees attached (not split yet)."""
    loader = EventLoader("dataset")
    for i in range(NTIME):
        loader.add_variables_array(f"vars_time{i}", NDIM)
    loader.add_signal_tree(small_trees["sgn"])
    loader.add_background_tree(small_trees["bkg"])
    return loader


@pytest.fixture
def prepared_loader(small_loader: EventLoader) -> EventLoader:
    small_loader.prepare_training_and_test_tree(
        "nTrain_Signal=40:nTrain_Background=40:SplitMode=Random:SplitSeed=100:NormMode=NumEvents:!V"
    )
    return small_loader


# ---------------------------------------------------------------------------
# Temporary YAML configs that match the library's expectations
# ---------------------------------------------------------------------------


def small_config_dict(base_dir: Path) -> Dict[str, Any]:
    return {
        "env": "dev",
        "experiment_name": "test_rnn",
        "log_level": "INFO",
        "paths": {
            "base_dir": str(base_dir),
            "data_dir": "data",
            "output_dir": "outputs",
            "dataset_name": "dataset",
        },
        "data": {
            "n_events": N_EVENTS,
            "ntime": NTIME,
            "ndim": NDIM,
            "n_draws": 200,
            "noise_std": 1.0,
            "seed": 11,
        },
        "network": {"rnn_units": 4, "dense_units": 8},
        "training": {
            "batch_size": 16,
            "max_epochs": 2,
            "convergence_steps": 2,
            "learning_rate": 0.01,
        },
        "runtime": {"num_threads": 1, "device": "cpu"},
        "methods": {"use_type": 1},
        "mlflow": {"enabled": False},
    }


@pytest.fixture
def small_config_path(tmp_path: Path) -> Path:
    """Write a small but complete config YAML under tmp_path and return its path.

      paths:    base_dir=<tmp_path>, data/ and outputs/ below it
      data:     60 events per class, 4 time steps of width 6
      training: batch 16, 2 epochs
      methods:  LSTM only
    """
    config_path = tmp_path / "rnn_config.yaml"
    config_path.write_text(
        yaml.safe_dump(small_config_dict(tmp_path), sort_keys=False), encoding="utf-8"
    )
    return config_path


@pytest.fixture
def small_config(small_config_path: Path):
    return load_config(small_config_path)


# ---------------------------------------------------------------------------
# Log capture
# ---------------------------------------------------------------------------


@pytest.fixture
def package_caplog(caplog: pytest.LogCaptureFixture) -> Generator[pytest.LogCaptureFixture, None, None]:
    """caplog that also sees records of the non-propagating package logger."""
    package = logging.getLogger(PACKAGE_LOGGER)
    package.addHandler(caplog.handler)
    try:
        yield caplog
    finally:
        package.removeHandler(caplog.handler)
