from __future__ import annotations

import math
from typing import Any, Dict

import numpy as np
import pytest
import torch
import torch.nn as nn

from rnn_classification.data.event_loader import EventLoader
from rnn_classification.methods import deep_learning
from rnn_classification.methods.deep_learning import MethodDL, build_optimizer
from rnn_classification.options import TrainingStrategy, build_rnn_options
from rnn_classification.torch.training.losses import WeightedMSELoss

from tests.conftest import NDIM, NTIME


def _strategy(**kwargs: Any) -> TrainingStrategy:
    params: Dict[str, Any] = {
        "batch_size": 16,
        "max_epochs": 2,
        "convergence_steps": 2,
        "learning_rate": 0.01,
    }
    params.update(kwargs)
    return TrainingStrategy(**params)


def _method(prepared_loader: EventLoader, options: str) -> MethodDL:
    return MethodDL(
        "TMVA_LSTM",
        options,
        prepared_loader.prepared,
        device=torch.device("cpu"),
        use_mlflow=False,
    )


# ---------------------------------------------------------------------------
# Optimizer construction
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "name, cls",
    [
        ("ADAM", torch.optim.Adam),
        ("SGD", torch.optim.SGD),
        ("RMSPROP", torch.optim.RMSprop),
        ("ADAGRAD", torch.optim.Adagrad),
        ("ADADELTA", torch.optim.Adadelta),
    ],
)
def test_l2_regularization_becomes_weight_decay(name: str, cls: type) -> None:
    model = nn.Linear(3, 1)
    strategy = _strategy(optimizer=name, regularization="L2", weight_decay=0.05, learning_rate=0.2)

    optimizer = build_optimizer(model, strategy)
    group = optimizer.param_groups[0]

    assert isinstance(optimizer, cls)
    assert group["weight_decay"] == pytest.approx(0.05)
    assert group["lr"] == pytest.approx(0.2)


@pytest.mark.parametrize("regularization", ["None", "L1"])
@pytest.mark.parametrize("name", ["ADAM", "SGD", "RMSPROP", "ADAGRAD", "ADADELTA"])
def test_other_regularizations_turn_weight_decay_off(name: str, regularization: str) -> None:
    strategy = _strategy(optimizer=name, regularization=regularization, weight_decay=0.05)

    optimizer = build_optimizer(nn.Linear(3, 1), strategy)

    assert optimizer.param_groups[0]["weight_decay"] == 0.0


@pytest.mark.parametrize("name", ["SGD", "RMSPROP"])
def test_momentum_reaches_the_optimizer(name: str) -> None:
    strategy = _strategy(optimizer=name, momentum=0.9)

    optimizer = build_optimizer(nn.Linear(3, 1), strategy)

    assert optimizer.param_groups[0]["momentum"] == pytest.approx(0.9)


# ---------------------------------------------------------------------------
# Training runs with non-default strategies
# ---------------------------------------------------------------------------


def test_l1_regularization_adds_a_penalty_to_training(
    prepared_loader: EventLoader, monkeypatch: pytest.MonkeyPatch
) -> None:
    seen: Dict[str, Any] = {}
    real_fit = deep_learning.fit

    def _recording_fit(**kwargs: Any) -> Dict[str, list]:
        seen.update(kwargs)
        return real_fit(**kwargs)

    monkeypatch.setattr(deep_learning, "fit", _recording_fit)

    options = build_rnn_options(
        "LSTM",
        NTIME,
        NDIM,
        _strategy(regularization="L1", weight_decay=0.01),
        units=4,
        dense_units=8,
    )
    method = _method(prepared_loader, options)
    method.train()

    assert seen["optimizer"].param_groups[0]["weight_decay"] == 0.0
    penalty = seen["regularizer"](method.model)
    assert float(penalty) > 0.0
    assert method.is_trained
    assert all(math.isfinite(v) for v in method.history["train_loss"])


def test_sum_of_squares_error_strategy_trains(prepared_loader: EventLoader) -> None:
    options = build_rnn_options(
        "GRU",
        NTIME,
        NDIM,
        _strategy(),
        units=4,
        dense_units=8,
        error_strategy="SUMOFSQUARES",
    )
    method = _method(prepared_loader, options)

    assert isinstance(method.loss_fn, WeightedMSELoss)

    method.train()
    probs = method.predict_proba(prepared_loader.prepared.test.x)

    assert method.history["train_loss"]
    # Sigmoid outputs against 0/1 labels keep the squared error below 1.
    assert all(0.0 <= v < 1.0 for v in method.history["train_loss"])
    assert probs.shape == (len(prepared_loader.prepared.test),)
    assert np.all((probs >= 0.0) & (probs <= 1.0))
