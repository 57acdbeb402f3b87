from __future__ import annotations

import os
from typing import Generator

import numpy as np
import pytest
import torch

from rnn_classification.runtime import (
    architecture_for,
    configure_threads,
    device_for_architecture,
    select_device,
    set_global_seed,
)


@pytest.fixture
def _restore_threads(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    before = torch.get_num_threads()
    monkeypatch.delenv("OMP_NUM_THREADS", raising=False)
    yield
    torch.set_num_threads(before)


@pytest.mark.usefixtures("_restore_threads")
def test_positive_thread_count_is_used_and_exported() -> None:
    assert configure_threads(2) == 2
    assert os.environ["OMP_NUM_THREADS"] == "2"


@pytest.mark.usefixtures("_restore_threads")
def test_negative_thread_count_means_single_threaded() -> None:
    assert configure_threads(-1) == 1
    assert os.environ["OMP_NUM_THREADS"] == "1"


@pytest.mark.usefixtures("_restore_threads")
def test_zero_uses_every_core() -> None:
    assert configure_threads(0) == torch.get_num_threads()
    assert "OMP_NUM_THREADS" not in os.environ


def test_select_device_cpu() -> None:
    device = select_device("CPU")
    assert device.type == "cpu"
    assert architecture_for(device) == "CPU"


@pytest.mark.skipif(torch.cuda.is_available(), reason="checks the no-GPU fallback")
def test_missing_gpu_falls_back_to_cpu() -> None:
    assert select_device("cuda").type == "cpu"
    assert device_for_architecture("GPU").type == "cpu"


def test_architecture_round_trip() -> None:
    assert architecture_for(torch.device("cuda")) == "GPU"
    assert device_for_architecture("cpu") == torch.device("cpu")


def test_set_global_seed_is_reproducible() -> None:
    set_global_seed(5)
    a = (np.random.rand(), torch.rand(1).item())
    set_global_seed(5)
    b = (np.random.rand(), torch.rand(1).item())

    assert a == b
