"""Process-level runtime knobs: thread pool, device and seeds."""

from __future__ import annotations

import os
import random

import numpy as np
import torch

from rnn_classification.logging_config import get_logger

logger = get_logger(__name__)


def configure_threads(num_threads: int = 0) -> int:
    """Size torch's intra-op thread pool and the OpenMP thread count.

    num_threads:
        0  -> multi-threading enabled, using every available core.
        >0 -> multi-threading with exactly that many threads; OMP_NUM_THREADS
              is exported with the same value.
        <0 -> single-threaded; OMP_NUM_THREADS=1.

    Returns the resulting thread-pool size.
    """
    if num_threads >= 0:
        if num_threads > 0:
            os.environ["OMP_NUM_THREADS"] = str(num_threads)
            torch.set_num_threads(num_threads)
        else:
            torch.set_num_threads(os.cpu_count() or 1)
    else:
        os.environ["OMP_NUM_THREADS"] = "1"
        torch.set_num_threads(1)

    pool_size = torch.get_num_threads()
    logger.info("Running with nthreads  = %d", pool_size)
    return pool_size


def select_device(device_arg: str = "auto") -> torch.device:
    device_arg = device_arg.lower()
    if device_arg == "cpu":
        return torch.device("cpu")
    if device_arg == "cuda":
        if torch.cuda.is_available():
            return torch.device("cuda")
        logger.warning("--device cuda requested but no CUDA available; falling back to CPU.")
        return torch.device("cpu")

    return torch.device("cuda" if torch.cuda.is_available() else "cpu")


def architecture_for(device: torch.device) -> str:
    """Map a torch device onto the "GPU"/"CPU" architecture tag."""
    return "GPU" if device.type == "cuda" else "CPU"


def device_for_architecture(architecture: str) -> torch.device:
    """Inverse of :func:`architecture_for`; a missing GPU falls back to CPU."""
    if architecture.upper() == "GPU":
        return select_device("cuda")
    return torch.device("cpu")


def set_global_seed(seed: int) -> None:
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(seed)
