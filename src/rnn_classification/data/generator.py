from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

import matplotlib.pyplot as plt
import numpy as np
from scipy.stats import norm

from rnn_classification.data.loading import write_event_file
from rnn_classification.exceptions import DataError
from rnn_classification.logging_config import get_logger

logger = get_logger(__name__)

_LOCATION = "rnn_classification.data.generator"

PROGRESS_EVERY = 1000


# ---------------------------------------------------------------------------
# Per-time-step distribution parameters
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TimeStepParameters:
    """Gaussian mean/width per time step for both classes.

    Each array has shape (ntime,). Signal follows a sine modulation and
    background a cosine modulation of the same amplitude.
    """

    signal_mean: np.ndarray
    signal_sigma: np.ndarray
    background_mean: np.ndarray
    background_sigma: np.ndarray


def time_step_parameters(ntime: int) -> TimeStepParameters:
    phase = np.pi * np.arange(ntime, dtype=float) / float(ntime)
    return TimeStepParameters(
        signal_mean=5.0 + 0.2 * np.sin(phase),
        signal_sigma=4.0 + 0.3 * np.sin(phase),
        background_mean=5.0 + 0.2 * np.cos(phase),
        background_sigma=4.0 + 0.3 * np.cos(phase),
    )


def bin_probabilities(
    mean: float,
    sigma: float,
    nbins: int,
    hist_range: Tuple[float, float] = (0.0, 10.0),
) -> np.ndarray:
    """Probability of each histogram bin under a Gaussian truncated to hist_range.

    The Gaussian is integrated over every bin and renormalised so that all
    draws land inside the histogram (no under/overflow).
    """
    edges = np.linspace(hist_range[0], hist_range[1], nbins + 1)
    cdf = norm.cdf(edges, loc=mean, scale=sigma)
    probs = np.diff(cdf)
    total = probs.sum()
    if total <= 0:
        raise DataError(
            "Gaussian has no probability mass inside the histogram range.",
            code="data_empty_histogram_range",
            context={"mean": mean, "sigma": sigma, "hist_range": list(hist_range)},
            location=f"{_LOCATION}.bin_probabilities",
        )
    return probs / total


# ---------------------------------------------------------------------------
# In-memory generation
# ---------------------------------------------------------------------------


def _validate_sizes(n_events: int, ntime: int, ndim: int, n_draws: int) -> None:
    for name, value in (
        ("n_events", n_events),
        ("ntime", ntime),
        ("ndim", ndim),
        ("n_draws", n_draws),
    ):
        if value < 1:
            raise DataError(
                f"{name} must be a positive integer, got {value}.",
                code="data_invalid_size",
                context={name: value},
                location=f"{_LOCATION}._validate_sizes",
            )


def generate_events(
    n_events: int,
    ntime: int,
    ndim: int,
    *,
    n_draws: int = 1000,
    noise_std: float = 10.0,
    hist_range: Tuple[float, float] = (0.0, 10.0),
    rng: Optional[np.random.Generator] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """Generate the toy signal and background events in memory.

    For every event and time step, ``n_draws`` Gaussian draws are binned into
    an ``ndim``-bin histogram over ``hist_range``; the bin counts plus
    independent N(0, noise_std) noise form that step's feature vector.

    Returns
    -------
    (signal, background)
        float32 arrays of shape (n_events, ntime, ndim).
    """
    _validate_sizes(n_events, ntime, ndim, n_draws)
    rng = rng if rng is not None else np.random.default_rng()

    params = time_step_parameters(ntime)
    sig_probs = np.stack(
        [
            bin_probabilities(params.signal_mean[j], params.signal_sigma[j], ndim, hist_range)
            for j in range(ntime)
        ]
    )
    bkg_probs = np.stack(
        [
            bin_probabilities(
                params.background_mean[j], params.background_sigma[j], ndim, hist_range
            )
            for j in range(ntime)
        ]
    )

    signal = np.empty((n_events, ntime, ndim), dtype=np.float32)
    background = np.empty((n_events, ntime, ndim), dtype=np.float32)

    for start in range(0, n_events, PROGRESS_EVERY):
        logger.info("Generating  event ... %d", start)
        stop = min(start + PROGRESS_EVERY, n_events)
        chunk = stop - start

        for j in range(ntime):
            sig_counts = rng.multinomial(n_draws, sig_probs[j], size=chunk)
            bkg_counts = rng.multinomial(n_draws, bkg_probs[j], size=chunk)
            signal[start:stop, j, :] = sig_counts + rng.normal(0.0, noise_std, size=(chunk, ndim))
            background[start:stop, j, :] = bkg_counts + rng.normal(
                0.0, noise_std, size=(chunk, ndim)
            )

    return signal, background


def sample_time_histograms(
    ntime: int,
    ndim: int,
    *,
    n_draws: int = 1000,
    hist_range: Tuple[float, float] = (0.0, 10.0),
    rng: Optional[np.random.Generator] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """Fill one noiseless histogram per time step and class.

    Returns integer count arrays of shape (ntime, ndim) for signal and
    background; useful for eyeballing the per-step shapes.
    """
    _validate_sizes(1, ntime, ndim, n_draws)
    rng = rng if rng is not None else np.random.default_rng()
    params = time_step_parameters(ntime)

    sig = np.stack(
        [
            rng.multinomial(
                n_draws,
                bin_probabilities(params.signal_mean[j], params.signal_sigma[j], ndim, hist_range),
            )
            for j in range(ntime)
        ]
    )
    bkg = np.stack(
        [
            rng.multinomial(
                n_draws,
                bin_probabilities(
                    params.background_mean[j], params.background_sigma[j], ndim, hist_range
                ),
            )
            for j in range(ntime)
        ]
    )
    return sig, bkg


# ---------------------------------------------------------------------------
# Persisted dataset
# ---------------------------------------------------------------------------


def time_data_filename(ntime: int, ndim: int, fmt: str = "parquet") -> str:
    return f"time_data_t{ntime}_d{ndim}.{fmt}"


def make_time_data(
    n_events: int,
    ntime: int,
    ndim: int,
    *,
    output_dir: Path | str = ".",
    n_draws: int = 1000,
    noise_std: float = 10.0,
    hist_range: Tuple[float, float] = (0.0, 10.0),
    seed: Optional[int] = None,
    fmt: str = "parquet",
    plot_path: Path | str | None = None,
) -> Union[Path, Tuple[np.ndarray, np.ndarray]]:
    """Generate the toy dataset and write it to ``time_data_t{ntime}_d{ndim}.<fmt>``.

    With ``n_events == 1`` nothing is written. The per-time-step histograms
    of a single event are returned as ``(signal_hist, background_hist)``,
    each of shape (ntime, ndim), and drawn to ``plot_path`` when it is given.

    Parameters
    ----------
    seed:
        Seed for numpy's Generator. None draws fresh OS entropy, so repeated
        runs give different datasets.
    """
    _validate_sizes(n_events, ntime, ndim, n_draws)
    rng = np.random.default_rng(seed)

    if n_events == 1:
        from rnn_classification.evaluation.plots import plot_time_histograms

        sig_hist, bkg_hist = sample_time_histograms(
            ntime, ndim, n_draws=n_draws, hist_range=hist_range, rng=rng
        )
        if plot_path is not None:
            fig = plot_time_histograms(
                sig_hist, bkg_hist, hist_range=hist_range, savepath=plot_path
            )
            plt.close(fig)
            logger.info("Saved per-time-step histograms to %s", plot_path)
        return sig_hist, bkg_hist

    signal, background = generate_events(
        n_events,
        ntime,
        ndim,
        n_draws=n_draws,
        noise_std=noise_std,
        hist_range=hist_range,
        rng=rng,
    )

    out_dir = Path(output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / time_data_filename(ntime, ndim, fmt)

    write_event_file(path, signal, background, fmt=fmt)
    logger.info(
        "Wrote %d signal and %d background events (ntime=%d, ndim=%d) to %s",
        signal.shape[0],
        background.shape[0],
        ntime,
        ndim,
        path,
    )
    return path
