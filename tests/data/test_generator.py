from __future__ import annotations

from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
import pytest  # noqa: E402

from rnn_classification.data.generator import (  # noqa: E402
    bin_probabilities,
    generate_events,
    make_time_data,
    sample_time_histograms,
    time_data_filename,
    time_step_parameters,
)
from rnn_classification.data.loading import read_event_trees  # noqa: E402
from rnn_classification.exceptions import DataError  # noqa: E402


def test_time_step_parameters_follow_sine_and_cosine() -> None:
    params = time_step_parameters(10)

    assert params.signal_mean.shape == (10,)
    # At t=0 the sine term vanishes and the cosine term is maximal.
    assert params.signal_mean[0] == pytest.approx(5.0)
    assert params.signal_sigma[0] == pytest.approx(4.0)
    assert params.background_mean[0] == pytest.approx(5.2)
    assert params.background_sigma[0] == pytest.approx(4.3)


def test_bin_probabilities_are_normalised_inside_the_range() -> None:
    probs = bin_probabilities(5.0, 4.0, 30)

    assert probs.shape == (30,)
    assert probs.sum() == pytest.approx(1.0)
    assert np.all(probs > 0)
    # Symmetric around the centre of [0, 10]
    np.testing.assert_allclose(probs, probs[::-1], rtol=1e-10)


def test_bin_probabilities_without_mass_raise() -> None:
    with pytest.raises(DataError) as ctx:
        bin_probabilities(1e6, 1e-3, 10)
    assert ctx.value.code == "data_empty_histogram_range"


def test_generate_events_shapes_and_statistics() -> None:
    rng = np.random.default_rng(0)
    signal, background = generate_events(50, 3, 8, n_draws=400, noise_std=0.0, rng=rng)

    assert signal.shape == (50, 3, 8)
    assert background.shape == (50, 3, 8)
    assert signal.dtype == np.float32

    # Without noise every time step holds exactly n_draws entries.
    np.testing.assert_allclose(signal.sum(axis=2), 400.0)
    np.testing.assert_allclose(background.sum(axis=2), 400.0)


def test_generate_events_is_reproducible_with_a_seeded_rng() -> None:
    a = generate_events(5, 2, 4, n_draws=50, rng=np.random.default_rng(3))
    b = generate_events(5, 2, 4, n_draws=50, rng=np.random.default_rng(3))

    np.testing.assert_array_equal(a[0], b[0])
    np.testing.assert_array_equal(a[1], b[1])


@pytest.mark.parametrize("kwargs", [{"n_events": 0}, {"ntime": 0}, {"ndim": -1}, {"n_draws": 0}])
def test_generate_events_rejects_non_positive_sizes(kwargs: dict) -> None:
    args = {"n_events": 2, "ntime": 2, "ndim": 2, "n_draws": 10}
    args.update(kwargs)
    n_draws = args.pop("n_draws")

    with pytest.raises(DataError) as ctx:
        generate_events(**args, n_draws=n_draws)
    assert ctx.value.code == "data_invalid_size"


def test_sample_time_histograms_counts() -> None:
    sig, bkg = sample_time_histograms(4, 10, n_draws=100, rng=np.random.default_rng(1))

    assert sig.shape == (4, 10)
    assert bkg.shape == (4, 10)
    assert np.all(sig.sum(axis=1) == 100)


def test_time_data_filename() -> None:
    assert time_data_filename(10, 30) == "time_data_t10_d30.parquet"
    assert time_data_filename(5, 8, "csv") == "time_data_t5_d8.csv"


@pytest.mark.parametrize("fmt", ["parquet", "csv"])
def test_make_time_data_writes_both_trees(tmp_path: Path, fmt: str) -> None:
    path = make_time_data(20, 3, 5, output_dir=tmp_path, n_draws=50, seed=2, fmt=fmt)

    assert path == tmp_path / f"time_data_t3_d5.{fmt}"
    assert path.exists()

    trees = read_event_trees(path)
    assert set(trees) == {"sgn", "bkg"}
    assert len(trees["sgn"]) == 20
    assert len(trees["bkg"]) == 20
    assert "vars_time2[4]" in trees["sgn"].columns


def test_make_time_data_single_event_returns_histograms(tmp_path: Path) -> None:
    sig_hist, bkg_hist = make_time_data(1, 3, 5, output_dir=tmp_path, n_draws=50, seed=2)

    assert sig_hist.shape == (3, 5)
    assert bkg_hist.shape == (3, 5)
    assert np.all(sig_hist.sum(axis=1) == 50)
    assert np.all(bkg_hist.sum(axis=1) == 50)
    assert list(tmp_path.iterdir()) == []


def test_make_time_data_single_event_saves_and_closes_the_plot(tmp_path: Path) -> None:
    plot = tmp_path / "hist.png"
    open_before = len(plt.get_fignums())

    sig_hist, _ = make_time_data(1, 3, 5, output_dir=tmp_path, n_draws=50, seed=2, plot_path=plot)

    assert sig_hist.shape == (3, 5)
    assert plot.exists()
    assert len(plt.get_fignums()) == open_before
    assert not (tmp_path / "time_data_t3_d5.parquet").exists()
