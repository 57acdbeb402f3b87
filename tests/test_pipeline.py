from __future__ import annotations

from pathlib import Path

import pytest
import torch
import yaml

from rnn_classification.config import load_config
from rnn_classification.exceptions import DataError, InputFileError
from rnn_classification.options import MethodOptions, SplitOptions
from rnn_classification.pipeline import (
    build_event_loader,
    method_option_strings,
    output_file_name,
    run_classification,
    split_options_from_config,
    training_strategy_from_config,
)
from tests.conftest import N_EVENTS, NDIM, NTIME, small_config_dict


def _config_with(tmp_path: Path, **sections):
    data = small_config_dict(tmp_path)
    for key, value in sections.items():
        data[key] = {**data.get(key, {}), **value}
    path = tmp_path / "cfg.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return load_config(path)


# ---------------------------------------------------------------------------
# Option assembly
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "use_type, expected",
    [
        (0, ["TMVA_RNN"]),
        (1, ["TMVA_LSTM"]),
        (2, ["TMVA_GRU"]),
        (3, ["TMVA_RNN", "TMVA_LSTM", "TMVA_GRU"]),
        (-1, ["TMVA_RNN", "TMVA_LSTM", "TMVA_GRU"]),
    ],
)
def test_use_type_selects_recurrent_methods(small_config, use_type: int, expected: list) -> None:
    assert list(method_option_strings(small_config, use_type)) == expected


def test_config_use_type_is_the_default(small_config) -> None:
    assert list(method_option_strings(small_config)) == ["TMVA_LSTM"]


def test_optional_baselines_are_booked(tmp_path: Path) -> None:
    cfg = _config_with(tmp_path, methods={"use_type": 2, "use_dnn": True, "use_bdt": True})

    booked = method_option_strings(cfg)

    assert list(booked) == ["TMVA_GRU", "TMVA_DNN", "BDTG"]
    assert booked["BDTG"][0] == "BDT"
    assert "NTrees=100" in booked["BDTG"][1]
    dnn = MethodOptions.from_string(booked["TMVA_DNN"][1])
    assert dnn.layout[0].to_string() == "RESHAPE|FLAT"


def test_method_options_follow_the_config(small_config) -> None:
    booked = method_option_strings(small_config, architecture="GPU")
    method_type, text = booked["TMVA_LSTM"]
    opts = MethodOptions.from_string(text)

    assert method_type == "DL"
    assert opts.architecture == "GPU"
    assert opts.input_layout.ntime == NTIME
    assert opts.input_layout.ndim == NDIM
    assert opts.layout[0].units == 4
    assert opts.training_strategies[0] == training_strategy_from_config(small_config)
    assert opts.training_strategies[0].batch_size == 16


def test_split_options_from_config(small_config) -> None:
    split = split_options_from_config(small_config)

    assert isinstance(split, SplitOptions)
    assert split.n_train_signal == int(0.8 * N_EVENTS)
    assert split.n_train_background == split.n_train_signal
    assert split.split_mode == "RANDOM"
    assert split.norm_mode == "NUMEVENTS"


@pytest.mark.parametrize("arch, name", [("CPU", "data_RNN_CPU.pt"), ("gpu", "data_RNN_GPU.pt")])
def test_output_file_name(arch: str, name: str) -> None:
    assert output_file_name(arch) == name


# ---------------------------------------------------------------------------
# Input handling
# ---------------------------------------------------------------------------


def test_corrupt_input_file_is_reported(small_config) -> None:
    data_dir = small_config.resolved_paths().data_dir
    data_dir.mkdir(parents=True, exist_ok=True)
    (data_dir / small_config.data.file_name).write_bytes(b"garbage")

    with pytest.raises(DataError) as ctx:
        run_classification(small_config, use_mlflow=False)
    assert ctx.value.code == "data_load_error"
    assert isinstance(ctx.value, InputFileError)
    assert ctx.value.path.name == small_config.data.file_name


def test_build_event_loader_declares_one_array_per_step(small_config, tmp_path: Path) -> None:
    from rnn_classification.data.generator import make_time_data

    path = make_time_data(N_EVENTS, NTIME, NDIM, output_dir=tmp_path / "in", n_draws=50, seed=1)

    loader = build_event_loader(small_config, path)

    assert [a.name for a in loader.arrays] == [f"vars_time{i}" for i in range(NTIME)]
    assert loader.input_layout.ndim == NDIM


# ---------------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------------


def test_run_classification_end_to_end(small_config) -> None:
    result = run_classification(small_config, use_mlflow=False)
    paths = small_config.resolved_paths()

    # The input file is generated on first use.
    assert (paths.data_dir / "time_data_t4_d6.parquet").exists()

    assert result.architecture == "CPU"
    assert result.num_threads == 1
    assert result.methods == ["TMVA_LSTM"]
    assert result.output_file == paths.output_dir / "data_RNN_CPU.pt"
    assert result.output_file.exists()
    assert result.roc_plot is not None and result.roc_plot.exists()
    assert result.ranking["method"].tolist() == ["TMVA_LSTM"]

    weights = result.weights_files["TMVA_LSTM"]
    assert weights is not None and weights.exists()
    assert weights.parent == paths.output_dir / "dataset" / "weights"

    payload = torch.load(result.output_file, weights_only=True)
    assert payload["job_name"] == "test_rnn"
    assert set(payload["methods"]) == {"TMVA_LSTM"}


def test_run_reuses_an_existing_input_file(small_config) -> None:
    run_classification(small_config, use_mlflow=False)
    input_file = small_config.resolved_paths().data_dir / small_config.data.file_name
    mtime = input_file.stat().st_mtime_ns

    result = run_classification(small_config, use_type=0, use_mlflow=False)

    assert input_file.stat().st_mtime_ns == mtime
    assert result.methods == ["TMVA_RNN"]


def test_run_without_output_file(tmp_path: Path) -> None:
    data = small_config_dict(tmp_path)
    data["write_output_file"] = False
    path = tmp_path / "cfg.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")

    result = run_classification(load_config(path), use_type=2, use_mlflow=False)

    assert result.output_file is None
    assert result.roc_plot is None
    assert not (tmp_path / "outputs" / "data_RNN_CPU.pt").exists()


def test_run_logs_split_and_method_parameters(
    small_config, monkeypatch: pytest.MonkeyPatch
) -> None:
    import rnn_classification.pipeline as pipeline

    logged: dict = {}
    monkeypatch.setattr(pipeline, "log_params", lambda params, cfg=None: logged.update(params))

    run_classification(small_config, use_mlflow=False)

    assert logged["split.n_train_signal"] == int(0.8 * N_EVENTS)
    assert logged["split.split_mode"] == "RANDOM"
    assert logged["split.norm_mode"] == "NUMEVENTS"
    assert "Layout=LSTM|4|6|4|0|1" in logged["TMVA_LSTM.options"]
