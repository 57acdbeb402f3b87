from __future__ import annotations

import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest

from rnn_classification.config import AppConfig, MlflowConfig
from rnn_classification.exceptions import PipelineError
from rnn_classification.mlops import mlflow_utils
from rnn_classification.mlops.mlflow_utils import (
    log_artifact,
    log_metrics,
    log_params,
    mlflow_is_enabled,
    mlflow_run,
)


def _cfg(**mlflow: Any) -> AppConfig:
    return AppConfig(mlflow=MlflowConfig(**mlflow))


class _FakeMlflow:
    """Records calls the way the real module would receive them."""

    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self._active = None

    def active_run(self):
        return self._active

    def set_tracking_uri(self, uri: str) -> None:
        self.calls.append(("set_tracking_uri", uri))

    def set_experiment(self, name: str) -> None:
        self.calls.append(("set_experiment", name))

    def set_tags(self, tags: Dict[str, str]) -> None:
        self.calls.append(("set_tags", tags))

    def start_run(self, run_name=None):
        fake = self

        class _Run:
            def __enter__(self):
                fake._active = SimpleNamespace(run_name=run_name)
                fake.calls.append(("start_run", run_name))
                return fake._active

            def __exit__(self, *exc):
                fake._active = None
                return False

        return _Run()

    def log_params(self, params):
        self.calls.append(("log_params", params))

    def log_metrics(self, metrics, step=None):
        self.calls.append(("log_metrics", metrics, step))

    def log_artifact(self, local_path, artifact_path=None):
        self.calls.append(("log_artifact", local_path, artifact_path))


@pytest.fixture
def fake_mlflow(monkeypatch: pytest.MonkeyPatch) -> _FakeMlflow:
    fake = _FakeMlflow()
    monkeypatch.setattr(mlflow_utils, "_import_mlflow", lambda: fake)
    return fake


# ---------------------------------------------------------------------------
# Disabled tracking (works regardless of mlflow installation)
# ---------------------------------------------------------------------------


def test_mlflow_is_enabled_reflects_config() -> None:
    assert mlflow_is_enabled(_cfg(enabled=True)) is True
    assert mlflow_is_enabled(_cfg(enabled=False)) is False


def test_mlflow_run_disabled_is_noop() -> None:
    with mlflow_run(_cfg(enabled=False), run_name="dummy-run") as run:
        assert run is None


def test_log_helpers_disabled_do_not_raise(tmp_path: Path) -> None:
    cfg = _cfg(enabled=False)
    dummy = tmp_path / "dummy.txt"
    dummy.write_text("hello", encoding="utf-8")

    log_params({"a": 1, "b": "two"}, cfg=cfg)
    log_metrics({"loss": 0.123}, step=5, cfg=cfg)
    log_artifact(dummy, cfg=cfg)


def test_missing_mlflow_package_is_a_pipeline_error(monkeypatch: pytest.MonkeyPatch) -> None:
    # A None entry makes ``import mlflow`` raise ImportError.
    monkeypatch.setitem(sys.modules, "mlflow", None)

    with pytest.raises(PipelineError) as ctx:
        with mlflow_run(_cfg(enabled=True)):
            pass
    assert ctx.value.code == "mlflow_not_installed"


# ---------------------------------------------------------------------------
# Enabled tracking against a recording stand-in
# ---------------------------------------------------------------------------


def test_mlflow_run_sets_uri_experiment_and_tags(fake_mlflow: _FakeMlflow) -> None:
    cfg = _cfg(enabled=True, tracking_uri="file:./mlruns", experiment_name="rnn")

    with mlflow_run(cfg, run_name="TMVA_LSTM", tags={"purpose": "unit-test"}) as mlflow:
        assert mlflow is fake_mlflow
        assert fake_mlflow.active_run() is not None

    assert fake_mlflow.active_run() is None
    assert fake_mlflow.calls[:4] == [
        ("set_tracking_uri", "file:./mlruns"),
        ("set_experiment", "rnn"),
        ("start_run", "TMVA_LSTM"),
        ("set_tags", {"purpose": "unit-test"}),
    ]


def test_experiment_defaults_to_the_experiment_name(fake_mlflow: _FakeMlflow) -> None:
    cfg = AppConfig(experiment_name="TMVAClassification", mlflow=MlflowConfig(enabled=True))

    with mlflow_run(cfg):
        pass

    assert ("set_experiment", "TMVAClassification") in fake_mlflow.calls


def test_log_helpers_delegate_inside_a_run(fake_mlflow: _FakeMlflow, tmp_path: Path) -> None:
    cfg = _cfg(enabled=True)
    artifact = tmp_path / "roc.png"
    artifact.write_bytes(b"png")

    with mlflow_run(cfg):
        log_params({"lr": 0.001, "layout": ("LSTM", 10)}, prefix="TMVA_LSTM.", cfg=cfg)
        log_metrics({"roc_auc": 0.9}, step=3, cfg=cfg)
        log_artifact(artifact, artifact_path="plots", cfg=cfg)

    assert ("log_params", {"TMVA_LSTM.lr": 0.001, "TMVA_LSTM.layout": "('LSTM', 10)"}) in (
        fake_mlflow.calls
    )
    assert ("log_metrics", {"roc_auc": 0.9}, 3) in fake_mlflow.calls
    assert ("log_artifact", str(artifact.resolve()), "plots") in fake_mlflow.calls


def test_log_params_can_flatten_nested_mappings(fake_mlflow: _FakeMlflow) -> None:
    cfg = _cfg(enabled=True)

    with mlflow_run(cfg):
        log_params({"training": {"max_epochs": 20}}, flatten=True, cfg=cfg)

    assert ("log_params", {"training.max_epochs": 20}) in fake_mlflow.calls


def test_log_calls_outside_a_run_are_skipped(fake_mlflow: _FakeMlflow) -> None:
    log_metrics({"loss": 1.0}, cfg=_cfg(enabled=True))

    assert not any(call[0] == "log_metrics" for call in fake_mlflow.calls)


def test_missing_artifact_raises(fake_mlflow: _FakeMlflow, tmp_path: Path) -> None:
    cfg = _cfg(enabled=True)

    with pytest.raises(PipelineError) as ctx:
        with mlflow_run(cfg):
            log_artifact(tmp_path / "nope.png", cfg=cfg)
    assert ctx.value.code == "mlflow_artifact_missing"


def test_artifact_logging_can_be_switched_off(fake_mlflow: _FakeMlflow, tmp_path: Path) -> None:
    cfg = _cfg(enabled=True, log_artifacts=False)

    with mlflow_run(cfg):
        log_artifact(tmp_path / "never_checked.png", cfg=cfg)

    assert not any(call[0] == "log_artifact" for call in fake_mlflow.calls)


# ---------------------------------------------------------------------------
# Real mlflow, when installed
# ---------------------------------------------------------------------------


def test_real_mlflow_run_starts_and_ends(tmp_path: Path) -> None:
    mlflow = pytest.importorskip("mlflow")
    cfg = _cfg(enabled=True, tracking_uri=tmp_path.as_uri(), experiment_name="test-experiment")

    with mlflow_run(cfg, run_name="test-run") as active:
        assert active is mlflow
        assert mlflow.active_run() is not None
        log_params({"alpha": 0.1}, cfg=cfg)
        log_metrics({"loss": 1.23}, step=1, cfg=cfg)

    assert mlflow.active_run() is None
