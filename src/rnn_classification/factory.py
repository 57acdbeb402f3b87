"""Booking, training, testing and evaluation of classifier methods.

The Factory owns every booked method, runs them over the prepared
datasets and collects the results into one output file::

    factory = Factory("TMVAClassification", "data_RNN_CPU.pt",
                      "!V:!Silent:Color:DrawProgressBar:Transformations=None:"
                      "!Correlations:AnalysisType=Classification:ModelPersistence")
    factory.book_method(loader, "DL", "TMVA_LSTM", options)
    factory.train_all_methods()
    factory.test_all_methods()
    factory.evaluate_all_methods()
    fig = factory.get_roc_curve(loader)
    factory.close()
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Union

import numpy as np
import pandas as pd
import torch
from matplotlib.figure import Figure

from rnn_classification.config import AppConfig
from rnn_classification.data.event_loader import EventLoader
from rnn_classification.evaluation.metrics import (
    ClassifierSummary,
    ranking_frame,
    summarize_classifier,
)
from rnn_classification.evaluation.plots import plot_multi_roc
from rnn_classification.exceptions import AppError, ConfigError, DataError, ModelError
from rnn_classification.logging_config import get_logger, method_context
from rnn_classification.methods import METHOD_TYPES, Method, MethodDL
from rnn_classification.options import FactoryOptions

logger = get_logger(__name__)

_LOCATION = "rnn_classification.factory"


@contextmanager
def _running_method(name: str, action: str) -> Iterator[None]:
    """Log under method ``name`` and attribute escaping errors to it."""
    with method_context(name):
        try:
            yield
        except AppError as exc:
            exc.for_method(name)
            raise
        except Exception as exc:
            raise ModelError.from_exception(
                exc,
                message=f"{action.capitalize()} of method {name} failed: {exc}",
                code=f"method_{action}_failed",
                location=f"{_LOCATION}.Factory.{action}_all_methods",
                method=name,
            ) from exc


@dataclass
class TestResult:
    scores: np.ndarray
    labels: np.ndarray
    weights: np.ndarray


@dataclass
class BookedMethod:
    method: Method
    dataset_name: str
    weights_file: Optional[Path] = None
    test: Optional[TestResult] = None
    evaluation: Optional[ClassifierSummary] = None


class Factory:
    def __init__(
        self,
        job_name: str,
        output_file: Union[str, Path, None],
        options: Union[str, FactoryOptions] = "",
        *,
        cfg: Optional[AppConfig] = None,
        weights_root: Union[str, Path, None] = None,
        device: Optional[torch.device] = None,
        use_mlflow: bool = True,
    ) -> None:
        self.job_name = job_name
        self.output_file = Path(output_file) if output_file is not None else None
        self.options = (
            options if isinstance(options, FactoryOptions) else FactoryOptions.from_string(options)
        )
        self.cfg = cfg
        if weights_root is not None:
            self.weights_root = Path(weights_root)
        elif self.output_file is not None:
            self.weights_root = self.output_file.parent
        else:
            self.weights_root = Path(".")
        self.device = device
        self.use_mlflow = use_mlflow
        self._booked: Dict[str, BookedMethod] = {}
        self._closed = False

        if self.options.transformations.lower() not in {"none", "i", ""}:
            logger.warning(
                "Transformations=%s requested; inputs are used untransformed.",
                self.options.transformations,
            )
        self._info("Factory '%s' created (output: %s)", job_name, self.output_file)

    def _info(self, msg: str, *args: Any) -> None:
        if self.options.silent:
            logger.debug(msg, *args)
        else:
            logger.info(msg, *args)

    def __enter__(self) -> Factory:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()

    # ------------------------------------------------------------------
    # Booking
    # ------------------------------------------------------------------

    @property
    def methods(self) -> Dict[str, Method]:
        return {name: booked.method for name, booked in self._booked.items()}

    def book_method(
        self,
        loader: EventLoader,
        method_type: str,
        method_name: str,
        options: str,
    ) -> Method:
        if loader.prepared is None:
            raise DataError(
                "The loader has no prepared dataset; call prepare_training_and_test_tree() first.",
                code="data_not_prepared",
                context={"loader": loader.name, "method": method_name},
                location=f"{_LOCATION}.Factory.book_method",
            )
        if method_name in self._booked:
            raise ConfigError(
                f"A method named '{method_name}' is already booked.",
                code="factory_duplicate_method",
                context={"method": method_name, "booked": list(self._booked)},
                location=f"{_LOCATION}.Factory.book_method",
            )
        method_cls = METHOD_TYPES.get(method_type.upper())
        if method_cls is None:
            raise ConfigError(
                f"Unknown method type {method_type!r}.",
                code="factory_unknown_method_type",
                context={"method_type": method_type, "supported": list(METHOD_TYPES)},
                location=f"{_LOCATION}.Factory.book_method",
            )

        kwargs: Dict[str, Any] = {"job_name": self.job_name, "cfg": self.cfg}
        if method_cls is MethodDL:
            kwargs.update(device=self.device, use_mlflow=self.use_mlflow)
        method = method_cls(method_name, options, loader.prepared, **kwargs)

        self._booked[method_name] = BookedMethod(method=method, dataset_name=loader.name)
        self._info("Booked method %s (%s)", method_name, method.method_type)
        if self.options.verbose:
            logger.info("%s options: %s", method_name, options)
        return method

    def _require_methods(self, action: str) -> None:
        if not self._booked:
            raise ModelError(
                f"No methods booked; nothing to {action}.",
                code="factory_no_methods",
                location=f"{_LOCATION}.Factory.{action}",
            )

    # ------------------------------------------------------------------
    # Train / test / evaluate
    # ------------------------------------------------------------------

    def train_all_methods(self) -> None:
        self._require_methods("train")
        for name, booked in self._booked.items():
            with _running_method(name, "train"):
                self._info("Train method: %s for Classification", name)
                booked.method.train()
                if self.options.model_persistence:
                    booked.weights_file = booked.method.save_weights(
                        self.weights_root / booked.dataset_name / "weights"
                    )

    def test_all_methods(self) -> None:
        self._require_methods("test")
        for name, booked in self._booked.items():
            test = booked.method.dataset.test
            with _running_method(name, "test"):
                self._info("Test method: %s on %d events", name, len(test))
                booked.test = TestResult(
                    scores=booked.method.predict_proba(test.x),
                    labels=test.y.astype(np.int64),
                    weights=test.weights.astype(np.float64),
                )

    def evaluate_all_methods(self) -> pd.DataFrame:
        """Compute figures of merit on the test sample and log the ranking."""
        self._require_methods("evaluate")
        untested = [name for name, booked in self._booked.items() if booked.test is None]
        if untested:
            raise ModelError(
                "Methods must be tested before they are evaluated.",
                code="factory_not_tested",
                context={"untested": untested},
                location=f"{_LOCATION}.Factory.evaluate_all_methods",
            )

        tests = {name: booked.test for name, booked in self._booked.items()}
        summaries: Dict[str, ClassifierSummary] = {}
        for name, test in tests.items():
            assert test is not None
            summaries[name] = summarize_classifier(
                test.labels, test.scores, sample_weight=test.weights
            )
            self._booked[name].evaluation = summaries[name]

        ranking = ranking_frame(summaries)
        self._info("Evaluation results ranked by ROC integral:\n%s", ranking.to_string(index=False))

        if self.options.correlations and len(tests) > 1:
            scores = pd.DataFrame({name: test.scores for name, test in tests.items() if test})
            self._info("Correlation between method scores (test sample):\n%s", scores.corr().round(3))

        return ranking

    def get_roc_curve(
        self, loader: EventLoader, *, savepath: Union[str, Path, None] = None
    ) -> Figure:
        """Background rejection vs signal efficiency for every method on ``loader``."""
        curves = {
            name: (booked.test.labels, booked.test.scores, booked.test.weights)
            for name, booked in self._booked.items()
            if booked.dataset_name == loader.name and booked.test is not None
        }
        if not curves:
            raise ModelError(
                f"No tested methods for dataset '{loader.name}'.",
                code="factory_no_results",
                context={"dataset": loader.name, "booked": list(self._booked)},
                location=f"{_LOCATION}.Factory.get_roc_curve",
            )
        return plot_multi_roc(
            curves,
            title=f"ROC curves for {loader.name}",
            savepath=savepath,
        )

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def results(self) -> Dict[str, Dict[str, Any]]:
        out: Dict[str, Dict[str, Any]] = {}
        for name, booked in self._booked.items():
            entry: Dict[str, Any] = {
                **booked.method.describe(),
                "dataset": booked.dataset_name,
                "history": booked.method.history,
                "weights_file": str(booked.weights_file) if booked.weights_file else None,
            }
            if booked.test is not None:
                entry["test"] = {
                    "scores": booked.test.scores,
                    "labels": booked.test.labels,
                    "weights": booked.test.weights,
                }
            if booked.evaluation is not None:
                entry["evaluation"] = booked.evaluation.as_dict()
            out[name] = entry
        return out

    def close(self) -> Optional[Path]:
        """Write the output file (once) and return its path."""
        if self._closed:
            return self.output_file
        self._closed = True
        if self.output_file is None:
            return None

        self.output_file.parent.mkdir(parents=True, exist_ok=True)
        torch.save(
            {
                "job_name": self.job_name,
                "factory_options": asdict(self.options),
                "methods": _tensorize(self.results()),
            },
            self.output_file,
        )
        self._info("Wrote results of %d methods to %s", len(self._booked), self.output_file)
        return self.output_file


def _tensorize(value: Any) -> Any:
    """Numpy arrays to tensors so the output file loads with ``weights_only=True``."""
    if isinstance(value, np.ndarray):
        return torch.from_numpy(np.ascontiguousarray(value))
    if isinstance(value, dict):
        return {k: _tensorize(v) for k, v in value.items()}
    return value
