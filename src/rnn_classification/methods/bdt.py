from __future__ import annotations

import time
from pathlib import Path
from typing import Optional

import joblib
import numpy as np
from sklearn.ensemble import GradientBoostingClassifier

from rnn_classification.config import AppConfig
from rnn_classification.data.event_loader import PreparedDataset
from rnn_classification.logging_config import get_logger
from rnn_classification.methods.base import Method
from rnn_classification.options import BDTOptions

logger = get_logger(__name__)


def _flatten(x: np.ndarray) -> np.ndarray:
    return np.asarray(x, dtype=np.float32).reshape(len(x), -1)


class MethodBDT(Method):
    """Gradient-boosted decision trees on the flattened event.

    Options: NTrees, MaxDepth, Shrinkage, MinNodeSize (percent of the
    training sample per leaf), UseBaggedBoost and BaggedSampleFraction.
    nCuts is accepted for compatibility; split points come from the
    estimator's exact search.
    """

    method_type = "BDT"
    weights_suffix = ".weights.joblib"

    def __init__(
        self,
        name: str,
        options: str,
        dataset: PreparedDataset,
        *,
        job_name: str = "TMVAClassification",
        cfg: Optional[AppConfig] = None,
    ) -> None:
        super().__init__(name, options, dataset, job_name=job_name, cfg=cfg)
        self.options = BDTOptions.from_string(options)
        self.estimator = GradientBoostingClassifier(
            n_estimators=self.options.n_trees,
            learning_rate=self.options.shrinkage,
            max_depth=self.options.max_depth,
            min_samples_leaf=self.options.min_node_size,
            subsample=(
                self.options.bagged_sample_fraction if self.options.use_bagged_boost else 1.0
            ),
            random_state=self.options.random_seed,
        )

    def train(self) -> None:
        train = self.dataset.train
        start = time.perf_counter()
        logger.info(
            "%s: fitting %d trees (max_depth=%d) on %d events",
            self.name,
            self.options.n_trees,
            self.options.max_depth,
            len(train),
        )
        self.estimator.fit(_flatten(train.x), train.y.astype(int), sample_weight=train.weights)
        self.history = {"train_loss": [float(v) for v in self.estimator.train_score_]}
        self.training_time = time.perf_counter() - start
        self.is_trained = True
        logger.info("%s: training finished in %.1f s", self.name, self.training_time)

    def predict_proba(self, x: np.ndarray) -> np.ndarray:
        self._require_trained("predict_proba")
        return self.estimator.predict_proba(_flatten(x))[:, 1].astype(np.float64)

    def _save(self, path: Path) -> None:
        joblib.dump(
            {"method": self.name, "options": self.option_string, "estimator": self.estimator},
            path,
        )
        logger.info("Saved %s weights to %s", self.name, path)
