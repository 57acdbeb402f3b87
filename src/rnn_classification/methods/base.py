from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from rnn_classification.config import AppConfig
from rnn_classification.data.event_loader import PreparedDataset
from rnn_classification.exceptions import ModelError


class Method(ABC):
    """A booked classifier: configured from an option string, trained on a
    prepared dataset and asked for signal probabilities afterwards."""

    method_type: str = ""
    weights_suffix: str = ".weights.pt"

    def __init__(
        self,
        name: str,
        options: str,
        dataset: PreparedDataset,
        *,
        job_name: str = "TMVAClassification",
        cfg: Optional[AppConfig] = None,
    ) -> None:
        self.name = name
        self.option_string = options
        self.dataset = dataset
        self.job_name = job_name
        self.cfg = cfg
        self.history: Dict[str, List[float]] = {}
        self.is_trained = False
        self.training_time: float = 0.0

    @abstractmethod
    def train(self) -> None:
        ...

    @abstractmethod
    def predict_proba(self, x: np.ndarray) -> np.ndarray:
        """Signal probability for each event in ``x`` (n, ntime, ndim)."""

    @abstractmethod
    def _save(self, path: Path) -> None:
        ...

    def weights_path(self, weights_dir: Path | str) -> Path:
        return Path(weights_dir) / f"{self.job_name}_{self.name}{self.weights_suffix}"

    def save_weights(self, weights_dir: Path | str) -> Path:
        self._require_trained("save_weights")
        path = self.weights_path(weights_dir)
        path.parent.mkdir(parents=True, exist_ok=True)
        self._save(path)
        return path

    def _require_trained(self, action: str) -> None:
        if not self.is_trained:
            raise ModelError(
                f"Method '{self.name}' must be trained before {action}.",
                code="method_not_trained",
                context={"method": self.name, "action": action},
                location=f"{type(self).__module__}.{type(self).__name__}.{action}",
            )

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.method_type,
            "options": self.option_string,
            "trained": self.is_trained,
            "training_time_s": round(self.training_time, 3),
        }
