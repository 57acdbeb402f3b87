from __future__ import annotations

import time
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import torch
from torch import nn
from torch.utils.data import DataLoader

from rnn_classification.config import AppConfig
from rnn_classification.data.event_loader import PreparedDataset
from rnn_classification.exceptions import ConfigError
from rnn_classification.logging_config import get_logger
from rnn_classification.methods.base import Method
from rnn_classification.options import MethodOptions, TrainingStrategy
from rnn_classification.runtime import device_for_architecture
from rnn_classification.torch.datasets.sequence import EventSequenceDataset
from rnn_classification.torch.models.recurrent import RecurrentClassifier
from rnn_classification.torch.training.loops import EarlyStopping, binary_accuracy, fit
from rnn_classification.torch.training.losses import l1_penalty, loss_for_error_strategy

logger = get_logger(__name__)

_LOCATION = "rnn_classification.methods.deep_learning"


def build_optimizer(model: nn.Module, strategy: TrainingStrategy) -> torch.optim.Optimizer:
    """Optimizer for one training strategy. Only L2 regularization uses weight decay."""
    weight_decay = strategy.weight_decay if strategy.regularization == "L2" else 0.0
    params = model.parameters()
    lr = strategy.learning_rate

    if strategy.optimizer == "ADAM":
        return torch.optim.Adam(params, lr=lr, weight_decay=weight_decay)
    if strategy.optimizer == "SGD":
        return torch.optim.SGD(params, lr=lr, momentum=strategy.momentum, weight_decay=weight_decay)
    if strategy.optimizer == "RMSPROP":
        return torch.optim.RMSprop(
            params, lr=lr, momentum=strategy.momentum, weight_decay=weight_decay
        )
    if strategy.optimizer == "ADAGRAD":
        return torch.optim.Adagrad(params, lr=lr, weight_decay=weight_decay)
    if strategy.optimizer == "ADADELTA":
        return torch.optim.Adadelta(params, lr=lr, weight_decay=weight_decay)

    raise ConfigError(
        f"Unsupported optimizer: {strategy.optimizer!r}",
        code="strategy_bad_optimizer",
        context={"optimizer": strategy.optimizer},
        location=f"{_LOCATION}.build_optimizer",
    )


class MethodDL(Method):
    """Deep-learning method (recurrent or dense) trained with PyTorch.

    Training carves ``ValidationSize`` events out of the training sample
    (shuffled with ``RandomSeed``), then runs every training strategy in
    order. Each strategy stops after ``ConvergenceSteps`` evaluations
    without a lower validation loss and leaves the best weights loaded.
    """

    method_type = "DL"

    def __init__(
        self,
        name: str,
        options: str,
        dataset: PreparedDataset,
        *,
        job_name: str = "TMVAClassification",
        cfg: Optional[AppConfig] = None,
        device: Optional[torch.device] = None,
        use_mlflow: bool = True,
    ) -> None:
        super().__init__(name, options, dataset, job_name=job_name, cfg=cfg)
        self.options = MethodOptions.from_string(options)

        if self.options.input_layout != dataset.input_layout:
            raise ConfigError(
                "InputLayout does not match the declared variables.",
                code="method_input_layout_mismatch",
                context={
                    "method": name,
                    "input_layout": self.options.input_layout.to_string(),
                    "dataset_layout": dataset.input_layout.to_string(),
                },
                location=f"{_LOCATION}.MethodDL.__init__",
            )

        self.device = device or device_for_architecture(self.options.architecture)
        self.use_mlflow = use_mlflow
        self.model = RecurrentClassifier.from_options(self.options).to(self.device)
        self.loss_fn = loss_for_error_strategy(self.options.error_strategy)

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def _validation_split(self) -> tuple[EventSequenceDataset, EventSequenceDataset]:
        train = self.dataset.train
        n_val = self.options.validation_count(len(train))
        perm = np.random.default_rng(self.options.random_seed).permutation(len(train))
        val_idx, fit_idx = np.sort(perm[:n_val]), np.sort(perm[n_val:])
        logger.info(
            "%s: %d training and %d validation events", self.name, len(fit_idx), len(val_idx)
        )
        return (
            EventSequenceDataset(train.subset(fit_idx)),
            EventSequenceDataset(train.subset(val_idx)),
        )

    def train(self) -> None:
        train_ds, val_ds = self._validation_split()
        generator = torch.Generator().manual_seed(self.options.random_seed)
        history: Dict[str, List[float]] = {}
        epoch_offset = 0
        start = time.perf_counter()

        for phase, strategy in enumerate(self.options.training_strategies, start=1):
            logger.info(
                "%s: training phase %d/%d (%s, lr=%g, batch=%d, max_epochs=%d)",
                self.name,
                phase,
                len(self.options.training_strategies),
                strategy.optimizer,
                strategy.learning_rate,
                strategy.batch_size,
                strategy.max_epochs,
            )
            if strategy.batch_size > len(train_ds):
                raise ConfigError(
                    "BatchSize is larger than the number of training events.",
                    code="strategy_batch_too_large",
                    context={"batch_size": strategy.batch_size, "n_train": len(train_ds)},
                    location=f"{_LOCATION}.MethodDL.train",
                )

            self.model.set_dropout(strategy.drop_config)
            self.model.reset_state()
            pin_memory = self.device.type == "cuda"
            train_loader = DataLoader(
                train_ds,
                batch_size=strategy.batch_size,
                shuffle=True,
                generator=generator,
                pin_memory=pin_memory,
            )
            val_loader = DataLoader(
                val_ds, batch_size=strategy.batch_size, shuffle=False, pin_memory=pin_memory
            )

            phase_history = fit(
                model=self.model,
                train_loader=train_loader,
                val_loader=val_loader,
                optimizer=build_optimizer(self.model, strategy),
                loss_fn=self.loss_fn,
                device=self.device,
                num_epochs=strategy.max_epochs,
                metrics={"accuracy": binary_accuracy},
                regularizer=(
                    l1_penalty(strategy.weight_decay) if strategy.regularization == "L1" else None
                ),
                repetitions=strategy.repetitions,
                eval_every=strategy.test_repetitions,
                early_stopping=EarlyStopping(patience=strategy.convergence_steps),
                restore_best_weights=True,
                use_mlflow=self.use_mlflow,
                mlflow_prefix=f"{self.name}.",
                epoch_offset=epoch_offset,
                cfg=self.cfg,
            )

            for key, values in phase_history.items():
                history.setdefault(key, []).extend(values)
            epoch_offset += len(phase_history["epoch"])

        self.model.set_dropout(())
        self.history = history
        self.training_time = time.perf_counter() - start
        self.is_trained = True
        logger.info("%s: training finished in %.1f s", self.name, self.training_time)

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    def predict_proba(self, x: np.ndarray, batch_size: int = 1000) -> np.ndarray:
        self._require_trained("predict_proba")
        self.model.to(self.device)
        self.model.eval()
        self.model.reset_state()

        tensor = torch.as_tensor(np.asarray(x, dtype=np.float32))
        outputs = [
            self.model.predict_proba(tensor[i : i + batch_size].to(self.device)).cpu()
            for i in range(0, tensor.shape[0], batch_size)
        ]
        if not outputs:
            return np.empty(0, dtype=np.float64)
        return torch.cat(outputs).numpy().astype(np.float64)

    def _save(self, path: Path) -> None:
        torch.save(
            {
                "method": self.name,
                "method_type": self.method_type,
                "options": self.option_string,
                "input_layout": self.options.input_layout.to_string(),
                "state_dict": {k: v.detach().cpu() for k, v in self.model.state_dict().items()},
                "history": self.history,
            },
            path,
        )
        logger.info("Saved %s weights to %s", self.name, path)
