"""
End-to-end classification run on the toy time-series dataset.

    cfg = load_config("configs/rnn_classification.yaml", env="dev")
    result = run_classification(cfg, use_type=1)   # book TMVA_LSTM only
    print(result.ranking)

The run generates ``time_data_t{ntime}_d{ndim}.<fmt>`` if it is missing,
declares one variable array per time step, splits signal and background
into training and test samples, books one recurrent method per enabled
cell type (plus the optional DNN and BDT baselines), trains, tests and
evaluates them and writes ``data_RNN_{CPU|GPU}.pt`` with the results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import matplotlib.pyplot as plt
import pandas as pd
import torch

from rnn_classification.config import AppConfig, MethodsConfig
from rnn_classification.data.event_loader import EventLoader
from rnn_classification.data.generator import make_time_data
from rnn_classification.data.loading import BACKGROUND_TREE, SIGNAL_TREE, read_event_trees
from rnn_classification.factory import Factory
from rnn_classification.logging_config import get_logger
from rnn_classification.mlops.mlflow_utils import log_artifact, log_metrics, log_params, mlflow_run
from rnn_classification.options import (
    InputLayout,
    SplitOptions,
    TrainingStrategy,
    build_method_options,
    build_rnn_options,
    dataclass_summary,
    dense_layout,
    parse_drop_config,
)
from rnn_classification.runtime import (
    architecture_for,
    configure_threads,
    select_device,
    set_global_seed,
)

logger = get_logger(__name__)

FACTORY_OPTIONS = (
    "!V:!Silent:Color:DrawProgressBar:Transformations=None:!Correlations:"
    "AnalysisType=Classification:ModelPersistence"
)

BDT_OPTIONS = (
    "!H:V:NTrees=100:MinNodeSize=2.5%:BoostType=Grad:Shrinkage=0.10:"
    "UseBaggedBoost:BaggedSampleFraction=0.5:nCuts=20:MaxDepth=2"
)


@dataclass
class ClassificationResult:
    """What a finished run leaves behind."""

    output_file: Optional[Path]
    roc_plot: Optional[Path]
    ranking: pd.DataFrame
    methods: List[str]
    weights_files: Dict[str, Optional[Path]] = field(default_factory=dict)
    architecture: str = "CPU"
    num_threads: int = 1


def output_file_name(architecture: str) -> str:
    return f"data_RNN_{architecture.upper()}.pt"


def training_strategy_from_config(cfg: AppConfig) -> TrainingStrategy:
    t = cfg.training
    return TrainingStrategy(
        learning_rate=t.learning_rate,
        momentum=t.momentum,
        repetitions=t.repetitions,
        convergence_steps=t.convergence_steps,
        batch_size=t.batch_size,
        test_repetitions=t.test_repetitions,
        weight_decay=t.weight_decay,
        regularization=t.regularization,
        max_epochs=t.max_epochs,
        optimizer=t.optimizer,
        drop_config=parse_drop_config(t.drop_config),
    )


def split_options_from_config(cfg: AppConfig) -> SplitOptions:
    n_train = int(cfg.split.train_fraction * cfg.data.n_events)
    return SplitOptions(
        n_train_signal=n_train,
        n_train_background=n_train,
        split_mode=cfg.split.split_mode.upper(),
        split_seed=cfg.split.split_seed,
        norm_mode=cfg.split.norm_mode.upper(),
        verbose=False,
    )


def method_option_strings(
    cfg: AppConfig, use_type: Optional[int] = None, *, architecture: str = "CPU"
) -> Dict[str, tuple[str, str]]:
    """``{method_name: (method_type, option_string)}`` for every method to book."""
    methods = cfg.methods
    if use_type is not None:
        methods = MethodsConfig(use_type=use_type, use_dnn=methods.use_dnn, use_bdt=methods.use_bdt)

    strategy = training_strategy_from_config(cfg)
    method_kwargs: Dict[str, Any] = {
        "error_strategy": cfg.training.error_strategy,
        "weight_initialization": cfg.training.weight_initialization,
        "validation_size": cfg.training.validation_size,
        "random_seed": cfg.training.random_seed,
        "architecture": architecture,
    }
    net = cfg.network
    ntime, ndim = cfg.data.ntime, cfg.data.ndim

    booked: Dict[str, tuple[str, str]] = {}
    for rnn_type in methods.enabled_rnn_types():
        booked[f"TMVA_{rnn_type}"] = (
            "DL",
            build_rnn_options(
                rnn_type,
                ntime,
                ndim,
                strategy,
                units=net.rnn_units,
                remember_state=net.remember_state,
                return_sequence=net.return_sequence,
                dense_units=net.dense_units,
                dense_activation=net.dense_activation,
                **method_kwargs,
            ),
        )
    if methods.use_dnn:
        booked["TMVA_DNN"] = (
            "DL",
            build_method_options(
                dense_layout(net.dense_units, net.dense_activation),
                InputLayout(ntime=ntime, ndim=ndim),
                [strategy],
                **method_kwargs,
            ),
        )
    if methods.use_bdt:
        booked["BDTG"] = ("BDT", BDT_OPTIONS)
    return booked


def _ensure_input_file(cfg: AppConfig, data_dir: Path) -> Path:
    path = data_dir / cfg.data.file_name
    if path.exists():
        logger.info("Using existing input file %s", path)
        return path

    logger.info("Input file %s not found; generating %d events per class", path, cfg.data.n_events)
    return make_time_data(
        cfg.data.n_events,
        cfg.data.ntime,
        cfg.data.ndim,
        output_dir=data_dir,
        n_draws=cfg.data.n_draws,
        noise_std=cfg.data.noise_std,
        hist_range=(cfg.data.hist_low, cfg.data.hist_high),
        seed=cfg.data.seed,
        fmt=cfg.data.file_format,
    )


def build_event_loader(cfg: AppConfig, input_file: Path) -> EventLoader:
    """Declare one ``vars_time{i}`` array per time step and attach both trees."""
    trees = read_event_trees(input_file)
    loader = EventLoader(cfg.paths.dataset_name)
    for i in range(cfg.data.ntime):
        loader.add_variables_array(f"vars_time{i}", cfg.data.ndim)
    loader.add_signal_tree(trees[SIGNAL_TREE], 1.0)
    loader.add_background_tree(trees[BACKGROUND_TREE], 1.0)
    return loader


def run_classification(
    cfg: AppConfig,
    use_type: Optional[int] = None,
    *,
    device: Optional[torch.device] = None,
    use_mlflow: bool = True,
) -> ClassificationResult:
    """Run the whole classification job described by ``cfg``.

    ``use_type`` overrides ``cfg.methods.use_type``: 0 = RNN, 1 = LSTM,
    2 = GRU, any other value books all three. With ``use_mlflow=False``
    nothing is sent to MLflow even when the config enables it.
    """
    if not use_mlflow and cfg.mlflow.enabled:
        cfg = cfg.model_copy(update={"mlflow": cfg.mlflow.model_copy(update={"enabled": False})})

    num_threads = configure_threads(cfg.runtime.num_threads)
    set_global_seed(cfg.training.random_seed)
    device = device or select_device(cfg.runtime.device)
    architecture = architecture_for(device)
    logger.info("Using device: %s (Architecture=%s)", device, architecture)

    paths = cfg.resolved_paths()
    input_file = _ensure_input_file(cfg, paths.data_dir)
    loader = build_event_loader(cfg, input_file)

    split = split_options_from_config(cfg)
    logger.info("Split options: %s", split.to_string())
    loader.prepare_training_and_test_tree(split)

    output_file = (
        paths.output_dir / output_file_name(architecture) if cfg.write_output_file else None
    )
    to_book = method_option_strings(cfg, use_type, architecture=architecture)

    with mlflow_run(cfg, run_name=cfg.mlflow.run_name or cfg.experiment_name):
        log_params(
            {
                "use_type": cfg.methods.use_type if use_type is None else use_type,
                "num_threads": num_threads,
                "architecture": architecture,
                "n_events": cfg.data.n_events,
                "ntime": cfg.data.ntime,
                "ndim": cfg.data.ndim,
                **{f"split.{k}": v for k, v in dataclass_summary(split).items()},
                **{f"{name}.options": opts for name, (_, opts) in to_book.items()},
            },
            cfg=cfg,
        )

        factory = Factory(
            cfg.experiment_name,
            output_file,
            FACTORY_OPTIONS,
            cfg=cfg,
            weights_root=paths.output_dir,
            device=device,
            use_mlflow=use_mlflow,
        )
        for name, (method_type, options) in to_book.items():
            factory.book_method(loader, method_type, name, options)

        factory.train_all_methods()
        factory.test_all_methods()
        ranking = factory.evaluate_all_methods()

        for row in ranking.to_dict(orient="records"):
            name = row.pop("method")
            log_metrics({f"{name}.{k}": v for k, v in row.items()}, cfg=cfg)

        roc_plot: Optional[Path] = None
        if output_file is not None:
            roc_plot = output_file.with_name(f"{output_file.stem}_roc.png")
            plt.close(factory.get_roc_curve(loader, savepath=roc_plot))
            log_artifact(roc_plot, cfg=cfg)

        written = factory.close()
        if written is not None:
            log_artifact(written, cfg=cfg)

    weights_files = {name: info["weights_file"] for name, info in factory.results().items()}
    logger.info("Classification run finished; methods: %s", ", ".join(to_book))
    return ClassificationResult(
        output_file=written,
        roc_plot=roc_plot,
        ranking=ranking,
        methods=list(to_book),
        weights_files={k: Path(v) if v else None for k, v in weights_files.items()},
        architecture=architecture,
        num_threads=num_threads,
    )
