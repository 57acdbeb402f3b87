from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from rnn_classification.data.loading import SIGNAL_TREE, BACKGROUND_TREE, variable_array_names
from rnn_classification.exceptions import DataError
from rnn_classification.logging_config import get_logger
from rnn_classification.options import InputLayout, SplitOptions

logger = get_logger(__name__)

_LOCATION = "rnn_classification.data.event_loader"


@dataclass(frozen=True)
class VariableArray:
    """A fixed-width array variable, e.g. one time step ``vars_time3``."""

    name: str
    width: int

    @property
    def names(self) -> List[str]:
        return variable_array_names(self.name, self.width)


@dataclass
class EventSample:
    """Events of one split.

    x:
        float32 array of shape (n_events, n_arrays, width).
    y:
        float32 labels, 1 for signal and 0 for background.
    weights:
        float32 per-event weights after normalisation.
    """

    x: np.ndarray
    y: np.ndarray
    weights: np.ndarray

    def __post_init__(self) -> None:
        n = self.x.shape[0]
        if self.y.shape != (n,) or self.weights.shape != (n,):
            raise DataError(
                "x, y and weights must describe the same number of events.",
                code="data_sample_mismatch",
                context={
                    "x": list(self.x.shape),
                    "y": list(self.y.shape),
                    "weights": list(self.weights.shape),
                },
                location=f"{_LOCATION}.EventSample",
            )

    def __len__(self) -> int:
        return int(self.x.shape[0])

    @property
    def n_signal(self) -> int:
        return int((self.y == 1).sum())

    @property
    def n_background(self) -> int:
        return int((self.y == 0).sum())

    def subset(self, indices: np.ndarray) -> EventSample:
        return EventSample(x=self.x[indices], y=self.y[indices], weights=self.weights[indices])


@dataclass
class PreparedDataset:
    name: str
    train: EventSample
    test: EventSample
    variables: List[str]
    input_layout: InputLayout
    split_options: SplitOptions


@dataclass
class _Tree:
    frame: pd.DataFrame
    weight: float


@dataclass
class EventLoader:
    """Declares input variables, holds the signal/background trees and splits them.

    Typical use::

        loader = EventLoader("dataset")
        for i in range(ntime):
            loader.add_variables_array(f"vars_time{i}", ndim)
        loader.add_signal_tree(trees["sgn"])
        loader.add_background_tree(trees["bkg"])
        prepared = loader.prepare_training_and_test_tree(
            "nTrain_Signal=8000:nTrain_Background=8000:SplitMode=Random:NormMode=NumEvents"
        )
    """

    name: str = "dataset"
    arrays: List[VariableArray] = field(default_factory=list)
    prepared: Optional[PreparedDataset] = None
    _trees: Dict[str, _Tree] = field(default_factory=dict, repr=False)

    # ------------------------------------------------------------------
    # Declarations
    # ------------------------------------------------------------------

    def add_variables_array(self, name: str, width: int) -> None:
        if width < 1:
            raise DataError(
                f"Variable array '{name}' needs a positive width, got {width}.",
                code="data_invalid_size",
                context={"name": name, "width": width},
                location=f"{_LOCATION}.EventLoader.add_variables_array",
            )
        if any(a.name == name for a in self.arrays):
            raise DataError(
                f"Variable array '{name}' is already declared.",
                code="data_duplicate_variable",
                context={"name": name},
                location=f"{_LOCATION}.EventLoader.add_variables_array",
            )
        self.arrays.append(VariableArray(name=name, width=width))

    @property
    def variables(self) -> List[str]:
        names: List[str] = []
        for array in self.arrays:
            names.extend(array.names)
        return names

    @property
    def input_layout(self) -> InputLayout:
        widths = {a.width for a in self.arrays}
        if not self.arrays or len(widths) != 1:
            raise DataError(
                "Time-series input needs at least one variable array and a common width.",
                code="data_bad_variable_layout",
                context={"arrays": [(a.name, a.width) for a in self.arrays]},
                location=f"{_LOCATION}.EventLoader.input_layout",
            )
        return InputLayout(ntime=len(self.arrays), ndim=widths.pop())

    def add_signal_tree(self, frame: pd.DataFrame, weight: float = 1.0) -> None:
        self._add_tree(SIGNAL_TREE, frame, weight)

    def add_background_tree(self, frame: pd.DataFrame, weight: float = 1.0) -> None:
        self._add_tree(BACKGROUND_TREE, frame, weight)

    def _add_tree(self, tree: str, frame: pd.DataFrame, weight: float) -> None:
        if weight <= 0:
            raise DataError(
                f"Tree weight must be positive, got {weight}.",
                code="data_bad_tree_weight",
                context={"tree": tree, "weight": weight},
                location=f"{_LOCATION}.EventLoader._add_tree",
            )
        self._trees[tree] = _Tree(frame=frame, weight=float(weight))
        logger.info("Add %s tree with %d events (weight %g)", tree, len(frame), weight)

    # ------------------------------------------------------------------
    # Train/test preparation
    # ------------------------------------------------------------------

    def _tree_events(self, tree: str) -> Tuple[np.ndarray, float]:
        if tree not in self._trees:
            raise DataError(
                f"No {tree} tree was added to the loader.",
                code="data_missing_tree",
                context={"tree": tree, "loader": self.name},
                location=f"{_LOCATION}.EventLoader._tree_events",
            )
        layout = self.input_layout
        entry = self._trees[tree]
        missing = [c for c in self.variables if c not in entry.frame.columns]
        if missing:
            raise DataError(
                f"{tree} tree is missing declared variables.",
                code="data_missing_columns",
                context={"tree": tree, "missing_columns": missing[:10], "n_missing": len(missing)},
                location=f"{_LOCATION}.EventLoader._tree_events",
            )
        values = entry.frame[self.variables].to_numpy(dtype=np.float32)
        return values.reshape(len(entry.frame), layout.ntime, layout.ndim), entry.weight

    def prepare_training_and_test_tree(
        self, options: Union[str, SplitOptions] = ""
    ) -> PreparedDataset:
        opts = options if isinstance(options, SplitOptions) else SplitOptions.from_string(options)
        logger.info("number of variables is %d", len(self.variables))

        sig_x, sig_w = self._tree_events(SIGNAL_TREE)
        bkg_x, bkg_w = self._tree_events(BACKGROUND_TREE)

        sig_train, sig_test = _split_indices(
            len(sig_x), opts.n_train_signal, opts.n_test_signal, opts, SIGNAL_TREE
        )
        bkg_train, bkg_test = _split_indices(
            len(bkg_x), opts.n_train_background, opts.n_test_background, opts, BACKGROUND_TREE
        )

        sig_factor, bkg_factor = _normalisation_factors(
            opts.norm_mode, len(sig_train) * sig_w, len(bkg_train) * bkg_w, len(sig_train), len(bkg_train)
        )

        def _sample(sig_idx: np.ndarray, bkg_idx: np.ndarray) -> EventSample:
            x = np.concatenate([sig_x[sig_idx], bkg_x[bkg_idx]], axis=0)
            y = np.concatenate([np.ones(len(sig_idx)), np.zeros(len(bkg_idx))]).astype(np.float32)
            w = np.concatenate(
                [
                    np.full(len(sig_idx), sig_w * sig_factor),
                    np.full(len(bkg_idx), bkg_w * bkg_factor),
                ]
            ).astype(np.float32)
            return EventSample(x=x, y=y, weights=w)

        train = _sample(sig_train, bkg_train)
        test = _sample(sig_test, bkg_test)

        logger.info(
            "Prepared %s: train %d sgn / %d bkg, test %d sgn / %d bkg (SplitMode=%s, NormMode=%s)",
            self.name,
            train.n_signal,
            train.n_background,
            test.n_signal,
            test.n_background,
            opts.split_mode,
            opts.norm_mode,
        )

        self.prepared = PreparedDataset(
            name=self.name,
            train=train,
            test=test,
            variables=self.variables,
            input_layout=self.input_layout,
            split_options=opts,
        )
        return self.prepared


def _resolve_counts(n_total: int, n_train: int, n_test: int, tree: str) -> Tuple[int, int]:
    if n_train == 0 and n_test == 0:
        n_train = n_total // 2
        n_test = n_total - n_train
    elif n_train == 0:
        n_train = n_total - n_test
    elif n_test == 0:
        n_test = n_total - n_train

    if n_train <= 0 or n_test < 0 or n_train + n_test > n_total:
        raise DataError(
            f"Requested more {tree} events than available.",
            code="data_split_too_large",
            context={"tree": tree, "available": n_total, "n_train": n_train, "n_test": n_test},
            location=f"{_LOCATION}._resolve_counts",
        )
    if n_test < 1:
        raise DataError(
            f"No {tree} events left for the test sample.",
            code="data_empty_test_sample",
            context={"tree": tree, "available": n_total, "n_train": n_train},
            location=f"{_LOCATION}._resolve_counts",
        )
    return n_train, n_test


def _split_indices(
    n_total: int,
    n_train: int,
    n_test: int,
    opts: SplitOptions,
    tree: str,
) -> Tuple[np.ndarray, np.ndarray]:
    n_train, n_test = _resolve_counts(n_total, n_train, n_test, tree)
    index = np.arange(n_total)

    if opts.split_mode == "RANDOM":
        # One independent stream per tree so the two splits do not depend on each other.
        offset = 0 if tree == SIGNAL_TREE else 1
        order = np.random.default_rng([opts.split_seed, offset]).permutation(n_total)
    elif opts.split_mode == "ALTERNATE":
        order = np.concatenate([index[0::2], index[1::2]])
    else:
        order = index

    return np.sort(order[:n_train]), np.sort(order[n_train : n_train + n_test])


def _normalisation_factors(
    norm_mode: str,
    sig_train_weight: float,
    bkg_train_weight: float,
    n_sig_train: int,
    n_bkg_train: int,
) -> Tuple[float, float]:
    """Per-class multiplicative factors applied to the tree weights.

    NUMEVENTS makes the mean training weight of each class 1; EQUALNUMEVENTS
    additionally scales background so its summed training weight matches signal.
    """
    if norm_mode == "NONE":
        return 1.0, 1.0

    sig_factor = n_sig_train / sig_train_weight
    bkg_factor = n_bkg_train / bkg_train_weight
    if norm_mode == "EQUALNUMEVENTS":
        bkg_factor = n_sig_train / bkg_train_weight
    return sig_factor, bkg_factor
