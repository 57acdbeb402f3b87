"""Option strings for booking and configuring classification methods.

Every configurable step takes a compact option string in addition to the
typed dataclasses defined here::

    "!H:V:ErrorStrategy=CROSSENTROPY:VarTransform=None:RandomSeed=1234:"
    "InputLayout=10|30:"
    "Layout=LSTM|10|30|10|0|1,RESHAPE|FLAT,DENSE|64|TANH,LINEAR:"
    "TrainingStrategy=LearningRate=1e-3,Momentum=0.0,BatchSize=100,MaxEpochs=20:"
    "Architecture=CPU"

Grammar:

* options are separated by ``:``;
* ``Key=Value`` sets a value, a bare ``Key`` means True and ``!Key`` False;
* keys are case-insensitive on lookup;
* a layout is a ``,``-separated list of layers whose fields are ``|``-separated;
* several training strategies are joined with ``|``, and the fields of one
  strategy are ``,``-separated.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, fields
from typing import Any, List, Optional, Sequence, Tuple, Union

from rnn_classification.exceptions import OptionError

OptionValue = Union[str, bool]

RECURRENT_TYPES: Tuple[str, ...] = ("RNN", "LSTM", "GRU")
ACTIVATIONS: Tuple[str, ...] = (
    "TANH",
    "RELU",
    "SIGMOID",
    "IDENTITY",
    "LINEAR",
    "SYMMRELU",
    "SOFTSIGN",
    "GAUSS",
)
OPTIMIZERS: Tuple[str, ...] = ("ADAM", "SGD", "RMSPROP", "ADAGRAD", "ADADELTA")
REGULARIZATIONS: Tuple[str, ...] = ("NONE", "L1", "L2")
ERROR_STRATEGIES: Tuple[str, ...] = ("CROSSENTROPY", "SUMOFSQUARES")
WEIGHT_INITIALIZATIONS: Tuple[str, ...] = ("XAVIER", "XAVIERUNIFORM", "GAUSS", "UNIFORM")
SPLIT_MODES: Tuple[str, ...] = ("RANDOM", "ALTERNATE", "BLOCK")
NORM_MODES: Tuple[str, ...] = ("NONE", "NUMEVENTS", "EQUALNUMEVENTS")


def _error(message: str, *, code: str, context: Mapping[str, Any], where: str) -> OptionError:
    return OptionError(
        message,
        code=code,
        context=dict(context),
        location=f"rnn_classification.options.{where}",
    )


def _fmt_bool(value: bool) -> str:
    return "1" if value else "0"


def _fmt_float(value: float) -> str:
    return f"{value:g}"


# ---------------------------------------------------------------------------
# Generic key/value option maps
# ---------------------------------------------------------------------------


class OptionMap(Mapping):
    """Ordered, case-insensitive mapping of parsed options.

    The original spelling of each key is kept for formatting.
    """

    def __init__(self, items: Optional[Mapping[str, OptionValue]] = None) -> None:
        self._data: dict[str, Tuple[str, OptionValue]] = {}
        for key, value in (items or {}).items():
            self[key] = value

    def __setitem__(self, key: str, value: OptionValue) -> None:
        self._data[key.lower()] = (key, value)

    def __getitem__(self, key: str) -> OptionValue:
        return self._data[key.lower()][1]

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.lower() in self._data

    def __iter__(self) -> Iterator[str]:
        return (original for original, _ in self._data.values())

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"OptionMap({format_options(self)!r})"

    def pop(self, key: str, default: Any = None) -> Any:
        entry = self._data.pop(key.lower(), None)
        return default if entry is None else entry[1]

    def get_str(self, key: str, default: str) -> str:
        value = self.get(key, default)
        if isinstance(value, bool):
            raise _error(
                f"Option '{key}' needs a value.",
                code="option_missing_value",
                context={"key": key},
                where="OptionMap.get_str",
            )
        return str(value)

    def get_bool(self, key: str, default: bool) -> bool:
        value = self.get(key, default)
        if isinstance(value, bool):
            return value
        lowered = value.strip().lower()
        if lowered in {"1", "true", "t", "yes", "y"}:
            return True
        if lowered in {"0", "false", "f", "no", "n"}:
            return False
        raise _error(
            f"Option '{key}' expects a boolean, got {value!r}.",
            code="option_bad_bool",
            context={"key": key, "value": value},
            where="OptionMap.get_bool",
        )

    def get_int(self, key: str, default: int) -> int:
        raw = self.get_str(key, str(default))
        try:
            return int(float(raw))
        except ValueError as exc:
            raise _error(
                f"Option '{key}' expects an integer, got {raw!r}.",
                code="option_bad_int",
                context={"key": key, "value": raw},
                where="OptionMap.get_int",
            ) from exc

    def get_float(self, key: str, default: float) -> float:
        raw = self.get_str(key, repr(default))
        try:
            return float(raw)
        except ValueError as exc:
            raise _error(
                f"Option '{key}' expects a number, got {raw!r}.",
                code="option_bad_float",
                context={"key": key, "value": raw},
                where="OptionMap.get_float",
            ) from exc

    def get_choice(self, key: str, default: str, choices: Sequence[str]) -> str:
        """Return the upper-cased value, checked against ``choices``."""
        value = self.get_str(key, default).upper()
        if value not in choices:
            raise _error(
                f"Option '{key}' must be one of {list(choices)}, got {value!r}.",
                code="option_bad_choice",
                context={"key": key, "value": value, "choices": list(choices)},
                where="OptionMap.get_choice",
            )
        return value


def parse_options(text: str, *, sep: str = ":") -> OptionMap:
    """Parse ``"!H:V:Key=Value"`` into an :class:`OptionMap`."""
    options = OptionMap()
    for raw in text.split(sep):
        token = raw.strip()
        if not token:
            continue
        if "=" in token:
            key, value = token.split("=", 1)
            key = key.strip()
            if not key:
                raise _error(
                    f"Empty option name in {token!r}.",
                    code="option_empty_key",
                    context={"token": token, "options": text},
                    where="parse_options",
                )
            options[key] = value.strip()
        elif token.startswith("!"):
            options[token[1:].strip()] = False
        else:
            options[token] = True
    return options


def format_options(options: Mapping[str, OptionValue], *, sep: str = ":") -> str:
    """Inverse of :func:`parse_options`."""
    parts: List[str] = []
    for key, value in options.items():
        if value is True:
            parts.append(key)
        elif value is False:
            parts.append(f"!{key}")
        else:
            parts.append(f"{key}={value}")
    return sep.join(parts)


def _reject_unknown(options: OptionMap, known: Sequence[str], where: str) -> None:
    known_lower = {k.lower() for k in known}
    unknown = [k for k in options if k.lower() not in known_lower]
    if unknown:
        raise _error(
            f"Unknown option(s): {unknown}.",
            code="option_unknown_key",
            context={"unknown": unknown, "known": list(known)},
            where=where,
        )


# ---------------------------------------------------------------------------
# Network layout
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InputLayout:
    """Shape of one event as seen by the network: ``time x ndim``."""

    ntime: int
    ndim: int

    def to_string(self) -> str:
        return f"{self.ntime}|{self.ndim}"

    def to_option(self) -> str:
        return f"InputLayout={self.to_string()}"

    @property
    def size(self) -> int:
        return self.ntime * self.ndim

    @classmethod
    def from_string(cls, text: str) -> InputLayout:
        try:
            dims = [int(part) for part in text.split("|") if part.strip()]
        except ValueError as exc:
            raise _error(
                f"InputLayout must be integers separated by '|', got {text!r}.",
                code="layout_bad_input",
                context={"input_layout": text},
                where="InputLayout.from_string",
            ) from exc
        # A leading depth of 1 (depth|height|width) is accepted and dropped.
        if len(dims) == 3 and dims[0] == 1:
            dims = dims[1:]
        if len(dims) == 1:
            dims = [1, dims[0]]
        if len(dims) != 2 or min(dims) <= 0:
            raise _error(
                f"InputLayout must be 'ntime|ndim' with positive sizes, got {text!r}.",
                code="layout_bad_input",
                context={"input_layout": text},
                where="InputLayout.from_string",
            )
        return cls(ntime=dims[0], ndim=dims[1])


@dataclass(frozen=True)
class RecurrentLayerSpec:
    """``TYPE|units|input_size|time_steps|remember_state|return_sequence``."""

    rnn_type: str
    units: int
    input_size: int
    time_steps: int
    remember_state: bool = False
    return_sequence: bool = True

    def to_string(self) -> str:
        return "|".join(
            [
                self.rnn_type,
                str(self.units),
                str(self.input_size),
                str(self.time_steps),
                _fmt_bool(self.remember_state),
                _fmt_bool(self.return_sequence),
            ]
        )


@dataclass(frozen=True)
class ReshapeLayerSpec:
    """``RESHAPE|FLAT``: flatten everything but the batch dimension."""

    flat: bool = True

    def to_string(self) -> str:
        return "RESHAPE|FLAT"


@dataclass(frozen=True)
class DenseLayerSpec:
    """``DENSE|units|ACTIVATION``; a bare ``LINEAR`` is the one-unit output layer."""

    units: int
    activation: str = "TANH"

    def to_string(self) -> str:
        if self.units == 1 and self.activation in {"IDENTITY", "LINEAR"}:
            return "LINEAR"
        return f"DENSE|{self.units}|{self.activation}"


LayerSpec = Union[RecurrentLayerSpec, ReshapeLayerSpec, DenseLayerSpec]


def _parse_recurrent(parts: List[str], token: str) -> RecurrentLayerSpec:
    if len(parts) < 4:
        raise _error(
            f"Recurrent layer needs at least TYPE|units|input|time, got {token!r}.",
            code="layout_bad_recurrent",
            context={"layer": token},
            where="parse_layer",
        )
    try:
        units, input_size, time_steps = (int(p) for p in parts[1:4])
        remember = bool(int(parts[4])) if len(parts) > 4 else False
        return_seq = bool(int(parts[5])) if len(parts) > 5 else True
    except ValueError as exc:
        raise _error(
            f"Recurrent layer fields must be integers, got {token!r}.",
            code="layout_bad_recurrent",
            context={"layer": token},
            where="parse_layer",
        ) from exc
    return RecurrentLayerSpec(
        rnn_type=parts[0],
        units=units,
        input_size=input_size,
        time_steps=time_steps,
        remember_state=remember,
        return_sequence=return_seq,
    )


def _parse_dense(parts: List[str], token: str) -> DenseLayerSpec:
    units: Optional[int] = None
    activation = "TANH"
    # Width and activation may come in either order.
    for part in parts[1:]:
        if part in ACTIVATIONS:
            activation = part
            continue
        try:
            units = int(part)
        except ValueError as exc:
            raise _error(
                f"Unknown dense layer field {part!r} in {token!r}.",
                code="layout_bad_dense",
                context={"layer": token, "activations": list(ACTIVATIONS)},
                where="parse_layer",
            ) from exc
    if units is None or units <= 0:
        raise _error(
            f"Dense layer needs a positive width, got {token!r}.",
            code="layout_bad_dense",
            context={"layer": token},
            where="parse_layer",
        )
    return DenseLayerSpec(units=units, activation=activation)


def parse_layer(token: str) -> LayerSpec:
    parts = [p.strip().upper() for p in token.split("|") if p.strip()]
    if not parts:
        raise _error(
            "Empty layer in layout.",
            code="layout_empty_layer",
            context={"layer": token},
            where="parse_layer",
        )

    kind = parts[0]
    if kind in RECURRENT_TYPES:
        return _parse_recurrent(parts, token)
    if kind == "RESHAPE":
        if parts[1:] != ["FLAT"]:
            raise _error(
                f"Only RESHAPE|FLAT is supported, got {token!r}.",
                code="layout_bad_reshape",
                context={"layer": token},
                where="parse_layer",
            )
        return ReshapeLayerSpec()
    if kind == "DENSE":
        return _parse_dense(parts, token)
    if kind in {"LINEAR", "IDENTITY"} and len(parts) == 1:
        return DenseLayerSpec(units=1, activation="IDENTITY")
    if kind in ACTIVATIONS:
        # "TANH|64" style: a dense layer named by its activation.
        return _parse_dense(["DENSE"] + parts, token)

    raise _error(
        f"Unknown layer type {kind!r} in {token!r}.",
        code="layout_unknown_layer",
        context={"layer": token},
        where="parse_layer",
    )


def parse_layout(text: str) -> List[LayerSpec]:
    """Parse ``"LSTM|10|30|10|0|1,RESHAPE|FLAT,DENSE|64|TANH,LINEAR"``."""
    layers = [parse_layer(token) for token in text.split(",") if token.strip()]
    if not layers:
        raise _error(
            "Layout must contain at least one layer.",
            code="layout_empty",
            context={"layout": text},
            where="parse_layout",
        )
    return layers


def format_layout(layers: Sequence[LayerSpec]) -> str:
    return ",".join(layer.to_string() for layer in layers)


def rnn_layout(
    rnn_type: str,
    ntime: int,
    ndim: int,
    *,
    units: int = 10,
    remember_state: bool = False,
    return_sequence: bool = True,
    dense_units: int = 64,
    dense_activation: str = "TANH",
) -> List[LayerSpec]:
    """Recurrent layer, flatten, one hidden dense layer and a linear output."""
    rnn_type = rnn_type.upper()
    if rnn_type not in RECURRENT_TYPES:
        raise _error(
            f"Unknown recurrent layer type {rnn_type!r}.",
            code="layout_unknown_layer",
            context={"rnn_type": rnn_type, "supported": list(RECURRENT_TYPES)},
            where="rnn_layout",
        )
    return [
        RecurrentLayerSpec(
            rnn_type=rnn_type,
            units=units,
            input_size=ndim,
            time_steps=ntime,
            remember_state=remember_state,
            return_sequence=return_sequence,
        ),
        ReshapeLayerSpec(),
        DenseLayerSpec(units=dense_units, activation=dense_activation.upper()),
        DenseLayerSpec(units=1, activation="IDENTITY"),
    ]


def dense_layout(units: int = 64, activation: str = "TANH", depth: int = 3) -> List[LayerSpec]:
    """Plain feed-forward baseline over the flattened event."""
    hidden: List[LayerSpec] = [
        DenseLayerSpec(units=units, activation=activation.upper()) for _ in range(depth)
    ]
    return [ReshapeLayerSpec(), *hidden, DenseLayerSpec(units=1, activation="IDENTITY")]


# ---------------------------------------------------------------------------
# Training strategy
# ---------------------------------------------------------------------------

_STRATEGY_KEYS = {
    "learningrate": "learning_rate",
    "momentum": "momentum",
    "repetitions": "repetitions",
    "convergencesteps": "convergence_steps",
    "batchsize": "batch_size",
    "testrepetitions": "test_repetitions",
    "weightdecay": "weight_decay",
    "regularization": "regularization",
    "maxepochs": "max_epochs",
    "optimizer": "optimizer",
    "dropconfig": "drop_config",
}


_INT_STRATEGY_KEYS = frozenset(
    {"repetitions", "convergence_steps", "batch_size", "test_repetitions", "max_epochs"}
)


@dataclass(frozen=True)
class TrainingStrategy:
    """One optimisation phase."""

    learning_rate: float = 1e-3
    momentum: float = 0.0
    repetitions: int = 1
    convergence_steps: int = 5
    batch_size: int = 100
    test_repetitions: int = 1
    weight_decay: float = 1e-2
    regularization: str = "NONE"
    max_epochs: int = 20
    optimizer: str = "ADAM"
    drop_config: Tuple[float, ...] = (0.0, 0.0, 0.0, 0.0)

    def __post_init__(self) -> None:
        if self.optimizer.upper() not in OPTIMIZERS:
            raise _error(
                f"Unknown optimizer {self.optimizer!r}.",
                code="strategy_bad_optimizer",
                context={"optimizer": self.optimizer, "supported": list(OPTIMIZERS)},
                where="TrainingStrategy",
            )
        if self.regularization.upper() not in REGULARIZATIONS:
            raise _error(
                f"Unknown regularization {self.regularization!r}.",
                code="strategy_bad_regularization",
                context={"regularization": self.regularization},
                where="TrainingStrategy",
            )
        if self.batch_size <= 0 or self.max_epochs <= 0 or self.convergence_steps <= 0:
            raise _error(
                "BatchSize, MaxEpochs and ConvergenceSteps must be positive.",
                code="strategy_bad_value",
                context={
                    "batch_size": self.batch_size,
                    "max_epochs": self.max_epochs,
                    "convergence_steps": self.convergence_steps,
                },
                where="TrainingStrategy",
            )
        if any(not (0.0 <= p < 1.0) for p in self.drop_config):
            raise _error(
                "DropConfig probabilities must lie in [0, 1).",
                code="strategy_bad_dropout",
                context={"drop_config": list(self.drop_config)},
                where="TrainingStrategy",
            )
        object.__setattr__(self, "optimizer", self.optimizer.upper())
        object.__setattr__(self, "regularization", self.regularization.upper())

    def to_string(self) -> str:
        return ",".join(
            [
                f"LearningRate={_fmt_float(self.learning_rate)}",
                f"Momentum={_fmt_float(self.momentum)}",
                f"Repetitions={self.repetitions}",
                f"ConvergenceSteps={self.convergence_steps}",
                f"BatchSize={self.batch_size}",
                f"TestRepetitions={self.test_repetitions}",
                f"WeightDecay={_fmt_float(self.weight_decay)}",
                f"Regularization={'None' if self.regularization == 'NONE' else self.regularization}",
                f"MaxEpochs={self.max_epochs}",
                f"Optimizer={self.optimizer}",
                f"DropConfig={'+'.join(_fmt_float(p) for p in self.drop_config)}",
            ]
        )

    @classmethod
    def from_string(cls, text: str) -> TrainingStrategy:
        raw = parse_options(text, sep=",")
        kwargs: dict[str, Any] = {}
        for key in raw:
            attr = _STRATEGY_KEYS.get(key.lower())
            if attr is None:
                raise _error(
                    f"Unknown training strategy option {key!r}.",
                    code="strategy_unknown_key",
                    context={"key": key, "strategy": text},
                    where="TrainingStrategy.from_string",
                )
            if attr in _INT_STRATEGY_KEYS:
                kwargs[attr] = raw.get_int(key, 0)
            elif attr in {"learning_rate", "momentum", "weight_decay"}:
                kwargs[attr] = raw.get_float(key, 0.0)
            elif attr == "drop_config":
                kwargs[attr] = parse_drop_config(raw.get_str(key, ""))
            else:
                kwargs[attr] = raw.get_str(key, "")
        return cls(**kwargs)


def parse_drop_config(text: str) -> Tuple[float, ...]:
    """``"0.0+0.5+0.5"`` -> (0.0, 0.5, 0.5)."""
    try:
        return tuple(float(part) for part in text.split("+") if part.strip())
    except ValueError as exc:
        raise _error(
            f"DropConfig must be '+'-separated numbers, got {text!r}.",
            code="strategy_bad_dropout",
            context={"drop_config": text},
            where="parse_drop_config",
        ) from exc


def parse_training_strategies(text: str) -> List[TrainingStrategy]:
    return [TrainingStrategy.from_string(block) for block in text.split("|") if block.strip()]


def format_training_strategies(strategies: Sequence[TrainingStrategy]) -> str:
    return "TrainingStrategy=" + "|".join(s.to_string() for s in strategies)


# ---------------------------------------------------------------------------
# Method options (deep-learning methods)
# ---------------------------------------------------------------------------

_DL_KEYS = (
    "H",
    "V",
    "VerbosityLevel",
    "ErrorStrategy",
    "VarTransform",
    "WeightInitialization",
    "ValidationSize",
    "RandomSeed",
    "InputLayout",
    "BatchLayout",
    "Layout",
    "TrainingStrategy",
    "Architecture",
)


@dataclass(frozen=True)
class MethodOptions:
    """Fully parsed options of a deep-learning method."""

    input_layout: InputLayout
    layout: Tuple[LayerSpec, ...]
    training_strategies: Tuple[TrainingStrategy, ...] = (TrainingStrategy(),)
    error_strategy: str = "CROSSENTROPY"
    var_transform: str = "None"
    weight_initialization: str = "XAVIER"
    validation_size: str = "20%"
    random_seed: int = 0
    architecture: str = "CPU"
    verbose: bool = False
    show_help: bool = False

    def to_string(self) -> str:
        head = OptionMap()
        head["H"] = self.show_help
        head["V"] = self.verbose
        head["ErrorStrategy"] = self.error_strategy
        head["VarTransform"] = self.var_transform
        head["WeightInitialization"] = self.weight_initialization
        head["ValidationSize"] = self.validation_size
        head["RandomSeed"] = str(self.random_seed)
        return ":".join(
            [
                format_options(head),
                self.input_layout.to_option(),
                "Layout=" + format_layout(self.layout),
                format_training_strategies(self.training_strategies),
                f"Architecture={self.architecture}",
            ]
        )

    def validation_count(self, n_train: int) -> int:
        """Number of training events held out for validation.

        Accepts a percentage ("20%"), a fraction (0.2) or an absolute count (>= 1).
        """
        raw = self.validation_size.strip()
        try:
            if raw.endswith("%"):
                count = int(n_train * float(raw[:-1]) / 100.0)
            else:
                value = float(raw)
                count = int(n_train * value) if value < 1.0 else int(value)
        except ValueError as exc:
            raise _error(
                f"ValidationSize must be a fraction, percentage or count, got {raw!r}.",
                code="option_bad_validation_size",
                context={"validation_size": raw},
                where="MethodOptions.validation_count",
            ) from exc
        if count <= 0 or count >= n_train:
            raise _error(
                f"ValidationSize={raw} leaves no usable training or validation events.",
                code="option_bad_validation_size",
                context={"validation_size": raw, "n_train": n_train, "count": count},
                where="MethodOptions.validation_count",
            )
        return count

    @classmethod
    def from_string(cls, text: str) -> MethodOptions:
        raw = parse_options(text)
        _reject_unknown(raw, _DL_KEYS, "MethodOptions.from_string")

        if "Layout" not in raw or "InputLayout" not in raw:
            raise _error(
                "Deep-learning options need both InputLayout and Layout.",
                code="option_missing_layout",
                context={"options": text},
                where="MethodOptions.from_string",
            )

        strategies = (
            parse_training_strategies(raw.get_str("TrainingStrategy", ""))
            if "TrainingStrategy" in raw
            else [TrainingStrategy()]
        )

        return cls(
            input_layout=InputLayout.from_string(raw.get_str("InputLayout", "")),
            layout=tuple(parse_layout(raw.get_str("Layout", ""))),
            training_strategies=tuple(strategies),
            error_strategy=raw.get_choice("ErrorStrategy", "CROSSENTROPY", ERROR_STRATEGIES),
            var_transform=raw.get_str("VarTransform", "None"),
            weight_initialization=raw.get_choice(
                "WeightInitialization", "XAVIER", WEIGHT_INITIALIZATIONS
            ),
            validation_size=raw.get_str("ValidationSize", "20%"),
            random_seed=raw.get_int("RandomSeed", 0),
            architecture=raw.get_choice("Architecture", "CPU", ("CPU", "GPU")),
            verbose=raw.get_bool("V", False),
            show_help=raw.get_bool("H", False),
        )


def build_method_options(
    layout: Sequence[LayerSpec],
    input_layout: InputLayout,
    strategies: Sequence[TrainingStrategy],
    *,
    error_strategy: str = "CROSSENTROPY",
    weight_initialization: str = "XAVIERUNIFORM",
    validation_size: float = 0.2,
    random_seed: int = 1234,
    architecture: str = "CPU",
    verbose: bool = True,
) -> str:
    """Assemble the option string of a deep-learning method."""
    return MethodOptions(
        input_layout=input_layout,
        layout=tuple(layout),
        training_strategies=tuple(strategies),
        error_strategy=error_strategy,
        var_transform="None",
        weight_initialization=weight_initialization,
        validation_size=_fmt_float(validation_size),
        random_seed=random_seed,
        architecture=architecture,
        verbose=verbose,
    ).to_string()


def build_rnn_options(
    rnn_type: str,
    ntime: int,
    ndim: int,
    strategy: TrainingStrategy,
    *,
    units: int = 10,
    remember_state: bool = False,
    return_sequence: bool = True,
    dense_units: int = 64,
    dense_activation: str = "TANH",
    **method_kwargs: Any,
) -> str:
    """Option string of one recurrent method::

        !H:V:ErrorStrategy=CROSSENTROPY:VarTransform=None:WeightInitialization=XAVIERUNIFORM:
        ValidationSize=0.2:RandomSeed=1234:InputLayout=10|30:
        Layout=LSTM|10|30|10|0|1,RESHAPE|FLAT,DENSE|64|TANH,LINEAR:
        TrainingStrategy=...:Architecture=CPU
    """
    layout = rnn_layout(
        rnn_type,
        ntime,
        ndim,
        units=units,
        remember_state=remember_state,
        return_sequence=return_sequence,
        dense_units=dense_units,
        dense_activation=dense_activation,
    )
    return build_method_options(
        layout, InputLayout(ntime=ntime, ndim=ndim), [strategy], **method_kwargs
    )


# ---------------------------------------------------------------------------
# Train/test split options
# ---------------------------------------------------------------------------

_SPLIT_KEYS = (
    "nTrain_Signal",
    "nTrain_Background",
    "nTest_Signal",
    "nTest_Background",
    "SplitMode",
    "SplitSeed",
    "NormMode",
    "V",
    "CalcCorrelations",
    "MixMode",
)


@dataclass(frozen=True)
class SplitOptions:
    n_train_signal: int = 0
    n_train_background: int = 0
    n_test_signal: int = 0
    n_test_background: int = 0
    split_mode: str = "RANDOM"
    split_seed: int = 100
    norm_mode: str = "NUMEVENTS"
    verbose: bool = False
    calc_correlations: bool = False

    def to_string(self) -> str:
        opts = OptionMap()
        opts["nTrain_Signal"] = str(self.n_train_signal)
        opts["nTrain_Background"] = str(self.n_train_background)
        if self.n_test_signal:
            opts["nTest_Signal"] = str(self.n_test_signal)
        if self.n_test_background:
            opts["nTest_Background"] = str(self.n_test_background)
        opts["SplitMode"] = self.split_mode.capitalize()
        opts["SplitSeed"] = str(self.split_seed)
        opts["NormMode"] = {
            "NONE": "None",
            "NUMEVENTS": "NumEvents",
            "EQUALNUMEVENTS": "EqualNumEvents",
        }[self.norm_mode]
        opts["V"] = self.verbose
        opts["CalcCorrelations"] = self.calc_correlations
        return format_options(opts)

    @classmethod
    def from_string(cls, text: str) -> SplitOptions:
        raw = parse_options(text)
        _reject_unknown(raw, _SPLIT_KEYS, "SplitOptions.from_string")
        counts = {
            key: raw.get_int(key, 0)
            for key in ("nTrain_Signal", "nTrain_Background", "nTest_Signal", "nTest_Background")
        }
        negative = {k: v for k, v in counts.items() if v < 0}
        if negative:
            raise _error(
                "Event counts must be >= 0.",
                code="split_negative_count",
                context=negative,
                where="SplitOptions.from_string",
            )
        return cls(
            n_train_signal=counts["nTrain_Signal"],
            n_train_background=counts["nTrain_Background"],
            n_test_signal=counts["nTest_Signal"],
            n_test_background=counts["nTest_Background"],
            split_mode=raw.get_choice("SplitMode", "RANDOM", SPLIT_MODES),
            split_seed=raw.get_int("SplitSeed", 100),
            norm_mode=raw.get_choice("NormMode", "NUMEVENTS", NORM_MODES),
            verbose=raw.get_bool("V", False),
            calc_correlations=raw.get_bool("CalcCorrelations", False),
        )


# ---------------------------------------------------------------------------
# Factory and BDT options
# ---------------------------------------------------------------------------

_FACTORY_KEYS = (
    "V",
    "Silent",
    "Color",
    "DrawProgressBar",
    "Transformations",
    "Correlations",
    "AnalysisType",
    "ModelPersistence",
)


@dataclass(frozen=True)
class FactoryOptions:
    verbose: bool = False
    silent: bool = False
    color: bool = True
    draw_progress_bar: bool = True
    transformations: str = "None"
    correlations: bool = False
    analysis_type: str = "Classification"
    model_persistence: bool = True

    @classmethod
    def from_string(cls, text: str) -> FactoryOptions:
        raw = parse_options(text)
        _reject_unknown(raw, _FACTORY_KEYS, "FactoryOptions.from_string")
        analysis = raw.get_str("AnalysisType", "Classification")
        if analysis.lower() != "classification":
            raise _error(
                f"Only AnalysisType=Classification is supported, got {analysis!r}.",
                code="factory_bad_analysis_type",
                context={"analysis_type": analysis},
                where="FactoryOptions.from_string",
            )
        return cls(
            verbose=raw.get_bool("V", False),
            silent=raw.get_bool("Silent", False),
            color=raw.get_bool("Color", True),
            draw_progress_bar=raw.get_bool("DrawProgressBar", True),
            transformations=raw.get_str("Transformations", "None"),
            correlations=raw.get_bool("Correlations", False),
            analysis_type="Classification",
            model_persistence=raw.get_bool("ModelPersistence", True),
        )


_BDT_KEYS = (
    "H",
    "V",
    "NTrees",
    "MinNodeSize",
    "BoostType",
    "Shrinkage",
    "UseBaggedBoost",
    "BaggedSampleFraction",
    "nCuts",
    "MaxDepth",
    "RandomSeed",
)


@dataclass(frozen=True)
class BDTOptions:
    n_trees: int = 100
    min_node_size: float = 0.025
    boost_type: str = "GRAD"
    shrinkage: float = 0.1
    use_bagged_boost: bool = False
    bagged_sample_fraction: float = 0.5
    n_cuts: int = 20
    max_depth: int = 2
    random_seed: int = 0

    @classmethod
    def from_string(cls, text: str) -> BDTOptions:
        raw = parse_options(text)
        _reject_unknown(raw, _BDT_KEYS, "BDTOptions.from_string")
        # Always a percentage of the training sample, with or without the "%" sign.
        node_size = raw.get_str("MinNodeSize", "2.5%").strip()
        try:
            min_node = float(node_size.rstrip("%")) / 100.0
        except ValueError as exc:
            raise _error(
                f"MinNodeSize must be a percentage, got {node_size!r}.",
                code="option_bad_float",
                context={"MinNodeSize": node_size},
                where="BDTOptions.from_string",
            ) from exc
        if not 0.0 < min_node <= 0.5:
            raise _error(
                f"MinNodeSize must be within (0%, 50%], got {node_size!r}.",
                code="bdt_bad_min_node_size",
                context={"MinNodeSize": node_size},
                where="BDTOptions.from_string",
            )
        boost = raw.get_choice("BoostType", "GRAD", ("GRAD",))
        return cls(
            n_trees=raw.get_int("NTrees", 100),
            min_node_size=min_node,
            boost_type=boost,
            shrinkage=raw.get_float("Shrinkage", 0.1),
            use_bagged_boost=raw.get_bool("UseBaggedBoost", False),
            bagged_sample_fraction=raw.get_float("BaggedSampleFraction", 0.5),
            n_cuts=raw.get_int("nCuts", 20),
            max_depth=raw.get_int("MaxDepth", 2),
            random_seed=raw.get_int("RandomSeed", 0),
        )


def dataclass_summary(obj: Any) -> dict[str, Any]:
    """Flat dict of a dataclass' scalar fields (for logging / MLflow params)."""
    out: dict[str, Any] = {}
    for f in fields(obj):
        value = getattr(obj, f.name)
        if isinstance(value, (str, int, float, bool)) or value is None:
            out[f.name] = value
        else:
            out[f.name] = str(value)
    return out
