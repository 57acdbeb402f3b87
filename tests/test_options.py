from __future__ import annotations

import pytest

from rnn_classification.exceptions import ConfigError
from rnn_classification.options import (
    BDTOptions,
    DenseLayerSpec,
    FactoryOptions,
    InputLayout,
    MethodOptions,
    RecurrentLayerSpec,
    ReshapeLayerSpec,
    SplitOptions,
    TrainingStrategy,
    build_rnn_options,
    dense_layout,
    format_layout,
    parse_layout,
    parse_options,
    parse_training_strategies,
    rnn_layout,
)

RNN_OPTIONS = (
    "!H:V:ErrorStrategy=CROSSENTROPY:VarTransform=None:WeightInitialization=XAVIERUNIFORM:"
    "ValidationSize=0.2:RandomSeed=1234:InputLayout=10|30:"
    "Layout=LSTM|10|30|10|0|1,RESHAPE|FLAT,DENSE|64|TANH,LINEAR:"
    "TrainingStrategy=LearningRate=1e-3,Momentum=0.0,Repetitions=1,ConvergenceSteps=5,"
    "BatchSize=100,TestRepetitions=1,WeightDecay=1e-2,Regularization=None,MaxEpochs=20,"
    "Optimizer=ADAM,DropConfig=0.0+0.+0.+0.:Architecture=CPU"
)


# ---------------------------------------------------------------------------
# Generic option grammar
# ---------------------------------------------------------------------------


def test_parse_options_flags_and_values() -> None:
    opts = parse_options("!V:Silent:Transformations=I;D:AnalysisType=Classification")

    assert opts["V"] is False
    assert opts["silent"] is True
    assert opts["Transformations"] == "I;D"
    assert opts.get_choice("analysistype", "", ("CLASSIFICATION",)) == "CLASSIFICATION"


def test_option_map_typed_getters_reject_bad_values() -> None:
    opts = parse_options("NTrees=abc:V=maybe")

    with pytest.raises(ConfigError) as ctx:
        opts.get_int("NTrees", 100)
    assert ctx.value.code == "option_bad_int"

    with pytest.raises(ConfigError) as ctx:
        opts.get_bool("V", False)
    assert ctx.value.code == "option_bad_bool"


# ---------------------------------------------------------------------------
# Layouts
# ---------------------------------------------------------------------------


def test_rnn_layout_renders_like_the_reference_string() -> None:
    layout = rnn_layout("lstm", 10, 30)

    assert format_layout(layout) == "LSTM|10|30|10|0|1,RESHAPE|FLAT,DENSE|64|TANH,LINEAR"


def test_parse_layout_understands_every_layer_kind() -> None:
    layers = parse_layout("GRU|8|30|10|1|0,RESHAPE|FLAT,DENSE|64|TANH,RELU|32,LINEAR")

    assert layers[0] == RecurrentLayerSpec("GRU", 8, 30, 10, remember_state=True, return_sequence=False)
    assert layers[1] == ReshapeLayerSpec()
    assert layers[2] == DenseLayerSpec(64, "TANH")
    assert layers[3] == DenseLayerSpec(32, "RELU")
    assert layers[4] == DenseLayerSpec(1, "IDENTITY")


@pytest.mark.parametrize(
    "layout, code",
    [
        ("", "layout_empty"),
        ("CONV|3|3", "layout_unknown_layer"),
        ("LSTM|10", "layout_bad_recurrent"),
        ("DENSE|TANH", "layout_bad_dense"),
        ("RESHAPE|2|3", "layout_bad_reshape"),
    ],
)
def test_parse_layout_errors(layout: str, code: str) -> None:
    with pytest.raises(ConfigError) as ctx:
        parse_layout(layout)
    assert ctx.value.code == code


def test_dense_layout_flattens_first() -> None:
    layout = dense_layout(16, "relu", depth=2)

    assert format_layout(layout) == "RESHAPE|FLAT,DENSE|16|RELU,DENSE|16|RELU,LINEAR"


@pytest.mark.parametrize(
    "text, expected",
    [("10|30", InputLayout(10, 30)), ("1|10|30", InputLayout(10, 30)), ("30", InputLayout(1, 30))],
)
def test_input_layout_from_string(text: str, expected: InputLayout) -> None:
    assert InputLayout.from_string(text) == expected


def test_input_layout_rejects_garbage() -> None:
    with pytest.raises(ConfigError):
        InputLayout.from_string("10|x")


# ---------------------------------------------------------------------------
# Training strategies
# ---------------------------------------------------------------------------


def test_training_strategy_defaults_round_trip() -> None:
    strategy = TrainingStrategy()
    text = strategy.to_string()

    assert "Regularization=None" in text
    assert "DropConfig=0+0+0+0" in text
    assert TrainingStrategy.from_string(text) == strategy


def test_several_training_strategies_are_pipe_separated() -> None:
    strategies = parse_training_strategies(
        "LearningRate=1e-2,BatchSize=50,MaxEpochs=3|LearningRate=1e-3,Optimizer=sgd,Momentum=0.9"
    )

    assert [s.learning_rate for s in strategies] == [pytest.approx(1e-2), pytest.approx(1e-3)]
    assert strategies[0].batch_size == 50
    assert strategies[1].optimizer == "SGD"
    assert strategies[1].momentum == pytest.approx(0.9)


@pytest.mark.parametrize(
    "kwargs, code",
    [
        ({"optimizer": "LBFGS"}, "strategy_bad_optimizer"),
        ({"regularization": "L3"}, "strategy_bad_regularization"),
        ({"batch_size": 0}, "strategy_bad_value"),
        ({"drop_config": (0.0, 1.0)}, "strategy_bad_dropout"),
    ],
)
def test_training_strategy_validation(kwargs: dict, code: str) -> None:
    with pytest.raises(ConfigError) as ctx:
        TrainingStrategy(**kwargs)
    assert ctx.value.code == code


def test_unknown_strategy_key_is_rejected() -> None:
    with pytest.raises(ConfigError) as ctx:
        TrainingStrategy.from_string("LearningRate=1e-3,Nesterov=1")
    assert ctx.value.code == "strategy_unknown_key"


# ---------------------------------------------------------------------------
# Method options
# ---------------------------------------------------------------------------


def test_method_options_parse_reference_string() -> None:
    opts = MethodOptions.from_string(RNN_OPTIONS)

    assert opts.input_layout == InputLayout(10, 30)
    assert opts.layout[0] == RecurrentLayerSpec("LSTM", 10, 30, 10)
    assert opts.error_strategy == "CROSSENTROPY"
    assert opts.weight_initialization == "XAVIERUNIFORM"
    assert opts.random_seed == 1234
    assert opts.architecture == "CPU"
    assert opts.verbose is True
    assert opts.show_help is False

    strategy = opts.training_strategies[0]
    assert strategy.batch_size == 100
    assert strategy.max_epochs == 20
    assert strategy.convergence_steps == 5
    assert strategy.regularization == "NONE"


def test_build_rnn_options_is_parseable_and_equivalent() -> None:
    text = build_rnn_options("GRU", 10, 30, TrainingStrategy(), architecture="GPU")

    assert text.startswith("!H:V:ErrorStrategy=CROSSENTROPY:VarTransform=None:")
    assert "InputLayout=10|30" in text
    assert "Layout=GRU|10|30|10|0|1,RESHAPE|FLAT,DENSE|64|TANH,LINEAR" in text
    assert text.endswith("Architecture=GPU")

    parsed = MethodOptions.from_string(text)
    assert MethodOptions.from_string(parsed.to_string()) == parsed


@pytest.mark.parametrize(
    "size, n_train, expected", [("0.2", 100, 20), ("25%", 100, 25), ("30", 100, 30)]
)
def test_validation_count(size: str, n_train: int, expected: int) -> None:
    opts = MethodOptions(input_layout=InputLayout(2, 2), layout=(), validation_size=size)
    assert opts.validation_count(n_train) == expected


def test_validation_count_must_leave_events() -> None:
    opts = MethodOptions(input_layout=InputLayout(2, 2), layout=(), validation_size="0.01")
    with pytest.raises(ConfigError):
        opts.validation_count(10)


def test_method_options_need_layouts() -> None:
    with pytest.raises(ConfigError) as ctx:
        MethodOptions.from_string("!H:V:ErrorStrategy=CROSSENTROPY")
    assert ctx.value.code == "option_missing_layout"


def test_method_options_reject_unknown_keys() -> None:
    with pytest.raises(ConfigError) as ctx:
        MethodOptions.from_string(RNN_OPTIONS + ":Foo=1")
    assert ctx.value.code == "option_unknown_key"


# ---------------------------------------------------------------------------
# Factory, split and BDT options
# ---------------------------------------------------------------------------


def test_factory_options_reference_string() -> None:
    opts = FactoryOptions.from_string(
        "!V:!Silent:Color:DrawProgressBar:Transformations=None:!Correlations:"
        "AnalysisType=Classification:ModelPersistence"
    )

    assert opts.verbose is False
    assert opts.silent is False
    assert opts.color is True
    assert opts.correlations is False
    assert opts.model_persistence is True


def test_factory_options_only_classification() -> None:
    with pytest.raises(ConfigError) as ctx:
        FactoryOptions.from_string("AnalysisType=Regression")
    assert ctx.value.code == "factory_bad_analysis_type"


def test_split_options_round_trip() -> None:
    text = "nTrain_Signal=8000:nTrain_Background=8000:SplitMode=Random:SplitSeed=100:NormMode=NumEvents:!V"
    opts = SplitOptions.from_string(text)

    assert opts.n_train_signal == 8000
    assert opts.n_test_signal == 0
    assert opts.split_mode == "RANDOM"
    assert opts.norm_mode == "NUMEVENTS"
    assert SplitOptions.from_string(opts.to_string()) == opts


def test_split_options_reject_negative_counts() -> None:
    with pytest.raises(ConfigError) as ctx:
        SplitOptions.from_string("nTrain_Signal=-5")
    assert ctx.value.code == "split_negative_count"


def test_bdt_options() -> None:
    opts = BDTOptions.from_string(
        "!H:!V:NTrees=100:MinNodeSize=2.5%:BoostType=Grad:Shrinkage=0.10:UseBaggedBoost:"
        "BaggedSampleFraction=0.5:nCuts=20:MaxDepth=2"
    )

    assert opts.n_trees == 100
    assert opts.min_node_size == pytest.approx(0.025)
    assert opts.boost_type == "GRAD"
    assert opts.use_bagged_boost is True
    assert opts.max_depth == 2


@pytest.mark.parametrize("text, expected", [("5", 0.05), ("5%", 0.05), ("0.5%", 0.005)])
def test_bdt_min_node_size_is_always_a_percentage(text: str, expected: float) -> None:
    opts = BDTOptions.from_string(f"NTrees=10:MinNodeSize={text}")
    assert opts.min_node_size == pytest.approx(expected)


@pytest.mark.parametrize("text", ["0", "60%", "abc"])
def test_bdt_min_node_size_out_of_range(text: str) -> None:
    with pytest.raises(ConfigError) as ctx:
        BDTOptions.from_string(f"MinNodeSize={text}")
    assert ctx.value.code in {"bdt_bad_min_node_size", "option_bad_float"}
