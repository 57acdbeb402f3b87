from __future__ import annotations

from typing import List, Optional, Sequence, Tuple, Union

import torch
from torch import Tensor, nn

from rnn_classification.exceptions import ModelError
from rnn_classification.logging_config import get_logger
from rnn_classification.options import (
    DenseLayerSpec,
    InputLayout,
    LayerSpec,
    MethodOptions,
    RecurrentLayerSpec,
    ReshapeLayerSpec,
)

logger = get_logger(__name__)

_LOCATION = "rnn_classification.torch.models.recurrent"

HiddenState = Union[Tensor, Tuple[Tensor, Tensor]]


# ---------------------------------------------------------------------------
# Activations
# ---------------------------------------------------------------------------


class SymmetricReLU(nn.Module):
    def forward(self, x: Tensor) -> Tensor:
        return torch.abs(x)


class Gauss(nn.Module):
    def forward(self, x: Tensor) -> Tensor:
        return torch.exp(-x * x)


def _get_activation(name: str) -> nn.Module:
    name = name.upper()
    if name == "TANH":
        return nn.Tanh()
    if name == "RELU":
        return nn.ReLU()
    if name == "SIGMOID":
        return nn.Sigmoid()
    if name in {"IDENTITY", "LINEAR"}:
        return nn.Identity()
    if name == "SYMMRELU":
        return SymmetricReLU()
    if name == "SOFTSIGN":
        return nn.Softsign()
    if name == "GAUSS":
        return Gauss()
    raise ModelError(
        f"Unsupported activation: {name}",
        code="invalid_activation",
        context={"activation": name},
        location=f"{_LOCATION}._get_activation",
    )


# ---------------------------------------------------------------------------
# Layer blocks
# ---------------------------------------------------------------------------


class RecurrentBlock(nn.Module):
    """Wraps nn.RNN / nn.LSTM / nn.GRU (batch_first).

    With ``return_sequence`` the full (B, T, units) output flows onward,
    otherwise only the last time step (B, units). With ``remember_state``
    the detached final hidden state seeds the next forward call whenever
    the batch size matches.
    """

    _RNN_CLASSES = {"RNN": nn.RNN, "LSTM": nn.LSTM, "GRU": nn.GRU}

    def __init__(self, spec: RecurrentLayerSpec) -> None:
        super().__init__()
        rnn_cls = self._RNN_CLASSES[spec.rnn_type]
        kwargs = {"nonlinearity": "tanh"} if spec.rnn_type == "RNN" else {}
        self.rnn = rnn_cls(
            input_size=spec.input_size,
            hidden_size=spec.units,
            batch_first=True,
            **kwargs,
        )
        self.rnn_type = spec.rnn_type
        self.remember_state = spec.remember_state
        self.return_sequence = spec.return_sequence
        self._state: Optional[HiddenState] = None

    def reset_state(self) -> None:
        self._state = None

    def _initial_state(self, batch_size: int) -> Optional[HiddenState]:
        if not self.remember_state or self._state is None:
            return None
        state_batch = (self._state[0] if isinstance(self._state, tuple) else self._state).shape[1]
        return self._state if state_batch == batch_size else None

    def forward(self, x: Tensor) -> Tensor:
        out, state = self.rnn(x, self._initial_state(x.shape[0]))
        if self.remember_state:
            if isinstance(state, tuple):
                self._state = (state[0].detach(), state[1].detach())
            else:
                self._state = state.detach()
        if self.return_sequence:
            return out
        return out[:, -1, :]


class DenseBlock(nn.Module):
    def __init__(self, in_features: int, spec: DenseLayerSpec) -> None:
        super().__init__()
        self.linear = nn.Linear(in_features, spec.units)
        self.activation = _get_activation(spec.activation)

    def forward(self, x: Tensor) -> Tensor:
        if x.dim() > 2:
            x = x.flatten(start_dim=1)
        return self.activation(self.linear(x))


class FlattenBlock(nn.Module):
    def forward(self, x: Tensor) -> Tensor:
        return x.flatten(start_dim=1)


# ---------------------------------------------------------------------------
# Weight initialisation
# ---------------------------------------------------------------------------


def _init_weights(module: nn.Module, scheme: str) -> None:
    scheme = scheme.upper()
    for name, param in module.named_parameters():
        if "bias" in name:
            nn.init.zeros_(param)
            continue
        if param.dim() < 2:
            continue
        fan_in = param.shape[1]
        if scheme == "XAVIER":
            nn.init.xavier_normal_(param)
        elif scheme == "XAVIERUNIFORM":
            nn.init.xavier_uniform_(param)
        elif scheme == "GAUSS":
            nn.init.normal_(param, mean=0.0, std=fan_in ** -0.5)
        elif scheme == "UNIFORM":
            bound = fan_in ** -0.5
            nn.init.uniform_(param, -bound, bound)
        else:
            raise ModelError(
                f"Unsupported weight initialization: {scheme}",
                code="invalid_weight_init",
                context={"weight_initialization": scheme},
                location=f"{_LOCATION}._init_weights",
            )


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


class RecurrentClassifier(nn.Module):
    """Binary classifier assembled from a parsed layer layout.

    Input:  (B, ntime, ndim), or (B, ntime * ndim) which is reshaped.
    Output: (B,) logits. Apply a sigmoid (or use :meth:`predict_proba`)
    for signal probabilities.

    Example layout::

        LSTM|10|30|10|0|1, RESHAPE|FLAT, DENSE|64|TANH, LINEAR

    gives LSTM(30 -> 10) over 10 steps, flatten to 100, Linear(100, 64) + tanh
    and a final Linear(64, 1).
    """

    def __init__(
        self,
        input_layout: InputLayout,
        layers: Sequence[LayerSpec],
        *,
        weight_init: str = "XAVIER",
        drop_config: Sequence[float] = (),
        seed: Optional[int] = None,
    ) -> None:
        super().__init__()
        self.input_layout = input_layout
        self.layer_specs: List[LayerSpec] = list(layers)

        blocks, self.output_width = self._build_blocks(input_layout, self.layer_specs)
        self.blocks = nn.ModuleList(blocks)
        self.dropouts = nn.ModuleList([nn.Dropout(p=0.0) for _ in blocks])
        self.set_dropout(drop_config)

        if seed is not None:
            with torch.random.fork_rng(devices=[]):
                torch.manual_seed(seed)
                _init_weights(self, weight_init)
        else:
            _init_weights(self, weight_init)

        logger.info(
            "Built RecurrentClassifier: input %s, %d layers, %d parameters",
            input_layout.to_string(),
            len(self.blocks),
            sum(p.numel() for p in self.parameters()),
        )

    @staticmethod
    def _build_blocks(
        input_layout: InputLayout, layers: Sequence[LayerSpec]
    ) -> Tuple[List[nn.Module], int]:
        if not layers:
            raise ModelError(
                "Layout has no layers.",
                code="invalid_layout",
                location=f"{_LOCATION}.RecurrentClassifier._build_blocks",
            )

        # Track (time_steps, features); time_steps is None once flattened.
        steps: Optional[int] = input_layout.ntime
        features = input_layout.ndim
        blocks: List[nn.Module] = []

        for index, spec in enumerate(layers):
            if isinstance(spec, RecurrentLayerSpec):
                if steps is None:
                    raise ModelError(
                        "A recurrent layer cannot follow a flattened layer.",
                        code="invalid_layout",
                        context={"layer_index": index, "layer": spec.to_string()},
                        location=f"{_LOCATION}.RecurrentClassifier._build_blocks",
                    )
                if spec.input_size != features or spec.time_steps != steps:
                    raise ModelError(
                        "Recurrent layer shape does not match its input.",
                        code="invalid_layout",
                        context={
                            "layer_index": index,
                            "layer": spec.to_string(),
                            "expected_input_size": features,
                            "expected_time_steps": steps,
                        },
                        location=f"{_LOCATION}.RecurrentClassifier._build_blocks",
                    )
                blocks.append(RecurrentBlock(spec))
                features = spec.units
                if not spec.return_sequence:
                    steps = None
            elif isinstance(spec, ReshapeLayerSpec):
                blocks.append(FlattenBlock())
                if steps is not None:
                    features = steps * features
                    steps = None
            elif isinstance(spec, DenseLayerSpec):
                in_features = features * steps if steps is not None else features
                blocks.append(DenseBlock(in_features, spec))
                features, steps = spec.units, None
            else:
                raise ModelError(
                    f"Unsupported layer spec: {spec!r}",
                    code="invalid_layout",
                    context={"layer_index": index},
                    location=f"{_LOCATION}.RecurrentClassifier._build_blocks",
                )

        last = layers[-1]
        if not isinstance(last, DenseLayerSpec) or last.units != 1:
            raise ModelError(
                "Layout must end in a dense output layer of width 1 (e.g. LINEAR).",
                code="invalid_layout",
                context={"last_layer": last.to_string()},
                location=f"{_LOCATION}.RecurrentClassifier._build_blocks",
            )
        return blocks, features

    @classmethod
    def from_options(
        cls, options: MethodOptions, *, drop_config: Optional[Sequence[float]] = None
    ) -> RecurrentClassifier:
        if drop_config is None:
            drop_config = options.training_strategies[0].drop_config
        return cls(
            options.input_layout,
            options.layout,
            weight_init=options.weight_initialization,
            drop_config=drop_config,
            seed=options.random_seed,
        )

    def set_dropout(self, probabilities: Sequence[float]) -> None:
        """Dropout probability on the input of each layer, in layout order.

        Missing entries mean no dropout.
        """
        if len(probabilities) > len(self.dropouts):
            logger.warning(
                "DropConfig has %d entries for %d layers; extra entries ignored.",
                len(probabilities),
                len(self.dropouts),
            )
        for i, dropout in enumerate(self.dropouts):
            dropout.p = float(probabilities[i]) if i < len(probabilities) else 0.0

    def reset_state(self) -> None:
        for block in self.blocks:
            if isinstance(block, RecurrentBlock):
                block.reset_state()

    def forward(self, x: Tensor) -> Tensor:
        if x.dim() == 2:
            x = x.view(x.shape[0], self.input_layout.ntime, self.input_layout.ndim)
        for dropout, block in zip(self.dropouts, self.blocks):
            x = block(dropout(x))
        return x.reshape(-1)

    @torch.no_grad()
    def predict_proba(self, x: Tensor) -> Tensor:
        was_training = self.training
        self.eval()
        try:
            return torch.sigmoid(self(x))
        finally:
            self.train(was_training)
