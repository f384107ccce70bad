"""
Builds torch modules from architecture descriptors.

Shapes are tracked without the batch dimension and follow the descriptor
convention (channels-last): dense ``(features,)``, recurrent ``(steps,
features)``, image ``(height, width, channels)``.
"""
import math
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import torch
import torch.nn as nn

from ..schemas.layers import (
    BatchNormalizationLayer,
    Conv2DLayer,
    DenseLayer,
    DropoutLayer,
    FlattenLayer,
    GRULayer,
    LSTMLayer,
    LayerSpec,
    MaxPooling2DLayer,
)

Shape = Tuple[int, ...]

ACTIVATIONS: Dict[str, Callable[[], nn.Module]] = {
    "linear": nn.Identity,
    "relu": nn.ReLU,
    "sigmoid": nn.Sigmoid,
    "tanh": nn.Tanh,
    "softmax": lambda: nn.Softmax(dim=-1),
    "elu": nn.ELU,
    "selu": nn.SELU,
    "softplus": nn.Softplus,
    "leakyRelu": nn.LeakyReLU,
}


class LayerBuildError(ValueError):
    """The descriptor is valid on its own but does not fit the incoming shape."""


def _pair(v) -> Tuple[int, int]:
    if isinstance(v, (tuple, list)):
        return int(v[0]), int(v[1])
    return int(v), int(v)


# ===== Wrapper modules =====

class ChannelsLast(nn.Module):
    """Runs a channels-first torch module on (N, H, W, C) input."""

    def __init__(self, inner: nn.Module):
        super().__init__()
        self.inner = inner

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.inner(x.permute(0, 3, 1, 2)).permute(0, 2, 3, 1)


class SequenceBatchNorm(nn.Module):
    """BatchNorm1d over the feature axis of (N, T, F) input."""

    def __init__(self, inner: nn.BatchNorm1d):
        super().__init__()
        self.inner = inner

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.inner(x.transpose(1, 2)).transpose(1, 2)


class Recurrent(nn.Module):
    """LSTM/GRU returning either the full sequence or the last step."""

    def __init__(self, inner: nn.RNNBase, return_sequences: bool):
        super().__init__()
        self.inner = inner
        self.return_sequences = return_sequences

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        out, _ = self.inner(x)
        return out if self.return_sequences else out[:, -1, :]


class Block(nn.Module):
    """One descriptor's worth of modules, tagged with its kind and shapes."""

    def __init__(self, kind: str, body: nn.Module, in_shape: Shape, out_shape: Shape):
        super().__init__()
        self.kind = kind
        self.body = body
        self.in_shape = tuple(in_shape)
        self.out_shape = tuple(out_shape)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.body(x)

    def count_params(self) -> int:
        return sum(p.numel() for p in self.parameters())

    @property
    def trainable(self) -> bool:
        params = list(self.parameters())
        return bool(params) and all(p.requires_grad for p in params)

    def freeze(self) -> None:
        for p in self.parameters():
            p.requires_grad = False


# ===== Per-kind builders =====

def _with_activation(core: nn.Module, activation: str) -> nn.Module:
    if activation == "linear":
        return core
    return nn.Sequential(core, ACTIVATIONS[activation]())


def _dense(spec: DenseLayer, shape: Shape) -> Tuple[nn.Module, Shape]:
    cfg = spec.config
    core = nn.Linear(shape[-1], cfg.units, bias=cfg.use_bias)
    return _with_activation(core, cfg.activation), shape[:-1] + (cfg.units,)


def _conv_out(size: int, kernel: int, stride: int, padding: str) -> int:
    if padding == "same":
        return math.ceil(size / stride)
    return (size - kernel) // stride + 1


def _conv2d(spec: Conv2DLayer, shape: Shape) -> Tuple[nn.Module, Shape]:
    if len(shape) != 3:
        raise LayerBuildError(f"conv2d expects (height, width, channels) input, got {list(shape)}")
    cfg = spec.config
    kh, kw = _pair(cfg.kernel_size)
    sh, sw = _pair(cfg.strides)
    if cfg.padding == "same" and (sh, sw) != (1, 1):
        raise LayerBuildError("conv2d with padding 'same' requires strides of 1")
    h, w, c = shape
    oh, ow = _conv_out(h, kh, sh, cfg.padding), _conv_out(w, kw, sw, cfg.padding)
    if oh <= 0 or ow <= 0:
        raise LayerBuildError(f"conv2d kernel {kh}x{kw} does not fit input {h}x{w}")
    core = ChannelsLast(
        nn.Conv2d(c, cfg.filters, (kh, kw), stride=(sh, sw), padding=cfg.padding, bias=cfg.use_bias)
    )
    return _with_activation(core, cfg.activation), (oh, ow, cfg.filters)


def _max_pooling2d(spec: MaxPooling2DLayer, shape: Shape) -> Tuple[nn.Module, Shape]:
    if len(shape) != 3:
        raise LayerBuildError(f"maxPooling2d expects (height, width, channels) input, got {list(shape)}")
    cfg = spec.config
    ph, pw = _pair(cfg.pool_size)
    sh, sw = _pair(cfg.strides) if cfg.strides is not None else (ph, pw)
    h, w, c = shape
    oh, ow = _conv_out(h, ph, sh, "valid"), _conv_out(w, pw, sw, "valid")
    if oh <= 0 or ow <= 0:
        raise LayerBuildError(f"maxPooling2d window {ph}x{pw} does not fit input {h}x{w}")
    return ChannelsLast(nn.MaxPool2d((ph, pw), stride=(sh, sw))), (oh, ow, c)


def _flatten(spec: FlattenLayer, shape: Shape) -> Tuple[nn.Module, Shape]:
    return nn.Flatten(), (math.prod(shape),)


def _dropout(spec: DropoutLayer, shape: Shape) -> Tuple[nn.Module, Shape]:
    return nn.Dropout(spec.config.rate), shape


def _recurrent(cell: type) -> Callable[[LayerSpec, Shape], Tuple[nn.Module, Shape]]:
    def build(spec, shape: Shape) -> Tuple[nn.Module, Shape]:
        if len(shape) != 2:
            raise LayerBuildError(f"{spec.type} expects (steps, features) input, got {list(shape)}")
        cfg = spec.config
        steps, features = shape
        module = Recurrent(cell(features, cfg.units, batch_first=True), cfg.return_sequences)
        out_shape = (steps, cfg.units) if cfg.return_sequences else (cfg.units,)
        return module, out_shape
    return build


def _batch_normalization(spec: BatchNormalizationLayer, shape: Shape) -> Tuple[nn.Module, Shape]:
    cfg = spec.config
    # descriptor momentum is the moving-average decay; torch expects the update rate
    momentum = 1.0 - cfg.momentum
    if len(shape) == 1:
        return nn.BatchNorm1d(shape[0], eps=cfg.epsilon, momentum=momentum), shape
    if len(shape) == 2:
        return SequenceBatchNorm(nn.BatchNorm1d(shape[1], eps=cfg.epsilon, momentum=momentum)), shape
    if len(shape) == 3:
        return ChannelsLast(nn.BatchNorm2d(shape[2], eps=cfg.epsilon, momentum=momentum)), shape
    raise LayerBuildError(f"batchNormalization does not support input {list(shape)}")


BUILDERS: Dict[str, Callable[[LayerSpec, Shape], Tuple[nn.Module, Shape]]] = {
    "dense": _dense,
    "conv2d": _conv2d,
    "maxPooling2d": _max_pooling2d,
    "flatten": _flatten,
    "dropout": _dropout,
    "lstm": _recurrent(nn.LSTM),
    "gru": _recurrent(nn.GRU),
    "batchNormalization": _batch_normalization,
}


def build_block(spec: LayerSpec, in_shape: Sequence[int]) -> Block:
    in_shape = tuple(int(d) for d in in_shape)
    body, out_shape = BUILDERS[spec.type](spec, in_shape)
    return Block(spec.type, body, in_shape, out_shape)


def resolve_input_shape(layers: Sequence[LayerSpec], input_shape: Optional[Sequence[int]]) -> Shape:
    shape = input_shape or (layers[0].config.input_shape if layers else None)
    if not shape:
        raise LayerBuildError("The first layer needs an inputShape")
    return tuple(int(d) for d in shape)


def build_blocks(layers: Sequence[LayerSpec], input_shape: Sequence[int]) -> List[Block]:
    blocks: List[Block] = []
    shape = tuple(input_shape)
    for index, spec in enumerate(layers):
        try:
            block = build_block(spec, shape)
        except LayerBuildError as e:
            raise LayerBuildError(f"Layer {index} ({spec.type}): {e}") from e
        blocks.append(block)
        shape = block.out_shape
    return blocks
