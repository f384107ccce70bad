"""
Architecture descriptors.

A model architecture is an ordered list of ``{type, config}`` layer
descriptors. The set of layer kinds is closed: each kind has its own typed
config, and an unknown ``type`` fails validation instead of being skipped.
"""
from typing import Annotated, Any, Iterable, List, Literal, Optional, Tuple, Union

from pydantic import ConfigDict, Field, PositiveInt, TypeAdapter

from .common import CamelModel

Activation = Literal["linear", "relu", "sigmoid", "tanh", "softmax", "elu", "selu", "softplus", "leakyRelu"]
IntPair = Union[PositiveInt, Tuple[PositiveInt, PositiveInt]]


# ===== Per-kind configs =====

class LayerConfig(CamelModel):
    # extra keys from other toolkits (initializers, names, ...) are ignored
    model_config = ConfigDict(extra="ignore")

    input_shape: Optional[List[PositiveInt]] = None


class DenseConfig(LayerConfig):
    units: PositiveInt
    activation: Activation = "linear"
    use_bias: bool = True


class Conv2DConfig(LayerConfig):
    filters: PositiveInt
    kernel_size: IntPair
    strides: IntPair = 1
    padding: Literal["valid", "same"] = "valid"
    activation: Activation = "linear"
    use_bias: bool = True


class MaxPooling2DConfig(LayerConfig):
    pool_size: IntPair = 2
    strides: Optional[IntPair] = None
    padding: Literal["valid"] = "valid"


class FlattenConfig(LayerConfig):
    pass


class DropoutConfig(LayerConfig):
    rate: float = Field(..., ge=0.0, lt=1.0)


class RecurrentConfig(LayerConfig):
    units: PositiveInt
    return_sequences: bool = False


class BatchNormalizationConfig(LayerConfig):
    momentum: float = Field(0.99, gt=0.0, lt=1.0)
    epsilon: float = Field(1e-3, gt=0.0)


# ===== Tagged union of layer kinds =====

class DenseLayer(CamelModel):
    type: Literal["dense"]
    config: DenseConfig


class Conv2DLayer(CamelModel):
    type: Literal["conv2d"]
    config: Conv2DConfig


class MaxPooling2DLayer(CamelModel):
    type: Literal["maxPooling2d"]
    config: MaxPooling2DConfig = Field(default_factory=MaxPooling2DConfig)


class FlattenLayer(CamelModel):
    type: Literal["flatten"]
    config: FlattenConfig = Field(default_factory=FlattenConfig)


class DropoutLayer(CamelModel):
    type: Literal["dropout"]
    config: DropoutConfig


class LSTMLayer(CamelModel):
    type: Literal["lstm"]
    config: RecurrentConfig


class GRULayer(CamelModel):
    type: Literal["gru"]
    config: RecurrentConfig


class BatchNormalizationLayer(CamelModel):
    type: Literal["batchNormalization"]
    config: BatchNormalizationConfig = Field(default_factory=BatchNormalizationConfig)


LayerSpec = Annotated[
    Union[
        DenseLayer,
        Conv2DLayer,
        MaxPooling2DLayer,
        FlattenLayer,
        DropoutLayer,
        LSTMLayer,
        GRULayer,
        BatchNormalizationLayer,
    ],
    Field(discriminator="type"),
]

LAYER_KINDS = ("dense", "conv2d", "maxPooling2d", "flatten", "dropout", "lstm", "gru", "batchNormalization")


class ArchitectureSpec(CamelModel):
    layers: List[LayerSpec] = Field(..., min_length=1)
    input_shape: Optional[List[PositiveInt]] = None
    output_shape: Optional[List[PositiveInt]] = None


_layers_adapter = TypeAdapter(List[LayerSpec])


def parse_layers(raw: Iterable[Any]) -> List[LayerSpec]:
    """Validates stored or submitted descriptors; raises pydantic.ValidationError."""
    return _layers_adapter.validate_python(list(raw))


def dump_layers(layers: Iterable[LayerSpec]) -> List[dict]:
    return [layer.model_dump(mode="json", by_alias=True, exclude_none=True) for layer in layers]


def dump_architecture(arch: ArchitectureSpec) -> dict:
    return {
        "layers": dump_layers(arch.layers),
        "inputShape": arch.input_shape,
        "outputShape": arch.output_shape,
    }


DEFAULT_ARCHITECTURE = ArchitectureSpec(
    layers=[
        DenseLayer(type="dense", config=DenseConfig(units=100, activation="relu", input_shape=[10])),
        DenseLayer(type="dense", config=DenseConfig(units=50, activation="relu")),
        DenseLayer(type="dense", config=DenseConfig(units=1, activation="sigmoid")),
    ],
    input_shape=[10],
    output_shape=[1],
)

DEFAULT_HYPERPARAMETERS = {
    "optimizer": "adam",
    "lossFunction": "binaryCrossentropy",
    "metrics": ["accuracy"],
    "learningRate": 0.001,
}
