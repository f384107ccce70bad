from typing import Any, Dict, List, Optional

from pydantic import Field, PositiveInt

from .common import CamelModel
from .layers import ArchitectureSpec, LayerSpec

# rectangular numeric arrays; shapes are checked against the live model
Tensorish = List[Any]


class HyperparametersIn(CamelModel):
    optimizer: Optional[str] = None
    loss_function: Optional[str] = None
    metrics: Optional[List[str]] = None
    learning_rate: Optional[float] = Field(default=None, gt=0)


class InitializeIn(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    model_type: Optional[str] = None
    tags: Optional[List[str]] = None
    architecture: Optional[ArchitectureSpec] = None
    hyperparameters: Optional[HyperparametersIn] = None


class ModelRefIn(CamelModel):
    model_id: str


class TrainIn(ModelRefIn):
    train_data: Tensorish = Field(..., min_length=1)
    labels: Tensorish = Field(..., min_length=1)
    epochs: Optional[PositiveInt] = None
    batch_size: Optional[PositiveInt] = None
    validation_split: Optional[float] = Field(default=None, ge=0.0, lt=1.0)


class PredictIn(ModelRefIn):
    input_data: Tensorish = Field(..., min_length=1)


class EvaluateIn(ModelRefIn):
    test_data: Tensorish = Field(..., min_length=1)
    test_labels: Tensorish = Field(..., min_length=1)


class SaveIn(ModelRefIn):
    save_path: Optional[str] = None


class CloneIn(ModelRefIn):
    name: Optional[str] = None
    description: Optional[str] = None
    freeze_base_layers: bool = True


class ArchitectureIn(ModelRefIn):
    layers: List[LayerSpec] = Field(..., min_length=1)
    input_shape: Optional[List[PositiveInt]] = None
    output_shape: Optional[List[PositiveInt]] = None


class HyperparametersUpdateIn(ModelRefIn):
    hyperparameters: HyperparametersIn


class VisualizationIn(ModelRefIn):
    type: str = Field(..., min_length=1)
    data: Any


class VersionIn(ModelRefIn):
    description: Optional[str] = None
    model_path: Optional[str] = None
    performance: Optional[Dict[str, Any]] = None


class VisibilityIn(ModelRefIn):
    is_public: bool


class LoadIn(ModelRefIn):
    # additional head layers appended after a transfer-learning splice
    new_layers: Optional[List[LayerSpec]] = None
    output_layers: Optional[List[int]] = None
