# modelhub/services/model_runtime_service.py
"""
In-process model runtime.

A ``ModelRuntime`` owns one live torch model built from architecture
descriptors and carries it through ``empty -> loaded -> compiled -> trained``.
``ModelRuntimeRegistry`` keeps one runtime per model id, each behind its own
lock, so requests for the same model are serialized while different models
proceed independently.
"""
import copy
import json
import logging
import threading
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

import torch
import torch.nn as nn
import torch.nn.functional as F

from ..core.config import settings
from ..core.exceptions import NoModelError, ValidationError
from ..schemas.layers import (
    DEFAULT_ARCHITECTURE,
    DEFAULT_HYPERPARAMETERS,
    ArchitectureSpec,
    dump_layers,
    parse_layers,
)
from .layer_builder import Block, LayerBuildError, build_blocks, resolve_input_shape
from .storage_service import StorageService

log = logging.getLogger(__name__)

MODEL_FILE = "model.pt"
METADATA_FILE = "metadata.json"

# hyperparameters used when neither the caller nor the model supplies one
COMPILE_DEFAULTS = {
    "optimizer": "adam",
    "lossFunction": "categoricalCrossentropy",
    "metrics": ["accuracy"],
    "learningRate": 0.001,
}


class RuntimeState(str, Enum):
    EMPTY = "empty"
    LOADED = "loaded"
    COMPILED = "compiled"
    TRAINED = "trained"


# ===== Losses / optimizers / metrics =====

_EPS = 1e-7


def _binary_crossentropy(out: torch.Tensor, y: torch.Tensor) -> torch.Tensor:
    return F.binary_cross_entropy(out.clamp(_EPS, 1 - _EPS), y)


def _categorical_crossentropy(out: torch.Tensor, y: torch.Tensor) -> torch.Tensor:
    return -(y * out.clamp(_EPS, 1.0).log()).sum(dim=-1).mean()


def _sparse_categorical_crossentropy(out: torch.Tensor, y: torch.Tensor) -> torch.Tensor:
    return F.nll_loss(out.clamp(_EPS, 1.0).log(), y.reshape(-1).long())


LOSSES: Dict[str, Callable[[torch.Tensor, torch.Tensor], torch.Tensor]] = {
    "binaryCrossentropy": _binary_crossentropy,
    "categoricalCrossentropy": _categorical_crossentropy,
    "sparseCategoricalCrossentropy": _sparse_categorical_crossentropy,
    "meanSquaredError": F.mse_loss,
    "meanAbsoluteError": F.l1_loss,
}

LOSS_ALIASES = {
    "binary_crossentropy": "binaryCrossentropy",
    "categorical_crossentropy": "categoricalCrossentropy",
    "sparse_categorical_crossentropy": "sparseCategoricalCrossentropy",
    "mse": "meanSquaredError",
    "mean_squared_error": "meanSquaredError",
    "mae": "meanAbsoluteError",
    "mean_absolute_error": "meanAbsoluteError",
}

OPTIMIZERS = {
    "adam": torch.optim.Adam,
    "adamw": torch.optim.AdamW,
    "sgd": torch.optim.SGD,
    "rmsprop": torch.optim.RMSprop,
    "adagrad": torch.optim.Adagrad,
}


def _accuracy(out: torch.Tensor, y: torch.Tensor) -> float:
    if out.shape == y.shape:
        if out.shape[-1] == 1:
            return ((out > 0.5).float() == y).float().mean().item()
        return (out.argmax(dim=-1) == y.argmax(dim=-1)).float().mean().item()
    # sparse integer labels
    return (out.argmax(dim=-1) == y.reshape(-1).long()).float().mean().item()


def _confidence(row: Sequence[float]) -> float:
    if len(row) == 1:
        p = float(row[0])
        return max(p, 1.0 - p)
    return float(max(row))


# ===== Model container =====

class SequentialNet(nn.Module):
    """Ordered stack of blocks plus the descriptors they were built from."""

    def __init__(self, blocks: Sequence[Block], descriptors: Sequence[dict], input_shape: Sequence[int]):
        super().__init__()
        self.blocks = nn.ModuleList(blocks)
        self.descriptors: List[dict] = list(descriptors)
        self.input_shape = tuple(int(d) for d in input_shape)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        for block in self.blocks:
            x = block(x)
        return x

    def train(self, mode: bool = True):
        super().train(mode)
        if mode:
            # frozen layers keep their normalization statistics
            for block in self.blocks:
                if block.count_params() and not block.trainable:
                    block.eval()
        return self

    @property
    def output_shape(self):
        return self.blocks[-1].out_shape if len(self.blocks) else self.input_shape

    def append(self, block: Block, descriptor: dict) -> None:
        self.blocks.append(block)
        self.descriptors.append(descriptor)

    def frozen_blocks(self) -> List[int]:
        return [i for i, b in enumerate(self.blocks) if b.count_params() and not b.trainable]

    def architecture(self) -> dict:
        return {
            "layers": list(self.descriptors),
            "inputShape": list(self.input_shape),
            "outputShape": list(self.output_shape),
        }


@dataclass
class EpochProgress:
    epoch: int
    epochs: int
    loss: float
    accuracy: Optional[float] = None
    val_loss: Optional[float] = None
    val_accuracy: Optional[float] = None


@dataclass
class FitResult:
    epoch: int
    history: Dict[str, List[float]] = field(default_factory=dict)

    def final(self, key: str) -> Optional[float]:
        values = self.history.get(key) or []
        return values[self.epoch] if len(values) > self.epoch else None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def build_net(architecture: ArchitectureSpec | dict) -> SequentialNet:
    if isinstance(architecture, ArchitectureSpec):
        layers, input_shape = architecture.layers, architecture.input_shape
    else:
        layers, input_shape = parse_layers(architecture.get("layers") or []), architecture.get("inputShape")
    if not layers:
        raise LayerBuildError("Architecture has no layers")
    shape = resolve_input_shape(layers, input_shape)
    blocks = build_blocks(layers, shape)
    return SequentialNet(blocks, dump_layers(layers), shape)


def validate_architecture(architecture: ArchitectureSpec | dict) -> dict:
    """Builds the network once to check the shape chain; returns the stored form."""
    try:
        net = build_net(architecture)
    except LayerBuildError as e:
        raise ValidationError(str(e), cause=e) from e
    declared = (
        architecture.output_shape if isinstance(architecture, ArchitectureSpec) else architecture.get("outputShape")
    )
    if declared and tuple(declared) != tuple(net.output_shape):
        raise ValidationError(f"outputShape {list(declared)} does not match the layers ({list(net.output_shape)})")
    return net.architecture()


def check_hyperparameters(hp: Dict[str, Any]) -> None:
    loss = hp.get("lossFunction")
    if loss is not None and LOSS_ALIASES.get(loss, loss) not in LOSSES:
        raise ValidationError(f"Unsupported loss function: {loss}")
    optimizer = hp.get("optimizer")
    if optimizer is not None and str(optimizer).lower() not in OPTIMIZERS:
        raise ValidationError(f"Unsupported optimizer: {optimizer}")


def plan_load(
    model: Dict[str, Any],
    *,
    new_layers: Optional[List[dict]] = None,
    output_layers: Optional[List[int]] = None,
) -> tuple[Optional[str], Optional[Dict[str, Any]]]:
    """
    Picks how a stored model record is brought back into a runtime:
    saved weights, then transfer learning for clones, then the stored architecture.
    Returns ``(model_path, config)`` for ``ModelRuntime.load_model``.
    """
    hyperparameters = model.get("hyperparameters") or {}
    if model.get("modelPath"):
        return model["modelPath"], None

    transfer = model.get("transferLearning") or {}
    if transfer.get("baseModelPath"):
        base_layers = (model.get("architecture") or {}).get("layers") or []
        dropped = output_layers or ([len(base_layers) - 1] if base_layers else [])
        if new_layers is None:
            # fresh copies of the layers being replaced, same task shape
            new_layers = [
                {"type": base_layers[i]["type"], "config": {k: v for k, v in base_layers[i].get("config", {}).items() if k != "inputShape"}}
                for i in sorted(dropped) if 0 <= i < len(base_layers)
            ]
        return None, {
            "baseModelPath": transfer["baseModelPath"],
            "freezeBaseLayers": transfer.get("freezeBaseLayers", True),
            "outputLayers": dropped or None,
            "newLayers": new_layers,
            "hyperparameters": hyperparameters,
        }

    if model.get("architecture"):
        return None, {"architecture": model["architecture"], "hyperparameters": hyperparameters}
    return None, None


# ===== Runtime =====

class ModelRuntime:
    """One live model and the configuration it was compiled with."""

    def __init__(self, model_id: Optional[str] = None, storage: Optional[StorageService] = None):
        self.model_id = model_id
        self.storage = storage or StorageService()
        self._reset()

    def _reset(self) -> None:
        self.net: Optional[SequentialNet] = None
        self.state = RuntimeState.EMPTY
        self.hyperparameters: Dict[str, Any] = {}
        self.is_transfer_learning = False
        self.frozen_layers: List[int] = []
        self.optimizer: Optional[torch.optim.Optimizer] = None
        self.loss_fn = None
        self.metrics: List[str] = []

    @property
    def is_loaded(self) -> bool:
        return self.net is not None

    @property
    def architecture(self) -> Optional[dict]:
        return self.net.architecture() if self.net is not None else None

    def _require_model(self) -> SequentialNet:
        if self.net is None:
            raise NoModelError()
        return self.net

    # ============ LOAD ============
    def load_model(self, model_path: Optional[str] = None, config: Optional[Dict[str, Any]] = None) -> bool:
        """
        Modes (exactly one, or none for the default network):
        - model_path: load a saved model
        - config["architecture"]: build from descriptors
        - config["baseModelPath"]: transfer learning (optional "freezeBaseLayers",
          "outputLayers" indices to drop, "newLayers" head descriptors)
        Never raises; returns False and logs the cause on failure.
        """
        config = dict(config or {})
        log.info("Loading model for %s", self.model_id or "<anonymous>")
        self._reset()
        try:
            modes = [
                name for name, present in (
                    ("modelPath", bool(model_path)),
                    ("architecture", bool(config.get("architecture"))),
                    ("baseModelPath", bool(config.get("baseModelPath"))),
                ) if present
            ]
            if len(modes) > 1:
                raise ValueError(f"Model load modes are mutually exclusive, got {modes}")

            hyperparameters = config.get("hyperparameters") or {}
            if model_path:
                self._load_saved(model_path)
                log.info("Pre-trained model loaded from %s", model_path)
            elif config.get("architecture"):
                self.net = build_net(config["architecture"])
                self.state = RuntimeState.LOADED
                self.hyperparameters = dict(hyperparameters)
                self.compile()
                log.info("Model created from architecture (%d layers)", len(self.net.blocks))
            elif config.get("baseModelPath"):
                self.setup_transfer_learning(
                    config["baseModelPath"],
                    config.get("freezeBaseLayers", True),
                    config.get("outputLayers"),
                )
                if config.get("newLayers"):
                    self.add_output_layers(config["newLayers"])
                self.hyperparameters = dict(hyperparameters)
                log.info("Transfer learning model set up from %s", config["baseModelPath"])
            else:
                self.net = build_net(DEFAULT_ARCHITECTURE)
                self.state = RuntimeState.LOADED
                self.hyperparameters = dict(DEFAULT_HYPERPARAMETERS)
                self.compile()
                log.info("Default model created")
            return True
        except Exception as e:
            log.error("Error loading model for %s: %s", self.model_id or "<anonymous>", e, exc_info=True)
            self._reset()
            return False

    def _read_checkpoint(self, path: str) -> tuple[SequentialNet, Dict[str, Any]]:
        target = self.storage.resolve_model_path(path)
        file = target / MODEL_FILE if target.is_dir() else target
        if not file.exists():
            raise FileNotFoundError(f"No saved model at {target}")
        checkpoint = torch.load(file, map_location="cpu", weights_only=True)
        net = build_net(checkpoint["architecture"])
        net.load_state_dict(checkpoint["state_dict"])
        metadata = checkpoint.get("metadata") or {}
        for index in metadata.get("frozenBlocks") or []:
            net.blocks[index].freeze()
        return net, metadata

    def _load_saved(self, path: str) -> None:
        net, metadata = self._read_checkpoint(path)
        self.net = net
        self.hyperparameters = dict(metadata.get("hyperparameters") or {})
        self.is_transfer_learning = bool(metadata.get("isTransferLearning"))
        self.frozen_layers = list(metadata.get("frozenLayers") or [])
        self.state = RuntimeState.LOADED

    # ============ TRANSFER LEARNING ============
    def setup_transfer_learning(
        self,
        base_model_path: str,
        freeze_base_layers: bool = True,
        output_layers: Optional[Sequence[int]] = None,
    ) -> None:
        """
        Copies every base layer except ``output_layers`` (default: the last one),
        keeping learned weights; copies are frozen when ``freeze_base_layers``.
        """
        base, _ = self._read_checkpoint(base_model_path)
        count = len(base.blocks)
        skip = set(output_layers or [count - 1])
        out_of_range = sorted(i for i in skip if not 0 <= i < count)
        if out_of_range:
            raise ValueError(f"Output layer indices {out_of_range} out of range for {count} layers")

        blocks: List[Block] = []
        descriptors: List[dict] = []
        frozen: List[int] = []
        for index, (block, descriptor) in enumerate(zip(base.blocks, base.descriptors)):
            if index in skip:
                continue
            if blocks and block.in_shape != blocks[-1].out_shape:
                raise LayerBuildError(
                    f"Dropping layers before base layer {index} breaks the shape chain "
                    f"({list(blocks[-1].out_shape)} -> {list(block.in_shape)})"
                )
            clone = copy.deepcopy(block)
            if freeze_base_layers:
                clone.freeze()
                frozen.append(index)
            else:
                clone.requires_grad_(True)
            blocks.append(clone)
            descriptors.append(descriptor)

        if not blocks:
            raise ValueError("Transfer learning would drop every base layer")

        self.net = SequentialNet(blocks, descriptors, blocks[0].in_shape)
        self.is_transfer_learning = True
        self.frozen_layers = frozen
        self.optimizer = None
        self.state = RuntimeState.LOADED
        log.info("Base model added with %d frozen layers", len(frozen))

    def add_output_layers(self, layers: Sequence[Any]) -> None:
        """Appends new trainable layers on top of the current model."""
        net = self._require_model()
        specs = parse_layers(layers)
        for offset, block in enumerate(build_blocks(specs, net.output_shape)):
            net.append(block, dump_layers([specs[offset]])[0])
        # new parameters need a fresh optimizer
        self.optimizer = None
        self.state = RuntimeState.LOADED
        log.info("Added %d custom output layers", len(specs))

    # ============ COMPILE ============
    def compile(self) -> None:
        net = self._require_model()
        hp = {**COMPILE_DEFAULTS, **{k: v for k, v in self.hyperparameters.items() if v is not None}}

        loss_name = LOSS_ALIASES.get(hp["lossFunction"], hp["lossFunction"])
        if loss_name not in LOSSES:
            raise ValueError(f"Unsupported loss function: {hp['lossFunction']}")
        opt_cls = OPTIMIZERS.get(str(hp["optimizer"]).lower())
        if opt_cls is None:
            raise ValueError(f"Unsupported optimizer: {hp['optimizer']}")

        params = [p for p in net.parameters() if p.requires_grad]
        self.optimizer = opt_cls(params, lr=float(hp["learningRate"])) if params else None
        self.loss_fn = LOSSES[loss_name]
        self.metrics = list(hp.get("metrics") or [])
        if self.state is RuntimeState.LOADED:
            self.state = RuntimeState.COMPILED

    def update_hyperparameters(self, patch: Dict[str, Any]) -> Dict[str, Any]:
        self._require_model()
        log.info("Updating model hyperparameters")
        previous = self.hyperparameters
        self.hyperparameters = {**previous, **(patch or {})}
        try:
            self.compile()
        except ValueError:
            self.hyperparameters = previous
            raise
        return dict(self.hyperparameters)

    # ============ TRAIN / EVALUATE / PREDICT ============
    def _to_tensor(self, values: Any, what: str) -> torch.Tensor:
        net = self._require_model()
        try:
            x = torch.as_tensor(values, dtype=torch.float32)
        except (TypeError, ValueError) as e:
            raise ValueError(f"{what} must be a rectangular numeric array") from e
        if x.dim() == len(net.input_shape):
            x = x.unsqueeze(0)
        if tuple(x.shape[1:]) != net.input_shape:
            raise ValueError(f"{what} rows must have shape {list(net.input_shape)}, got {list(x.shape[1:])}")
        return x

    def _wants_accuracy(self) -> bool:
        return any(m in ("accuracy", "acc") for m in self.metrics)

    def train_model(
        self,
        data: Any,
        labels: Any,
        epochs: Optional[int] = None,
        batch_size: Optional[int] = None,
        validation_split: Optional[float] = None,
        on_epoch_end: Optional[Callable[[EpochProgress], None]] = None,
    ) -> FitResult:
        net = self._require_model()
        if self.state is RuntimeState.LOADED:
            self.compile()
        if self.optimizer is None:
            raise ValueError("Model has no trainable parameters")

        epochs = int(epochs or settings.default_epochs)
        batch_size = int(batch_size or settings.default_batch_size)
        split = settings.default_validation_split if validation_split is None else float(validation_split)
        if epochs < 1 or batch_size < 1 or not 0.0 <= split < 1.0:
            raise ValueError("epochs and batchSize must be positive and validationSplit in [0, 1)")

        x = self._to_tensor(data, "trainData")
        y = torch.as_tensor(labels, dtype=torch.float32)
        if y.shape[0] != x.shape[0]:
            raise ValueError("trainData and labels must have the same number of rows")

        n = x.shape[0]
        n_val = int(n * split)
        n_train = n - n_val
        if n_train < 1:
            raise ValueError("Not enough rows left for training after the validation split")
        x_train, y_train, x_val, y_val = x[:n_train], y[:n_train], x[n_train:], y[n_train:]

        track_acc = self._wants_accuracy()
        history: Dict[str, List[float]] = {"loss": []}
        if track_acc:
            history["acc"] = []
        if n_val:
            history["val_loss"] = []
            if track_acc:
                history["val_acc"] = []

        log.info("Training model %s: %d rows, %d epochs, batch %d", self.model_id, n_train, epochs, batch_size)
        for epoch in range(epochs):
            net.train()
            order = torch.randperm(n_train)
            loss_sum = acc_sum = 0.0
            for start in range(0, n_train, batch_size):
                idx = order[start:start + batch_size]
                xb, yb = x_train[idx], y_train[idx]
                self.optimizer.zero_grad()
                out = net(xb)
                loss = self.loss_fn(out, yb)
                loss.backward()
                self.optimizer.step()
                loss_sum += loss.item() * len(idx)
                if track_acc:
                    acc_sum += _accuracy(out.detach(), yb) * len(idx)
                del out, loss

            progress = EpochProgress(epoch=epoch, epochs=epochs, loss=loss_sum / n_train)
            history["loss"].append(progress.loss)
            if track_acc:
                progress.accuracy = acc_sum / n_train
                history["acc"].append(progress.accuracy)
            if n_val:
                progress.val_loss, progress.val_accuracy = self._score(x_val, y_val)
                history["val_loss"].append(progress.val_loss)
                if track_acc:
                    history["val_acc"].append(progress.val_accuracy)

            log.info(
                "Epoch %d of %d completed, loss: %.4f, accuracy: %s",
                epoch + 1, epochs, progress.loss,
                f"{progress.accuracy:.4f}" if progress.accuracy is not None else "n/a",
            )
            if on_epoch_end:
                on_epoch_end(progress)

        del x, y, x_train, y_train, x_val, y_val
        self.state = RuntimeState.TRAINED
        log.info("Model training completed")
        return FitResult(epoch=epochs - 1, history=history)

    def _score(self, x: torch.Tensor, y: torch.Tensor) -> tuple[float, Optional[float]]:
        net = self._require_model()
        net.eval()
        with torch.no_grad():
            out = net(x)
            loss = self.loss_fn(out, y).item()
            acc = _accuracy(out, y) if self._wants_accuracy() else None
        return loss, acc

    def evaluate_model(self, test_data: Any, test_labels: Any) -> Dict[str, Optional[float]]:
        self._require_model()
        if self.loss_fn is None:
            self.compile()
        x = self._to_tensor(test_data, "testData")
        y = torch.as_tensor(test_labels, dtype=torch.float32)
        if y.shape[0] != x.shape[0]:
            raise ValueError("testData and testLabels must have the same number of rows")
        loss, acc = self._score(x, y)
        log.info("Evaluation - loss: %.4f, accuracy: %s", loss, acc)
        return {"loss": loss, "accuracy": acc}

    def predict(self, input_data: Any) -> Dict[str, List[Any]]:
        net = self._require_model()
        x = self._to_tensor(input_data, "inputData")
        net.eval()
        with torch.no_grad():
            out = net(x)
        predictions = out.tolist()
        confidence = [_confidence(row) for row in out.reshape(out.shape[0], -1).tolist()]
        del x, out
        log.info("Prediction completed for %d rows", len(predictions))
        return {"predictions": predictions, "confidence": confidence}

    # ============ SAVE / SUMMARY ============
    def save_model(self, path: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        net = self._require_model()
        target = self.storage.resolve_model_path(path)
        target.mkdir(parents=True, exist_ok=True)
        envelope = {
            **(metadata or {}),
            "isTransferLearning": self.is_transfer_learning,
            "frozenLayers": list(self.frozen_layers),
            "frozenBlocks": net.frozen_blocks(),
            "modelArchitecture": net.architecture(),
            "hyperparameters": dict(self.hyperparameters),
            "date": datetime.now(timezone.utc).isoformat(),
        }
        torch.save(
            {"architecture": net.architecture(), "state_dict": net.state_dict(), "metadata": envelope},
            target / MODEL_FILE,
        )
        (target / METADATA_FILE).write_text(json.dumps(envelope, indent=2, default=str), encoding="utf-8")
        log.info("Model saved to %s", target)
        return str(target)

    def get_model_summary(self) -> Dict[str, Any]:
        net = self._require_model()
        layers = []
        for index, (block, descriptor) in enumerate(zip(net.blocks, net.descriptors)):
            layers.append({
                "name": f"{block.kind}_{index}",
                "type": block.kind,
                "trainable": block.trainable,
                "units": (descriptor.get("config") or {}).get("units"),
                "inputShape": list(block.in_shape),
                "outputShape": list(block.out_shape),
                "params": block.count_params(),
            })
        total = sum(p.numel() for p in net.parameters())
        trainable = sum(p.numel() for p in net.parameters() if p.requires_grad)
        return {
            "state": self.state.value,
            "layers": layers,
            "totalParams": total,
            "trainableParams": trainable,
            "nonTrainableParams": total - trainable,
            "isTransferLearning": self.is_transfer_learning,
            "frozenLayers": list(self.frozen_layers),
        }


# ===== Registry of live runtimes =====

class _Slot:
    __slots__ = ("lock", "runtime", "users")

    def __init__(self, runtime: ModelRuntime):
        self.lock = threading.Lock()
        self.runtime = runtime
        self.users = 0


class ModelRuntimeRegistry:
    """
    One runtime per model id; operations on a model id are serialized.
    At most `max_live` runtimes are kept. When a new one is needed the least
    recently used runtimes that no request is holding are evicted.
    """

    def __init__(self, storage: Optional[StorageService] = None, max_live: Optional[int] = None):
        self._storage = storage or StorageService()
        self._max_live = max_live or settings.max_live_models
        self._guard = threading.Lock()
        self._slots: "OrderedDict[str, _Slot]" = OrderedDict()

    def _acquire(self, model_id: Any) -> _Slot:
        key = str(model_id)
        with self._guard:
            slot = self._slots.get(key)
            if slot is None:
                slot = _Slot(ModelRuntime(key, self._storage))
                self._slots[key] = slot
            self._slots.move_to_end(key)
            slot.users += 1
            self._evict_idle()
            return slot

    def _evict_idle(self) -> None:
        # caller holds _guard
        excess = len(self._slots) - self._max_live
        if excess <= 0:
            return
        idle = [key for key, slot in self._slots.items() if slot.users == 0][:excess]
        for key in idle:
            del self._slots[key]
            log.info("Evicted idle runtime for model %s", key)

    @contextmanager
    def session(self, model_id: Any) -> Iterator[ModelRuntime]:
        slot = self._acquire(model_id)
        try:
            with slot.lock:
                yield slot.runtime
        finally:
            with self._guard:
                slot.users -= 1

    def is_live(self, model_id: Any) -> bool:
        with self._guard:
            slot = self._slots.get(str(model_id))
        return bool(slot and slot.runtime.is_loaded)

    def discard(self, model_id: Any) -> None:
        with self._guard:
            self._slots.pop(str(model_id), None)

    def live_model_ids(self) -> List[str]:
        with self._guard:
            return [k for k, s in self._slots.items() if s.runtime.is_loaded]


runtime_registry = ModelRuntimeRegistry()
