# modelhub/api/routers/ai_router.py
import logging
import math
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ...api.deps import get_model_registry, get_runtimes, get_storage
from ...api.responses import envelope, model_brief, server_error
from ...api.router_auth import get_current_user
from ...core.exceptions import AccessDeniedError, NoModelError, ServiceError
from ...schemas.ai import (
    ArchitectureIn,
    CloneIn,
    EvaluateIn,
    HyperparametersUpdateIn,
    InitializeIn,
    LoadIn,
    PredictIn,
    SaveIn,
    TrainIn,
    VersionIn,
    VisibilityIn,
    VisualizationIn,
)
from ...schemas.layers import dump_layers
from ...services.model_registry_service import ModelRegistryService, can_modify_model, can_read_model
from ...services.model_runtime_service import (
    ModelRuntimeRegistry,
    check_hyperparameters,
    plan_load,
    validate_architecture,
)
from ...services.storage_service import StorageService

log = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])


def _owned(registry: ModelRegistryService, model_id: str, user: Dict[str, Any], action: str) -> Dict[str, Any]:
    model = registry.get_model(model_id)
    if not can_modify_model(model, user):
        log.warning("User %s may not %s model %s", user["_id"], action, model_id)
        raise AccessDeniedError(f"You do not have permission to {action} this model")
    return model


def _readable(registry: ModelRegistryService, model_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
    model = registry.get_model(model_id)
    if not can_read_model(model, user):
        raise AccessDeniedError("You do not have permission to use this model")
    return model


# ============ RUNTIME ============
@router.post("/initialize")
def initialize_model(
    payload: InitializeIn,
    user: Dict[str, Any] = Depends(get_current_user),
    registry: ModelRegistryService = Depends(get_model_registry),
    runtimes: ModelRuntimeRegistry = Depends(get_runtimes),
):
    architecture = validate_architecture(payload.architecture) if payload.architecture else None
    hyperparameters = payload.hyperparameters.model_dump(by_alias=True, exclude_none=True) if payload.hyperparameters else {}
    check_hyperparameters(hyperparameters)

    model = registry.create_model(
        user_id=user["_id"],
        name=payload.name,
        description=payload.description,
        model_type=payload.model_type,
        tags=payload.tags,
        architecture=architecture,
        hyperparameters=hyperparameters,
    )
    config = {"architecture": architecture, "hyperparameters": model["hyperparameters"]} if architecture else None

    with runtimes.session(model["_id"]) as runtime:
        ok = runtime.load_model(config=config)
        if ok and hyperparameters and not architecture:
            runtime.update_hyperparameters(hyperparameters)

    if not ok:
        runtimes.discard(model["_id"])
        registry.set_status(model["_id"], "error")
        raise HTTPException(status_code=500, detail="Failed to initialize AI model")

    log.info("AI model %s initialized for user %s", model["_id"], user["_id"])
    return envelope(
        "AI model initialized successfully",
        model=model_brief(model, "description", "status", "createdAt"),
    )


@router.post("/load")
def load_model(
    payload: LoadIn,
    user: Dict[str, Any] = Depends(get_current_user),
    registry: ModelRegistryService = Depends(get_model_registry),
    runtimes: ModelRuntimeRegistry = Depends(get_runtimes),
):
    model = _owned(registry, payload.model_id, user, "load")
    model_path, config = plan_load(
        model,
        new_layers=dump_layers(payload.new_layers) if payload.new_layers else None,
        output_layers=payload.output_layers,
    )
    with runtimes.session(model["_id"]) as runtime:
        ok = runtime.load_model(model_path=model_path, config=config)
        summary = runtime.get_model_summary() if ok else None
        spliced = runtime.architecture if ok and runtime.is_transfer_learning and not model_path else None

    if not ok:
        runtimes.discard(model["_id"])
        raise HTTPException(status_code=500, detail="Failed to load model")
    if spliced:
        model = registry.update_architecture(model["_id"], spliced)

    return envelope("Model loaded successfully", model=model_brief(model, "status", "architecture"), summary=summary)


@router.post("/train")
def train_model(
    payload: TrainIn,
    user: Dict[str, Any] = Depends(get_current_user),
    registry: ModelRegistryService = Depends(get_model_registry),
    runtimes: ModelRuntimeRegistry = Depends(get_runtimes),
):
    model = _owned(registry, payload.model_id, user, "train")
    try:
        with runtimes.session(model["_id"]) as runtime:
            result = runtime.train_model(
                payload.train_data,
                payload.labels,
                epochs=payload.epochs,
                batch_size=payload.batch_size,
                validation_split=payload.validation_split,
            )
    except ServiceError:
        raise
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve)) from ve
    except Exception as e:
        registry.set_status(model["_id"], "error")
        raise server_error("Error training AI model", e) from e

    # only rows the model accepted are kept
    registry.add_training_data(model["_id"], payload.train_data, payload.labels)
    epochs = result.epoch + 1
    loss, accuracy = result.final("loss"), result.final("acc")
    registry.record_training(model["_id"], epochs=epochs, loss=loss, accuracy=accuracy)
    return envelope(
        "Model trained successfully",
        result={
            "epochs": epochs,
            "loss": loss,
            "accuracy": accuracy,
            "valLoss": result.final("val_loss"),
            "valAccuracy": result.final("val_acc"),
        },
    )


@router.post("/predict")
def predict(
    payload: PredictIn,
    user: Dict[str, Any] = Depends(get_current_user),
    registry: ModelRegistryService = Depends(get_model_registry),
    runtimes: ModelRuntimeRegistry = Depends(get_runtimes),
):
    model = _readable(registry, payload.model_id, user)
    try:
        with runtimes.session(model["_id"]) as runtime:
            result = runtime.predict(payload.input_data)
    except ServiceError:
        raise
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve)) from ve
    except Exception as e:
        registry.set_status(model["_id"], "error")
        raise server_error("Error making prediction", e) from e

    entry = registry.add_prediction(model["_id"], payload.input_data, result, user_id=user["_id"])
    return envelope(
        "Prediction completed successfully",
        predictions=result["predictions"],
        confidence=result["confidence"],
        id=entry["_id"],
    )


@router.post("/evaluate")
def evaluate(
    payload: EvaluateIn,
    user: Dict[str, Any] = Depends(get_current_user),
    registry: ModelRegistryService = Depends(get_model_registry),
    runtimes: ModelRuntimeRegistry = Depends(get_runtimes),
):
    model = _readable(registry, payload.model_id, user)
    try:
        with runtimes.session(model["_id"]) as runtime:
            result = runtime.evaluate_model(payload.test_data, payload.test_labels)
    except ServiceError:
        raise
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve)) from ve
    except Exception as e:
        raise server_error("Error evaluating model", e) from e
    return envelope("Model evaluated successfully", result=result)


@router.post("/save")
def save_model(
    payload: SaveIn,
    user: Dict[str, Any] = Depends(get_current_user),
    registry: ModelRegistryService = Depends(get_model_registry),
    runtimes: ModelRuntimeRegistry = Depends(get_runtimes),
    storage: StorageService = Depends(get_storage),
):
    model = _owned(registry, payload.model_id, user, "save")
    metadata = {"modelId": str(model["_id"]), "name": model.get("name"), "userId": str(model.get("userId"))}
    try:
        if payload.save_path:
            path = storage.user_model_path(str(model["userId"]), payload.save_path)
        else:
            path = storage.default_model_path(str(model["_id"]))
        with runtimes.session(model["_id"]) as runtime:
            saved = runtime.save_model(path, metadata)
    except ServiceError:
        raise
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve)) from ve
    except Exception as e:
        raise server_error("Error saving model", e) from e

    registry.mark_saved(model["_id"], saved)
    return envelope("Model saved successfully", path=saved, modelId=model["_id"])


@router.get("/models/{model_id}/summary")
def model_summary(
    model_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    registry: ModelRegistryService = Depends(get_model_registry),
    runtimes: ModelRuntimeRegistry = Depends(get_runtimes),
):
    model = _readable(registry, model_id, user)
    if not runtimes.is_live(model["_id"]):
        raise NoModelError()
    with runtimes.session(model["_id"]) as runtime:
        summary = runtime.get_model_summary()
    return envelope(summary=summary)


# ============ REGISTRY ============
@router.post("/clone")
def clone_model(
    payload: CloneIn,
    user: Dict[str, Any] = Depends(get_current_user),
    registry: ModelRegistryService = Depends(get_model_registry),
):
    clone = registry.clone(
        payload.model_id,
        user,
        name=payload.name,
        description=payload.description,
        freeze_base_layers=payload.freeze_base_layers,
    )
    return envelope(
        "Model cloned successfully for transfer learning",
        model=model_brief(clone, "description", "baseModel", "transferLearning", "createdAt"),
    )


@router.put("/architecture")
def update_architecture(
    payload: ArchitectureIn,
    user: Dict[str, Any] = Depends(get_current_user),
    registry: ModelRegistryService = Depends(get_model_registry),
):
    model = _owned(registry, payload.model_id, user, "update")
    architecture = validate_architecture(
        {
            "layers": dump_layers(payload.layers),
            "inputShape": payload.input_shape,
            "outputShape": payload.output_shape,
        }
    )
    model = registry.update_architecture(model["_id"], architecture)
    return envelope(
        "Model architecture updated successfully",
        model=model_brief(model, "architecture", "updatedAt"),
    )


@router.put("/hyperparameters")
def update_hyperparameters(
    payload: HyperparametersUpdateIn,
    user: Dict[str, Any] = Depends(get_current_user),
    registry: ModelRegistryService = Depends(get_model_registry),
    runtimes: ModelRuntimeRegistry = Depends(get_runtimes),
):
    model = _owned(registry, payload.model_id, user, "update")
    patch = payload.hyperparameters.model_dump(by_alias=True, exclude_none=True)
    check_hyperparameters(patch)

    if runtimes.is_live(model["_id"]):
        with runtimes.session(model["_id"]) as runtime:
            runtime.update_hyperparameters(patch)
    model = registry.update_hyperparameters(model["_id"], patch)
    return envelope(
        "Model hyperparameters updated successfully",
        model=model_brief(model, "hyperparameters", "updatedAt"),
    )


@router.post("/visualization")
def add_visualization(
    payload: VisualizationIn,
    user: Dict[str, Any] = Depends(get_current_user),
    registry: ModelRegistryService = Depends(get_model_registry),
):
    model = _owned(registry, payload.model_id, user, "add visualizations to")
    visualization = registry.add_visualization(model["_id"], payload.type, payload.data)
    return envelope("Visualization added successfully", visualization=visualization)


@router.post("/version")
def create_version(
    payload: VersionIn,
    user: Dict[str, Any] = Depends(get_current_user),
    registry: ModelRegistryService = Depends(get_model_registry),
    storage: StorageService = Depends(get_storage),
):
    model = _owned(registry, payload.model_id, user, "version")
    model = registry.add_version(
        model["_id"],
        model_path=payload.model_path,
        description=payload.description,
        performance=payload.performance,
        default_path=storage.default_model_path,
    )
    return envelope(
        "Model version created successfully",
        model=model_brief(model, "currentVersion", "versions", "updatedAt"),
    )


@router.put("/visibility")
def set_visibility(
    payload: VisibilityIn,
    user: Dict[str, Any] = Depends(get_current_user),
    registry: ModelRegistryService = Depends(get_model_registry),
):
    model = _owned(registry, payload.model_id, user, "change the visibility of")
    model = registry.set_visibility(model["_id"], payload.is_public)
    state = "public" if payload.is_public else "private"
    log.info("Model %s visibility set to %s", model["_id"], state)
    return envelope(f"Model is now {state}", model=model_brief(model, "isPublic", "updatedAt"))


@router.get("/models")
def list_models(
    user_id: Optional[str] = Query(default=None, alias="userId"),
    limit: int = Query(10, ge=1, le=200),
    offset: int = Query(0, ge=0),
    registry: ModelRegistryService = Depends(get_model_registry),
):
    try:
        models = registry.list_models(user_id=user_id, limit=limit, offset=offset)
    except ServiceError:
        raise
    except Exception as e:
        raise server_error("Error getting models", e) from e
    return envelope(models=models)


@router.get("/models/{model_id}")
def get_model(
    model_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    registry: ModelRegistryService = Depends(get_model_registry),
):
    model = _readable(registry, model_id, user)
    return envelope(model=model)


@router.get("/public-models")
def list_public_models(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=200),
    model_type: Optional[str] = Query(default=None, alias="modelType"),
    tag: Optional[str] = None,
    registry: ModelRegistryService = Depends(get_model_registry),
):
    try:
        models, total = registry.list_public_models(page=page, limit=limit, model_type=model_type, tag=tag)
    except Exception as e:
        raise server_error("Error getting public models", e) from e
    return envelope(
        count=len(models),
        total=total,
        totalPages=math.ceil(total / limit),
        currentPage=page,
        models=models,
    )
