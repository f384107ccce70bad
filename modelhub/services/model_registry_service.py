# modelhub/services/model_registry_service.py
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from ..core.db import AI_MODELS
from ..core.exceptions import AccessDeniedError, NotFoundError, ServiceError
from ..schemas.layers import DEFAULT_ARCHITECTURE, DEFAULT_HYPERPARAMETERS, dump_architecture

log = logging.getLogger(__name__)

STATUSES = ("initialized", "trained", "saved", "error")
DEFAULT_MODEL_TYPE = "pytorch"

PUBLIC_FIELDS = {
    "name": 1,
    "description": 1,
    "modelType": 1,
    "tags": 1,
    "baseModel": 1,
    "trainingHistory": 1,
    "createdAt": 1,
    "userId": 1,
}

# compare-and-set attempts before giving up on a contended version counter
VERSION_CAS_ATTEMPTS = 16


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _oid(value: Any, what: str = "Model") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError) as e:
        raise NotFoundError(f"{what} not found", cause=e) from e


def is_model_owner(model: Dict[str, Any], user: Dict[str, Any]) -> bool:
    return str(model.get("userId")) == str(user.get("_id"))


def can_modify_model(model: Dict[str, Any], user: Dict[str, Any]) -> bool:
    return is_model_owner(model, user) or user.get("role") == "admin"


def can_read_model(model: Dict[str, Any], user: Optional[Dict[str, Any]]) -> bool:
    if model.get("isPublic"):
        return True
    return user is not None and can_modify_model(model, user)


class ModelRegistryService:
    """
    Repository-style service for AI model records.
    Every mutator is a single-document update that returns the persisted document.
    """

    def __init__(self, db: Database):
        self.models = db[AI_MODELS]

    # ============ CREATE / READ ============
    def create_model(
        self,
        *,
        user_id: Any,
        name: Optional[str] = None,
        description: Optional[str] = None,
        model_type: Optional[str] = None,
        tags: Optional[List[str]] = None,
        architecture: Optional[Dict[str, Any]] = None,
        hyperparameters: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        now = _now()
        doc: Dict[str, Any] = {
            "name": (name or "Default Model").strip(),
            "description": description or "Created via API",
            "userId": _oid(user_id, "User"),
            "modelType": model_type or DEFAULT_MODEL_TYPE,
            "tags": list(tags or []),
            "status": "initialized",
            "architecture": architecture or dump_architecture(DEFAULT_ARCHITECTURE),
            "hyperparameters": {**DEFAULT_HYPERPARAMETERS, **(hyperparameters or {})},
            "trainingHistory": {},
            "trainingData": [],
            "predictions": [],
            "versions": [],
            "currentVersion": 0,
            "visualizations": [],
            "isPublic": False,
            "modelPath": None,
            "createdAt": now,
            "updatedAt": now,
        }
        ins = self.models.insert_one(doc)
        doc["_id"] = ins.inserted_id
        log.info("Model created in database: %s", ins.inserted_id)
        return doc

    def get_model(self, model_id: Any) -> Dict[str, Any]:
        model = self.models.find_one({"_id": _oid(model_id)})
        if not model:
            raise NotFoundError("Model not found")
        return model

    def list_models(
        self,
        *,
        user_id: Optional[Any] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        if user_id is not None:
            cur = self.models.find({"userId": _oid(user_id, "User")}).sort("createdAt", DESCENDING)
        else:
            cur = self.models.find().sort("createdAt", DESCENDING).skip(offset).limit(limit)
        return list(cur)

    def list_public_models(
        self,
        *,
        page: int = 1,
        limit: int = 10,
        model_type: Optional[str] = None,
        tag: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], int]:
        query: Dict[str, Any] = {"isPublic": True}
        if model_type:
            query["modelType"] = model_type
        if tag:
            query["tags"] = tag
        rows = list(
            self.models.find(query, PUBLIC_FIELDS)
            .sort("updatedAt", DESCENDING)
            .skip((page - 1) * limit)
            .limit(limit)
        )
        return rows, self.models.count_documents(query)

    # ============ MUTATORS ============
    def _update(self, model_id: Any, update: Dict[str, Any]) -> Dict[str, Any]:
        update = dict(update)
        update.setdefault("$set", {})["updatedAt"] = _now()
        updated = self.models.find_one_and_update(
            {"_id": _oid(model_id)},
            update,
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise NotFoundError("Model not found")
        return updated

    def set_status(self, model_id: Any, status: str) -> Dict[str, Any]:
        if status not in STATUSES:
            raise ValueError(f"Unknown model status: {status}")
        return self._update(model_id, {"$set": {"status": status}})

    def add_training_data(self, model_id: Any, data: Any, labels: Any) -> Dict[str, Any]:
        entry = {"data": data, "labels": labels, "addedAt": _now()}
        return self._update(model_id, {"$push": {"trainingData": entry}})

    def record_training(self, model_id: Any, *, epochs: int, loss: Optional[float], accuracy: Optional[float]) -> Dict[str, Any]:
        history = {"lastTrained": _now(), "epochs": epochs, "loss": loss, "accuracy": accuracy}
        return self._update(model_id, {"$set": {"status": "trained", "trainingHistory": history}})

    def add_prediction(
        self,
        model_id: Any,
        input_data: Any,
        output: Any,
        user_id: Optional[Any] = None,
    ) -> Dict[str, Any]:
        entry: Dict[str, Any] = {"_id": ObjectId(), "input": input_data, "output": output, "timestamp": _now()}
        if user_id is not None:
            entry["userId"] = _oid(user_id, "User")
        self._update(model_id, {"$push": {"predictions": entry}})
        return entry

    def add_visualization(self, model_id: Any, vis_type: str, data: Any) -> Dict[str, Any]:
        entry = {"_id": ObjectId(), "type": vis_type, "data": data, "createdAt": _now()}
        self._update(model_id, {"$push": {"visualizations": entry}})
        return entry

    def mark_saved(self, model_id: Any, path: str) -> Dict[str, Any]:
        return self._update(model_id, {"$set": {"modelPath": path, "status": "saved"}})

    def update_architecture(self, model_id: Any, architecture: Dict[str, Any]) -> Dict[str, Any]:
        return self._update(model_id, {"$set": {"architecture": architecture}})

    def update_hyperparameters(self, model_id: Any, patch: Dict[str, Any]) -> Dict[str, Any]:
        fields = {f"hyperparameters.{k}": v for k, v in (patch or {}).items()}
        return self._update(model_id, {"$set": fields})

    def set_visibility(self, model_id: Any, is_public: bool) -> Dict[str, Any]:
        return self._update(model_id, {"$set": {"isPublic": bool(is_public)}})

    def add_version(
        self,
        model_id: Any,
        *,
        model_path: Optional[str] = None,
        description: Optional[str] = None,
        performance: Optional[Dict[str, Any]] = None,
        default_path=None,
    ) -> Dict[str, Any]:
        """
        Appends version ``currentVersion + 1`` and makes it current.
        The write only lands if ``currentVersion`` is unchanged since it was read,
        so concurrent callers never share a number.
        ``default_path(model_id, n)`` supplies the path when none is given.
        """
        oid = _oid(model_id)
        for _ in range(VERSION_CAS_ATTEMPTS):
            current = self.models.find_one({"_id": oid}, {"currentVersion": 1})
            if not current:
                raise NotFoundError("Model not found")
            seen = int(current.get("currentVersion") or 0)
            number = seen + 1
            path = model_path or (default_path(str(oid), number) if default_path else None)
            version = {
                "versionNumber": number,
                "modelPath": path,
                "description": description or f"Version {number}",
                "performance": performance or {},
                "createdAt": _now(),
            }
            updated = self.models.find_one_and_update(
                {"_id": oid, "currentVersion": current.get("currentVersion", 0)},
                {
                    "$push": {"versions": version},
                    "$set": {"currentVersion": number, "updatedAt": _now()},
                },
                return_document=ReturnDocument.AFTER,
            )
            if updated:
                log.info("Model %s version %d created", oid, number)
                return updated
            log.debug("Version counter for %s moved past %d; retrying", oid, seen)
        raise ServiceError("Could not allocate a model version number; please retry")

    # ============ TRANSFER LEARNING ============
    def clone(
        self,
        source_id: Any,
        requester: Dict[str, Any],
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        freeze_base_layers: bool = True,
    ) -> Dict[str, Any]:
        source = self.get_model(source_id)
        if not (is_model_owner(source, requester) or source.get("isPublic")):
            raise AccessDeniedError("You do not have permission to clone this model")

        now = _now()
        doc: Dict[str, Any] = {
            "name": (name or f"{source.get('name', 'Model')} (Transfer)").strip(),
            "description": description or f"Transfer learning from {source.get('name', source['_id'])}",
            "userId": requester["_id"],
            "modelType": source.get("modelType", DEFAULT_MODEL_TYPE),
            "tags": list(source.get("tags") or []),
            "status": "initialized",
            "architecture": source.get("architecture") or dump_architecture(DEFAULT_ARCHITECTURE),
            "hyperparameters": dict(source.get("hyperparameters") or DEFAULT_HYPERPARAMETERS),
            "trainingHistory": {},
            "trainingData": [],
            "predictions": [],
            "versions": [],
            "currentVersion": 0,
            "visualizations": [],
            "isPublic": False,
            "modelPath": None,
            "baseModel": source["_id"],
            "transferLearning": {
                "freezeBaseLayers": bool(freeze_base_layers),
                "baseModelPath": source.get("modelPath"),
            },
            "createdAt": now,
            "updatedAt": now,
        }
        ins = self.models.insert_one(doc)
        doc["_id"] = ins.inserted_id
        log.info("Model %s cloned from %s for user %s", ins.inserted_id, source["_id"], requester["_id"])
        return doc
