# modelhub/services/dataset_service.py
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from ..core.db import DATASETS
from ..core.exceptions import AccessDeniedError, DuplicateNameError, NotFoundError, ServiceError, ValidationError
from .storage_service import StorageService

log = logging.getLogger(__name__)

FORMATS = ("csv", "json", "excel", "parquet", "image", "text", "other")
VISIBILITIES = ("private", "public", "shared")
ACCESS_LEVELS = ("view", "edit", "admin")
STATISTICS_FIELDS = ("summary", "distributions", "correlations")
METADATA_FIELDS = ("size", "recordCount", "features", "dimensions", "dataTypes")

VERSION_CAS_ATTEMPTS = 16


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _oid(value: Any, what: str = "Dataset") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError) as e:
        raise NotFoundError(f"{what} not found", cause=e) from e


# ------------------------
# Access policy
# ------------------------
def _is_admin(user: Dict[str, Any]) -> bool:
    return user.get("role") == "admin"


def _share_for(dataset: Dict[str, Any], user: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    uid = str(user.get("_id"))
    for share in dataset.get("sharedWith") or []:
        if str(share.get("user")) == uid:
            return share
    return None


def is_creator(dataset: Dict[str, Any], user: Dict[str, Any]) -> bool:
    return str(dataset.get("creator")) == str(user.get("_id"))


def can_view(dataset: Dict[str, Any], user: Dict[str, Any]) -> bool:
    return (
        is_creator(dataset, user)
        or dataset.get("visibility") == "public"
        or _share_for(dataset, user) is not None
        or _is_admin(user)
    )


def can_manage(dataset: Dict[str, Any], user: Dict[str, Any]) -> bool:
    return is_creator(dataset, user) or _is_admin(user)


def can_edit(dataset: Dict[str, Any], user: Dict[str, Any]) -> bool:
    share = _share_for(dataset, user)
    return can_manage(dataset, user) or (share is not None and share.get("accessLevel") in ("edit", "admin"))


class DatasetService:
    """
    Repository-style service for dataset records.
    Access rules are enforced here so every caller gets the same answer.
    """

    def __init__(self, db: Database, storage: Optional[StorageService] = None):
        self.datasets = db[DATASETS]
        self.storage = storage or StorageService()

    # ============ CREATE / READ ============
    def create_dataset(
        self,
        user: Dict[str, Any],
        *,
        name: str,
        description: Optional[str] = None,
        format: str,
        visibility: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        name = name.strip()
        if format not in FORMATS:
            raise ValidationError(f"Unsupported dataset format: {format}")
        if self.datasets.find_one({"creator": user["_id"], "name": name, "isActive": True}, {"_id": 1}):
            raise DuplicateNameError("You already have a dataset with this name")

        now = _now()
        doc: Dict[str, Any] = {
            "name": name,
            "description": description or "",
            "format": format,
            "visibility": visibility or "private",
            "tags": list(tags or []),
            "creator": user["_id"],
            "storageInfo": self.storage.dataset_storage_info(str(user["_id"]), name, format),
            "sharedWith": [],
            "preprocessing": [],
            "versions": [],
            "currentVersion": 0,
            "statistics": {},
            "metadata": {},
            "isActive": True,
            "createdAt": now,
            "updatedAt": now,
        }
        try:
            ins = self.datasets.insert_one(doc)
        except DuplicateKeyError as e:
            raise DuplicateNameError("You already have a dataset with this name", cause=e) from e
        doc["_id"] = ins.inserted_id
        log.info("Dataset '%s' created: %s", name, ins.inserted_id)
        return doc

    def list_datasets(
        self,
        user: Dict[str, Any],
        *,
        page: int = 1,
        limit: int = 10,
        format: Optional[str] = None,
        tag: Optional[str] = None,
        visibility: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], int]:
        uid = user["_id"]
        if visibility:
            # the visibility filter narrows the caller's own datasets only
            either: List[Dict[str, Any]] = [{"creator": uid, "visibility": visibility}]
            if visibility != "private":
                either.append({"visibility": "public"})
            either.append({"sharedWith.user": uid})
        else:
            either = [{"creator": uid}, {"visibility": "public"}, {"sharedWith.user": uid}]

        query: Dict[str, Any] = {"$or": either, "isActive": True}
        if format:
            query["format"] = format
        if tag:
            query["tags"] = tag

        rows = list(
            self.datasets.find(query)
            .sort("updatedAt", DESCENDING)
            .skip((page - 1) * limit)
            .limit(limit)
        )
        return rows, self.datasets.count_documents(query)

    def find_dataset(self, dataset_id: Any) -> Dict[str, Any]:
        dataset = self.datasets.find_one({"_id": _oid(dataset_id), "isActive": True})
        if not dataset:
            raise NotFoundError("Dataset not found")
        return dataset

    def get_dataset(self, dataset_id: Any, user: Dict[str, Any]) -> Dict[str, Any]:
        dataset = self.find_dataset(dataset_id)
        if not can_view(dataset, user):
            raise AccessDeniedError("You do not have permission to access this dataset")
        return dataset

    # ============ MUTATORS ============
    def _update(self, dataset_id: ObjectId, update: Dict[str, Any], **filters: Any) -> Dict[str, Any]:
        update = dict(update)
        update.setdefault("$set", {})["updatedAt"] = _now()
        updated = self.datasets.find_one_and_update(
            {"_id": dataset_id, "isActive": True, **filters},
            update,
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise NotFoundError("Dataset not found")
        return updated

    def _managed(self, dataset_id: Any, user: Dict[str, Any], message: str) -> Dict[str, Any]:
        dataset = self.find_dataset(dataset_id)
        if not can_manage(dataset, user):
            raise AccessDeniedError(message)
        return dataset

    def _editable(self, dataset_id: Any, user: Dict[str, Any]) -> Dict[str, Any]:
        dataset = self.find_dataset(dataset_id)
        if not can_edit(dataset, user):
            raise AccessDeniedError("You do not have permission to update this dataset")
        return dataset

    def update_dataset(self, dataset_id: Any, user: Dict[str, Any], fields: Dict[str, Any]) -> Dict[str, Any]:
        dataset = self._managed(dataset_id, user, "You can only update datasets you created")
        changes: Dict[str, Any] = {}
        new_name = (fields.get("name") or "").strip()
        if new_name and new_name != dataset["name"]:
            clash = self.datasets.find_one(
                {"creator": dataset["creator"], "name": new_name, "isActive": True, "_id": {"$ne": dataset["_id"]}},
                {"_id": 1},
            )
            if clash:
                raise DuplicateNameError("You already have another dataset with this name")
            changes["name"] = new_name
        for key in ("description", "visibility", "tags"):
            if fields.get(key) is not None:
                changes[key] = fields[key]
        try:
            return self._update(dataset["_id"], {"$set": changes})
        except DuplicateKeyError as e:
            raise DuplicateNameError("You already have another dataset with this name", cause=e) from e

    def share_with(self, dataset_id: Any, user: Dict[str, Any], target_user_id: Any, access_level: str = "view") -> Dict[str, Any]:
        """Upsert keyed by the target user; the latest access level wins."""
        if access_level not in ACCESS_LEVELS:
            raise ValidationError(f"Invalid access level: {access_level}")
        dataset = self._managed(dataset_id, user, "You can only share datasets you created")
        target = _oid(target_user_id, "User")
        now = _now()
        try:
            return self._update(
                dataset["_id"],
                {"$set": {"sharedWith.$.accessLevel": access_level, "sharedWith.$.sharedAt": now}},
                **{"sharedWith.user": target},
            )
        except NotFoundError:
            entry = {"user": target, "accessLevel": access_level, "sharedAt": now}
            # only push when no entry for this user appeared in between
            return self._update(
                dataset["_id"],
                {"$push": {"sharedWith": entry}},
                **{"sharedWith.user": {"$ne": target}},
            )

    def soft_delete(self, dataset_id: Any, user: Dict[str, Any]) -> None:
        dataset = self._managed(dataset_id, user, "You can only delete datasets you created")
        self._update(dataset["_id"], {"$set": {"isActive": False}})
        log.info("Dataset %s deactivated", dataset["_id"])

    def add_preprocessing_step(
        self,
        dataset_id: Any,
        user: Dict[str, Any],
        *,
        name: str,
        description: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        dataset = self._managed(dataset_id, user, "You can only modify datasets you created")
        step = {"name": name, "description": description, "parameters": parameters or {}, "appliedAt": _now()}
        return self._update(dataset["_id"], {"$push": {"preprocessing": step}})

    def add_version(self, dataset_id: Any, user: Dict[str, Any], *, description: Optional[str] = None) -> Dict[str, Any]:
        """Appends version ``currentVersion + 1`` stored as ``<base>_v<n><ext>``."""
        dataset = self._managed(dataset_id, user, "You can only modify datasets you created")
        oid = dataset["_id"]
        for _ in range(VERSION_CAS_ATTEMPTS):
            seen = int(dataset.get("currentVersion") or 0)
            number = seen + 1
            info = dataset.get("storageInfo") or {}
            version = {
                "versionNumber": number,
                "description": description,
                "storageInfo": {
                    "location": info.get("location"),
                    "fileName": self.storage.version_filename(info.get("fileName", ""), number),
                },
                "createdAt": _now(),
            }
            try:
                return self._update(
                    oid,
                    {"$push": {"versions": version}, "$set": {"currentVersion": number}},
                    currentVersion=dataset.get("currentVersion", 0),
                )
            except NotFoundError:
                dataset = self.find_dataset(oid)
        raise ServiceError("Could not allocate a dataset version number; please retry")

    def update_statistics(self, dataset_id: Any, user: Dict[str, Any], stats: Dict[str, Any]) -> Dict[str, Any]:
        dataset = self._editable(dataset_id, user)
        fields = {f"statistics.{k}": v for k, v in stats.items() if k in STATISTICS_FIELDS and v is not None}
        return self._update(dataset["_id"], {"$set": fields})

    def update_metadata(self, dataset_id: Any, user: Dict[str, Any], meta: Dict[str, Any]) -> Dict[str, Any]:
        dataset = self._editable(dataset_id, user)
        fields = {f"metadata.{k}": v for k, v in meta.items() if k in METADATA_FIELDS and v is not None}
        return self._update(dataset["_id"], {"$set": fields})
