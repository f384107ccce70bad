# modelhub/api/deps.py
from fastapi import Depends
from pymongo.database import Database

from ..core.db import get_database
from ..services.dataset_service import DatasetService
from ..services.model_registry_service import ModelRegistryService
from ..services.model_runtime_service import ModelRuntimeRegistry, runtime_registry
from ..services.storage_service import StorageService
from ..services.user_service import UserService


def get_db() -> Database:
    return get_database()


def get_runtimes() -> ModelRuntimeRegistry:
    return runtime_registry


def get_storage() -> StorageService:
    return StorageService()


def get_user_service(db: Database = Depends(get_db)) -> UserService:
    return UserService(db)


def get_model_registry(db: Database = Depends(get_db)) -> ModelRegistryService:
    return ModelRegistryService(db)


def get_dataset_service(
    db: Database = Depends(get_db),
    storage: StorageService = Depends(get_storage),
) -> DatasetService:
    return DatasetService(db, storage)
