# modelhub/api/routers/datasets_router.py
import math
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status

from ...api.deps import get_dataset_service
from ...api.responses import envelope, server_error
from ...api.router_auth import get_current_user
from ...core.exceptions import ServiceError
from ...schemas.datasets import (
    DatasetCreateIn,
    DatasetFormat,
    DatasetUpdateIn,
    DatasetVersionIn,
    MetadataIn,
    PreprocessingIn,
    ShareIn,
    StatisticsIn,
    Visibility,
)
from ...services.dataset_service import DatasetService

router = APIRouter(prefix="/datasets", tags=["datasets"])


@router.post("", status_code=status.HTTP_201_CREATED)
def create_dataset(
    payload: DatasetCreateIn,
    user: Dict[str, Any] = Depends(get_current_user),
    svc: DatasetService = Depends(get_dataset_service),
):
    try:
        dataset = svc.create_dataset(
            user,
            name=payload.name,
            description=payload.description,
            format=payload.format,
            visibility=payload.visibility,
            tags=payload.tags,
        )
    except ServiceError:
        raise
    except Exception as e:
        raise server_error("Error creating dataset", e) from e
    return envelope("Dataset created successfully", data=dataset)


@router.get("")
def list_datasets(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=200),
    format: Optional[DatasetFormat] = None,
    tag: Optional[str] = None,
    visibility: Optional[Visibility] = None,
    user: Dict[str, Any] = Depends(get_current_user),
    svc: DatasetService = Depends(get_dataset_service),
):
    try:
        rows, total = svc.list_datasets(user, page=page, limit=limit, format=format, tag=tag, visibility=visibility)
    except Exception as e:
        raise server_error("Error fetching datasets", e) from e
    return envelope(
        count=len(rows),
        total=total,
        totalPages=math.ceil(total / limit),
        currentPage=page,
        data=rows,
    )


@router.get("/{dataset_id}")
def get_dataset(
    dataset_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    svc: DatasetService = Depends(get_dataset_service),
):
    return envelope(data=svc.get_dataset(dataset_id, user))


@router.put("/{dataset_id}")
def update_dataset(
    dataset_id: str,
    payload: DatasetUpdateIn,
    user: Dict[str, Any] = Depends(get_current_user),
    svc: DatasetService = Depends(get_dataset_service),
):
    dataset = svc.update_dataset(dataset_id, user, payload.model_dump(exclude_none=True))
    return envelope("Dataset updated successfully", data=dataset)


@router.post("/{dataset_id}/share")
def share_dataset(
    dataset_id: str,
    payload: ShareIn,
    user: Dict[str, Any] = Depends(get_current_user),
    svc: DatasetService = Depends(get_dataset_service),
):
    dataset = svc.share_with(dataset_id, user, payload.user_id, payload.access_level)
    return envelope("Dataset shared successfully", data=dataset)


@router.delete("/{dataset_id}")
def delete_dataset(
    dataset_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    svc: DatasetService = Depends(get_dataset_service),
):
    svc.soft_delete(dataset_id, user)
    return envelope("Dataset deleted successfully")


@router.post("/{dataset_id}/preprocessing")
def add_preprocessing_step(
    dataset_id: str,
    payload: PreprocessingIn,
    user: Dict[str, Any] = Depends(get_current_user),
    svc: DatasetService = Depends(get_dataset_service),
):
    dataset = svc.add_preprocessing_step(
        dataset_id,
        user,
        name=payload.name,
        description=payload.description,
        parameters=payload.parameters,
    )
    return envelope("Preprocessing step added successfully", data=dataset)


@router.post("/{dataset_id}/versions")
def add_dataset_version(
    dataset_id: str,
    payload: DatasetVersionIn,
    user: Dict[str, Any] = Depends(get_current_user),
    svc: DatasetService = Depends(get_dataset_service),
):
    dataset = svc.add_version(dataset_id, user, description=payload.description)
    return envelope("Dataset version added successfully", data=dataset)


@router.put("/{dataset_id}/statistics")
def update_statistics(
    dataset_id: str,
    payload: StatisticsIn,
    user: Dict[str, Any] = Depends(get_current_user),
    svc: DatasetService = Depends(get_dataset_service),
):
    dataset = svc.update_statistics(dataset_id, user, payload.model_dump(exclude_none=True))
    return envelope("Dataset statistics updated successfully", data=dataset)


@router.put("/{dataset_id}/metadata")
def update_metadata(
    dataset_id: str,
    payload: MetadataIn,
    user: Dict[str, Any] = Depends(get_current_user),
    svc: DatasetService = Depends(get_dataset_service),
):
    dataset = svc.update_metadata(dataset_id, user, payload.model_dump(by_alias=True, exclude_none=True))
    return envelope("Dataset metadata updated successfully", data=dataset)
