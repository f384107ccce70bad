from typing import Any, Dict, List, Literal, Optional

from pydantic import Field

from .common import CamelModel

DatasetFormat = Literal["csv", "json", "excel", "parquet", "image", "text", "other"]
Visibility = Literal["private", "public", "shared"]


class DatasetCreateIn(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    format: DatasetFormat
    visibility: Optional[Visibility] = None
    tags: Optional[List[str]] = None


class DatasetUpdateIn(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    visibility: Optional[Visibility] = None
    tags: Optional[List[str]] = None


class ShareIn(CamelModel):
    user_id: str
    access_level: Literal["view", "edit", "admin"] = "view"


class PreprocessingIn(CamelModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    parameters: Optional[Dict[str, Any]] = None


class DatasetVersionIn(CamelModel):
    description: Optional[str] = None


class StatisticsIn(CamelModel):
    summary: Optional[Dict[str, Any]] = None
    distributions: Optional[Dict[str, Any]] = None
    correlations: Optional[Dict[str, Any]] = None


class MetadataIn(CamelModel):
    size: Optional[int] = Field(default=None, ge=0)
    record_count: Optional[int] = Field(default=None, ge=0)
    features: Optional[List[Any]] = None
    dimensions: Optional[Any] = None
    data_types: Optional[Dict[str, Any]] = None
