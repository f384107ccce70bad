"""
JSON serialization helpers for Mongo documents.
- ObjectId -> str
- datetime/date -> ISO8601
- NaN / +Inf / -Inf -> None
"""
from __future__ import annotations

import math
from datetime import date, datetime
from typing import Any, Mapping

from bson import ObjectId


def json_safe(obj: Any) -> Any:
    if obj is None or isinstance(obj, (str, bool, int)):
        return obj
    if isinstance(obj, float):
        return obj if math.isfinite(obj) else None
    if isinstance(obj, ObjectId):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Mapping):
        return {str(k): json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [json_safe(v) for v in obj]
    return str(obj)


def public_user(user: Mapping[str, Any]) -> dict:
    """User document without the credential hash."""
    return json_safe({k: v for k, v in user.items() if k != "password"})
