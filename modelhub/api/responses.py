import logging
from typing import Any, Dict, Optional

from fastapi import HTTPException

from ..services.serialization import json_safe

log = logging.getLogger(__name__)


def envelope(message: Optional[str] = None, **payload: Any) -> Dict[str, Any]:
    """Success body: {success, message?, <payload>}."""
    body: Dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    body.update(json_safe(payload))
    return body


def server_error(message: str, exc: Exception) -> HTTPException:
    log.error("%s: %s", message, exc, exc_info=exc)
    return HTTPException(status_code=500, detail={"message": message, "error": str(exc)})


def model_brief(model: Dict[str, Any], *fields: str) -> Dict[str, Any]:
    brief = {"id": model["_id"], "name": model.get("name")}
    for f in fields:
        brief[f] = model.get(f)
    return brief
