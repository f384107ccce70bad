from typing import Any, Dict, Optional

from fastapi import Depends, Header, HTTPException, status

from ..core.exceptions import AuthError
from ..services.jwt_service import JWTService
from ..services.user_service import UserService
from .deps import get_user_service
import logging

log = logging.getLogger(__name__)


def _bearer(authorization: Optional[str]) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authorized, no token")
    return authorization.split(" ", 1)[1].strip()


def get_current_sub(
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> str:
    token = _bearer(authorization)
    try:
        return JWTService.sub_from_token(token)
    except AuthError as e:
        log.warning("JWT verify failed: %s", e.message)  # <- exact reason stays server-side
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authorized, token failed")


def get_current_user(
    sub: str = Depends(get_current_sub),
    users: UserService = Depends(get_user_service),
) -> Dict[str, Any]:
    user = users.find_user(sub)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if not user.get("isActive", True):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated. Please contact an administrator.",
        )
    return user


def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if user.get("role") != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized as an admin")
    return user
