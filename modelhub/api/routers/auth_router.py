import logging
import math
from typing import Any, Dict

from fastapi import APIRouter, Depends, Query, status

from ...api.deps import get_user_service
from ...api.responses import envelope, server_error
from ...api.router_auth import get_current_user, require_admin
from ...core.exceptions import ServiceError
from ...schemas.auth import (
    ChangePasswordIn,
    LoginIn,
    PreferencesIn,
    ProfileIn,
    RegisterIn,
    UserRoleIn,
    UserStatusIn,
)
from ...services.jwt_service import JWTService
from ...services.serialization import public_user
from ...services.user_service import UserService

log = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _session(user: Dict[str, Any]) -> Dict[str, Any]:
    return {"user": public_user(user), "token": JWTService.issue_token(user)}


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterIn, users: UserService = Depends(get_user_service)):
    """
    POST /auth/register
    Body: { "username": "...", "password": "...", "email"?: "...", "fullName"?: "..." }
    The first account ever registered becomes the administrator.
    """
    try:
        user = users.create_user(
            username=payload.username,
            password=payload.password,
            email=payload.email,
            full_name=payload.full_name,
        )
    except ServiceError:
        raise
    except Exception as e:
        raise server_error("Error registering user", e) from e
    return envelope("User registered successfully", **_session(user))


@router.post("/login")
def login(payload: LoginIn, users: UserService = Depends(get_user_service)):
    user = users.authenticate(payload.username, payload.password)
    log.info("User logged in: %s", user["_id"])
    return envelope("Login successful", **_session(user))


@router.get("/profile")
def get_profile(user: Dict[str, Any] = Depends(get_current_user)):
    return envelope(user=public_user(user))


@router.put("/profile")
def update_profile(
    payload: ProfileIn,
    user: Dict[str, Any] = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    updated = users.update_profile(user["_id"], payload.model_dump(by_alias=True, exclude_none=True))
    return envelope("Profile updated successfully", user=public_user(updated))


@router.put("/preferences")
def update_preferences(
    payload: PreferencesIn,
    user: Dict[str, Any] = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    notifications = payload.notifications.model_dump(exclude_none=True) if payload.notifications else None
    updated = users.update_preferences(user["_id"], theme=payload.theme, notifications=notifications)
    return envelope("Preferences updated successfully", preferences=updated.get("preferences"))


@router.put("/change-password")
def change_password(
    payload: ChangePasswordIn,
    user: Dict[str, Any] = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    users.change_password(user["_id"], payload.current_password, payload.new_password)
    return envelope("Password changed successfully")


# ============ ADMIN ============
@router.get("/users")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=200),
    admin: Dict[str, Any] = Depends(require_admin),
    users: UserService = Depends(get_user_service),
):
    rows, total = users.list_users(page=page, limit=limit)
    return envelope(
        count=len(rows),
        total=total,
        totalPages=math.ceil(total / limit),
        currentPage=page,
        data=[public_user(r) for r in rows],
    )


@router.put("/users/role")
def set_user_role(
    payload: UserRoleIn,
    admin: Dict[str, Any] = Depends(require_admin),
    users: UserService = Depends(get_user_service),
):
    updated = users.set_role(payload.user_id, payload.role)
    log.info("Admin %s set role of %s to %s", admin["_id"], payload.user_id, payload.role)
    return envelope("User role updated successfully", user=public_user(updated))


@router.put("/users/status")
def set_user_status(
    payload: UserStatusIn,
    admin: Dict[str, Any] = Depends(require_admin),
    users: UserService = Depends(get_user_service),
):
    updated = users.set_active(payload.user_id, payload.is_active)
    state = "activated" if payload.is_active else "deactivated"
    log.info("Admin %s %s user %s", admin["_id"], state, payload.user_id)
    return envelope(f"User {state} successfully", user=public_user(updated))
