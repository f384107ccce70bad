from typing import Literal, Optional

from pydantic import EmailStr, Field

from .common import CamelModel


class RegisterIn(CamelModel):
    username: str = Field(..., min_length=3, max_length=50)
    password: str = Field(..., min_length=6)
    email: Optional[EmailStr] = None
    full_name: Optional[str] = None


class LoginIn(CamelModel):
    # username or email
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class ProfileIn(CamelModel):
    full_name: Optional[str] = None
    bio: Optional[str] = None
    avatar: Optional[str] = None
    organization: Optional[str] = None
    location: Optional[str] = None
    website: Optional[str] = None


class NotificationsIn(CamelModel):
    email: Optional[bool] = None
    browser: Optional[bool] = None


class PreferencesIn(CamelModel):
    theme: Optional[Literal["light", "dark", "system"]] = None
    notifications: Optional[NotificationsIn] = None


class ChangePasswordIn(CamelModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)


class UserRoleIn(CamelModel):
    user_id: str
    role: Literal["user", "admin"]


class UserStatusIn(CamelModel):
    user_id: str
    is_active: bool
