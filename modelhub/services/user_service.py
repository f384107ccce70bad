# modelhub/services/user_service.py
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import bcrypt
from bson import ObjectId
from bson.errors import InvalidId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from ..core.db import META, USERS
from ..core.exceptions import AuthError, DuplicateNameError, NotFoundError, ValidationError

log = logging.getLogger(__name__)

ROLES = ("user", "admin")
PROFILE_FIELDS = ("fullName", "bio", "avatar", "organization", "location", "website")
DEFAULT_PREFERENCES = {"theme": "light", "notifications": {"email": True, "browser": True}}
FIRST_ADMIN_MARKER = "firstAdmin"


# ------------------------
# Password hashing / verify
# ------------------------
def hash_password(plain: str) -> str:
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _oid(user_id: Any) -> ObjectId:
    if isinstance(user_id, ObjectId):
        return user_id
    try:
        return ObjectId(str(user_id))
    except (InvalidId, TypeError) as e:
        raise NotFoundError("User not found", cause=e) from e


class UserService:
    """
    Repository-style service for the users collection.
    Routers must call methods here; no raw queries outside.
    """

    def __init__(self, db: Database):
        self.users = db[USERS]
        self.meta = db[META]

    # ============ LOOKUPS ============
    def find_user(self, user_id: Any) -> Optional[Dict[str, Any]]:
        try:
            oid = _oid(user_id)
        except NotFoundError:
            return None
        return self.users.find_one({"_id": oid})

    def get_user(self, user_id: Any) -> Dict[str, Any]:
        user = self.find_user(user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def find_by_username_or_email(self, identifier: str) -> Optional[Dict[str, Any]]:
        ident = (identifier or "").strip()
        if not ident:
            return None
        return self.users.find_one({"$or": [{"username": ident}, {"email": ident.lower()}]})

    # ============ REGISTRATION / LOGIN ============
    def create_user(
        self,
        *,
        username: str,
        password: str,
        email: Optional[str] = None,
        full_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        username = username.strip()
        email = email.strip().lower() if email else None
        if self.find_by_username_or_email(username) or (email and self.find_by_username_or_email(email)):
            raise DuplicateNameError("Username or email already exists")

        now = _now()
        doc: Dict[str, Any] = {
            "username": username,
            "password": hash_password(password),
            "role": "user",
            "profile": {"fullName": full_name or username},
            "preferences": {**DEFAULT_PREFERENCES, "notifications": dict(DEFAULT_PREFERENCES["notifications"])},
            "isActive": True,
            "lastLogin": None,
            "createdAt": now,
            "updatedAt": now,
        }
        # sparse unique index: the field must be absent, not null
        if email:
            doc["email"] = email

        # first account becomes the administrator
        first = self._claim_first_admin(username)
        if first:
            log.info("Creating first user '%s' as admin", username)
            doc["role"] = "admin"

        try:
            ins = self.users.insert_one(doc)
        except DuplicateKeyError as e:
            if first:
                self.meta.delete_one({"_id": FIRST_ADMIN_MARKER})
            raise DuplicateNameError("Username or email already exists", cause=e) from e
        doc["_id"] = ins.inserted_id
        log.info("User registered: %s", ins.inserted_id)
        return doc

    def _claim_first_admin(self, username: str) -> bool:
        """Only one registration on an empty collection can insert the marker."""
        if self.users.count_documents({}) > 0:
            return False
        try:
            self.meta.insert_one({"_id": FIRST_ADMIN_MARKER, "username": username, "createdAt": _now()})
        except DuplicateKeyError:
            return False
        return True

    def authenticate(self, identifier: str, password: str) -> Dict[str, Any]:
        user = self.find_by_username_or_email(identifier)
        if not user:
            raise AuthError("Invalid credentials")
        if not user.get("isActive", True):
            raise AuthError("Account is deactivated. Please contact an administrator.")
        if not verify_password(password, user.get("password", "")):
            raise AuthError("Invalid credentials")

        return self.users.find_one_and_update(
            {"_id": user["_id"]},
            {"$set": {"lastLogin": _now()}},
            return_document=ReturnDocument.AFTER,
        )

    # ============ SELF-SERVICE ============
    def _update(self, user_id: Any, fields: Dict[str, Any]) -> Dict[str, Any]:
        fields = dict(fields)
        fields["updatedAt"] = _now()
        updated = self.users.find_one_and_update(
            {"_id": _oid(user_id)},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise NotFoundError("User not found")
        return updated

    def update_profile(self, user_id: Any, profile: Dict[str, Any]) -> Dict[str, Any]:
        fields = {f"profile.{k}": v for k, v in profile.items() if k in PROFILE_FIELDS and v is not None}
        return self._update(user_id, fields)

    def update_preferences(
        self,
        user_id: Any,
        *,
        theme: Optional[str] = None,
        notifications: Optional[Dict[str, bool]] = None,
    ) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        if theme is not None:
            fields["preferences.theme"] = theme
        for channel, enabled in (notifications or {}).items():
            fields[f"preferences.notifications.{channel}"] = bool(enabled)
        return self._update(user_id, fields)

    def change_password(self, user_id: Any, current_password: str, new_password: str) -> None:
        user = self.get_user(user_id)
        if not verify_password(current_password, user.get("password", "")):
            raise AuthError("Current password is incorrect")
        self._update(user_id, {"password": hash_password(new_password)})
        log.info("Password changed for user %s", user_id)

    # ============ ADMIN ============
    def list_users(self, *, page: int = 1, limit: int = 10) -> Tuple[List[Dict[str, Any]], int]:
        skip = (page - 1) * limit
        rows = list(
            self.users.find({}, {"password": 0}).sort("createdAt", DESCENDING).skip(skip).limit(limit)
        )
        return rows, self.users.count_documents({})

    def set_role(self, user_id: Any, role: str) -> Dict[str, Any]:
        if role not in ROLES:
            raise ValidationError('Invalid role. Role must be "user" or "admin"')
        return self._update(user_id, {"role": role})

    def set_active(self, user_id: Any, is_active: bool) -> Dict[str, Any]:
        return self._update(user_id, {"isActive": bool(is_active)})
