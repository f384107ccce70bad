# modelhub/services/jwt_service.py
import time
from typing import Any, Dict, Mapping

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError, JWTError

from ..core.config import settings
from ..core.exceptions import AuthError


class JWTService:
    """Issues and verifies HS256 access tokens for ModelHub users."""

    @classmethod
    def issue_token(cls, user: Mapping[str, Any]) -> str:
        now = int(time.time())
        claims = {
            "sub": str(user["_id"]),
            "username": user.get("username"),
            "role": user.get("role", "user"),
            "iat": now,
            "exp": now + settings.jwt_expiration_minutes * 60,
            "iss": settings.jwt_issuer,
        }
        return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)

    @classmethod
    def verify_token(cls, token: str) -> Dict[str, Any]:
        try:
            claims = jwt.decode(
                token,
                settings.jwt_secret,
                algorithms=[settings.jwt_algorithm],
                issuer=settings.jwt_issuer,
            )
        except ExpiredSignatureError as e:
            raise AuthError("Token expired", cause=e) from e
        except JWTClaimsError as e:
            raise AuthError(f"JWT claims invalid: {e}", cause=e) from e
        except JWTError as e:
            raise AuthError(f"JWT signature/format invalid: {e}", cause=e) from e

        if not claims.get("sub"):
            raise AuthError("Token missing 'sub' claim")
        return claims

    @classmethod
    def sub_from_token(cls, token: str) -> str:
        return str(cls.verify_token(token)["sub"])
