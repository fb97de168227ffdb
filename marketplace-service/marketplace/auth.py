from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from . import config
from .errors import AuthError, ForbiddenError
from .lifecycle import Role

bearer_scheme = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    id: int
    role: Role
    name: Optional[str] = None
    email: Optional[str] = None


def create_access_token(user_id: int, role: str, name: str = None, email: str = None,
                        expires_in: Optional[timedelta] = None) -> str:
    expires_in = expires_in or timedelta(days=config.JWT_EXPIRES_DAYS)
    payload = {
        "id": user_id,
        "role": Role(role).value,
        "name": name,
        "email": email,
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_token(token: str) -> CurrentUser:
    try:
        claims = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
        return CurrentUser(**claims)
    except (jwt.PyJWTError, ValueError, TypeError):
        raise AuthError("Invalid or expired token. Please login again.") from None


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> CurrentUser:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthError("No token provided. Please login.")
    return decode_token(credentials.credentials)


def require_role(*roles: Role):
    allowed = {Role(r) for r in roles}

    def dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in allowed:
            raise ForbiddenError("Access denied. Insufficient permissions.")
        return user

    return dependency
