"""Authentication module for the SULABH backend."""
from __future__ import annotations

import datetime as dt
import uuid
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from config import settings

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
# When auth is disabled, allow requests with no Authorization header (no 401 pre-check).
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=not settings.disable_auth)


@dataclass(frozen=True)
class User:
    id: str
    username: str
    role: str  # citizen/authority/ngo/admin
    department: str | None = None


def account_id(username: str) -> str:
    # Stable ids so demo accounts map to the same profile row across restarts.
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"sulabh:{username}"))


def _account(password: str, role: str, department: str | None = None) -> dict:
    return {"password_hash": pwd_context.hash(password), "role": role, "department": department}


_USERS: dict[str, dict] = {
    # Password hashes are computed at process start for MVP simplicity (avoid storing hashes in repo).
    settings.admin_username: _account(settings.admin_password, "admin"),
    settings.authority_username: _account(
        settings.authority_password, "authority", settings.authority_department
    ),
    settings.citizen_username: _account(settings.citizen_password, "citizen"),
    settings.ngo_username: _account(settings.ngo_password, "ngo"),
}


def demo_accounts() -> list[User]:
    return [
        User(id=account_id(name), username=name, role=rec["role"], department=rec["department"])
        for name, rec in _USERS.items()
    ]


def verify_password(plain_password: str, password_hash: str) -> bool:
    return pwd_context.verify(plain_password, password_hash)


def authenticate_user(username: str, password: str) -> User | None:
    record = _USERS.get(username)
    if not record:
        return None
    if not verify_password(password, record["password_hash"]):
        return None
    return User(id=account_id(username), username=username, role=record["role"], department=record["department"])


def create_access_token(user: User) -> str:
    exp = dt.datetime.utcnow() + dt.timedelta(minutes=settings.jwt_exp_minutes)
    payload = {"sub": user.username, "uid": user.id, "role": user.role, "dept": user.department, "exp": exp}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> User:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        username = payload.get("sub")
        role = payload.get("role")
        if not username or not role:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
        return User(
            id=payload.get("uid") or account_id(username),
            username=username,
            role=role,
            department=payload.get("dept"),
        )
    except JWTError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from e


def get_current_user(token: Annotated[str | None, Depends(oauth2_scheme)]) -> User:
    if settings.disable_auth:
        # Default role used for read-only dashboards when auth is off
        return User(id=account_id("public"), username="public", role="admin")
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return decode_token(token)


def require_role(*allowed: str):
    def _dep(user: Annotated[User, Depends(get_current_user)]) -> User:
        if user.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return user

    return _dep
