from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from auth import User, authenticate_user, create_access_token, get_current_user
from services.rate_limit import RateLimiter, build_rate_limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    global _limiter
    if _limiter is None:
        _limiter = build_rate_limiter()
    return _limiter


class LoginRequest(BaseModel):
    username: str
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str
    username: str
    department: str | None = None


@router.post("/login", response_model=LoginResponse)
def login(req: LoginRequest, limiter: Annotated[RateLimiter, Depends(get_rate_limiter)]) -> LoginResponse:
    identifier = req.username.strip().lower()
    if not limiter.hit(identifier):
        logger.warning("Login rate limit hit for %s", identifier)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many login attempts. Please try again later.",
        )
    user = authenticate_user(req.username, req.password)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid username or password")
    limiter.reset(identifier)
    token = create_access_token(user)
    return LoginResponse(access_token=token, role=user.role, username=user.username, department=user.department)


@router.get("/me")
def me(user: Annotated[User, Depends(get_current_user)]):
    return {"id": user.id, "username": user.username, "role": user.role, "department": user.department}
