from __future__ import annotations

import hmac
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from config import settings
from services.cache_service import CacheService, CacheServiceError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["cache"])

service_bearer = HTTPBearer(auto_error=False)


class CacheRequest(BaseModel):
    action: str
    key: str | None = None
    data: Any = None


def _svc() -> CacheService:
    return CacheService()


def require_service_token(
    creds: Annotated[HTTPAuthorizationCredentials | None, Depends(service_bearer)],
) -> None:
    """Only HttpCacheClient, holding CACHE_SERVICE_TOKEN, may call this route. User JWTs are rejected."""
    expected = settings.cache_service_token
    if not expected:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cache service token not configured")
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    if not hmac.compare_digest(creds.credentials.encode(), expected.encode()):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid service token")


@router.post("/cache", dependencies=[Depends(require_service_token)])
def cache_action(req: CacheRequest, svc: Annotated[CacheService, Depends(_svc)]):
    """Remote side of the cache contract used by HttpCacheClient."""
    try:
        return svc.handle(req.action, req.key, req.data)
    except (CacheServiceError, SQLAlchemyError) as e:
        logger.warning("Cache error: %s", e)
        return JSONResponse(status_code=400, content={"success": False, "error": str(e) or "Cache operation failed"})
