from __future__ import annotations

import datetime as dt
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, ContextManager

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import settings
from database import session_scope
from models import CacheEntry

logger = logging.getLogger(__name__)


# Per-endpoint cache policy. The endpoint of a key is the text before the first ":".
CACHE_CONFIG: dict[str, dict] = {
    "dashboard_stats": {"ttl": 300, "vary": ["user_role", "department"]},
    "complaints_list": {"ttl": 120, "vary": ["user_id", "department", "status"]},
    "suggestions_list": {"ttl": 300, "vary": []},
    "reports": {"ttl": 600, "vary": ["period", "department", "category"]},
}

CACHE_ACTIONS = ("get_config", "get", "set", "invalidate")


class CacheServiceError(Exception):
    pass


@dataclass(frozen=True)
class CacheLookup:
    data: Any | None
    cached: bool


def endpoint_of(key: str) -> str:
    return (key or "").split(":", 1)[0]


def ttl_for(key: str) -> int:
    cfg = CACHE_CONFIG.get(endpoint_of(key))
    return int(cfg["ttl"]) if cfg else settings.cache_default_ttl_s


class CacheService:
    """
    Server side of the cache contract: {action, key, data?}.

    Entries live in the cache_entries table; an entry is served only while its
    age is below the TTL of its endpoint. Expired rows are left in place and
    overwritten by the next set.
    """

    def __init__(self, session_factory: Callable[[], ContextManager[Session]] = session_scope) -> None:
        self._session_factory = session_factory

    def get_config(self, endpoint: str) -> dict:
        cfg = CACHE_CONFIG.get(endpoint)
        if not cfg:
            raise CacheServiceError(f"Cache configuration not found for endpoint: {endpoint}")
        return dict(cfg)

    def get(self, key: str, *, now: dt.datetime | None = None) -> CacheLookup:
        now = now or dt.datetime.utcnow()
        with self._session_factory() as db:
            row = db.execute(select(CacheEntry).where(CacheEntry.key == key)).scalar_one_or_none()
            if row is None:
                return CacheLookup(data=None, cached=False)
            age_s = (now - row.created_at).total_seconds()
            if age_s >= ttl_for(key):
                return CacheLookup(data=None, cached=False)
            return CacheLookup(data=json.loads(row.data_json), cached=True)

    def set(self, key: str, data: Any, *, now: dt.datetime | None = None) -> None:
        if not key or data is None:
            raise CacheServiceError("Key and data are required for cache set operation")
        payload = json.dumps(data, ensure_ascii=False, default=str)
        created = now or dt.datetime.utcnow()
        try:
            self._upsert(key, payload, created)
        except IntegrityError:
            # Concurrent first write for the same key; last write wins.
            self._upsert(key, payload, created)

    def _upsert(self, key: str, payload: str, created: dt.datetime) -> None:
        with self._session_factory() as db:
            row = db.execute(select(CacheEntry).where(CacheEntry.key == key)).scalar_one_or_none()
            if row is None:
                db.add(CacheEntry(key=key, data_json=payload, created_at=created))
            else:
                row.data_json = payload
                row.created_at = created

    def invalidate(self, key: str) -> None:
        if not key:
            raise CacheServiceError("Key is required for cache invalidate operation")
        with self._session_factory() as db:
            db.execute(delete(CacheEntry).where(CacheEntry.key == key))

    def handle(self, action: str, key: str | None = None, data: Any = None) -> dict:
        """Dispatch one request of the cache contract and return its JSON body."""
        if action not in CACHE_ACTIONS:
            raise CacheServiceError(f"Unknown cache action: {action}")
        if action == "get_config":
            return {"success": True, "config": self.get_config(key or "")}
        if action == "get":
            hit = self.get(key or "")
            return {"success": True, "data": hit.data, "cached": hit.cached}
        if action == "set":
            self.set(key or "", data)
            return {"success": True}
        self.invalidate(key or "")
        return {"success": True}
