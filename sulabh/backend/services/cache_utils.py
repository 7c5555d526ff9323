from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, Protocol, TypeVar

import requests

from config import settings
from services.cache_service import CacheService

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CACHE_CONFIG = {"ttl": 300, "vary": []}


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def generate_cache_key(
    endpoint: str,
    params: dict[str, Any] | None = None,
    user_id: str | None = None,
    department: str | None = None,
) -> str:
    """
    Deterministic cache key: endpoint[:user=<id>][:dept=<dept>][:k1=v1&k2=v2].

    Parameter pairs are sorted by name and None/"" values are dropped, so the
    same logical query maps to the same key whatever the insertion order.
    """
    pairs = sorted(
        ((k, v) for k, v in (params or {}).items() if v is not None and v != ""),
        key=lambda kv: kv[0],
    )
    sorted_params = "&".join(f"{k}={_format_value(v)}" for k, v in pairs)

    key = endpoint
    if user_id:
        key += f":user={user_id}"
    if department:
        key += f":dept={department}"
    if sorted_params:
        key += f":{sorted_params}"
    return key


class CacheClientError(Exception):
    pass


class CacheClient(Protocol):
    def request(self, action: str, key: str, data: Any = None) -> dict: ...


class LocalCacheClient:
    """Calls the in-process cache service (cache_entries table)."""

    def __init__(self, service: CacheService | None = None) -> None:
        self.service = service or CacheService()

    def request(self, action: str, key: str, data: Any = None) -> dict:
        return self.service.handle(action, key, data)


class HttpCacheClient:
    """
    Talks to a remote cache endpoint speaking the same {action, key, data} contract.
    No retries: a failed call is a cache miss for the caller.
    """

    def __init__(self, url: str, *, token: str | None = None, timeout_s: int | None = None) -> None:
        self.url = url
        self.token = token
        self.timeout_s = int(settings.cache_timeout_s if timeout_s is None else timeout_s)

    def request(self, action: str, key: str, data: Any = None) -> dict:
        body: dict[str, Any] = {"action": action, "key": key}
        if data is not None:
            body["data"] = data
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        resp = requests.post(self.url, json=body, headers=headers, timeout=self.timeout_s)
        if resp.status_code >= 400:
            raise CacheClientError(f"HTTP {resp.status_code}: {resp.text[:300]}")
        try:
            payload = resp.json()
        except ValueError as e:
            raise CacheClientError(f"Invalid JSON from cache service: {resp.text[:300]}") from e
        if not isinstance(payload, dict) or payload.get("success") is False:
            raise CacheClientError(str((payload or {}).get("error") or "Cache operation failed"))
        return payload


class NullCacheClient:
    """Used when caching is disabled: every lookup misses, writes are dropped."""

    def request(self, action: str, key: str, data: Any = None) -> dict:
        if action == "get_config":
            return {"success": True, "config": dict(DEFAULT_CACHE_CONFIG)}
        return {"success": True, "data": None, "cached": False}


def build_cache_client() -> CacheClient:
    if not settings.cache_enabled:
        return NullCacheClient()
    if settings.cache_service_url:
        return HttpCacheClient(settings.cache_service_url, token=settings.cache_service_token)
    return LocalCacheClient()


_client: CacheClient | None = None


def get_cache_client() -> CacheClient:
    global _client
    if _client is None:
        _client = build_cache_client()
    return _client


def set_cache_client(client: CacheClient | None) -> None:
    global _client
    _client = client


@dataclass(frozen=True)
class CachedData(Generic[T]):
    data: T | None
    cached: bool


def get_cache_config(endpoint: str, *, client: CacheClient | None = None) -> dict:
    try:
        res = (client or get_cache_client()).request("get_config", endpoint)
        return res["config"]
    except Exception as e:
        logger.warning("Error getting cache config for %s: %s", endpoint, e)
        return dict(DEFAULT_CACHE_CONFIG)


def get_cached_data(
    endpoint: str,
    params: dict[str, Any] | None = None,
    user_id: str | None = None,
    department: str | None = None,
    *,
    client: CacheClient | None = None,
) -> CachedData:
    key = generate_cache_key(endpoint, params, user_id, department)
    try:
        res = (client or get_cache_client()).request("get", key)
        return CachedData(data=res.get("data"), cached=bool(res.get("cached")))
    except Exception as e:
        logger.warning("Error getting cached data for %s: %s", key, e)
        return CachedData(data=None, cached=False)


def set_cached_data(
    endpoint: str,
    data: Any,
    params: dict[str, Any] | None = None,
    user_id: str | None = None,
    department: str | None = None,
    *,
    client: CacheClient | None = None,
) -> None:
    key = generate_cache_key(endpoint, params, user_id, department)
    try:
        (client or get_cache_client()).request("set", key, data)
    except Exception as e:
        logger.warning("Error setting cached data for %s: %s", key, e)


def invalidate_cache(
    endpoint: str,
    params: dict[str, Any] | None = None,
    user_id: str | None = None,
    department: str | None = None,
    *,
    client: CacheClient | None = None,
) -> None:
    key = generate_cache_key(endpoint, params, user_id, department)
    try:
        (client or get_cache_client()).request("invalidate", key)
    except Exception as e:
        logger.warning("Error invalidating cache for %s: %s", key, e)


def with_cache(
    endpoint: str,
    fetch_fn: Callable[[], T],
    params: dict[str, Any] | None = None,
    user_id: str | None = None,
    department: str | None = None,
    *,
    client: CacheClient | None = None,
) -> T:
    """
    Read-through cache around fetch_fn.

    Cache failures only cost freshness: a failed lookup is a miss and a failed
    store is logged. Errors from fetch_fn itself propagate.
    """
    hit = get_cached_data(endpoint, params, user_id, department, client=client)
    if hit.cached and hit.data is not None:
        return hit.data

    fresh = fetch_fn()
    set_cached_data(endpoint, fresh, params, user_id, department, client=client)
    return fresh
