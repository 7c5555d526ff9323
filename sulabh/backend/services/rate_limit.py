from __future__ import annotations

import datetime as dt
import threading
from dataclasses import dataclass
from typing import Callable, ContextManager, Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import settings
from database import session_scope
from models import LoginAttempt


class RateLimiter(Protocol):
    def hit(self, identifier: str) -> bool:
        """Record one attempt; False when the identifier is over its limit for the current window."""
        ...

    def reset(self, identifier: str) -> None: ...


@dataclass
class _Window:
    count: int
    start: dt.datetime


class InMemoryRateLimiter:
    """Fixed-window counter for a single process."""

    def __init__(
        self,
        *,
        max_attempts: int | None = None,
        window_s: int | None = None,
        now_fn: Callable[[], dt.datetime] = dt.datetime.utcnow,
    ) -> None:
        self.max_attempts = int(settings.login_max_attempts if max_attempts is None else max_attempts)
        self.window = dt.timedelta(seconds=int(settings.login_lockout_s if window_s is None else window_s))
        self.now_fn = now_fn
        self._lock = threading.Lock()
        self._windows: dict[str, _Window] = {}

    def hit(self, identifier: str) -> bool:
        now = self.now_fn()
        with self._lock:
            self._prune(now)
            w = self._windows.get(identifier)
            if w is None or now - w.start >= self.window:
                w = _Window(count=0, start=now)
                self._windows[identifier] = w
            w.count += 1
            return w.count <= self.max_attempts

    def reset(self, identifier: str) -> None:
        with self._lock:
            self._windows.pop(identifier, None)

    def _prune(self, now: dt.datetime) -> None:
        # Drop windows that have expired; caller holds the lock.
        self._windows = {k: w for k, w in self._windows.items() if now - w.start < self.window}


class DatabaseRateLimiter:
    """
    Fixed-window counter shared by every process using the same database.
    The increment is a single UPDATE so concurrent attempts are not lost.
    """

    def __init__(
        self,
        *,
        max_attempts: int | None = None,
        window_s: int | None = None,
        session_factory: Callable[[], ContextManager[Session]] = session_scope,
        now_fn: Callable[[], dt.datetime] = dt.datetime.utcnow,
    ) -> None:
        self.max_attempts = int(settings.login_max_attempts if max_attempts is None else max_attempts)
        self.window = dt.timedelta(seconds=int(settings.login_lockout_s if window_s is None else window_s))
        self._session_factory = session_factory
        self.now_fn = now_fn

    def hit(self, identifier: str) -> bool:
        now = self.now_fn()
        cutoff = now - self.window
        try:
            return self._hit(identifier, now, cutoff)
        except IntegrityError:
            # Another process created the window row first; count against it.
            return self._hit(identifier, now, cutoff)

    def _hit(self, identifier: str, now: dt.datetime, cutoff: dt.datetime) -> bool:
        with self._session_factory() as db:
            res = db.execute(
                update(LoginAttempt)
                .where(LoginAttempt.identifier == identifier, LoginAttempt.window_start > cutoff)
                .values(count=LoginAttempt.count + 1)
            )
            if res.rowcount == 0:
                # No live window: drop the expired one (if any) and open a new window.
                db.execute(delete(LoginAttempt).where(LoginAttempt.identifier == identifier))
                db.add(LoginAttempt(identifier=identifier, count=1, window_start=now))
                db.flush()
                return True
            count = db.execute(select(LoginAttempt.count).where(LoginAttempt.identifier == identifier)).scalar_one()
            return int(count) <= self.max_attempts

    def reset(self, identifier: str) -> None:
        with self._session_factory() as db:
            db.execute(delete(LoginAttempt).where(LoginAttempt.identifier == identifier))


def build_rate_limiter(backend: str | None = None) -> RateLimiter:
    backend = (backend or settings.rate_limit_backend).strip().lower()
    if backend == "database":
        return DatabaseRateLimiter()
    if backend == "memory":
        return InMemoryRateLimiter()
    raise ValueError(f"Unknown RATE_LIMIT_BACKEND: {backend} (expected memory/database)")
