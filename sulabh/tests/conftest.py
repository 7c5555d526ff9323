"""
Pytest fixtures for the SULABH backend.

Settings are read from the environment at import time, so the test
environment is pinned here before any backend module is imported.
"""
import datetime as dt
import os
import tempfile
from pathlib import Path

_TMP = tempfile.mkdtemp(prefix="sulabh-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["DATA_RAW_DIR"] = os.path.join(_TMP, "raw")
os.environ["DATA_BACKEND"] = "database"
os.environ["SEED_SAMPLE_DATA"] = "false"
os.environ["CACHE_ENABLED"] = "false"
os.environ["CACHE_SERVICE_URL"] = ""
os.environ["CACHE_SERVICE_TOKEN"] = "test-cache-token"
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ["DISABLE_AUTH"] = "false"
os.environ["JWT_SECRET"] = "test-secret"

import pytest  # noqa: E402

from auth import User  # noqa: E402
from database import SessionLocal, init_db  # noqa: E402
from services.complaint_store import ComplaintRow, FeedbackRow, InMemoryComplaintStore  # noqa: E402

NOW = dt.datetime(2026, 6, 15, 12, 0, 0)
SAMPLE_CSV = Path(__file__).resolve().parent.parent / "data" / "raw" / "sample_complaints.csv"


class FakeCacheClient:
    """Dict-backed cache client speaking the {action, key, data} contract."""

    def __init__(self):
        self.entries = {}
        self.calls = []

    def request(self, action, key, data=None):
        self.calls.append((action, key))
        if action == "get":
            if key in self.entries:
                return {"success": True, "data": self.entries[key], "cached": True}
            return {"success": True, "data": None, "cached": False}
        if action == "set":
            self.entries[key] = data
            return {"success": True}
        if action == "invalidate":
            self.entries.pop(key, None)
            return {"success": True}
        return {"success": True, "config": {"ttl": 300, "vary": []}}


class FailingCacheClient:
    """Every call fails, like an unreachable cache service."""

    def request(self, action, key, data=None):
        raise ConnectionError("cache service unreachable")


@pytest.fixture
def db_session():
    """Fresh schema per test; yields a session bound to the test database."""
    init_db(recreate=True)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def fake_cache():
    return FakeCacheClient()


@pytest.fixture
def failing_cache():
    return FailingCacheClient()


@pytest.fixture
def make_complaint():
    """Factory for ComplaintRow values with sensible defaults."""
    counter = {"n": 0}

    def _make(
        *,
        status="pending",
        priority="medium",
        category="Water",
        department="Water Supply",
        submitted_days_ago=1.0,
        resolved_after_days=None,
        ratings=(),
        user_id=None,
        now=NOW,
    ):
        counter["n"] += 1
        submitted = now - dt.timedelta(days=submitted_days_ago)
        resolved = submitted + dt.timedelta(days=resolved_after_days) if resolved_after_days is not None else None
        return ComplaintRow(
            id=f"C-{counter['n']:04d}",
            subject=f"Complaint {counter['n']}",
            category=category,
            priority=priority,
            status=status,
            submitted_at=submitted,
            user_id=user_id,
            assigned_department=department,
            updated_at=resolved or submitted,
            resolved_at=resolved,
            feedback=tuple(FeedbackRow(rating=r) for r in ratings),
        )

    return _make


@pytest.fixture
def memory_store():
    return InMemoryComplaintStore()


@pytest.fixture
def admin_user():
    return User(id="admin-1", username="admin", role="admin")


@pytest.fixture
def authority_user():
    return User(id="auth-1", username="authority", role="authority", department="Water Supply")


@pytest.fixture
def citizen_user():
    return User(id="cit-1", username="citizen", role="citizen")
