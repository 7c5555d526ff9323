from __future__ import annotations

import datetime as dt
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Callable, Iterable, Iterator, Protocol

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from database import get_db
from models import Complaint, ComplaintFeedback, ComplaintUpdate, Profile


class StoreError(Exception):
    """Raised when complaint rows cannot be read or written."""


@dataclass(frozen=True)
class FeedbackRow:
    rating: int
    comment: str | None = None
    submitted_at: dt.datetime | None = None
    # Complaint context, filled by fetch_feedback.
    complaint_id: str | None = None
    category: str | None = None
    priority: str | None = None
    assigned_department: str | None = None


@dataclass(frozen=True)
class UpdateRow:
    message: str
    status: str
    updated_by: str | None
    updated_at: dt.datetime


@dataclass(frozen=True)
class ComplaintRow:
    id: str
    subject: str
    category: str
    priority: str
    status: str
    submitted_at: dt.datetime
    user_id: str | None = None
    description: str = ""
    location: str | None = None
    assigned_department: str | None = None
    updated_at: dt.datetime | None = None
    resolved_at: dt.datetime | None = None
    feedback: tuple[FeedbackRow, ...] = field(default_factory=tuple)
    updates: tuple[UpdateRow, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ProfileRow:
    id: str
    username: str
    role: str
    department: str | None
    created_at: dt.datetime


class ComplaintStore(Protocol):
    def fetch_complaints(
        self,
        *,
        submitted_from: dt.datetime | None = None,
        submitted_to: dt.datetime | None = None,
        statuses: Iterable[str] | None = None,
        category: str | None = None,
        department: str | None = None,
        user_id: str | None = None,
        newest_first: bool = False,
    ) -> list[ComplaintRow]: ...

    def get_complaint(self, complaint_id: str) -> ComplaintRow | None: ...

    def fetch_feedback(self, *, department: str | None = None) -> list[FeedbackRow]: ...

    def fetch_profiles(self, *, created_from: dt.datetime | None = None) -> list[ProfileRow]: ...

    def create_complaint(
        self,
        *,
        user_id: str | None,
        subject: str,
        category: str,
        description: str = "",
        priority: str = "medium",
        location: str | None = None,
        assigned_department: str | None = None,
    ) -> ComplaintRow: ...

    def update_complaint(
        self,
        complaint_id: str,
        *,
        status: str | None = None,
        assigned_department: str | None = None,
        message: str | None = None,
        updated_by: str | None = None,
    ) -> ComplaintRow | None: ...

    def add_feedback(self, complaint_id: str, *, rating: int, comment: str | None = None) -> FeedbackRow | None: ...

    def import_rows(self, rows: Iterable[dict]) -> tuple[int, int]: ...


def _update_message(status: str | None, assigned_department: str | None, message: str | None) -> str:
    if message:
        return message
    if status:
        return f"Status changed to {status}"
    return f"Assigned to {assigned_department}"


def _resolved_at_for(status: str | None, current: dt.datetime | None, now: dt.datetime) -> dt.datetime | None:
    if status is None:
        return current
    if status == "resolved":
        return current or now
    if status in ("pending", "inProgress", "escalated"):
        return None
    return current


# ---------------------------------------------------------------------------
# SQL implementation
# ---------------------------------------------------------------------------


@contextmanager
def _translate_errors(db: Session) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"{type(e).__name__}: {e}") from e


def _feedback_row(f: ComplaintFeedback) -> FeedbackRow:
    return FeedbackRow(rating=int(f.rating), comment=f.comment, submitted_at=f.submitted_at)


def _complaint_row(c: Complaint) -> ComplaintRow:
    return ComplaintRow(
        id=c.id,
        user_id=c.user_id,
        subject=c.subject,
        description=c.description or "",
        location=c.location,
        category=c.category,
        priority=c.priority,
        status=c.status,
        assigned_department=c.assigned_department,
        submitted_at=c.submitted_at,
        updated_at=c.updated_at,
        resolved_at=c.resolved_at,
        feedback=tuple(_feedback_row(f) for f in c.feedback),
        updates=tuple(
            UpdateRow(message=u.message, status=u.status, updated_by=u.updated_by, updated_at=u.updated_at)
            for u in c.updates
        ),
    )


class SqlComplaintStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def _load(self, complaint_id: str) -> Complaint | None:
        return self.db.execute(
            select(Complaint)
            .options(selectinload(Complaint.feedback), selectinload(Complaint.updates))
            .where(Complaint.id == complaint_id)
        ).scalar_one_or_none()

    def fetch_complaints(
        self,
        *,
        submitted_from: dt.datetime | None = None,
        submitted_to: dt.datetime | None = None,
        statuses: Iterable[str] | None = None,
        category: str | None = None,
        department: str | None = None,
        user_id: str | None = None,
        newest_first: bool = False,
    ) -> list[ComplaintRow]:
        q = select(Complaint).options(selectinload(Complaint.feedback), selectinload(Complaint.updates))
        if submitted_from:
            q = q.where(Complaint.submitted_at >= submitted_from)
        if submitted_to:
            q = q.where(Complaint.submitted_at <= submitted_to)
        if statuses:
            q = q.where(Complaint.status.in_(list(statuses)))
        if category:
            q = q.where(Complaint.category == category)
        if department:
            q = q.where(Complaint.assigned_department == department)
        if user_id:
            q = q.where(Complaint.user_id == user_id)
        q = q.order_by(Complaint.submitted_at.desc() if newest_first else Complaint.submitted_at.asc())
        with _translate_errors(self.db):
            return [_complaint_row(c) for c in self.db.execute(q).scalars().all()]

    def get_complaint(self, complaint_id: str) -> ComplaintRow | None:
        with _translate_errors(self.db):
            c = self._load(complaint_id)
            return _complaint_row(c) if c else None

    def fetch_feedback(self, *, department: str | None = None) -> list[FeedbackRow]:
        q = select(ComplaintFeedback, Complaint).join(Complaint, Complaint.id == ComplaintFeedback.complaint_id)
        if department:
            q = q.where(Complaint.assigned_department == department)
        with _translate_errors(self.db):
            rows = self.db.execute(q).all()
        return [
            FeedbackRow(
                rating=int(f.rating),
                comment=f.comment,
                submitted_at=f.submitted_at,
                complaint_id=c.id,
                category=c.category,
                priority=c.priority,
                assigned_department=c.assigned_department,
            )
            for f, c in rows
        ]

    def fetch_profiles(self, *, created_from: dt.datetime | None = None) -> list[ProfileRow]:
        q = select(Profile).order_by(Profile.created_at.desc())
        if created_from:
            q = q.where(Profile.created_at >= created_from)
        with _translate_errors(self.db):
            rows = self.db.execute(q).scalars().all()
        return [
            ProfileRow(id=p.id, username=p.username, role=p.role, department=p.department, created_at=p.created_at)
            for p in rows
        ]

    def create_complaint(
        self,
        *,
        user_id: str | None,
        subject: str,
        category: str,
        description: str = "",
        priority: str = "medium",
        location: str | None = None,
        assigned_department: str | None = None,
    ) -> ComplaintRow:
        now = dt.datetime.utcnow()
        c = Complaint(
            user_id=user_id,
            subject=subject,
            description=description,
            category=category,
            priority=priority,
            location=location,
            assigned_department=assigned_department,
            status="pending",
            submitted_at=now,
            updated_at=now,
        )
        c.updates.append(
            ComplaintUpdate(message="Complaint submitted successfully", status="pending", updated_by=user_id, updated_at=now)
        )
        with _translate_errors(self.db):
            self.db.add(c)
            self.db.commit()
            return self.get_complaint(c.id)

    def update_complaint(
        self,
        complaint_id: str,
        *,
        status: str | None = None,
        assigned_department: str | None = None,
        message: str | None = None,
        updated_by: str | None = None,
    ) -> ComplaintRow | None:
        now = dt.datetime.utcnow()
        with _translate_errors(self.db):
            c = self._load(complaint_id)
            if c is None:
                return None
            if status:
                c.status = status
            if assigned_department:
                c.assigned_department = assigned_department
            c.resolved_at = _resolved_at_for(status, c.resolved_at, now)
            c.updated_at = now
            c.updates.append(
                ComplaintUpdate(
                    message=_update_message(status, assigned_department, message),
                    status=c.status,
                    updated_by=updated_by,
                    updated_at=now,
                )
            )
            self.db.commit()
            return self.get_complaint(complaint_id)

    def add_feedback(self, complaint_id: str, *, rating: int, comment: str | None = None) -> FeedbackRow | None:
        with _translate_errors(self.db):
            c = self._load(complaint_id)
            if c is None:
                return None
            fb = ComplaintFeedback(complaint_id=c.id, rating=int(rating), comment=comment)
            self.db.add(fb)
            self.db.commit()
            return _feedback_row(fb)

    def import_rows(self, rows: Iterable[dict]) -> tuple[int, int]:
        inserted = 0
        skipped = 0
        seen: set[str] = set()
        with _translate_errors(self.db):
            for r in rows:
                cid = r.get("id") or str(uuid.uuid4())
                if cid in seen or self.db.get(Complaint, cid) is not None:
                    skipped += 1
                    continue
                seen.add(cid)
                submitted = r.get("submitted_at") or dt.datetime.utcnow()
                c = Complaint(
                    id=cid,
                    user_id=r.get("user_id"),
                    subject=r.get("subject") or "",
                    description=r.get("description") or "",
                    location=r.get("location"),
                    category=r.get("category") or "other",
                    priority=r.get("priority") or "medium",
                    status=r.get("status") or "pending",
                    assigned_department=r.get("assigned_department"),
                    submitted_at=submitted,
                    updated_at=r.get("resolved_at") or submitted,
                    resolved_at=r.get("resolved_at"),
                )
                if r.get("rating") is not None:
                    c.feedback.append(ComplaintFeedback(rating=int(r["rating"]), comment=r.get("feedback_comment")))
                self.db.add(c)
                inserted += 1
            self.db.commit()
        return inserted, skipped


# ---------------------------------------------------------------------------
# In-memory implementation (demo mode)
# ---------------------------------------------------------------------------


class InMemoryComplaintStore:
    """
    Process-local complaint rows for demo mode. Writes live as long as the
    process; state is guarded by a lock because handlers run in a thread pool.
    """

    def __init__(
        self,
        complaints: Iterable[ComplaintRow] = (),
        profiles: Iterable[ProfileRow] = (),
    ) -> None:
        self._lock = threading.Lock()
        self._complaints: dict[str, ComplaintRow] = {c.id: c for c in complaints}
        self._profiles: list[ProfileRow] = list(profiles)

    def add_profiles(self, profiles: Iterable[ProfileRow]) -> None:
        with self._lock:
            known = {p.username for p in self._profiles}
            self._profiles.extend(p for p in profiles if p.username not in known)

    def fetch_complaints(
        self,
        *,
        submitted_from: dt.datetime | None = None,
        submitted_to: dt.datetime | None = None,
        statuses: Iterable[str] | None = None,
        category: str | None = None,
        department: str | None = None,
        user_id: str | None = None,
        newest_first: bool = False,
    ) -> list[ComplaintRow]:
        status_set = set(statuses) if statuses else None
        with self._lock:
            rows = list(self._complaints.values())
        out = [
            c
            for c in rows
            if (submitted_from is None or c.submitted_at >= submitted_from)
            and (submitted_to is None or c.submitted_at <= submitted_to)
            and (status_set is None or c.status in status_set)
            and (not category or c.category == category)
            and (not department or c.assigned_department == department)
            and (not user_id or c.user_id == user_id)
        ]
        out.sort(key=lambda c: c.submitted_at, reverse=newest_first)
        return out

    def get_complaint(self, complaint_id: str) -> ComplaintRow | None:
        with self._lock:
            return self._complaints.get(complaint_id)

    def fetch_feedback(self, *, department: str | None = None) -> list[FeedbackRow]:
        with self._lock:
            rows = list(self._complaints.values())
        return [
            replace(
                f,
                complaint_id=c.id,
                category=c.category,
                priority=c.priority,
                assigned_department=c.assigned_department,
            )
            for c in rows
            if not department or c.assigned_department == department
            for f in c.feedback
        ]

    def fetch_profiles(self, *, created_from: dt.datetime | None = None) -> list[ProfileRow]:
        with self._lock:
            rows = list(self._profiles)
        rows = [p for p in rows if created_from is None or p.created_at >= created_from]
        rows.sort(key=lambda p: p.created_at, reverse=True)
        return rows

    def create_complaint(
        self,
        *,
        user_id: str | None,
        subject: str,
        category: str,
        description: str = "",
        priority: str = "medium",
        location: str | None = None,
        assigned_department: str | None = None,
    ) -> ComplaintRow:
        now = dt.datetime.utcnow()
        row = ComplaintRow(
            id=str(uuid.uuid4()),
            user_id=user_id,
            subject=subject,
            description=description,
            category=category,
            priority=priority,
            status="pending",
            location=location,
            assigned_department=assigned_department,
            submitted_at=now,
            updated_at=now,
            updates=(UpdateRow("Complaint submitted successfully", "pending", user_id, now),),
        )
        with self._lock:
            self._complaints[row.id] = row
        return row

    def update_complaint(
        self,
        complaint_id: str,
        *,
        status: str | None = None,
        assigned_department: str | None = None,
        message: str | None = None,
        updated_by: str | None = None,
    ) -> ComplaintRow | None:
        now = dt.datetime.utcnow()
        with self._lock:
            c = self._complaints.get(complaint_id)
            if c is None:
                return None
            new_status = status or c.status
            c = replace(
                c,
                status=new_status,
                assigned_department=assigned_department or c.assigned_department,
                resolved_at=_resolved_at_for(status, c.resolved_at, now),
                updated_at=now,
                updates=c.updates
                + (UpdateRow(_update_message(status, assigned_department, message), new_status, updated_by, now),),
            )
            self._complaints[complaint_id] = c
            return c

    def add_feedback(self, complaint_id: str, *, rating: int, comment: str | None = None) -> FeedbackRow | None:
        fb = FeedbackRow(rating=int(rating), comment=comment, submitted_at=dt.datetime.utcnow())
        with self._lock:
            c = self._complaints.get(complaint_id)
            if c is None:
                return None
            self._complaints[complaint_id] = replace(c, feedback=c.feedback + (fb,))
        return fb

    def import_rows(self, rows: Iterable[dict]) -> tuple[int, int]:
        inserted = 0
        skipped = 0
        with self._lock:
            for r in rows:
                cid = r.get("id") or str(uuid.uuid4())
                if cid in self._complaints:
                    skipped += 1
                    continue
                submitted = r.get("submitted_at") or dt.datetime.utcnow()
                feedback = ()
                if r.get("rating") is not None:
                    feedback = (FeedbackRow(rating=int(r["rating"]), comment=r.get("feedback_comment")),)
                self._complaints[cid] = ComplaintRow(
                    id=cid,
                    user_id=r.get("user_id"),
                    subject=r.get("subject") or "",
                    description=r.get("description") or "",
                    location=r.get("location"),
                    category=r.get("category") or "other",
                    priority=r.get("priority") or "medium",
                    status=r.get("status") or "pending",
                    assigned_department=r.get("assigned_department"),
                    submitted_at=submitted,
                    updated_at=r.get("resolved_at") or submitted,
                    resolved_at=r.get("resolved_at"),
                    feedback=feedback,
                )
                inserted += 1
        return inserted, skipped


# ---------------------------------------------------------------------------
# Provider: chosen once at startup from DATA_BACKEND.
# ---------------------------------------------------------------------------

StoreProvider = Callable[[Session], ComplaintStore]

_provider: StoreProvider = SqlComplaintStore
_memory_store: InMemoryComplaintStore | None = None


def configure_store(backend: str) -> StoreProvider:
    global _provider, _memory_store
    if backend == "memory":
        _memory_store = _memory_store or InMemoryComplaintStore()
        memory = _memory_store
        _provider = lambda _db: memory  # noqa: E731
    elif backend == "database":
        _provider = SqlComplaintStore
    else:
        raise ValueError(f"Unknown DATA_BACKEND: {backend} (expected database/memory)")
    return _provider


def memory_store() -> InMemoryComplaintStore | None:
    return _memory_store


def get_store(db: Session = Depends(get_db)) -> ComplaintStore:
    return _provider(db)
