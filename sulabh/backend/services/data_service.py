from __future__ import annotations

import datetime as dt
import logging
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import pandas as pd
from sqlalchemy import select
from sqlalchemy.orm import Session

from auth import User
from config import settings
from models import COMPLAINT_PRIORITIES, COMPLAINT_STATUSES, Profile
from services.complaint_store import ComplaintStore, InMemoryComplaintStore, ProfileRow

logger = logging.getLogger(__name__)


def _ensure_dirs() -> None:
    Path(settings.data_raw_dir).mkdir(parents=True, exist_ok=True)


def _parse_datetime(value: str | None) -> dt.datetime | None:
    if not value:
        return None
    value = str(value).strip()
    if not value:
        return None
    # Exports carry either full timestamps or plain dates; try timestamps first.
    for fmt in (
        "%Y-%m-%dT%H:%M:%S.%f",
        "%Y-%m-%dT%H:%M:%S",
        "%Y-%m-%d %H:%M:%S",
        "%Y-%m-%d %H:%M",
        "%d-%m-%Y %I:%M %p",
        "%d/%m/%Y %I:%M %p",
        "%Y-%m-%d",
        "%d-%m-%Y",
        "%d/%m/%Y",
        "%Y/%m/%d",
    ):
        try:
            return dt.datetime.strptime(value, fmt)
        except ValueError:
            continue
    # Offsets like "+00:00" / "Z": drop the zone, timestamps are stored as naive UTC.
    token = value.replace("Z", "").split("+", 1)[0]
    if token != value:
        return _parse_datetime(token)
    return None


def _parse_rating(value: str | None) -> int | None:
    if value is None:
        return None
    s = str(value).strip()
    if not s:
        return None
    try:
        r = int(round(float(s)))
    except ValueError:
        return None
    return r if 1 <= r <= 5 else None


def _normalize_headers(headers: list[str]) -> dict[str, str]:
    # maps normalized -> original
    out: dict[str, str] = {}
    for h in headers:
        out[str(h).strip().lower().replace(" ", "_")] = h
    return out


def _pick(norm_map: dict[str, str], *candidates: str) -> str | None:
    for c in candidates:
        if c in norm_map:
            return norm_map[c]
    return None


def _normalize_status(value: str | None) -> str:
    s = (value or "").strip()
    by_lower = {st.lower(): st for st in COMPLAINT_STATUSES}
    by_lower.update({"in_progress": "inProgress", "in progress": "inProgress", "open": "pending"})
    return by_lower.get(s.lower(), "pending")


def _normalize_priority(value: str | None) -> str:
    s = (value or "").strip().lower()
    return s if s in COMPLAINT_PRIORITIES else "medium"


@dataclass(frozen=True)
class UploadResult:
    stored_raw_path: str
    inserted: int
    skipped_duplicates: int


class DataService:
    def __init__(self) -> None:
        _ensure_dirs()

    def store_uploaded_csv(self, tmp_path: str, original_filename: str) -> str:
        _ensure_dirs()
        stamp = dt.datetime.utcnow().strftime("%Y%m%dT%H%M%SZ")
        safe_name = "".join(ch for ch in original_filename if ch.isalnum() or ch in ("-", "_", ".", " ")).strip()
        if not safe_name:
            safe_name = "complaints.csv"
        dest = Path(settings.data_raw_dir) / f"{stamp}_{uuid.uuid4().hex[:8]}_{safe_name}"
        shutil.copyfile(tmp_path, dest)
        return str(dest)

    def read_complaint_rows(self, csv_path: str) -> list[dict]:
        """
        Reads a complaints export into store-ready dicts. Header names are
        matched loosely (e.g. "Assigned Department" or "department").
        """
        df = pd.read_csv(csv_path, dtype=str, keep_default_na=False, encoding="utf-8-sig")
        if df.columns.empty:
            raise ValueError("CSV has no headers")
        norm_map = _normalize_headers(list(df.columns))

        col_id = _pick(norm_map, "id", "complaint_id", "grievance_id", "ticket_id")
        col_subject = _pick(norm_map, "subject", "title", "complaint_subject")
        if not col_subject:
            raise ValueError("CSV must contain a subject column")
        col_desc = _pick(norm_map, "description", "details", "complaint_text")
        col_cat = _pick(norm_map, "category", "type")
        col_pri = _pick(norm_map, "priority")
        col_status = _pick(norm_map, "status")
        col_dept = _pick(norm_map, "assigned_department", "department")
        col_loc = _pick(norm_map, "location", "ward", "address")
        col_user = _pick(norm_map, "user_id", "citizen_id")
        col_sub = _pick(norm_map, "submitted_at", "created_at", "created_date")
        col_res = _pick(norm_map, "resolved_at", "closed_at", "closed_date")
        col_rating = _pick(norm_map, "rating", "feedback_rating", "feedback_star")
        col_comment = _pick(norm_map, "feedback_comment", "comment")

        def _get(rec: dict, col: str | None) -> str | None:
            if not col:
                return None
            v = str(rec.get(col) or "").strip()
            return v or None

        rows: list[dict] = []
        for rec in df.to_dict(orient="records"):
            subject = _get(rec, col_subject)
            if not subject:
                continue
            status = _normalize_status(_get(rec, col_status))
            resolved_at = _parse_datetime(_get(rec, col_res))
            rows.append(
                {
                    "id": _get(rec, col_id),
                    "user_id": _get(rec, col_user),
                    "subject": subject,
                    "description": _get(rec, col_desc) or "",
                    "category": _get(rec, col_cat) or "other",
                    "priority": _normalize_priority(_get(rec, col_pri)),
                    "status": status,
                    "assigned_department": _get(rec, col_dept),
                    "location": _get(rec, col_loc),
                    "submitted_at": _parse_datetime(_get(rec, col_sub)),
                    "resolved_at": resolved_at if status in ("resolved", "closed") else None,
                    "rating": _parse_rating(_get(rec, col_rating)),
                    "feedback_comment": _get(rec, col_comment),
                }
            )
        return rows

    def ingest_csv(self, store: ComplaintStore, csv_path: str) -> UploadResult:
        rows = self.read_complaint_rows(csv_path)
        inserted, skipped = store.import_rows(rows)
        logger.info("Imported %s complaints from %s (%s duplicates skipped)", inserted, csv_path, skipped)
        return UploadResult(stored_raw_path=csv_path, inserted=inserted, skipped_duplicates=skipped)

    def has_any_data(self, store: ComplaintStore) -> bool:
        return bool(store.fetch_complaints())

    def ensure_profiles(self, db: Session, users: Iterable[User]) -> int:
        """Creates missing profile rows for the given accounts; returns how many were added."""
        added = 0
        for u in users:
            if db.execute(select(Profile.id).where(Profile.username == u.username)).first():
                continue
            db.add(Profile(id=u.id, username=u.username, role=u.role, department=u.department))
            added += 1
        return added

    def seed_memory_profiles(self, store: InMemoryComplaintStore, users: Iterable[User]) -> None:
        now = dt.datetime.utcnow()
        store.add_profiles(
            ProfileRow(id=u.id, username=u.username, role=u.role, department=u.department, created_at=now)
            for u in users
        )
