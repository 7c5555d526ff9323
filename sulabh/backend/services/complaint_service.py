from __future__ import annotations

from auth import User
from services.cache_utils import CacheClient, get_cached_data, invalidate_cache, set_cached_data
from services.complaint_store import ComplaintRow, ComplaintStore


def complaint_to_dict(c: ComplaintRow) -> dict:
    return {
        "id": c.id,
        "userId": c.user_id,
        "subject": c.subject,
        "description": c.description,
        "location": c.location,
        "category": c.category,
        "priority": c.priority,
        "status": c.status,
        "assignedDepartment": c.assigned_department,
        "submittedAt": c.submitted_at.isoformat(),
        "updatedAt": c.updated_at.isoformat() if c.updated_at else None,
        "resolvedAt": c.resolved_at.isoformat() if c.resolved_at else None,
        "feedback": (
            {
                "rating": c.feedback[0].rating,
                "comment": c.feedback[0].comment,
                "submittedAt": c.feedback[0].submitted_at.isoformat() if c.feedback[0].submitted_at else None,
            }
            if c.feedback
            else None
        ),
        "updates": [
            {"message": u.message, "status": u.status, "updatedBy": u.updated_by, "updatedAt": u.updated_at.isoformat()}
            for u in c.updates
        ],
    }


def can_view(user: User, owner_id: str | None, department: str | None) -> bool:
    if user.role == "citizen":
        return owner_id == user.id
    if user.role == "authority" and user.department:
        return department == user.department
    return True


class ComplaintService:
    """
    Complaint reads go through the cache (complaints_list per user, complaint:<id>
    per record); every write invalidates the keys it makes stale.
    """

    LIST_ENDPOINT = "complaints_list"

    def __init__(self, store: ComplaintStore, *, cache: CacheClient | None = None) -> None:
        self.store = store
        self.cache = cache

    def _list_params(self, user: User) -> dict:
        return {"role": user.role}

    def list_for_user(self, user: User) -> list[dict]:
        params = self._list_params(user)
        hit = get_cached_data(self.LIST_ENDPOINT, params, user.id, user.department, client=self.cache)
        if hit.cached and hit.data is not None:
            return hit.data

        if user.role == "citizen":
            rows = self.store.fetch_complaints(user_id=user.id, newest_first=True)
        elif user.role == "authority" and user.department:
            rows = self.store.fetch_complaints(department=user.department, newest_first=True)
        else:
            rows = self.store.fetch_complaints(newest_first=True)
        out = [complaint_to_dict(c) for c in rows]
        set_cached_data(self.LIST_ENDPOINT, out, params, user.id, user.department, client=self.cache)
        return out

    def track(self, complaint_id: str, user: User) -> dict | None:
        hit = get_cached_data(f"complaint:{complaint_id}", client=self.cache)
        if hit.cached and hit.data is not None:
            data = hit.data
        else:
            row = self.store.get_complaint(complaint_id)
            if row is None:
                return None
            data = complaint_to_dict(row)
            set_cached_data(f"complaint:{complaint_id}", data, client=self.cache)
        # Cached records are shared across users; visibility is checked on every read.
        return data if can_view(user, data["userId"], data["assignedDepartment"]) else None

    def _invalidate(self, user: User, complaint_id: str | None = None, owner_id: str | None = None) -> None:
        invalidate_cache(self.LIST_ENDPOINT, self._list_params(user), user.id, user.department, client=self.cache)
        if owner_id and owner_id != user.id:
            # Status changes made by staff also stale the submitting citizen's list.
            invalidate_cache(self.LIST_ENDPOINT, {"role": "citizen"}, owner_id, client=self.cache)
        if complaint_id:
            invalidate_cache(f"complaint:{complaint_id}", client=self.cache)

    def submit(
        self,
        user: User,
        *,
        subject: str,
        category: str,
        description: str = "",
        priority: str = "medium",
        location: str | None = None,
        assigned_department: str | None = None,
    ) -> dict:
        row = self.store.create_complaint(
            user_id=user.id,
            subject=subject,
            category=category,
            description=description,
            priority=priority,
            location=location,
            assigned_department=assigned_department,
        )
        self._invalidate(user)
        return complaint_to_dict(row)

    def update(
        self,
        user: User,
        complaint_id: str,
        *,
        status: str | None = None,
        assigned_department: str | None = None,
        message: str | None = None,
    ) -> dict | None:
        current = self.store.get_complaint(complaint_id)
        if current is None or not can_view(user, current.user_id, current.assigned_department):
            return None
        row = self.store.update_complaint(
            complaint_id,
            status=status,
            assigned_department=assigned_department,
            message=message,
            updated_by=user.id,
        )
        self._invalidate(user, complaint_id, owner_id=current.user_id)
        return complaint_to_dict(row) if row else None

    def add_feedback(self, user: User, complaint_id: str, *, rating: int, comment: str | None = None) -> dict | None:
        current = self.store.get_complaint(complaint_id)
        if current is None or current.user_id != user.id:
            return None
        fb = self.store.add_feedback(complaint_id, rating=rating, comment=comment)
        self._invalidate(user, complaint_id)
        if fb is None:
            return None
        return {"rating": fb.rating, "comment": fb.comment}
