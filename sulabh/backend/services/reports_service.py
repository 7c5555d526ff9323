from __future__ import annotations

import calendar
import datetime as dt
import logging
import math
from collections import Counter, defaultdict
from dataclasses import dataclass
from typing import Callable, Iterable

from auth import User
from services.cache_utils import CacheClient, with_cache
from services.complaint_store import ComplaintRow, ComplaintStore, FeedbackRow

logger = logging.getLogger(__name__)

REPORT_PERIODS = ("week", "month", "quarter", "year")
TREND_BUCKETS = 12
_DAY_S = 86400.0


def add_months(d: dt.datetime, months: int) -> dt.datetime:
    """Calendar month shift; the day is clamped to the target month's length."""
    idx = d.year * 12 + (d.month - 1) + months
    year, month = divmod(idx, 12)
    month += 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return d.replace(year=year, month=month, day=day)


def period_start(period: str, now: dt.datetime) -> dt.datetime:
    if period == "week":
        return now - dt.timedelta(days=7)
    if period == "month":
        return add_months(now, -1)
    if period == "quarter":
        return add_months(now, -3)
    if period == "year":
        return add_months(now, -12)
    raise ValueError(f"period must be one of {'/'.join(REPORT_PERIODS)}")


def percentage(part: int, total: int) -> float:
    return (part * 100.0 / total) if total else 0.0


def mean(xs: list[float]) -> float:
    return (sum(xs) / len(xs)) if xs else 0.0


def _days(start: dt.datetime, end: dt.datetime) -> float:
    return (end - start).total_seconds() / _DAY_S


def average_resolution_days(rows: Iterable[ComplaintRow]) -> float:
    # Resolved rows without resolved_at count in neither numerator nor denominator.
    return mean([_days(c.submitted_at, c.resolved_at) for c in rows if c.status == "resolved" and c.resolved_at])


def breakdown(values: Iterable[str | None]) -> dict[str, int]:
    return dict(Counter(v for v in values if v))


def rating_distribution(ratings: Iterable[int]) -> dict[str, int]:
    counts = Counter(int(r) for r in ratings)
    return {str(k): counts[k] for k in sorted(counts)}


def _iso(v: dt.datetime | None) -> str | None:
    return v.isoformat() if v else None


def generate_time_trends(
    rows: list[ComplaintRow], period: str, now: dt.datetime, *, buckets: int = TREND_BUCKETS
) -> list[dict]:
    """
    Trailing fixed-width buckets ending at `now`, oldest first. Each bucket is
    [start, end) and counts submitted/resolved/pending complaints.
    """
    trends = []
    for i in range(buckets - 1, -1, -1):
        if period == "week":
            start = now - dt.timedelta(days=(i + 1) * 7)
            end = now - dt.timedelta(days=i * 7)
            label = f"Week {start.day}/{start.month}"
        else:
            start = add_months(now, -(i + 1))
            end = add_months(now, -i)
            label = start.strftime("%b %Y")
        in_bucket = [c for c in rows if start <= c.submitted_at < end]
        trends.append(
            {
                period: label,
                "submitted": len(in_bucket),
                "resolved": sum(1 for c in in_bucket if c.status == "resolved"),
                "pending": sum(1 for c in in_bucket if c.status == "pending"),
            }
        )
    return trends


def generate_department_performance(rows: list[ComplaintRow]) -> list[dict]:
    by_dept: dict[str, list[ComplaintRow]] = defaultdict(list)
    for c in rows:
        if c.assigned_department:
            by_dept[c.assigned_department].append(c)

    out = []
    for dept, items in by_dept.items():
        ratings = [f.rating for c in items for f in c.feedback]
        out.append(
            {
                "department": dept,
                "totalAssigned": len(items),
                "resolved": sum(1 for c in items if c.status == "resolved"),
                "pending": sum(1 for c in items if c.status == "pending"),
                "averageResolutionTime": average_resolution_days(items),
                "satisfactionScore": mean(ratings),
            }
        )
    return out


def summarize_complaints(rows: list[ComplaintRow]) -> dict:
    """Status counts, rates, satisfaction and breakdowns over one row set."""
    total = len(rows)
    status = Counter(c.status for c in rows)
    ratings = [f.rating for c in rows for f in c.feedback]
    return {
        "totalComplaints": total,
        "pendingComplaints": status.get("pending", 0),
        "inProgressComplaints": status.get("inProgress", 0),
        "resolvedComplaints": status.get("resolved", 0),
        "escalatedComplaints": status.get("escalated", 0),
        "closedComplaints": status.get("closed", 0),
        "averageResolutionTime": average_resolution_days(rows),
        "resolutionRate": percentage(status.get("resolved", 0), total),
        "escalationRate": percentage(status.get("escalated", 0), total),
        "satisfactionScore": mean(ratings),
        "complaintsByCategory": breakdown(c.category for c in rows),
        "complaintsByPriority": breakdown(c.priority for c in rows),
        "complaintsByDepartment": breakdown(c.assigned_department for c in rows),
        "feedbackSummary": {
            "totalFeedbacks": len(ratings),
            "averageRating": mean(ratings),
            "ratingDistribution": rating_distribution(ratings),
        },
    }


def escalation_reason(c: ComplaintRow, days_pending: int) -> str:
    if days_pending > 7 and c.priority == "urgent":
        return "Urgent complaint pending for more than 7 days"
    if days_pending > 14 and c.priority == "high":
        return "High priority complaint pending for more than 14 days"
    if days_pending > 30:
        return "Complaint pending for more than 30 days"
    if c.status == "escalated":
        return "Manually escalated"
    return ""


@dataclass(frozen=True)
class ReportFilters:
    start_date: dt.date | None = None
    end_date: dt.date | None = None
    category: str | None = None
    department: str | None = None
    status: str | None = None

    def cache_params(self) -> dict:
        return {
            "startDate": self.start_date.isoformat() if self.start_date else None,
            "endDate": self.end_date.isoformat() if self.end_date else None,
            "category": self.category,
            "department": self.department,
            "status": self.status,
        }


def _authority_department(user: User) -> str | None:
    return user.department if user.role == "authority" and user.department else None


class ReportsService:
    """
    Report generators over complaint rows. Every generator goes through the
    read-through cache keyed by endpoint, params, user and department.
    """

    def __init__(
        self,
        store: ComplaintStore,
        *,
        cache: CacheClient | None = None,
        now_fn: Callable[[], dt.datetime] = dt.datetime.utcnow,
    ) -> None:
        self.store = store
        self.cache = cache
        self.now_fn = now_fn

    def _cached(self, endpoint: str, fn: Callable[[], object], params: dict, user: User, department: str | None):
        try:
            return with_cache(endpoint, fn, params, user.id, department, client=self.cache)
        except Exception:
            logger.exception("Error generating %s report", endpoint)
            raise

    def generate_dashboard_report(self, period: str, user: User) -> dict:
        if period not in REPORT_PERIODS:
            raise ValueError(f"period must be one of {'/'.join(REPORT_PERIODS)}")

        def _build() -> dict:
            now = self.now_fn()
            start = period_start(period, now)
            complaints = self.store.fetch_complaints(submitted_from=start, department=_authority_department(user))
            users = self.store.fetch_profiles(created_from=start)

            report = summarize_complaints(complaints)
            report["monthlyTrends"] = generate_time_trends(complaints, "month", now)
            report["weeklyTrends"] = generate_time_trends(complaints, "week", now)
            report["activeUsers"] = len(users)
            report["newRegistrations"] = len(users)
            report["usersByRole"] = breakdown(u.role for u in users)
            report["departmentPerformance"] = (
                generate_department_performance(complaints) if user.role == "admin" else []
            )
            return report

        return self._cached("dashboard_stats", _build, {"period": period}, user, user.department)

    def generate_escalation_report(self, user: User, department: str | None = None) -> list[dict]:
        def _build() -> list[dict]:
            now = self.now_fn()
            rows = self.store.fetch_complaints(
                statuses=("pending", "escalated"),
                department=department or _authority_department(user),
            )
            out = []
            for c in rows:
                days_pending = math.floor(_days(c.submitted_at, now))
                reason = escalation_reason(c, days_pending)
                if not reason:
                    continue
                out.append(
                    {
                        "complaintId": c.id,
                        "subject": c.subject,
                        "category": c.category,
                        "priority": c.priority,
                        "submittedAt": _iso(c.submitted_at),
                        "daysPending": days_pending,
                        "assignedDepartment": c.assigned_department or "Unassigned",
                        "escalationReason": reason,
                    }
                )
            return out

        return self._cached("escalation_report", _build, {"department": department}, user, user.department)

    def generate_complaint_report(self, user: User, filters: ReportFilters | None = None) -> list[dict]:
        f = filters or ReportFilters()

        def _build() -> list[dict]:
            department = f.department
            user_id = None
            if _authority_department(user):
                department = user.department
            elif user.role == "citizen":
                user_id = user.id
            rows = self.store.fetch_complaints(
                submitted_from=dt.datetime.combine(f.start_date, dt.time.min) if f.start_date else None,
                submitted_to=dt.datetime.combine(f.end_date, dt.time.max) if f.end_date else None,
                statuses=(f.status,) if f.status else None,
                category=f.category,
                department=department,
                user_id=user_id,
                newest_first=True,
            )
            out = []
            for c in rows:
                first = c.feedback[0] if c.feedback else None
                out.append(
                    {
                        "id": c.id,
                        "subject": c.subject,
                        "category": c.category,
                        "priority": c.priority,
                        "status": c.status,
                        "submittedAt": _iso(c.submitted_at),
                        "resolvedAt": _iso(c.resolved_at),
                        "resolutionTime": math.floor(_days(c.submitted_at, c.resolved_at)) if c.resolved_at else None,
                        "assignedDepartment": c.assigned_department or "Unassigned",
                        "userFeedback": {"rating": first.rating, "comment": first.comment} if first else None,
                    }
                )
            return out

        return self._cached("complaints_report", _build, f.cache_params(), user, user.department)

    def generate_feedback_summary(self, user: User, department: str | None = None) -> dict:
        def _build() -> dict:
            feedbacks: list[FeedbackRow] = self.store.fetch_feedback(
                department=department or _authority_department(user)
            )
            ratings = [f.rating for f in feedbacks]
            by_cat: dict[str, list[int]] = defaultdict(list)
            for f in feedbacks:
                by_cat[f.category or "Unknown"].append(f.rating)
            return {
                "totalFeedbacks": len(ratings),
                "averageRating": mean(ratings),
                "ratingDistribution": rating_distribution(ratings),
                "feedbackByCategory": {
                    cat: {"total": len(rs), "averageRating": mean(rs)} for cat, rs in sorted(by_cat.items())
                },
            }

        return self._cached("feedback_summary", _build, {"department": department}, user, user.department)

    def generate_user_activity_report(self, user: User) -> dict:
        def _build() -> dict:
            now = self.now_fn()
            users = self.store.fetch_profiles()
            last_month = add_months(now, -1)
            return {
                "totalUsers": len(users),
                "newUsersThisMonth": sum(1 for u in users if u.created_at >= last_month),
                "usersByRole": breakdown(u.role for u in users),
                "usersByDepartment": breakdown(u.department for u in users),
            }

        department = None if user.role == "admin" else user.department
        return self._cached("user_activity", _build, {}, user, department)
