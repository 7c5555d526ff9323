from __future__ import annotations

import datetime as dt
import math
import re
from collections import defaultdict
from typing import Iterable

import numpy as np

from services.complaint_store import ComplaintRow, ComplaintStore

PREDICTION_PERIODS = ("week", "month", "quarter", "year")

_WEEK_RE = re.compile(r"^(\d{4})-W(\d{1,2})$")
_QUARTER_RE = re.compile(r"^(\d{4})-Q(\d)$")
_MONTH_RE = re.compile(r"^(\d{4})-(\d{1,2})$")
_YEAR_RE = re.compile(r"^(\d{4})$")


def period_label(ts, period: str) -> str:
    if period == "week":
        year, week, _ = ts.isocalendar()
        return f"{year}-W{week}"
    if period == "quarter":
        return f"{ts.year}-Q{(ts.month - 1) // 3 + 1}"
    if period == "year":
        return f"{ts.year}"
    return f"{ts.year}-{ts.month}"


def _sort_key(label: str) -> tuple[int, int]:
    for rx in (_WEEK_RE, _QUARTER_RE, _MONTH_RE):
        m = rx.match(label)
        if m:
            return int(m.group(1)), int(m.group(2))
    return int(label), 0


def group_by_period(rows: Iterable[ComplaintRow], period: str) -> list[dict]:
    """Period buckets {period, total, resolved, pending} in chronological order."""
    buckets: dict[str, dict] = defaultdict(lambda: {"total": 0, "resolved": 0, "pending": 0})
    for c in rows:
        b = buckets[period_label(c.submitted_at, period)]
        b["total"] += 1
        if c.status == "resolved":
            b["resolved"] += 1
        elif c.status == "pending":
            b["pending"] += 1
    return [{"period": k, **buckets[k]} for k in sorted(buckets, key=_sort_key)]


def linear_regression(x: list[float], y: list[float]) -> tuple[float, float]:
    """Ordinary least squares fit y = slope * x + intercept."""
    slope, intercept = np.polyfit(np.asarray(x, dtype=float), np.asarray(y, dtype=float), 1)
    return float(slope), float(intercept)


def _round_half_up(v: float) -> int:
    return int(math.floor(v + 0.5))


def next_period(label: str, increment: int) -> str:
    """
    Advance a period label. Weeks follow the ISO calendar, so W52 rolls to W53
    only in years that have one. Quarters roll past 4 and months past 12.
    """
    m = _WEEK_RE.match(label)
    if m:
        monday = dt.date.fromisocalendar(int(m.group(1)), int(m.group(2)), 1)
        year, week, _ = (monday + dt.timedelta(weeks=increment)).isocalendar()
        return f"{year}-W{week}"
    m = _QUARTER_RE.match(label)
    if m:
        year, quarter = int(m.group(1)), int(m.group(2)) + increment
        if quarter > 4:
            return f"{year + (quarter - 1) // 4}-Q{(quarter - 1) % 4 + 1}"
        return f"{year}-Q{quarter}"
    m = _MONTH_RE.match(label)
    if m:
        year, month = int(m.group(1)), int(m.group(2)) + increment
        if month > 12:
            return f"{year + (month - 1) // 12}-{(month - 1) % 12 + 1}"
        return f"{year}-{month}"
    if _YEAR_RE.match(label):
        return f"{int(label) + increment}"
    raise ValueError(f"Unrecognized period label: {label}")


def predict_future(historical: list[dict], periods: int) -> list[dict]:
    if len(historical) < 2:
        return []

    x = list(range(len(historical)))
    total_slope, total_icpt = linear_regression(x, [h["total"] for h in historical])
    resolved_slope, resolved_icpt = linear_regression(x, [h["resolved"] for h in historical])
    last = historical[-1]["period"]

    out = []
    for i in range(1, periods + 1):
        idx = len(x) + i - 1
        total = max(0, _round_half_up(total_slope * idx + total_icpt))
        resolved = max(0, _round_half_up(resolved_slope * idx + resolved_icpt))
        out.append(
            {
                "period": next_period(last, i),
                "total": total,
                "resolved": resolved,
                "pending": max(0, total - resolved),
                "isPrediction": True,
            }
        )
    return out


def predict_trends(
    store: ComplaintStore,
    *,
    period: str = "month",
    category: str | None = None,
    department: str | None = None,
    months: int = 3,
) -> dict:
    if period not in PREDICTION_PERIODS:
        raise ValueError(f"period must be one of {'/'.join(PREDICTION_PERIODS)}")
    if months < 0:
        raise ValueError("months must be >= 0")

    rows = store.fetch_complaints(category=category, department=department)
    historical = group_by_period(rows, period)
    return {
        "historical": historical,
        "predictions": predict_future(historical, months),
        "metadata": {
            "period": period,
            "category": category,
            "department": department,
            "predictionMonths": months,
        },
    }
