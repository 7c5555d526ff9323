from __future__ import annotations

import datetime as dt
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from auth import User, get_current_user, require_role
from services.cache_utils import CacheClient, get_cache_client
from services.complaint_store import ComplaintStore, StoreError, get_store
from services.report_export import EXPORT_FORMATS, EXPORT_TYPES, export_csv, export_filename, export_printable
from services.reports_service import REPORT_PERIODS, ReportFilters, ReportsService


router = APIRouter(prefix="/api/reports", tags=["reports"])


def _svc(
    store: Annotated[ComplaintStore, Depends(get_store)],
    cache: Annotated[CacheClient, Depends(get_cache_client)],
) -> ReportsService:
    return ReportsService(store, cache=cache)


def _parse_date(s: str | None, name: str) -> dt.date | None:
    if not s:
        return None
    try:
        return dt.datetime.strptime(s, "%Y-%m-%d").date()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"{name} must be YYYY-MM-DD") from e


def _parse_filters(
    start_date: str | None,
    end_date: str | None,
    category: str | None,
    department: str | None,
    status: str | None,
) -> ReportFilters:
    s = _parse_date(start_date, "start_date")
    e = _parse_date(end_date, "end_date")
    if s and e and e < s:
        raise HTTPException(status_code=400, detail="end_date must be >= start_date")
    return ReportFilters(
        start_date=s,
        end_date=e,
        category=category or None,
        department=department or None,
        status=status or None,
    )


def _failed() -> HTTPException:
    return HTTPException(status_code=503, detail="Failed to load report data")


@router.get("/dashboard")
def dashboard(
    user: Annotated[User, Depends(require_role("admin", "authority", "ngo"))],
    svc: Annotated[ReportsService, Depends(_svc)],
    period: str = "month",
):
    if period not in REPORT_PERIODS:
        raise HTTPException(status_code=400, detail=f"period must be {'/'.join(REPORT_PERIODS)}")
    try:
        return svc.generate_dashboard_report(period, user)
    except StoreError as e:
        raise _failed() from e


@router.get("/escalation")
def escalation(
    user: Annotated[User, Depends(require_role("admin", "authority"))],
    svc: Annotated[ReportsService, Depends(_svc)],
    department: str | None = None,
):
    try:
        return {"rows": svc.generate_escalation_report(user, department or None)}
    except StoreError as e:
        raise _failed() from e


@router.get("/complaints")
def complaints(
    user: Annotated[User, Depends(get_current_user)],
    svc: Annotated[ReportsService, Depends(_svc)],
    start_date: str | None = None,
    end_date: str | None = None,
    category: str | None = None,
    department: str | None = None,
    status: str | None = None,
):
    f = _parse_filters(start_date, end_date, category, department, status)
    try:
        return {"rows": svc.generate_complaint_report(user, f)}
    except StoreError as e:
        raise _failed() from e


@router.get("/feedback")
def feedback(
    user: Annotated[User, Depends(require_role("admin", "authority"))],
    svc: Annotated[ReportsService, Depends(_svc)],
    department: str | None = None,
):
    try:
        return svc.generate_feedback_summary(user, department or None)
    except StoreError as e:
        raise _failed() from e


@router.get("/user-activity")
def user_activity(
    user: Annotated[User, Depends(require_role("admin"))],
    svc: Annotated[ReportsService, Depends(_svc)],
):
    try:
        return svc.generate_user_activity_report(user)
    except StoreError as e:
        raise _failed() from e


@router.get("/export/{report_type}")
def export(
    report_type: str,
    user: Annotated[User, Depends(require_role("admin", "authority"))],
    svc: Annotated[ReportsService, Depends(_svc)],
    format: str = "csv",
    department: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    category: str | None = None,
    status: str | None = None,
):
    if report_type not in EXPORT_TYPES:
        raise HTTPException(status_code=400, detail=f"report_type must be {'/'.join(EXPORT_TYPES)}")
    if format not in EXPORT_FORMATS:
        raise HTTPException(status_code=400, detail=f"format must be {'/'.join(EXPORT_FORMATS)}")

    try:
        if report_type == "escalation":
            rows = svc.generate_escalation_report(user, department or None)
        else:
            rows = svc.generate_complaint_report(
                user, _parse_filters(start_date, end_date, category, department, status)
            )
    except StoreError as e:
        raise _failed() from e

    filename = export_filename(report_type, format)
    if format == "csv":
        body, media_type = export_csv(report_type, rows), "text/csv"
    else:
        body, media_type = export_printable(report_type, rows), "text/html"
    return Response(
        content=body,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
