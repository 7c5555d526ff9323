from __future__ import annotations

import os
import tempfile
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel, Field

from auth import User, get_current_user, require_role
from services.cache_utils import CacheClient, get_cache_client
from services.complaint_service import ComplaintService
from services.complaint_store import ComplaintStore, StoreError, get_store
from services.data_service import DataService

router = APIRouter(prefix="/api/complaints", tags=["complaints"])

Status = Literal["pending", "inProgress", "resolved", "escalated", "closed"]
Priority = Literal["low", "medium", "high", "urgent"]


def _svc(
    store: Annotated[ComplaintStore, Depends(get_store)],
    cache: Annotated[CacheClient, Depends(get_cache_client)],
) -> ComplaintService:
    return ComplaintService(store, cache=cache)


class ComplaintCreate(BaseModel):
    subject: str = Field(min_length=1, max_length=256)
    category: str = Field(min_length=1, max_length=128)
    description: str = ""
    priority: Priority = "medium"
    location: str | None = None
    assigned_department: str | None = None


class ComplaintPatch(BaseModel):
    status: Status | None = None
    assigned_department: str | None = None
    message: str | None = None


class FeedbackCreate(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: str | None = None


class UploadResponse(BaseModel):
    stored_raw_path: str
    inserted: int
    skipped_duplicates: int


@router.get("")
def list_complaints(
    user: Annotated[User, Depends(get_current_user)],
    svc: Annotated[ComplaintService, Depends(_svc)],
):
    try:
        return {"rows": svc.list_for_user(user)}
    except StoreError as e:
        raise HTTPException(status_code=503, detail="Failed to load complaints") from e


@router.post("", status_code=201)
def submit_complaint(
    req: ComplaintCreate,
    user: Annotated[User, Depends(require_role("citizen", "admin"))],
    svc: Annotated[ComplaintService, Depends(_svc)],
):
    try:
        return svc.submit(
            user,
            subject=req.subject,
            category=req.category,
            description=req.description,
            priority=req.priority,
            location=req.location,
            assigned_department=req.assigned_department,
        )
    except StoreError as e:
        raise HTTPException(status_code=503, detail="Failed to submit complaint") from e


@router.post("/upload_csv", response_model=UploadResponse)
def upload_csv(
    _: Annotated[User, Depends(require_role("admin"))],
    store: Annotated[ComplaintStore, Depends(get_store)],
    file: UploadFile = File(...),
) -> UploadResponse:
    if not file.filename.lower().endswith(".csv"):
        raise HTTPException(status_code=400, detail="Please upload a .csv file")

    data_svc = DataService()
    with tempfile.NamedTemporaryFile(delete=False, suffix=".csv") as tmp:
        tmp_path = tmp.name
        tmp.write(file.file.read())

    try:
        stored_path = data_svc.store_uploaded_csv(tmp_path, file.filename)
        result = data_svc.ingest_csv(store, stored_path)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except StoreError as e:
        raise HTTPException(status_code=503, detail="Failed to import complaints") from e
    finally:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
    return UploadResponse(
        stored_raw_path=result.stored_raw_path,
        inserted=result.inserted,
        skipped_duplicates=result.skipped_duplicates,
    )


@router.get("/{complaint_id}")
def track_complaint(
    complaint_id: str,
    user: Annotated[User, Depends(get_current_user)],
    svc: Annotated[ComplaintService, Depends(_svc)],
):
    try:
        data = svc.track(complaint_id, user)
    except StoreError as e:
        raise HTTPException(status_code=503, detail="Failed to load complaint") from e
    if data is None:
        raise HTTPException(status_code=404, detail="Complaint not found")
    return data


@router.patch("/{complaint_id}")
def update_complaint(
    complaint_id: str,
    req: ComplaintPatch,
    user: Annotated[User, Depends(require_role("authority", "admin"))],
    svc: Annotated[ComplaintService, Depends(_svc)],
):
    if not req.status and not req.assigned_department:
        raise HTTPException(status_code=400, detail="status or assigned_department is required")
    try:
        data = svc.update(
            user,
            complaint_id,
            status=req.status,
            assigned_department=req.assigned_department,
            message=req.message,
        )
    except StoreError as e:
        raise HTTPException(status_code=503, detail="Failed to update complaint") from e
    if data is None:
        raise HTTPException(status_code=404, detail="Complaint not found")
    return data


@router.post("/{complaint_id}/feedback", status_code=201)
def add_feedback(
    complaint_id: str,
    req: FeedbackCreate,
    user: Annotated[User, Depends(require_role("citizen"))],
    svc: Annotated[ComplaintService, Depends(_svc)],
):
    try:
        data = svc.add_feedback(user, complaint_id, rating=req.rating, comment=req.comment)
    except StoreError as e:
        raise HTTPException(status_code=503, detail="Failed to save feedback") from e
    if data is None:
        raise HTTPException(status_code=404, detail="Complaint not found")
    return data
