from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from auth import User, get_current_user
from services.complaint_store import ComplaintStore, StoreError, get_store
from services.prediction_service import predict_trends

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["predictions"])


def _error(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": message})


@router.get("/predict-trends")
def predict(
    _: Annotated[User, Depends(get_current_user)],
    store: Annotated[ComplaintStore, Depends(get_store)],
    period: str = "month",
    category: str | None = None,
    department: str | None = None,
    months: str = "3",
):
    """
    Historical period buckets plus a linear forecast for the next `months` periods.
    Errors are returned as {"error": "..."} with status 400.
    """
    try:
        n = int(months)
    except ValueError:
        return _error("months must be an integer")
    try:
        return predict_trends(
            store,
            period=period or "month",
            category=category or None,
            department=department or None,
            months=n,
        )
    except ValueError as e:
        return _error(str(e))
    except StoreError as e:
        logger.error("predict-trends failed: %s", e)
        return _error(str(e))
