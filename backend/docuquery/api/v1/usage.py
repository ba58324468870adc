"""GET /api/v1/usage — cost totals for the caller, optionally windowed."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, HTTPException, Query, status

from docuquery.api.dependencies import AppServices, CurrentUserId
from docuquery.schemas.query import UsageResponse

router = APIRouter(prefix="/usage", tags=["Usage"])


@router.get("", response_model=UsageResponse)
async def get_usage(
    user_id:  CurrentUserId,
    services: AppServices,
    start:    datetime | None = Query(None, description="Inclusive lower bound (ISO-8601)"),
    end:      datetime | None = Query(None, description="Inclusive upper bound (ISO-8601)"),
) -> UsageResponse:
    if start and end and start >= end:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="start must be before end")
    stats = await services.usage.usage_stats(user_id, start=start, end=end)
    return UsageResponse.model_validate(stats)
