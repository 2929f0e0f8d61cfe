"""
Trip endpoints
==============

POST /api/v1/trips/{trip_id}/transitions -- move a trip to a new status
GET  /api/v1/trips/{trip_id}/progress    -- percent complete, remaining km, ETA
GET  /api/v1/trips/{trip_id}/track       -- breadcrumb trail and distance travelled
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from freight.api.dependencies import get_coordinator, get_tracking_service
from freight.api.errors import http_error
from freight.api.middleware import limiter
from freight.api.schemas import (
    ErrorResponse,
    ProgressResponse,
    TransitionRequest,
    TripResponse,
    TripTrackResponse,
)
from freight.domain.entities import Money, TransitionPayload
from freight.services.coordinator import TripCoordinator
from freight.services.tracking import TrackingService

router = APIRouter(prefix="/trips", tags=["trips"])

_ERRORS = {
    403: {"model": ErrorResponse, "description": "Actor may not perform this change"},
    404: {"model": ErrorResponse, "description": "Trip not found"},
    409: {"model": ErrorResponse, "description": "Illegal or conflicting transition"},
}


@router.post(
    "/{trip_id}/transitions",
    response_model=TripResponse,
    summary="Request a trip status transition",
    responses=_ERRORS,
)
@limiter.limit("100/minute")
async def request_transition(
    request: Request,
    trip_id: int,
    body: TransitionRequest,
    coordinator: TripCoordinator = Depends(get_coordinator),
):
    try:
        payload = TransitionPayload(
            reason=body.reason,
            notes=body.notes,
            actual_price=(
                Money(body.actual_price.amount, body.actual_price.currency)
                if body.actual_price
                else None
            ),
            location=body.location.to_domain() if body.location else None,
            waybill_number=body.waybill_number,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    result = await coordinator.request_transition(
        trip_id, body.actor_id, body.target_status, payload
    )
    if not result.ok:
        raise http_error(result.error)
    return TripResponse.from_snapshot(result.value)


@router.get(
    "/{trip_id}/progress",
    response_model=ProgressResponse,
    summary="Get trip progress and ETA",
    responses={404: _ERRORS[404]},
)
@limiter.limit("300/minute")
async def get_progress(
    request: Request,
    trip_id: int,
    coordinator: TripCoordinator = Depends(get_coordinator),
):
    result = await coordinator.get_progress(trip_id)
    if not result.ok:
        raise http_error(result.error)
    return ProgressResponse.from_progress(result.value)


@router.get(
    "/{trip_id}/track",
    response_model=TripTrackResponse,
    summary="Get the trip's breadcrumb trail",
    responses={404: _ERRORS[404]},
)
@limiter.limit("60/minute")
async def get_track(
    request: Request,
    trip_id: int,
    start: Optional[datetime] = Query(None, description="Only fixes at or after this time"),
    end: Optional[datetime] = Query(None, description="Only fixes at or before this time"),
    tracking: TrackingService = Depends(get_tracking_service),
):
    result = await tracking.trip_track(trip_id, start, end)
    if not result.ok:
        raise http_error(result.error)
    return TripTrackResponse.from_track(result.value)
