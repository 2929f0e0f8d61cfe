"""
Driver endpoints
================

PUT /api/v1/drivers/{driver_id}/location -- report a GPS fix (last writer wins)
"""

from fastapi import APIRouter, Depends, HTTPException, Request

from freight.api.dependencies import get_tracking_service
from freight.api.errors import http_error
from freight.api.middleware import limiter
from freight.api.schemas import LocationIn, LocationUpdateResponse
from freight.services.tracking import TrackingService

router = APIRouter(prefix="/drivers", tags=["drivers"])


@router.put(
    "/{driver_id}/location",
    response_model=LocationUpdateResponse,
    summary="Record a driver's current location",
    responses={200: {"description": "`applied` is false for out-of-order fixes."}},
)
@limiter.limit("600/minute")
async def update_location(
    request: Request,
    driver_id: int,
    body: LocationIn,
    tracking: TrackingService = Depends(get_tracking_service),
):
    try:
        location = body.to_domain()
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    result = await tracking.update_driver_location(driver_id, location)
    if not result.ok:
        raise http_error(result.error)
    return LocationUpdateResponse(driver_id=driver_id, applied=result.value)
