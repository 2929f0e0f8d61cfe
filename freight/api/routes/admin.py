"""
Admin / observability endpoints
===============================

GET /api/v1/admin/health -- liveness plus background dispatcher state
"""

from fastapi import APIRouter

from freight.api.dependencies import dispatcher
from freight.api.schemas import HealthResponse

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse(dispatcher_running=dispatcher.running)
