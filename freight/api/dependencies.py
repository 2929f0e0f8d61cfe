"""FastAPI dependency injection helpers."""

from decimal import Decimal
from typing import Optional

from fastapi import Depends

from freight.config import settings
from freight.domain.ports import LocationStore, RouteEstimator
from freight.infrastructure.adapters import (
    LoggingNotificationDispatcher,
    OSRMRouteEstimator,
    UnavailableRouteWeatherAdvisor,
)
from freight.infrastructure.location_store import RedisLocationStore
from freight.infrastructure.redis_client import get_redis
from freight.infrastructure.repositories import (
    SqlAlchemyUnitOfWork,
    SqlCommissionConfigProvider,
    SqlTripTrackRepository,
)
from freight.services.coordinator import TripCoordinator
from freight.services.tracking import TrackingService
from freight.workers.dispatcher import BackgroundDispatcher

# Process-wide; started and stopped by the app lifespan.
dispatcher = BackgroundDispatcher(
    max_retries=settings.dispatch_max_retries,
    backoff_seconds=settings.dispatch_backoff_seconds,
    queue_size=settings.dispatch_queue_size,
)

_notifier = LoggingNotificationDispatcher()
_advisor = UnavailableRouteWeatherAdvisor()
_commission_config = SqlCommissionConfigProvider(
    Decimal(str(settings.default_commission_percent))
)
_trip_tracks = SqlTripTrackRepository()
_route_estimator: Optional[RouteEstimator] = (
    OSRMRouteEstimator(settings.osrm_base_url, settings.osrm_profile)
    if settings.osrm_base_url
    else None
)


async def get_location_store() -> LocationStore:
    return RedisLocationStore(await get_redis(), settings.location_ttl_seconds)


def get_coordinator(
    location_store: LocationStore = Depends(get_location_store),
) -> TripCoordinator:
    return TripCoordinator(
        uow_factory=SqlAlchemyUnitOfWork,
        notifier=_notifier,
        advisor=_advisor,
        commission_config=_commission_config,
        dispatcher=dispatcher,
        settings=settings,
        route_estimator=_route_estimator,
        location_store=location_store,
    )


def get_tracking_service(
    location_store: LocationStore = Depends(get_location_store),
) -> TrackingService:
    return TrackingService(
        location_store,
        trips=_trip_tracks,
        notifier=_notifier,
        dispatcher=dispatcher,
        near_destination_km=settings.near_destination_km,
    )


async def close_route_estimator() -> None:
    if isinstance(_route_estimator, OSRMRouteEstimator):
        await _route_estimator.aclose()
