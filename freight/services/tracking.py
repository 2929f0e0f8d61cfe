"""
Driver location tracking.

Location pings arrive concurrently with trip transitions and never take the
trip lock.  Ordering is last-writer-wins by the *client* timestamp, so a
delayed ping can never overwrite a newer position.

While a driver's trip is en route every fix is also appended to that trip's
breadcrumb trail, and the first fix within ``near_destination_km`` of the
delivery point queues a notification to the cargo owner.  Trail and
notification are best effort: their failures are logged, the live location
update still succeeds.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from functools import partial
from typing import Optional

from freight.domain.distance import distance_km, path_length_km
from freight.domain.entities import GeoLocation, TripTrack
from freight.domain.ports import (
    LocationStore,
    NotificationDispatcher,
    TrackedTrip,
    TripTrackRepository,
)
from freight.domain.result import ErrorKind, Result
from freight.workers.dispatcher import BackgroundDispatcher

logger = logging.getLogger(__name__)


class TrackingService:
    def __init__(
        self,
        location_store: LocationStore,
        trips: TripTrackRepository,
        notifier: NotificationDispatcher,
        dispatcher: BackgroundDispatcher,
        near_destination_km: float = 5.0,
    ):
        self.location_store = location_store
        self.trips = trips
        self.notifier = notifier
        self.dispatcher = dispatcher
        self.near_destination_km = near_destination_km

    async def update_driver_location(
        self, driver_id: int, location: GeoLocation
    ) -> Result[bool]:
        """Record *location*; the value is False when a newer fix was already held."""
        try:
            applied = await self.location_store.record(driver_id, location)
        except Exception:
            logger.exception("Could not record location for driver %s", driver_id)
            return Result.fail(
                ErrorKind.PERSISTENCE_FAILURE,
                f"Could not record location for driver {driver_id}",
            )
        if not applied:
            logger.debug(
                "Ignored stale location for driver %s (client time %s)",
                driver_id,
                location.timestamp.isoformat(),
            )

        await self._file_against_trip(driver_id, location)
        return Result.success(applied)

    async def latest_location(self, driver_id: int) -> Result[GeoLocation]:
        try:
            location = await self.location_store.latest(driver_id)
        except Exception:
            logger.exception("Could not read location for driver %s", driver_id)
            return Result.fail(
                ErrorKind.PERSISTENCE_FAILURE,
                f"Could not read location for driver {driver_id}",
            )
        if location is None:
            return Result.fail(
                ErrorKind.NOT_FOUND, f"No location recorded for driver {driver_id}"
            )
        return Result.success(location)

    async def trip_track(
        self,
        trip_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Result[TripTrack]:
        """Breadcrumb trail of *trip_id* between *start* and *end*, with distance travelled."""
        start, end = _as_utc(start), _as_utc(end)
        try:
            points = await self.trips.points(trip_id, start, end)
        except Exception:
            logger.exception("Could not read the trail of trip %s", trip_id)
            return Result.fail(
                ErrorKind.PERSISTENCE_FAILURE, f"Could not read the trail of trip {trip_id}"
            )
        if points is None:
            return Result.fail(ErrorKind.NOT_FOUND, f"Trip {trip_id} not found")
        return Result.success(
            TripTrack(trip_id=trip_id, points=points, travelled_km=path_length_km(points))
        )

    # ── Internals ─────────────────────────────────────────────────────

    async def _file_against_trip(self, driver_id: int, location: GeoLocation) -> None:
        try:
            trip = await self.trips.active_trip_for_driver(driver_id)
            if trip is None:
                return
            await self.trips.add_point(trip.trip_id, location)
            if distance_km(location, trip.delivery) > self.near_destination_km:
                return
            first_time = await self.trips.mark_near_destination(trip.trip_id)
        except Exception:
            logger.warning(
                "Could not add location of driver %s to its trip trail",
                driver_id,
                exc_info=True,
            )
            return

        if first_time:
            self._notify_near_destination(trip)

    def _notify_near_destination(self, trip: TrackedTrip) -> None:
        logger.info(
            "Trip %s is within %.1f km of delivery", trip.trip_id, self.near_destination_km
        )
        self.dispatcher.submit(
            f"notify:trip-{trip.trip_id}:near-destination",
            partial(
                self.notifier.notify,
                trip.owner_id,
                "Driver near destination",
                f"The driver is within {self.near_destination_km:g} km of the delivery point.",
                {"trip_id": trip.trip_id, "event": "near_destination"},
            ),
        )


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
