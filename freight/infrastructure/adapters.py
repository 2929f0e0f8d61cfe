"""
Outbound adapters for the coordinator's external collaborators.

* ``LoggingNotificationDispatcher`` -- writes notifications to the log; a
  push / SMS gateway slots in behind the same interface.
* ``UnavailableRouteWeatherAdvisor`` -- used when no weather provider is
  configured; never reports an advisory.
* ``OSRMRouteEstimator`` -- driving distance / duration from an OSRM
  ``route`` endpoint, used for ETAs.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from freight.domain.entities import GeoLocation
from freight.domain.ports import (
    Advisory,
    NotificationDispatcher,
    RouteEstimate,
    RouteEstimator,
    RouteWeatherAdvisor,
)

logger = logging.getLogger(__name__)


class LoggingNotificationDispatcher(NotificationDispatcher):
    async def notify(
        self,
        user_id: int,
        title: str,
        message: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        logger.info(
            "Notification to user %s: %s | %s %s", user_id, title, message, metadata or {}
        )


class UnavailableRouteWeatherAdvisor(RouteWeatherAdvisor):
    async def get_advisory(
        self, latitude: float, longitude: float
    ) -> Optional[Advisory]:
        return None


class OSRMRouteEstimator(RouteEstimator):
    def __init__(
        self,
        base_url: str,
        profile: str = "driving",
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not base_url:
            raise ValueError("OSRM base URL is not configured.")
        self.base_url = base_url.rstrip("/")
        self.profile = profile
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(10.0, connect=5.0)
        )

    async def estimate(
        self, origin: GeoLocation, destination: GeoLocation
    ) -> Optional[RouteEstimate]:
        # OSRM expects lon,lat pairs
        coordinates = (
            f"{origin.longitude},{origin.latitude};"
            f"{destination.longitude},{destination.latitude}"
        )
        url = f"{self.base_url}/route/v1/{self.profile}/{coordinates}"
        response = await self._client.get(url, params={"overview": "false"})
        response.raise_for_status()
        data = response.json()
        routes = data.get("routes") or []
        if data.get("code") != "Ok" or not routes:
            logger.warning("OSRM returned no route (code=%s)", data.get("code"))
            return None
        route = routes[0]
        return RouteEstimate(
            distance_km=route["distance"] / 1000.0,
            duration_minutes=route["duration"] / 60.0,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
