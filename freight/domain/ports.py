"""
Contracts for the collaborators the trip coordinator consumes.

Concrete adapters live in ``freight.infrastructure``; tests substitute
in-memory versions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from datetime import datetime
from typing import Any, Optional

from .entities import Actor, Cargo, Driver, GeoLocation, Payment, Trip, TripAggregate
from .result import Result


@dataclass(frozen=True)
class Advisory:
    is_severe: bool
    description: str = ""


@dataclass(frozen=True)
class RouteEstimate:
    distance_km: float
    duration_minutes: float


@dataclass
class AggregateMutations:
    """Everything one transition writes, committed together or not at all."""

    trip: Trip
    expected_version: int
    cargo: Cargo
    driver: Optional[Driver] = None
    payment: Optional[Payment] = None


@dataclass(frozen=True)
class TrackedTrip:
    """The en-route trip a driver's location fixes are filed against."""

    trip_id: int
    owner_id: int
    delivery: GeoLocation


@dataclass(frozen=True)
class Notification:
    user_id: int
    title: str
    message: str
    metadata: dict[str, Any] = field(default_factory=dict)


# ── Persistence ───────────────────────────────────────────────────────


class UnitOfWork(ABC):
    """One transactional boundary around a single transition."""

    @abstractmethod
    async def begin(self) -> None: ...

    @abstractmethod
    async def commit(self) -> None: ...

    @abstractmethod
    async def rollback(self) -> None: ...

    @abstractmethod
    async def load(
        self, trip_id: int, *, for_update: bool = False
    ) -> Optional[TripAggregate]: ...

    @abstractmethod
    async def load_driver(self, driver_id: int) -> Optional[Driver]: ...

    @abstractmethod
    async def get_actor(self, actor_id: int) -> Optional[Actor]: ...

    @abstractmethod
    async def payment_exists(self, trip_id: int) -> bool: ...

    @abstractmethod
    async def save_atomically(self, mutations: AggregateMutations) -> Result[None]: ...

    async def __aenter__(self) -> "UnitOfWork":
        await self.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        # Anything not explicitly committed is discarded.
        await self.rollback()


# ── External services ─────────────────────────────────────────────────


class NotificationDispatcher(ABC):
    @abstractmethod
    async def notify(
        self,
        user_id: int,
        title: str,
        message: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None: ...


class RouteWeatherAdvisor(ABC):
    @abstractmethod
    async def get_advisory(
        self, latitude: float, longitude: float
    ) -> Optional[Advisory]:
        """``None`` means the advisory service has nothing to say / is unavailable."""


class RouteEstimator(ABC):
    @abstractmethod
    async def estimate(
        self, origin: GeoLocation, destination: GeoLocation
    ) -> Optional[RouteEstimate]: ...


class CommissionConfigProvider(ABC):
    @abstractmethod
    async def get_rate(self, key: str) -> Decimal:
        """Commission percentage for *key*; implementations fall back to a default."""


class LocationStore(ABC):
    @abstractmethod
    async def record(self, driver_id: int, location: GeoLocation) -> bool:
        """Store *location* unless a newer one is already held. Returns True if applied."""

    @abstractmethod
    async def latest(self, driver_id: int) -> Optional[GeoLocation]: ...


class TripTrackRepository(ABC):
    """Per-trip breadcrumb trail of location fixes."""

    @abstractmethod
    async def active_trip_for_driver(self, driver_id: int) -> Optional[TrackedTrip]: ...

    @abstractmethod
    async def add_point(self, trip_id: int, location: GeoLocation) -> None: ...

    @abstractmethod
    async def points(
        self,
        trip_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Optional[list[GeoLocation]]:
        """Points ordered by client timestamp; ``None`` when the trip does not exist."""

    @abstractmethod
    async def mark_near_destination(self, trip_id: int) -> bool:
        """Flag the trip as near its destination; True only for the first call."""
