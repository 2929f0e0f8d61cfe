"""
Shared test fixtures.

The coordinator is exercised against an in-memory unit of work so tests run
without Docker / PostgreSQL / Redis.  The fake mirrors the production
semantics that matter: a per-trip lock for ``load(for_update=True)``, an
optimistic ``version`` check and the one-payment-per-trip rule.  Writes are
buffered until ``commit`` so a rollback discards them.
"""

import asyncio
import copy
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import pytest
import pytest_asyncio

from freight.config import Settings
from freight.domain.entities import (
    Actor,
    Cargo,
    Driver,
    GeoLocation,
    Money,
    Payment,
    Trip,
    TripAggregate,
)
from freight.domain.enums import EN_ROUTE_STATUSES, ActorRole, TripStatus
from freight.domain.ports import (
    AggregateMutations,
    CommissionConfigProvider,
    LocationStore,
    Notification,
    NotificationDispatcher,
    RouteEstimator,
    RouteWeatherAdvisor,
    TrackedTrip,
    TripTrackRepository,
)
from freight.domain.ports import UnitOfWork
from freight.domain.result import ErrorKind, Result
from freight.domain.state_machine import cargo_status_for
from freight.services.coordinator import TripCoordinator
from freight.services.tracking import TrackingService
from freight.workers.dispatcher import BackgroundDispatcher

# Tehran sample route
PICKUP = (35.7000, 51.4200)
DELIVERY = (35.6892, 51.3890)

OWNER_ID = 1
DRIVER_ID = 2
OTHER_DRIVER_ID = 3
UNPROFILED_DRIVER_ID = 4
OTHER_OWNER_ID = 5
ADMIN_ID = 9


def at(minute: int) -> datetime:
    return datetime(2026, 3, 1, 8, minute, tzinfo=timezone.utc)


# ── In-memory persistence ─────────────────────────────────────────────


class InMemoryStore:
    def __init__(self):
        self.trips: dict[int, Trip] = {}
        self.cargos: dict[int, Cargo] = {}
        self.drivers: dict[int, Driver] = {}
        self.actors: dict[int, Actor] = {}
        self.payments: dict[int, Payment] = {}  # keyed by trip id
        self.locks: dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)
        self.fail_on_save = False
        self.commits = 0

    def add_actor(self, actor_id: int, role: ActorRole, *, profile: bool = True) -> None:
        self.actors[actor_id] = Actor(actor_id, role)
        if role is ActorRole.DRIVER and profile:
            self.drivers[actor_id] = Driver(id=actor_id)

    def add_trip(
        self,
        status: TripStatus = TripStatus.REQUESTED,
        *,
        driver_id: Optional[int] = None,
        price: str = "1000000",
        currency: str = "IRR",
        pickup: tuple[float, float] = PICKUP,
        delivery: tuple[float, float] = DELIVERY,
        owner_id: int = OWNER_ID,
    ) -> Trip:
        trip_id = len(self.trips) + 1
        cargo = Cargo(
            id=100 + trip_id,
            owner_id=owner_id,
            pickup=GeoLocation(*pickup),
            delivery=GeoLocation(*delivery),
            status=cargo_status_for(status),
            description=f"Load {trip_id}",
        )
        trip = Trip(
            id=trip_id,
            cargo_id=cargo.id,
            agreed_price=Money(Decimal(price), currency),
            driver_id=driver_id,
            status=status,
        )
        if driver_id is not None and status not in (
            TripStatus.REQUESTED,
            TripStatus.REJECTED,
        ):
            self.drivers[driver_id].is_available = False
        self.cargos[cargo.id] = cargo
        self.trips[trip_id] = trip
        return trip

    def cargo_of(self, trip_id: int) -> Cargo:
        return self.cargos[self.trips[trip_id].cargo_id]


class InMemoryUnitOfWork(UnitOfWork):
    def __init__(self, store: InMemoryStore, locking: bool = True):
        self.store = store
        self.locking = locking
        self._held: list[asyncio.Lock] = []
        self._pending: Optional[AggregateMutations] = None

    async def begin(self) -> None:
        self._pending = None

    async def commit(self) -> None:
        pending, self._pending = self._pending, None
        if pending is not None:
            self.store.trips[pending.trip.id] = pending.trip
            self.store.cargos[pending.cargo.id] = pending.cargo
            if pending.driver is not None:
                self.store.drivers[pending.driver.id] = pending.driver
            if pending.payment is not None:
                self.store.payments[pending.trip.id] = pending.payment
        self.store.commits += 1
        self._release()

    async def rollback(self) -> None:
        self._pending = None
        self._release()

    def _release(self) -> None:
        while self._held:
            self._held.pop().release()

    async def load(self, trip_id, *, for_update=False):
        if trip_id not in self.store.trips:
            return None
        if for_update and self.locking:
            lock = self.store.locks[trip_id]
            await lock.acquire()
            self._held.append(lock)
        # Give concurrent callers a chance to interleave.
        await asyncio.sleep(0)
        trip = copy.deepcopy(self.store.trips[trip_id])
        cargo = copy.deepcopy(self.store.cargos[trip.cargo_id])
        driver = None
        if trip.driver_id is not None:
            driver = copy.deepcopy(self.store.drivers.get(trip.driver_id))
        return TripAggregate(trip=trip, cargo=cargo, driver=driver)

    async def load_driver(self, driver_id):
        return copy.deepcopy(self.store.drivers.get(driver_id))

    async def get_actor(self, actor_id):
        return self.store.actors.get(actor_id)

    async def payment_exists(self, trip_id):
        return trip_id in self.store.payments

    async def save_atomically(self, mutations):
        if self.store.fail_on_save:
            raise RuntimeError("database unavailable")
        current = self.store.trips[mutations.trip.id]
        if current.version != mutations.expected_version:
            return Result.fail(ErrorKind.CONCURRENCY_CONFLICT, "stale trip version")
        if mutations.payment is not None and mutations.trip.id in self.store.payments:
            return Result.fail(ErrorKind.CONCURRENCY_CONFLICT, "payment already exists")
        mutations.trip.version += 1
        if mutations.payment is not None:
            mutations.payment.id = len(self.store.payments) + 1
        self._pending = copy.deepcopy(mutations)
        return Result.success()


# ── Collaborator fakes ────────────────────────────────────────────────


class RecordingNotifier(NotificationDispatcher):
    def __init__(self, fail_times: int = 0):
        self.fail_times = fail_times
        self.calls = 0
        self.sent: list[Notification] = []

    async def notify(self, user_id, title, message, metadata=None):
        self.calls += 1
        if self.calls <= self.fail_times:
            raise ConnectionError("push gateway unavailable")
        self.sent.append(Notification(user_id, title, message, metadata or {}))

    def titles_for(self, user_id: int) -> list[str]:
        return [n.title for n in self.sent if n.user_id == user_id]


class StubAdvisor(RouteWeatherAdvisor):
    def __init__(self, advisory=None, delay: float = 0.0):
        self.advisory = advisory
        self.delay = delay
        self.calls: list[tuple[float, float]] = []

    async def get_advisory(self, latitude, longitude):
        self.calls.append((latitude, longitude))
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.advisory


class StaticCommission(CommissionConfigProvider):
    def __init__(self, rate: str = "5"):
        self.rate = Decimal(rate)
        self.keys: list[str] = []

    async def get_rate(self, key):
        self.keys.append(key)
        return self.rate


class StubRouteEstimator(RouteEstimator):
    def __init__(self, estimate=None, error: Optional[Exception] = None, delay: float = 0.0):
        self.estimate_value = estimate
        self.error = error
        self.delay = delay

    async def estimate(self, origin, destination):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.estimate_value


class InMemoryLocationStore(LocationStore):
    def __init__(self):
        self.locations: dict[int, GeoLocation] = {}
        self.broken = False

    async def record(self, driver_id, location):
        if self.broken:
            raise ConnectionError("redis down")
        current = self.locations.get(driver_id)
        if current is not None and current.timestamp >= location.timestamp:
            return False
        self.locations[driver_id] = location
        return True

    async def latest(self, driver_id):
        if self.broken:
            raise ConnectionError("redis down")
        return self.locations.get(driver_id)



class InMemoryTripTrackRepository(TripTrackRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store
        self.trails: dict[int, list[GeoLocation]] = defaultdict(list)
        self.near: set[int] = set()
        self.broken = False

    async def active_trip_for_driver(self, driver_id):
        if self.broken:
            raise ConnectionError("database unavailable")
        for trip in self.store.trips.values():
            if trip.driver_id == driver_id and trip.status in EN_ROUTE_STATUSES:
                cargo = self.store.cargos[trip.cargo_id]
                return TrackedTrip(trip.id, cargo.owner_id, cargo.delivery)
        return None

    async def add_point(self, trip_id, location):
        self.trails[trip_id].append(location)
        self.trails[trip_id].sort(key=lambda p: p.timestamp)

    async def points(self, trip_id, start=None, end=None):
        if self.broken:
            raise ConnectionError("database unavailable")
        if trip_id not in self.store.trips:
            return None
        return [
            p
            for p in self.trails.get(trip_id, [])
            if (start is None or p.timestamp >= start) and (end is None or p.timestamp <= end)
        ]

    async def mark_near_destination(self, trip_id):
        if trip_id in self.near:
            return False
        self.near.add(trip_id)
        return True


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
def store() -> InMemoryStore:
    s = InMemoryStore()
    s.add_actor(OWNER_ID, ActorRole.CARGO_OWNER)
    s.add_actor(OTHER_OWNER_ID, ActorRole.CARGO_OWNER)
    s.add_actor(DRIVER_ID, ActorRole.DRIVER)
    s.add_actor(OTHER_DRIVER_ID, ActorRole.DRIVER)
    s.add_actor(UNPROFILED_DRIVER_ID, ActorRole.DRIVER, profile=False)
    s.add_actor(ADMIN_ID, ActorRole.ADMINISTRATOR)
    return s


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        external_timeout_seconds=0.05,
        dispatch_max_retries=2,
        dispatch_backoff_seconds=0.0,
        weather_alerts_enabled=True,
    )


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def advisor() -> StubAdvisor:
    return StubAdvisor()


@pytest.fixture
def commission() -> StaticCommission:
    return StaticCommission("5")


@pytest.fixture
def location_store() -> InMemoryLocationStore:
    return InMemoryLocationStore()


@pytest_asyncio.fixture
async def dispatcher(test_settings):
    d = BackgroundDispatcher(
        max_retries=test_settings.dispatch_max_retries,
        backoff_seconds=test_settings.dispatch_backoff_seconds,
        workers=2,
    )
    await d.start()
    yield d
    await d.stop()


@pytest.fixture
def make_coordinator(
    store, notifier, advisor, commission, dispatcher, test_settings, location_store
):
    def _make(locking: bool = True, **overrides) -> TripCoordinator:
        kwargs = dict(
            uow_factory=lambda: InMemoryUnitOfWork(store, locking=locking),
            notifier=notifier,
            advisor=advisor,
            commission_config=commission,
            dispatcher=dispatcher,
            settings=test_settings,
            location_store=location_store,
        )
        kwargs.update(overrides)
        return TripCoordinator(**kwargs)

    return _make


@pytest.fixture
def coordinator(make_coordinator) -> TripCoordinator:
    return make_coordinator()


@pytest.fixture
def trip_tracks(store) -> InMemoryTripTrackRepository:
    return InMemoryTripTrackRepository(store)


@pytest.fixture
def tracking_service(location_store, trip_tracks, notifier, dispatcher) -> TrackingService:
    return TrackingService(
        location_store, trips=trip_tracks, notifier=notifier, dispatcher=dispatcher
    )
