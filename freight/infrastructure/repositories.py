"""
Repository Pattern + Unit of Work over SQLAlchemy.

Repositories receive an ``AsyncSession`` and expose domain-relevant queries
only.  ``SqlAlchemyUnitOfWork`` composes them into the transactional
boundary the trip coordinator works against: it loads fully materialised
dataclass aggregates (no lazy loading during business logic) and writes
every mutation of a transition in one flush.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from geoalchemy2.functions import ST_MakePoint, ST_SetSRID
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from .database import async_session_factory
from .models import (
    CargoRequestModel,
    DriverModel,
    PaymentModel,
    SystemConfigurationModel,
    TripModel,
    TripTrackingPointModel,
    UserModel,
)
from freight.domain.entities import (
    Actor,
    Cargo,
    Driver,
    GeoLocation,
    Money,
    Payment,
    Trip,
    TripAggregate,
    utcnow,
)
from freight.domain.enums import EN_ROUTE_STATUSES
from freight.domain.ports import (
    AggregateMutations,
    CommissionConfigProvider,
    TrackedTrip,
    TripTrackRepository,
    UnitOfWork,
)
from freight.domain.result import ErrorKind, Result

logger = logging.getLogger(__name__)


# ── Row <-> domain mapping ────────────────────────────────────────────


def trip_from_row(row: TripModel) -> Trip:
    actual = (
        Money(row.actual_amount, row.currency) if row.actual_amount is not None else None
    )
    return Trip(
        id=row.id,
        cargo_id=row.cargo_id,
        driver_id=row.driver_id,
        status=row.status,
        agreed_price=Money(row.agreed_amount, row.currency),
        actual_price=actual,
        accepted_at=row.accepted_at,
        picked_up_at=row.picked_up_at,
        started_at=row.started_at,
        delivered_at=row.delivered_at,
        completed_at=row.completed_at,
        cancelled_at=row.cancelled_at,
        notes=row.notes,
        cancellation_reason=row.cancellation_reason,
        trip_number=row.trip_number,
        waybill_number=row.waybill_number,
        version=row.version,
    )


def cargo_from_row(row: CargoRequestModel) -> Cargo:
    return Cargo(
        id=row.id,
        owner_id=row.owner_id,
        pickup=GeoLocation(row.pickup_lat, row.pickup_lng),
        delivery=GeoLocation(row.delivery_lat, row.delivery_lng),
        status=row.status,
        description=row.description or "",
    )


def driver_from_row(row: DriverModel) -> Driver:
    location = None
    if row.current_lat is not None and row.current_lng is not None:
        location = GeoLocation(
            row.current_lat,
            row.current_lng,
            timestamp=row.location_recorded_at or utcnow(),
            speed=row.current_speed,
            heading=row.current_heading,
        )
    return Driver(
        id=row.id, is_available=bool(row.is_available), current_location=location
    )


def apply_trip(row: TripModel, trip: Trip) -> None:
    """Copy mutable trip fields onto *row*; ``version`` is left to the mapper."""
    row.driver_id = trip.driver_id
    row.status = trip.status
    row.actual_amount = trip.actual_price.amount if trip.actual_price else None
    row.accepted_at = trip.accepted_at
    row.picked_up_at = trip.picked_up_at
    row.started_at = trip.started_at
    row.delivered_at = trip.delivered_at
    row.completed_at = trip.completed_at
    row.cancelled_at = trip.cancelled_at
    row.notes = trip.notes
    row.cancellation_reason = trip.cancellation_reason
    row.waybill_number = trip.waybill_number


def payment_to_row(payment: Payment) -> PaymentModel:
    return PaymentModel(
        trip_id=payment.trip_id,
        payer_id=payment.payer_id,
        payee_id=payment.payee_id,
        currency=payment.amount.currency,
        amount=payment.amount.amount,
        commission_amount=payment.commission_amount.amount,
        net_amount=payment.net_amount.amount,
        status=payment.status,
        created_at=payment.created_at,
    )


def tracking_point_to_row(trip_id: int, location: GeoLocation) -> TripTrackingPointModel:
    return TripTrackingPointModel(
        trip_id=trip_id,
        lat=location.latitude,
        lng=location.longitude,
        point=ST_SetSRID(ST_MakePoint(location.longitude, location.latitude), 4326),
        accuracy=location.accuracy,
        speed=location.speed,
        heading=location.heading,
        recorded_at=location.timestamp,
    )


def location_from_point_row(row: TripTrackingPointModel) -> GeoLocation:
    return GeoLocation(
        row.lat,
        row.lng,
        timestamp=row.recorded_at,
        accuracy=row.accuracy,
        speed=row.speed,
        heading=row.heading,
    )


# ── Repositories ──────────────────────────────────────────────────────


class TripRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(
        self, trip_id: int, *, for_update: bool = False
    ) -> Optional[TripModel]:
        """``for_update`` takes a row lock scoped to the current transaction."""
        query = select(TripModel).where(TripModel.id == trip_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()


class CargoRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(
        self, cargo_id: int, *, for_update: bool = False
    ) -> Optional[CargoRequestModel]:
        query = select(CargoRequestModel).where(CargoRequestModel.id == cargo_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()


class DriverRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(
        self, driver_id: int, *, for_update: bool = False
    ) -> Optional[DriverModel]:
        query = select(DriverModel).where(DriverModel.id == driver_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()


class PaymentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def exists_for_trip(self, trip_id: int) -> bool:
        result = await self.session.execute(
            select(func.count())
            .select_from(PaymentModel)
            .where(PaymentModel.trip_id == trip_id)
        )
        return (result.scalar() or 0) > 0

    def add(self, payment: PaymentModel) -> None:
        self.session.add(payment)


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: int) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id)


class SystemConfigurationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_value(self, key: str) -> Optional[str]:
        row = await self.session.get(SystemConfigurationModel, key)
        return row.value if row is not None else None


# ── Unit of work ──────────────────────────────────────────────────────


class SqlAlchemyUnitOfWork(UnitOfWork):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
    ):
        self._session_factory = session_factory
        self.session: Optional[AsyncSession] = None
        self._trips: dict[int, TripModel] = {}
        self._cargos: dict[int, CargoRequestModel] = {}
        self._drivers: dict[int, DriverModel] = {}

    async def begin(self) -> None:
        self.session = self._session_factory()
        self.trips = TripRepository(self.session)
        self.cargos = CargoRepository(self.session)
        self.drivers = DriverRepository(self.session)
        self.payments = PaymentRepository(self.session)
        self.users = UserRepository(self.session)

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        if self.session is not None:
            await self.session.rollback()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            if self.session is not None:
                await self.session.close()

    async def load(
        self, trip_id: int, *, for_update: bool = False
    ) -> Optional[TripAggregate]:
        trip_row = await self.trips.get_by_id(trip_id, for_update=for_update)
        if trip_row is None:
            return None
        cargo_row = await self.cargos.get_by_id(trip_row.cargo_id, for_update=for_update)
        if cargo_row is None:
            logger.error("Trip %s references missing cargo %s", trip_id, trip_row.cargo_id)
            return None
        self._trips[trip_row.id] = trip_row
        self._cargos[cargo_row.id] = cargo_row

        driver = None
        if trip_row.driver_id is not None:
            driver_row = await self.drivers.get_by_id(
                trip_row.driver_id, for_update=for_update
            )
            if driver_row is not None:
                self._drivers[driver_row.id] = driver_row
                driver = driver_from_row(driver_row)

        return TripAggregate(
            trip=trip_from_row(trip_row), cargo=cargo_from_row(cargo_row), driver=driver
        )

    async def load_driver(self, driver_id: int) -> Optional[Driver]:
        row = await self.drivers.get_by_id(driver_id, for_update=True)
        if row is None:
            return None
        self._drivers[row.id] = row
        return driver_from_row(row)

    async def get_actor(self, actor_id: int) -> Optional[Actor]:
        row = await self.users.get_by_id(actor_id)
        return Actor(id=row.id, role=row.role) if row is not None else None

    async def payment_exists(self, trip_id: int) -> bool:
        return await self.payments.exists_for_trip(trip_id)

    async def save_atomically(self, mutations: AggregateMutations) -> Result[None]:
        trip = mutations.trip
        trip_row = self._trips.get(trip.id)
        if trip_row is None or trip_row.version != mutations.expected_version:
            return Result.fail(
                ErrorKind.CONCURRENCY_CONFLICT, f"Trip {trip.id} changed concurrently"
            )

        apply_trip(trip_row, trip)
        self._cargos[mutations.cargo.id].status = mutations.cargo.status
        if mutations.driver is not None and mutations.driver.id in self._drivers:
            self._drivers[mutations.driver.id].is_available = mutations.driver.is_available

        payment_row = None
        if mutations.payment is not None:
            payment_row = payment_to_row(mutations.payment)
            self.payments.add(payment_row)

        try:
            await self.session.flush()
        except StaleDataError:
            return Result.fail(
                ErrorKind.CONCURRENCY_CONFLICT, f"Trip {trip.id} changed concurrently"
            )
        except IntegrityError as exc:
            if payment_row is not None:
                return Result.fail(
                    ErrorKind.CONCURRENCY_CONFLICT,
                    f"Trip {trip.id} already has a payment",
                )
            logger.error("Integrity error saving trip %s: %s", trip.id, exc)
            return Result.fail(ErrorKind.PERSISTENCE_FAILURE, str(exc.orig))
        except SQLAlchemyError:
            logger.exception("Could not save trip %s", trip.id)
            return Result.fail(
                ErrorKind.PERSISTENCE_FAILURE, f"Could not save trip {trip.id}"
            )

        trip.version = trip_row.version
        if payment_row is not None:
            mutations.payment.id = payment_row.id
        return Result.success()


# ── Trip trail ────────────────────────────────────────────────────────


class SqlTripTrackRepository(TripTrackRepository):
    """Breadcrumb trail in ``trip_tracking_points``; one short session per call."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
    ):
        self._session_factory = session_factory

    async def active_trip_for_driver(self, driver_id: int) -> Optional[TrackedTrip]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(
                    TripModel.id,
                    CargoRequestModel.owner_id,
                    CargoRequestModel.delivery_lat,
                    CargoRequestModel.delivery_lng,
                )
                .join(CargoRequestModel, CargoRequestModel.id == TripModel.cargo_id)
                .where(
                    TripModel.driver_id == driver_id,
                    TripModel.status.in_(EN_ROUTE_STATUSES),
                )
                .order_by(TripModel.picked_up_at.desc())
                .limit(1)
            )
            row = result.first()
        if row is None:
            return None
        return TrackedTrip(
            trip_id=row.id,
            owner_id=row.owner_id,
            delivery=GeoLocation(row.delivery_lat, row.delivery_lng),
        )

    async def add_point(self, trip_id: int, location: GeoLocation) -> None:
        async with self._session_factory() as session:
            session.add(tracking_point_to_row(trip_id, location))
            await session.commit()

    async def points(
        self,
        trip_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Optional[list[GeoLocation]]:
        async with self._session_factory() as session:
            if await session.get(TripModel, trip_id) is None:
                return None
            query = select(TripTrackingPointModel).where(
                TripTrackingPointModel.trip_id == trip_id
            )
            if start is not None:
                query = query.where(TripTrackingPointModel.recorded_at >= start)
            if end is not None:
                query = query.where(TripTrackingPointModel.recorded_at <= end)
            result = await session.execute(
                query.order_by(
                    TripTrackingPointModel.recorded_at, TripTrackingPointModel.id
                )
            )
            return [location_from_point_row(row) for row in result.scalars()]

    async def mark_near_destination(self, trip_id: int) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                update(TripModel)
                .where(
                    TripModel.id == trip_id,
                    TripModel.near_destination_notified_at.is_(None),
                )
                .values(near_destination_notified_at=func.now())
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        return result.rowcount == 1


# ── Configuration ─────────────────────────────────────────────────────


class SqlCommissionConfigProvider(CommissionConfigProvider):
    """Reads commission percentages from ``system_configurations``."""

    def __init__(
        self,
        default_percent: Decimal,
        session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
    ):
        self.default_percent = Decimal(str(default_percent))
        self._session_factory = session_factory

    async def get_rate(self, key: str) -> Decimal:
        async with self._session_factory() as session:
            raw = await SystemConfigurationRepository(session).get_value(key)
        if raw is None:
            return self.default_percent
        try:
            rate = Decimal(raw)
        except InvalidOperation:
            logger.warning("Config %s=%r is not a number; using default", key, raw)
            return self.default_percent
        if not Decimal("0") <= rate <= Decimal("100"):
            logger.warning("Config %s=%s is outside [0, 100]; using default", key, rate)
            return self.default_percent
        return rate
