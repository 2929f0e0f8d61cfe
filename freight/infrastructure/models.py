"""
SQLAlchemy ORM models  (maps to PostgreSQL + PostGIS).

Tables
------
* ``users``                 -- actors (drivers, cargo owners, administrators)
* ``drivers``               -- driver profile + availability, keyed by user id
* ``cargo_requests``        -- shipments with pickup / delivery points
* ``trips``                 -- one cargo movement, optimistic ``version``
* ``payments``              -- settlement record, at most one per trip
* ``trip_tracking_points``  -- breadcrumb trail of en-route location fixes
* ``system_configurations`` -- key/value settings (commission rate, ...)

Indexes
-------
* **GIST** on geometry columns (pickup / delivery / driver location).
* **B-Tree** on status columns and foreign keys.
* **UNIQUE** on ``payments.trip_id`` backs the one-payment-per-trip rule.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from geoalchemy2 import Geometry

from .database import Base
from freight.domain.enums import ActorRole, CargoStatus, PaymentStatus, TripStatus

MONEY = Numeric(18, 2)


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    role = Column(Enum(ActorRole), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_users_role", "role"),)


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    is_available = Column(Boolean, default=True, nullable=False)

    # Last known fix; the live value is kept in Redis.
    current_lat = Column(Float, nullable=True)
    current_lng = Column(Float, nullable=True)
    current_speed = Column(Float, nullable=True)
    current_heading = Column(Float, nullable=True)
    location_recorded_at = Column(DateTime(timezone=True), nullable=True)
    current_location = Column(Geometry("POINT", srid=4326), nullable=True)

    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_drivers_location", "current_location", postgresql_using="gist"),
        Index("idx_drivers_available", "is_available"),
    )


class CargoRequestModel(Base):
    __tablename__ = "cargo_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    description = Column(String(255), nullable=False, default="")

    pickup_point = Column(Geometry("POINT", srid=4326), nullable=True)
    delivery_point = Column(Geometry("POINT", srid=4326), nullable=True)

    # Plain floats for fast reads (avoids ST_X / ST_Y)
    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    delivery_lat = Column(Float, nullable=False)
    delivery_lng = Column(Float, nullable=False)

    status = Column(Enum(CargoStatus), default=CargoStatus.PENDING, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_cargo_pickup", "pickup_point", postgresql_using="gist"),
        Index("idx_cargo_delivery", "delivery_point", postgresql_using="gist"),
        Index("idx_cargo_status", "status"),
        Index("idx_cargo_owner", "owner_id"),
    )


class TripModel(Base):
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_number = Column(String(32), nullable=True, unique=True)
    cargo_id = Column(Integer, ForeignKey("cargo_requests.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=True)
    status = Column(Enum(TripStatus), default=TripStatus.REQUESTED, nullable=False)

    currency = Column(String(3), nullable=False)
    agreed_amount = Column(MONEY, nullable=False)
    actual_amount = Column(MONEY, nullable=True)

    accepted_at = Column(DateTime(timezone=True), nullable=True)
    picked_up_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    notes = Column(Text, nullable=True)
    cancellation_reason = Column(String(500), nullable=True)
    waybill_number = Column(String(64), nullable=True)
    # Set once, outside the versioned transition path
    near_destination_notified_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # UPDATE ... WHERE version = :loaded; a stale row raises StaleDataError
    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_trips_status", "status"),
        Index("idx_trips_cargo", "cargo_id"),
        Index("idx_trips_driver", "driver_id"),
    )


class PaymentModel(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=False)
    payer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    payee_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    currency = Column(String(3), nullable=False)
    amount = Column(MONEY, nullable=False)
    commission_amount = Column(MONEY, nullable=False)
    net_amount = Column(MONEY, nullable=False)
    status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("trip_id", name="uq_payments_trip"),
        Index("idx_payments_payer", "payer_id"),
        Index("idx_payments_payee", "payee_id"),
    )


class SystemConfigurationModel(Base):
    __tablename__ = "system_configurations"

    key = Column(String(120), primary_key=True)
    value = Column(String(255), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class TripTrackingPointModel(Base):
    __tablename__ = "trip_tracking_points"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=False)
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    point = Column(Geometry("POINT", srid=4326), nullable=True)
    accuracy = Column(Float, nullable=True)
    speed = Column(Float, nullable=True)
    heading = Column(Float, nullable=True)
    recorded_at = Column(DateTime(timezone=True), nullable=False)  # client time
    received_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_tracking_trip_time", "trip_id", "recorded_at"),)
