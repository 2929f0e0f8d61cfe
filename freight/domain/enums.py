"""Domain enumerations."""

import enum


class TripStatus(str, enum.Enum):
    REQUESTED = "REQUESTED"
    ACCEPTED = "ACCEPTED"
    PICKUP_CONFIRMED = "PICKUP_CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    DELIVERY_CONFIRMED = "DELIVERY_CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED_BY_DRIVER = "CANCELLED_BY_DRIVER"
    CANCELLED_BY_CARGO_OWNER = "CANCELLED_BY_CARGO_OWNER"
    REJECTED = "REJECTED"


TERMINAL_STATUSES: frozenset[TripStatus] = frozenset(
    {
        TripStatus.COMPLETED,
        TripStatus.CANCELLED_BY_DRIVER,
        TripStatus.CANCELLED_BY_CARGO_OWNER,
        TripStatus.REJECTED,
    }
)

CANCELLED_STATUSES: frozenset[TripStatus] = frozenset(
    {TripStatus.CANCELLED_BY_DRIVER, TripStatus.CANCELLED_BY_CARGO_OWNER}
)

# Cargo is on board; location fixes belong to the trip.
EN_ROUTE_STATUSES: frozenset[TripStatus] = frozenset(
    {TripStatus.PICKUP_CONFIRMED, TripStatus.IN_PROGRESS}
)


class CargoStatus(str, enum.Enum):
    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    PICKED_UP = "PICKED_UP"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    REFUNDED = "REFUNDED"


class ActorRole(str, enum.Enum):
    DRIVER = "DRIVER"
    CARGO_OWNER = "CARGO_OWNER"
    ADMINISTRATOR = "ADMINISTRATOR"
