"""
Domain entities and value objects.

Aggregates are plain, fully materialised dataclasses.  They are loaded and
saved through the unit of work (see ``ports.py``) and only the trip
coordinator mutates ``status``, ``is_available`` or creates a ``Payment``.
"""

from __future__ import annotations

import copy
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from .distance import haversine_km
from .enums import (
    TERMINAL_STATUSES,
    ActorRole,
    CargoStatus,
    PaymentStatus,
    TripStatus,
)
from .result import Failure

MINOR_UNIT = Decimal("0.01")
COORDINATE_TOLERANCE = 0.0001  # degrees


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_trip_number(now: Optional[datetime] = None) -> str:
    """``TRP`` + UTC date + six random hex digits, e.g. ``TRP20260301A1B2C3``."""
    now = now or utcnow()
    return f"TRP{now:%Y%m%d}{secrets.token_hex(3).upper()}"


class CurrencyMismatchError(ValueError):
    """Raised when Money values of different currencies are combined."""


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Money:
    amount: Decimal
    currency: str

    def __post_init__(self) -> None:
        amount = (
            self.amount
            if isinstance(self.amount, Decimal)
            else Decimal(str(self.amount))
        )
        if amount < 0:
            raise ValueError("Amount cannot be negative")
        if not self.currency or not self.currency.strip():
            raise ValueError("Currency cannot be empty")
        object.__setattr__(self, "amount", amount)
        object.__setattr__(self, "currency", self.currency.strip().upper())

    @classmethod
    def zero(cls, currency: str) -> "Money":
        return cls(Decimal("0"), currency)

    def _check_currency(self, other: "Money") -> None:
        if self.currency != other.currency:
            raise CurrencyMismatchError(
                f"Cannot combine {self.currency} with {other.currency}"
            )

    def __add__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(self.amount - other.amount, self.currency)

    def multiply(self, factor: Decimal) -> "Money":
        return Money(self.amount * Decimal(str(factor)), self.currency)

    def rounded(self) -> "Money":
        """Round half-up to the currency's minor unit (2 places)."""
        return Money(
            self.amount.quantize(MINOR_UNIT, rounding=ROUND_HALF_UP), self.currency
        )

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"


@dataclass(frozen=True, eq=False)
class GeoLocation:
    latitude: float
    longitude: float
    timestamp: datetime = field(default_factory=utcnow)
    accuracy: Optional[float] = None  # metres
    speed: Optional[float] = None  # km/h
    heading: Optional[float] = None  # degrees

    def __post_init__(self) -> None:
        if not -90 <= self.latitude <= 90:
            raise ValueError("Latitude must be between -90 and 90")
        if not -180 <= self.longitude <= 180:
            raise ValueError("Longitude must be between -180 and 180")
        if self.accuracy is not None and self.accuracy < 0:
            raise ValueError("Accuracy cannot be negative")
        if self.speed is not None and self.speed < 0:
            raise ValueError("Speed cannot be negative")
        if self.heading is not None and not 0 <= self.heading < 360:
            raise ValueError("Heading must be in [0, 360)")
        if self.timestamp.tzinfo is None:
            object.__setattr__(self, "timestamp", self.timestamp.replace(tzinfo=timezone.utc))

    # Proximity equality is not transitive, so instances are unhashable.
    __hash__ = None  # type: ignore[assignment]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GeoLocation):
            return NotImplemented
        return (
            abs(self.latitude - other.latitude) < COORDINATE_TOLERANCE
            and abs(self.longitude - other.longitude) < COORDINATE_TOLERANCE
        )

    def distance_to(self, other: "GeoLocation") -> float:
        return haversine_km(
            self.latitude, self.longitude, other.latitude, other.longitude
        )


@dataclass(frozen=True)
class Actor:
    id: int
    role: ActorRole


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Trip:
    id: int
    cargo_id: int
    agreed_price: Money
    driver_id: Optional[int] = None
    status: TripStatus = TripStatus.REQUESTED
    actual_price: Optional[Money] = None
    accepted_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    trip_number: Optional[str] = None
    waybill_number: Optional[str] = None
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def final_price(self) -> Money:
        return self.actual_price if self.actual_price is not None else self.agreed_price

    def set_actual_price(self, price: Money) -> None:
        if price.currency != self.agreed_price.currency:
            raise CurrencyMismatchError(
                f"Actual price currency {price.currency} differs from "
                f"agreed currency {self.agreed_price.currency}"
            )
        self.actual_price = price

    def add_notes(self, notes: str) -> None:
        self.notes = f"{self.notes}\n{notes}" if self.notes else notes

    def elapsed(self, now: datetime) -> Optional[timedelta]:
        """Time since the cargo was picked up, frozen once the trip closes."""
        start = self.picked_up_at or self.started_at
        if start is None:
            return None
        end = self.completed_at or self.cancelled_at or now
        return max(end - start, timedelta(0))


@dataclass
class Cargo:
    id: int
    owner_id: int
    pickup: GeoLocation
    delivery: GeoLocation
    status: CargoStatus = CargoStatus.PENDING
    description: str = ""

    @property
    def route_distance_km(self) -> float:
        return self.pickup.distance_to(self.delivery)


@dataclass
class Driver:
    id: int
    is_available: bool = True
    current_location: Optional[GeoLocation] = None


@dataclass
class Payment:
    trip_id: int
    payer_id: int
    payee_id: int
    amount: Money
    commission_amount: Money
    net_amount: Money
    status: PaymentStatus = PaymentStatus.PENDING
    id: Optional[int] = None
    created_at: Optional[datetime] = None


# ── Aggregates & views ────────────────────────────────────────────────


@dataclass
class TripAggregate:
    trip: Trip
    cargo: Cargo
    driver: Optional[Driver] = None


@dataclass(frozen=True)
class TransitionPayload:
    reason: Optional[str] = None
    notes: Optional[str] = None
    actual_price: Optional[Money] = None
    location: Optional[GeoLocation] = None
    waybill_number: Optional[str] = None


@dataclass(frozen=True)
class TripSnapshot:
    trip: Trip
    cargo: Cargo
    driver: Optional[Driver] = None
    payment: Optional[Payment] = None

    @classmethod
    def capture(
        cls, aggregate: TripAggregate, payment: Optional[Payment] = None
    ) -> "TripSnapshot":
        """Detach a copy so later mutations never leak into the caller's view."""
        return cls(
            trip=copy.deepcopy(aggregate.trip),
            cargo=copy.deepcopy(aggregate.cargo),
            driver=copy.deepcopy(aggregate.driver),
            payment=copy.deepcopy(payment),
        )


@dataclass(frozen=True)
class TripProgress:
    trip_id: int
    status: TripStatus
    percent: float
    total_distance_km: float
    remaining_distance_km: float
    eta_minutes: Optional[float] = None
    eta_error: Optional[Failure] = None
    elapsed_minutes: Optional[float] = None


@dataclass(frozen=True)
class TripTrack:
    """Breadcrumb trail of a trip, ordered by client timestamp."""

    trip_id: int
    points: list[GeoLocation]
    travelled_km: float
