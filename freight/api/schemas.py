"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from freight.domain.entities import GeoLocation, TripProgress, TripSnapshot, TripTrack


# ── Requests ──────────────────────────────────────────────────────────


class LocationIn(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    timestamp: Optional[datetime] = Field(
        None, description="Client capture time; defaults to server time."
    )
    accuracy: Optional[float] = Field(None, ge=0)
    speed: Optional[float] = Field(None, ge=0)
    heading: Optional[float] = Field(None, ge=0, lt=360)

    @field_validator("timestamp")
    @classmethod
    def timestamp_as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Naive client times are taken to be UTC.
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def to_domain(self) -> GeoLocation:
        extra = {"timestamp": self.timestamp} if self.timestamp else {}
        return GeoLocation(
            latitude=self.latitude,
            longitude=self.longitude,
            accuracy=self.accuracy,
            speed=self.speed,
            heading=self.heading,
            **extra,
        )


class MoneyIn(BaseModel):
    amount: Decimal = Field(..., ge=0)
    currency: str = Field(..., min_length=3, max_length=3)


class TransitionRequest(BaseModel):
    actor_id: int
    target_status: str = Field(..., examples=["ACCEPTED"])
    reason: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = None
    actual_price: Optional[MoneyIn] = None
    location: Optional[LocationIn] = None
    waybill_number: Optional[str] = Field(
        None, max_length=64, description="Electronic waybill, recorded on completion."
    )


# ── Responses ─────────────────────────────────────────────────────────


class MoneyOut(BaseModel):
    amount: Decimal
    currency: str


class PaymentResponse(BaseModel):
    id: Optional[int] = None
    payer_id: int
    payee_id: int
    amount: MoneyOut
    commission_amount: MoneyOut
    net_amount: MoneyOut
    status: str


class TripResponse(BaseModel):
    id: int
    trip_number: Optional[str] = None
    cargo_id: int
    driver_id: Optional[int] = None
    status: str
    cargo_status: str
    agreed_price: MoneyOut
    actual_price: Optional[MoneyOut] = None
    accepted_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    notes: Optional[str] = None
    waybill_number: Optional[str] = None
    version: int
    payment: Optional[PaymentResponse] = None

    @classmethod
    def from_snapshot(cls, snapshot: TripSnapshot) -> "TripResponse":
        trip, payment = snapshot.trip, snapshot.payment
        return cls(
            id=trip.id,
            trip_number=trip.trip_number,
            cargo_id=trip.cargo_id,
            driver_id=trip.driver_id,
            status=trip.status.value,
            cargo_status=snapshot.cargo.status.value,
            agreed_price=MoneyOut(**vars(trip.agreed_price)),
            actual_price=MoneyOut(**vars(trip.actual_price)) if trip.actual_price else None,
            accepted_at=trip.accepted_at,
            picked_up_at=trip.picked_up_at,
            started_at=trip.started_at,
            delivered_at=trip.delivered_at,
            completed_at=trip.completed_at,
            cancelled_at=trip.cancelled_at,
            cancellation_reason=trip.cancellation_reason,
            notes=trip.notes,
            waybill_number=trip.waybill_number,
            version=trip.version,
            payment=(
                PaymentResponse(
                    id=payment.id,
                    payer_id=payment.payer_id,
                    payee_id=payment.payee_id,
                    amount=MoneyOut(**vars(payment.amount)),
                    commission_amount=MoneyOut(**vars(payment.commission_amount)),
                    net_amount=MoneyOut(**vars(payment.net_amount)),
                    status=payment.status.value,
                )
                if payment is not None
                else None
            ),
        )


class ProgressResponse(BaseModel):
    trip_id: int
    status: str
    percent: float
    total_distance_km: float
    remaining_distance_km: float
    eta_minutes: Optional[float] = None
    eta_error: Optional[str] = None
    elapsed_minutes: Optional[float] = None

    @classmethod
    def from_progress(cls, progress: TripProgress) -> "ProgressResponse":
        return cls(
            trip_id=progress.trip_id,
            status=progress.status.value,
            percent=round(progress.percent, 2),
            total_distance_km=round(progress.total_distance_km, 3),
            remaining_distance_km=round(progress.remaining_distance_km, 3),
            eta_minutes=progress.eta_minutes,
            eta_error=progress.eta_error.message if progress.eta_error else None,
            elapsed_minutes=(
                round(progress.elapsed_minutes, 1)
                if progress.elapsed_minutes is not None
                else None
            ),
        )


class TrackPointOut(BaseModel):
    latitude: float
    longitude: float
    timestamp: datetime
    speed: Optional[float] = None
    heading: Optional[float] = None


class TripTrackResponse(BaseModel):
    trip_id: int
    travelled_km: float
    points: list[TrackPointOut]

    @classmethod
    def from_track(cls, track: TripTrack) -> "TripTrackResponse":
        return cls(
            trip_id=track.trip_id,
            travelled_km=round(track.travelled_km, 3),
            points=[
                TrackPointOut(
                    latitude=p.latitude,
                    longitude=p.longitude,
                    timestamp=p.timestamp,
                    speed=p.speed,
                    heading=p.heading,
                )
                for p in track.points
            ],
        )


class LocationUpdateResponse(BaseModel):
    driver_id: int
    applied: bool


class ErrorResponse(BaseModel):
    error: str
    detail: str


class HealthResponse(BaseModel):
    status: str = "ok"
    dispatcher_running: bool = False
