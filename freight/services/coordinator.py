"""
Trip Coordinator
================

The single writer of trip, cargo, driver-availability and payment state.

Per transition
--------------
1. Load the trip aggregate (trip + cargo + driver) inside a unit of work,
   locking the trip row.
2. Resolve the actor and check they are a party to the trip.
3. Ask the state machine whether the edge is legal for the actor's role.
4. Apply side effects to the loaded aggregate (timestamps, cargo status,
   driver availability, settlement + payment on completion).
5. Save everything atomically with an optimistic version check; any
   failure rolls the whole unit back.
6. After commit, hand notifications and the weather advisory to the
   background dispatcher.  Their failures are logged, never returned.

Concurrency safety
------------------
Two requests for the same trip race on the trip's ``version``: the loser
gets ``CONCURRENCY_CONFLICT`` (or ``INVALID_TRANSITION`` if it loaded the
trip after the winner committed).  The payment existence check plus the
unique ``payments.trip_id`` constraint keep it at one payment per trip.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from functools import partial
from typing import Callable, Optional, Union

from freight.config import Settings
from freight.domain import state_machine
from freight.domain.distance import (
    distance_km,
    estimated_remaining_minutes,
    progress_percent,
)
from freight.domain.entities import (
    CurrencyMismatchError,
    Driver,
    GeoLocation,
    Payment,
    TransitionPayload,
    TripAggregate,
    TripProgress,
    TripSnapshot,
    utcnow,
)
from freight.domain.enums import (
    CANCELLED_STATUSES,
    EN_ROUTE_STATUSES,
    ActorRole,
    CargoStatus,
    TripStatus,
)
from freight.domain.ports import (
    AggregateMutations,
    CommissionConfigProvider,
    LocationStore,
    Notification,
    NotificationDispatcher,
    RouteEstimate,
    RouteEstimator,
    RouteWeatherAdvisor,
    UnitOfWork,
)
from freight.domain.result import ErrorKind, Failure, Result
from freight.domain.settlement import settle
from freight.workers.dispatcher import BackgroundDispatcher

logger = logging.getLogger(__name__)

_OPEN_TRIP_TARGETS = {TripStatus.ACCEPTED, TripStatus.REJECTED}
_ARRIVED = {TripStatus.DELIVERY_CONFIRMED, TripStatus.COMPLETED}

# status -> (title, message) sent to the cargo owner after commit
_OWNER_MESSAGES: dict[TripStatus, tuple[str, str]] = {
    TripStatus.ACCEPTED: (
        "Cargo accepted",
        "Your cargo {label} has been accepted by a driver.",
    ),
    TripStatus.REJECTED: (
        "Trip request rejected",
        "A driver declined the trip for cargo {label}.",
    ),
    TripStatus.PICKUP_CONFIRMED: (
        "Cargo picked up",
        "Your cargo {label} has been picked up by the driver.",
    ),
    TripStatus.IN_PROGRESS: ("Cargo in transit", "Your cargo {label} is on its way."),
    TripStatus.DELIVERY_CONFIRMED: (
        "Cargo delivered",
        "Your cargo {label} has been delivered.",
    ),
    TripStatus.COMPLETED: ("Trip completed", "The trip for cargo {label} is complete."),
}


class TripCoordinator:
    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        notifier: NotificationDispatcher,
        advisor: RouteWeatherAdvisor,
        commission_config: CommissionConfigProvider,
        dispatcher: BackgroundDispatcher,
        settings: Settings,
        route_estimator: Optional[RouteEstimator] = None,
        location_store: Optional[LocationStore] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._uow_factory = uow_factory
        self._notifier = notifier
        self._advisor = advisor
        self._commission_config = commission_config
        self._dispatcher = dispatcher
        self._settings = settings
        self._route_estimator = route_estimator
        self._location_store = location_store
        self._clock = clock

    # ── Public API ────────────────────────────────────────────────────

    async def request_transition(
        self,
        trip_id: int,
        actor_id: int,
        target_state: Union[TripStatus, str],
        payload: Optional[TransitionPayload] = None,
    ) -> Result[TripSnapshot]:
        """Move *trip_id* to *target_state* on behalf of *actor_id*."""
        try:
            target = TripStatus(target_state)
        except ValueError:
            return Result.fail(
                ErrorKind.INVALID_TRANSITION, f"Unknown trip status {target_state!r}"
            )
        payload = payload or TransitionPayload()

        try:
            result = await self._transition(trip_id, actor_id, target, payload)
        except Exception:
            logger.exception(
                "Transition of trip %s to %s rolled back", trip_id, target.value
            )
            return Result.fail(
                ErrorKind.PERSISTENCE_FAILURE,
                f"Could not move trip {trip_id} to {target.value}",
            )

        if result.ok:
            self._after_commit(result.value, payload)
        else:
            logger.info(
                "Trip %s -> %s refused for actor %s: %s (%s)",
                trip_id,
                target.value,
                actor_id,
                result.error.kind.value,
                result.error.message,
            )
        return result

    async def get_progress(self, trip_id: int) -> Result[TripProgress]:
        """Read-only progress view: percent complete, remaining km, ETA and elapsed time."""
        try:
            async with self._uow_factory() as uow:
                aggregate = await uow.load(trip_id)
        except Exception:
            logger.exception("Could not load trip %s for progress", trip_id)
            return Result.fail(
                ErrorKind.PERSISTENCE_FAILURE, f"Could not load trip {trip_id}"
            )
        if aggregate is None:
            return Result.fail(ErrorKind.NOT_FOUND, f"Trip {trip_id} not found")

        trip, cargo = aggregate.trip, aggregate.cargo
        total = cargo.route_distance_km

        if trip.status in _ARRIVED:
            remaining = 0.0
        elif trip.status in EN_ROUTE_STATUSES:
            location = await self._latest_location(aggregate.driver)
            remaining = (
                distance_km(location, cargo.delivery) if location is not None else total
            )
        else:
            remaining = total

        percent = 0.0 if trip.status in CANCELLED_STATUSES else progress_percent(
            total, remaining
        )
        elapsed = trip.elapsed(self._clock())

        eta: Optional[float] = None
        eta_error: Optional[Failure] = None
        if remaining <= 0:
            eta = 0.0
        elif not trip.is_terminal:
            estimate, eta_error = await self._route_estimate(trip.id, cargo.pickup, cargo.delivery)
            eta = estimated_remaining_minutes(remaining, estimate)

        return Result.success(
            TripProgress(
                trip_id=trip.id,
                status=trip.status,
                percent=percent,
                total_distance_km=total,
                remaining_distance_km=remaining,
                eta_minutes=eta,
                eta_error=eta_error,
                elapsed_minutes=(
                    elapsed.total_seconds() / 60 if elapsed is not None else None
                ),
            )
        )

    # ── Transition internals ──────────────────────────────────────────

    async def _transition(
        self,
        trip_id: int,
        actor_id: int,
        target: TripStatus,
        payload: TransitionPayload,
    ) -> Result[TripSnapshot]:
        async with self._uow_factory() as uow:
            aggregate = await uow.load(trip_id, for_update=True)
            if aggregate is None:
                return Result.fail(ErrorKind.NOT_FOUND, f"Trip {trip_id} not found")

            actor = await uow.get_actor(actor_id)
            if actor is None:
                return Result.fail(ErrorKind.UNAUTHORIZED, f"Unknown actor {actor_id}")

            trip = aggregate.trip
            if (
                trip.driver_id is None
                and actor.role is ActorRole.DRIVER
                and target in _OPEN_TRIP_TARGETS
            ):
                aggregate.driver = await uow.load_driver(actor.id)

            if not self._is_party(aggregate, actor.id, actor.role, target):
                return Result.fail(
                    ErrorKind.UNAUTHORIZED,
                    f"Actor {actor_id} is not a party to trip {trip_id}",
                )

            driver = aggregate.driver
            if driver is not None:
                # One consistent location snapshot per transition.
                driver.current_location = await self._latest_location(driver)

            context = state_machine.TransitionContext(
                cargo_unassigned=aggregate.cargo.status is CargoStatus.PENDING,
                driver_assigned=trip.driver_id is not None and driver is not None,
                driver_available=driver is not None and driver.is_available,
            )
            decision = state_machine.evaluate(trip.status, target, actor.role, context)
            if not decision.ok:
                return Result.from_failure(decision.error)

            previous = trip.status
            expected_version = trip.version
            applied = await self._apply(uow, aggregate, target, payload)
            if not applied.ok:
                return Result.from_failure(applied.error)

            saved = await uow.save_atomically(
                AggregateMutations(
                    trip=trip,
                    expected_version=expected_version,
                    cargo=aggregate.cargo,
                    driver=aggregate.driver,
                    payment=applied.value,
                )
            )
            if not saved.ok:
                return Result.from_failure(saved.error)

            await uow.commit()

        logger.info(
            "Trip %s: %s -> %s by actor %s", trip_id, previous.value, target.value, actor_id
        )
        return Result.success(TripSnapshot.capture(aggregate, applied.value))

    @staticmethod
    def _is_party(
        aggregate: TripAggregate, actor_id: int, role: ActorRole, target: TripStatus
    ) -> bool:
        if role is ActorRole.ADMINISTRATOR:
            return True
        if role is ActorRole.CARGO_OWNER:
            return aggregate.cargo.owner_id == actor_id
        trip = aggregate.trip
        if trip.driver_id is not None:
            return trip.driver_id == actor_id
        # An open request can be taken (or turned down) by any driver with a profile.
        return (
            target in _OPEN_TRIP_TARGETS
            and aggregate.driver is not None
            and aggregate.driver.id == actor_id
        )

    async def _apply(
        self,
        uow: UnitOfWork,
        aggregate: TripAggregate,
        target: TripStatus,
        payload: TransitionPayload,
    ) -> Result[Optional[Payment]]:
        """Mutate the loaded aggregate for *target*; returns the new payment, if any."""
        trip, cargo, driver = aggregate.trip, aggregate.cargo, aggregate.driver
        now = self._clock()
        payment: Optional[Payment] = None

        if target is TripStatus.ACCEPTED:
            trip.driver_id = driver.id
            trip.accepted_at = now
            driver.is_available = False

        elif target is TripStatus.REJECTED:
            trip.cancellation_reason = payload.reason

        elif target is TripStatus.PICKUP_CONFIRMED:
            trip.picked_up_at = now

        elif target is TripStatus.IN_PROGRESS:
            trip.started_at = now

        elif target is TripStatus.DELIVERY_CONFIRMED:
            trip.delivered_at = now

        elif target is TripStatus.COMPLETED:
            if payload.actual_price is not None:
                try:
                    trip.set_actual_price(payload.actual_price)
                except CurrencyMismatchError as exc:
                    return Result.fail(ErrorKind.CURRENCY_MISMATCH, str(exc))
            if await uow.payment_exists(trip.id):
                return Result.fail(
                    ErrorKind.INVALID_TRANSITION,
                    f"Trip {trip.id} already has a payment",
                )
            rate = await self._commission_config.get_rate(
                self._settings.commission_config_key
            )
            settled = settle(trip.final_price, rate, currency=trip.agreed_price.currency)
            if not settled.ok:
                return Result.from_failure(settled.error)
            settlement = settled.value
            payment = Payment(
                trip_id=trip.id,
                payer_id=cargo.owner_id,
                payee_id=driver.id,
                amount=settlement.amount,
                commission_amount=settlement.commission_amount,
                net_amount=settlement.net_amount,
                created_at=now,
            )
            if payload.waybill_number:
                trip.waybill_number = payload.waybill_number.strip()
            trip.completed_at = now
            driver.is_available = True

        elif target in CANCELLED_STATUSES:
            trip.cancelled_at = now
            trip.cancellation_reason = payload.reason
            if driver is not None:
                driver.is_available = True

        trip.status = target
        cargo.status = state_machine.cargo_status_for(target)
        if payload.notes:
            trip.add_notes(payload.notes)
        return Result.success(payment)

    # ── Post-commit side effects ──────────────────────────────────────

    def _after_commit(self, snapshot: TripSnapshot, payload: TransitionPayload) -> None:
        for note in self._notifications_for(snapshot, payload):
            self._dispatcher.submit(
                f"notify:trip-{snapshot.trip.id}:user-{note.user_id}",
                partial(
                    self._notifier.notify,
                    note.user_id,
                    note.title,
                    note.message,
                    note.metadata,
                ),
            )

        if (
            snapshot.trip.status is TripStatus.PICKUP_CONFIRMED
            and self._settings.weather_alerts_enabled
        ):
            point = payload.location or snapshot.cargo.pickup
            self._dispatcher.submit(
                f"advisory:trip-{snapshot.trip.id}",
                partial(self._check_advisory, snapshot, point),
            )

    @staticmethod
    def _notifications_for(
        snapshot: TripSnapshot, payload: TransitionPayload
    ) -> list[Notification]:
        trip, cargo = snapshot.trip, snapshot.cargo
        meta = {"trip_id": trip.id, "status": trip.status.value}
        label = cargo.description or f"#{cargo.id}"
        owner = cargo.owner_id

        notes: list[Notification] = []
        if trip.status in _OWNER_MESSAGES:
            title, template = _OWNER_MESSAGES[trip.status]
            notes.append(Notification(owner, title, template.format(label=label), meta))

        payment = snapshot.payment
        if trip.status is TripStatus.COMPLETED and payment is not None:
            notes.append(
                Notification(
                    owner,
                    "Payment pending",
                    f"A payment of {payment.amount} is awaiting confirmation.",
                    meta,
                )
            )
            notes.append(
                Notification(
                    payment.payee_id,
                    "Trip settled",
                    f"You will receive {payment.net_amount} for this trip.",
                    meta,
                )
            )

        if trip.status in CANCELLED_STATUSES:
            message = (
                f"The trip for cargo {label} has been cancelled. "
                f"Reason: {payload.reason or 'no reason given'}"
            )
            recipients = [owner]
            if trip.driver_id is not None:
                recipients.append(trip.driver_id)
            notes.extend(
                Notification(user, "Trip cancelled", message, meta) for user in recipients
            )
        return notes

    async def _check_advisory(self, snapshot: TripSnapshot, point: GeoLocation) -> None:
        trip = snapshot.trip
        try:
            advisory = await asyncio.wait_for(
                self._advisor.get_advisory(point.latitude, point.longitude),
                timeout=self._settings.external_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Advisory lookup for trip %s timed out; skipped", trip.id)
            return

        if advisory is None or not advisory.is_severe or trip.driver_id is None:
            return

        logger.warning("Severe advisory for trip %s: %s", trip.id, advisory.description)
        self._dispatcher.submit(
            f"notify:trip-{trip.id}:advisory",
            partial(
                self._notifier.notify,
                trip.driver_id,
                "Severe weather alert",
                f"Warning: {advisory.description}. Please confirm readiness to proceed.",
                {"trip_id": trip.id, "warning_type": "weather"},
            ),
        )

    # ── Lookups ───────────────────────────────────────────────────────

    async def _latest_location(self, driver: Optional[Driver]) -> Optional[GeoLocation]:
        if driver is None:
            return None
        if self._location_store is None:
            return driver.current_location
        try:
            latest = await self._location_store.latest(driver.id)
        except Exception:
            logger.warning(
                "Location store unavailable for driver %s; using stored location",
                driver.id,
                exc_info=True,
            )
            return driver.current_location
        return latest if latest is not None else driver.current_location

    async def _route_estimate(
        self, trip_id: int, origin: GeoLocation, destination: GeoLocation
    ) -> tuple[Optional[RouteEstimate], Optional[Failure]]:
        if self._route_estimator is None:
            return None, None
        try:
            estimate = await asyncio.wait_for(
                self._route_estimator.estimate(origin, destination),
                timeout=self._settings.external_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Route estimate for trip %s timed out", trip_id)
            return None, Failure(
                ErrorKind.EXTERNAL_SERVICE_FAILURE, "Route service timed out"
            )
        except Exception as exc:
            logger.warning("Route estimate for trip %s failed: %s", trip_id, exc)
            return None, Failure(ErrorKind.EXTERNAL_SERVICE_FAILURE, str(exc))
        if estimate is None:
            return None, Failure(
                ErrorKind.EXTERNAL_SERVICE_FAILURE, "Route service returned no estimate"
            )
        return estimate, None
