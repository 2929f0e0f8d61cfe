"""
Trip coordinator tests.

Covers the full transition pipeline against the in-memory unit of work:
authorization, guards, side effects, settlement, post-commit dispatch and
concurrent completion.
"""

import asyncio
import logging
from decimal import Decimal

import pytest

from freight.domain.entities import GeoLocation, Money, TransitionPayload
from freight.domain.enums import CargoStatus, PaymentStatus, TripStatus
from freight.domain.ports import Advisory
from freight.domain.result import ErrorKind
from tests.conftest import (
    ADMIN_ID,
    DRIVER_ID,
    OTHER_DRIVER_ID,
    OTHER_OWNER_ID,
    OWNER_ID,
    PICKUP,
    UNPROFILED_DRIVER_ID,
    RecordingNotifier,
    StubAdvisor,
)


# ── Acceptance ────────────────────────────────────────────────────────


class TestAccept:
    @pytest.mark.asyncio
    async def test_driver_accepts_open_trip(self, store, coordinator, dispatcher, notifier):
        trip = store.add_trip(TripStatus.REQUESTED)

        result = await coordinator.request_transition(trip.id, DRIVER_ID, TripStatus.ACCEPTED)

        assert result.ok
        snapshot = result.value
        assert snapshot.trip.status is TripStatus.ACCEPTED
        assert snapshot.trip.driver_id == DRIVER_ID
        assert snapshot.trip.accepted_at is not None
        assert snapshot.cargo.status is CargoStatus.ASSIGNED
        assert store.drivers[DRIVER_ID].is_available is False
        assert store.trips[trip.id].version == 1

        await dispatcher.join()
        assert notifier.titles_for(OWNER_ID) == ["Cargo accepted"]

    @pytest.mark.asyncio
    async def test_status_accepted_as_plain_string(self, store, coordinator):
        trip = store.add_trip(TripStatus.REQUESTED)
        result = await coordinator.request_transition(trip.id, DRIVER_ID, "ACCEPTED")
        assert result.ok

    @pytest.mark.asyncio
    async def test_busy_driver_cannot_accept(self, store, coordinator):
        store.add_trip(TripStatus.ACCEPTED, driver_id=DRIVER_ID)
        open_trip = store.add_trip(TripStatus.REQUESTED)

        result = await coordinator.request_transition(
            open_trip.id, DRIVER_ID, TripStatus.ACCEPTED
        )

        assert result.error.kind is ErrorKind.INVALID_TRANSITION
        assert store.trips[open_trip.id].status is TripStatus.REQUESTED

    @pytest.mark.asyncio
    async def test_driver_without_profile_is_unauthorized(self, store, coordinator):
        trip = store.add_trip(TripStatus.REQUESTED)
        result = await coordinator.request_transition(
            trip.id, UNPROFILED_DRIVER_ID, TripStatus.ACCEPTED
        )
        assert result.error.kind is ErrorKind.UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_owner_cannot_accept(self, store, coordinator):
        trip = store.add_trip(TripStatus.REQUESTED)
        result = await coordinator.request_transition(trip.id, OWNER_ID, TripStatus.ACCEPTED)
        assert result.error.kind is ErrorKind.UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_driver_rejects_open_trip(self, store, coordinator):
        trip = store.add_trip(TripStatus.REQUESTED)

        result = await coordinator.request_transition(
            trip.id,
            DRIVER_ID,
            TripStatus.REJECTED,
            TransitionPayload(reason="Route too long"),
        )

        assert result.ok
        stored = store.trips[trip.id]
        assert stored.status is TripStatus.REJECTED
        assert stored.driver_id is None
        assert stored.cancellation_reason == "Route too long"
        assert store.cargo_of(trip.id).status is CargoStatus.PENDING
        assert store.drivers[DRIVER_ID].is_available is True


# ── Pickup and advisories ────────────────────────────────────────


class TestPickup:
    @pytest.mark.asyncio
    async def test_pickup_without_severe_weather(
        self, store, coordinator, dispatcher, advisor, notifier
    ):
        trip = store.add_trip(TripStatus.ACCEPTED, driver_id=DRIVER_ID)

        result = await coordinator.request_transition(
            trip.id,
            DRIVER_ID,
            TripStatus.PICKUP_CONFIRMED,
            TransitionPayload(location=GeoLocation(35.70, 51.42)),
        )

        assert result.ok
        assert result.value.cargo.status is CargoStatus.PICKED_UP
        assert result.value.trip.picked_up_at is not None
        assert store.cargo_of(trip.id).status is CargoStatus.PICKED_UP

        await dispatcher.join()
        assert advisor.calls == [(35.70, 51.42)]
        assert notifier.titles_for(OWNER_ID) == ["Cargo picked up"]
        assert notifier.titles_for(DRIVER_ID) == []

    @pytest.mark.asyncio
    async def test_severe_advisory_alerts_driver_but_does_not_block(
        self, store, make_coordinator, dispatcher, notifier
    ):
        advisor = StubAdvisor(Advisory(is_severe=True, description="Heavy snow on route"))
        coordinator = make_coordinator(advisor=advisor)
        trip = store.add_trip(TripStatus.ACCEPTED, driver_id=DRIVER_ID)

        result = await coordinator.request_transition(
            trip.id, DRIVER_ID, TripStatus.PICKUP_CONFIRMED
        )

        assert result.ok
        await dispatcher.join()
        # No location in the payload: the cargo pickup point is used.
        assert advisor.calls == [PICKUP]
        alerts = [n for n in notifier.sent if n.title == "Severe weather alert"]
        assert len(alerts) == 1
        assert alerts[0].user_id == DRIVER_ID
        assert "Heavy snow on route" in alerts[0].message
        assert store.trips[trip.id].status is TripStatus.PICKUP_CONFIRMED

    @pytest.mark.asyncio
    async def test_advisory_timeout_is_absorbed(
        self, store, make_coordinator, dispatcher, notifier, caplog
    ):
        advisor = StubAdvisor(Advisory(is_severe=True, description="Storm"), delay=1.0)
        coordinator = make_coordinator(advisor=advisor)
        trip = store.add_trip(TripStatus.ACCEPTED, driver_id=DRIVER_ID)

        with caplog.at_level(logging.WARNING, logger="freight.services.coordinator"):
            result = await coordinator.request_transition(
                trip.id, DRIVER_ID, TripStatus.PICKUP_CONFIRMED
            )
            await dispatcher.join()

        assert result.ok
        assert "timed out" in caplog.text
        assert not [n for n in notifier.sent if n.title == "Severe weather alert"]

    @pytest.mark.asyncio
    async def test_advisory_skipped_when_disabled(
        self, store, make_coordinator, dispatcher, advisor, test_settings
    ):
        coordinator = make_coordinator(
            settings=test_settings.model_copy(update={"weather_alerts_enabled": False})
        )
        trip = store.add_trip(TripStatus.ACCEPTED, driver_id=DRIVER_ID)

        result = await coordinator.request_transition(
            trip.id, DRIVER_ID, TripStatus.PICKUP_CONFIRMED
        )

        assert result.ok
        await dispatcher.join()
        assert advisor.calls == []


# ── Authorization ─────────────────────────────────────────────────────


class TestAuthorization:
    @pytest.mark.asyncio
    async def test_owner_cannot_confirm_pickup(self, store, coordinator):
        trip = store.add_trip(TripStatus.ACCEPTED, driver_id=DRIVER_ID)

        result = await coordinator.request_transition(
            trip.id, OWNER_ID, TripStatus.PICKUP_CONFIRMED
        )

        assert result.error.kind is ErrorKind.UNAUTHORIZED
        assert store.trips[trip.id].status is TripStatus.ACCEPTED
        assert store.trips[trip.id].version == 0

    @pytest.mark.asyncio
    async def test_unassigned_driver_cannot_confirm_pickup(self, store, coordinator):
        trip = store.add_trip(TripStatus.ACCEPTED, driver_id=DRIVER_ID)
        result = await coordinator.request_transition(
            trip.id, OTHER_DRIVER_ID, TripStatus.PICKUP_CONFIRMED
        )
        assert result.error.kind is ErrorKind.UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_other_owner_cannot_cancel(self, store, coordinator):
        trip = store.add_trip(TripStatus.ACCEPTED, driver_id=DRIVER_ID)
        result = await coordinator.request_transition(
            trip.id, OTHER_OWNER_ID, TripStatus.CANCELLED_BY_CARGO_OWNER
        )
        assert result.error.kind is ErrorKind.UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_driver_cannot_complete(self, store, coordinator):
        trip = store.add_trip(TripStatus.DELIVERY_CONFIRMED, driver_id=DRIVER_ID)
        result = await coordinator.request_transition(trip.id, DRIVER_ID, TripStatus.COMPLETED)
        assert result.error.kind is ErrorKind.UNAUTHORIZED
        assert store.payments == {}

    @pytest.mark.asyncio
    async def test_unknown_actor(self, store, coordinator):
        trip = store.add_trip(TripStatus.REQUESTED)
        result = await coordinator.request_transition(trip.id, 404, TripStatus.ACCEPTED)
        assert result.error.kind is ErrorKind.UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_unknown_trip(self, coordinator):
        result = await coordinator.request_transition(999, DRIVER_ID, TripStatus.ACCEPTED)
        assert result.error.kind is ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_unknown_status(self, store, coordinator):
        trip = store.add_trip(TripStatus.REQUESTED)
        result = await coordinator.request_transition(trip.id, DRIVER_ID, "TELEPORTED")
        assert result.error.kind is ErrorKind.INVALID_TRANSITION


# ── Completion & settlement ───────────────────────────────────────────


class TestCompletion:
    @pytest.mark.asyncio
    async def test_completion_settles_and_frees_driver(
        self, store, coordinator, dispatcher, notifier, commission
    ):
        trip = store.add_trip(
            TripStatus.DELIVERY_CONFIRMED, driver_id=DRIVER_ID, price="1000000"
        )

        result = await coordinator.request_transition(trip.id, ADMIN_ID, TripStatus.COMPLETED)

        assert result.ok
        payment = result.value.payment
        assert payment.amount == Money(Decimal("1000000"), "IRR")
        assert payment.commission_amount == Money(Decimal("50000"), "IRR")
        assert payment.net_amount == Money(Decimal("950000"), "IRR")
        assert payment.payer_id == OWNER_ID
        assert payment.payee_id == DRIVER_ID
        assert payment.status is PaymentStatus.PENDING
        assert payment.id is not None

        assert store.drivers[DRIVER_ID].is_available is True
        assert store.cargo_of(trip.id).status is CargoStatus.COMPLETED
        assert store.trips[trip.id].completed_at is not None
        assert list(store.payments) == [trip.id]
        assert commission.keys == ["Commission.DefaultPercentage"]

        await dispatcher.join()
        assert sorted(notifier.titles_for(OWNER_ID)) == ["Payment pending", "Trip completed"]
        assert notifier.titles_for(DRIVER_ID) == ["Trip settled"]

    @pytest.mark.asyncio
    async def test_waybill_number_is_recorded(self, store, coordinator):
        trip = store.add_trip(TripStatus.DELIVERY_CONFIRMED, driver_id=DRIVER_ID)

        result = await coordinator.request_transition(
            trip.id,
            ADMIN_ID,
            TripStatus.COMPLETED,
            TransitionPayload(waybill_number="  EWB-1402-77 "),
        )

        assert result.value.trip.waybill_number == "EWB-1402-77"
        assert store.trips[trip.id].waybill_number == "EWB-1402-77"

    @pytest.mark.asyncio
    async def test_waybill_is_only_taken_at_completion(self, store, coordinator):
        trip = store.add_trip(TripStatus.IN_PROGRESS, driver_id=DRIVER_ID)

        await coordinator.request_transition(
            trip.id,
            DRIVER_ID,
            TripStatus.DELIVERY_CONFIRMED,
            TransitionPayload(waybill_number="EWB-1402-77"),
        )

        assert store.trips[trip.id].waybill_number is None

    @pytest.mark.asyncio
    async def test_actual_price_overrides_agreed_price(self, store, coordinator):
        trip = store.add_trip(TripStatus.DELIVERY_CONFIRMED, driver_id=DRIVER_ID)

        result = await coordinator.request_transition(
            trip.id,
            ADMIN_ID,
            TripStatus.COMPLETED,
            TransitionPayload(actual_price=Money(Decimal("1200000"), "IRR")),
        )

        assert result.ok
        assert result.value.trip.actual_price == Money(Decimal("1200000"), "IRR")
        assert result.value.payment.commission_amount.amount == Decimal("60000.00")
        assert result.value.payment.net_amount.amount == Decimal("1140000.00")

    @pytest.mark.asyncio
    async def test_actual_price_in_other_currency_is_refused(self, store, coordinator):
        trip = store.add_trip(TripStatus.DELIVERY_CONFIRMED, driver_id=DRIVER_ID)

        result = await coordinator.request_transition(
            trip.id,
            ADMIN_ID,
            TripStatus.COMPLETED,
            TransitionPayload(actual_price=Money(Decimal("50"), "USD")),
        )

        assert result.error.kind is ErrorKind.CURRENCY_MISMATCH
        assert store.trips[trip.id].status is TripStatus.DELIVERY_CONFIRMED
        assert store.trips[trip.id].actual_price is None

    @pytest.mark.asyncio
    async def test_out_of_range_commission_rate_is_a_configuration_error(
        self, store, coordinator, commission
    ):
        commission.rate = Decimal("150")
        trip = store.add_trip(TripStatus.DELIVERY_CONFIRMED, driver_id=DRIVER_ID)

        result = await coordinator.request_transition(trip.id, ADMIN_ID, TripStatus.COMPLETED)

        assert result.error.kind is ErrorKind.INVALID_CONFIGURATION
        assert store.trips[trip.id].status is TripStatus.DELIVERY_CONFIRMED
        assert store.payments == {}
        assert store.drivers[DRIVER_ID].is_available is False

    @pytest.mark.asyncio
    async def test_second_completion_is_refused(self, store, coordinator):
        trip = store.add_trip(TripStatus.DELIVERY_CONFIRMED, driver_id=DRIVER_ID)

        first = await coordinator.request_transition(trip.id, ADMIN_ID, TripStatus.COMPLETED)
        second = await coordinator.request_transition(trip.id, ADMIN_ID, TripStatus.COMPLETED)

        assert first.ok
        assert second.error.kind is ErrorKind.INVALID_TRANSITION
        assert len(store.payments) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("locking", [True, False])
    async def test_concurrent_completion_creates_one_payment(
        self, store, make_coordinator, locking
    ):
        coordinator = make_coordinator(locking=locking)
        trip = store.add_trip(TripStatus.DELIVERY_CONFIRMED, driver_id=DRIVER_ID)

        results = await asyncio.gather(
            coordinator.request_transition(trip.id, ADMIN_ID, TripStatus.COMPLETED),
            coordinator.request_transition(trip.id, ADMIN_ID, TripStatus.COMPLETED),
        )

        succeeded = [r for r in results if r.ok]
        failed = [r for r in results if not r.ok]
        assert len(succeeded) == 1
        assert len(failed) == 1
        assert failed[0].error.kind in (
            ErrorKind.CONCURRENCY_CONFLICT,
            ErrorKind.INVALID_TRANSITION,
        )
        assert len(store.payments) == 1


# ── Cancellation ──────────────────────────────────────────────────────


class TestCancellation:
    @pytest.mark.asyncio
    async def test_owner_cancels_accepted_trip(self, store, coordinator, dispatcher, notifier):
        trip = store.add_trip(TripStatus.ACCEPTED, driver_id=DRIVER_ID)

        result = await coordinator.request_transition(
            trip.id,
            OWNER_ID,
            TripStatus.CANCELLED_BY_CARGO_OWNER,
            TransitionPayload(reason="Shipment postponed"),
        )

        assert result.ok
        stored = store.trips[trip.id]
        assert stored.status is TripStatus.CANCELLED_BY_CARGO_OWNER
        assert stored.cancelled_at is not None
        assert stored.cancellation_reason == "Shipment postponed"
        assert store.cargo_of(trip.id).status is CargoStatus.CANCELLED
        assert store.drivers[DRIVER_ID].is_available is True

        await dispatcher.join()
        assert notifier.titles_for(OWNER_ID) == ["Trip cancelled"]
        assert notifier.titles_for(DRIVER_ID) == ["Trip cancelled"]
        assert "Shipment postponed" in notifier.sent[0].message

    @pytest.mark.asyncio
    async def test_driver_cancels_after_pickup(self, store, coordinator):
        trip = store.add_trip(TripStatus.PICKUP_CONFIRMED, driver_id=DRIVER_ID)
        result = await coordinator.request_transition(
            trip.id, DRIVER_ID, TripStatus.CANCELLED_BY_DRIVER
        )
        assert result.ok
        assert store.drivers[DRIVER_ID].is_available is True

    @pytest.mark.asyncio
    async def test_cannot_cancel_in_transit(self, store, coordinator):
        trip = store.add_trip(TripStatus.IN_PROGRESS, driver_id=DRIVER_ID)
        result = await coordinator.request_transition(
            trip.id, OWNER_ID, TripStatus.CANCELLED_BY_CARGO_OWNER
        )
        assert result.error.kind is ErrorKind.INVALID_TRANSITION
        assert store.drivers[DRIVER_ID].is_available is False


# ── Full lifecycle & failure isolation ───────────────────────────────


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_full_walk_keeps_driver_busy_until_completion(self, store, coordinator):
        trip = store.add_trip(TripStatus.REQUESTED)
        steps = [
            (DRIVER_ID, TripStatus.ACCEPTED),
            (DRIVER_ID, TripStatus.PICKUP_CONFIRMED),
            (DRIVER_ID, TripStatus.IN_PROGRESS),
            (DRIVER_ID, TripStatus.DELIVERY_CONFIRMED),
        ]
        for actor, target in steps:
            result = await coordinator.request_transition(trip.id, actor, target)
            assert result.ok, result.error
            assert store.drivers[DRIVER_ID].is_available is False

        result = await coordinator.request_transition(trip.id, ADMIN_ID, TripStatus.COMPLETED)

        assert result.ok
        assert store.drivers[DRIVER_ID].is_available is True
        assert store.trips[trip.id].version == 5
        stored = store.trips[trip.id]
        assert stored.accepted_at <= stored.picked_up_at <= stored.started_at
        assert stored.started_at <= stored.delivered_at <= stored.completed_at

    @pytest.mark.asyncio
    async def test_pickup_may_skip_transit(self, store, coordinator):
        trip = store.add_trip(TripStatus.PICKUP_CONFIRMED, driver_id=DRIVER_ID)
        result = await coordinator.request_transition(
            trip.id, DRIVER_ID, TripStatus.DELIVERY_CONFIRMED
        )
        assert result.ok
        assert store.cargo_of(trip.id).status is CargoStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_notes_are_appended(self, store, coordinator):
        trip = store.add_trip(TripStatus.ACCEPTED, driver_id=DRIVER_ID)

        await coordinator.request_transition(
            trip.id,
            DRIVER_ID,
            TripStatus.PICKUP_CONFIRMED,
            TransitionPayload(notes="Loaded at dock 3"),
        )
        await coordinator.request_transition(
            trip.id,
            DRIVER_ID,
            TripStatus.IN_PROGRESS,
            TransitionPayload(notes="Left the yard"),
        )

        assert store.trips[trip.id].notes == "Loaded at dock 3\nLeft the yard"

    @pytest.mark.asyncio
    async def test_failing_notifications_never_revert_the_transition(
        self, store, make_coordinator, dispatcher
    ):
        notifier = RecordingNotifier(fail_times=100)
        coordinator = make_coordinator(notifier=notifier)
        trip = store.add_trip(TripStatus.REQUESTED)

        result = await coordinator.request_transition(trip.id, DRIVER_ID, TripStatus.ACCEPTED)
        await dispatcher.join()

        assert result.ok
        assert store.trips[trip.id].status is TripStatus.ACCEPTED
        # One attempt plus two retries.
        assert notifier.calls == 3
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_notification_retry_succeeds(self, store, make_coordinator, dispatcher):
        notifier = RecordingNotifier(fail_times=1)
        coordinator = make_coordinator(notifier=notifier)
        trip = store.add_trip(TripStatus.REQUESTED)

        await coordinator.request_transition(trip.id, DRIVER_ID, TripStatus.ACCEPTED)
        await dispatcher.join()

        assert notifier.calls == 2
        assert notifier.titles_for(OWNER_ID) == ["Cargo accepted"]

    @pytest.mark.asyncio
    async def test_persistence_error_rolls_back(self, store, coordinator, dispatcher, notifier):
        trip = store.add_trip(TripStatus.DELIVERY_CONFIRMED, driver_id=DRIVER_ID)
        store.fail_on_save = True

        result = await coordinator.request_transition(trip.id, ADMIN_ID, TripStatus.COMPLETED)

        assert result.error.kind is ErrorKind.PERSISTENCE_FAILURE
        assert store.trips[trip.id].status is TripStatus.DELIVERY_CONFIRMED
        assert store.drivers[DRIVER_ID].is_available is False
        assert store.payments == {}
        await dispatcher.join()
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_returned_snapshot_is_detached(self, store, coordinator):
        trip = store.add_trip(TripStatus.REQUESTED)
        result = await coordinator.request_transition(trip.id, DRIVER_ID, TripStatus.ACCEPTED)

        result.value.trip.notes = "edited by caller"

        assert store.trips[trip.id].notes is None
