"""
Trip lifecycle state machine.

The transition graph is plain data: ``TRIP_TRANSITIONS`` maps a
``(current, target)`` edge to the ``Rule`` that governs it.  ``evaluate``
is pure; it never touches I/O and keeps no state between calls.

    REQUESTED ──> ACCEPTED ──> PICKUP_CONFIRMED ──> IN_PROGRESS
        │            │               │    │              │
        v            │               │    └──> DELIVERY_CONFIRMED <─┘
    REJECTED         └───────┬───────┘               │
                             v                       v
             CANCELLED_BY_DRIVER / _CARGO_OWNER   COMPLETED
"""

from __future__ import annotations

from dataclasses import dataclass

from .enums import TERMINAL_STATUSES, ActorRole, CargoStatus, TripStatus
from .result import ErrorKind, Result


@dataclass(frozen=True)
class TransitionContext:
    """Facts about the aggregate the guards need; computed by the caller."""

    cargo_unassigned: bool = True
    driver_assigned: bool = False
    driver_available: bool = True


@dataclass(frozen=True)
class Rule:
    role: ActorRole
    requires_unassigned_cargo: bool = False
    requires_available_driver: bool = False
    requires_driver: bool = False

    def check(self, context: TransitionContext) -> str | None:
        """Return the violated precondition, or ``None`` when all hold."""
        if self.requires_unassigned_cargo and not context.cargo_unassigned:
            return "cargo is already assigned"
        if self.requires_available_driver and not context.driver_available:
            return "driver is not available"
        if self.requires_driver and not context.driver_assigned:
            return "trip has no driver"
        return None


_DRIVER = Rule(ActorRole.DRIVER)

# (current, target) -> rule
TRIP_TRANSITIONS: dict[tuple[TripStatus, TripStatus], Rule] = {
    (TripStatus.REQUESTED, TripStatus.ACCEPTED): Rule(
        ActorRole.DRIVER,
        requires_unassigned_cargo=True,
        requires_available_driver=True,
    ),
    (TripStatus.REQUESTED, TripStatus.REJECTED): _DRIVER,
    (TripStatus.ACCEPTED, TripStatus.PICKUP_CONFIRMED): _DRIVER,
    (TripStatus.PICKUP_CONFIRMED, TripStatus.IN_PROGRESS): _DRIVER,
    (TripStatus.PICKUP_CONFIRMED, TripStatus.DELIVERY_CONFIRMED): _DRIVER,
    (TripStatus.IN_PROGRESS, TripStatus.DELIVERY_CONFIRMED): _DRIVER,
    (TripStatus.DELIVERY_CONFIRMED, TripStatus.COMPLETED): Rule(
        ActorRole.ADMINISTRATOR, requires_driver=True
    ),
    (TripStatus.ACCEPTED, TripStatus.CANCELLED_BY_DRIVER): _DRIVER,
    (TripStatus.PICKUP_CONFIRMED, TripStatus.CANCELLED_BY_DRIVER): _DRIVER,
    (TripStatus.ACCEPTED, TripStatus.CANCELLED_BY_CARGO_OWNER): Rule(
        ActorRole.CARGO_OWNER
    ),
    (TripStatus.PICKUP_CONFIRMED, TripStatus.CANCELLED_BY_CARGO_OWNER): Rule(
        ActorRole.CARGO_OWNER
    ),
}

# Cargo status is a pure function of the trip status.
CARGO_STATUS_FOR_TRIP: dict[TripStatus, CargoStatus] = {
    TripStatus.REQUESTED: CargoStatus.PENDING,
    TripStatus.REJECTED: CargoStatus.PENDING,
    TripStatus.ACCEPTED: CargoStatus.ASSIGNED,
    TripStatus.PICKUP_CONFIRMED: CargoStatus.PICKED_UP,
    TripStatus.IN_PROGRESS: CargoStatus.PICKED_UP,
    TripStatus.DELIVERY_CONFIRMED: CargoStatus.DELIVERED,
    TripStatus.COMPLETED: CargoStatus.COMPLETED,
    TripStatus.CANCELLED_BY_DRIVER: CargoStatus.CANCELLED,
    TripStatus.CANCELLED_BY_CARGO_OWNER: CargoStatus.CANCELLED,
}


def is_terminal(status: TripStatus) -> bool:
    return status in TERMINAL_STATUSES


def cargo_status_for(status: TripStatus) -> CargoStatus:
    return CARGO_STATUS_FOR_TRIP[status]


def allowed_targets(current: TripStatus, role: ActorRole) -> set[TripStatus]:
    return {
        target
        for (source, target), rule in TRIP_TRANSITIONS.items()
        if source == current and rule.role == role
    }


def evaluate(
    current: TripStatus,
    target: TripStatus,
    role: ActorRole,
    context: TransitionContext | None = None,
) -> Result[TripStatus]:
    """Validate ``current -> target`` for an actor holding *role*."""
    rule = TRIP_TRANSITIONS.get((current, target))
    if rule is None:
        return Result.fail(
            ErrorKind.INVALID_TRANSITION,
            f"Cannot transition from {current.value} to {target.value}",
        )
    if rule.role != role:
        return Result.fail(
            ErrorKind.UNAUTHORIZED,
            f"{role.value} may not move a trip from {current.value} to {target.value}",
        )
    violated = rule.check(context or TransitionContext())
    if violated:
        return Result.fail(
            ErrorKind.INVALID_TRANSITION,
            f"Cannot transition from {current.value} to {target.value}: {violated}",
        )
    return Result.success(target)
