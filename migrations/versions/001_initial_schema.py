"""Initial schema: PostGIS, actors, cargo, trips, trails, payments and configuration.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from geoalchemy2 import Geometry


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

TRIP_STATUSES = (
    "REQUESTED",
    "ACCEPTED",
    "PICKUP_CONFIRMED",
    "IN_PROGRESS",
    "DELIVERY_CONFIRMED",
    "COMPLETED",
    "CANCELLED_BY_DRIVER",
    "CANCELLED_BY_CARGO_OWNER",
    "REJECTED",
)
CARGO_STATUSES = (
    "PENDING",
    "ASSIGNED",
    "PICKED_UP",
    "DELIVERED",
    "COMPLETED",
    "CANCELLED",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    ]


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS postgis")

    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column(
            "role",
            sa.Enum("DRIVER", "CARGO_OWNER", "ADMINISTRATOR", name="actorrole"),
            nullable=False,
        ),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )
    op.create_index("idx_users_role", "users", ["role"])

    # ── drivers ───────────────────────────────────────────────────────
    op.create_table(
        "drivers",
        sa.Column("id", sa.Integer, sa.ForeignKey("users.id"), primary_key=True),
        sa.Column("is_available", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("current_lat", sa.Float, nullable=True),
        sa.Column("current_lng", sa.Float, nullable=True),
        sa.Column("current_speed", sa.Float, nullable=True),
        sa.Column("current_heading", sa.Float, nullable=True),
        sa.Column("location_recorded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_location", Geometry("POINT", srid=4326), nullable=True),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )
    op.create_index(
        "idx_drivers_location", "drivers", ["current_location"], postgresql_using="gist"
    )
    op.create_index("idx_drivers_available", "drivers", ["is_available"])

    # ── cargo_requests ────────────────────────────────────────────────
    op.create_table(
        "cargo_requests",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("owner_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("description", sa.String(255), nullable=False, server_default=""),
        sa.Column("pickup_point", Geometry("POINT", srid=4326), nullable=True),
        sa.Column("delivery_point", Geometry("POINT", srid=4326), nullable=True),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("delivery_lat", sa.Float, nullable=False),
        sa.Column("delivery_lng", sa.Float, nullable=False),
        sa.Column(
            "status",
            sa.Enum(*CARGO_STATUSES, name="cargostatus"),
            nullable=False,
            server_default="PENDING",
        ),
        *_timestamps(),
    )
    op.create_index(
        "idx_cargo_pickup", "cargo_requests", ["pickup_point"], postgresql_using="gist"
    )
    op.create_index(
        "idx_cargo_delivery",
        "cargo_requests",
        ["delivery_point"],
        postgresql_using="gist",
    )
    op.create_index("idx_cargo_status", "cargo_requests", ["status"])
    op.create_index("idx_cargo_owner", "cargo_requests", ["owner_id"])

    # ── trips ─────────────────────────────────────────────────────────
    op.create_table(
        "trips",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("trip_number", sa.String(32), nullable=True),
        sa.Column(
            "cargo_id", sa.Integer, sa.ForeignKey("cargo_requests.id"), nullable=False
        ),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=True),
        sa.Column(
            "status",
            sa.Enum(*TRIP_STATUSES, name="tripstatus"),
            nullable=False,
            server_default="REQUESTED",
        ),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("agreed_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("actual_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("picked_up_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("cancellation_reason", sa.String(500), nullable=True),
        sa.Column("waybill_number", sa.String(64), nullable=True),
        sa.Column(
            "near_destination_notified_at", sa.DateTime(timezone=True), nullable=True
        ),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("idx_trips_status", "trips", ["status"])
    op.create_index("idx_trips_cargo", "trips", ["cargo_id"])
    op.create_index("idx_trips_driver", "trips", ["driver_id"])
    op.create_unique_constraint("uq_trips_number", "trips", ["trip_number"])

    # ── trip_tracking_points ──────────────────────────────────────────
    op.create_table(
        "trip_tracking_points",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("trip_id", sa.Integer, sa.ForeignKey("trips.id"), nullable=False),
        sa.Column("lat", sa.Float, nullable=False),
        sa.Column("lng", sa.Float, nullable=False),
        sa.Column("point", Geometry("POINT", srid=4326), nullable=True),
        sa.Column("accuracy", sa.Float, nullable=True),
        sa.Column("speed", sa.Float, nullable=True),
        sa.Column("heading", sa.Float, nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "received_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )
    op.create_index(
        "idx_tracking_trip_time", "trip_tracking_points", ["trip_id", "recorded_at"]
    )

    # ── payments ──────────────────────────────────────────────────────
    op.create_table(
        "payments",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("trip_id", sa.Integer, sa.ForeignKey("trips.id"), nullable=False),
        sa.Column("payer_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("payee_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("commission_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("net_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column(
            "status",
            sa.Enum("PENDING", "COMPLETED", "REFUNDED", name="paymentstatus"),
            nullable=False,
            server_default="PENDING",
        ),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.UniqueConstraint("trip_id", name="uq_payments_trip"),
    )
    op.create_index("idx_payments_payer", "payments", ["payer_id"])
    op.create_index("idx_payments_payee", "payments", ["payee_id"])

    # ── system_configurations ─────────────────────────────────────────
    op.create_table(
        "system_configurations",
        sa.Column("key", sa.String(120), primary_key=True),
        sa.Column("value", sa.String(255), nullable=False),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
    )


def downgrade() -> None:
    op.drop_table("system_configurations")
    op.drop_table("payments")
    op.drop_table("trip_tracking_points")
    op.drop_table("trips")
    op.drop_table("cargo_requests")
    op.drop_table("drivers")
    op.drop_table("users")
    for enum_type in ("paymentstatus", "tripstatus", "cargostatus", "actorrole"):
        op.execute(f"DROP TYPE IF EXISTS {enum_type}")
