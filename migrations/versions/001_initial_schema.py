"""Initial schema: users with driver presence, rides, ride declines.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    "user_role": ("customer", "driver", "sub_driver", "admin"),
    "vehicle_class": ("bike", "auto", "car", "truck"),
    "service_type": ("ride", "delivery", "intercity", "rental"),
    "ride_status": (
        "pending",
        "searching",
        "accepted",
        "arrived",
        "started",
        "completed",
        "cancelled",
    ),
    "payment_method": ("cash", "card", "upi", "wallet", "credits"),
    "cancel_actor": ("customer", "driver", "system"),
}


def _enum(name: str) -> postgresql.ENUM:
    # Types are created up front; vehicle_class is shared by two tables.
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _timestamp(name: str, **kw) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), **kw)


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("full_name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("phone", sa.String(20), unique=True, nullable=True),
        sa.Column("role", _enum("user_role"), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column(
            "parent_driver_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True
        ),
        sa.Column("is_online", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column(
            "is_available", sa.Boolean, nullable=False, server_default=sa.false()
        ),
        _timestamp("last_seen_at", nullable=True),
        sa.Column("vehicle_class", _enum("vehicle_class"), nullable=True),
        sa.Column("vehicle_number", sa.String(20), nullable=True),
        sa.Column("current_lat", sa.Float, nullable=True),
        sa.Column("current_lng", sa.Float, nullable=True),
        sa.Column("location_cell", sa.String(20), nullable=True),
        _timestamp("location_updated_at", nullable=True),
        sa.Column("total_rides", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_earnings", sa.Integer, nullable=False, server_default="0"),
        sa.Column("rating", sa.Float, nullable=True),
        _timestamp("created_at", server_default=sa.func.now()),
    )
    op.create_index("idx_users_role", "users", ["role"])
    op.create_index("idx_users_presence", "users", ["is_online", "is_available"])
    op.create_index("idx_users_location_cell", "users", ["location_cell"])
    op.create_index("idx_users_parent", "users", ["parent_driver_id"])

    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "customer_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column(
            "sub_driver_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True
        ),
        sa.Column("vehicle_class", _enum("vehicle_class"), nullable=False),
        sa.Column("service_type", _enum("service_type"), nullable=False),
        sa.Column("status", _enum("ride_status"), nullable=False),
        sa.Column("pickup_address", sa.String(255), nullable=False),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("destination_address", sa.String(255), nullable=False),
        sa.Column("destination_lat", sa.Float, nullable=False),
        sa.Column("destination_lng", sa.Float, nullable=False),
        sa.Column("distance_km", sa.Float, nullable=False, server_default="0"),
        sa.Column("duration_min", sa.Float, nullable=False, server_default="0"),
        sa.Column("base_fare", sa.Integer, nullable=True),
        sa.Column("distance_fare", sa.Integer, nullable=True),
        sa.Column("time_fare", sa.Integer, nullable=True),
        sa.Column("surge_multiplier", sa.Float, nullable=False, server_default="1"),
        sa.Column("discount", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_fare", sa.Integer, nullable=True),
        sa.Column("final_amount", sa.Integer, nullable=True),
        sa.Column("payment_method", _enum("payment_method"), nullable=False),
        sa.Column("special_requests", sa.Text, nullable=True),
        sa.Column("item_description", sa.String(255), nullable=True),
        sa.Column("recipient_name", sa.String(120), nullable=True),
        sa.Column("recipient_phone", sa.String(20), nullable=True),
        sa.Column("otp_code", sa.String(12), nullable=True),
        _timestamp("otp_generated_at", nullable=True),
        sa.Column(
            "otp_verified", sa.Boolean, nullable=False, server_default=sa.false()
        ),
        _timestamp("otp_verified_at", nullable=True),
        sa.Column("cancelled_by", _enum("cancel_actor"), nullable=True),
        sa.Column("cancellation_reason", sa.String(255), nullable=True),
        sa.Column(
            "cancellation_fee", sa.Integer, nullable=False, server_default="0"
        ),
        sa.Column("refund_amount", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "is_emergency", sa.Boolean, nullable=False, server_default=sa.false()
        ),
        _timestamp("emergency_reported_at", nullable=True),
        sa.Column("customer_rating", sa.Integer, nullable=True),
        sa.Column("customer_feedback", sa.Text, nullable=True),
        _timestamp("rated_at", nullable=True),
        sa.Column("idempotency_key", sa.String(64), unique=True, nullable=True),
        _timestamp("created_at", server_default=sa.func.now()),
        _timestamp("accepted_at", nullable=True),
        _timestamp("arrived_at", nullable=True),
        _timestamp("started_at", nullable=True),
        _timestamp("completed_at", nullable=True),
        _timestamp("cancelled_at", nullable=True),
        _timestamp("updated_at", server_default=sa.func.now()),
    )
    op.create_index("idx_rides_status", "rides", ["status"])
    op.create_index("idx_rides_customer", "rides", ["customer_id"])
    op.create_index("idx_rides_driver", "rides", ["driver_id"])
    op.create_index("idx_rides_sub_driver", "rides", ["sub_driver_id"])
    op.create_index("idx_rides_idempotency", "rides", ["idempotency_key"])

    # ── ride_declines ─────────────────────────────────────────────────
    op.create_table(
        "ride_declines",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("ride_id", sa.Integer, sa.ForeignKey("rides.id"), nullable=False),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        _timestamp("declined_at", server_default=sa.func.now()),
        sa.UniqueConstraint(
            "ride_id", "driver_id", name="uq_ride_declines_ride_driver"
        ),
    )
    op.create_index("idx_ride_declines_ride", "ride_declines", ["ride_id"])


def downgrade() -> None:
    op.drop_table("ride_declines")
    op.drop_table("rides")
    op.drop_table("users")
    for name in reversed(list(ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
