"""Initial schema with PostGIS extension and the handoff / settlement tables.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from geoalchemy2 import Geometry


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


# Shared by several columns, so created once up front.
FUEL_LEVEL = postgresql.ENUM(
    "Empty", "1/4", "1/2", "3/4", "Full", name="fuellevel", create_type=False
)
COMPLETION_MODE = postgresql.ENUM(
    "HOST_CONFIRMED", "AUTO_FALLBACK", "BYPASSED", "DEGRADED",
    name="completionmode",
    create_type=False,
)
CHARGE_STATUS = postgresql.ENUM(
    "NONE", "PENDING", "CAPTURE_REQUESTED", "UNDER_REVIEW", "DISPUTED",
    name="chargestatus",
    create_type=False,
)


def _money(name, **kwargs):
    return sa.Column(name, sa.Numeric(10, 2), **kwargs)


def upgrade() -> None:
    # Enable PostGIS extension
    op.execute("CREATE EXTENSION IF NOT EXISTS postgis")

    bind = op.get_bind()
    for enum_type in (FUEL_LEVEL, COMPLETION_MODE, CHARGE_STATUS):
        enum_type.create(bind, checkfirst=True)

    # ── cars ──────────────────────────────────────────────────────────
    op.create_table(
        "cars",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("make", sa.String(60), nullable=False),
        sa.Column("model", sa.String(60), nullable=False),
        sa.Column("year", sa.Integer, nullable=False),
        sa.Column("address", sa.String(255), nullable=True),
        sa.Column("city", sa.String(120), nullable=True),
        sa.Column("latitude", sa.Float, nullable=False),
        sa.Column("longitude", sa.Float, nullable=False),
        sa.Column("location", Geometry("POINT", srid=4326), nullable=True),
        sa.Column("key_instructions", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "idx_cars_location", "cars", ["location"], postgresql_using="gist"
    )

    # ── rental_bookings ───────────────────────────────────────────────
    op.create_table(
        "rental_bookings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("booking_code", sa.String(20), unique=True, nullable=False),
        sa.Column("car_id", sa.String(36), sa.ForeignKey("cars.id"), nullable=False),
        sa.Column("guest_email", sa.String(255), nullable=True),
        sa.Column("host_email", sa.String(255), nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("number_of_days", sa.Integer, nullable=False, server_default="1"),
        sa.Column("is_instant_book", sa.Boolean, nullable=False, server_default=sa.false()),
        _money("daily_rate", nullable=False, server_default="0"),
        _money("subtotal", nullable=True),
        _money("delivery_fee", server_default="0"),
        _money("insurance_fee", server_default="0"),
        _money("service_fee", server_default="0"),
        _money("enhancements_total", server_default="0"),
        _money("taxes", server_default="0"),
        _money("credits_applied", server_default="0"),
        _money("bonus_applied", server_default="0"),
        _money("total_amount", nullable=False, server_default="0"),
        _money("charge_amount", nullable=True),
        _money("deposit_amount", nullable=False, server_default="500"),
        sa.Column("has_payment_method", sa.Boolean, nullable=False, server_default=sa.false()),
        # Trip start
        sa.Column("trip_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("start_mileage", sa.Integer, nullable=True),
        sa.Column("fuel_level_start", FUEL_LEVEL, nullable=True),
        sa.Column("handoff_mode", COMPLETION_MODE, nullable=True),
        # Trip end
        sa.Column("trip_ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_mileage", sa.Integer, nullable=True),
        sa.Column("fuel_level_end", FUEL_LEVEL, nullable=True),
        sa.Column("actual_end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("damage_reported", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("damage_description", sa.Text, nullable=True),
        sa.Column("damage_photos", sa.Text, nullable=True),
        sa.Column("inspection_photos_end", sa.Text, nullable=True),
        sa.Column("charge_status", CHARGE_STATUS, nullable=True),
        _money("pending_charges_amount", nullable=True),
        sa.Column("statutory_notice", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_bookings_car", "rental_bookings", ["car_id"])
    op.create_index("idx_bookings_code", "rental_bookings", ["booking_code"])

    # ── handoff_sessions ──────────────────────────────────────────────
    op.create_table(
        "handoff_sessions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "booking_id",
            sa.String(36),
            sa.ForeignKey("rental_bookings.id"),
            unique=True,
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum(
                "LOCATING",
                "VERIFYING",
                "GUEST_VERIFIED",
                "HANDOFF_COMPLETE",
                "EXPIRED",
                "BYPASSED",
                "ERROR",
                name="handoffstatus",
            ),
            nullable=False,
            server_default="LOCATING",
        ),
        sa.Column("guest_lat", sa.Float, nullable=True),
        sa.Column("guest_lng", sa.Float, nullable=True),
        sa.Column("guest_point", Geometry("POINT", srid=4326), nullable=True),
        sa.Column("distance_meters", sa.Float, nullable=True),
        sa.Column("guest_live_distance", sa.Float, nullable=True),
        sa.Column("last_ping_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("arrival_message", sa.Text, nullable=True),
        sa.Column("is_instant_book", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("guest_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("fallback_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completion_mode", COMPLETION_MODE, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "idx_handoff_guest_point",
        "handoff_sessions",
        ["guest_point"],
        postgresql_using="gist",
    )
    op.create_index("idx_handoff_status", "handoff_sessions", ["status"])
    op.create_index("idx_handoff_expires", "handoff_sessions", ["expires_at"])
    op.create_index("idx_handoff_fallback", "handoff_sessions", ["fallback_deadline"])

    # ── trip_charges ──────────────────────────────────────────────────
    op.create_table(
        "trip_charges",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "booking_id",
            sa.String(36),
            sa.ForeignKey("rental_bookings.id"),
            unique=True,
            nullable=False,
        ),
        _money("mileage_charge", nullable=False, server_default="0"),
        _money("fuel_charge", nullable=False, server_default="0"),
        _money("late_charge", nullable=False, server_default="0"),
        _money("damage_charge", nullable=False, server_default="0"),
        _money("total_charges", nullable=False),
        _money("deposit_amount", nullable=False),
        _money("amount_to_release", nullable=False),
        _money("additional_charge_needed", nullable=False),
        sa.Column("charge_details", sa.Text, nullable=False),
        sa.Column("charge_status", CHARGE_STATUS, nullable=False),
        sa.Column("requires_approval", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("hold_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_trip_charges_status", "trip_charges", ["charge_status"])

    # ── rental_disputes ───────────────────────────────────────────────
    op.create_table(
        "rental_disputes",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "booking_id",
            sa.String(36),
            sa.ForeignKey("rental_bookings.id"),
            nullable=False,
        ),
        sa.Column(
            "type",
            sa.Enum(
                "MILEAGE", "FUEL", "LATE_RETURN", "DAMAGE", "CLEANING", "OTHER",
                name="disputetype",
            ),
            nullable=False,
        ),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="OPEN"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_disputes_booking", "rental_disputes", ["booking_id"])


def downgrade() -> None:
    op.drop_table("rental_disputes")
    op.drop_table("trip_charges")
    op.drop_table("handoff_sessions")
    op.drop_table("rental_bookings")
    op.drop_table("cars")
    op.execute("DROP TYPE IF EXISTS disputetype")
    op.execute("DROP TYPE IF EXISTS handoffstatus")
    op.execute("DROP TYPE IF EXISTS chargestatus")
    op.execute("DROP TYPE IF EXISTS completionmode")
    op.execute("DROP TYPE IF EXISTS fuellevel")
