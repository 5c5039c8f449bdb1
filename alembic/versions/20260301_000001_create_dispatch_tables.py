"""Create station dispatch tables

Revision ID: 20260301_000001
Revises:
Create Date: 2026-03-01 08:00:00

"""

from alembic import op
import sqlalchemy as sa


revision = "20260301_000001"
down_revision = None
branch_labels = None
depends_on = None

TERMINAL_STATUSES = ("cancelled", "departed", "exited", "permit_rejected")
ACTIVE_VEHICLE_PREDICATE = "exit_time IS NULL AND current_status NOT IN ({})".format(
    ", ".join(f"'{status}'" for status in TERMINAL_STATUSES)
)


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "operator",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_operator_code", "operator", ["code"])

    op.create_table(
        "vehicle",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("operator_id", sa.String(), nullable=True),
        sa.Column("plate_number", sa.String(), nullable=False),
        sa.Column("vehicle_type", sa.String(), nullable=True),
        sa.Column("seat_capacity", sa.Integer(), nullable=True),
        sa.Column("bed_capacity", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_vehicle_operator_id", "vehicle", ["operator_id"])
    op.create_index("ix_vehicle_plate_number", "vehicle", ["plate_number"])

    op.create_table(
        "driver",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("operator_id", sa.String(), nullable=True),
        sa.Column("full_name", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("license_number", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_driver_operator_id", "driver", ["operator_id"])

    op.create_table(
        "location",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=True),
        sa.Column("province", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_location_code", "location", ["code"])

    op.create_table(
        "route",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("route_code", sa.String(), nullable=False),
        sa.Column("route_name", sa.String(), nullable=True),
        sa.Column("route_type", sa.String(), nullable=True),
        sa.Column("departure_station", sa.String(), nullable=True),
        sa.Column("arrival_station", sa.String(), nullable=True),
        sa.Column("destination_id", sa.String(), nullable=True),
        sa.Column("distance_km", sa.Float(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_route_route_code", "route", ["route_code"])
    op.create_index("ix_route_destination_id", "route", ["destination_id"])

    op.create_table(
        "schedule",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("route_id", sa.String(), nullable=False),
        sa.Column("operator_id", sa.String(), nullable=True),
        sa.Column("schedule_code", sa.String(), nullable=True),
        sa.Column("departure_time", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_schedule_route_id", "schedule", ["route_id"])
    op.create_index("ix_schedule_operator_id", "schedule", ["operator_id"])

    op.create_table(
        "user",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("full_name", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=False, server_default="staff"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_user_username", "user", ["username"], unique=True)

    audit_columns = []
    for edge in (
        "passenger_drop", "boarding_permit", "payment", "departure_order",
        "departed", "exited", "cancelled",
    ):
        audit_columns += [
            sa.Column(f"{edge}_time", sa.DateTime(), nullable=True),
            sa.Column(f"{edge}_by", sa.String(), nullable=True),
            sa.Column(f"{edge}_by_name", sa.String(), nullable=True),
        ]

    op.create_table(
        "dispatch_record",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("vehicle_id", sa.String(), nullable=False),
        sa.Column("driver_id", sa.String(), nullable=True),
        sa.Column("route_id", sa.String(), nullable=True),
        sa.Column("operator_id", sa.String(), nullable=True),
        sa.Column("schedule_id", sa.String(), nullable=True),
        sa.Column("entry_shift_id", sa.String(), nullable=True),
        sa.Column("current_status", sa.String(), nullable=False, server_default="entered"),
        sa.Column("entry_time", sa.DateTime(), nullable=False),
        sa.Column("exit_time", sa.DateTime(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("passengers_arrived", sa.Integer(), nullable=True),
        sa.Column("passengers_departing", sa.Integer(), nullable=True),
        sa.Column("transport_order_code", sa.String(), nullable=True),
        sa.Column("seat_count", sa.Integer(), nullable=True),
        sa.Column("bed_count", sa.Integer(), nullable=True),
        sa.Column("hh_ticket_count", sa.Integer(), nullable=True),
        sa.Column("hh_percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("permit_status", sa.String(), nullable=True),
        sa.Column("rejection_reason", sa.String(), nullable=True),
        sa.Column("planned_departure_time", sa.DateTime(), nullable=True),
        sa.Column("replacement_vehicle_id", sa.String(), nullable=True),
        sa.Column("payment_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("payment_method", sa.String(), nullable=True),
        sa.Column("invoice_number", sa.String(), nullable=True),
        sa.Column("service_charges_total", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("cancellation_reason", sa.String(), nullable=True),
        sa.Column("previous_status", sa.String(), nullable=True),
        sa.Column("entry_by", sa.String(), nullable=True),
        sa.Column("entry_by_name", sa.String(), nullable=True),
        *audit_columns,
        sa.Column("vehicle_plate_number", sa.String(), nullable=True),
        sa.Column("vehicle_seat_count", sa.Integer(), nullable=True),
        sa.Column("vehicle_operator_id", sa.String(), nullable=True),
        sa.Column("vehicle_operator_name", sa.String(), nullable=True),
        sa.Column("vehicle_operator_code", sa.String(), nullable=True),
        sa.Column("driver_full_name", sa.String(), nullable=True),
        sa.Column("route_name", sa.String(), nullable=True),
        sa.Column("route_type", sa.String(), nullable=True),
        sa.Column("route_code", sa.String(), nullable=True),
        sa.Column("route_destination_id", sa.String(), nullable=True),
        sa.Column("route_destination_name", sa.String(), nullable=True),
        sa.Column("route_destination_code", sa.String(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    for column in ("vehicle_id", "driver_id", "route_id", "operator_id", "current_status", "entry_time"):
        op.create_index(f"ix_dispatch_record_{column}", "dispatch_record", [column])
    op.create_index("ix_dispatch_record_status_entry", "dispatch_record", ["current_status", "entry_time"])
    op.create_index(
        "uq_dispatch_record_active_vehicle",
        "dispatch_record",
        ["vehicle_id"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_VEHICLE_PREDICATE),
        sqlite_where=sa.text(ACTIVE_VEHICLE_PREDICATE),
    )

    op.create_table(
        "service_charge",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("dispatch_record_id", sa.String(), sa.ForeignKey("dispatch_record.id"), nullable=False),
        sa.Column("service_code", sa.String(), nullable=True),
        sa.Column("service_name", sa.String(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_service_charge_dispatch_record_id", "service_charge", ["dispatch_record_id"])


def downgrade() -> None:
    op.drop_index("ix_service_charge_dispatch_record_id", table_name="service_charge")
    op.drop_table("service_charge")
    op.drop_index("uq_dispatch_record_active_vehicle", table_name="dispatch_record")
    op.drop_index("ix_dispatch_record_status_entry", table_name="dispatch_record")
    for column in ("vehicle_id", "driver_id", "route_id", "operator_id", "current_status", "entry_time"):
        op.drop_index(f"ix_dispatch_record_{column}", table_name="dispatch_record")
    op.drop_table("dispatch_record")
    op.drop_index("ix_user_username", table_name="user")
    op.drop_table("user")
    op.drop_table("schedule")
    op.drop_table("route")
    op.drop_table("location")
    op.drop_table("driver")
    op.drop_table("vehicle")
    op.drop_table("operator")
