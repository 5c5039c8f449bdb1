import enum

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    func,
    text,
)
from app.models.base import Base, new_id


class DispatchStatus(str, enum.Enum):
    ENTERED = "entered"
    PASSENGERS_DROPPED = "passengers_dropped"
    PERMIT_ISSUED = "permit_issued"
    PERMIT_REJECTED = "permit_rejected"
    PAID = "paid"
    DEPARTURE_ORDERED = "departure_ordered"
    DEPARTED = "departed"
    EXITED = "exited"
    CANCELLED = "cancelled"


# A record in one of these states never blocks its vehicle.
TERMINAL_STATUSES = frozenset(
    {
        DispatchStatus.DEPARTED,
        DispatchStatus.EXITED,
        DispatchStatus.CANCELLED,
        DispatchStatus.PERMIT_REJECTED,
    }
)

# exit_time is set exactly when the record is in one of these states.
EXIT_STATUSES = frozenset({DispatchStatus.DEPARTED, DispatchStatus.EXITED})

_terminal_sql = ", ".join(f"'{status.value}'" for status in sorted(TERMINAL_STATUSES, key=lambda s: s.value))
ACTIVE_VEHICLE_PREDICATE = f"exit_time IS NULL AND current_status NOT IN ({_terminal_sql})"


class DispatchRecord(Base):
    __tablename__ = "dispatch_record"
    __table_args__ = (
        Index(
            "uq_dispatch_record_active_vehicle",
            "vehicle_id",
            unique=True,
            postgresql_where=text(ACTIVE_VEHICLE_PREDICATE),
            sqlite_where=text(ACTIVE_VEHICLE_PREDICATE),
        ),
        Index("ix_dispatch_record_status_entry", "current_status", "entry_time"),
    )

    id = Column(String, primary_key=True, default=new_id)

    # Non-owning references; the referenced rows may be missing.
    vehicle_id = Column(String, nullable=False, index=True)
    driver_id = Column(String, nullable=True, index=True)
    route_id = Column(String, nullable=True, index=True)
    operator_id = Column(String, nullable=True, index=True)
    schedule_id = Column(String, nullable=True)
    entry_shift_id = Column(String, nullable=True)

    current_status = Column(String, nullable=False, default=DispatchStatus.ENTERED.value, index=True)
    entry_time = Column(DateTime, nullable=False, index=True)
    exit_time = Column(DateTime, nullable=True)
    notes = Column(String, nullable=True)

    passengers_arrived = Column(Integer, nullable=True)
    passengers_departing = Column(Integer, nullable=True)
    transport_order_code = Column(String, nullable=True)
    seat_count = Column(Integer, nullable=True)
    bed_count = Column(Integer, nullable=True)
    hh_ticket_count = Column(Integer, nullable=True)
    hh_percentage = Column(Numeric(5, 2), nullable=True)
    permit_status = Column(String, nullable=True)
    rejection_reason = Column(String, nullable=True)
    planned_departure_time = Column(DateTime, nullable=True)
    replacement_vehicle_id = Column(String, nullable=True)
    payment_amount = Column(Numeric(12, 2), nullable=True)
    payment_method = Column(String, nullable=True)
    invoice_number = Column(String, nullable=True)
    service_charges_total = Column(Numeric(12, 2), nullable=False, default=0)
    cancellation_reason = Column(String, nullable=True)
    previous_status = Column(String, nullable=True)

    # Audit trail: actor id, actor display name at the time, and when.
    entry_by = Column(String, nullable=True)
    entry_by_name = Column(String, nullable=True)
    passenger_drop_time = Column(DateTime, nullable=True)
    passenger_drop_by = Column(String, nullable=True)
    passenger_drop_by_name = Column(String, nullable=True)
    boarding_permit_time = Column(DateTime, nullable=True)
    boarding_permit_by = Column(String, nullable=True)
    boarding_permit_by_name = Column(String, nullable=True)
    payment_time = Column(DateTime, nullable=True)
    payment_by = Column(String, nullable=True)
    payment_by_name = Column(String, nullable=True)
    departure_order_time = Column(DateTime, nullable=True)
    departure_order_by = Column(String, nullable=True)
    departure_order_by_name = Column(String, nullable=True)
    departed_time = Column(DateTime, nullable=True)
    departed_by = Column(String, nullable=True)
    departed_by_name = Column(String, nullable=True)
    exited_time = Column(DateTime, nullable=True)
    exited_by = Column(String, nullable=True)
    exited_by_name = Column(String, nullable=True)
    cancelled_time = Column(DateTime, nullable=True)
    cancelled_by = Column(String, nullable=True)
    cancelled_by_name = Column(String, nullable=True)

    # Point-in-time copies of referenced entities, refreshed only on write.
    vehicle_plate_number = Column(String, nullable=True)
    vehicle_seat_count = Column(Integer, nullable=True)
    vehicle_operator_id = Column(String, nullable=True)
    vehicle_operator_name = Column(String, nullable=True)
    vehicle_operator_code = Column(String, nullable=True)
    driver_full_name = Column(String, nullable=True)
    route_name = Column(String, nullable=True)
    route_type = Column(String, nullable=True)
    route_code = Column(String, nullable=True)
    route_destination_id = Column(String, nullable=True)
    route_destination_name = Column(String, nullable=True)
    route_destination_code = Column(String, nullable=True)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}

    @property
    def status(self) -> DispatchStatus:
        return DispatchStatus(self.current_status)


class ServiceCharge(Base):
    __tablename__ = "service_charge"

    id = Column(String, primary_key=True, default=new_id)
    dispatch_record_id = Column(String, ForeignKey("dispatch_record.id"), nullable=False, index=True)
    service_code = Column(String, nullable=True)
    service_name = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(12, 2), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    created_by = Column(String, nullable=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
