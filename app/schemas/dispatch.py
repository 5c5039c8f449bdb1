from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from app.core.clock import to_naive_utc
from app.models.dispatch import DispatchStatus


class DispatchCreate(BaseModel):
    vehicle_id: str = Field(min_length=1)
    driver_id: Optional[str] = None
    route_id: Optional[str] = None
    operator_id: Optional[str] = None
    schedule_id: Optional[str] = None
    entry_shift_id: Optional[str] = None
    entry_time: Optional[datetime] = Field(default=None, description="Defaults to the time of the request")
    notes: Optional[str] = None


class DispatchUpdate(BaseModel):
    """Entry details that stay editable until a permit decision is made."""

    vehicle_id: Optional[str] = None
    driver_id: Optional[str] = None
    route_id: Optional[str] = None
    entry_time: Optional[datetime] = None
    notes: Optional[str] = None


class TransitionRequest(BaseModel):
    target_status: DispatchStatus
    payload: Dict[str, Any] = Field(default_factory=dict)


# Edge payloads, one per target status.


class PassengerDropPayload(BaseModel):
    passengers_arrived: Optional[int] = Field(default=None, ge=0, le=100)
    route_id: Optional[str] = None


class PermitIssuePayload(BaseModel):
    transport_order_code: str = Field(min_length=1)
    planned_departure_time: Optional[datetime] = None
    seat_count: Optional[int] = Field(default=None, ge=0)
    bed_count: Optional[int] = Field(default=None, ge=0)
    hh_ticket_count: Optional[int] = Field(default=None, ge=0)
    hh_percentage: Optional[Decimal] = Field(default=None, ge=0, le=100)
    route_id: Optional[str] = None
    schedule_id: Optional[str] = None
    replacement_vehicle_id: Optional[str] = None


class PermitRejectionPayload(BaseModel):
    rejection_reason: str = Field(min_length=1)
    transport_order_code: Optional[str] = None


class PaymentPayload(BaseModel):
    payment_amount: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    payment_method: Literal["cash", "transfer", "card"] = "cash"
    invoice_number: Optional[str] = None


class DepartureOrderPayload(BaseModel):
    passengers_departing: Optional[int] = Field(default=None, ge=0, le=100)


class DeparturePayload(BaseModel):
    exit_time: Optional[datetime] = None
    passengers_departing: Optional[int] = Field(default=None, ge=0, le=100)

    @field_validator("exit_time")
    @classmethod
    def validate_exit_after_entry(cls, v: Optional[datetime], info: ValidationInfo) -> Optional[datetime]:
        """Reject an exit earlier than the record's entry, when the entry is known."""
        entry_time = (info.context or {}).get("entry_time")
        if v is not None and entry_time is not None and to_naive_utc(v) < entry_time:
            raise ValueError(f"exit_time {v.isoformat()} is earlier than entry_time {entry_time.isoformat()}")
        return v


class ExitPayload(BaseModel):
    pass


class CancelPayload(BaseModel):
    reason: Optional[str] = None


class DispatchResponse(BaseModel):
    id: str
    vehicle_id: str
    driver_id: Optional[str] = None
    route_id: Optional[str] = None
    operator_id: Optional[str] = None
    schedule_id: Optional[str] = None
    entry_shift_id: Optional[str] = None

    current_status: DispatchStatus
    entry_time: datetime
    exit_time: Optional[datetime] = None
    notes: Optional[str] = None

    passengers_arrived: Optional[int] = None
    passengers_departing: Optional[int] = None
    transport_order_code: Optional[str] = None
    seat_count: Optional[int] = None
    bed_count: Optional[int] = None
    hh_ticket_count: Optional[int] = None
    hh_percentage: Optional[Decimal] = None
    permit_status: Optional[str] = None
    rejection_reason: Optional[str] = None
    planned_departure_time: Optional[datetime] = None
    replacement_vehicle_id: Optional[str] = None
    payment_amount: Optional[Decimal] = None
    payment_method: Optional[str] = None
    invoice_number: Optional[str] = None
    service_charges_total: Decimal = Decimal("0")
    cancellation_reason: Optional[str] = None
    previous_status: Optional[str] = None

    entry_by: Optional[str] = None
    entry_by_name: Optional[str] = None
    passenger_drop_time: Optional[datetime] = None
    passenger_drop_by: Optional[str] = None
    passenger_drop_by_name: Optional[str] = None
    boarding_permit_time: Optional[datetime] = None
    boarding_permit_by: Optional[str] = None
    boarding_permit_by_name: Optional[str] = None
    payment_time: Optional[datetime] = None
    payment_by: Optional[str] = None
    payment_by_name: Optional[str] = None
    departure_order_time: Optional[datetime] = None
    departure_order_by: Optional[str] = None
    departure_order_by_name: Optional[str] = None
    departed_time: Optional[datetime] = None
    departed_by: Optional[str] = None
    departed_by_name: Optional[str] = None
    exited_time: Optional[datetime] = None
    exited_by: Optional[str] = None
    exited_by_name: Optional[str] = None
    cancelled_time: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancelled_by_name: Optional[str] = None

    vehicle_plate_number: Optional[str] = None
    vehicle_seat_count: Optional[int] = None
    vehicle_operator_id: Optional[str] = None
    vehicle_operator_name: Optional[str] = None
    vehicle_operator_code: Optional[str] = None
    driver_full_name: Optional[str] = None
    route_name: Optional[str] = None
    route_type: Optional[str] = None
    route_code: Optional[str] = None
    route_destination_id: Optional[str] = None
    route_destination_name: Optional[str] = None
    route_destination_code: Optional[str] = None

    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class NextStatusesResponse(BaseModel):
    current_status: DispatchStatus
    next_statuses: List[DispatchStatus]


class VehicleBusyResponse(BaseModel):
    vehicle_id: str
    busy: bool
    active_dispatch_id: Optional[str] = None


class ServiceChargeCreate(BaseModel):
    service_name: str = Field(min_length=1)
    service_code: Optional[str] = None
    quantity: int = Field(default=1, ge=1)
    unit_price: Decimal = Field(ge=0, max_digits=12, decimal_places=2)


class ServiceChargeResponse(BaseModel):
    id: str
    dispatch_record_id: str
    service_code: Optional[str] = None
    service_name: str
    quantity: int
    unit_price: Decimal
    total_amount: Decimal
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
