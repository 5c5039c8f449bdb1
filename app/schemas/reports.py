from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class VehicleLogEntry(BaseModel):
    id: str
    vehicle_id: str
    plate_number: Optional[str] = None
    operator_name: Optional[str] = None
    driver_name: Optional[str] = None
    route_name: Optional[str] = None
    current_status: str
    entry_time: datetime
    exit_time: Optional[datetime] = None
    passengers_arrived: Optional[int] = None
    passengers_departing: Optional[int] = None
    payment_amount: Optional[Decimal] = None


class StationActivityEntry(BaseModel):
    id: str
    plate_number: Optional[str] = None
    operator_name: Optional[str] = None
    route_name: Optional[str] = None
    current_status: str
    entry_time: datetime
    entry_by_name: Optional[str] = None
    boarding_permit_time: Optional[datetime] = None
    transport_order_code: Optional[str] = None
    departure_order_time: Optional[datetime] = None
    exit_time: Optional[datetime] = None


class RejectedPermitEntry(BaseModel):
    id: str
    plate_number: Optional[str] = None
    operator_name: Optional[str] = None
    route_name: Optional[str] = None
    entry_time: datetime
    boarding_permit_time: Optional[datetime] = None
    boarding_permit_by_name: Optional[str] = None
    rejection_reason: Optional[str] = None


class RevenueSummary(BaseModel):
    date: date
    total_revenue: Decimal
    vehicle_count: int
    transaction_count: int


class StatusCount(BaseModel):
    status: str
    count: int
