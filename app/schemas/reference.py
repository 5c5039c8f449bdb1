from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class OperatorCreate(BaseModel):
    name: str = Field(min_length=1)
    code: str = Field(min_length=1)
    phone: Optional[str] = None


class OperatorUpdate(BaseModel):
    name: Optional[str] = None
    code: Optional[str] = None
    phone: Optional[str] = None
    is_active: Optional[bool] = None


class OperatorResponse(BaseModel):
    id: str
    name: str
    code: str
    phone: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class VehicleCreate(BaseModel):
    plate_number: str = Field(min_length=1)
    operator_id: Optional[str] = None
    vehicle_type: Optional[str] = None
    seat_capacity: Optional[int] = Field(default=None, ge=0)
    bed_capacity: Optional[int] = Field(default=None, ge=0)


class VehicleUpdate(BaseModel):
    plate_number: Optional[str] = None
    operator_id: Optional[str] = None
    vehicle_type: Optional[str] = None
    seat_capacity: Optional[int] = Field(default=None, ge=0)
    bed_capacity: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


class VehicleResponse(BaseModel):
    id: str
    plate_number: str
    operator_id: Optional[str] = None
    vehicle_type: Optional[str] = None
    seat_capacity: Optional[int] = None
    bed_capacity: Optional[int] = None
    is_active: bool = True

    model_config = {"from_attributes": True}


class DriverCreate(BaseModel):
    full_name: str = Field(min_length=1)
    operator_id: Optional[str] = None
    phone: Optional[str] = None
    license_number: Optional[str] = None


class DriverUpdate(BaseModel):
    full_name: Optional[str] = None
    operator_id: Optional[str] = None
    phone: Optional[str] = None
    license_number: Optional[str] = None
    is_active: Optional[bool] = None


class DriverResponse(BaseModel):
    id: str
    full_name: str
    operator_id: Optional[str] = None
    phone: Optional[str] = None
    license_number: Optional[str] = None
    is_active: bool = True

    model_config = {"from_attributes": True}


class RouteCreate(BaseModel):
    route_code: str = Field(min_length=1)
    route_name: Optional[str] = None
    route_type: Optional[str] = None
    departure_station: Optional[str] = None
    arrival_station: Optional[str] = None
    destination_id: Optional[str] = None
    distance_km: Optional[float] = Field(default=None, ge=0)


class RouteUpdate(BaseModel):
    route_code: Optional[str] = None
    route_name: Optional[str] = None
    route_type: Optional[str] = None
    departure_station: Optional[str] = None
    arrival_station: Optional[str] = None
    destination_id: Optional[str] = None
    distance_km: Optional[float] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


class RouteResponse(BaseModel):
    id: str
    route_code: str
    route_name: Optional[str] = None
    route_type: Optional[str] = None
    departure_station: Optional[str] = None
    arrival_station: Optional[str] = None
    destination_id: Optional[str] = None
    distance_km: Optional[float] = None
    is_active: bool = True

    model_config = {"from_attributes": True}


class LocationResponse(BaseModel):
    id: str
    name: str
    code: Optional[str] = None
    province: Optional[str] = None

    model_config = {"from_attributes": True}


class ScheduleResponse(BaseModel):
    id: str
    route_id: str
    operator_id: Optional[str] = None
    schedule_code: Optional[str] = None
    departure_time: str
    is_active: bool = True

    model_config = {"from_attributes": True}
