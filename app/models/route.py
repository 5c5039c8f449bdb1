from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, Float, String, func

from app.models.base import Base, new_id


class Location(Base):
    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    code = Column(String, nullable=True, index=True)
    province = Column(String, nullable=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())


class Route(Base):
    id = Column(String, primary_key=True, default=new_id)
    route_code = Column(String, nullable=False, index=True)
    route_name = Column(String, nullable=True)
    route_type = Column(String, nullable=True)
    departure_station = Column(String, nullable=True)
    arrival_station = Column(String, nullable=True)
    destination_id = Column(String, nullable=True, index=True)
    distance_km = Column(Float, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    @property
    def display_name(self) -> Optional[str]:
        if self.route_name:
            return self.route_name
        if self.departure_station or self.arrival_station:
            return f"{self.departure_station or ''} - {self.arrival_station or ''}".strip(" -")
        return None


class Schedule(Base):
    id = Column(String, primary_key=True, default=new_id)
    route_id = Column(String, nullable=False, index=True)
    operator_id = Column(String, nullable=True, index=True)
    schedule_code = Column(String, nullable=True)
    departure_time = Column(String, nullable=False)  # "HH:MM" local station time
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
