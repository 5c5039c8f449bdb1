from sqlalchemy import Boolean, Column, DateTime, Integer, String, func

from app.models.base import Base, new_id


class Operator(Base):
    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    code = Column(String, nullable=False, index=True)
    phone = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())


class Vehicle(Base):
    id = Column(String, primary_key=True, default=new_id)
    # Operator references are not enforced; a vehicle may outlive its operator row.
    operator_id = Column(String, nullable=True, index=True)
    plate_number = Column(String, nullable=False, index=True)
    vehicle_type = Column(String, nullable=True)
    seat_capacity = Column(Integer, nullable=True)
    bed_capacity = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())


class Driver(Base):
    id = Column(String, primary_key=True, default=new_id)
    operator_id = Column(String, nullable=True, index=True)
    full_name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    license_number = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())
