from sqlalchemy import Boolean, Column, DateTime, String, func

from app.models.base import Base, new_id


class User(Base):
    id = Column(String, primary_key=True, default=new_id)
    username = Column(String, nullable=False, unique=True, index=True)
    full_name = Column(String, nullable=True)
    role = Column(String, nullable=False, default="staff")
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
