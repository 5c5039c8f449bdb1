"""SQLAlchemy models for the station dispatch backend."""

from app.models.dispatch import DispatchRecord, DispatchStatus, ServiceCharge  # noqa: F401
from app.models.fleet import Driver, Operator, Vehicle  # noqa: F401
from app.models.route import Location, Route, Schedule  # noqa: F401
from app.models.user import User  # noqa: F401
