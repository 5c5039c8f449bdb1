from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

logger = logging.getLogger(__name__)


class DispatchError(Exception):
    """Base class for errors raised by the dispatch core."""
    pass


class InvalidTransitionError(DispatchError):
    """Requested status edge is not in the allowed transition table."""

    def __init__(self, from_status: str, to_status: str, detail: Optional[str] = None) -> None:
        self.from_status = str(getattr(from_status, "value", from_status))
        self.to_status = str(getattr(to_status, "value", to_status))
        message = f"Invalid transition '{self.from_status}' -> '{self.to_status}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class VehicleBusyError(InvalidTransitionError):
    """Vehicle already has an open dispatch record."""

    def __init__(self, vehicle_id: str, active_dispatch_id: Optional[str] = None) -> None:
        self.vehicle_id = vehicle_id
        self.active_dispatch_id = active_dispatch_id
        detail = f"vehicle {vehicle_id} already has an active dispatch"
        if active_dispatch_id:
            detail = f"{detail} ({active_dispatch_id})"
        super().__init__("active", "entered", detail)


class NotFoundError(DispatchError):
    def __init__(self, resource: str, identifier: str) -> None:
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} {identifier} not found")


class DatabaseError(DispatchError):
    """Record store failure. Safe for the caller to retry."""
    pass


class ConcurrentUpdateError(DatabaseError):
    """The record changed between read and write."""
    pass


@contextmanager
def translate_db_errors(action: str) -> Iterator[None]:
    """Re-raise SQLAlchemy failures inside the block as DatabaseError."""
    try:
        yield
    except StaleDataError as exc:
        logger.warning("stale_write", extra={"action": action, "error": str(exc)})
        raise ConcurrentUpdateError(f"{action}: record was modified concurrently") from exc
    except SQLAlchemyError as exc:
        logger.exception("database_error", extra={"action": action, "error": str(exc)})
        raise DatabaseError(f"{action} failed: {exc.__class__.__name__}") from exc
