from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import translate_db_errors
from app.models.dispatch import TERMINAL_STATUSES, DispatchRecord

logger = logging.getLogger(__name__)

_TERMINAL_VALUES = [status.value for status in TERMINAL_STATUSES]


def _active_clause():
    return (
        DispatchRecord.exit_time.is_(None),
        DispatchRecord.current_status.not_in(_TERMINAL_VALUES),
    )


class VehicleAvailabilityResolver:
    """Answers whether a vehicle currently has an open dispatch record.

    Read-only. A store failure surfaces as DatabaseError; callers must not
    read that as "available".
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def find_active_dispatch(
        self,
        vehicle_id: str,
        exclude_dispatch_id: Optional[str] = None,
    ) -> Optional[DispatchRecord]:
        stmt = select(DispatchRecord).where(DispatchRecord.vehicle_id == vehicle_id, *_active_clause())
        if exclude_dispatch_id:
            stmt = stmt.where(DispatchRecord.id != exclude_dispatch_id)
        with translate_db_errors("find_active_dispatch"):
            result = await self.db.execute(stmt.order_by(DispatchRecord.entry_time.desc()).limit(1))
            return result.scalars().first()

    async def is_vehicle_busy(self, vehicle_id: str, exclude_dispatch_id: Optional[str] = None) -> bool:
        return await self.find_active_dispatch(vehicle_id, exclude_dispatch_id) is not None

    async def list_busy_vehicle_ids(self, vehicle_ids: Optional[Iterable[str]] = None) -> Set[str]:
        stmt = select(DispatchRecord.vehicle_id).where(*_active_clause())
        if vehicle_ids is not None:
            ids: List[str] = list(vehicle_ids)
            if not ids:
                return set()
            stmt = stmt.where(DispatchRecord.vehicle_id.in_(ids))
        with translate_db_errors("list_busy_vehicles"):
            result = await self.db.execute(stmt.distinct())
            return set(result.scalars().all())
