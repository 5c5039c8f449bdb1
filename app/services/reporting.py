from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import CacheKeys, CacheService, CacheTags, CacheTTL
from app.core.clock import to_naive_utc
from app.core.errors import translate_db_errors
from app.models.dispatch import DispatchRecord, DispatchStatus
from app.models.fleet import Driver, Operator, Vehicle
from app.models.route import Route
from app.schemas.reports import (
    RejectedPermitEntry,
    RevenueSummary,
    StationActivityEntry,
    StatusCount,
    VehicleLogEntry,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

D = DispatchRecord

_CENT = Decimal("0.01")

# Display columns prefer the value copied onto the dispatch row and fall back
# to the live join only when that copy is missing. Stale copies are kept.
plate_number_col = func.coalesce(D.vehicle_plate_number, Vehicle.plate_number).label("plate_number")
operator_name_col = func.coalesce(D.vehicle_operator_name, Operator.name).label("operator_name")
driver_name_col = func.coalesce(D.driver_full_name, Driver.full_name).label("driver_name")
route_name_col = func.coalesce(
    D.route_name,
    Route.route_name,
    Route.departure_station + " - " + Route.arrival_station,
).label("route_name")


def _joined(*columns):
    return (
        select(*columns)
        .select_from(D)
        .outerjoin(Vehicle, Vehicle.id == D.vehicle_id)
        .outerjoin(Operator, Operator.id == func.coalesce(D.vehicle_operator_id, Vehicle.operator_id))
        .outerjoin(Driver, Driver.id == D.driver_id)
        .outerjoin(Route, Route.id == D.route_id)
    )


def _as_date(value: Any) -> date:
    # SQLite's DATE() yields text, PostgreSQL a date
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def _as_money(value: Any) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(_CENT)


class ReportingService:
    def __init__(self, db: AsyncSession, cache: CacheService) -> None:
        self.db = db
        self.cache = cache

    async def _cached(self, key: str, loader: Callable[[], Awaitable[T]]) -> T:
        return await self.cache.fetch_with_cache(
            key,
            loader,
            ttl=CacheTTL.SHORT,
            tags=(CacheTags.REPORTS, CacheTags.DISPATCH),
        )

    async def _rows(self, stmt, action: str):
        with translate_db_errors(action):
            result = await self.db.execute(stmt)
            return result.mappings().all()

    async def vehicle_logs(
        self,
        start: datetime,
        end: datetime,
        vehicle_id: Optional[str] = None,
    ) -> List[VehicleLogEntry]:
        start, end = to_naive_utc(start), to_naive_utc(end)

        async def load() -> List[VehicleLogEntry]:
            stmt = _joined(
                D.id,
                D.vehicle_id,
                plate_number_col,
                operator_name_col,
                driver_name_col,
                route_name_col,
                D.current_status,
                D.entry_time,
                D.exit_time,
                D.passengers_arrived,
                D.passengers_departing,
                D.payment_amount,
            ).where(D.entry_time >= start, D.entry_time <= end)
            if vehicle_id:
                stmt = stmt.where(D.vehicle_id == vehicle_id)
            rows = await self._rows(stmt.order_by(D.entry_time.desc()), "report_vehicle_logs")
            return [VehicleLogEntry(**row) for row in rows]

        return await self._cached(CacheKeys.report("vehicle-logs", start, end, vehicle_id), load)

    async def station_activity(self, start: datetime, end: datetime) -> List[StationActivityEntry]:
        start, end = to_naive_utc(start), to_naive_utc(end)

        async def load() -> List[StationActivityEntry]:
            stmt = _joined(
                D.id,
                plate_number_col,
                operator_name_col,
                route_name_col,
                D.current_status,
                D.entry_time,
                D.entry_by_name,
                D.boarding_permit_time,
                D.transport_order_code,
                D.departure_order_time,
                D.exit_time,
            ).where(D.entry_time >= start, D.entry_time <= end)
            rows = await self._rows(stmt.order_by(D.entry_time.desc()), "report_station_activity")
            return [StationActivityEntry(**row) for row in rows]

        return await self._cached(CacheKeys.report("station-activity", start, end), load)

    async def rejected_permits(self, start: datetime, end: datetime) -> List[RejectedPermitEntry]:
        start, end = to_naive_utc(start), to_naive_utc(end)

        async def load() -> List[RejectedPermitEntry]:
            stmt = _joined(
                D.id,
                plate_number_col,
                operator_name_col,
                route_name_col,
                D.entry_time,
                D.boarding_permit_time,
                D.boarding_permit_by_name,
                D.rejection_reason,
            ).where(
                D.permit_status == "rejected",
                D.entry_time >= start,
                D.entry_time <= end,
            )
            rows = await self._rows(stmt.order_by(D.entry_time.desc()), "report_rejected_permits")
            return [RejectedPermitEntry(**row) for row in rows]

        return await self._cached(CacheKeys.report("rejected-permits", start, end), load)

    async def revenue_summary(
        self,
        start: datetime,
        end: datetime,
        operator_id: Optional[str] = None,
    ) -> List[RevenueSummary]:
        """Revenue of departed, paid records per calendar day of entry, oldest first."""
        start, end = to_naive_utc(start), to_naive_utc(end)

        async def load() -> List[RevenueSummary]:
            day = func.date(D.entry_time).label("day")
            stmt = (
                select(
                    day,
                    func.sum(D.payment_amount).label("total_revenue"),
                    func.count(func.distinct(D.vehicle_id)).label("vehicle_count"),
                    func.count(D.id).label("transaction_count"),
                )
                .where(
                    D.current_status == DispatchStatus.DEPARTED.value,
                    D.payment_amount.is_not(None),
                    D.entry_time >= start,
                    D.entry_time <= end,
                )
                .group_by(day)
                .order_by(day)
            )
            if operator_id:
                stmt = stmt.where(or_(D.operator_id == operator_id, D.vehicle_operator_id == operator_id))
            rows = await self._rows(stmt, "report_revenue_summary")
            return [
                RevenueSummary(
                    date=_as_date(row["day"]),
                    total_revenue=_as_money(row["total_revenue"]),
                    vehicle_count=int(row["vehicle_count"]),
                    transaction_count=int(row["transaction_count"]),
                )
                for row in rows
            ]

        return await self._cached(CacheKeys.report("revenue-summary", start, end, operator_id), load)

    async def status_counts(self, start: datetime, end: datetime) -> List[StatusCount]:
        start, end = to_naive_utc(start), to_naive_utc(end)

        async def load() -> List[StatusCount]:
            stmt = (
                select(D.current_status.label("status"), func.count(D.id).label("count"))
                .where(D.entry_time >= start, D.entry_time <= end)
                .group_by(D.current_status)
                .order_by(D.current_status)
            )
            rows = await self._rows(stmt, "report_status_counts")
            return [StatusCount(status=row["status"], count=int(row["count"])) for row in rows]

        return await self._cached(CacheKeys.report("status-counts", start, end), load)
