"""Flattened display fields on dispatch records.

Dispatch rows carry point-in-time copies of vehicle, operator, driver and route
display fields so list and report reads need no joins. The copies are written
on create/update, by the entity sync functions below when a source entity is
edited, and by the batch migration. Reads never refresh them.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Type

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import translate_db_errors
from app.models.dispatch import DispatchRecord
from app.models.fleet import Driver, Operator, Vehicle
from app.models.route import Location, Route
from app.models.user import User

logger = logging.getLogger(__name__)

# (actor id column, actor name column) for every audited edge
AUDIT_FIELDS = (
    ("entry_by", "entry_by_name"),
    ("passenger_drop_by", "passenger_drop_by_name"),
    ("boarding_permit_by", "boarding_permit_by_name"),
    ("payment_by", "payment_by_name"),
    ("departure_order_by", "departure_order_by_name"),
    ("departed_by", "departed_by_name"),
    ("exited_by", "exited_by_name"),
    ("cancelled_by", "cancelled_by_name"),
)


@dataclass
class DenormalizationLookups:
    """Already-fetched id -> entity maps shared across many records."""

    vehicles: Dict[str, Vehicle] = field(default_factory=dict)
    operators: Dict[str, Operator] = field(default_factory=dict)
    drivers: Dict[str, Driver] = field(default_factory=dict)
    routes: Dict[str, Route] = field(default_factory=dict)
    locations: Dict[str, Location] = field(default_factory=dict)
    users: Dict[str, User] = field(default_factory=dict)
    # Tables whose lookup query failed; their maps are empty, not authoritative.
    failed: Set[str] = field(default_factory=set)

    def user_name(self, user_id: Optional[str]) -> Optional[str]:
        user = self.users.get(user_id) if user_id else None
        if user is None:
            return None
        return user.full_name or user.username


def vehicle_fields(vehicle: Optional[Vehicle], operator: Optional[Operator]) -> Dict[str, Any]:
    return {
        "vehicle_plate_number": vehicle.plate_number if vehicle else None,
        "vehicle_seat_count": vehicle.seat_capacity if vehicle else None,
        "vehicle_operator_id": vehicle.operator_id if vehicle else None,
        "vehicle_operator_name": operator.name if operator else None,
        "vehicle_operator_code": operator.code if operator else None,
    }


def route_fields(route: Optional[Route], destination: Optional[Location]) -> Dict[str, Any]:
    return {
        "route_name": route.display_name if route else None,
        "route_type": route.route_type if route else None,
        "route_code": route.route_code if route else None,
        "route_destination_id": route.destination_id if route else None,
        "route_destination_name": destination.name if destination else None,
        "route_destination_code": destination.code if destination else None,
    }


def denormalize(record: DispatchRecord, lookups: DenormalizationLookups) -> DispatchRecord:
    """Copy display fields from ``lookups`` onto ``record``.

    Missing references leave the matching display fields empty; nothing else
    on the record is touched.
    """
    vehicle = lookups.vehicles.get(record.vehicle_id) if record.vehicle_id else None
    operator_id = vehicle.operator_id if vehicle else None
    operator = lookups.operators.get(operator_id) if operator_id else None
    for name, value in vehicle_fields(vehicle, operator).items():
        setattr(record, name, value)

    driver = lookups.drivers.get(record.driver_id) if record.driver_id else None
    record.driver_full_name = driver.full_name if driver else None

    route = lookups.routes.get(record.route_id) if record.route_id else None
    destination = lookups.locations.get(route.destination_id) if route and route.destination_id else None
    for name, value in route_fields(route, destination).items():
        setattr(record, name, value)
    return record


def fill_actor_names(record: DispatchRecord, lookups: DenormalizationLookups) -> DispatchRecord:
    """Backfill missing actor display names; names already stamped are kept."""
    for id_field, name_field in AUDIT_FIELDS:
        actor_id = getattr(record, id_field)
        if actor_id and not getattr(record, name_field):
            setattr(record, name_field, lookups.user_name(actor_id))
    return record


def _unresolvable(ref_id: Optional[str], known: Optional[Dict[str, Any]]) -> bool:
    return known is not None and ref_id not in known


def is_denormalized(record: DispatchRecord, lookups: Optional[DenormalizationLookups] = None) -> bool:
    """Whether ``record`` already carries every display field it can get.

    With ``lookups``, a reference to a row that does not exist has nothing to
    copy and does not hold the record back.
    """
    vehicles = lookups.vehicles if lookups is not None else None
    drivers = lookups.drivers if lookups is not None else None
    if not record.vehicle_plate_number and not _unresolvable(record.vehicle_id, vehicles):
        return False
    if record.driver_id and not record.driver_full_name and not _unresolvable(record.driver_id, drivers):
        return False
    return True


async def _fetch_map(
    session: AsyncSession,
    model: Type[Any],
    ids: Iterable[Optional[str]],
    lookups: DenormalizationLookups,
) -> Dict[str, Any]:
    wanted = {value for value in ids if value}
    if not wanted:
        return {}
    # A failed statement aborts the whole transaction on PostgreSQL; the
    # savepoint confines it to this lookup so the caller can still commit.
    connection = await session.connection()
    try:
        async with connection.begin_nested():
            result = await session.execute(select(model).where(model.id.in_(wanted)))
            rows = result.scalars().all()
    except SQLAlchemyError as exc:
        logger.warning(
            "denormalization_lookup_failed",
            extra={"entity": model.__tablename__, "count": len(wanted), "error": str(exc)},
        )
        lookups.failed.add(model.__tablename__)
        return {}
    return {row.id: row for row in rows}


async def load_lookups(
    session: AsyncSession,
    records: Sequence[DispatchRecord],
    include_users: bool = True,
) -> DenormalizationLookups:
    """Fetch every entity referenced by ``records`` with one query per entity type.

    A failed lookup leaves its map empty and is noted in ``failed``; the
    display fields it would have filled stay empty.
    """
    lookups = DenormalizationLookups()
    # Pending edits on the records must not be flushed by these lookups.
    with session.no_autoflush:
        lookups.vehicles = await _fetch_map(session, Vehicle, (r.vehicle_id for r in records), lookups)
        lookups.drivers = await _fetch_map(session, Driver, (r.driver_id for r in records), lookups)
        lookups.routes = await _fetch_map(session, Route, (r.route_id for r in records), lookups)
        lookups.operators = await _fetch_map(
            session, Operator, (v.operator_id for v in lookups.vehicles.values()), lookups
        )
        lookups.locations = await _fetch_map(
            session, Location, (r.destination_id for r in lookups.routes.values()), lookups
        )
        if include_users:
            lookups.users = await _fetch_map(
                session,
                User,
                (getattr(r, id_field) for r in records for id_field, _ in AUDIT_FIELDS),
                lookups,
            )
    return lookups


async def refresh_denormalized_fields(session: AsyncSession, record: DispatchRecord) -> DispatchRecord:
    lookups = await load_lookups(session, [record], include_users=False)
    return denormalize(record, lookups)


# -- propagation of source-entity edits -----------------------------------

_dispatch = DispatchRecord.__table__


async def _bulk_update(session: AsyncSession, where, values: Dict[str, Any], action: str) -> int:
    stmt = update(_dispatch).where(where).values(**values, version=_dispatch.c.version + 1)
    with translate_db_errors(action):
        result = await session.execute(stmt)
    return result.rowcount or 0


async def sync_vehicle_changes(session: AsyncSession, vehicle_id: str) -> int:
    vehicle = await session.get(Vehicle, vehicle_id)
    if vehicle is None:
        return 0
    operator = await session.get(Operator, vehicle.operator_id) if vehicle.operator_id else None
    updated = await _bulk_update(
        session,
        _dispatch.c.vehicle_id == vehicle_id,
        vehicle_fields(vehicle, operator),
        "sync_vehicle_changes",
    )
    logger.info("denormalization_sync", extra={"entity": "vehicle", "entity_id": vehicle_id, "updated": updated})
    return updated


async def sync_driver_changes(session: AsyncSession, driver_id: str) -> int:
    driver = await session.get(Driver, driver_id)
    if driver is None:
        return 0
    updated = await _bulk_update(
        session,
        _dispatch.c.driver_id == driver_id,
        {"driver_full_name": driver.full_name},
        "sync_driver_changes",
    )
    logger.info("denormalization_sync", extra={"entity": "driver", "entity_id": driver_id, "updated": updated})
    return updated


async def sync_route_changes(session: AsyncSession, route_id: str) -> int:
    route = await session.get(Route, route_id)
    if route is None:
        return 0
    destination = await session.get(Location, route.destination_id) if route.destination_id else None
    updated = await _bulk_update(
        session,
        _dispatch.c.route_id == route_id,
        route_fields(route, destination),
        "sync_route_changes",
    )
    logger.info("denormalization_sync", extra={"entity": "route", "entity_id": route_id, "updated": updated})
    return updated


async def sync_operator_changes(session: AsyncSession, operator_id: str) -> int:
    operator = await session.get(Operator, operator_id)
    if operator is None:
        return 0
    updated = await _bulk_update(
        session,
        _dispatch.c.vehicle_operator_id == operator_id,
        {"vehicle_operator_name": operator.name, "vehicle_operator_code": operator.code},
        "sync_operator_changes",
    )
    logger.info("denormalization_sync", extra={"entity": "operator", "entity_id": operator_id, "updated": updated})
    return updated


# -- batch migration ------------------------------------------------------


@dataclass
class MigrationStats:
    total: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    batches: int = 0
    duration_seconds: float = 0.0
    failed_ids: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.failed == 0


async def _migrate_record(
    session_factory: async_sessionmaker,
    record: DispatchRecord,
    lookups: DenormalizationLookups,
) -> str:
    if is_denormalized(record):
        return "skipped"
    if lookups.failed:
        logger.error(
            "denormalization_record_failed",
            extra={"dispatch_id": record.id, "error": "lookups unavailable", "entities": sorted(lookups.failed)},
        )
        return "failed"
    if is_denormalized(record, lookups):
        return "skipped"
    try:
        async with session_factory() as session:
            current = await session.get(DispatchRecord, record.id)
            if current is None:
                return "skipped"
            denormalize(current, lookups)
            fill_actor_names(current, lookups)
            await session.commit()
    except Exception as exc:
        logger.exception("denormalization_record_failed", extra={"dispatch_id": record.id, "error": str(exc)})
        return "failed"
    return "processed"


async def run_denormalization_migration(
    session_factory: async_sessionmaker,
    batch_size: int = 50,
) -> MigrationStats:
    """Backfill display fields on every dispatch record.

    Referenced entities are loaded once up front. Records are then written in
    fixed-size batches, concurrently within a batch, each in its own session
    so one failing record does not abort the others. Records that already
    carry their display fields are skipped, which makes re-runs no-ops.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    started = time.perf_counter()
    stats = MigrationStats()

    async with session_factory() as session:
        with translate_db_errors("load_dispatch_records"):
            result = await session.execute(select(DispatchRecord).order_by(DispatchRecord.entry_time, DispatchRecord.id))
            records = list(result.scalars().all())
            lookups = await load_lookups(session, records)

    stats.total = len(records)
    logger.info("denormalization_migration_started", extra={"total": stats.total, "batch_size": batch_size})

    for offset in range(0, len(records), batch_size):
        batch = records[offset:offset + batch_size]
        outcomes = await asyncio.gather(*(_migrate_record(session_factory, record, lookups) for record in batch))
        stats.batches += 1
        for record, outcome in zip(batch, outcomes):
            if outcome == "processed":
                stats.processed += 1
            elif outcome == "skipped":
                stats.skipped += 1
            else:
                stats.failed += 1
                stats.failed_ids.append(record.id)
        logger.info(
            "denormalization_batch",
            extra={"batch": stats.batches, "size": len(batch), "processed": stats.processed, "failed": stats.failed},
        )

    stats.duration_seconds = time.perf_counter() - started
    logger.info(
        "denormalization_migration_finished",
        extra={
            "total": stats.total,
            "processed": stats.processed,
            "skipped": stats.skipped,
            "failed": stats.failed,
            "duration_seconds": round(stats.duration_seconds, 3),
        },
    )
    return stats
