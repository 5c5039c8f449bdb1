from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Type

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.cache import CacheKeys, CacheService, CacheTags, CacheTTL
from app.core.errors import NotFoundError, translate_db_errors
from app.models.base import new_id
from app.models.fleet import Driver, Operator, Vehicle
from app.models.route import Location, Route, Schedule
from app.schemas.reference import (
    DriverCreate,
    DriverResponse,
    DriverUpdate,
    LocationResponse,
    OperatorCreate,
    OperatorResponse,
    OperatorUpdate,
    RouteCreate,
    RouteResponse,
    RouteUpdate,
    ScheduleResponse,
    VehicleCreate,
    VehicleResponse,
    VehicleUpdate,
)
from app.services.denormalization import (
    sync_driver_changes,
    sync_operator_changes,
    sync_route_changes,
    sync_vehicle_changes,
)

logger = logging.getLogger(__name__)

SyncFn = Callable[[AsyncSession, str], Awaitable[int]]


class ReferenceDataService:
    """Cached reads and writes for the entities dispatch records point at.

    Edits to vehicles, drivers, routes and operators are pushed into the
    flattened fields of existing dispatch records in the same transaction.
    """

    def __init__(self, db: AsyncSession, cache: CacheService) -> None:
        self.db = db
        self.cache = cache

    # -- generic plumbing ---------------------------------------------------

    async def _list(
        self,
        key: str,
        model: Type[Any],
        schema: Type[BaseModel],
        ttl: int,
        tags: Sequence[str],
        order_by: Any,
        *criteria: Any,
    ) -> List[Any]:
        stmt = select(model)
        if criteria:
            stmt = stmt.where(*criteria)

        async def load() -> List[Any]:
            with translate_db_errors(f"list_{model.__tablename__}"):
                result = await self.db.execute(stmt.order_by(order_by))
                rows = result.scalars().all()
            return [schema.model_validate(row) for row in rows]

        return await self.cache.fetch_with_cache(key, load, ttl=ttl, tags=tags)

    async def _get(self, model: Type[Any], entity_id: str, label: str) -> Any:
        with translate_db_errors(f"get_{model.__tablename__}"):
            row = await self.db.get(model, entity_id)
        if row is None:
            raise NotFoundError(label, entity_id)
        return row

    async def _create(self, model: Type[Any], payload: BaseModel, schema: Type[BaseModel], tag: str) -> Any:
        row = model(id=new_id(), **payload.model_dump())
        self.db.add(row)
        with translate_db_errors(f"create_{model.__tablename__}"):
            await self.db.commit()
        await self.db.refresh(row)
        self.cache.invalidate_by_tag(tag)
        return schema.model_validate(row)

    async def _update(
        self,
        model: Type[Any],
        entity_id: str,
        payload: BaseModel,
        schema: Type[BaseModel],
        tag: str,
        label: str,
        sync: SyncFn,
    ) -> Any:
        row = await self._get(model, entity_id, label)
        for name, value in payload.model_dump(exclude_unset=True).items():
            setattr(row, name, value)
        with translate_db_errors(f"update_{model.__tablename__}"):
            await self.db.flush()
        synced = await sync(self.db, entity_id)
        with translate_db_errors(f"update_{model.__tablename__}"):
            await self.db.commit()
        await self.db.refresh(row)

        self.cache.invalidate_by_tag(tag)
        if synced:
            self.cache.invalidate_by_tag(CacheTags.DISPATCH)
            self.cache.invalidate_by_tag(CacheTags.REPORTS)
        logger.info(
            "reference_entity_updated",
            extra={"entity": model.__tablename__, "entity_id": entity_id, "dispatch_synced": synced},
        )
        return schema.model_validate(row)

    # -- operators ----------------------------------------------------------

    async def list_operators(self) -> List[OperatorResponse]:
        return await self._list(
            CacheKeys.OPERATORS_ALL, Operator, OperatorResponse, CacheTTL.LONG,
            (CacheTags.OPERATORS,), Operator.name,
        )

    async def get_operator(self, operator_id: str) -> OperatorResponse:
        async def load() -> OperatorResponse:
            return OperatorResponse.model_validate(await self._get(Operator, operator_id, "Operator"))

        return await self.cache.fetch_with_cache(
            CacheKeys.operator(operator_id), load, ttl=CacheTTL.LONG, tags=(CacheTags.OPERATORS,)
        )

    async def create_operator(self, payload: OperatorCreate) -> OperatorResponse:
        return await self._create(Operator, payload, OperatorResponse, CacheTags.OPERATORS)

    async def update_operator(self, operator_id: str, payload: OperatorUpdate) -> OperatorResponse:
        return await self._update(
            Operator, operator_id, payload, OperatorResponse, CacheTags.OPERATORS, "Operator", sync_operator_changes
        )

    # -- vehicles -----------------------------------------------------------

    async def list_vehicles(self, operator_id: Optional[str] = None) -> List[VehicleResponse]:
        if operator_id:
            return await self._list(
                CacheKeys.vehicles_by_operator(operator_id), Vehicle, VehicleResponse, CacheTTL.LONG,
                (CacheTags.VEHICLES,), Vehicle.plate_number, Vehicle.operator_id == operator_id,
            )
        return await self._list(
            CacheKeys.VEHICLES_ALL, Vehicle, VehicleResponse, CacheTTL.LONG,
            (CacheTags.VEHICLES,), Vehicle.plate_number,
        )

    async def get_vehicle(self, vehicle_id: str) -> VehicleResponse:
        async def load() -> VehicleResponse:
            return VehicleResponse.model_validate(await self._get(Vehicle, vehicle_id, "Vehicle"))

        return await self.cache.fetch_with_cache(
            CacheKeys.vehicle(vehicle_id), load, ttl=CacheTTL.LONG, tags=(CacheTags.VEHICLES,)
        )

    async def create_vehicle(self, payload: VehicleCreate) -> VehicleResponse:
        return await self._create(Vehicle, payload, VehicleResponse, CacheTags.VEHICLES)

    async def update_vehicle(self, vehicle_id: str, payload: VehicleUpdate) -> VehicleResponse:
        return await self._update(
            Vehicle, vehicle_id, payload, VehicleResponse, CacheTags.VEHICLES, "Vehicle", sync_vehicle_changes
        )

    # -- drivers ------------------------------------------------------------

    async def list_drivers(self) -> List[DriverResponse]:
        return await self._list(
            CacheKeys.DRIVERS_ALL, Driver, DriverResponse, CacheTTL.MEDIUM,
            (CacheTags.DRIVERS,), Driver.full_name,
        )

    async def create_driver(self, payload: DriverCreate) -> DriverResponse:
        return await self._create(Driver, payload, DriverResponse, CacheTags.DRIVERS)

    async def update_driver(self, driver_id: str, payload: DriverUpdate) -> DriverResponse:
        return await self._update(
            Driver, driver_id, payload, DriverResponse, CacheTags.DRIVERS, "Driver", sync_driver_changes
        )

    # -- routes, locations, schedules ---------------------------------------

    async def list_routes(self) -> List[RouteResponse]:
        return await self._list(
            CacheKeys.ROUTES_ALL, Route, RouteResponse, CacheTTL.LONG,
            (CacheTags.ROUTES,), Route.route_code,
        )

    async def create_route(self, payload: RouteCreate) -> RouteResponse:
        return await self._create(Route, payload, RouteResponse, CacheTags.ROUTES)

    async def update_route(self, route_id: str, payload: RouteUpdate) -> RouteResponse:
        return await self._update(
            Route, route_id, payload, RouteResponse, CacheTags.ROUTES, "Route", sync_route_changes
        )

    async def list_locations(self) -> List[LocationResponse]:
        return await self._list(
            CacheKeys.LOCATIONS_ALL, Location, LocationResponse, CacheTTL.STATIC,
            (CacheTags.LOCATIONS, CacheTags.STATIC), Location.name,
        )

    async def list_schedules(self) -> List[ScheduleResponse]:
        return await self._list(
            CacheKeys.SCHEDULES_ALL, Schedule, ScheduleResponse, CacheTTL.MEDIUM,
            (CacheTags.SCHEDULES,), Schedule.departure_time,
        )

    # -- warm-up ------------------------------------------------------------

    async def preload(self) -> None:
        """Warm the cached reference lists, small ones before large ones.

        The lists run one after another; a session serves one query at a time.
        """
        started = time.perf_counter()
        await self.list_operators()
        await self.list_routes()
        await self.list_locations()
        await self.list_schedules()
        logger.info("cache_preload_common", extra={"duration_ms": round((time.perf_counter() - started) * 1000)})

        await self.list_vehicles()
        await self.list_drivers()
        logger.info("cache_preload_complete", extra={"duration_ms": round((time.perf_counter() - started) * 1000)})


async def preload_reference_cache(
    session_factory: async_sessionmaker,
    cache: CacheService,
    timeout: float = 30.0,
) -> bool:
    """Run the warm-up in its own session. Failures are logged and reported as False."""
    try:
        async with session_factory() as session:
            await asyncio.wait_for(ReferenceDataService(session, cache).preload(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("cache_preload_timeout", extra={"timeout_seconds": timeout})
        return False
    except Exception as exc:
        logger.warning("cache_preload_failed", extra={"error": str(exc), "error_type": type(exc).__name__})
        return False
    return True
