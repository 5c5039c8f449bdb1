from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Mapping, Optional, Union

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import CacheKeys, CacheService, CacheTags, CacheTTL
from app.core.clock import Clock, SystemClock, to_naive_utc
from app.core.errors import (
    DatabaseError,
    InvalidTransitionError,
    NotFoundError,
    VehicleBusyError,
    translate_db_errors,
)
from app.models.base import new_id
from app.models.dispatch import DispatchRecord, DispatchStatus, ServiceCharge
from app.models.user import User
from app.schemas.dispatch import (
    DispatchCreate,
    DispatchResponse,
    DispatchUpdate,
    NextStatusesResponse,
    PermitIssuePayload,
    ServiceChargeCreate,
    ServiceChargeResponse,
    VehicleBusyResponse,
)
from app.services.denormalization import load_lookups, denormalize, refresh_denormalized_fields
from app.services.dispatch_status import (
    EDITABLE_STATUSES,
    Actor,
    allowed_targets,
    apply_transition,
    parse_transition,
    stamp_entry,
)
from app.services.vehicle_availability import VehicleAvailabilityResolver

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")


def _is_active_vehicle_conflict(exc: Optional[BaseException]) -> bool:
    if not isinstance(exc, IntegrityError):
        return False
    message = str(exc.orig)
    return "uq_dispatch_record_active_vehicle" in message or "dispatch_record.vehicle_id" in message


class DispatchService:
    def __init__(self, db: AsyncSession, cache: CacheService, clock: Optional[Clock] = None) -> None:
        self.db = db
        self.cache = cache
        self.clock = clock or SystemClock()
        self.availability = VehicleAvailabilityResolver(db)

    # -- helpers -----------------------------------------------------------

    async def _resolve_actor(self, actor_id: Optional[str]) -> Actor:
        if not actor_id:
            return Actor()
        with translate_db_errors("resolve_actor"):
            user = await self.db.get(User, actor_id)
        if user is None:
            return Actor(id=actor_id)
        return Actor(id=actor_id, name=user.full_name or user.username)

    async def _get_record(self, dispatch_id: str) -> DispatchRecord:
        # Entity syncs rewrite rows behind the identity map.
        with translate_db_errors("get_dispatch"):
            record = await self.db.get(DispatchRecord, dispatch_id, populate_existing=True)
        if record is None:
            raise NotFoundError("Dispatch record", dispatch_id)
        return record

    async def _commit(self, action: str, vehicle_id: Optional[str] = None) -> None:
        try:
            with translate_db_errors(action):
                await self.db.commit()
        except DatabaseError as exc:
            await self.db.rollback()
            # The partial unique index is the last line against two open visits.
            if vehicle_id and _is_active_vehicle_conflict(exc.__cause__):
                raise VehicleBusyError(vehicle_id) from exc.__cause__
            raise

    def _invalidate(self, dispatch_id: str) -> None:
        self.cache.invalidate_by_tag(CacheTags.DISPATCH)
        self.cache.delete(CacheKeys.dispatch(dispatch_id))
        self.cache.invalidate_by_tag(CacheTags.REPORTS)

    async def _ensure_vehicle_free(self, vehicle_id: str, exclude_dispatch_id: Optional[str] = None) -> None:
        active = await self.availability.find_active_dispatch(vehicle_id, exclude_dispatch_id)
        if active is not None:
            raise VehicleBusyError(vehicle_id, active.id)

    # -- writes ------------------------------------------------------------

    async def create_dispatch(self, payload: DispatchCreate, actor_id: Optional[str] = None) -> DispatchResponse:
        await self._ensure_vehicle_free(payload.vehicle_id)

        entry_time = to_naive_utc(payload.entry_time) if payload.entry_time else self.clock.now()
        record = DispatchRecord(
            id=new_id(),
            vehicle_id=payload.vehicle_id,
            driver_id=payload.driver_id,
            route_id=payload.route_id,
            operator_id=payload.operator_id,
            schedule_id=payload.schedule_id,
            entry_shift_id=payload.entry_shift_id,
            notes=payload.notes,
            service_charges_total=Decimal("0"),
        )
        stamp_entry(record, await self._resolve_actor(actor_id), entry_time)

        lookups = await load_lookups(self.db, [record], include_users=False)
        denormalize(record, lookups)
        if record.operator_id is None:
            record.operator_id = record.vehicle_operator_id

        self.db.add(record)
        await self._commit("create_dispatch", vehicle_id=record.vehicle_id)
        await self.db.refresh(record)
        self._invalidate(record.id)

        logger.info(
            "dispatch_created",
            extra={"dispatch_id": record.id, "vehicle_id": record.vehicle_id, "actor_id": actor_id},
        )
        return DispatchResponse.model_validate(record)

    async def transition_dispatch(
        self,
        dispatch_id: str,
        target_status: Union[str, DispatchStatus],
        payload: Union[Mapping[str, Any], BaseModel, None] = None,
        actor_id: Optional[str] = None,
    ) -> DispatchResponse:
        record = await self._get_record(dispatch_id)
        from_status = record.current_status
        target, validated = parse_transition(record, target_status, payload)

        if isinstance(validated, PermitIssuePayload):
            replacement = validated.replacement_vehicle_id
            if replacement and replacement != record.vehicle_id:
                await self._ensure_vehicle_free(replacement, exclude_dispatch_id=record.id)

        actor = await self._resolve_actor(actor_id)
        previous_route_id = record.route_id
        apply_transition(record, target, validated, actor, self.clock.now())
        if record.route_id != previous_route_id:
            await refresh_denormalized_fields(self.db, record)

        await self._commit("transition_dispatch")
        await self.db.refresh(record)
        self._invalidate(record.id)

        logger.info(
            "dispatch_transition",
            extra={
                "dispatch_id": record.id,
                "from_status": from_status,
                "to_status": target.value,
                "actor_id": actor_id,
            },
        )
        return DispatchResponse.model_validate(record)

    async def update_dispatch_entry(
        self,
        dispatch_id: str,
        payload: DispatchUpdate,
        actor_id: Optional[str] = None,
    ) -> DispatchResponse:
        record = await self._get_record(dispatch_id)
        status = record.status
        if status not in EDITABLE_STATUSES:
            raise InvalidTransitionError(status, status, "entry details can no longer be edited")

        changes = payload.model_dump(exclude_unset=True)
        if changes.get("vehicle_id") is None:
            changes.pop("vehicle_id", None)
        if changes.get("entry_time") is None:
            changes.pop("entry_time", None)

        new_vehicle_id = changes.get("vehicle_id")
        if new_vehicle_id and new_vehicle_id != record.vehicle_id:
            await self._ensure_vehicle_free(new_vehicle_id, exclude_dispatch_id=record.id)

        references_changed = False
        for name in ("vehicle_id", "driver_id", "route_id"):
            if name in changes and changes[name] != getattr(record, name):
                setattr(record, name, changes[name])
                references_changed = True
        if "entry_time" in changes:
            record.entry_time = to_naive_utc(changes["entry_time"])
        if "notes" in changes:
            record.notes = changes["notes"]

        if references_changed:
            await refresh_denormalized_fields(self.db, record)

        await self._commit("update_dispatch_entry", vehicle_id=record.vehicle_id)
        await self.db.refresh(record)
        self._invalidate(record.id)

        logger.info(
            "dispatch_entry_updated",
            extra={"dispatch_id": record.id, "fields": sorted(changes), "actor_id": actor_id},
        )
        return DispatchResponse.model_validate(record)

    # -- service charges ---------------------------------------------------

    async def _recompute_charges_total(self, record: DispatchRecord) -> Decimal:
        with translate_db_errors("sum_service_charges"):
            result = await self.db.execute(
                select(ServiceCharge.total_amount).where(ServiceCharge.dispatch_record_id == record.id)
            )
            amounts = [Decimal(str(value)) for value in result.scalars().all()]
        total = sum(amounts, Decimal("0")).quantize(_CENT)
        record.service_charges_total = total
        return total

    def _invalidate_charges(self, dispatch_id: str) -> None:
        self.cache.delete(CacheKeys.service_charges(dispatch_id))
        self.cache.invalidate_by_tag(CacheTags.SERVICE_CHARGES)
        self._invalidate(dispatch_id)

    async def add_service_charge(
        self,
        dispatch_id: str,
        payload: ServiceChargeCreate,
        actor_id: Optional[str] = None,
    ) -> ServiceChargeResponse:
        record = await self._get_record(dispatch_id)
        charge = ServiceCharge(
            id=new_id(),
            dispatch_record_id=record.id,
            service_code=payload.service_code,
            service_name=payload.service_name,
            quantity=payload.quantity,
            unit_price=payload.unit_price,
            total_amount=(payload.unit_price * payload.quantity).quantize(_CENT),
            created_by=actor_id,
        )
        self.db.add(charge)
        with translate_db_errors("add_service_charge"):
            await self.db.flush()
        await self._recompute_charges_total(record)
        await self._commit("add_service_charge")
        await self.db.refresh(charge)
        await self.db.refresh(record)
        self._invalidate_charges(record.id)
        return ServiceChargeResponse.model_validate(charge)

    async def remove_service_charge(self, dispatch_id: str, charge_id: str) -> None:
        record = await self._get_record(dispatch_id)
        with translate_db_errors("get_service_charge"):
            charge = await self.db.get(ServiceCharge, charge_id)
        if charge is None or charge.dispatch_record_id != record.id:
            raise NotFoundError("Service charge", charge_id)
        await self.db.delete(charge)
        with translate_db_errors("remove_service_charge"):
            await self.db.flush()
        await self._recompute_charges_total(record)
        await self._commit("remove_service_charge")
        await self.db.refresh(record)
        self._invalidate_charges(record.id)

    async def list_service_charges(self, dispatch_id: str) -> List[ServiceChargeResponse]:
        async def load() -> List[ServiceChargeResponse]:
            await self._get_record(dispatch_id)
            with translate_db_errors("list_service_charges"):
                result = await self.db.execute(
                    select(ServiceCharge)
                    .where(ServiceCharge.dispatch_record_id == dispatch_id)
                    .order_by(ServiceCharge.created_at, ServiceCharge.id)
                )
                charges = result.scalars().all()
            return [ServiceChargeResponse.model_validate(charge) for charge in charges]

        return await self.cache.fetch_with_cache(
            CacheKeys.service_charges(dispatch_id),
            load,
            ttl=CacheTTL.SHORT,
            tags=(CacheTags.SERVICE_CHARGES, CacheTags.DISPATCH),
        )

    # -- reads -------------------------------------------------------------

    async def get_dispatch(self, dispatch_id: str, force_refresh: bool = False) -> DispatchResponse:
        async def load() -> DispatchResponse:
            return DispatchResponse.model_validate(await self._get_record(dispatch_id))

        return await self.cache.fetch_with_cache(
            CacheKeys.dispatch(dispatch_id),
            load,
            ttl=CacheTTL.SHORT,
            force_refresh=force_refresh,
            tags=(CacheTags.DISPATCH,),
        )

    async def list_dispatch(
        self,
        status: Union[str, DispatchStatus, None] = None,
        vehicle_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[DispatchResponse]:
        status_value = DispatchStatus(status).value if status else None
        start = to_naive_utc(start) if start else None
        end = to_naive_utc(end) if end else None

        async def load() -> List[DispatchResponse]:
            stmt = select(DispatchRecord)
            if status_value:
                stmt = stmt.where(DispatchRecord.current_status == status_value)
            if vehicle_id:
                stmt = stmt.where(DispatchRecord.vehicle_id == vehicle_id)
            if start:
                stmt = stmt.where(DispatchRecord.entry_time >= start)
            if end:
                stmt = stmt.where(DispatchRecord.entry_time <= end)
            with translate_db_errors("list_dispatch"):
                result = await self.db.execute(
                    stmt.order_by(DispatchRecord.entry_time.desc()).execution_options(populate_existing=True)
                )
                records = result.scalars().all()
            return [DispatchResponse.model_validate(record) for record in records]

        return await self.cache.fetch_with_cache(
            CacheKeys.dispatch_list(status_value, vehicle_id, start, end),
            load,
            ttl=CacheTTL.SHORT,
            tags=(CacheTags.DISPATCH,),
        )

    async def next_statuses(self, dispatch_id: str) -> NextStatusesResponse:
        record = await self.get_dispatch(dispatch_id)
        targets = sorted(allowed_targets(record.current_status), key=lambda status: status.value)
        return NextStatusesResponse(current_status=record.current_status, next_statuses=targets)

    async def is_vehicle_busy(self, vehicle_id: str) -> bool:
        return await self.availability.is_vehicle_busy(vehicle_id)

    async def vehicle_busy_status(self, vehicle_id: str) -> VehicleBusyResponse:
        active = await self.availability.find_active_dispatch(vehicle_id)
        return VehicleBusyResponse(
            vehicle_id=vehicle_id,
            busy=active is not None,
            active_dispatch_id=active.id if active else None,
        )
