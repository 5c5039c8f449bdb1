"""
Tests for DispatchService against a real SQLite store.

Validates:
1. Creation stamps the entry and copies display fields
2. The full lifecycle keeps exit_time coupled to the status
3. A vehicle cannot hold two open dispatch records
4. Writes invalidate cached reads
5. Entry edits re-derive display fields and lock after the permit decision
"""
from datetime import datetime
from decimal import Decimal

import pytest
from pydantic import ValidationError

from app.core.cache import CacheKeys
from app.core.errors import InvalidTransitionError, NotFoundError, VehicleBusyError
from app.models.dispatch import DispatchStatus
from app.schemas.dispatch import DispatchCreate, DispatchUpdate
from app.services.dispatch import DispatchService

S = DispatchStatus


async def _create(service: DispatchService, vehicle_id: str = "veh-1", **fields):
    payload = DispatchCreate(vehicle_id=vehicle_id, driver_id="drv-1", route_id="route-1", **fields)
    return await service.create_dispatch(payload, actor_id="user-1")


async def _walk_to(service: DispatchService, dispatch_id: str, path):
    record = None
    for target, payload in path:
        record = await service.transition_dispatch(dispatch_id, target, payload, actor_id="user-1")
    return record


TO_PAID = [
    (S.PASSENGERS_DROPPED, {"passengers_arrived": 12}),
    (S.PERMIT_ISSUED, {"transport_order_code": "LD-2026-0001"}),
    (S.PAID, {"payment_amount": "150000", "payment_method": "cash"}),
]


@pytest.mark.asyncio
async def test_create_stamps_entry_and_denormalizes(service, clock):
    record = await _create(service)

    assert record.current_status == S.ENTERED
    assert record.entry_time == clock.now()
    assert record.exit_time is None
    assert record.entry_by == "user-1"
    assert record.entry_by_name == "Tran Thi Binh"
    assert record.vehicle_plate_number == "51B-12345"
    assert record.vehicle_seat_count == 45
    assert record.vehicle_operator_name == "Phuong Trang"
    assert record.vehicle_operator_code == "FUTA"
    assert record.driver_full_name == "Nguyen Van An"
    assert record.route_name == "Sai Gon - Da Lat"
    assert record.route_destination_name == "Ben xe Lien tinh Da Lat"
    assert record.operator_id == "op-1", "operator should default to the vehicle's operator"
    assert record.version == 1


@pytest.mark.asyncio
async def test_create_with_dangling_references_still_succeeds(service):
    record = await service.create_dispatch(
        DispatchCreate(vehicle_id="veh-unknown", driver_id="drv-unknown", route_id="route-unknown")
    )
    assert record.current_status == S.ENTERED
    assert record.vehicle_plate_number is None
    assert record.driver_full_name is None
    assert record.route_name is None


@pytest.mark.asyncio
async def test_full_lifecycle(service, clock):
    created = await _create(service)
    await _walk_to(service, created.id, TO_PAID)
    clock.advance(600)
    ordered = await service.transition_dispatch(created.id, S.DEPARTURE_ORDERED, {"passengers_departing": 38})
    assert ordered.exit_time is None

    clock.advance(300)
    departed = await service.transition_dispatch(created.id, S.DEPARTED, actor_id="user-1")
    assert departed.current_status == S.DEPARTED
    assert departed.exit_time == clock.now()
    assert departed.payment_amount == Decimal("150000")
    assert departed.passengers_departing == 38
    assert departed.departed_by_name == "Tran Thi Binh"

    clock.advance(60)
    exited = await service.transition_dispatch(created.id, S.EXITED)
    assert exited.current_status == S.EXITED
    assert exited.exit_time == departed.exit_time, "exit_time is fixed at departure"
    assert exited.version > created.version


@pytest.mark.asyncio
async def test_skipping_states_is_rejected_and_status_kept(service):
    created = await _create(service)

    with pytest.raises(InvalidTransitionError) as exc_info:
        await service.transition_dispatch(created.id, S.DEPARTED)
    assert exc_info.value.from_status == "entered"
    assert exc_info.value.to_status == "departed"

    current = await service.get_dispatch(created.id, force_refresh=True)
    assert current.current_status == S.ENTERED
    assert current.exit_time is None


@pytest.mark.asyncio
async def test_terminal_record_cannot_move(service):
    created = await _create(service)
    await service.transition_dispatch(created.id, S.CANCELLED, {"reason": "Driver absent"})

    for target in S:
        with pytest.raises(InvalidTransitionError):
            await service.transition_dispatch(created.id, target)


@pytest.mark.asyncio
async def test_invalid_payload_leaves_record_unchanged(service):
    created = await _create(service)
    await _walk_to(service, created.id, TO_PAID[:2])

    with pytest.raises(ValidationError):
        await service.transition_dispatch(created.id, S.PAID, {"payment_amount": "-10"})

    current = await service.get_dispatch(created.id, force_refresh=True)
    assert current.current_status == S.PERMIT_ISSUED
    assert current.payment_amount is None


@pytest.mark.asyncio
async def test_illegal_edge_wins_over_bad_payload(service):
    created = await _create(service)
    with pytest.raises(InvalidTransitionError):
        await service.transition_dispatch(created.id, S.PAID, {"payment_amount": "not-a-number"})


@pytest.mark.asyncio
async def test_second_open_record_for_vehicle_is_refused(service):
    first = await _create(service)

    with pytest.raises(VehicleBusyError) as exc_info:
        await _create(service)
    assert exc_info.value.vehicle_id == "veh-1"
    assert exc_info.value.active_dispatch_id == first.id
    assert isinstance(exc_info.value, InvalidTransitionError)

    # Another vehicle is unaffected.
    other = await _create(service, vehicle_id="veh-2")
    assert other.vehicle_plate_number == "51B-67890"


@pytest.mark.asyncio
async def test_vehicle_free_again_after_terminal_states(service):
    first = await _create(service)
    await service.transition_dispatch(first.id, S.CANCELLED)
    second = await _create(service)

    await service.transition_dispatch(second.id, S.PASSENGERS_DROPPED)
    await service.transition_dispatch(second.id, S.PERMIT_REJECTED, {"rejection_reason": "Expired inspection"})
    third = await _create(service)
    assert third.current_status == S.ENTERED
    assert await service.is_vehicle_busy("veh-1")


@pytest.mark.asyncio
async def test_unique_index_backstops_the_busy_check(service, monkeypatch):
    await _create(service)

    async def skip_check(vehicle_id, exclude_dispatch_id=None):
        return None

    monkeypatch.setattr(service, "_ensure_vehicle_free", skip_check)
    with pytest.raises(VehicleBusyError):
        await _create(service)

    # Session is usable after the rollback.
    records = await service.list_dispatch(vehicle_id="veh-1")
    assert len(records) == 1


@pytest.mark.asyncio
async def test_replacement_vehicle_must_be_free(service):
    spare_visit = await _create(service, vehicle_id="veh-2")
    created = await _create(service)
    await service.transition_dispatch(created.id, S.PASSENGERS_DROPPED)

    with pytest.raises(VehicleBusyError):
        await service.transition_dispatch(
            created.id,
            S.PERMIT_ISSUED,
            {"transport_order_code": "LD-2026-0002", "replacement_vehicle_id": "veh-2"},
        )

    await service.transition_dispatch(spare_visit.id, S.CANCELLED)
    issued = await service.transition_dispatch(
        created.id,
        S.PERMIT_ISSUED,
        {"transport_order_code": "LD-2026-0002", "replacement_vehicle_id": "veh-2"},
    )
    assert issued.replacement_vehicle_id == "veh-2"
    assert issued.permit_status == "approved"


@pytest.mark.asyncio
async def test_update_entry_rederives_display_fields(service):
    created = await _create(service)

    updated = await service.update_dispatch_entry(
        created.id,
        DispatchUpdate(route_id="route-2", notes="Swapped to coastal run"),
        actor_id="user-1",
    )
    assert updated.route_id == "route-2"
    assert updated.route_name == "Mien Dong - Nha Trang"
    assert updated.route_code == "SG-NT"
    assert updated.route_destination_name is None
    assert updated.notes == "Swapped to coastal run"
    assert updated.vehicle_plate_number == "51B-12345"


@pytest.mark.asyncio
async def test_update_entry_refused_after_permit(service):
    created = await _create(service)
    await _walk_to(service, created.id, TO_PAID[:2])

    with pytest.raises(InvalidTransitionError):
        await service.update_dispatch_entry(created.id, DispatchUpdate(notes="late edit"))


@pytest.mark.asyncio
async def test_update_entry_to_busy_vehicle_refused(service):
    await _create(service, vehicle_id="veh-2")
    created = await _create(service)
    with pytest.raises(VehicleBusyError):
        await service.update_dispatch_entry(created.id, DispatchUpdate(vehicle_id="veh-2"))


@pytest.mark.asyncio
async def test_writes_invalidate_cached_reads(service, cache):
    created = await _create(service)

    listed = await service.list_dispatch()
    fetched = await service.get_dispatch(created.id)
    assert [r.id for r in listed] == [created.id]
    assert cache.has(CacheKeys.DISPATCH_ALL)
    assert cache.has(CacheKeys.dispatch(created.id))

    await service.transition_dispatch(created.id, S.PASSENGERS_DROPPED)
    assert not cache.has(CacheKeys.DISPATCH_ALL)
    assert not cache.has(CacheKeys.dispatch(created.id))

    refetched = await service.get_dispatch(created.id)
    assert fetched.current_status == S.ENTERED
    assert refetched.current_status == S.PASSENGERS_DROPPED


@pytest.mark.asyncio
async def test_get_missing_record_raises_and_caches_nothing(service, cache):
    with pytest.raises(NotFoundError):
        await service.get_dispatch("missing")
    assert not cache.has(CacheKeys.dispatch("missing"))

    with pytest.raises(NotFoundError):
        await service.transition_dispatch("missing", S.CANCELLED)


@pytest.mark.asyncio
async def test_list_dispatch_filters(service, clock):
    morning = await _create(service, entry_time=datetime(2026, 3, 2, 6, 0))
    await service.transition_dispatch(morning.id, S.CANCELLED)
    noon = await _create(service, vehicle_id="veh-2", entry_time=datetime(2026, 3, 2, 12, 0))

    assert [r.id for r in await service.list_dispatch()] == [noon.id, morning.id]
    assert [r.id for r in await service.list_dispatch(status="cancelled")] == [morning.id]
    assert [r.id for r in await service.list_dispatch(vehicle_id="veh-2")] == [noon.id]
    window = await service.list_dispatch(start=datetime(2026, 3, 2, 6, 0), end=datetime(2026, 3, 2, 11, 59))
    assert [r.id for r in window] == [morning.id]


@pytest.mark.asyncio
async def test_next_statuses(service):
    created = await _create(service)
    response = await service.next_statuses(created.id)
    assert response.current_status == S.ENTERED
    assert response.next_statuses == [S.CANCELLED, S.PASSENGERS_DROPPED]

    await service.transition_dispatch(created.id, S.CANCELLED)
    assert (await service.next_statuses(created.id)).next_statuses == []


@pytest.mark.asyncio
async def test_vehicle_busy_status(service):
    assert not (await service.vehicle_busy_status("veh-1")).busy

    created = await _create(service)
    status = await service.vehicle_busy_status("veh-1")
    assert status.busy
    assert status.active_dispatch_id == created.id
