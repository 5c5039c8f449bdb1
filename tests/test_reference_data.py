import pytest
import pytest_asyncio
from sqlalchemy.exc import OperationalError

from app.core.cache import CacheKeys
from app.core.errors import NotFoundError
from app.models.route import Schedule
from app.schemas.dispatch import DispatchCreate
from app.schemas.reference import (
    DriverUpdate,
    OperatorCreate,
    OperatorUpdate,
    RouteUpdate,
    VehicleCreate,
    VehicleUpdate,
)
from app.services.reference_data import ReferenceDataService, preload_reference_cache


@pytest_asyncio.fixture
async def reference(db, cache, seed):
    return ReferenceDataService(db, cache)


@pytest.mark.asyncio
async def test_operator_list_is_cached_until_a_write(reference, cache):
    operators = await reference.list_operators()
    assert [op.code for op in operators] == ["FUTA"]
    assert cache.has(CacheKeys.OPERATORS_ALL)

    created = await reference.create_operator(OperatorCreate(name="Thanh Buoi", code="TB"))
    assert not cache.has(CacheKeys.OPERATORS_ALL)
    assert {op.id for op in await reference.list_operators()} == {"op-1", created.id}


@pytest.mark.asyncio
async def test_vehicle_lookups(reference):
    await reference.create_vehicle(VehicleCreate(plate_number="79B-11111", seat_capacity=16))

    by_operator = await reference.list_vehicles(operator_id="op-1")
    assert [v.plate_number for v in by_operator] == ["51B-12345", "51B-67890"]
    assert len(await reference.list_vehicles()) == 3
    assert (await reference.get_vehicle("veh-1")).seat_capacity == 45

    with pytest.raises(NotFoundError):
        await reference.get_vehicle("veh-missing")


@pytest.mark.asyncio
async def test_vehicle_edit_reaches_open_dispatch_records(reference, service, cache):
    record = await service.create_dispatch(DispatchCreate(vehicle_id="veh-1", driver_id="drv-1"))
    await service.get_dispatch(record.id)

    updated = await reference.update_vehicle("veh-1", VehicleUpdate(plate_number="51B-54321"))
    assert updated.plate_number == "51B-54321"
    assert not cache.has(CacheKeys.dispatch(record.id)), "synced records must not be served from cache"

    refreshed = await service.get_dispatch(record.id)
    assert refreshed.vehicle_plate_number == "51B-54321"
    assert refreshed.version > record.version

    # Optimistic versioning still accepts the next edit after the sync.
    moved = await service.transition_dispatch(record.id, "passengers_dropped")
    assert moved.vehicle_plate_number == "51B-54321"


@pytest.mark.asyncio
async def test_driver_route_and_operator_edits_sync(reference, service):
    record = await service.create_dispatch(
        DispatchCreate(vehicle_id="veh-1", driver_id="drv-1", route_id="route-1")
    )

    await reference.update_driver("drv-1", DriverUpdate(full_name="Nguyen Van Anh"))
    await reference.update_route("route-1", RouteUpdate(route_name="Sai Gon - Da Lat (QL20)"))
    await reference.update_operator("op-1", OperatorUpdate(name="FUTA Bus Lines"))

    refreshed = await service.get_dispatch(record.id)
    assert refreshed.driver_full_name == "Nguyen Van Anh"
    assert refreshed.route_name == "Sai Gon - Da Lat (QL20)"
    assert refreshed.vehicle_operator_name == "FUTA Bus Lines"


@pytest.mark.asyncio
async def test_edit_without_dispatch_records_keeps_dispatch_cache(reference, service, cache):
    record = await service.create_dispatch(DispatchCreate(vehicle_id="veh-2"))
    await service.get_dispatch(record.id)

    await reference.update_driver("drv-1", DriverUpdate(phone="0909 000 111"))
    assert cache.has(CacheKeys.dispatch(record.id))


@pytest.mark.asyncio
async def test_update_missing_entity(reference):
    with pytest.raises(NotFoundError):
        await reference.update_route("route-missing", RouteUpdate(route_name="x"))


@pytest.mark.asyncio
async def test_static_and_schedule_lists(reference, db, cache):
    db.add(Schedule(id="sch-1", route_id="route-1", operator_id="op-1", schedule_code="SG-DL-0600", departure_time="06:00"))
    await db.commit()

    locations = await reference.list_locations()
    assert [loc.name for loc in locations] == ["Ben xe Lien tinh Da Lat"]
    schedules = await reference.list_schedules()
    assert [s.schedule_code for s in schedules] == ["SG-DL-0600"]

    assert cache.has(CacheKeys.LOCATIONS_ALL)
    assert cache.has(CacheKeys.SCHEDULES_ALL)


@pytest.mark.asyncio
async def test_preload_warms_reference_lists(reference, cache):
    await reference.preload()

    for key in (
        CacheKeys.OPERATORS_ALL,
        CacheKeys.ROUTES_ALL,
        CacheKeys.LOCATIONS_ALL,
        CacheKeys.SCHEDULES_ALL,
        CacheKeys.VEHICLES_ALL,
        CacheKeys.DRIVERS_ALL,
    ):
        assert cache.has(key), f"{key} should be cached after preload"
    assert [v.plate_number for v in cache.get(CacheKeys.VEHICLES_ALL)] == ["51B-12345", "51B-67890"]


@pytest.mark.asyncio
async def test_preload_in_own_session(session_factory, cache, seed):
    assert await preload_reference_cache(session_factory, cache) is True
    assert cache.has(CacheKeys.OPERATORS_ALL)
    assert cache.has(CacheKeys.DRIVERS_ALL)


@pytest.mark.asyncio
async def test_preload_failure_is_reported_not_raised(cache):
    def unavailable_store():
        raise OperationalError("connect", {}, Exception("connection refused"))

    assert await preload_reference_cache(unavailable_store, cache) is False
    assert cache.stats()["size"] == 0
