from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

import app.models  # noqa: F401 register mappers
from app.core.cache import CacheService
from app.models.base import Base
from app.models.fleet import Driver, Operator, Vehicle
from app.models.route import Location, Route
from app.models.user import User
from app.services.dispatch import DispatchService


class FakeClock:
    """Deterministic clock; ``advance`` moves both time sources together."""

    def __init__(self, start: datetime = datetime(2026, 3, 2, 7, 30, 0)) -> None:
        self._monotonic = 1_000.0
        self._now = start

    def time(self) -> float:
        return self._monotonic

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        self._monotonic += seconds
        self._now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock) -> CacheService:
    return CacheService(clock=clock)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'dispatch.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seed(db):
    operator = Operator(id="op-1", name="Phuong Trang", code="FUTA")
    vehicle = Vehicle(id="veh-1", plate_number="51B-12345", operator_id="op-1", seat_capacity=45)
    spare = Vehicle(id="veh-2", plate_number="51B-67890", operator_id="op-1", seat_capacity=29)
    driver = Driver(id="drv-1", full_name="Nguyen Van An", operator_id="op-1")
    destination = Location(id="loc-1", name="Ben xe Lien tinh Da Lat", code="DL")
    route = Route(
        id="route-1",
        route_code="SG-DL",
        route_name="Sai Gon - Da Lat",
        route_type="fixed",
        departure_station="Mien Dong",
        arrival_station="Da Lat",
        destination_id="loc-1",
    )
    unnamed_route = Route(
        id="route-2",
        route_code="SG-NT",
        departure_station="Mien Dong",
        arrival_station="Nha Trang",
    )
    user = User(id="user-1", username="dispatcher", full_name="Tran Thi Binh")
    db.add_all([operator, vehicle, spare, driver, destination, route, unnamed_route, user])
    await db.commit()
    return SimpleNamespace(
        operator=operator,
        vehicle=vehicle,
        spare=spare,
        driver=driver,
        destination=destination,
        route=route,
        unnamed_route=unnamed_route,
        user=user,
    )


@pytest.fixture
def service(db, cache, clock, seed) -> DispatchService:
    return DispatchService(db, cache, clock)
