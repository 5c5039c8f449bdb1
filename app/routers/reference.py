from typing import List, Optional

from fastapi import APIRouter, Depends, status

from app.api.deps import get_reference_service
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
from app.services.reference_data import ReferenceDataService

router = APIRouter()


@router.get("/operators", response_model=List[OperatorResponse])
async def list_operators(service: ReferenceDataService = Depends(get_reference_service)):
    return await service.list_operators()


@router.get("/operators/{operator_id}", response_model=OperatorResponse)
async def get_operator(operator_id: str, service: ReferenceDataService = Depends(get_reference_service)):
    return await service.get_operator(operator_id)


@router.post("/operators", response_model=OperatorResponse, status_code=status.HTTP_201_CREATED)
async def create_operator(payload: OperatorCreate, service: ReferenceDataService = Depends(get_reference_service)):
    return await service.create_operator(payload)


@router.patch("/operators/{operator_id}", response_model=OperatorResponse)
async def update_operator(
    operator_id: str,
    payload: OperatorUpdate,
    service: ReferenceDataService = Depends(get_reference_service),
):
    return await service.update_operator(operator_id, payload)


@router.get("/vehicles", response_model=List[VehicleResponse])
async def list_vehicles(
    operator_id: Optional[str] = None,
    service: ReferenceDataService = Depends(get_reference_service),
):
    return await service.list_vehicles(operator_id)


@router.get("/vehicles/{vehicle_id}", response_model=VehicleResponse)
async def get_vehicle(vehicle_id: str, service: ReferenceDataService = Depends(get_reference_service)):
    return await service.get_vehicle(vehicle_id)


@router.post("/vehicles", response_model=VehicleResponse, status_code=status.HTTP_201_CREATED)
async def create_vehicle(payload: VehicleCreate, service: ReferenceDataService = Depends(get_reference_service)):
    return await service.create_vehicle(payload)


@router.patch("/vehicles/{vehicle_id}", response_model=VehicleResponse)
async def update_vehicle(
    vehicle_id: str,
    payload: VehicleUpdate,
    service: ReferenceDataService = Depends(get_reference_service),
):
    return await service.update_vehicle(vehicle_id, payload)


@router.get("/drivers", response_model=List[DriverResponse])
async def list_drivers(service: ReferenceDataService = Depends(get_reference_service)):
    return await service.list_drivers()


@router.post("/drivers", response_model=DriverResponse, status_code=status.HTTP_201_CREATED)
async def create_driver(payload: DriverCreate, service: ReferenceDataService = Depends(get_reference_service)):
    return await service.create_driver(payload)


@router.patch("/drivers/{driver_id}", response_model=DriverResponse)
async def update_driver(
    driver_id: str,
    payload: DriverUpdate,
    service: ReferenceDataService = Depends(get_reference_service),
):
    return await service.update_driver(driver_id, payload)


@router.get("/routes", response_model=List[RouteResponse])
async def list_routes(service: ReferenceDataService = Depends(get_reference_service)):
    return await service.list_routes()


@router.post("/routes", response_model=RouteResponse, status_code=status.HTTP_201_CREATED)
async def create_route(payload: RouteCreate, service: ReferenceDataService = Depends(get_reference_service)):
    return await service.create_route(payload)


@router.patch("/routes/{route_id}", response_model=RouteResponse)
async def update_route(
    route_id: str,
    payload: RouteUpdate,
    service: ReferenceDataService = Depends(get_reference_service),
):
    return await service.update_route(route_id, payload)


@router.get("/locations", response_model=List[LocationResponse])
async def list_locations(service: ReferenceDataService = Depends(get_reference_service)):
    return await service.list_locations()


@router.get("/schedules", response_model=List[ScheduleResponse])
async def list_schedules(service: ReferenceDataService = Depends(get_reference_service)):
    return await service.list_schedules()
