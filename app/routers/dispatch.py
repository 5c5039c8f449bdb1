from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from app.api.deps import get_actor_id, get_dispatch_service
from app.models.dispatch import DispatchStatus
from app.schemas.dispatch import (
    DispatchCreate,
    DispatchResponse,
    DispatchUpdate,
    NextStatusesResponse,
    ServiceChargeCreate,
    ServiceChargeResponse,
    TransitionRequest,
    VehicleBusyResponse,
)
from app.services.dispatch import DispatchService

router = APIRouter()


@router.post("", response_model=DispatchResponse, status_code=status.HTTP_201_CREATED)
async def create_dispatch(
    payload: DispatchCreate,
    actor_id: Optional[str] = Depends(get_actor_id),
    service: DispatchService = Depends(get_dispatch_service),
) -> DispatchResponse:
    return await service.create_dispatch(payload, actor_id)


@router.get("", response_model=List[DispatchResponse])
async def list_dispatch(
    status_filter: Optional[DispatchStatus] = Query(default=None, alias="status"),
    vehicle_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    service: DispatchService = Depends(get_dispatch_service),
) -> List[DispatchResponse]:
    return await service.list_dispatch(status_filter, vehicle_id, start, end)


@router.get("/vehicles/{vehicle_id}/busy", response_model=VehicleBusyResponse)
async def vehicle_busy(
    vehicle_id: str,
    service: DispatchService = Depends(get_dispatch_service),
) -> VehicleBusyResponse:
    return await service.vehicle_busy_status(vehicle_id)


@router.get("/{dispatch_id}", response_model=DispatchResponse)
async def get_dispatch(
    dispatch_id: str,
    service: DispatchService = Depends(get_dispatch_service),
) -> DispatchResponse:
    return await service.get_dispatch(dispatch_id)


@router.patch("/{dispatch_id}", response_model=DispatchResponse)
async def update_dispatch_entry(
    dispatch_id: str,
    payload: DispatchUpdate,
    actor_id: Optional[str] = Depends(get_actor_id),
    service: DispatchService = Depends(get_dispatch_service),
) -> DispatchResponse:
    return await service.update_dispatch_entry(dispatch_id, payload, actor_id)


@router.post("/{dispatch_id}/transitions", response_model=DispatchResponse)
async def transition_dispatch(
    dispatch_id: str,
    request: TransitionRequest,
    actor_id: Optional[str] = Depends(get_actor_id),
    service: DispatchService = Depends(get_dispatch_service),
) -> DispatchResponse:
    return await service.transition_dispatch(dispatch_id, request.target_status, request.payload, actor_id)


@router.get("/{dispatch_id}/next-statuses", response_model=NextStatusesResponse)
async def next_statuses(
    dispatch_id: str,
    service: DispatchService = Depends(get_dispatch_service),
) -> NextStatusesResponse:
    return await service.next_statuses(dispatch_id)


@router.get("/{dispatch_id}/service-charges", response_model=List[ServiceChargeResponse])
async def list_service_charges(
    dispatch_id: str,
    service: DispatchService = Depends(get_dispatch_service),
) -> List[ServiceChargeResponse]:
    return await service.list_service_charges(dispatch_id)


@router.post(
    "/{dispatch_id}/service-charges",
    response_model=ServiceChargeResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_service_charge(
    dispatch_id: str,
    payload: ServiceChargeCreate,
    actor_id: Optional[str] = Depends(get_actor_id),
    service: DispatchService = Depends(get_dispatch_service),
) -> ServiceChargeResponse:
    return await service.add_service_charge(dispatch_id, payload, actor_id)


@router.delete("/{dispatch_id}/service-charges/{charge_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_service_charge(
    dispatch_id: str,
    charge_id: str,
    service: DispatchService = Depends(get_dispatch_service),
) -> Response:
    await service.remove_service_charge(dispatch_id, charge_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
