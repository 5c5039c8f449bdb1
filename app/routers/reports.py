from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_reporting_service
from app.core.clock import to_naive_utc
from app.schemas.reports import (
    RejectedPermitEntry,
    RevenueSummary,
    StationActivityEntry,
    StatusCount,
    VehicleLogEntry,
)
from app.services.reporting import ReportingService

router = APIRouter()


def _check_range(start: datetime, end: datetime) -> None:
    if to_naive_utc(end) < to_naive_utc(start):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="end must not be before start")


@router.get("/vehicle-logs", response_model=List[VehicleLogEntry])
async def vehicle_logs(
    start: datetime,
    end: datetime,
    vehicle_id: Optional[str] = None,
    service: ReportingService = Depends(get_reporting_service),
) -> List[VehicleLogEntry]:
    _check_range(start, end)
    return await service.vehicle_logs(start, end, vehicle_id)


@router.get("/revenue-summary", response_model=List[RevenueSummary])
async def revenue_summary(
    start: datetime,
    end: datetime,
    operator_id: Optional[str] = None,
    service: ReportingService = Depends(get_reporting_service),
) -> List[RevenueSummary]:
    _check_range(start, end)
    return await service.revenue_summary(start, end, operator_id)


@router.get("/station-activity", response_model=List[StationActivityEntry])
async def station_activity(
    start: datetime,
    end: datetime,
    service: ReportingService = Depends(get_reporting_service),
) -> List[StationActivityEntry]:
    _check_range(start, end)
    return await service.station_activity(start, end)


@router.get("/rejected-permits", response_model=List[RejectedPermitEntry])
async def rejected_permits(
    start: datetime,
    end: datetime,
    service: ReportingService = Depends(get_reporting_service),
) -> List[RejectedPermitEntry]:
    _check_range(start, end)
    return await service.rejected_permits(start, end)


@router.get("/status-counts", response_model=List[StatusCount])
async def status_counts(
    start: datetime,
    end: datetime,
    service: ReportingService = Depends(get_reporting_service),
) -> List[StatusCount]:
    _check_range(start, end)
    return await service.status_counts(start, end)
