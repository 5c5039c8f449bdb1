import logging
from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import CacheService
from app.core.clock import Clock
from app.core.db import get_db
from app.services.dispatch import DispatchService
from app.services.reference_data import ReferenceDataService
from app.services.reporting import ReportingService

logger = logging.getLogger(__name__)


def get_cache(request: Request) -> CacheService:
    return request.app.state.cache


def get_clock(request: Request) -> Clock:
    return request.app.state.clock


async def get_actor_id(x_user_id: Optional[str] = Header(default=None)) -> Optional[str]:
    """Acting station user. Authentication happens upstream of this service."""
    return x_user_id or None


def get_dispatch_service(
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    clock: Clock = Depends(get_clock),
) -> DispatchService:
    return DispatchService(db, cache, clock)


def get_reporting_service(
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> ReportingService:
    return ReportingService(db, cache)


def get_reference_service(
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> ReferenceDataService:
    return ReferenceDataService(db, cache)
