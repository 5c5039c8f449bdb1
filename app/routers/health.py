from fastapi import APIRouter, Depends

from app.api.deps import get_cache
from app.core.cache import CacheService

router = APIRouter()


@router.get("/healthz", summary="Health check")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/healthz/cache", summary="Cache statistics")
async def cache_stats(cache: CacheService = Depends(get_cache)) -> dict:
    stats = cache.stats()
    stats["sweep_running"] = cache.running
    return stats
