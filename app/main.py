import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.api.errors import register_exception_handlers
from app.api.router import api_router
from app.core.cache import CacheService
from app.core.clock import Clock, SystemClock
from app.core.config import get_settings
from app.core.db import AsyncSessionFactory, init_database, test_database_connection
from app.middleware.request_logging import setup_request_logging
from app.services.reference_data import preload_reference_cache

logger = logging.getLogger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("lifespan_startup", extra={"environment": settings.environment})
    if app.state.init_db:
        if await test_database_connection():
            await init_database()
        else:
            logger.error("lifespan_db_unavailable")

    cache: CacheService = app.state.cache
    cache.start()

    # Warm-up runs in the background; requests are served meanwhile.
    preload_task = None
    if app.state.preload_cache:
        preload_task = asyncio.create_task(
            preload_reference_cache(
                app.state.session_factory,
                cache,
                timeout=settings.cache_preload_timeout_seconds,
            )
        )
    app.state.preload_task = preload_task
    try:
        yield
    finally:
        if preload_task is not None and not preload_task.done():
            preload_task.cancel()
        cache.stop()
        logger.info("lifespan_shutdown")


def create_app(
    cache: Optional[CacheService] = None,
    clock: Optional[Clock] = None,
    init_db: bool = True,
    session_factory: Optional[async_sessionmaker] = None,
    preload_cache: Optional[bool] = None,
) -> FastAPI:
    clock = clock or SystemClock()
    app = FastAPI(
        title=settings.project_name,
        debug=settings.debug,
        lifespan=lifespan,
    )
    # One cache per process, shared by every request through app.state.
    app.state.clock = clock
    app.state.cache = cache or CacheService(
        clock=clock,
        sweep_interval_minutes=settings.cache_sweep_interval_minutes,
    )
    app.state.init_db = init_db
    app.state.session_factory = session_factory or AsyncSessionFactory
    app.state.preload_cache = settings.cache_preload_on_startup if preload_cache is None else preload_cache
    app.state.preload_task = None

    if settings.backend_cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.backend_cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    setup_request_logging(app)
    register_exception_handlers(app)
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()
