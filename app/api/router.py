from fastapi import APIRouter

from app.routers import dispatch, health, reference, reports

api_router = APIRouter()
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(dispatch.router, prefix="/dispatch", tags=["Dispatch"])
api_router.include_router(reports.router, prefix="/reports", tags=["Reports"])
api_router.include_router(reference.router, tags=["Reference Data"])
