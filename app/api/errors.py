import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.core.errors import DatabaseError, InvalidTransitionError, NotFoundError, VehicleBusyError

logger = logging.getLogger(__name__)


async def invalid_transition_handler(request: Request, exc: InvalidTransitionError) -> JSONResponse:
    body = {"detail": str(exc), "from_status": exc.from_status, "to_status": exc.to_status}
    if isinstance(exc, VehicleBusyError):
        body["vehicle_id"] = exc.vehicle_id
        body["active_dispatch_id"] = exc.active_dispatch_id
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=body)


async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


async def database_error_handler(request: Request, exc: DatabaseError) -> JSONResponse:
    logger.error("database_error_response", extra={"path": request.url.path, "error": str(exc)})
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Record store unavailable, retry the request"},
    )


async def payload_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors(include_url=False, include_context=False, include_input=False)},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(InvalidTransitionError, invalid_transition_handler)
    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(DatabaseError, database_error_handler)
    app.add_exception_handler(ValidationError, payload_validation_handler)
