"""Exception handlers rendering domain errors as JSON."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.status import (
    HTTP_404_NOT_FOUND,
    HTTP_500_INTERNAL_SERVER_ERROR,
)

from app.core.errors import PersistenceError, WaterAppError

logger = logging.getLogger(__name__)


async def water_app_exception_handler(request: Request, exc: WaterAppError) -> JSONResponse:
    if isinstance(exc, PersistenceError):
        logger.error(
            "%s %s failed: %s %s",
            request.method,
            request.url.path,
            exc.message,
            exc.context,
            exc_info=exc.__cause__ or exc,
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "error": "validation_error",
            "message": "Invalid request",
            "details": jsonable_errors(exc),
        },
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == HTTP_404_NOT_FOUND and exc.detail == "Not Found":
        content = {"success": False, "error": "not_found", "message": "Endpoint not found"}
    else:
        content = {"success": False, "error": "http_error", "message": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": "internal_error", "message": "Server error"},
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    """Validation errors without the non-serializable context objects."""
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(WaterAppError, water_app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
