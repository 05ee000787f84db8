"""Map exceptions onto the ``{success: false, error: {...}}`` envelope."""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from yumrun_api.core.errors import YumRunError


def error_response(status_code: int, message: str, code: str, details: dict | None = None) -> JSONResponse:
    error: dict[str, object] = {"message": message, "code": code}
    if details:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


async def yumrun_error_handler(request: Request, exc: YumRunError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.opt(exception=exc).error("Request failed", path=request.url.path, code=exc.code)
    else:
        logger.info("Request rejected", path=request.url.path, code=exc.code, reason=exc.message)
    payload = exc.to_payload()
    return error_response(exc.status_code, payload["message"], payload["code"], payload.get("details"))


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = "SERVER_ERROR" if exc.status_code >= 500 else f"HTTP_{exc.status_code}"
    return error_response(exc.status_code, str(exc.detail), code)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields: dict[str, str] = {}
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path", "header")]
        fields[".".join(location) or "request"] = error.get("msg", "Invalid value")
    return error_response(status.HTTP_400_BAD_REQUEST, "Validation failed", "VALIDATION_ERROR", {"fields": fields})


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error("Unhandled error", path=request.url.path, method=request.method)
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "An unexpected error occurred", "SERVER_ERROR")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(YumRunError, yumrun_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


__all__ = ["error_response", "register_exception_handlers"]
