"""Render errors as the JSON envelope {message, code, validationErrors?, details?}."""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from coffee_commerce.errors import CatalogError

logger = logging.getLogger(__name__)

STATUS_CODES = {
    400: "VALIDATION_ERROR",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    409: "FOREIGN_KEY_CONSTRAINT",
    503: "SERVICE_UNAVAILABLE",
}


def _validation_code(errors: list[dict]) -> str:
    if any(e.get("type") == "json_invalid" for e in errors):
        return "INVALID_FORMAT"
    if any(e.get("loc", ("",))[0] == "path" for e in errors):
        return "INVALID_ID_FORMAT"
    return "VALIDATION_ERROR"


def _field_errors(errors: list[dict]) -> dict[str, str]:
    fields = {}
    for e in errors:
        loc = [str(part) for part in e.get("loc", ())]
        key = ".".join(loc[1:]) or (loc[0] if loc else "request")
        fields.setdefault(key, e.get("msg", "invalid value"))
    return fields


def register_exception_handlers(app: FastAPI):
    @app.exception_handler(CatalogError)
    async def catalog_error_handler(request: Request, exc: CatalogError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        code = _validation_code(errors)
        message = {
            "INVALID_FORMAT": "Request body is not valid JSON",
            "INVALID_ID_FORMAT": "Invalid ID format",
        }.get(code, "Validation failed")
        return JSONResponse(
            status_code=400,
            content={"message": message, "code": code, "validationErrors": _field_errors(errors)},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        code = STATUS_CODES.get(exc.status_code, "INTERNAL_ERROR")
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": str(exc.detail), "code": code},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(OperationalError)
    async def database_error_handler(request: Request, exc: OperationalError):
        logger.error(f"Database unavailable: {exc}")
        return JSONResponse(
            status_code=503,
            content={"message": "Database unavailable", "code": "SERVICE_UNAVAILABLE"},
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"message": "Internal server error", "code": "INTERNAL_ERROR"},
        )
