"""
Catalog error types.

Every error carries the HTTP status and canonical code used in the JSON
error envelope ``{message, code, validationErrors?, details?}``.
"""
from typing import Any, Optional


class CatalogError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        validation_errors: Optional[dict[str, str]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details
        self.validation_errors = validation_errors

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"message": self.message, "code": self.code}
        if self.validation_errors:
            body["validationErrors"] = self.validation_errors
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(CatalogError):
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(CatalogError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(CatalogError):
    status_code = 409
    code = "FOREIGN_KEY_CONSTRAINT"


class PermissionDeniedError(CatalogError):
    status_code = 403
    code = "FORBIDDEN"


class ServiceUnavailableError(CatalogError):
    status_code = 503
    code = "SERVICE_UNAVAILABLE"


class SyncFailedError(CatalogError):
    status_code = 500
    code = "SYNC_FAILED"


class ProductNotFoundError(NotFoundError):
    code = "PRODUCT_NOT_FOUND"


class PriceNotFoundError(NotFoundError):
    code = "PRICE_NOT_FOUND"


class VariantNotFoundError(NotFoundError):
    code = "VARIANT_NOT_FOUND"
