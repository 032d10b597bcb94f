"""
Shared error handling for the shop discount services.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from shared.logging import get_request_id


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class DiscountServiceException(Exception):
    """Base exception for discount services."""

    status_code: int = 400

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=get_request_id(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class MalformedRuleError(DiscountServiceException):
    """A stored rule whose formula or parameters cannot be parsed."""

    status_code = 422

    def __init__(self, message: str = "Malformed rule", details: Optional[Dict[str, Any]] = None):
        super().__init__("MALFORMED_RULE", message, details)


class InvalidCouponError(DiscountServiceException):
    """A coupon code that does not resolve to any rule."""

    status_code = 400

    def __init__(self, code: str, message: str = "Invalid coupon", details: Optional[Dict[str, Any]] = None):
        self.coupon_code = code
        super().__init__("INVALID_COUPON", message, {"coupon_code": code, **(details or {})})


class StorageUnavailableError(DiscountServiceException):
    """Rule or cart storage could not be reached."""

    status_code = 503

    def __init__(self, storage: str, message: str = "Storage unavailable", details: Optional[Dict[str, Any]] = None):
        self.storage = storage
        super().__init__("STORAGE_UNAVAILABLE", f"{storage}: {message}", details)
