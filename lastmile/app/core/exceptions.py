"""
Custom exceptions and error handlers for consistent error responses.

Every error carries a stable error_code so clients can tell a lost claim
race (pick another parcel) from an unavailable store (retry later).
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict, Optional

logger = logging.getLogger("lastmile.errors")


class AppException(Exception):
    """Base application exception."""
    
    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ValidationError(AppException):
    """Raised for malformed input."""
    
    def __init__(self, message: str, details: Dict[str, Any] = None, error_code: str = "ERR_VALIDATION"):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class UnknownStatusError(ValidationError):
    """Raised when a status literal is not part of the known vocabulary."""
    
    def __init__(self, value: Any, kind: str = "status"):
        super().__init__(
            message=f"Unknown {kind}: {value!r}",
            details={"value": value if isinstance(value, (int, str)) else repr(value), "kind": kind},
            error_code="ERR_UNKNOWN_STATUS"
        )


class InvalidTransitionError(ValidationError):
    """Raised when a delivery status change is not an allowed edge."""
    
    def __init__(self, current: int, requested: int):
        super().__init__(
            message=f"Cannot move delivery from status {current} to {requested}",
            details={"current_status": current, "requested_status": requested},
            error_code="ERR_INVALID_TRANSITION"
        )


class DeliveryNotClaimedError(ValidationError):
    """Raised when a status change targets a delivery no rider has claimed."""

    def __init__(self, delivery_id: int):
        super().__init__(
            message="Delivery has no rider; it must be accepted before its status can change",
            details={"delivery_id": delivery_id},
            error_code="ERR_DELIVERY_NOT_CLAIMED"
        )


class NotFoundError(AppException):
    """Raised when requested resource is not found."""
    
    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class ForbiddenError(AppException):
    """Raised when an operation is not permitted on an existing resource."""
    
    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_FORBIDDEN",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class ClaimRejectedError(AppException):
    """
    Base for expected claim-protocol outcomes.
    
    These are race losses, not faults: the caller should try a different
    parcel rather than repeat the same request.
    """
    retryable_elsewhere = True
    
    def __init__(self, message: str, error_code: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class RiderBusyError(ClaimRejectedError):
    """Rider still holds a pending or in-transit delivery."""
    
    def __init__(self, rider_id: int, existing_jobs: int):
        self.existing_jobs = existing_jobs
        super().__init__(
            message="Rider has an unfinished job; complete it before accepting a new one",
            error_code="ERR_RIDER_BUSY",
            details={"rider_id": rider_id, "existing_jobs": existing_jobs}
        )


class ParcelNotClaimableError(ClaimRejectedError):
    """Parcel is missing or no longer waiting for a rider."""
    
    def __init__(self, parcel_id: int, current_status: Optional[int] = None):
        super().__init__(
            message="Parcel cannot be accepted; another rider may have taken it",
            error_code="ERR_PARCEL_NOT_CLAIMABLE",
            details={"parcel_id": parcel_id, "current_status": current_status}
        )


class AlreadyClaimedError(ClaimRejectedError):
    """Another rider already owns the delivery for this parcel."""
    
    def __init__(self, parcel_id: int):
        super().__init__(
            message="Parcel has already been accepted by another rider",
            error_code="ERR_ALREADY_CLAIMED",
            details={"parcel_id": parcel_id}
        )


class TransitionConflictError(AppException):
    """The delivery changed status underneath this update."""
    
    def __init__(self, delivery_id: int, expected_status: int):
        super().__init__(
            message="Delivery status was changed by another request",
            error_code="ERR_TRANSITION_CONFLICT",
            status_code=status.HTTP_409_CONFLICT,
            details={"delivery_id": delivery_id, "expected_status": expected_status}
        )


class PartialSyncError(AppException):
    """
    A multi-row change was only partly applied.
    
    Raised when the Delivery write landed but the Parcel mirror write did
    not, or when a claim compensation could not be written. The details
    carry what is needed for out-of-band reconciliation.
    """
    
    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PARTIAL_SYNC",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details
        )


class StoreUnavailableError(AppException):
    """Store unreachable or timed out after retries."""
    
    def __init__(self, operation: str, timed_out: bool = False, cause: Optional[BaseException] = None):
        self.timed_out = timed_out
        super().__init__(
            message=f"{operation} failed: store temporarily unavailable, please try again",
            error_code="ERR_STORE_UNAVAILABLE",
            status_code=status.HTTP_408_REQUEST_TIMEOUT if timed_out else status.HTTP_503_SERVICE_UNAVAILABLE,
            details={
                "operation": operation,
                "timed_out": timed_out,
                "cause": type(cause).__name__ if cause else None,
            }
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        500: "ERR_INTERNAL_SERVER"
    }
    
    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")
    
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": exc.errors()
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)
    
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
