"""
Domain errors raised by services and rendered by the API layer.

Every error carries a machine-checkable ``reason`` so clients can branch on
it without parsing messages.
"""
from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse


class EduFundError(Exception):
    """Base class for errors surfaced to callers"""
    status_code = status.HTTP_400_BAD_REQUEST
    default_reason = "error"
    retryable = False

    def __init__(self, message: str, reason: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason or self.default_reason
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "reason": self.reason,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            body["details"] = self.details
        return body


class ValidationFailed(EduFundError):
    """Bad input or an unmet precondition; nothing was changed"""
    status_code = status.HTTP_400_BAD_REQUEST
    default_reason = "validation_failed"


class ResourceNotFound(EduFundError):
    status_code = status.HTTP_404_NOT_FOUND
    default_reason = "not_found"


class ConflictDetected(EduFundError):
    """Conflicting confirmation or concurrent write; needs review or retry"""
    status_code = status.HTTP_409_CONFLICT
    default_reason = "conflict"

    def __init__(self, message: str, reason: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None, retryable: bool = False):
        super().__init__(message, reason, details)
        self.retryable = retryable


class ExternalServiceError(EduFundError):
    """Ledger or metadata service failed or was unreachable"""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_reason = "external_service_unavailable"
    retryable = True


async def edufund_error_handler(request: Request, exc: EduFundError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})
