"""
judgecert/errors.py
Centralized error taxonomy for the certification workflow

Every business-rule outcome is raised synchronously as an APIError subclass
so the calling layer can branch on its kind:

    NotFoundError    404  referenced category / contest / event does not exist
    ValidationError  400  missing scope, missing confirmation, prerequisites unmet
    ConflictError    409  duplicate sign-off, double final certification
    ForbiddenError   403  caller role outside the permitted set
    InternalError    500  store failure surfaced generically

ERROR RESPONSE STRUCTURE:
{
    "success": false,
    "error": "ErrorType",
    "message": "Human-readable description",
    "code": "UNIQUE_ERROR_CODE",
    "details": {} (optional)
}
"""

import logging
from typing import Optional, Dict, Any
from fastapi import status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class ErrorCode:
    """Unique error codes for machine-readable error handling"""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    MISSING_SCOPE = "MISSING_SCOPE"
    AMBIGUOUS_SCOPE = "AMBIGUOUS_SCOPE"
    CONFIRMATION_REQUIRED = "CONFIRMATION_REQUIRED"
    PREREQUISITE_NOT_MET = "PREREQUISITE_NOT_MET"
    SCORES_NOT_CERTIFIED = "SCORES_NOT_CERTIFIED"
    NOT_ASSIGNED = "NOT_ASSIGNED"
    FINAL_CERTIFICATION_REQUIRED = "FINAL_CERTIFICATION_REQUIRED"
    INVALID_ROLE = "INVALID_ROLE"

    FORBIDDEN = "FORBIDDEN"
    ROLE_NOT_PERMITTED = "ROLE_NOT_PERMITTED"

    NOT_FOUND = "NOT_FOUND"
    CATEGORY_NOT_FOUND = "CATEGORY_NOT_FOUND"
    CONTEST_NOT_FOUND = "CONTEST_NOT_FOUND"
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"

    CONFLICT = "CONFLICT"
    DUPLICATE_SIGNOFF = "DUPLICATE_SIGNOFF"
    ALREADY_CERTIFIED = "ALREADY_CERTIFIED"
    SCORE_LOCKED = "SCORE_LOCKED"

    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorResponse(BaseModel):
    """Standard error response model"""
    success: bool = False
    error: str
    message: str
    code: str
    details: Optional[Dict[str, Any]] = None


class APIError(Exception):
    """Base API exception with consistent structure"""

    def __init__(
        self,
        status_code: int,
        error: str,
        message: str,
        code: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.status_code = status_code
        self.error = error
        self.message = message
        self.code = code
        self.details = details
        super().__init__(message)

    def to_response(self) -> JSONResponse:
        """Convert to FastAPI JSONResponse"""
        return JSONResponse(status_code=self.status_code, content=self.to_dict())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return ErrorResponse(
            error=self.error,
            message=self.message,
            code=self.code,
            details=self.details or None,
        ).model_dump(exclude_none=True)


class ValidationError(APIError):
    """400 Bad Request - Invalid input or unmet prerequisite"""
    def __init__(self, message: str, code: str = ErrorCode.VALIDATION_ERROR, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="Validation Error",
            message=message,
            code=code,
            details=details
        )


class ForbiddenError(APIError):
    """403 Forbidden - Access denied"""
    def __init__(self, message: str, code: str = ErrorCode.FORBIDDEN, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error="Forbidden",
            message=message,
            code=code,
            details=details
        )


class NotFoundError(APIError):
    """404 Not Found - Resource does not exist"""
    def __init__(self, resource: str, identifier: Any = None, code: str = ErrorCode.NOT_FOUND):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error="Not Found",
            message=message,
            code=code,
            details={"resource": resource, "id": identifier}
        )


class ConflictError(APIError):
    """409 Conflict - Duplicate sign-off or repeated terminal transition"""
    def __init__(self, message: str, code: str = ErrorCode.CONFLICT, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error="Conflict",
            message=message,
            code=code,
            details=details
        )


class InternalError(APIError):
    """500 Internal Server Error - Use sparingly, only for true internal failures"""
    def __init__(self, message: str = "An internal error occurred", log_id: Optional[str] = None):
        details = {"log_id": log_id} if log_id else None
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error="Internal Error",
            message=message,
            code=ErrorCode.INTERNAL_ERROR,
            details=details
        )
