"""
Centralized error handling for the PDF conversion service.

This module provides the error taxonomy raised inside the request pipeline,
the error-code to HTTP status mapping, and the helper that turns any of them
into a consistent JSON response.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union

from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Standardized error codes for consistent error handling."""

    # Client errors
    INVALID_REQUEST = "INVALID_REQUEST"
    INVALID_JSON = "INVALID_JSON"
    MISSING_PARAMETER = "MISSING_PARAMETER"
    INVALID_PARAMETER = "INVALID_PARAMETER"
    INVALID_URL = "INVALID_URL"

    # Authentication errors
    UNAUTHORIZED = "UNAUTHORIZED"
    AUTH_SERVICE_UNAVAILABLE = "AUTH_SERVICE_UNAVAILABLE"

    # Pipeline errors
    PIPELINE_STAGE_FAILED = "PIPELINE_STAGE_FAILED"

    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorSeverity(str, Enum):
    """Error severity levels for logging and response handling."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


ERROR_STATUS_MAP: Dict[ErrorCode, int] = {
    ErrorCode.INVALID_REQUEST: 400,
    ErrorCode.INVALID_JSON: 400,
    ErrorCode.MISSING_PARAMETER: 400,
    ErrorCode.INVALID_PARAMETER: 400,
    ErrorCode.INVALID_URL: 400,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.PIPELINE_STAGE_FAILED: 422,
    ErrorCode.AUTH_SERVICE_UNAVAILABLE: 500,
    ErrorCode.INTERNAL_ERROR: 500,
}

ERROR_SEVERITY_MAP: Dict[ErrorCode, ErrorSeverity] = {
    ErrorCode.INVALID_REQUEST: ErrorSeverity.LOW,
    ErrorCode.INVALID_JSON: ErrorSeverity.LOW,
    ErrorCode.MISSING_PARAMETER: ErrorSeverity.LOW,
    ErrorCode.INVALID_PARAMETER: ErrorSeverity.LOW,
    ErrorCode.INVALID_URL: ErrorSeverity.LOW,
    ErrorCode.UNAUTHORIZED: ErrorSeverity.MEDIUM,
    ErrorCode.PIPELINE_STAGE_FAILED: ErrorSeverity.MEDIUM,
    ErrorCode.AUTH_SERVICE_UNAVAILABLE: ErrorSeverity.HIGH,
    ErrorCode.INTERNAL_ERROR: ErrorSeverity.CRITICAL,
}


# ===== EXCEPTION TAXONOMY =====

class ConversionServiceError(Exception):
    """Base class for errors that map directly onto an HTTP error response."""

    error_code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, error_code: Optional[ErrorCode] = None):
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code

    @property
    def status_code(self) -> int:
        return ERROR_STATUS_MAP.get(self.error_code, 500)


class RequestValidationError(ConversionServiceError):
    """A caller-supplied field is missing or invalid (400)."""

    error_code = ErrorCode.INVALID_REQUEST


class AuthenticationError(ConversionServiceError):
    """The bearer token is missing, malformed, expired or wrongly signed (401)."""

    error_code = ErrorCode.UNAUTHORIZED


class AuthServiceUnavailableError(AuthenticationError):
    """The signing secret could not be loaded (500)."""

    error_code = ErrorCode.AUTH_SERVICE_UNAVAILABLE


class PipelineStageError(ConversionServiceError):
    """A named pipeline stage failed terminally (422).

    The message is always prefixed with the stage name, e.g.
    ``"PDF download failed: HTTP 404: Not Found"``.
    """

    error_code = ErrorCode.PIPELINE_STAGE_FAILED

    def __init__(self, stage: str, detail: str):
        super().__init__(f"{stage} failed: {detail}")
        self.stage = stage
        self.detail = detail


# ===== RESPONSE HELPERS =====

def create_error_response(
    error_code: Union[ErrorCode, str],
    message: str,
    status_code: Optional[int] = None,
    **kwargs: Any
) -> JSONResponse:
    """
    Create a consistent JSON error response.

    Args:
        error_code: Error code from ErrorCode enum or custom string
        message: Human-readable error message (truncated to 1000 chars)
        status_code: Override the default HTTP status code
        **kwargs: Additional fields to include in the error response

    Returns:
        JSONResponse with standardized error format
    """
    if isinstance(error_code, ErrorCode):
        code = error_code.value
        if status_code is None:
            status_code = ERROR_STATUS_MAP.get(error_code, 500)
        severity = ERROR_SEVERITY_MAP.get(error_code, ErrorSeverity.MEDIUM)
    else:
        code = str(error_code)
        if status_code is None:
            status_code = 500
        severity = ErrorSeverity.MEDIUM

    error_data: Dict[str, Any] = {
        "status": "failed",
        "error": str(message)[:1000],
        "code": code,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    }
    error_data.update({k: v for k, v in kwargs.items() if v is not None})

    log_message = f"Error response ({status_code}): {code} - {error_data['error']}"
    if severity == ErrorSeverity.CRITICAL:
        logger.critical(log_message)
    elif severity == ErrorSeverity.HIGH:
        logger.error(log_message)
    elif severity == ErrorSeverity.MEDIUM:
        logger.warning(log_message)
    else:
        logger.info(log_message)

    return JSONResponse(status_code=status_code, content=error_data)


def error_response_from_exception(
    error: ConversionServiceError,
    unique_id: Optional[str] = None
) -> JSONResponse:
    """Build the JSON error response for a pipeline exception."""
    return create_error_response(
        error.error_code,
        error.message,
        status_code=error.status_code,
        unique_id=unique_id,
    )
