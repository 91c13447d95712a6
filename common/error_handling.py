"""
Error taxonomy for the earnings service and the JSON envelope every failed
request is answered with:

    {"success": false, "error": {"code", "message", "field", "context"},
     "timestamp": ..., "trace_id": ..., "request_id": ...}
"""
from typing import Optional, Dict, Any
from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
import traceback
import time

logger = logging.getLogger(__name__)

class ErrorDetail(BaseModel):
    code: str
    message: str
    field: Optional[str] = None
    context: Optional[Dict[str, Any]] = None

class StandardErrorResponse(BaseModel):
    success: bool = False
    error: ErrorDetail
    timestamp: float
    trace_id: Optional[str] = None
    request_id: Optional[str] = None

class ErrorCodes:
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_RATE = "INVALID_RATE"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    NOT_FOUND = "NOT_FOUND"
    DUPLICATE_EVENT = "DUPLICATE_EVENT"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"

class BusinessLogicError(Exception):
    """Base for caller-facing earnings errors; ``code`` selects the HTTP status."""
    code = ErrorCodes.VALIDATION_ERROR

    def __init__(self, message: str, field: str = None, context: Dict[str, Any] = None, code: str = None):
        self.code = code or self.code
        self.message = message
        self.field = field
        self.context = context or {}
        super().__init__(message)

class ValidationError(BusinessLogicError):
    """Malformed or missing input, amount below the payout minimum"""
    code = ErrorCodes.VALIDATION_ERROR

class InvalidRateError(ValidationError):
    """Commission rate outside (0, 1]"""
    code = ErrorCodes.INVALID_RATE

class PermissionDenied(BusinessLogicError):
    code = ErrorCodes.PERMISSION_DENIED

class InsufficientBalanceError(BusinessLogicError):
    code = ErrorCodes.INSUFFICIENT_BALANCE

class NotFoundError(BusinessLogicError):
    code = ErrorCodes.NOT_FOUND

class DuplicateEventError(BusinessLogicError):
    """Accrual re-delivered for an already-processed source event. Never surfaced."""
    code = ErrorCodes.DUPLICATE_EVENT

class DataIntegrityWarning(UserWarning):
    """Obligation record references a payee that cannot be verified"""

STATUS_CODE_MAP = {
    ErrorCodes.VALIDATION_ERROR: 400,
    ErrorCodes.INVALID_RATE: 400,
    ErrorCodes.INSUFFICIENT_BALANCE: 400,
    ErrorCodes.PERMISSION_DENIED: 403,
    ErrorCodes.NOT_FOUND: 404,
    ErrorCodes.DUPLICATE_EVENT: 409,
}

def _request_ids(request: Request):
    return getattr(request.state, "trace_id", None), getattr(request.state, "request_id", None)

def create_error_response(
    request: Request,
    error_code: str,
    message: str,
    status_code: int = 500,
    field: str = None,
    context: Dict[str, Any] = None,
) -> JSONResponse:
    trace_id, request_id = _request_ids(request)
    body = StandardErrorResponse(
        error=ErrorDetail(code=error_code, message=message, field=field, context=context),
        timestamp=time.time(),
        trace_id=trace_id,
        request_id=request_id,
    )
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))

async def business_logic_exception_handler(request: Request, exc: BusinessLogicError):
    trace_id, _ = _request_ids(request)
    logger.warning(f"Business logic error: {exc.code} - {exc.message}", extra={
        "error_code": exc.code,
        "trace_id": trace_id,
        "field": exc.field,
        "context": exc.context,
    })
    return create_error_response(request, exc.code, exc.message, STATUS_CODE_MAP.get(exc.code, 400),
                                 field=exc.field, context=exc.context)

async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Request bodies that fail schema validation get the same envelope as ValidationError."""
    first_error = exc.errors()[0]
    field = ".".join(str(loc) for loc in first_error.get("loc", []))
    message = first_error.get("msg", "Validation error")
    logger.warning(f"Validation error: {message} on field {field}")
    return create_error_response(request, ErrorCodes.VALIDATION_ERROR,
                                 f"Validation error on field '{field}': {message}", 400, field=field)

async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    code = ErrorCodes.NOT_FOUND if exc.status_code == 404 else ErrorCodes.INTERNAL_SERVER_ERROR
    return create_error_response(request, code, str(exc.detail), exc.status_code)

async def general_exception_handler(request: Request, exc: Exception):
    trace_id, _ = _request_ids(request)
    logger.error(f"Unexpected error: {exc}", extra={
        "trace_id": trace_id,
        "traceback": traceback.format_exc(),
    })
    return create_error_response(request, ErrorCodes.INTERNAL_SERVER_ERROR,
                                 "An unexpected error occurred. Please try again later.", 500)

def add_error_handlers(app):
    app.add_exception_handler(BusinessLogicError, business_logic_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
