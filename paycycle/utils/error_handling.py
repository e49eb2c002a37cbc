"""
Centralized Error Handling for PayCycle

This module provides:
- Custom exception hierarchy
- Standardized error responses
- Error logging
- Database and collaborator failure handling (retryable failures)
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from uuid import UUID
import logging

from fastapi import FastAPI, Request, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import (
    SQLAlchemyError,
    IntegrityError,
    OperationalError,
    DataError,
)
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("paycycle.errors")


class ErrorCode(str, Enum):
    """Standardized error codes for the application"""

    # Validation Errors (422)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_PERIOD = "INVALID_PERIOD"
    INVALID_TARGET_SCOPE = "INVALID_TARGET_SCOPE"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
    IMPORT_VALIDATION_FAILED = "IMPORT_VALIDATION_FAILED"

    # Authentication/Authorization Errors (401/403)
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"

    # Resource Errors (404/409)
    NOT_FOUND = "NOT_FOUND"
    PAYROLL_RUN_NOT_FOUND = "PAYROLL_RUN_NOT_FOUND"
    REVIEW_TASK_NOT_FOUND = "REVIEW_TASK_NOT_FOUND"
    NO_ELIGIBLE_EMPLOYEES = "NO_ELIGIBLE_EMPLOYEES"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"

    # Business Logic Errors (422)
    BUSINESS_RULE_VIOLATION = "BUSINESS_RULE_VIOLATION"
    PAYROLL_RUN_FROZEN = "PAYROLL_RUN_FROZEN"
    CANNOT_DELETE = "CANNOT_DELETE"

    # External Service Errors (502/503)
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"

    # Database Errors
    DATABASE_ERROR = "DATABASE_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    DATA_INTEGRITY_ERROR = "DATA_INTEGRITY_ERROR"

    # Internal Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AppException(Exception):
    """Base exception for all application exceptions"""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.field = field
        self.original_error = original_error
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response"""
        result = {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.field:
            result["field"] = self.field
        if self.details:
            result["details"] = self.details
        return result


# ============================================================================
# Validation Exceptions
# ============================================================================

class ValidationException(AppException):
    """Base validation exception"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            field=field,
        )


class InvalidPeriodException(ValidationException):
    """Malformed payroll month or year"""

    def __init__(self, field: str, value: Any, message: Optional[str] = None):
        super().__init__(
            message=message or f"Invalid payroll {field}: {value!r}",
            field=field,
            code=ErrorCode.INVALID_PERIOD,
            details={"provided": str(value)},
        )


class InvalidTargetScopeException(ValidationException):
    """Unrecognized adjustment target kind, or a target id that does not fit it"""

    def __init__(self, target_kind: Any, target_id: Any = None, message: Optional[str] = None):
        super().__init__(
            message=message or f"Unrecognized target scope: {target_kind!r}",
            field="target_kind",
            code=ErrorCode.INVALID_TARGET_SCOPE,
            details={
                "target_kind": str(target_kind),
                "target_id": str(target_id) if target_id is not None else None,
            },
        )


class InvalidStatusTransitionException(ValidationException):
    """Requested payroll run status change is not in the transition table"""

    def __init__(self, current_status: str, requested_status: str, allowed: Optional[List[str]] = None):
        super().__init__(
            message=f"Cannot transition payroll run from {current_status} to {requested_status}",
            field="status",
            code=ErrorCode.INVALID_STATUS_TRANSITION,
            details={
                "current_status": current_status,
                "requested_status": requested_status,
                "allowed_transitions": allowed or [],
            },
        )


class AdjustmentImportException(ValidationException):
    """Bulk adjustment import rejected; carries every row error found"""

    def __init__(self, errors: List[Dict[str, Any]]):
        super().__init__(
            message=f"Import rejected: {len(errors)} row error(s) found",
            code=ErrorCode.IMPORT_VALIDATION_FAILED,
            details={"errors": errors},
        )
        self.errors = errors


# ============================================================================
# Authorization Exceptions
# ============================================================================

class AuthorizationException(AppException):
    """Authorization denied exception"""

    def __init__(
        self,
        message: str = "Permission denied",
        required_permission: Optional[str] = None,
    ):
        details = {}
        if required_permission:
            details["required_permission"] = required_permission
        super().__init__(
            code=ErrorCode.FORBIDDEN,
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            details=details,
        )


# ============================================================================
# Resource Exceptions
# ============================================================================

class NotFoundException(AppException):
    """Resource not found exception"""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Union[str, UUID]] = None,
        message: Optional[str] = None,
        code: ErrorCode = ErrorCode.NOT_FOUND,
        details: Optional[Dict[str, Any]] = None,
    ):
        if message is None:
            if resource_id:
                message = f"{resource_type} with ID '{resource_id}' not found"
            else:
                message = f"{resource_type} not found"
        _details = {"resource_type": resource_type, "resource_id": str(resource_id) if resource_id else None}
        if details:
            _details.update(details)
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details=_details,
        )


class PayrollRunNotFoundException(NotFoundException):
    """Payroll run not found"""

    def __init__(self, run_id: Union[str, UUID]):
        super().__init__(
            resource_type="PayrollRun",
            resource_id=run_id,
            code=ErrorCode.PAYROLL_RUN_NOT_FOUND,
        )


class ReviewTaskNotFoundException(NotFoundException):
    """Review task not found (or not owned by the tenant)"""

    def __init__(self, task_ids: List[Union[str, UUID]]):
        super().__init__(
            resource_type="ReviewTask",
            message=f"{len(task_ids)} review task(s) not found",
            code=ErrorCode.REVIEW_TASK_NOT_FOUND,
            details={"missing_task_ids": [str(t) for t in task_ids]},
        )


class NoEligibleEmployeesException(NotFoundException):
    """A sync found nobody to pay for the period"""

    def __init__(self, month: int, year: int):
        super().__init__(
            resource_type="Employee",
            message=f"No eligible employees found for {year}-{month:02d}",
            code=ErrorCode.NO_ELIGIBLE_EMPLOYEES,
            details={"month": month, "year": year},
        )


# ============================================================================
# Business Logic Exceptions
# ============================================================================

class BusinessRuleException(AppException):
    """Business rule violation exception"""

    def __init__(
        self,
        message: str,
        rule: Optional[str] = None,
        code: ErrorCode = ErrorCode.BUSINESS_RULE_VIOLATION,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        if rule:
            _details["violated_rule"] = rule
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=_details,
        )


class PayrollRunFrozenException(BusinessRuleException):
    """Run is in a status that no longer allows recomputation"""

    def __init__(self, payroll_number: str, current_status: str):
        super().__init__(
            message=f"Payroll run {payroll_number} is {current_status} and cannot be recomputed",
            rule="RUN_NOT_FROZEN",
            code=ErrorCode.PAYROLL_RUN_FROZEN,
            details={"payroll_number": payroll_number, "current_status": current_status},
        )


class RunDeletionNotAllowedException(BusinessRuleException):
    """Run can only be deleted while DRAFT or CANCELLED"""

    def __init__(self, payroll_number: str, current_status: str):
        super().__init__(
            message=f"Payroll run {payroll_number} cannot be deleted while {current_status}",
            rule="DELETE_ONLY_DRAFT_OR_CANCELLED",
            code=ErrorCode.CANNOT_DELETE,
            details={"payroll_number": payroll_number, "current_status": current_status},
        )


# ============================================================================
# Dependency Failure Exceptions
# ============================================================================

class ExternalServiceException(AppException):
    """Collaborator call failed; the caller may retry"""

    def __init__(
        self,
        service_name: str,
        message: str,
        original_error: Optional[Exception] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        _details["service"] = service_name
        _details["retryable"] = True
        super().__init__(
            code=ErrorCode.EXTERNAL_SERVICE_ERROR,
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=_details,
            original_error=original_error,
        )


class DatabaseException(AppException):
    """Persisted store failure; nothing was committed and the caller may retry"""

    def __init__(
        self,
        message: str = "A database error occurred",
        code: ErrorCode = ErrorCode.DATABASE_ERROR,
        status_code: int = status.HTTP_503_SERVICE_UNAVAILABLE,
        original_error: Optional[Exception] = None,
        retryable: bool = True,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status_code,
            details={"retryable": retryable},
            original_error=original_error,
        )


class DataIntegrityException(DatabaseException):
    """Unique-key clash that survived every recompute attempt"""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(
            message=message,
            code=ErrorCode.DATA_INTEGRITY_ERROR,
            status_code=status.HTTP_409_CONFLICT,
            original_error=original_error,
        )


# ============================================================================
# Exception Handlers
# ============================================================================

def create_error_response(
    code: ErrorCode,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None,
    field: Optional[str] = None,
) -> JSONResponse:
    """Create a standardized error response"""
    content = {
        "detail": {
            "code": code.value,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    }
    if field:
        content["detail"]["field"] = field
    if details:
        content["detail"]["details"] = details

    return JSONResponse(status_code=status_code, content=content)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle AppException"""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"AppException: {exc.code.value} - {exc.message}",
        extra={
            "code": exc.code.value,
            "path": request.url.path,
            "method": request.method,
            "details": exc.details,
        },
        exc_info=exc.original_error,
    )

    return create_error_response(
        code=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        field=exc.field,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTPException"""
    code_map = {
        400: ErrorCode.INVALID_INPUT,
        401: ErrorCode.UNAUTHORIZED,
        403: ErrorCode.FORBIDDEN,
        404: ErrorCode.NOT_FOUND,
        409: ErrorCode.RESOURCE_CONFLICT,
        422: ErrorCode.VALIDATION_ERROR,
        500: ErrorCode.INTERNAL_ERROR,
        502: ErrorCode.EXTERNAL_SERVICE_ERROR,
        503: ErrorCode.EXTERNAL_SERVICE_ERROR,
    }

    error_code = code_map.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)

    logger.warning(
        f"HTTPException: {exc.status_code} - {message}",
        extra={"path": request.url.path, "method": request.method},
    )

    return create_error_response(
        code=error_code,
        message=message,
        status_code=exc.status_code,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle Pydantic validation errors"""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })

    logger.warning(
        f"ValidationError: {len(errors)} validation errors",
        extra={"path": request.url.path, "method": request.method, "errors": errors},
    )

    return create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details={"errors": errors},
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle SQLAlchemy errors that escaped the service layer"""
    error_message = "A database error occurred"
    error_code = ErrorCode.DATABASE_ERROR
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    details: Dict[str, Any] = {"retryable": True}

    if isinstance(exc, IntegrityError):
        error_message = "Data integrity constraint violated"
        error_code = ErrorCode.DATA_INTEGRITY_ERROR
        status_code = status.HTTP_409_CONFLICT
        error_str = str(exc.orig).lower() if exc.orig else ""
        if "unique" in error_str or "duplicate" in error_str:
            error_message = "A record with this value already exists"
            error_code = ErrorCode.DUPLICATE_ENTRY
    elif isinstance(exc, OperationalError):
        error_message = "Database operation failed"
        error_code = ErrorCode.CONNECTION_ERROR
    elif isinstance(exc, DataError):
        error_message = "Invalid data format for database"
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
        details = {"retryable": False}

    logger.error(
        f"SQLAlchemyError: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )

    return create_error_response(
        code=error_code,
        message=error_message,
        status_code=status_code,
        details=details,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions"""
    logger.critical(
        f"UnhandledException: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )

    return create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message="An unexpected error occurred. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


__all__ = [
    # Base
    "AppException",
    "ErrorCode",

    # Validation
    "ValidationException",
    "InvalidPeriodException",
    "InvalidTargetScopeException",
    "InvalidStatusTransitionException",
    "AdjustmentImportException",

    # Auth
    "AuthorizationException",

    # Resource
    "NotFoundException",
    "PayrollRunNotFoundException",
    "ReviewTaskNotFoundException",
    "NoEligibleEmployeesException",

    # Business Logic
    "BusinessRuleException",
    "PayrollRunFrozenException",
    "RunDeletionNotAllowedException",

    # Dependency failures
    "ExternalServiceException",
    "DatabaseException",
    "DataIntegrityException",

    # Handlers
    "setup_exception_handlers",
    "create_error_response",
]
