"""RFC 7807 Problem Details error responses and domain exception mapping"""

import logging
from typing import Optional, Dict, Any, List
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from src.exceptions import (
    CircuitOpen,
    ConflictError,
    DuplicateContent,
    EventPublishFailure,
    InvalidTransition,
    PhotoNotFound,
    ProcessingStageFailure,
    StorageFailure,
    ValidationError,
)

logger = logging.getLogger(__name__)


class ValidationErrorDetail(BaseModel):
    """Validation error detail for a specific field"""
    field: str
    message: str


class ProblemDetail(BaseModel):
    """RFC 7807 Problem Details for HTTP APIs"""
    type: str = Field(..., description="URI reference identifying the problem type")
    title: str = Field(..., description="Short, human-readable summary")
    status: int = Field(..., description="HTTP status code")
    detail: str = Field(..., description="Human-readable explanation")
    instance: Optional[str] = Field(None, description="URI reference identifying the specific occurrence")
    errors: Optional[List[ValidationErrorDetail]] = Field(None, description="Validation errors")


def create_error_response(
    status_code: int,
    title: str,
    detail: str,
    error_type: Optional[str] = None,
    instance: Optional[str] = None,
    errors: Optional[List[Dict[str, str]]] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    """
    Create an RFC 7807 compliant error response

    Args:
        status_code: HTTP status code
        title: Short error title
        detail: Detailed error message
        error_type: Error type URI (defaults to generic type based on status code)
        instance: Request path or identifier
        errors: List of validation errors with field and message
        extra: Extension members added to the problem object

    Returns:
        JSONResponse with problem details
    """
    # Default error types based on status code
    error_type_map = {
        202: "accepted",
        400: "validation_error",
        404: "not_found",
        409: "conflict",
        500: "internal_server_error",
        503: "service_unavailable"
    }

    if not error_type:
        error_type = error_type_map.get(status_code, "error")

    problem = {
        "type": f"https://photo-pipeline.dev/errors/{error_type}",
        "title": title,
        "status": status_code,
        "detail": detail
    }

    if instance:
        problem["instance"] = instance

    if errors:
        problem["errors"] = errors

    if extra:
        problem.update(extra)

    return JSONResponse(
        status_code=status_code,
        content=problem
    )


def not_found_error(detail: str = "Resource not found", instance: Optional[str] = None) -> JSONResponse:
    """Create a 404 Not Found error response"""
    return create_error_response(
        status_code=status.HTTP_404_NOT_FOUND,
        title="Not Found",
        detail=detail,
        instance=instance
    )


def validation_error(
    detail: str = "Validation failed",
    errors: Optional[List[Dict[str, str]]] = None,
    instance: Optional[str] = None
) -> JSONResponse:
    """Create a 400 Validation Error response"""
    return create_error_response(
        status_code=status.HTTP_400_BAD_REQUEST,
        title="Validation Error",
        detail=detail,
        errors=errors,
        instance=instance
    )


def conflict_error(
    detail: str = "Resource conflict",
    instance: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    """Create a 409 Conflict error response"""
    return create_error_response(
        status_code=status.HTTP_409_CONFLICT,
        title="Conflict",
        detail=detail,
        instance=instance,
        extra=extra,
    )


def service_unavailable_error(
    detail: str = "A backing service is unavailable",
    instance: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    """Create a 503 Service Unavailable error response"""
    return create_error_response(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        title="Service Unavailable",
        detail=detail,
        instance=instance,
        extra=extra,
    )


def internal_server_error(
    detail: str = "An internal server error occurred",
    instance: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    """Create a 500 Internal Server Error response"""
    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        title="Internal Server Error",
        detail=detail,
        instance=instance,
        extra=extra,
    )


async def _photo_not_found(request: Request, exc: PhotoNotFound) -> JSONResponse:
    return not_found_error(str(exc), instance=request.url.path)


async def _validation_failed(request: Request, exc: ValidationError) -> JSONResponse:
    return validation_error(exc.message, errors=exc.errors, instance=request.url.path)


async def _duplicate_content(request: Request, exc: DuplicateContent) -> JSONResponse:
    return conflict_error(
        str(exc),
        instance=request.url.path,
        extra={"existing_id": str(exc.existing_id)},
    )


async def _conflict(request: Request, exc: ConflictError) -> JSONResponse:
    return conflict_error(str(exc), instance=request.url.path)


async def _invalid_transition(request: Request, exc: InvalidTransition) -> JSONResponse:
    logger.critical(f"Invalid status transition reached the API at {request.url.path}: {exc}")
    return conflict_error(str(exc), instance=request.url.path)


async def _storage_failure(request: Request, exc: StorageFailure) -> JSONResponse:
    logger.error(f"Storage failure at {request.url.path}: {exc}")
    return service_unavailable_error(
        "Storage is temporarily unavailable",
        instance=request.url.path,
        extra={"provider": exc.provider, "operation": exc.operation},
    )


async def _circuit_open(request: Request, exc: CircuitOpen) -> JSONResponse:
    return service_unavailable_error(
        str(exc),
        instance=request.url.path,
        extra={"provider": exc.name, "operation": exc.operation},
    )


async def _processing_failure(request: Request, exc: ProcessingStageFailure) -> JSONResponse:
    logger.error(f"Processing failure at {request.url.path}: {exc}")
    return internal_server_error(
        str(exc),
        instance=request.url.path,
        extra={"photo_id": str(exc.photo_id), "stage": exc.stage},
    )


async def _publish_degraded(request: Request, exc: EventPublishFailure) -> JSONResponse:
    logger.warning(f"Event publication degraded at {request.url.path}: {exc}")
    return create_error_response(
        status_code=status.HTTP_202_ACCEPTED,
        title="Accepted",
        detail="Request accepted; event delivery is queued",
        instance=request.url.path,
        extra={"status_detail": "queued", "event_type": exc.event_type},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Map domain exceptions to problem responses"""
    app.add_exception_handler(PhotoNotFound, _photo_not_found)
    app.add_exception_handler(ValidationError, _validation_failed)
    app.add_exception_handler(DuplicateContent, _duplicate_content)
    app.add_exception_handler(ConflictError, _conflict)
    app.add_exception_handler(InvalidTransition, _invalid_transition)
    app.add_exception_handler(StorageFailure, _storage_failure)
    app.add_exception_handler(CircuitOpen, _circuit_open)
    app.add_exception_handler(ProcessingStageFailure, _processing_failure)
    app.add_exception_handler(EventPublishFailure, _publish_degraded)
