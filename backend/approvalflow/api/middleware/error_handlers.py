"""
Error Handlers

Maps the domain error hierarchy and store failures onto JSON responses of
the form {"error": {"code", "message", "details"}}.
"""

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from ...domain.errors import DomainError, TransientError
from ...utils.logger import get_logger, get_correlation_id

logger = get_logger(__name__)


def _error_response(exc: DomainError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.http_status,
        content=jsonable_encoder(exc.to_dict()),
        headers={"X-Correlation-Id": get_correlation_id() or ""}
    )


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Expected business errors: validation, not found, conflicts"""
    logger.warning(
        f"Domain error: {exc.error_code} - {exc.message}",
        extra={"error_type": exc.error_code}
    )
    return _error_response(exc)


async def store_error_handler(request: Request, exc: PyMongoError) -> JSONResponse:
    """The store is unreachable or failed mid-call; the caller may retry"""
    logger.error(
        f"Store error on {request.method} {request.url.path}: {exc}",
        extra={"error_type": type(exc).__name__}
    )
    return _error_response(TransientError(
        "The data store is temporarily unavailable",
        details={"hint": "Retry the request"}
    ))


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Request body, query or header did not match the schema"""
    logger.warning(
        f"Validation error: {exc.errors()}, path={request.url.path}, method={request.method}"
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=jsonable_encoder({
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": {"errors": exc.errors()}
            }
        }),
        headers={"X-Correlation-Id": get_correlation_id() or ""}
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything else is a bug; log the stack trace"""
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
                "details": {"hint": "Check server logs for details"}
            }
        },
        headers={"X-Correlation-Id": get_correlation_id() or ""}
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application"""
    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(PyMongoError, store_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)
