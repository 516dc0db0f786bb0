"""HTTP mapping for the marketplace error taxonomy.

Protean's own handlers cover ``ValidationError`` (400) and
``ObjectNotFoundError`` (404). The domain-specific subclasses registered here
take precedence because Starlette resolves handlers along the exception's MRO.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.integrations.fastapi import register_exception_handlers

from marketplace.exceptions import (
    AuthorizationError,
    ExternalServiceError,
    InsufficientStock,
    PaymentNotConfirmed,
    RefundQuantityExceeded,
    ShippingUnavailable,
)

logger = structlog.get_logger(__name__)

_STATUS_BY_ERROR = {
    AuthorizationError: 403,
    InsufficientStock: 409,
    PaymentNotConfirmed: 409,
    RefundQuantityExceeded: 409,
    ShippingUnavailable: 422,
}


def _business_error_handler(status_code: int):
    async def handler(request: Request, exc) -> JSONResponse:
        return JSONResponse(
            status_code=status_code,
            content={
                "type": type(exc).__name__,
                "error": exc.messages,
                "retryable": getattr(exc, "retryable", False),
            },
        )

    return handler


async def _external_service_handler(request: Request, exc: ExternalServiceError) -> JSONResponse:
    logger.warning("External service failure", service=exc.service, error=exc.message, path=request.url.path)
    return JSONResponse(
        status_code=503,
        content={"type": type(exc).__name__, "error": {exc.service: [exc.message]}, "retryable": True},
    )


def register_error_handlers(app: FastAPI) -> None:
    register_exception_handlers(app)
    for error, status_code in _STATUS_BY_ERROR.items():
        app.add_exception_handler(error, _business_error_handler(status_code))
    app.add_exception_handler(ExternalServiceError, _external_service_handler)
