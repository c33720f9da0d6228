"""Storefront API main application module.

This module initializes the FastAPI application and configures
core middleware, routers, exception handlers and startup/shutdown events.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storefront.api.cart import router as cart_router
from storefront.api.health import router as health_router
from storefront.api.middleware import setup_middleware
from storefront.api.orders import router as orders_router
from storefront.api.payments import router as payments_router
from storefront.api.webhooks import router as webhooks_router
from storefront.domain.exceptions import (
    AuthorizationError,
    ConcurrentStockConflictError,
    ConcurrentUpdateError,
    DomainError,
    InvalidStateError,
    NotFoundError,
    OutOfStockError,
    PreconditionError,
)
from storefront.infrastructure.config import settings
from storefront.infrastructure.database import dispose_engine
from storefront.infrastructure.logging_config import configure_logging
from storefront.infrastructure.payment_gateway import GatewayError, StripeGateway

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup and shutdown events.

    Args:
        app: The FastAPI application instance.

    Yields:
        None after startup, cleanup happens after yield.
    """
    # Startup
    configure_logging(settings)
    logger.info(
        "Starting Storefront API",
        version=settings.api_version,
        debug=settings.debug,
    )

    app.state.payment_gateway = StripeGateway(
        api_key=settings.stripe_secret_key,
        currency=settings.payment_currency,
    )
    if not settings.stripe_secret_key:
        logger.warning("Stripe secret key not configured; payment calls will fail")

    yield

    # Shutdown
    logger.info("Shutting down Storefront API")
    await dispose_engine()


app = FastAPI(
    title="Storefront API",
    description="Cart, checkout and payment reconciliation backend",
    version=settings.api_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware (must be added before custom middleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Setup custom middleware (request ID, caller identity, error handling)
setup_middleware(app)

# Include routers
app.include_router(health_router, tags=["Health"])
app.include_router(cart_router)
app.include_router(payments_router)
app.include_router(orders_router)
app.include_router(webhooks_router)


# ============================================================================
# Custom Exception Handlers
# ============================================================================


# Most specific first; the first matching class wins
_DOMAIN_ERROR_STATUS: list[tuple[type[DomainError], int]] = [
    (NotFoundError, 404),
    (AuthorizationError, 403),
    (OutOfStockError, 409),
    (ConcurrentStockConflictError, 409),
    (ConcurrentUpdateError, 409),
    (InvalidStateError, 409),
    (PreconditionError, 412),
]


def status_for_domain_error(exc: DomainError) -> int:
    """Map a domain error to its HTTP status code.

    Validation errors and any other rejected input (empty cart included)
    fall through to 400.
    """
    for error_type, status_code in _DOMAIN_ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 400


def _error_content(
    request: Request, error_code: str, message: str, details: object
) -> dict:
    return {
        "error_code": error_code,
        "message": message,
        "details": details,
        "request_id": getattr(request.state, "request_id", None),
    }


@app.exception_handler(DomainError)
async def domain_exception_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Handle domain errors with their mapped status."""
    status_code = status_for_domain_error(exc)
    logger.info(
        "Request rejected",
        path=request.url.path,
        error_code=exc.error_code,
        status_code=status_code,
        error=exc.message,
    )
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(_error_content(request, exc.error_code, exc.message, exc.details)),
    )


@app.exception_handler(GatewayError)
async def gateway_exception_handler(request: Request, exc: GatewayError) -> JSONResponse:
    """Handle payment provider failures as a bad gateway."""
    return JSONResponse(
        status_code=502,
        content=_error_content(
            request,
            "PAYMENT_GATEWAY_ERROR",
            exc.message,
            {"retryable": exc.retryable, "provider_code": exc.provider_code},
        ),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle malformed request bodies and parameters as validation errors."""
    return JSONResponse(
        status_code=400,
        content=_error_content(
            request,
            "VALIDATION_ERROR",
            "Request validation failed",
            {"errors": jsonable_encoder(exc.errors())},
        ),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions with consistent format."""
    detail = exc.detail
    if isinstance(detail, dict):
        error_code = detail.get("error_code", "ERROR")
        message = detail.get("message", str(detail))
        details = detail.get("details", {})
    else:
        error_code = "ERROR"
        message = str(detail)
        details = {}

    return JSONResponse(
        status_code=exc.status_code,
        content=_error_content(request, error_code, message, details),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions with consistent format."""
    logger.exception(
        "Unhandled exception in handler",
        path=request.url.path,
        method=request.method,
        error=str(exc),
    )

    return JSONResponse(
        status_code=500,
        content=_error_content(request, "INTERNAL_ERROR", "An internal error occurred", {}),
    )
