"""API middleware for the storefront.

Provides:
- Request ID correlation
- Caller identity from bearer tokens
- Error handling
"""

import time
from typing import Callable
from uuid import uuid4

import jwt
import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from storefront.domain.exceptions import ValidationError
from storefront.domain.value_objects import CallerIdentity, Role
from storefront.infrastructure.config import settings

logger = structlog.get_logger()


# ============================================================================
# Request ID Middleware
# ============================================================================


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Middleware to add request ID for correlation.

    Generates or extracts a request ID and adds it to:
    - Request state for access in handlers
    - Response headers for client correlation
    - Log context for tracing
    """

    HEADER_NAME = "X-Request-ID"

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        """Process request with correlation ID.

        Args:
            request: Incoming request.
            call_next: Next middleware/handler.

        Returns:
            Response with request ID header.
        """
        request_id = request.headers.get(self.HEADER_NAME) or str(uuid4())
        request.state.request_id = request_id
        structlog.contextvars.bind_contextvars(request_id=request_id)

        start_time = time.perf_counter()
        response = None
        try:
            response = await call_next(request)
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.info(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=getattr(response, "status_code", 500),
                duration_ms=round(duration_ms, 2),
            )
            structlog.contextvars.unbind_contextvars("request_id", "user_id")

        response.headers[self.HEADER_NAME] = request_id
        return response


# ============================================================================
# Identity Middleware
# ============================================================================


# Paths that don't require a caller identity
PUBLIC_PATHS = {
    "/health",
    "/ready",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/payments/config",
    "/webhooks/stripe",  # Webhooks use the Stripe signature instead
}


def _unauthorized(message: str, error_code: str = "UNAUTHORIZED") -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={
            "error_code": error_code,
            "message": message,
            "details": {},
        },
        headers={"WWW-Authenticate": "Bearer"},
    )


def identity_from_token(token: str) -> CallerIdentity:
    """Decode a bearer token into a caller identity.

    The token is issued by the identity provider and signed with the
    shared secret; only ``id`` (or ``sub``) and ``role`` claims are read.

    Args:
        token: Encoded JWT.

    Returns:
        Verified caller identity.

    Raises:
        jwt.InvalidTokenError: If the token is malformed, expired or forged.
        ValidationError: If the claims do not name a user or a known role.
    """
    claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])

    user_id = claims.get("id") or claims.get("sub")
    try:
        role = Role(claims.get("role") or Role.USER.value)
    except ValueError as e:
        raise ValidationError(f"Unknown role: {claims.get('role')!r}") from e

    return CallerIdentity(user_id=str(user_id) if user_id else "", role=role)


class IdentityMiddleware(BaseHTTPMiddleware):
    """Middleware for caller authentication.

    Validates the Authorization header carries a valid bearer token and
    stores the resulting identity on ``request.state.identity``.
    """

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        """Validate bearer token for protected endpoints.

        Args:
            request: Incoming request.
            call_next: Next middleware/handler.

        Returns:
            Response or 401 error.
        """
        path = request.url.path.rstrip("/")
        if path in PUBLIC_PATHS or path.startswith("/docs") or path.startswith("/redoc"):
            return await call_next(request)

        auth_header = request.headers.get("Authorization")
        if not auth_header:
            logger.warning("Missing authorization header", path=path, method=request.method)
            return _unauthorized("Missing Authorization header")

        parts = auth_header.split(" ", 1)
        if len(parts) != 2 or parts[0].lower() != "bearer":
            logger.warning("Invalid authorization format", path=path, method=request.method)
            return _unauthorized("Invalid Authorization header format. Use 'Bearer <token>'")

        try:
            identity = identity_from_token(parts[1])
        except (jwt.InvalidTokenError, ValidationError) as e:
            logger.warning(
                "Invalid bearer token",
                path=path,
                method=request.method,
                error=str(e),
            )
            return _unauthorized("Invalid or expired token", error_code="INVALID_TOKEN")

        request.state.identity = identity
        structlog.contextvars.bind_contextvars(user_id=identity.user_id)

        return await call_next(request)


# ============================================================================
# Error Handling Middleware
# ============================================================================


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Middleware for consistent error handling.

    Catches unhandled exceptions and returns standardized error responses.
    """

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        """Handle errors uniformly.

        Args:
            request: Incoming request.
            call_next: Next middleware/handler.

        Returns:
            Response or error response.
        """
        try:
            return await call_next(request)
        except Exception as e:
            request_id = getattr(request.state, "request_id", None)

            logger.exception(
                "Unhandled exception",
                path=request.url.path,
                method=request.method,
                error=str(e),
            )

            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error_code": "INTERNAL_ERROR",
                    "message": "An internal error occurred",
                    "details": {},
                    "request_id": request_id,
                },
            )


# ============================================================================
# Middleware Setup
# ============================================================================


def setup_middleware(app: FastAPI) -> None:
    """Configure all middleware for the application.

    Middleware is added in reverse order (last added = first executed).

    Args:
        app: FastAPI application instance.
    """
    # Error handling (innermost - wraps the routes)
    app.add_middleware(ErrorHandlerMiddleware)

    # Caller identity
    app.add_middleware(IdentityMiddleware)

    # Request ID correlation (outermost - every response gets the header)
    app.add_middleware(RequestIdMiddleware)
