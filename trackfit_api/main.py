"""TrackFit Payments API - FastAPI Application Entry Point."""

import logging
import os
import time
import uuid

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from trackfit_api import __version__
from trackfit_api.config.env import diagnostics_enabled, get_app_env
from trackfit_api.context import payment_id_var, request_id_var, user_id_var
from trackfit_api.errors import PaymentFlowError
from trackfit_api.routers import diagnostics, health, payments, webhooks
from trackfit_api.schemas import ProblemDetail
from trackfit_api.utils import configure_json_logging

logger = logging.getLogger(__name__)

_DEFAULT_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
]


def _allowed_origins() -> list[str]:
    # Credentials mode cannot use wildcard origins
    cors_origins_env = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if cors_origins_env:
        return [origin.strip() for origin in cors_origins_env.split(",") if origin.strip()]
    return list(_DEFAULT_ORIGINS)


def _instance() -> str:
    """Opaque Problem Details instance for the current request."""
    request_id = request_id_var.get()
    return f"urn:trackfit:trace:{request_id or uuid.uuid4()}"


def _get_title_for_status(status_code: int) -> str:
    """Get human-readable title for HTTP status code."""
    titles = {
        400: "Bad Request",
        401: "Unauthorized",
        403: "Forbidden",
        404: "Not Found",
        405: "Method Not Allowed",
        409: "Conflict",
        500: "Internal Server Error",
        503: "Service Unavailable",
    }
    return titles.get(status_code, f"HTTP {status_code}")


# ============================================================================
# RFC 9457 Exception Handlers
# ============================================================================


async def payment_flow_error_handler(request: Request, exc: PaymentFlowError) -> JSONResponse:
    """Render a workflow error as application/problem+json."""
    problem = ProblemDetail(
        type=exc.error_type,
        title=exc.title,
        status=exc.status_code,
        detail=exc.detail,
        instance=_instance(),
        error_code=exc.error_code,
        **exc.extensions(),
    )
    if exc.status_code >= 500:
        logger.error(
            "PAYMENT_FLOW_ERROR",
            extra={"error_code": exc.error_code, "path": request.url.path},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=problem.model_dump(exclude_none=True),
        media_type="application/problem+json",
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions (auth 401/403, routing 404/405) as Problem Details."""
    detail_value = exc.detail if exc.detail is not None else _get_title_for_status(exc.status_code)

    problem = ProblemDetail(
        type=f"https://api.trackfit.app/problems/http-{exc.status_code}",
        title=_get_title_for_status(exc.status_code),
        status=exc.status_code,
        detail=detail_value,
        instance=_instance(),
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=problem.model_dump(exclude_none=True),
        media_type="application/problem+json",
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with the first validation error as detail."""
    first_error = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(loc) for loc in first_error.get("loc", []))
    msg = first_error.get("msg", "Validation error")

    problem = ProblemDetail(
        type="https://api.trackfit.app/problems/validation-error",
        title="Request Validation Failed",
        status=422,
        detail=f"Invalid field '{field}': {msg}",
        instance=_instance(),
    )
    return JSONResponse(
        status_code=422,
        content=problem.model_dump(exclude_none=True),
        media_type="application/problem+json",
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Generic 500; the exception is logged, never returned."""
    problem = ProblemDetail(
        type="https://api.trackfit.app/problems/internal-error",
        title="Internal Server Error",
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="An unexpected error occurred. Please try again later.",
        instance=_instance(),
    )
    logger.error(
        "UNHANDLED_EXCEPTION",
        extra={"error_type": type(exc).__name__, "path": request.url.path},
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=problem.model_dump(exclude_none=True),
        media_type="application/problem+json",
    )


# ============================================================================
# Application Factory
# ============================================================================


def create_app() -> FastAPI:
    """Create the FastAPI application.

    The diagnostics router is mounted only when diagnostics_enabled() is
    true, which it never is in production.
    """
    new_app = FastAPI(
        title="TrackFit Payments API",
        description="Membership and spa checkout, payment reconciliation and OTP verification.",
        version=__version__,
        docs_url="/api-docs",
        redoc_url="/redoc",
    )

    new_app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
    )

    new_app.add_exception_handler(PaymentFlowError, payment_flow_error_handler)
    new_app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    new_app.add_exception_handler(RequestValidationError, validation_exception_handler)
    new_app.add_exception_handler(Exception, general_exception_handler)

    new_app.include_router(health.router, tags=["health"])
    new_app.include_router(webhooks.router)
    if diagnostics_enabled():
        logger.warning(
            "DIAGNOSTICS_ENABLED",
            extra={"env": get_app_env()},
        )
        new_app.include_router(diagnostics.router)
    new_app.include_router(payments.router)

    # Completion logging (inner)
    @new_app.middleware("http")
    async def http_completion_logging_mw(request: Request, call_next):
        """Emit "http.request.completed" for every request, even on exceptions."""
        user_id_var.set("")
        payment_id_var.set("")

        start_time = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.info(
                "http.request.completed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": status_code,
                    "duration_ms": round(duration_ms, 2),
                },
            )
            user_id_var.set("")
            payment_id_var.set("")

    # Request ID (outermost, registered last)
    @new_app.middleware("http")
    async def request_id_mw(request: Request, call_next):
        """Accept or generate X-Request-ID and echo it on the response."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request_id_var.set(request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    return new_app


# Set TRACKFIT_JSON_LOGS=false to keep the default text logging
if os.getenv("TRACKFIT_JSON_LOGS", "true").lower() != "false":
    configure_json_logging(log_level=os.getenv("LOG_LEVEL", "INFO"))

app = create_app()
