"""FastAPI application entry point."""
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from sqlalchemy.exc import SQLAlchemyError

from donations import __version__
from donations.config import settings
from donations.exceptions import (
    FormNotFoundError,
    GatewayNotReadyError,
    GatewayRequestError,
    PaymentDeclinedError,
    SubmissionValidationError,
)
from donations.middleware.logging import LoggingMiddleware, setup_logging
from donations.middleware.metrics import MetricsMiddleware
from donations.schemas.error import REMEDIATION_HINTS, ErrorCode, ErrorDetail, ErrorResponse

# Setup structured logging
setup_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events."""
    logger.info(
        "application_starting",
        env=settings.app_env,
        gateway_environment=settings.gateway_environment,
        forms=[form.form_id for form in settings.forms],
    )
    yield
    logger.info("application_shutting_down")


app = FastAPI(
    title="CyberSource Donations",
    description="Donation and gala ticket payments through the CyberSource REST gateway",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(MetricsMiddleware)
app.add_middleware(LoggingMiddleware)

# Mount Prometheus metrics endpoint
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def _error_response(
    request: Request,
    status_code: int,
    error: str,
    message: str,
    code: str,
    field: Optional[str] = None,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    body = ErrorResponse(
        error=error,
        message=message,
        details=[ErrorDetail(code=code, message=message, field=field)],
        remediation=REMEDIATION_HINTS.get(code),
        request_id=_request_id(request),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"), headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Handle request body validation errors.

    Returns 422 with field-level details.
    """
    details = [
        ErrorDetail(
            code="validation_error",
            message=error["msg"],
            field=".".join(str(loc) for loc in error["loc"]),
        )
        for error in exc.errors()
    ]

    logger.warning("validation_error", error_count=len(details))

    body = ErrorResponse(
        error="ValidationError",
        message="Request validation failed",
        details=details,
        remediation="Check the API documentation for correct request format at /docs",
        request_id=_request_id(request),
    )
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=body.model_dump(mode="json"))


@app.exception_handler(SubmissionValidationError)
async def submission_exception_handler(request: Request, exc: SubmissionValidationError) -> JSONResponse:
    """
    Handle submissions rejected before reaching the gateway.

    Returns 422 naming the offending field.
    """
    if exc.field == "amount":
        code = ErrorCode.INVALID_AMOUNT
    elif exc.field == "microform_container":
        code = ErrorCode.MISSING_PAYMENT_TOKEN
    else:
        code = ErrorCode.MISSING_REQUIRED_FIELD

    logger.info("submission_rejected", field=exc.field, code=code)

    return _error_response(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "ValidationError",
        exc.message,
        code,
        field=exc.field,
    )


@app.exception_handler(PaymentDeclinedError)
async def declined_exception_handler(request: Request, exc: PaymentDeclinedError) -> JSONResponse:
    """
    Handle charges the gateway did not authorize.

    Returns 402 Payment Required with the decline message.
    """
    return _error_response(
        request,
        status.HTTP_402_PAYMENT_REQUIRED,
        "PaymentDeclined",
        exc.message,
        ErrorCode.PAYMENT_DECLINED,
        field="payment_details",
    )


@app.exception_handler(GatewayRequestError)
async def gateway_exception_handler(request: Request, exc: GatewayRequestError) -> JSONResponse:
    """
    Handle failed gateway calls.

    Returns 502 Bad Gateway with the gateway's message.
    """
    logger.error("gateway_request_error", upstream_status=exc.status_code)

    return _error_response(
        request,
        status.HTTP_502_BAD_GATEWAY,
        "PaymentGatewayError",
        exc.message,
        ErrorCode.GATEWAY_ERROR,
    )


@app.exception_handler(GatewayNotReadyError)
async def gateway_not_ready_handler(request: Request, exc: GatewayNotReadyError) -> JSONResponse:
    """
    Handle a gateway client without usable credentials.

    Returns 503 Service Unavailable.
    """
    return _error_response(
        request,
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "GatewayNotReady",
        exc.message,
        ErrorCode.GATEWAY_NOT_READY,
    )


@app.exception_handler(FormNotFoundError)
async def form_not_found_handler(request: Request, exc: FormNotFoundError) -> JSONResponse:
    """Returns 404 for forms without payment settings."""
    return _error_response(
        request,
        status.HTTP_404_NOT_FOUND,
        "NotFound",
        str(exc),
        ErrorCode.FORM_NOT_FOUND,
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """
    Handle database errors.

    Returns 503 Service Unavailable for database connection issues.
    """
    logger.error(
        "database_error",
        error_type=type(exc).__name__,
        error_message=str(exc),
    )

    body = ErrorResponse(
        error="DatabaseError",
        message="A database error occurred",
        details=[
            ErrorDetail(
                code=ErrorCode.INTERNAL_ERROR,
                message="Database temporarily unavailable" if settings.app_env == "production" else str(exc),
            )
        ],
        request_id=_request_id(request),
        timestamp=datetime.utcnow(),
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body.model_dump(mode="json"),
        headers={"Retry-After": "30"},
    )


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """Root endpoint with API information."""
    return {
        "service": "CyberSource Donations",
        "version": __version__,
        "status": "operational",
        "docs": "/docs",
    }


# Include routers
from donations.api.v1 import checkout, health, payments  # noqa: E402

app.include_router(health.router, tags=["Health"])
app.include_router(checkout.router, prefix="/v1", tags=["Checkout"])
app.include_router(payments.router, prefix="/v1", tags=["Payments"])
