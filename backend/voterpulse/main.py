from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from sqlalchemy import text
import asyncio
import logging
import os
import uuid

from voterpulse.api.routes import custom_fields, dashboard, imports, interactions, lists, organizations, scripts, voters
from voterpulse.api.exceptions import APIError
from voterpulse.api.security import limiter, log_security_event
from voterpulse.services.shared.exceptions import (
    ColumnMappingError,
    DatabaseLockError,
    DuplicateRecordError,
    FilterCriteriaError,
    InvalidJobTransitionError,
    MalformedRowError,
    PermissionDeniedError,
    RecordValidationError,
    TenantAccessError,
    VoterPulseError,
)
from voterpulse.db.database import engine, init_db
from voterpulse.lifecycle import setup_startup_tasks, setup_shutdown_handlers
from voterpulse.config import config
from voterpulse.utils.logging import init_logging

# Configure structured logging
# JSON format in production (LOG_JSON=true), human-readable in development
init_logging()


# Suppress CancelledError noise from the SQLAlchemy pool while import tasks are cancelled on shutdown
class SuppressCancelledErrorFilter(logging.Filter):
    def filter(self, record):
        if record.exc_info:
            exc_value = record.exc_info[1]
            if isinstance(exc_value, asyncio.CancelledError):
                return False
        return True


logging.getLogger("sqlalchemy.pool").addFilter(SuppressCancelledErrorFilter())
logging.getLogger("voterpulse").setLevel(logging.DEBUG if config.LOG_LEVEL == "DEBUG" else logging.INFO)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="VoterPulse API",
    description="Multi-tenant voter contact CRM with bulk voter-file import",
    version="1.0.0"
)

# Rate limiting: in-memory storage, default limit applied by the middleware
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    log_security_event("rate_limit", {"limit": str(exc.detail)}, request)
    return JSONResponse(
        status_code=429,
        content={"detail": "Rate limit exceeded. Please try again later."}
    )


# Security headers middleware
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # Only add HSTS if served over HTTPS
        if os.getenv("USE_HTTPS", "false").lower() == "true":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "X-User-Id", "X-Organization-Id"],
)

# Include routers
app.include_router(organizations.router, prefix="/api/organizations", tags=["organizations"])
app.include_router(voters.router, prefix="/api/voters", tags=["voters"])
app.include_router(lists.router, prefix="/api/lists", tags=["lists"])
app.include_router(interactions.router, prefix="/api/interactions", tags=["interactions"])
app.include_router(scripts.router, prefix="/api/scripts", tags=["scripts"])
app.include_router(custom_fields.router, prefix="/api/custom-fields", tags=["custom-fields"])
app.include_router(dashboard.router, prefix="/api/dashboard", tags=["dashboard"])
app.include_router(imports.router, prefix="/api/import", tags=["import"])


@app.on_event("startup")
async def startup_event():
    """Initialize database and start background tasks"""
    logger.info("Starting application startup...")

    config_warnings = config.validate()
    for warning in config_warnings:
        logger.warning(f"Config warning: {warning}")

    await init_db()
    logger.info("Database initialization complete")

    await setup_startup_tasks()


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown"""
    from voterpulse.utils.thread_pool import shutdown_thread_pool

    await setup_shutdown_handlers()
    shutdown_thread_pool()


# Global exception handlers
@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    """Handle API exceptions with structured error response"""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"API Error [{exc.request_id}]: {exc.code} - {exc.message}",
        extra={
            "request_id": exc.request_id,
            "error_code": exc.code,
            "status_code": exc.status_code,
            "is_transient": exc.is_transient,
            "path": request.url.path,
            "method": request.method,
        }
    )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


def classify_service_error(exc: VoterPulseError):
    """Map a service exception to (status_code, code, is_transient, details)"""
    if isinstance(exc, (FilterCriteriaError, RecordValidationError, MalformedRowError)):
        field = getattr(exc, "field", None)
        return 400, "VALIDATION_ERROR", False, {"field": field} if field else {}
    if isinstance(exc, ColumnMappingError):
        details = {}
        if exc.source_column:
            details["source_column"] = exc.source_column
        if exc.target_field:
            details["target_field"] = exc.target_field
        return 400, "COLUMN_MAPPING_ERROR", False, details
    if isinstance(exc, TenantAccessError):
        # Records of other organizations are indistinguishable from missing ones
        return 404, "NOT_FOUND", False, {}
    if isinstance(exc, PermissionDeniedError):
        return 403, "FORBIDDEN", False, {}
    if isinstance(exc, DuplicateRecordError):
        return 409, "CONFLICT", False, {"key": exc.key} if exc.key else {}
    if isinstance(exc, InvalidJobTransitionError):
        return 409, "INVALID_JOB_STATE", False, {"from": exc.from_status, "to": exc.to_status}
    if isinstance(exc, DatabaseLockError):
        return 503, "DATABASE_LOCK_ERROR", True, {
            "suggestion": "Database is busy. Please try again in a moment."
        }
    return 500, "SERVICE_ERROR", False, {}


@app.exception_handler(VoterPulseError)
async def service_error_handler(request: Request, exc: VoterPulseError):
    """Handle service errors with structured response"""
    request_id = str(uuid.uuid4())[:8]
    status_code, code, is_transient, details = classify_service_error(exc)

    log = logger.error if status_code >= 500 else logger.warning
    log(
        f"Service Error [{request_id}]: {code} - {str(exc)}",
        extra={
            "request_id": request_id,
            "error_code": code,
            "status_code": status_code,
            "is_transient": is_transient,
            "path": request.url.path,
            "method": request.method
        }
    )
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": code,
                "message": str(exc),
                "details": details,
                "request_id": request_id,
                "is_transient": is_transient
            }
        }
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Handle unclassified exceptions (500) with error classification"""
    from sqlalchemy.exc import OperationalError, DatabaseError as SQLAlchemyDatabaseError

    request_id = str(uuid.uuid4())[:8]
    error_code = "INTERNAL_SERVER_ERROR"
    status_code = 500
    is_transient = False
    error_message = "An internal server error occurred"
    error_details = {}

    if isinstance(exc, (OperationalError, SQLAlchemyDatabaseError)):
        error_code = "DATABASE_ERROR"
        status_code = 503
        is_transient = True
        error_message = "Database operation failed"
        error_details = {
            "error_type": type(exc).__name__,
            "suggestion": "This may be a temporary issue. Please try again."
        }
    elif isinstance(exc, asyncio.TimeoutError):
        error_code = "TIMEOUT_ERROR"
        status_code = 504
        is_transient = True
        error_message = "Request timeout"
        error_details = {"error_type": type(exc).__name__}
    elif isinstance(exc, ValueError):
        error_code = "VALIDATION_ERROR"
        status_code = 400
        error_message = str(exc) or "Invalid input"
        error_details = {"error_type": "ValueError"}

    logger.error(
        f"Unhandled exception [{request_id}]: {type(exc).__name__}: {exc}",
        exc_info=True,
        extra={
            "request_id": request_id,
            "error_code": error_code,
            "status_code": status_code,
            "is_transient": is_transient,
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__
        }
    )
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": error_code,
                "message": error_message,
                "details": error_details,
                "request_id": request_id,
                "is_transient": is_transient
            }
        }
    )


@app.get("/")
async def root():
    return {"message": "VoterPulse API", "version": "1.0.0"}


@app.get("/health")
async def health():
    """Basic health check endpoint"""
    return {"status": "healthy"}


@app.get("/health/database")
async def health_database():
    """Database connectivity check"""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "unavailable", "error": str(e)}
        )
