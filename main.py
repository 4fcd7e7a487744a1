import re
import time
import traceback
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from identity.core.config import settings
from identity.core.exceptions import IdentityError
from identity.core.logging_config import setup_logging, get_logger, RequestLogger
from identity.core.middleware import SecurityHeadersMiddleware
from identity.core.rate_limit import limiter
from identity.db.database import init_db
from identity.api.routes import guardians, invitations, persons, staff

# Initialize logging first (auto-determines level based on environment)
setup_logging(
    app_name="identity",
    log_level=settings.log_level,  # Empty = auto (DEBUG in dev, WARNING in prod)
    environment=settings.environment,
    enable_console=True,
    enable_file=settings.log_to_file,
)

logger = get_logger(__name__)
request_logger = RequestLogger(get_logger("identity.requests"))

logger.info("Starting identity service...")

# Create database tables
init_db()
logger.info("Database tables created/verified")


app = FastAPI(
    title=settings.app_name,
    description="Guardian onboarding, credential linking and staff PIN authentication",
    version="0.1.0",
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.state.dispatcher = None


@app.exception_handler(IdentityError)
async def identity_error_handler(request: Request, exc: IdentityError):
    """Map service error kinds to HTTP status codes."""
    if exc.http_status >= 500:
        logger.error(f"{exc.kind} error on {request.method} {_redact_path(request.url.path)}: {exc}")
    return JSONResponse(status_code=exc.http_status, content={"detail": str(exc), "kind": exc.kind})


# Global exception handler: logs full tracebacks for 500 errors
@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Catch all unhandled exceptions, log full traceback, return 500."""
    logger.error(
        f"Unhandled exception on {request.method} {_redact_path(request.url.path)}: {exc}\n"
        f"{traceback.format_exc()}"
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


_TOKEN_PATH = re.compile(r"^(/api/guardian-invitations/)[^/]+")


def _redact_path(path: str) -> str:
    # Invitation tokens are credentials and must not reach the logs
    return _TOKEN_PATH.sub(r"\1<token>", path)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests with timing."""
    start_time = time.time()

    # Get client IP
    client_ip = request.client.host if request.client else "unknown"

    # Process request
    response = await call_next(request)

    # Calculate duration
    duration_ms = (time.time() - start_time) * 1000

    # Set by the auth dependency and the PIN routes
    account_id = getattr(request.state, "account_id", None)

    request_logger.log_request(
        method=request.method,
        path=_redact_path(request.url.path),
        status_code=response.status_code,
        duration_ms=duration_ms,
        client_ip=client_ip,
        account_id=account_id,
    )

    return response


# CORS middleware: explicit origins only, never a wildcard with credentials
if settings.allowed_origins:
    cors_origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
else:
    cors_origins = [settings.frontend_url]
    if settings.environment != "production":
        cors_origins.append("http://localhost:5173")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

# Security headers middleware
app.add_middleware(SecurityHeadersMiddleware)

app.include_router(guardians.router, prefix="/api")
app.include_router(invitations.router, prefix="/api")
app.include_router(persons.router, prefix="/api")
app.include_router(staff.router, prefix="/api")

logger.info("API routes registered at /api")


@app.get("/health")
def health_check():
    logger.debug("Health check requested")
    return {"status": "healthy"}


@app.on_event("startup")
async def startup_event():
    from identity.services.email_service import EmailMailer
    from identity.services.notification_dispatcher import NotificationDispatcher
    from identity.services.scheduler import schedule_invitation_cleanup, start_scheduler

    app.state.dispatcher = NotificationDispatcher(
        EmailMailer(),
        max_attempts=settings.email_max_attempts,
        backoff=settings.email_backoff(),
        max_workers=settings.email_workers,
    )

    schedule_invitation_cleanup(settings.invitation_cleanup_interval_minutes)
    start_scheduler()


@app.on_event("shutdown")
async def shutdown_event():
    from identity.services.scheduler import stop_scheduler
    stop_scheduler()
    if app.state.dispatcher is not None:
        # Pending retries are abandoned; their status columns keep the last attempt
        app.state.dispatcher.shutdown(wait=False)
    logger.info("Identity service shutting down")
