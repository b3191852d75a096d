from fastapi import FastAPI, Request
from contextlib import asynccontextmanager
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import os
from dotenv import load_dotenv

# Load environment variables before settings are read
load_dotenv()

# Import core components
from app.core.logging_config import setup_logging
from app.core.settings import settings
from app.middleware.logging import LoggingMiddleware

# Import configuration
from app.config import init_firebase

# Import route modules
from app.routes import assignments, assignment_scoring, notifications, health, scheduled_tasks
from app.exceptions import (
    AssignmentError,
    UnauthorizedException, ForbiddenException,
    NotFoundException
)

# Set up logging first
logger = setup_logging()

_docs_enabled = settings.is_development or os.getenv("SHOW_DOCS", "").lower() in ("1", "true", "yes")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("=" * 50)
    logger.info("Module Assignments API starting up")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"CORS origins: {settings.cors_origins}")
    logger.info(f"SQL Debug: {'enabled' if settings.sql_debug else 'disabled'}")

    from app.services.email import get_sendgrid_client
    email_status = "configured" if get_sendgrid_client() else "not configured (email events will not be delivered)"
    logger.info(f"SendGrid Email: {email_status}")
    logger.info(f"Notifications: {'enabled' if settings.notifications_enabled else 'disabled'}")
    logger.info("=" * 50)

    yield
    logger.info("Module Assignments API shutting down gracefully")

app = FastAPI(
    title="Module Assignments API",
    description="Module assignment submission, capability-rubric grading and feedback",
    version="1.0.0",
    docs_url="/docs" if _docs_enabled else None,
    redoc_url="/redoc" if _docs_enabled else None,
    lifespan=lifespan,
)

# Add middleware in correct order (last added = first executed)
app.add_middleware(LoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_origins != ["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)

# Initialize Firebase (skip in test environment)
if not settings.is_test:
    init_firebase()

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(assignments.router)
app.include_router(assignment_scoring.router)
app.include_router(notifications.router)
app.include_router(scheduled_tasks.router)


def _correlation_id(request: Request) -> str:
    return getattr(request.state, 'correlation_id', 'unknown')


# Exception handlers
@app.exception_handler(AssignmentError)
async def assignment_error_handler(request: Request, exc: AssignmentError):
    correlation_id = _correlation_id(request)
    logger.warning(f"[{correlation_id}] {exc.code} on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={**exc.to_payload(), "correlation_id": correlation_id}
    )

@app.exception_handler(UnauthorizedException)
async def unauthorized_exception_handler(request: Request, exc: UnauthorizedException):
    correlation_id = _correlation_id(request)
    logger.warning(f"[{correlation_id}] Unauthorized access attempt on {request.url.path}")
    return JSONResponse(
        status_code=401,
        content={"detail": exc.detail, "correlation_id": correlation_id}
    )

@app.exception_handler(ForbiddenException)
async def forbidden_exception_handler(request: Request, exc: ForbiddenException):
    correlation_id = _correlation_id(request)
    logger.warning(f"[{correlation_id}] Forbidden access attempt on {request.url.path}")
    return JSONResponse(
        status_code=403,
        content={"detail": exc.detail, "correlation_id": correlation_id}
    )

@app.exception_handler(NotFoundException)
async def not_found_exception_handler(request: Request, exc: NotFoundException):
    correlation_id = _correlation_id(request)
    logger.warning(f"[{correlation_id}] Not found error on {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=404,
        content={"detail": exc.detail, "correlation_id": correlation_id}
    )

@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    correlation_id = _correlation_id(request)
    logger.error(f"[{correlation_id}] Unhandled exception on {request.url.path}: {str(exc)}", exc_info=True)

    content = {"detail": "Internal server error", "correlation_id": correlation_id}
    if settings.is_development:
        content.update({"error": str(exc), "type": type(exc).__name__})
    return JSONResponse(status_code=500, content=content)

# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "message": "Module Assignments API",
        "version": "1.0.0",
        "environment": settings.environment,
        "docs_url": "/docs" if _docs_enabled else None,
        "health_check": "/health",
        "status": "running"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level="info" if settings.is_development else "warning"
    )
