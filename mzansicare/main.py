from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
import time
import logging

from .api.v1.ai import router as ai_router
from .api.v1.appointments import router as appointments_router
from .api.v1.auth import router as auth_router
from .api.v1.facilities import router as facilities_router
from .api.v1.feedback import router as feedback_router
from .api.v1.queue import router as queue_router
from .api.v1.reminders import router as reminders_router
from .core.config import settings
from .core.database import SessionLocal, init_db
from .core.errors import NotFound, QueueError, Unavailable
from .services.facility_directory import seed_facilities

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="Virtual queueing, facility directory and patient helpers for South African clinics",
    openapi_url="/api/v1/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Middleware setup
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Only add TrustedHostMiddleware in production, not in testing
if not settings.TESTING:
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=["localhost", "127.0.0.1", "*.localhost", "testserver"]
    )

# Request logging and timing
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)

    logger.info(
        f"{request.method} {request.url.path} - "
        f"Status: {response.status_code} - "
        f"Time: {process_time:.4f}s"
    )

    return response

# Exception handlers
@app.exception_handler(QueueError)
async def queue_error_handler(request: Request, exc: QueueError):
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path}: {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.exception_handler(OperationalError)
async def store_unavailable_handler(request: Request, exc: OperationalError):
    logger.error(f"Database unavailable: {exc}")
    error = Unavailable("The service is temporarily unavailable")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())

@app.exception_handler(404)
async def not_found_handler(request: Request, exc: HTTPException):
    error = NotFound("The requested resource was not found", details={"path": request.url.path})
    return JSONResponse(status_code=error.status_code, content=error.to_dict())

@app.exception_handler(500)
async def internal_error_handler(request: Request, exc: Exception):
    logger.error(f"Internal server error: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal",
            "message": "An unexpected error occurred",
            "retryable": False
        }
    )

# Include routers
app.include_router(auth_router, prefix="/api/v1")
app.include_router(queue_router, prefix="/api/v1")
app.include_router(facilities_router, prefix="/api/v1")
app.include_router(ai_router, prefix="/api/v1")
app.include_router(feedback_router, prefix="/api/v1")
app.include_router(appointments_router, prefix="/api/v1")
app.include_router(reminders_router, prefix="/api/v1")

# Startup and shutdown events
@app.on_event("startup")
async def startup_event():
    """Initialize application on startup."""
    logger.info("Starting MzansiCare Queue Service...")

    db_url = settings.get_database_url
    db_type = "PostgreSQL" if "postgresql" in db_url else "SQLite" if "sqlite" in db_url else "Unknown"
    logger.info(f"Using {db_type} database")

    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {str(e)}")
        raise

    if settings.SEED_FACILITIES:
        db = SessionLocal()
        try:
            seeded = seed_facilities(db)
            if seeded:
                logger.info(f"Seeded {seeded} facilities")
        finally:
            db.close()

    logger.info("Application startup complete")

@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on application shutdown."""
    logger.info("Shutting down MzansiCare Queue Service...")

# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": settings.VERSION
    }

# Root endpoint
@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "message": "Welcome to the MzansiCare Queue Service",
        "version": settings.VERSION,
        "docs": "/docs",
        "health": "/health"
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "mzansicare.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info"
    )
