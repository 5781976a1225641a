from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from bakery.config import settings
from bakery.api.v1.router import api_router
from bakery.core.errors import CheckoutError, checkout_error_handler
from bakery.database import init_db, async_session_factory
from bakery.jobs import (
    CatalogAvailabilityScheduler,
    create_scheduler,
    register_jobs,
    shutdown_scheduler,
)


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Create missing tables
    - Start the background scheduler (reservation sweep, catalog schedule)
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    await init_db()

    scheduler = None
    app.state.catalog_scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = create_scheduler()
        register_jobs(scheduler, async_session_factory)
        scheduler.start()
        logger.info("Background job scheduler started")

        catalog_scheduler = CatalogAvailabilityScheduler(scheduler, async_session_factory)
        await catalog_scheduler.start()
        app.state.catalog_scheduler = catalog_scheduler

    yield

    # Shutdown
    if scheduler is not None:
        app.state.catalog_scheduler.stop()
        shutdown_scheduler(scheduler)
    logger.info("Shutting down...")


OPENAPI_TAGS = [
    {"name": "Orders", "description": "Price preview, order placement and lifecycle"},
    {"name": "Inventory", "description": "Per-branch stock, availability and restock"},
    {"name": "Shipping", "description": "Distance-based delivery fees and nearest branch lookup"},
    {"name": "Promotions", "description": "Promo code validation and administration"},
    {"name": "Settings", "description": "Scheduled catalog disable/enable"},
]

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)


# ==================== Exception Handlers ====================

app.add_exception_handler(CheckoutError, checkout_error_handler)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "error": {
                "code": "validation_error",
                "message": "Request validation failed",
                "details": {"errors": jsonable_encoder(exc.errors())},
            },
        },
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": {"code": "http_error", "message": str(exc.detail), "details": {}},
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": {
                "code": "internal_error",
                "message": "An unexpected error occurred",
                "details": {},
            },
        },
    )


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
        }
    }

    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except SQLAlchemyError as e:
        logger.warning(f"Health check database error: {e}")
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = "error"

    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
    }
