"""
Student Leave Service - Main Application Entry Point.

This service handles student leave management including:
- Range and calendar leave submission and tracking
- Monthly leave quota checks with non-blocking warnings
- Admin approval workflows and reporting
- Redis caching of quota verdicts
- Kafka event publishing for audit and notifications
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes.leaves import router as leaves_router
from app.core.cache import RedisClient
from app.core.config import settings
from app.core.database import create_db_and_tables
from app.core.kafka import KafkaConsumer, KafkaProducer
from app.core.logging import get_logger, setup_logging
from app.core.topics import KafkaTopics
from app.quota.errors import QuotaValidationError
from app.services.quota_cache import handle_leave_event

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info("Starting Student Leave Service...")

    logger.info("Creating database and tables...")
    create_db_and_tables()
    logger.info("Database and tables created successfully")

    if settings.CACHE_ENABLED:
        logger.info("Initializing Redis client...")
        if RedisClient.ping():
            logger.info("Redis client connected successfully")
        else:
            logger.warning("Redis connection failed, quota cache will miss")

    logger.info("Initializing Kafka producer...")
    await KafkaProducer.start()

    # Drop cached quota data whenever another instance changes a user's leaves
    for topic in KafkaTopics.record_mutation_topics():
        KafkaConsumer.register_handler(topic, handle_leave_event)
    await KafkaConsumer.start()

    logger.info("Student Leave Service startup complete")

    yield

    # Shutdown
    logger.info("Student Leave Service shutting down...")

    await KafkaConsumer.stop()
    await KafkaProducer.stop()
    RedisClient.close()

    logger.info("Student Leave Service shutdown complete")


# Initialize FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Student Leave Service - Handles leave requests, approvals and monthly leave quotas",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)


# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)


@app.exception_handler(QuotaValidationError)
async def quota_validation_error_handler(request: Request, exc: QuotaValidationError):
    logger.info(f"Rejected malformed leave request on {request.url.path}: {exc.code.value}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": exc.to_dict()},
    )


# Include routers
app.include_router(leaves_router, prefix="/api/v1")


# Health check endpoint
@app.get("/health", tags=["health"])
async def health_check():
    """
    Health check endpoint for container orchestration and monitoring.
    """
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
    }


@app.get("/ready", tags=["health"])
async def readiness_check():
    """
    Readiness check endpoint for Kubernetes.

    Redis and Kafka only count when they are enabled.
    """
    checks = {}

    if settings.CACHE_ENABLED:
        checks["redis"] = "ok" if RedisClient.ping() else "error"
    else:
        checks["redis"] = "disabled"

    if settings.KAFKA_ENABLED:
        checks["kafka_producer"] = "ok" if KafkaProducer._started else "error"
    else:
        checks["kafka_producer"] = "disabled"

    all_ready = all(value != "error" for value in checks.values())

    return {
        "status": "ready" if all_ready else "not_ready",
        "checks": checks,
    }


@app.get("/", tags=["root"])
async def root():
    """
    Root endpoint with service information.
    """
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "docs": "/docs",
    }
