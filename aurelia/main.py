"""
Aurelia Private Concierge - FastAPI application entry point.

Member backend for the concierge service:
- Authentication (email/password, Google) with login lockout
- Credits, subscriptions and service requests
- Concierge chat with Orla (LLM) plus SMS/WhatsApp and voice
- Lead scoring and VIP alerts
- Partner onboarding and admin tooling
- Security hardening (CORS, headers, rate limiting)
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from aurelia.api.v1.routes import api_router
from aurelia.core.config import settings
from aurelia.services.database import DatabaseUnavailableError, database
from aurelia.services.rate_limiter import rate_limit_middleware
from aurelia.services.redis_cache import redis_cache

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("aurelia")


async def connect_storage() -> None:
    """
    Connect Redis and the database.

    Neither is fatal: without Redis the rate limits and login lockouts fail
    open, without the database member routes answer 503. Redis is still
    connected when persistence is off but rate limiting is on.
    """
    if not settings.ENABLE_PERSISTENCE:
        logger.info("Persistence disabled")
        if settings.ENABLE_RATE_LIMITING and await redis_cache.connect():
            logger.info("Redis connected for rate limiting at %s", settings.sanitize_url(settings.REDIS_URL))
        elif settings.ENABLE_RATE_LIMITING:
            logger.error("Rate limiting enabled but Redis is unavailable")
        return

    redis_connected = await redis_cache.connect()
    if redis_connected:
        logger.info("Redis cache connected to %s", settings.sanitize_url(settings.REDIS_URL))
    else:
        logger.warning("Redis cache not available (rate limits and lockouts fail open)")

    db_connected = await database.connect()
    if not db_connected:
        logger.warning("Database not available (member endpoints will return 503)")

    if not redis_connected and not db_connected:
        logger.error("ENABLE_PERSISTENCE is true but no storage services connected!")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting up %s...", settings.PROJECT_NAME)
    await connect_storage()

    if settings.ENABLE_USER_AUTH:
        logger.info("User authentication ENABLED (JWT + Google)")
    if settings.SERVICE_API_KEY:
        logger.info("Service key authentication ENABLED")

    yield

    logger.info("Shutting down...")
    await redis_cache.close()
    await database.close()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Member backend for the Aurelia Private Concierge",
    version="0.1.0",
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)

# =============================================================================
# Security Middleware
# =============================================================================

# CORS Middleware - Configure origins for production!
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """
    Add security headers to all responses.

    Headers:
    - X-Content-Type-Options: Prevent MIME type sniffing
    - X-Frame-Options: Prevent clickjacking
    - Referrer-Policy: Control referrer information
    - Cache-Control: Prevent caching of sensitive data
    """
    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

    # Prevent caching of API responses (they may contain member data)
    if request.url.path.startswith(settings.API_V1_STR):
        response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
        response.headers["Pragma"] = "no-cache"

    return response


# Rate limiting middleware (applies to API routes only)
app.middleware("http")(rate_limit_middleware)


@app.middleware("http")
async def catch_exceptions_middleware(request: Request, call_next):
    """
    Global exception handler to prevent internal error details leaking.

    Logs full exception for debugging, returns generic error to client.
    """
    try:
        return await call_next(request)
    except Exception:
        logger.exception("Unhandled exception during request to %s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )


@app.exception_handler(DatabaseUnavailableError)
async def database_unavailable_handler(request: Request, exc: DatabaseUnavailableError):
    logger.error("Database unavailable during request to %s", request.url.path)
    return JSONResponse(status_code=503, content={"detail": "Database not available"})


# =============================================================================
# Routes
# =============================================================================

app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/health")
async def health_check():
    """Health check endpoint for container orchestration."""
    database_connected = await database.ping()
    return {
        "status": "healthy" if database_connected else "degraded",
        "persistence_enabled": settings.ENABLE_PERSISTENCE,
        "user_auth_enabled": settings.ENABLE_USER_AUTH,
        "redis_connected": redis_cache.is_available,
        "database_connected": database_connected,
    }
