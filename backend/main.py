"""FlowBoard API - Main FastAPI Application."""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis import asyncio as aioredis
from redis.exceptions import RedisError
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.middleware.rate_limit import limiter
from api.routes import api_router
from infrastructure.config import get_settings
from infrastructure.database import close_db, init_db
from infrastructure.logging_config import setup_logging

settings = get_settings()
logger = logging.getLogger(__name__)

# Sentry is initialised at import time so startup errors are captured too
if settings.sentry_dsn:
    _dsn = settings.sentry_dsn
    if not _dsn.startswith("https://") or "@" not in _dsn:
        logger.warning(
            "SENTRY_DSN appears malformed: %s. Sentry will not be initialized.",
            _dsn[:30],
        )
    else:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        from sentry_sdk.integrations.logging import LoggingIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

        sentry_sdk.init(
            dsn=_dsn,
            environment=settings.environment,
            integrations=[
                FastApiIntegration(transaction_style="url"),
                SqlalchemyIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            ],
            traces_sample_rate=0.1 if settings.is_production else 1.0,
            send_default_pii=False,
        )
        logger.info("Sentry error tracking initialised (env=%s)", settings.environment)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # JSON logs in production, human-readable otherwise
    setup_logging(
        json_output=not settings.debug and settings.is_production,
        level="DEBUG" if settings.debug else "INFO",
    )

    logger.info("Starting %s v%s", settings.app_name, settings.app_version)
    logger.info("Environment: %s", settings.environment)

    settings.validate_production_secrets()

    if settings.is_development:
        logger.info("Development mode - initializing database...")
        await init_db()

    # The rate limiter silently degrades to per-process storage without Redis
    if settings.is_production and settings.redis_url:
        redis_check = aioredis.from_url(settings.redis_url)
        try:
            await redis_check.ping()
            logger.info("Redis connectivity confirmed for rate limiter")
        except (RedisError, OSError) as redis_err:
            logger.critical(
                "Redis is unreachable in production (%s). Rate limits will not be shared "
                "across instances.",
                redis_err,
            )
        finally:
            await redis_check.aclose()

    frontend_host = urlparse(settings.frontend_url).netloc if settings.frontend_url else None
    if frontend_host and settings.is_production:
        for origin in settings.cors_origins_list:
            origin_host = urlparse(origin).netloc
            if origin_host and origin_host != frontend_host and not origin_host.endswith("." + frontend_host):
                logger.warning(
                    "CORS origin '%s' does not match FRONTEND_URL host '%s'.",
                    origin,
                    frontend_host,
                )

    logger.info("Application started successfully!")

    yield

    logger.info("Shutting down...")
    await close_db()
    logger.info("Application stopped.")


app = FastAPI(
    title=settings.app_name,
    description="Focus sessions, AI coaching and subscription billing for FlowBoard",
    version=settings.app_version,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

# slowapi needs the limiter on app.state; the middleware applies the default
# limit and per-route @limiter.limit decorators override it
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


_MAX_BODY_SIZE = 1 * 1024 * 1024  # 1MB


@app.middleware("http")
async def limit_request_body_size(request: Request, call_next):
    if request.method in ("POST", "PUT", "PATCH"):
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > _MAX_BODY_SIZE:
            return JSONResponse(
                status_code=413,
                content={"detail": "Request body too large (max 1MB)"},
            )
    return await call_next(request)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    # Production logs carry type and a truncated message only
    if settings.is_production:
        logger.error("Unhandled exception: %s: %s", type(exc).__name__, str(exc)[:200])
    else:
        logger.error("Unhandled exception: %s", str(exc), exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    response.headers["X-Response-Time"] = f"{duration_ms:.1f}ms"

    path = request.url.path
    if not path.startswith("/api/v1/health"):
        logger.info(
            "%s %s %s %.1fms",
            request.method,
            path,
            response.status_code,
            round(duration_ms, 1),
            extra={
                "method": request.method,
                "path": path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 1),
            },
        )
    return response


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    incoming = request.headers.get("X-Request-ID")
    # Only UUIDs are echoed back, anything else could inject into logs
    if incoming:
        try:
            uuid.UUID(incoming)
            request_id = incoming
        except ValueError:
            request_id = str(uuid.uuid4())
    else:
        request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if settings.is_production:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With"],
)

app.include_router(api_router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "app": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs" if settings.is_development else "disabled",
        "health": "/api/v1/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        workers=settings.workers if not settings.is_development else 1,
    )
