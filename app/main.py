import logging
import time
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from app.api.routes import backlinks, cron, health, reciprocal
from app.api.routes.backlinks import map_error_code
from app.config import settings
from app.core.database import dispose_database, init_database
from app.services.backlinks.errors import BacklinkError

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start Sentry and the readiness engine; dispose the engine on shutdown."""
    logger.info("backlinks.app.starting", extra={"version": settings.app_version})

    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            integrations=[
                FastApiIntegration(),
                LoggingIntegration(level=logging.INFO),
            ],
            traces_sample_rate=0.1,
            environment=settings.environment,
        )
        logger.info("backlinks.app.sentry_enabled")

    await init_database()
    yield
    await dispose_database()
    logger.info("backlinks.app.stopped")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Backlink verification and monitoring service",
    lifespan=lifespan,
    debug=settings.debug,
)

if settings.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(
    TrustedHostMiddleware, allowed_hosts=["*"] if settings.debug else ["localhost", "127.0.0.1"]
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "backlinks.http.request",
        extra={
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round((time.perf_counter() - start) * 1000, 2),
        },
    )
    return response


@app.exception_handler(BacklinkError)
async def backlink_error_handler(request: Request, exc: BacklinkError) -> JSONResponse:
    """Last-resort mapping for engine errors that escape a route."""
    logger.error("backlinks.http.unhandled_error", extra={"code": exc.code, "path": request.url.path})
    return JSONResponse(
        status_code=map_error_code(exc.code),
        content={"detail": str(exc), "code": exc.code},
    )


app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(backlinks.router, tags=["backlinks"])
app.include_router(cron.router, tags=["cron"])
app.include_router(reciprocal.router, tags=["reciprocal"])


@app.get("/")
async def root():
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.environment,
    }
