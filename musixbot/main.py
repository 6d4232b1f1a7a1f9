"""
FastAPI application main module.
Hosts the bot lifecycle plus ingestion, payment and job endpoints.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import time
import os
from contextlib import asynccontextmanager
from musixbot.api.v1 import api_router
from musixbot.config import BOT_SETTINGS, CHECKPOINT_SETTINGS, ENVIRONMENT
from musixbot.errors import BusyError, NotFoundError
from musixbot.services.bot import create_bot
from musixbot.utils import setup_logging, get_logger
from musixbot.utils.observability import REQUEST_ID_HEADER, ensure_request_id

# Setup logging before creating the app
setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE", "logs/musixbot.log"),
    enable_console=True
)

logger = get_logger(__name__)

SERVICE_NAME = "musixbot"
SERVICE_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Starts the bot (checkpoint recovery + scheduler) and shuts it down cleanly.
    """
    logger.info("Application startup initiated", environment=ENVIRONMENT)
    bot = None
    try:
        bot = await create_bot()
        report = await bot.start()
        # expose the bot in app state for endpoints (avoids importing main)
        app.state.bot = bot  # type: ignore[attr-defined]
        logger.info(
            "Application startup completed successfully",
            recovered_requests=report.requests,
            recovered_payments=report.payments,
        )
        yield
    except Exception as e:  # pragma: no cover
        logger.error("Application startup failed", error=str(e), exc_info=True)
        raise
    finally:
        logger.info("Application shutdown initiated")
        if bot is not None:
            try:
                await bot.shutdown()
            except Exception as e:  # pragma: no cover
                logger.error("Bot shutdown failed", error=str(e), exc_info=True)
        logger.info("Application shutdown completed")


app = FastAPI(
    title="MusiXBot",
    description="""
    Social bot that turns `/music <prompt>` mentions into paid, generated music clips.

    ## Features
    * **Post ingestion** - mentions and payment replies are queued and handled one at a time
    * **Crypto payments** - per-order verification by transaction hash or wallet balance
    * **Recovery** - pending work is checkpointed and restored after restarts
    * **Maintenance jobs** - cleanup, payment re-checks and expiry handling on a schedule
    """,
    version=SERVICE_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/v1/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request ID and logging middleware
@app.middleware("http")
async def add_request_context_and_logging(request: Request, call_next):
    """
    Add request ID, timing, and request/response logging.
    """
    request_id = ensure_request_id(request.headers)
    request.state.request_id = request_id
    request.state.start_time = time.time()

    logger.info(
        "Request started",
        method=request.method,
        url=str(request.url),
        user_agent=request.headers.get("User-Agent"),
        remote_addr=request.client.host if request.client else "unknown",
        request_id=request_id
    )

    response = await call_next(request)

    process_time = time.time() - request.state.start_time
    response.headers[REQUEST_ID_HEADER] = request_id
    response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))
    response.headers["X-Content-Type-Options"] = "nosniff"

    logger.info(
        "Request completed",
        method=request.method,
        url=str(request.url),
        status_code=response.status_code,
        process_time_ms=round(process_time * 1000, 2),
        request_id=request_id
    )

    return response


def _error_response(request: Request, status_code: int, message: str, **extra) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "message": message,
            "request_id": request_id,
            **extra,
        }
    )


# Custom exception handlers
@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    logger.info("Resource not found", error=str(exc), url=str(request.url))
    return _error_response(request, 404, str(exc))


@app.exception_handler(BusyError)
async def busy_handler(request: Request, exc: BusyError):
    logger.warning("Resource busy", error=str(exc), url=str(request.url))
    return _error_response(request, 409, str(exc))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    logger.warning(
        "Request validation failed",
        errors=exc.errors(),
        url=str(request.url),
        method=request.method
    )
    return _error_response(request, 422, "Request validation failed", details=jsonable_errors(exc))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        url=str(request.url),
        method=request.method
    )
    return _error_response(request, exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        url=str(request.url),
        method=request.method,
        exc_info=True
    )
    return _error_response(request, 500, "Internal server error")


def jsonable_errors(exc: RequestValidationError) -> list:
    return [{k: v for k, v in err.items() if k in {"loc", "msg", "type"}} for err in exc.errors()]


# Health check endpoints
@app.get("/health", tags=["health"], summary="Basic health check")
async def health_check():
    """Basic health check endpoint for load balancers."""
    bot = getattr(app.state, "bot", None)  # type: ignore[attr-defined]
    return {
        "status": "healthy" if bot is not None and bot.is_running else "starting",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "timestamp": time.time(),
        "checkpoint_backend": "redis" if CHECKPOINT_SETTINGS.get("use_redis") else "memory",
        "dry_run": bool(BOT_SETTINGS["dry_run"]),
    }


@app.get("/health/detailed", tags=["health"], summary="Detailed health check")
async def detailed_health_check():
    """Detailed health check with component snapshots."""
    health_status = {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "timestamp": time.time(),
        "checks": {}
    }

    bot = getattr(app.state, "bot", None)  # type: ignore[attr-defined]
    if bot is None:
        health_status["status"] = "degraded"
        health_status["checks"]["bot"] = "not started"
        return health_status

    health_status["checks"] = bot.health()
    health_status["checks"]["jobs"] = bot.scheduler.get_all_jobs()

    health_check_fn = getattr(bot.kv_store, "health_check", None)
    if health_check_fn is not None:
        healthy = await health_check_fn()
        health_status["checks"]["redis"] = "healthy" if healthy else "unavailable"
        if not healthy:
            health_status["status"] = "degraded"

    if any(job["last_error"] for job in health_status["checks"]["jobs"]):
        health_status["status"] = "degraded"

    return health_status


@app.get("/", tags=["root"])
async def root():
    """API root endpoint with basic information."""
    return {
        "message": "MusiXBot API",
        "version": SERVICE_VERSION,
        "documentation": "/docs",
        "health_check": "/health",
        "api_base": "/api/v1"
    }


app.include_router(api_router, prefix="/api/v1")

# Development server configuration
if __name__ == "__main__":
    import uvicorn

    logger.info("Starting development server")

    uvicorn.run(
        "musixbot.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
        reload_dirs=["musixbot"],
        log_level="info",
        access_log=True
    )
