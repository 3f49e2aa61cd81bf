"""
FairFlip Main Application Entry Point
FastAPI service for the provably fair coin flip.
"""

import sys
from pathlib import Path

# Add parent directory to path so imports work when running directly
if __name__ == "__main__":
    sys.path.insert(0, str(Path(__file__).parent.parent))

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
import uvicorn

from fairflip.core.logger import init_logging, get_logger
from fairflip.config import settings

# Initialize logging first
init_logging(
    level=settings.logging.level,
    log_to_file=settings.logging.log_to_file,
    formatter=settings.logging.formatter,
    log_file_path=settings.paths.get_log_path(),
)

from fairflip.core.exceptions import FlipError
from fairflip.core.scheduler import withdrawal_scheduler
from fairflip.routers import admin, api

logger = get_logger("main")


# ==================== Security Headers Middleware ====================


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        return response


# ==================== UVLoop Integration =====================

try:
    import uvloop

    uvloop.install()
    logger.info("uvloop installed and enabled.")
except ImportError:
    logger.info("uvloop not found, using default asyncio event loop.")


# ==================== Exception Handlers ====================


async def flip_error_handler(request: Request, exc: FlipError):
    if exc.status_code >= 500:
        logger.error(f"{exc.reason}: {exc.message}", extra={"path": request.url.path})
    else:
        logger.info(f"Rejected {request.url.path}: {exc.reason}")
    return ORJSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = [".".join(str(p) for p in err["loc"] if p != "body") for err in exc.errors()]
    missing = any(err["type"] == "missing" for err in exc.errors())
    return ORJSONResponse(
        status_code=400,
        content={
            "error": "Missing required fields" if missing else "Invalid request",
            "reason": "validation_error",
            "fields": fields,
        },
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return ORJSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def global_exception_handler(request: Request, exc: Exception):
    """Handle unhandled exceptions gracefully."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return ORJSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.server.debug else None,
        },
    )


# ==================== Application Setup ====================


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.server.name,
        docs_url="/docs" if settings.server.debug else None,
        redoc_url=None,
        default_response_class=ORJSONResponse,
    )

    app.state.limiter = api.limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(FlipError, flip_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.add_middleware(SecurityHeadersMiddleware)

    # CORS middleware (for development)
    if settings.server.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(api.router, prefix="/api/flip")
    app.include_router(admin.router, prefix="/admin")

    @app.get("/health")
    async def health():
        return {"status": "ok", "name": settings.server.name}

    @app.on_event("startup")
    def startup_event():
        if not settings.security.cron_secret:
            logger.warning("CRON_SECRET is not set; admin routes are unprotected")
        if settings.withdrawal.scheduler_enabled:
            withdrawal_scheduler.start()

    @app.on_event("shutdown")
    def shutdown_event():
        withdrawal_scheduler.shutdown()

    return app


app = create_app()

logger.info(f"Application '{settings.server.name}' initialized")
logger.info(f"Debug mode: {settings.server.debug}")


# ==================== Main Entry Point ====================

if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="FairFlip coin flip server")
    parser.add_argument("--host", default=settings.server.host, help="Bind address")
    parser.add_argument("--port", type=int, default=settings.server.port, help="Bind port")
    parser.add_argument(
        "--no-scheduler",
        action="store_true",
        help="Do not start the withdrawal processor fallback job",
    )
    args = parser.parse_args()

    if args.no_scheduler:
        settings.withdrawal.scheduler_enabled = False
        logger.info("Withdrawal scheduler disabled from the command line")

    logger.info(f"Starting server on {args.host}:{args.port}")
    uvicorn.run(
        "fairflip.main:app",
        host=args.host,
        port=args.port,
        reload=settings.server.debug,
    )
