"""
SolarOps Back Office API v1.0
FastAPI backend with async PostgreSQL and JWT auth, serving duplicate-project
detection, resolution and project governance for the solar project back office.
"""
import os
import sys
import logging
import time
import collections
from contextlib import asynccontextmanager
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from app.services.logging_config import setup_logging
from app.services.middleware import RequestTimingMiddleware
from app.services.perf_monitor import tracker as scan_tracker

# Load .env file automatically in dev (no-op if the file is missing)
load_dotenv()

_log_level = os.getenv("LOG_LEVEL", "INFO")
_json_logs = os.getenv("LOG_FORMAT", "json").lower() != "text"
setup_logging(level=_log_level, json_output=_json_logs)
logger = logging.getLogger("solarops-api")

# Record process start time for uptime calculation
_PROCESS_START = time.monotonic()

# Startup validation
for var in ["DATABASE_URL", "JWT_SECRET_KEY"]:
    if not os.getenv(var):
        logger.warning(f"MISSING env var: {var} — running in dev mode")


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        from app.db import init_db
        await init_db()
        logger.info("SQLAlchemy models synced.")
    except Exception as e:
        logger.warning(f"Table init warning: {e}")

    yield

    from app.db import engine
    await engine.dispose()


app = FastAPI(
    title="SolarOps Back Office API",
    version="1.0.0",
    description="Duplicate project detection and governance for the solar project back office",
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Rate Limiting Middleware
# ---------------------------------------------------------------------------
class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    In-memory sliding-window rate limiter.
    Buckets:
      - duplicate resolution writes (dismiss/confirm/merge) : limit / 3 per IP
      - everything else                                     : limit per IP
    ``RATE_LIMIT_PER_MINUTE=0`` disables the limiter.
    """
    RESOLUTION_PATHS = (
        "/api/v1/duplicates/dismiss",
        "/api/v1/duplicates/confirm",
        "/api/v1/duplicates/merge",
    )

    def __init__(self, app):
        super().__init__(app)
        self._limit = int(os.getenv("RATE_LIMIT_PER_MINUTE", "60"))
        # {bucket_key: deque of timestamps}
        self._windows: dict = collections.defaultdict(collections.deque)

    def _get_limit(self, path: str) -> int:
        if path in self.RESOLUTION_PATHS:
            return max(1, self._limit // 3)
        return self._limit

    async def dispatch(self, request: Request, call_next):
        if self._limit <= 0:
            return await call_next(request)
        ip = request.client.host if request.client else "unknown"
        path = request.url.path
        limit = self._get_limit(path)
        bucket = f"{ip}:{path if path in self.RESOLUTION_PATHS else 'general'}"
        now = time.monotonic()
        window = self._windows[bucket]
        # Remove entries older than 60 seconds
        while window and now - window[0] > 60:
            window.popleft()
        if len(window) >= limit:
            return JSONResponse(
                status_code=429,
                content={"detail": "Too many requests. Please slow down."},
                headers={"Retry-After": "60"},
            )
        window.append(now)
        return await call_next(request)


# ---------------------------------------------------------------------------
# Security Headers Middleware
# ---------------------------------------------------------------------------
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds standard security headers to every response."""
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Content-Security-Policy"] = "default-src 'self'"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


# ---------------------------------------------------------------------------
# CORS: restricted to allowed origins from env
# ---------------------------------------------------------------------------
_cors_default = "http://localhost:3000,http://localhost:5173"
cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", _cors_default).split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Requested-With", "X-Request-ID"],
)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RateLimitMiddleware)
# Request timing + X-Request-ID must be outermost so it wraps all other middleware
app.add_middleware(RequestTimingMiddleware)

# Routers
from app.api.dedup_routes import router as dedup_router
from app.api.project_routes import router as project_router
from app.api.audit_routes import router as audit_router

app.include_router(dedup_router)
app.include_router(project_router)
app.include_router(audit_router)


@app.get("/health")
async def health_check():
    return {
        "status": "active",
        "version": "1.0.0",
        "db_configured": bool(os.getenv("DATABASE_URL")),
    }


@app.get("/metrics")
async def metrics():
    """
    Scanner and resolution metrics plus process memory usage.
    Sourced from the in-process ScanTracker singleton.
    """
    uptime_seconds = round(time.monotonic() - _PROCESS_START, 1)

    memory_mb: float = 0.0
    try:
        import resource  # Unix only
        usage = resource.getrusage(resource.RUSAGE_SELF)
        # ru_maxrss is in kilobytes on Linux, bytes on macOS
        if sys.platform == "darwin":
            memory_mb = round(usage.ru_maxrss / (1024 * 1024), 2)
        else:
            memory_mb = round(usage.ru_maxrss / 1024, 2)
    except ImportError:
        memory_mb = 0.0

    return {
        "uptime_seconds": uptime_seconds,
        "memory_usage_mb": memory_mb,
        **scan_tracker.get_metrics(),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True)
