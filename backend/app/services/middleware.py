"""Request timing and tracing middleware for the SolarOps API."""
import re
import time
import uuid
import logging
from typing import Any, Dict, Optional
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("solarops-api.middleware")

SKIP_LOG_PATHS = {"/health"}

# /api/v1/projects/{id}/... routes carry the project in the path
PROJECT_PATH_RE = re.compile(r"^/api/v1/projects/([0-9a-fA-F-]{32,36})(?:/|$)")

# Resolution writes that touch more than one project
RESOLUTION_PATHS = {
    "/api/v1/duplicates/dismiss": "dismiss",
    "/api/v1/duplicates/confirm": "confirm",
    "/api/v1/duplicates/merge": "merge",
}


def project_id_from_path(path: str) -> Optional[str]:
    match = PROJECT_PATH_RE.match(path)
    return match.group(1) if match else None


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """
    Middleware that:
    - Reuses an incoming X-Request-ID or assigns a fresh uuid4.
    - Measures end-to-end request duration in milliseconds.
    - Adds X-Request-ID and X-Process-Time headers to every response.
    - Emits one structured log line per request, except health checks, tagged
      with the project id for single-project routes and the action name for
      duplicate resolution writes.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start_time = time.perf_counter()

        # Route handlers read this to tag their own log lines
        request.state.request_id = request_id

        response: Response = await call_next(request)

        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(duration_ms)

        path = request.url.path
        if path not in SKIP_LOG_PATHS:
            extra: Dict[str, Any] = {
                "http_method": request.method,
                "http_path": path,
                "http_status": response.status_code,
                "request_id": request_id,
                "duration_ms": duration_ms,
            }
            project_id = project_id_from_path(path)
            if project_id:
                extra["project_id"] = project_id
            message = "request completed"
            if path in RESOLUTION_PATHS:
                message = f"duplicate {RESOLUTION_PATHS[path]} request completed"
            logger.info(message, extra=extra)

        return response
