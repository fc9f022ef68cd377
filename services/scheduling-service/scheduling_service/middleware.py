import json
import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from .usage import current_session

logger = logging.getLogger("scheduling_service.requests")


def _log_line(request_id: str, request: Request, status: int, duration_ms: float):
    logger.info(json.dumps(
        {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": status,
            "duration_ms": round(duration_ms, 2),
        },
        separators=(",", ":"),
    ))


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Assigns or propagates X-Request-Id, binds it as the mapping-usage session
    for everything the request does, and logs one JSON line per request.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        request.state.request_id = request_id
        token = current_session.set(request_id)

        start = time.perf_counter()
        try:
            response: Response = await call_next(request)
        except Exception:
            _log_line(request_id, request, 500, (time.perf_counter() - start) * 1000)
            raise
        finally:
            current_session.reset(token)

        response.headers["X-Request-Id"] = request_id
        _log_line(request_id, request, response.status_code, (time.perf_counter() - start) * 1000)
        return response
