import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger("paysys.requests")


class RequestLoggerMiddleware(BaseHTTPMiddleware):
    """Logs method, path, status and duration. Bodies are never logged."""

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        client = request.client.host if request.client else "-"
        logger.info(f"--> {request.method} {request.url.path} - {client}")

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        level = logging.WARNING if response.status_code >= 400 else logging.INFO
        logger.log(level, f"<-- {request.method} {request.url.path} - {response.status_code} - {duration_ms:.0f}ms")
        return response
