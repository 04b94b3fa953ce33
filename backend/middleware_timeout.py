"""
Request timeout middleware.

A slow row-store call should not hold a worker forever; the client gets a 504
and may retry. Remote procedures already in flight are not cancelled.
"""
import asyncio
import logging
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from config import REQUEST_TIMEOUT_SECONDS

logger = logging.getLogger("lesson_admin")


class TimeoutMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, timeout_seconds: float = REQUEST_TIMEOUT_SECONDS):
        super().__init__(app)
        self.timeout_seconds = timeout_seconds

    async def dispatch(self, request: Request, call_next):
        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                f"Request timeout: {request.method} {request.url.path} exceeded {self.timeout_seconds}s"
            )
            return JSONResponse(
                status_code=504,
                content={
                    "detail": f"Request exceeded maximum duration of {self.timeout_seconds} seconds",
                    "timeout_seconds": self.timeout_seconds,
                },
            )
