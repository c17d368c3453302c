import time
import logging
import uuid
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from typing import Callable

perf_logger = logging.getLogger("performance")


class PerformanceMiddleware(BaseHTTPMiddleware):
    """Per-request timing, request ids and slow-request logging"""

    def __init__(self, app, slow_request_threshold: float = 1.0):
        super().__init__(app)
        self.slow_request_threshold = slow_request_threshold

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        request_id = request.headers.get("x-request-id") or f"req_{uuid.uuid4().hex[:12]}"
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            perf_logger.error(
                f"[{request_id}] {request.method} {request.url.path} failed after "
                f"{process_time:.3f}s: {e}"
            )
            raise

        process_time = time.time() - start_time

        response.headers["X-Process-Time"] = str(round(process_time, 4))
        response.headers["X-Request-ID"] = request_id

        if process_time > self.slow_request_threshold:
            perf_logger.warning(
                f"[{request_id}] Slow request: {request.method} {request.url.path} "
                f"took {process_time:.3f}s (threshold: {self.slow_request_threshold}s)"
            )

        perf_logger.info(
            f"[{request_id}] {request.method} {request.url.path} "
            f"-> {response.status_code} in {process_time:.3f}s"
        )
        return response
