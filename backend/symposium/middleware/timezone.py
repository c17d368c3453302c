"""
Server clock headers.

Deadlines are enforced on the server clock; clients use these headers to
correct their countdown for local clock drift.
"""
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..core.config import settings
from ..utils.timezone import format_display_time, isoformat_utc, utc_now


class ServerTimeMiddleware(BaseHTTPMiddleware):
    """Adds the authoritative server time to every response"""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        now = utc_now()
        response.headers["X-Server-Time"] = isoformat_utc(now)
        response.headers["X-Timezone"] = settings.default_timezone
        response.headers["X-Server-Time-Local"] = format_display_time(now)

        return response
