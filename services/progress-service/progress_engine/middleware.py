"""
Request ID middleware

Reuses the client's X-Request-ID or generates one, exposes it on
request.state and echoes it on the response.
"""
import logging
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id

        response = await call_next(request)

        response.headers["X-Request-ID"] = request_id
        logger.debug(f"{request.method} {request.url.path} -> {response.status_code} [{request_id}]")
        return response
