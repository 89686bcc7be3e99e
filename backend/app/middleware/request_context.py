from __future__ import annotations

import re
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..observability.context import request_id_var

# Inbound ids are echoed into logs and headers; keep them boring.
_SAFE_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def _inbound_request_id(request: Request) -> str | None:
    raw = str(request.headers.get("x-request-id") or "").strip()
    if raw and _SAFE_REQUEST_ID.match(raw):
        return raw
    return None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    - Accepts a well-formed inbound X-Request-Id or generates a UUIDv4.
    - Stores it in request.state.request_id and in a contextvar for logging.
    - Always echoes X-Request-Id on the response.
    """

    header_name = "X-Request-Id"

    async def dispatch(self, request: Request, call_next):
        request_id = _inbound_request_id(request) or str(uuid.uuid4())

        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
            response.headers[self.header_name] = request_id
            return response
        finally:
            request_id_var.reset(token)
