from __future__ import annotations

import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..observability.context import request_id_var

_MAX_INBOUND_LEN = 128


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with an id: the inbound X-Request-Id when it looks sane,
    otherwise a fresh UUIDv4. The id is stored on request.state, bound to the
    logging contextvar and echoed on the response.
    """

    header_name = "X-Request-Id"

    async def dispatch(self, request: Request, call_next):
        inbound = str(request.headers.get("x-request-id") or "").strip()
        if len(inbound) > _MAX_INBOUND_LEN or not inbound.isprintable():
            inbound = ""
        request_id = inbound or str(uuid.uuid4())

        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
            response.headers[self.header_name] = request_id
            return response
        finally:
            request_id_var.reset(token)
