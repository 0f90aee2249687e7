"""
Client Portal Backend — Request ID Middleware
==============================================

What:  Gives every request a correlation ID, returned in X-Request-ID and
       echoed in error bodies as `request_id`.

Source of the ID, first match wins:
    1. X-Request-ID sent by the embed page (only if it looks like an ID)
    2. aws_request_id of the Lambda invocation (set by Mangum in scope)
    3. 8 hex chars of a fresh uuid4
"""

import re
import uuid
from contextvars import ContextVar
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Caller-supplied IDs end up in log lines
_SAFE_ID = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def _lambda_request_id(request: Request) -> Optional[str]:
    context = request.scope.get("aws.context")
    return getattr(context, "aws_request_id", None) if context is not None else None


def resolve_request_id(request: Request) -> str:
    supplied = request.headers.get("X-Request-ID", "")
    if _SAFE_ID.match(supplied):
        return supplied
    return _lambda_request_id(request) or uuid.uuid4().hex[:8]


class RequestIDMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = resolve_request_id(request)
        request_id_var.set(rid)
        request.state.request_id = rid
        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response
