"""
Client Portal Backend — Access Log Middleware
==============================================

What:  One line per /api request on the `portal.access` logger.

The query string of every portal route carries e-mails, secure keys or
auth hashes, so only the parameter NAMES are logged, never their values.
/health and the docs pages are not logged.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from portal.middleware.rate_limit import client_ip_for
from portal.middleware.request_id import request_id_var

logger = logging.getLogger("portal.access")


def level_for_status(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status in (401, 403, 429):
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if not request.url.path.startswith("/api/"):
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        param_names = ",".join(sorted(request.query_params.keys())) or "-"
        logger.log(
            level_for_status(response.status_code),
            "%s %s?%s → %d in %.0fms [%s] ip=%s",
            request.method,
            request.url.path,
            param_names,
            response.status_code,
            elapsed_ms,
            request_id_var.get(""),
            client_ip_for(request),
        )
        return response
