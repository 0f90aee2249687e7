# Middleware package init
"""
Client Portal Backend — Middleware Package
===========================================

Request → [CORS] → [Rate Limit] → [Request ID] → [Access Log] → [GZip] → Route

    rate_limit.py   per-IP sliding window on /api routes, answers 429 itself
    request_id.py   X-Request-ID header + request_id ContextVar
    logging.py      one `portal.access` line per /api request, no query values
"""
