"""
Client Portal Backend — Middleware Unit Tests
==============================================

What:  Rate limit window, caller IP, request ID selection and access-log levels.
How:   Starlette Request objects built from bare ASGI scopes; times are
       passed explicitly.
"""

import logging
from types import SimpleNamespace

from starlette.requests import Request

from portal.middleware.logging import level_for_status
from portal.middleware.rate_limit import SlidingWindow, client_ip_for
from portal.middleware.request_id import resolve_request_id


def make_request(headers=None, client=("10.0.0.5", 5000), **scope_extra) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/api/client-data",
        "query_string": b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    scope.update(scope_extra)
    return Request(scope)


class TestSlidingWindow:

    def test_allows_up_to_limit(self):
        window = SlidingWindow(limit=3, window=60)
        assert [window.hit("ip", now=100 + i) for i in range(3)] == [None, None, None]

    def test_rejects_over_limit_with_retry_after(self):
        window = SlidingWindow(limit=2, window=60)
        window.hit("ip", now=100)
        window.hit("ip", now=110)

        # Oldest hit (100) leaves the window at 160
        assert window.hit("ip", now=130) == 31

    def test_old_hits_expire(self):
        window = SlidingWindow(limit=1, window=60)
        window.hit("ip", now=100)
        assert window.hit("ip", now=160) is None

    def test_keys_are_independent(self):
        window = SlidingWindow(limit=1, window=60)
        window.hit("a", now=100)
        assert window.hit("b", now=100) is None

    def test_prune_forgets_idle_keys(self):
        window = SlidingWindow(limit=5, window=60)
        window.hit("idle", now=100)
        window.hit("busy", now=150)

        assert window.prune(now=170) == 1
        assert len(window) == 1


class TestClientIp:

    def test_forwarded_for_entry_added_by_proxy(self):
        request = make_request({"X-Forwarded-For": "203.0.113.7"})
        assert client_ip_for(request, trusted_hops=1) == "203.0.113.7"

    def test_caller_supplied_entries_ignored(self):
        # Caller sent "198.51.100.9", the proxy appended the real address
        request = make_request({"X-Forwarded-For": "198.51.100.9 , 203.0.113.50"})
        assert client_ip_for(request, trusted_hops=1) == "203.0.113.50"

    def test_two_trusted_proxies(self):
        request = make_request({"X-Forwarded-For": "198.51.100.9, 203.0.113.50, 10.0.0.1"})
        assert client_ip_for(request, trusted_hops=2) == "203.0.113.50"

    def test_no_trusted_proxies_uses_peer(self):
        request = make_request({"X-Forwarded-For": "198.51.100.9"})
        assert client_ip_for(request, trusted_hops=0) == "10.0.0.5"

    def test_short_header_uses_peer(self):
        request = make_request({"X-Forwarded-For": "198.51.100.9"})
        assert client_ip_for(request, trusted_hops=2) == "10.0.0.5"

    def test_default_hops_from_settings(self):
        request = make_request({"X-Forwarded-For": "198.51.100.9, 203.0.113.50"})
        assert client_ip_for(request) == "203.0.113.50"

    def test_socket_peer(self):
        assert client_ip_for(make_request()) == "10.0.0.5"

    def test_no_peer(self):
        assert client_ip_for(make_request(client=None)) == "unknown"


class TestRequestId:

    def test_caller_supplied(self):
        assert resolve_request_id(make_request({"X-Request-ID": "embed-42"})) == "embed-42"

    def test_unsafe_caller_value_replaced(self):
        rid = resolve_request_id(make_request({"X-Request-ID": "bad id\twith tabs"}))
        assert rid != "bad id\twith tabs"
        assert len(rid) == 8

    def test_lambda_request_id(self):
        context = SimpleNamespace(aws_request_id="c6af9ac6-7b61-11e6-9a41-93e812345678")
        request = make_request(**{"aws.context": context})
        assert resolve_request_id(request) == "c6af9ac6-7b61-11e6-9a41-93e812345678"


class TestAccessLogLevel:

    def test_levels(self):
        assert level_for_status(200) == logging.INFO
        assert level_for_status(400) == logging.INFO
        assert level_for_status(403) == logging.WARNING
        assert level_for_status(429) == logging.WARNING
        assert level_for_status(502) == logging.ERROR
