"""
Client Portal Backend — Notion REST Client
===========================================

What:  Thin async client for the three Notion endpoints the portal uses:
       POST /databases/{id}/query, GET /databases/{id}, GET /pages/{id}.
How:   httpx.AsyncClient (created lazily, closed on shutdown), tenacity retry
       for transient failures, and a circuit breaker in front of every call.
Who:   Singleton `notion_service`, used by RecordsService and /health.

Resilience Strategy:
    1. Retry transport errors, 429 and 5xx with exponential backoff + jitter
    2. 4xx answers (bad filter, missing permission) are returned immediately
    3. Circuit breaker opens after consecutive upstream failures so callers
       get an instant 503 instead of a stack of timeouts
"""

import logging
import time
from typing import Any, Dict, List, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from portal.config import settings
from portal.exceptions import CircuitBreakerOpenError, NotionAPIError, PortalError

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker Implementation
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Circuit breaker guarding calls to Notion.

    State Machine:
        CLOSED (normal operation)
            → On failure: increment failure_count
            → When failure_count >= threshold: transition to OPEN

        OPEN (rejecting all requests)
            → All calls raise CircuitBreakerOpenError immediately
            → After recovery_timeout seconds: transition to HALF_OPEN

        HALF_OPEN (testing recovery)
            → Allow the next request through
            → On success: transition to CLOSED (reset failure_count)
            → On failure: transition back to OPEN (reset timer)

    Not thread-safe; one instance lives per worker process.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        Returns True if the request can proceed.

        Raises:
            CircuitBreakerOpenError if circuit is OPEN and recovery timeout hasn't elapsed.
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = time.time() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info(
                    "Circuit breaker transitioning to HALF_OPEN after %.1fs",
                    elapsed,
                )
                self.state = self.HALF_OPEN
                return True
            remaining = int(self.recovery_timeout - elapsed)
            raise CircuitBreakerOpenError(recovery_time=remaining)

        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker transitioning to CLOSED (Notion recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == self.HALF_OPEN:
            logger.warning("Circuit breaker returning to OPEN (test request failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Circuit breaker OPENING after %d consecutive failures",
                self.failure_count,
            )
            self.state = self.OPEN


# ══════════════════════════════════════════════════════════════════════════
# Notion Service
# ══════════════════════════════════════════════════════════════════════════

def _is_retryable_response(response: httpx.Response) -> bool:
    return response.status_code == 429 or response.status_code >= 500


class NotionService:
    """
    Async Notion API client.

    Constructor arguments override settings; tests pass an
    `httpx.MockTransport` and zero retry waits.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        database_id: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_max_attempts: Optional[int] = None,
        retry_min_wait: Optional[float] = None,
        retry_max_wait: Optional[float] = None,
    ):
        self._token = token
        self._database_id = database_id
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        self.retry_max_attempts = retry_max_attempts or settings.retry_max_attempts
        self.retry_min_wait = (
            settings.retry_min_wait if retry_min_wait is None else retry_min_wait
        )
        self.retry_max_wait = (
            settings.retry_max_wait if retry_max_wait is None else retry_max_wait
        )

        self.circuit_breaker = CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )

    @property
    def token(self) -> str:
        return self._token if self._token is not None else settings.notion_token

    @property
    def database_id(self) -> str:
        return self._database_id if self._database_id is not None else settings.notion_database_id

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=settings.notion_api_base,
                timeout=settings.notion_timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    def _headers(self, with_body: bool = False) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Notion-Version": settings.notion_version,
        }
        if with_body:
            headers["Content-Type"] = "application/json"
        return headers

    async def _send(
        self, method: str, path: str, body: Optional[Dict[str, Any]]
    ) -> httpx.Response:
        start_time = time.perf_counter()
        response = await self._get_client().request(
            method,
            path,
            json=body,
            headers=self._headers(with_body=body is not None),
        )
        logger.debug(
            "Notion %s %s → %d in %.0fms",
            method,
            path,
            response.status_code,
            (time.perf_counter() - start_time) * 1000,
        )
        return response

    def _retrying(self) -> AsyncRetrying:
        """Exponential backoff with up to one second of jitter."""
        return AsyncRetrying(
            stop=stop_after_attempt(self.retry_max_attempts),
            wait=(
                wait_exponential(multiplier=self.retry_min_wait, max=self.retry_max_wait)
                + wait_random(0, min(1.0, self.retry_min_wait))
            ),
            retry=(
                retry_if_exception_type(httpx.TransportError)
                | retry_if_result(_is_retryable_response)
            ),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            # Hand back the last response instead of raising RetryError
            retry_error_callback=lambda state: state.outcome.result(),
        )

    async def _request(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        page: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Send one logical request (with retries) and return the decoded JSON.

        Raises:
            CircuitBreakerOpenError: too many recent upstream failures
            NotionAPIError: non-2xx answer, or Notion unreachable after retries
        """
        self.circuit_breaker.can_execute()

        try:
            response = await self._retrying()(self._send, method, path, body)
        except httpx.HTTPError as e:
            self.circuit_breaker.record_failure()
            logger.error("Notion %s %s unreachable: %s", method, path, str(e))
            raise NotionAPIError(status_code=0, details=str(e), page=page)

        if _is_retryable_response(response):
            self.circuit_breaker.record_failure()
        else:
            self.circuit_breaker.record_success()

        if not response.is_success:
            logger.error(
                "Notion %s %s failed with %d: %s",
                method,
                path,
                response.status_code,
                response.text[:500],
            )
            raise NotionAPIError(
                status_code=response.status_code,
                details=response.text,
                page=page,
            )

        return response.json()

    async def query_database(self, body: Dict[str, Any], page: Optional[int] = None) -> Dict[str, Any]:
        """POST /databases/{id}/query and return the raw list object."""
        return await self._request(
            "POST", f"/databases/{self.database_id}/query", body=body, page=page
        )

    async def query_all(self, body: Dict[str, Any], max_pages: int) -> List[Dict[str, Any]]:
        """
        Follow `next_cursor` until `has_more` is false or max_pages is reached.

        The caller's body is not modified; each page gets its own copy with
        `start_cursor` set.
        """
        results: List[Dict[str, Any]] = []
        next_cursor: Optional[str] = None
        page_count = 0
        has_more = True

        while has_more and page_count < max_pages:
            page_count += 1
            request_body = dict(body)
            if next_cursor:
                request_body["start_cursor"] = next_cursor

            page_data = await self.query_database(request_body, page=page_count)
            results.extend(page_data.get("results") or [])
            has_more = bool(page_data.get("has_more"))
            next_cursor = page_data.get("next_cursor") or None

        if has_more:
            logger.warning(
                "Query truncated at %d pages (%d records); more rows exist",
                page_count,
                len(results),
            )
        return results

    async def retrieve_database(self) -> Dict[str, Any]:
        return await self._request("GET", f"/databases/{self.database_id}")

    async def retrieve_page(self, page_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/pages/{page_id}")

    async def health_check(self) -> bool:
        """True if the configured database can be retrieved with our token."""
        try:
            await self.retrieve_database()
            return True
        except (PortalError, httpx.HTTPError) as e:
            logger.warning("Notion health check failed: %s", str(e))
            return False


notion_service = NotionService()
