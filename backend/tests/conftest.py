"""
Client Portal Backend — Test Configuration (conftest.py)
=========================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Environment is set BEFORE any portal import so the settings singleton
       picks up the test tenant directory; Notion is replaced by an
       httpx.MockTransport-backed FakeNotion.

Fixture Hierarchy:
    ├── directory:      ClientDirectory built from the test settings
    ├── fake_notion:    FakeNotion wired into records_service and /health
    ├── make_row:       factory for Notion page objects of a client
    └── test_client:    HTTPX AsyncClient for API endpoint testing
"""

import json
import os
from typing import Any, Dict, List, Optional, Set
from unittest.mock import patch

# ══════════════════════════════════════════════════════════════════════════
# Environment Setup
# ══════════════════════════════════════════════════════════════════════════

os.environ["NOTION_TOKEN"] = "secret_test_token"
os.environ["NOTION_DATABASE_ID"] = "db-test"
os.environ["AUTH_SECRET"] = "test-auth-secret"
os.environ["ADMIN_EMAILS"] = "admin@example.com"
os.environ["CLIENTS"] = json.dumps([
    {
        "name": "King Ed",
        "key_prefix": "ke",
        "key_seed": "king-ed-2025",
        "members": ["ed@example.com"],
    },
    {
        "name": "Linden Jay",
        "key_prefix": "lj",
        "key_seed": "client-a-2024",
        "members": ["linden@example.com"],
        "legacy_keys": ["lj-legacy-2023"],
    },
    {
        "name": 'Kieran "KES" Beardmore',
        "key_prefix": "kb",
        "key_seed": "client-b-2024",
        "members": ["Kieran@Example.com"],
    },
])
os.environ["LEGACY_ENDPOINTS_ENABLED"] = "true"
os.environ["RETRY_MIN_WAIT"] = "0"
os.environ["RETRY_MAX_WAIT"] = "0"
os.environ["RELATION_PAUSE_MS"] = "0"
os.environ["LOG_LEVEL"] = "WARNING"

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from portal.services.auth_service import ClientDirectory  # noqa: E402
from portal.services.notion_service import NotionService  # noqa: E402

# Keys the client pages generate: "<prefix>-" + alphanumeric base64(seed)
KING_ED_KEY = "ke-a2luZy1lZC0yMDI1"
LINDEN_JAY_KEY = "lj-Y2xpZW50LWEtMjAyNA"
KIERAN_KEY = "kb-Y2xpZW50LWItMjAyNA"


# ══════════════════════════════════════════════════════════════════════════
# Fake Notion
# ══════════════════════════════════════════════════════════════════════════

def _client_of(notion_filter: Dict[str, Any]) -> Optional[str]:
    if "and" in notion_filter:
        for part in notion_filter["and"]:
            found = _client_of(part)
            if found:
                return found
        return None
    if notion_filter.get("property") == "Client":
        return notion_filter.get("select", {}).get("equals")
    return None


class FakeNotion:
    """
    Minimal stand-in for the Notion REST API.

    - POST /databases/{id}/query filters `rows` by the Client select and
      paginates with a numeric cursor
    - GET /pages/{id} answers from `related` (page id → title), else 404;
      ids in `broken_pages` get a 200 with an HTML body
    - GET /databases/{id} answers with a small schema
    """

    def __init__(self):
        self.rows: List[Dict[str, Any]] = []
        self.related: Dict[str, str] = {}
        self.requests: List[httpx.Request] = []
        self.query_status: Optional[int] = None
        self.ignore_filter = False
        self.broken_pages: Set[str] = set()
        self.service: Optional[NotionService] = None

    @property
    def query_bodies(self) -> List[Dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests if r.url.path.endswith("/query")]

    @property
    def page_fetches(self) -> List[str]:
        return [r.url.path.rsplit("/", 1)[-1] for r in self.requests if "/pages/" in r.url.path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith("/query"):
            if self.query_status:
                return httpx.Response(
                    self.query_status,
                    json={"object": "error", "code": "validation_error", "message": "bad"},
                )
            body = json.loads(request.content)
            client = _client_of(body.get("filter", {}))
            rows = [
                r for r in self.rows
                if self.ignore_filter
                or r["properties"]["Client"]["select"]["name"] == client
            ]
            start = int(body.get("start_cursor") or 0)
            size = body.get("page_size", 100)
            chunk = rows[start:start + size]
            has_more = start + size < len(rows)
            return httpx.Response(200, json={
                "object": "list",
                "results": chunk,
                "has_more": has_more,
                "next_cursor": str(start + size) if has_more else None,
            })

        if "/pages/" in path:
            page_id = path.rsplit("/", 1)[-1]
            if page_id in self.broken_pages:
                return httpx.Response(200, text="<html>upstream maintenance</html>")
            if page_id not in self.related:
                return httpx.Response(404, json={"object": "error", "code": "object_not_found"})
            return httpx.Response(200, json={
                "object": "page",
                "id": page_id,
                "properties": {
                    "Status": {"type": "status", "status": {"name": "Done"}},
                    "Name": {"type": "title", "title": [{"plain_text": self.related[page_id]}]},
                },
            })

        if "/databases/" in path:
            return httpx.Response(200, json={
                "object": "database",
                "id": "db-test",
                "properties": {
                    "Client": {"type": "select"},
                    "Net": {"type": "number"},
                },
            })

        return httpx.Response(404, json={"object": "error"})


def build_row(
    row_id: str,
    client: str,
    income_type: Optional[str] = None,
    currency: Optional[str] = None,
    relation_ids: Optional[List[str]] = None,
) -> Dict[str, Any]:
    properties: Dict[str, Any] = {
        "Client": {"type": "select", "select": {"name": client}},
        "Net": {"type": "number", "number": 100},
        "Description": {"type": "rich_text", "rich_text": [{"plain_text": f"Row {row_id}"}]},
    }
    if income_type:
        properties["Income Type"] = {"type": "select", "select": {"name": income_type}}
    if currency:
        properties["Currency"] = {"type": "select", "select": {"name": currency}}
    if relation_ids is not None:
        properties["Vendor1"] = {
            "type": "relation",
            "relation": [{"id": rid} for rid in relation_ids],
        }
    return {"object": "page", "id": row_id, "properties": properties}


# ══════════════════════════════════════════════════════════════════════════
# Function-Scoped Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def directory():
    return ClientDirectory.from_settings()


@pytest.fixture
def make_row():
    return build_row


@pytest_asyncio.fixture
async def fake_notion():
    """
    FakeNotion behind a real NotionService (zero retry waits), patched in
    wherever the portal looks up its Notion client.
    """
    fake = FakeNotion()
    service = NotionService(
        transport=httpx.MockTransport(fake.handler),
        retry_min_wait=0,
        retry_max_wait=0,
    )
    fake.service = service
    with patch("portal.services.records_service.notion_service", service), \
         patch("portal.routes.health.notion_service", service):
        yield fake
    await service.aclose()


@pytest_asyncio.fixture
async def test_client():
    """HTTPX AsyncClient routed straight into the FastAPI app."""
    from portal.main import app
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
