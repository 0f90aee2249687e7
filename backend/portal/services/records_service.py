"""
Client Portal Backend — Records Service (Request Orchestrator)
===============================================================

What:  Coordinates credential check → client resolution → Notion query →
       relation enrichment → response shaping.
Who:   Called by the route handlers; calls auth_service, query_builder and
       notion_service.

Orchestration Flow (GET /api/client-data):
    ┌────────────┐   ┌────────────┐   ┌──────────────┐   ┌────────────┐
    │ verify key │──▶│  resolve   │──▶│ query_all    │──▶│  enrich    │
    │ + timestamp│   │  client    │   │ (paginated)  │   │ relations  │
    └────────────┘   └────────────┘   └──────────────┘   └────────────┘

Invariant:
    Every query sent to Notion is built by query_builder.tenant_query() with a
    client name that came from the server-side directory (or from an admin's
    explicit choice), never from an unverified caller.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from portal.config import settings
from portal.exceptions import AccessDeniedError, AuthenticationError, PortalError
from portal.schemas.records import ClientDataResponse, DebugInfo, ResultMetadata
from portal.services.auth_service import ClientDirectory, resolve_client, verify_secure_key
from portal.services.notion_service import notion_service
from portal.services.query_builder import (
    collect_select_values,
    project_columns,
    restrict_to_client,
    tenant_query,
)

logger = logging.getLogger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _first_title(page: Dict[str, Any]) -> Optional[str]:
    for prop in (page.get("properties") or {}).values():
        if prop.get("type") == "title":
            fragments = prop.get("title") or []
            if fragments:
                return fragments[0].get("plain_text")
            return None
    return None


class RecordsService:
    """
    Business logic for reading a client's rows.

    Stateless: the directory is rebuilt from settings on every call and the
    relation-title cache lives only for one request.
    """

    async def client_dashboard(
        self,
        user_email: Optional[str],
        secure_key: Optional[str],
        timestamp: Optional[str],
        client_param: Optional[str] = None,
    ) -> ClientDataResponse:
        """
        Full dashboard payload for a secure-key request.

        Raises:
            AuthenticationError: credential missing or invalid (401)
            AccessDeniedError:   caller may not see the requested client (403)
            ValidationError:     admin without client context (400)
            NotionAPIError:      Notion rejected a page of the query (500)
        """
        if not user_email or not secure_key or not timestamp:
            raise AuthenticationError(message="Missing authentication parameters")

        directory = ClientDirectory.from_settings()
        verification = verify_secure_key(directory, user_email, secure_key, timestamp)
        if not verification.ok:
            raise AuthenticationError(message="Invalid access credentials")

        client_name = resolve_client(directory, user_email, client_param, verification)
        logger.info(
            "Resolved access: is_admin=%s client=%s",
            verification.is_admin,
            client_name,
        )

        body = tenant_query(client_name, page_size=settings.query_page_size)
        results = await notion_service.query_all(body, max_pages=settings.query_max_pages)

        if results:
            await self.enrich_relations(results)

        return ClientDataResponse(
            results=results,
            authorized_client=client_name,
            user_email=user_email,
            is_admin=verification.is_admin,
            column_order=list(settings.column_order),
            column_headers=dict(settings.column_headers),
            debug=DebugInfo(record_count=len(results), timestamp=_utc_now_iso()),
            metadata=ResultMetadata(
                income_types=collect_select_values(results, "Income Type"),
                currencies=collect_select_values(results, "Currency"),
            ),
        )

    async def enrich_relations(self, results: List[Dict[str, Any]]) -> int:
        """
        Resolve the first related page of each non-empty relation property
        and store its title as `relation_titles` on the property, in place.

        Fetches are paced: after every `relation_batch_size` fetches the
        loop sleeps `relation_pause_ms`. A failed fetch leaves the property
        untouched.

        Returns:
            Number of page fetches performed.
        """
        titles: Dict[str, Optional[str]] = {}
        fetches = 0

        for record in results:
            for key, prop in (record.get("properties") or {}).items():
                if prop.get("type") != "relation":
                    continue
                relation = prop.get("relation")
                if not isinstance(relation, list) or not relation:
                    continue
                page_id = (relation[0] or {}).get("id")
                if not page_id:
                    continue

                if page_id not in titles:
                    fetches += 1
                    titles[page_id] = await self._fetch_title(page_id, key)
                    if fetches % settings.relation_batch_size == 0:
                        await asyncio.sleep(settings.relation_pause_ms / 1000)

                if titles[page_id]:
                    prop["relation_titles"] = titles[page_id]

        if fetches:
            logger.info("Resolved %d related pages for %d records", fetches, len(results))
        return fetches

    async def _fetch_title(self, page_id: str, property_name: str) -> Optional[str]:
        # ValueError covers a 2xx answer whose body is not JSON
        try:
            page = await notion_service.retrieve_page(page_id)
        except (PortalError, httpx.HTTPError, ValueError) as e:
            logger.warning("Relation fetch error for %s: %s", property_name, str(e))
            return None
        return _first_title(page)

    async def client_records(
        self,
        client_name: str,
        filter_property: Optional[str] = None,
        filter_condition: Optional[str] = None,
        filter_value: Optional[str] = None,
        sort_property: Optional[str] = None,
        sort_direction: Optional[str] = None,
        columns: Optional[List[str]] = None,
        verify: bool = False,
    ) -> Dict[str, Any]:
        """
        One page (proxy_page_size) of a client's rows, as Notion returned it.

        Args:
            verify:  re-check every row's client property before returning
            columns: project rows to these properties and add `_columnOrder`
        """
        body = tenant_query(
            client_name,
            page_size=settings.proxy_page_size,
            filter_property=filter_property,
            filter_condition=filter_condition,
            filter_value=filter_value,
            sort_property=sort_property,
            sort_direction=sort_direction,
        )
        data = await notion_service.query_database(body)

        if "results" in data:
            results = data.get("results") or []
            if verify:
                kept = restrict_to_client(results, client_name)
                if len(kept) != len(results):
                    logger.warning(
                        "Dropped %d rows not belonging to client %s",
                        len(results) - len(kept),
                        client_name,
                    )
                results = kept
            if columns:
                results = project_columns(results, columns)
                data["_columnOrder"] = list(columns)
            data["results"] = results

        return data

    async def database_schema(self) -> Dict[str, Any]:
        """Database object with its property schema (`action=properties`)."""
        return await notion_service.retrieve_database()

    def client_for_member(self, user_email: Optional[str]) -> str:
        """Client mapped to an e-mail, for the e-mail-only endpoints."""
        client_name = ClientDirectory.from_settings().client_for_user(user_email)
        if not client_name:
            raise AccessDeniedError(message=f"No client access for user: {user_email}")
        return client_name


records_service = RecordsService()
