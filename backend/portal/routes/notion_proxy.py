"""
Client Portal Backend — Notion Proxy Route Handlers
====================================================

What:  Single-page proxy endpoints over the client database.

Route Inventory:
    GET /api/secure-notion   HMAC-signed (wixUserId, userEmail, authHash)
    GET /api/secure-simple   e-mail mapping only            [legacy]
    GET /api/simple-notion   e-mail mapping only, no filter [legacy]
    GET /api/notion          explicit clientName, no auth   [legacy]

    `action=properties` returns the database schema instead of rows.

    [legacy] routes trust caller-supplied identity and answer 404 unless
    LEGACY_ENDPOINTS_ENABLED is set. They exist for the older embed pages.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from portal.exceptions import AccessDeniedError, AuthenticationError, ValidationError
from portal.routes.dependencies import (
    require_auth_secret,
    require_legacy_endpoints,
    require_notion_config,
)
from portal.schemas.records import ErrorResponse
from portal.services.auth_service import verify_user_auth
from portal.services.query_builder import parse_columns
from portal.services.records_service import records_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Notion Proxy"])

_ERRORS = {
    401: {"description": "Unauthorized", "model": ErrorResponse},
    403: {"description": "No client access", "model": ErrorResponse},
    500: {"description": "Configuration or Notion error", "model": ErrorResponse},
}


def _with_identity(data: Dict[str, Any], client_name: str, user_email: str) -> Dict[str, Any]:
    return {**data, "authorizedClient": client_name, "userEmail": user_email}


@router.get(
    "/secure-notion",
    responses=_ERRORS,
    summary="HMAC-authenticated query of the caller's client",
    dependencies=[Depends(require_notion_config)],
)
async def secure_notion(
    auth_secret: str = Depends(require_auth_secret),
    wix_user_id: Optional[str] = Query(default=None, alias="wixUserId"),
    user_email: Optional[str] = Query(default=None, alias="userEmail"),
    auth_hash: Optional[str] = Query(default=None, alias="authHash"),
    action: Optional[str] = Query(default=None),
    filter_property: Optional[str] = Query(default=None, alias="filterProperty"),
    filter_condition: Optional[str] = Query(default=None, alias="filterCondition"),
    filter_value: Optional[str] = Query(default=None, alias="filterValue"),
) -> Dict[str, Any]:
    if not verify_user_auth(wix_user_id, user_email, auth_hash, auth_secret):
        raise AuthenticationError(message="Unauthorized access")

    try:
        client_name = records_service.client_for_member(user_email)
    except AccessDeniedError:
        raise AccessDeniedError(message="No client access assigned to this user")

    if action == "properties":
        return await records_service.database_schema()

    data = await records_service.client_records(
        client_name,
        filter_property=filter_property,
        filter_condition=filter_condition,
        filter_value=filter_value,
    )
    return _with_identity(data, client_name, user_email)


@router.get(
    "/secure-simple",
    responses=_ERRORS,
    summary="E-mail mapped query with optional extra filter",
    dependencies=[Depends(require_legacy_endpoints), Depends(require_notion_config)],
)
async def secure_simple(
    user_email: Optional[str] = Query(default=None, alias="userEmail"),
    action: Optional[str] = Query(default=None),
    filter_property: Optional[str] = Query(default=None, alias="filterProperty"),
    filter_condition: Optional[str] = Query(default=None, alias="filterCondition"),
    filter_value: Optional[str] = Query(default=None, alias="filterValue"),
) -> Dict[str, Any]:
    if not user_email:
        raise ValidationError(message="Missing userEmail", field="userEmail")

    client_name = records_service.client_for_member(user_email)

    if action == "properties":
        return await records_service.database_schema()

    data = await records_service.client_records(
        client_name,
        filter_property=filter_property,
        filter_condition=filter_condition,
        filter_value=filter_value,
    )
    return _with_identity(data, client_name, user_email)


@router.get(
    "/simple-notion",
    responses=_ERRORS,
    summary="E-mail mapped query without filters",
    dependencies=[Depends(require_legacy_endpoints), Depends(require_notion_config)],
)
async def simple_notion(
    user_email: Optional[str] = Query(default=None, alias="userEmail"),
    action: Optional[str] = Query(default=None),
) -> Dict[str, Any]:
    client_name = records_service.client_for_member(user_email)

    if action == "properties":
        return await records_service.database_schema()

    data = await records_service.client_records(client_name)
    return _with_identity(data, client_name, user_email)


@router.get(
    "/notion",
    responses=_ERRORS,
    summary="Query an explicitly named client with filters, sorting and column selection",
    dependencies=[Depends(require_legacy_endpoints), Depends(require_notion_config)],
)
async def notion_query(
    client_name: Optional[str] = Query(default=None, alias="clientName"),
    action: Optional[str] = Query(default=None),
    filter_property: Optional[str] = Query(default=None, alias="filterProperty"),
    filter_condition: Optional[str] = Query(default=None, alias="filterCondition"),
    filter_value: Optional[str] = Query(default=None, alias="filterValue"),
    sort_property: Optional[str] = Query(default=None, alias="sortProperty"),
    sort_direction: Optional[str] = Query(default=None, alias="sortDirection"),
    columns: Optional[str] = Query(default=None, description="Comma-separated property names"),
) -> Dict[str, Any]:
    if action == "properties":
        return await records_service.database_schema()

    if not client_name:
        raise ValidationError(message="Client name is required for data access", field="clientName")

    return await records_service.client_records(
        client_name,
        filter_property=filter_property,
        filter_condition=filter_condition,
        filter_value=filter_value,
        sort_property=sort_property,
        sort_direction=sort_direction,
        columns=parse_columns(columns),
        verify=True,
    )
