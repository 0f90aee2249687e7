"""
Client Portal Backend — Client Data Route Handler
==================================================

What:  Handles GET /api/client-data, the dashboard feed of one client's rows.
How:   Reads the credential from the query string and delegates everything
       else to RecordsService.
Who:   Called by the client dashboard page, which appends
       ?userEmail=...&secureKey=...&timestamp=...[&client=...]

Status codes (rendered by global exception handlers):
    401 missing or invalid credential
    403 client not allowed for this user
    400 admin without client context
    500 configuration missing / Notion error
    503 Notion circuit open
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from portal.routes.dependencies import require_notion_config
from portal.schemas.records import ClientDataResponse, ErrorResponse
from portal.services.records_service import records_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Client Data"])


@router.get(
    "/client-data",
    response_model=ClientDataResponse,
    responses={
        400: {"description": "Admin request without client context", "model": ErrorResponse},
        401: {"description": "Missing or invalid credentials", "model": ErrorResponse},
        403: {"description": "Client access denied", "model": ErrorResponse},
        500: {"description": "Configuration or Notion error", "model": ErrorResponse},
    },
    summary="Rows of the caller's authorized client",
    dependencies=[Depends(require_notion_config)],
)
async def get_client_data(
    user_email: Optional[str] = Query(default=None, alias="userEmail"),
    secure_key: Optional[str] = Query(default=None, alias="secureKey"),
    timestamp: Optional[str] = Query(default=None, description="Unix seconds the key was issued"),
    client: Optional[str] = Query(default=None, description="Client to show (admins only)"),
) -> ClientDataResponse:
    return await records_service.client_dashboard(
        user_email=user_email,
        secure_key=secure_key,
        timestamp=timestamp,
        client_param=client,
    )
