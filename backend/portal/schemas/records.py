"""
Client Portal Backend — Pydantic Response Schemas
==================================================

What:  Pydantic models defining the JSON contract with the portal front-end.
How:   Fields are snake_case in Python and camelCase on the wire (aliases);
       FastAPI serializes response models by alias.

Notion page objects inside `results` are passed through untouched apart from
the `relation_titles` key added by relation enrichment, so they are typed as
plain dicts rather than modelled.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class DebugInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    record_count: int = Field(alias="recordCount", description="Number of records returned")
    timestamp: str = Field(description="Server time the payload was built (ISO 8601, UTC)")


class ResultMetadata(BaseModel):
    """Filter options the front-end offers, derived from the returned rows."""

    model_config = ConfigDict(populate_by_name=True)

    income_types: List[str] = Field(default_factory=list, alias="incomeTypes")
    currencies: List[str] = Field(default_factory=list)


class ClientDataResponse(BaseModel):
    """
    What:  Payload of GET /api/client-data.
    Who:   Rendered by the client dashboard page as a table.

    Fields:
        results:          Notion page objects of the authorized client
        authorizedClient: Client the rows were filtered to
        columnOrder:      Property names in display order
        columnHeaders:    Property name → display header
    """

    model_config = ConfigDict(populate_by_name=True)

    results: List[Dict[str, Any]] = Field(description="Notion page objects")
    authorized_client: str = Field(alias="authorizedClient")
    user_email: str = Field(alias="userEmail")
    is_admin: bool = Field(alias="isAdmin")
    column_order: List[str] = Field(alias="columnOrder")
    column_headers: Dict[str, str] = Field(alias="columnHeaders")
    debug: DebugInfo
    metadata: ResultMetadata


class ErrorResponse(BaseModel):
    """
    What:  Standardized error response format for all API errors.

    Example:
        {
            "error": "forbidden",
            "message": "Client access denied for user",
            "request_id": "3f2a9c1b"
        }
    """

    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """Health check response showing service and upstream status."""

    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    configuration: str = Field(description="complete, or incomplete when settings are missing")
    notion: str = Field(description="Notion status: available, unavailable, circuit_open, unconfigured")
    uptime_seconds: float = Field(description="Seconds since service started")
