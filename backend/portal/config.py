"""
Client Portal Backend — Application Configuration
==================================================

What:  Centralized configuration management using Pydantic Settings.
How:   Pydantic Settings reads from environment variables (or .env file),
       validates types/ranges, and provides a singleton `settings` object.
Who:   Imported by every module that needs configuration values.
When:  Loaded once at module import time; Notion credentials are checked
       per request so a misconfigured deployment still answers /health.

Tenant directory:
    CLIENTS is a JSON list, one object per tenant:

        [{"name": "King Ed", "key_prefix": "ke", "key_seed": "king-ed-2025",
          "members": ["ed@example.com"], "legacy_keys": []}]

    `name` must match the option of the Notion "Client" select property
    exactly, including quotes and capitalization.
"""

from typing import Dict, List

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


DEFAULT_COLUMNS: List[str] = [
    "Invoice date",
    "Inv #",
    "Vendor1",
    "Description",
    "Income Type",
    "Net",
    "Gross",
    "Currency",
    "Paid in date",
    "Amount Received",
    "Currency (receipt)",
    "Adjustments",
    "Net Commissionable",
    "Commission %",
    "Mgmt Commission",
    "Mgmt Inv #",
]

DEFAULT_COLUMN_HEADERS: Dict[str, str] = {
    "Invoice date": "Date (Inv/Stmt)",
    "Inv #": "Invoice #",
    "Vendor1": "Vendor",
    "Description": "Description",
    "Income Type": "Income Type",
    "Net": "Net Amount",
    "Gross": "Gross Amount",
    "Currency": "Currency (Inv/Stmt)",
    "Paid in date": "Paid In Date",
    "Amount Received": "Amount Received",
    "Currency (receipt)": "Currency (Received)",
    "Adjustments": "Adjustments",
    "Net Commissionable": "Net Commissionable",
    "Commission %": "Commission %",
    "Mgmt Commission": "Mgmt Commission",
    "Mgmt Inv #": "Mgmt Inv #",
}


class ClientAccount(BaseModel):
    """One tenant: its Notion select value, key material and member e-mails."""

    name: str = Field(min_length=1)
    key_prefix: str = Field(min_length=1)
    key_seed: str = Field(min_length=1)
    members: List[str] = Field(default_factory=list)
    # Keys handed out before a seed rotation; still accepted until removed
    legacy_keys: List[str] = Field(default_factory=list)

    @field_validator("members")
    @classmethod
    def normalize_members(cls, v: List[str]) -> List[str]:
        return [email.strip().lower() for email in v if email.strip()]


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Production deployments MUST set NOTION_TOKEN, NOTION_DATABASE_ID and
    CLIENTS; AUTH_SECRET is only needed by the HMAC-signed endpoint.
    """

    # ── Notion ────────────────────────────────────────────────────────────
    notion_token: str = Field(default="", description="Notion integration secret")
    notion_database_id: str = Field(default="", description="Database holding tenant rows")
    notion_api_base: str = Field(default="https://api.notion.com/v1")
    notion_version: str = Field(default="2022-06-28")
    notion_timeout: float = Field(default=30.0, gt=0, le=120)

    # Select property that carries the tenant name on every row
    client_property: str = Field(default="Client")

    # ── Query shaping ─────────────────────────────────────────────────────
    # 10 pages of 50 caps the dashboard at 500 rows
    query_page_size: int = Field(default=50, ge=1, le=100)
    query_max_pages: int = Field(default=10, ge=1, le=100)
    proxy_page_size: int = Field(default=100, ge=1, le=100)

    # Relation enrichment pacing (Notion allows ~3 req/s per integration)
    relation_batch_size: int = Field(default=5, ge=1, le=100)
    relation_pause_ms: int = Field(default=100, ge=0, le=5000)

    column_order: List[str] = Field(default_factory=lambda: list(DEFAULT_COLUMNS))
    column_headers: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_COLUMN_HEADERS)
    )

    # ── Authentication ────────────────────────────────────────────────────
    auth_secret: str = Field(default="", description="HMAC secret for /api/secure-notion")

    # Accepted age of a secure-key timestamp, and tolerated clock skew ahead
    key_max_age: int = Field(default=3600, ge=60, le=86400)
    key_max_skew: int = Field(default=300, ge=0, le=3600)

    # Width of the time bucket signed into the HMAC auth hash (15 minutes)
    auth_hash_window: int = Field(default=900, ge=60, le=86400)

    admin_emails: str = Field(default="", description="Comma-separated admin e-mails")
    clients: List[ClientAccount] = Field(default_factory=list)

    # Draft endpoints that trust a caller-supplied e-mail or client name
    legacy_endpoints_enabled: bool = Field(default=False)

    @property
    def admin_emails_list(self) -> List[str]:
        return [
            email.strip().lower()
            for email in self.admin_emails.split(",")
            if email.strip()
        ]

    # ── CORS ──────────────────────────────────────────────────────────────
    # The portal is embedded in third-party site pages, hence "*" by default
    cors_origins: str = Field(default="*")

    @property
    def cors_origins_list(self) -> List[str]:
        """Splits comma-separated CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    # ── Server ────────────────────────────────────────────────────────────
    backend_host: str = Field(default="0.0.0.0")
    backend_port: int = Field(default=8000, ge=1024, le=65535)

    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    # ── Retry Configuration ───────────────────────────────────────────────
    # Tenacity settings for Notion calls (transport errors, 429, 5xx)
    retry_max_attempts: int = Field(default=3, ge=1, le=10)
    retry_min_wait: float = Field(default=1.0, ge=0, le=30)
    retry_max_wait: float = Field(default=8.0, ge=0, le=120)

    # ── Circuit Breaker ───────────────────────────────────────────────────
    cb_failure_threshold: int = Field(default=5, ge=2, le=20)
    cb_recovery_timeout: int = Field(default=60, ge=10, le=300)

    # ── Rate Limiting ─────────────────────────────────────────────────────
    rate_limit_requests: int = Field(default=300, ge=10, le=10000)
    rate_limit_window: int = Field(default=3600, ge=60, le=86400)  # seconds
    # Proxies in front of the app that append to X-Forwarded-For; 0 when exposed directly
    trusted_proxy_hops: int = Field(default=1, ge=0, le=5)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }

    def missing_notion_settings(self) -> List[str]:
        """Names of the environment variables every Notion route needs but lacks."""
        missing = []
        if not self.notion_token:
            missing.append("NOTION_TOKEN")
        if not self.notion_database_id:
            missing.append("NOTION_DATABASE_ID")
        return missing

    def validate_required_for_production(self) -> None:
        """
        What:  Validates that critical settings are configured.
        When:  Called during app startup (lifespan).
        How:   Collects every problem and raises one ValueError listing them.
        """
        errors = [f"{name} is not set." for name in self.missing_notion_settings()]
        if not self.clients:
            errors.append("CLIENTS is empty; no user can be mapped to a client.")
        if errors:
            raise ValueError(
                "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )


settings = Settings()
