"""
Client Portal Backend — Route Dependencies
===========================================

What:  FastAPI dependencies that gate routes on deployment configuration.
How:   Each raises a PortalError subclass; the global handlers render it.
"""

from portal.config import settings
from portal.exceptions import ConfigurationError, NotFoundError


def require_notion_config() -> None:
    """Every Notion route needs a token and a database id."""
    missing = settings.missing_notion_settings()
    if missing:
        raise ConfigurationError(missing=missing)


def require_auth_secret() -> str:
    if not settings.auth_secret:
        raise ConfigurationError(missing=["AUTH_SECRET"], message="Server configuration error")
    return settings.auth_secret


def require_legacy_endpoints() -> None:
    """Draft endpoints that trust caller-supplied identity stay hidden unless enabled."""
    if not settings.legacy_endpoints_enabled:
        raise NotFoundError(resource="endpoint")
