"""Tenant storage resolution.

Each laboratory (tenant) owns its own database. The reconciliation engine
never manages connection lifecycles itself; it asks this module for a
storage handle (an Engine) per tenant and processes tenants one after
another with no shared mutable state between them.
"""

import logging
import os
import re
from functools import lru_cache

from sqlalchemy import Engine

from app.core.config import settings
from app.core.database import create_storage_engine

logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"^[A-Za-z0-9_\-]+$")


@lru_cache
def get_tenant_url_overrides() -> dict[str, str]:
    """Get explicit per-tenant database URLs.

    Configuration is via environment variables:
    - LAB_TENANT_<SLUG>_DATABASE_URL: database URL for tenant <SLUG>

    Example:
        LAB_TENANT_CENTRAL_DATABASE_URL=postgresql://u:p@db1/lab_central

    Returns:
        Dictionary mapping lower-cased tenant slugs to database URLs
    """
    mapping: dict[str, str] = {}

    for key, value in os.environ.items():
        if key.startswith("LAB_TENANT_") and key.endswith("_DATABASE_URL"):
            slug = key.replace("LAB_TENANT_", "").replace("_DATABASE_URL", "")
            url = value.strip()
            if slug and url:
                mapping[slug.lower()] = url
                logger.info(f"Tenant {slug.lower()}: explicit database URL configured")

    return mapping


def resolve_tenant_database_url(tenant: str) -> str:
    """Resolve the database URL for a tenant slug.

    Explicit LAB_TENANT_<SLUG>_DATABASE_URL overrides win over the
    tenant_database_url_template setting.

    Args:
        tenant: Tenant slug (letters, digits, '_' or '-')

    Returns:
        SQLAlchemy database URL

    Raises:
        ValueError: If the slug is empty or malformed
    """
    slug = (tenant or "").strip()
    if not slug or not _SLUG_RE.match(slug):
        raise ValueError(f"Invalid tenant slug: {tenant!r}")

    override = get_tenant_url_overrides().get(slug.lower())
    if override:
        return override
    return settings.tenant_database_url_template.format(tenant=slug)


@lru_cache(maxsize=32)
def get_tenant_engine(tenant: str) -> Engine:
    """Get (and cache) the storage engine for a tenant."""
    url = resolve_tenant_database_url(tenant)
    logger.debug(f"Creating engine for tenant {tenant}")
    return create_storage_engine(url)


def dispose_tenant_engines() -> None:
    """Dispose all cached tenant engines."""
    info = get_tenant_engine.cache_info()
    if info.currsize:
        logger.debug(f"Disposing {info.currsize} tenant engine(s)")
    get_tenant_engine.cache_clear()


class TenantContext:
    """Tenant information carried through a reconciliation run."""

    def __init__(self, tenant: str | None = None, database_url: str | None = None):
        self.tenant = tenant
        self._database_url = database_url

    @property
    def label(self) -> str:
        """Human-readable name for logs and report headers."""
        return self.tenant or "default"

    @property
    def database_url(self) -> str:
        """Database URL for this tenant."""
        if self._database_url:
            return self._database_url
        if self.tenant:
            return resolve_tenant_database_url(self.tenant)
        return settings.database_url

    def engine(self) -> Engine:
        """Storage handle for this tenant."""
        if self.tenant and not self._database_url:
            return get_tenant_engine(self.tenant)
        return create_storage_engine(self.database_url)
