"""Core application configuration and utilities."""

from app.core.audit import AuditAction, AuditEvent, log_audit, log_range_mutation
from app.core.config import settings
from app.core.database import Base, get_sync_engine, session_scope
from app.core.tenant import TenantContext, get_tenant_engine, resolve_tenant_database_url

__all__ = [
    # Config
    "settings",
    # Database
    "Base",
    "get_sync_engine",
    "session_scope",
    # Tenants
    "TenantContext",
    "get_tenant_engine",
    "resolve_tenant_database_url",
    # Audit
    "AuditAction",
    "AuditEvent",
    "log_audit",
    "log_range_mutation",
]
