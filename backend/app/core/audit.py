"""Audit logging for reference range mutations.

Every row a reconciliation pass inserts, updates or deletes is recorded
here, including failed groups. Reference ranges drive the interpretation
of patient results, so this log should be persisted to a secure,
append-only store in production.
"""

import logging
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field

# Separate audit logger for data-changing events
audit_logger = logging.getLogger("audit")


class AuditAction(str, Enum):
    """Types of auditable actions."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    # System
    ERROR = "error"


class AuditEvent(BaseModel):
    """Audit event record.

    Contains all relevant context for an auditable action.
    """

    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    action: AuditAction = Field(..., description="Type of action performed")
    resource_type: str = Field(..., description="Type of resource changed (table name)")
    resource_id: str | None = Field(None, description="ID of specific resource")
    tenant: str | None = Field(None, description="Tenant whose storage was changed")
    repair: str | None = Field(None, description="Repair pass that made the change")
    details: dict | None = Field(None, description="Additional context")
    success: bool = Field(True, description="Whether action succeeded")


def log_audit(
    action: AuditAction,
    resource_type: str,
    resource_id: str | None = None,
    tenant: str | None = None,
    repair: str | None = None,
    details: dict | None = None,
    success: bool = True,
) -> AuditEvent:
    """Log an audit event.

    Args:
        action: Type of action being audited
        resource_type: The type of resource being changed
        resource_id: Specific resource identifier
        tenant: Tenant slug, if any
        repair: Repair kind that produced the change
        details: Additional context
        success: Whether the action succeeded

    Returns:
        The created AuditEvent
    """
    event = AuditEvent(
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        tenant=tenant,
        repair=repair,
        details=details,
        success=success,
    )

    log_level = logging.INFO if success else logging.WARNING
    audit_logger.log(
        log_level,
        f"AUDIT: {action.value} {resource_type}"
        f"{f'/{resource_id}' if resource_id else ''}"
        f"{f' tenant={tenant}' if tenant else ''}"
        f"{f' repair={repair}' if repair else ''}"
        f" success={success}",
        extra={"audit_event": event.model_dump()},
    )

    return event


def log_range_mutation(
    action: AuditAction,
    table: str,
    range_id: str | None,
    repair: str,
    tenant: str | None = None,
    details: dict | None = None,
) -> AuditEvent:
    """Log a committed reference range mutation.

    Convenience wrapper used by the reconciliation pipeline after a
    repair group has been committed.
    """
    return log_audit(
        action=action,
        resource_type=table,
        resource_id=range_id,
        tenant=tenant,
        repair=repair,
        details=details,
    )


def log_failed_group(
    repair: str,
    error: str,
    tenant: str | None = None,
    details: dict | None = None,
) -> AuditEvent:
    """Log a repair group that was rolled back."""
    return log_audit(
        action=AuditAction.ERROR,
        resource_type="reference_range_group",
        tenant=tenant,
        repair=repair,
        details={"error": error, **(details or {})},
        success=False,
    )
