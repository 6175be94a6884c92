"""
Audit logging service for billing actions.

Audit rows are added to the caller's session so they commit (or roll back)
together with the billing change they describe.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from dentallab.app.core.observability import current_client_ip
from dentallab.app.models.audit_log import AuditLog


class AuditAction:
    """Standardized audit action constants."""
    INVOICE_CREATED = "INVOICE_CREATED"
    MANUAL_INVOICE_CREATED = "MANUAL_INVOICE_CREATED"
    INVOICE_AMOUNT_EDITED = "INVOICE_AMOUNT_EDITED"
    INVOICE_DELETED = "INVOICE_DELETED"
    PAYMENT_RECORDED = "PAYMENT_RECORDED"
    PAYMENT_DELETED = "PAYMENT_DELETED"
    WORK_ORDER_DELIVERED = "WORK_ORDER_DELIVERED"


async def log_event(
    db: AsyncSession,
    action: str,
    client_id: Optional[int] = None,
    actor: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None
) -> AuditLog:
    """
    Record a billing event in the audit log.

    Args:
        db: Database session (caller commits)
        action: Action being performed (use AuditAction constants)
        client_id: Billed client whose account changed
        actor: Decoded JWT payload of the admin, None for system actions
        metadata: Additional context as JSON
        ip_address: IP address of the request, defaults to the one being served

    Returns:
        Pending AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor.get("user_id") if actor else None,
        actor_username=actor.get("sub") if actor else None,
        action=action,
        client_id=client_id,
        meta_data=metadata,
        ip_address=ip_address or current_client_ip()
    )

    db.add(audit_log)
    await db.flush()

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    client_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering, most recent first.
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if client_id:
        query = query.where(AuditLog.client_id == client_id)

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return result.scalars().all()
