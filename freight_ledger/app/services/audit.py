"""
Audit logging service for tracking operator actions on financial records.

Audit rows join the caller's unit of work: they are flushed here and
committed (or rolled back) together with the change they describe.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from freight_ledger.app.models.audit_log import AuditLog


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    # Credit
    CREDIT_HOLD_PLACED = "CREDIT_HOLD_PLACED"
    CREDIT_HOLD_RELEASED = "CREDIT_HOLD_RELEASED"

    # Branch settlements
    BRANCH_SETTLEMENT_CREATED = "BRANCH_SETTLEMENT_CREATED"
    BRANCH_SETTLEMENT_SUBMITTED = "BRANCH_SETTLEMENT_SUBMITTED"
    BRANCH_SETTLEMENT_APPROVED = "BRANCH_SETTLEMENT_APPROVED"
    BRANCH_SETTLEMENT_PAID = "BRANCH_SETTLEMENT_PAID"
    BRANCH_SETTLEMENT_CANCELLED = "BRANCH_SETTLEMENT_CANCELLED"

    # Merchant settlements
    SETTLEMENT_CREATED = "SETTLEMENT_CREATED"
    SETTLEMENT_SUBMITTED = "SETTLEMENT_SUBMITTED"
    SETTLEMENT_APPROVED = "SETTLEMENT_APPROVED"
    SETTLEMENT_PAID = "SETTLEMENT_PAID"

    # COD
    COD_VERIFIED = "COD_VERIFIED"
    COD_REMITTED = "COD_REMITTED"

    # Currency
    EXCHANGE_RATE_OVERRIDDEN = "EXCHANGE_RATE_OVERRIDDEN"


async def log_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[int] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """
    Record an audit event inside the current transaction.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor_id: ID of user performing the action (None for system)
        entity_type: Kind of record acted upon
        entity_id: ID of record acted upon
        metadata: Additional context as JSON

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        meta_data=metadata
    )

    db.add(audit_log)
    await db.flush()

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering, most recent first.
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if entity_type:
        query = query.where(AuditLog.entity_type == entity_type)

    if entity_id:
        query = query.where(AuditLog.entity_id == entity_id)

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())
