"""
Audit logging service.
Records cancellations, supervisor overrides, transfers and operator resets.
"""

import json
from typing import Any, Optional

from sqlalchemy.orm import Session

from pos_shared.config.logging import audit_logger
from pos_core.models import AuditLog


def log_table_action(
    db: Session,
    *,
    action: str,
    table_id: Optional[int],
    order_id: Optional[str] = None,
    reason: Optional[str] = None,
    origin: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> AuditLog:
    """
    Record an action on a table.

    Args:
        db: Database session
        action: AuditAction constant
        table_id: Table affected (None for floor-wide actions)
        order_id: Active order affected, if any
        reason: Free-text justification (cancel reason, operator note)
        origin: Tab/device or operator that performed the action
        details: Extra JSON-serializable context

    Returns:
        Created AuditLog entry
    """
    audit_entry = AuditLog(
        table_id=table_id,
        order_id=order_id,
        action=action,
        reason=reason,
        origin=origin,
        details=json.dumps(details, default=str) if details else None,
    )
    db.add(audit_entry)
    audit_logger.info(
        action,
        table_id=table_id,
        order_id=order_id,
        reason=reason,
        origin=origin,
    )
    # Don't commit here - let the caller handle the transaction
    return audit_entry
