"""Audit trail helper shared by the engine components."""

from typing import Any
from uuid import UUID

from sqlmodel import Session

from notifier.models.audit_log import AuditLog


def record_audit(
    session: Session,
    action: str,
    entity_type: str,
    entity_id: UUID | str | None = None,
    user_id: UUID | None = None,
    details: dict[str, Any] | None = None,
) -> AuditLog:
    """Stage an audit row on the session; the caller owns the commit."""
    audit = AuditLog(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        details=details,
    )
    session.add(audit)
    return audit
