from typing import Any

from sqlalchemy.orm import Session

from rudark.models.audit_log import AuditLog


def log_audit_event(
    db: Session,
    *,
    actor_admin_id: str | None,
    action: str,
    target_type: str,
    target_id: str | None = None,
    metadata_json: dict[str, Any] | None = None,
) -> AuditLog:
    event = AuditLog(
        actor_admin_id=actor_admin_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        metadata_json=metadata_json,
    )
    db.add(event)
    return event
