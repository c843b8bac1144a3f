from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog
from app.utils.dates import utcnow


def record_audit(
    db: Session,
    action: str,
    entity_type: str,
    entity_id: Any,
    entity_title: str | None,
    description: str,
    actor_id: str,
    metadata: dict[str, Any] | None = None,
    at: datetime | None = None,
) -> AuditLog:
    """Add an audit row to the caller's transaction; it is persisted on commit."""
    entry = AuditLog(
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        entity_title=entity_title,
        description=description,
        actor_id=actor_id,
        metadata_json=metadata,
        created_at=at or utcnow(),
    )
    db.add(entry)
    return entry
