"""Audit log and notification sink. Failures here never break the calling flow."""

from typing import Any

from app.core.logging import get_logger
from app.models.audit_log import AuditLog

log = get_logger(__name__)


async def log_event(
    user_id: str | None,
    event_type: str,
    entity_type: str,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    message: str = "",
) -> None:
    """Append to audit_logs collection."""
    try:
        await AuditLog(
            user_id=user_id,
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            message=message,
            metadata=metadata or {},
        ).insert()
    except Exception as e:
        log.warning("audit_write_failed", event_type=event_type, entity_id=entity_id, error=str(e))
