"""Audit log for security-relevant and money-moving actions."""

from typing import Any

from app.core.config import get_settings
from app.core.logging import current_request_id, get_logger

log = get_logger("audit")


async def log_event(
    user_id: str | None,
    event_type: str,
    entity_type: str,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    actor: str | None = None,
) -> None:
    """Emit an audit log line; append to audit_logs when the Mongo store is active."""
    values = {k: str(v) for k, v in (metadata or {}).items()}
    log.info(
        "audit",
        audit_event=event_type,
        user_id=user_id,
        entity_type=entity_type,
        entity_id=entity_id,
        actor=actor,
        metadata=values,
    )
    if get_settings().balance_store_backend != "mongo":
        return
    from app.models.audit_log import AuditLog
    await AuditLog(
        user_id=user_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor=actor,
        request_id=current_request_id(),
        metadata=values,
    ).insert()
