from datetime import datetime
from typing import Any

from beanie import Document
from pydantic import Field

from app.storage.types import utcnow


class AuditLog(Document):
    """Security-relevant and money-moving events. Append-only."""
    user_id: str | None = None
    event_type: str  # checkout_user_mismatch, admin_credit, ledger_drift
    entity_type: str  # checkout, transaction, account
    entity_id: str | None = None
    actor: str | None = None  # admin_api, admin_script, polar, system
    request_id: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "audit_logs"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
            [("event_type", 1), ("created_at", -1)],
        ]
