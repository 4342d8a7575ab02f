from datetime import datetime
from decimal import Decimal

from beanie import Document
from pydantic import Field

from app.storage.types import utcnow


class ProcessedCheckout(Document):
    """Idempotency record: _id is the checkout id (or other idempotency key). Never pruned."""
    id: str
    event_type: str
    user_id: str
    total_credits: Decimal
    transaction_id: str
    processed_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "processed_checkouts"
