from datetime import datetime
from decimal import Decimal

from beanie import Document
from pydantic import Field

from app.storage.types import utcnow


class Account(Document):
    """Spendable balance per user; only written through the atomic ledger apply."""
    id: str  # user_id from the identity provider
    email: str | None = None
    balance: Decimal = Decimal("0")
    tx_count: int = 0  # sequence of the last applied transaction
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "accounts"
