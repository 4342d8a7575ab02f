from datetime import datetime
from decimal import Decimal

from beanie import Document
from pydantic import Field

from app.storage.types import utcnow


class BalanceTransaction(Document):
    id: str  # transaction_id
    user_id: str
    sequence: int
    type: str  # topup, admin_credit, purchase, refund
    amount: Decimal
    bonus_amount: Decimal = Decimal("0")
    total_credits: Decimal  # signed balance delta
    previous_balance: Decimal
    new_balance: Decimal
    checkout_id: str | None = None
    package_id: str | None = None
    reference_id: str | None = None
    source: str
    note: str | None = None
    created_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "balance_transactions"
        indexes = [
            [("user_id", 1), ("sequence", 1)],
            [("checkout_id", 1)],
        ]
