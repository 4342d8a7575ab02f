"""Ledger value types shared by every balance store backend."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

ZERO = Decimal("0")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def money(value: Decimal | None) -> str | None:
    """Decimal as an exact JSON string."""
    return None if value is None else str(value)


class TransactionType(str, Enum):
    TOPUP = "topup"
    ADMIN_CREDIT = "admin_credit"
    PURCHASE = "purchase"
    REFUND = "refund"


class TransactionSource(str, Enum):
    POLAR = "polar"
    ADMIN_API = "admin_api"
    ADMIN_SCRIPT = "admin_script"
    MARKETPLACE = "marketplace"


class LedgerEntry(BaseModel):
    """A balance mutation requested by a writer; the store fills in snapshots and ids."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    type: TransactionType
    amount: Decimal
    bonus_amount: Decimal = ZERO
    total_credits: Decimal  # signed delta applied to the balance
    source: TransactionSource
    checkout_id: str | None = None
    package_id: str | None = None
    reference_id: str | None = None
    note: str | None = None
    # When set, the entry is applied at most once per key.
    idempotency_key: str | None = None
    event_type: str | None = None


class Transaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    transaction_id: str
    user_id: str
    sequence: int
    type: TransactionType
    amount: Decimal
    bonus_amount: Decimal
    total_credits: Decimal
    previous_balance: Decimal
    new_balance: Decimal
    checkout_id: str | None = None
    package_id: str | None = None
    reference_id: str | None = None
    source: TransactionSource
    note: str | None = None
    created_at: datetime = Field(default_factory=utcnow)

    def to_public(self) -> dict:
        return {
            "transactionId": self.transaction_id,
            "type": self.type.value,
            "amount": str(self.amount),
            "bonusAmount": str(self.bonus_amount),
            "totalCredits": str(self.total_credits),
            "previousBalance": str(self.previous_balance),
            "newBalance": str(self.new_balance),
            "checkoutId": self.checkout_id,
            "packageId": self.package_id,
            "source": self.source.value,
            "note": self.note,
            "createdAt": self.created_at.isoformat(),
        }


class IdempotencyRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    event_type: str
    user_id: str
    total_credits: Decimal
    transaction_id: str
    processed_at: datetime = Field(default_factory=utcnow)
