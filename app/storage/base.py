from abc import ABC, abstractmethod
from decimal import Decimal
from functools import lru_cache
from typing import AsyncIterator

from app.core.config import get_settings
from app.storage.types import (
    IdempotencyRecord,
    LedgerEntry,
    Transaction,
    TransactionSource,
    TransactionType,
)


class BalanceStore(ABC):
    """
    Durable home of account balances, the append-only transaction log and the
    processed-checkout idempotency records.

    Every balance writer goes through apply_transaction: claiming the
    idempotency key, reading and writing the balance, appending the transaction
    and writing the idempotency record happen as one indivisible unit.
    """

    @abstractmethod
    async def get_balance(self, user_id: str) -> Decimal:
        """Current balance; 0 for an account that was never initialised."""
        ...

    @abstractmethod
    async def ensure_account(self, user_id: str, email: str | None = None) -> Decimal:
        """Create the account with balance 0 if missing; return its balance."""
        ...

    @abstractmethod
    async def apply_transaction(self, entry: LedgerEntry) -> Transaction | None:
        """
        Atomically apply entry. Returns None (and changes nothing) when
        entry.idempotency_key was already processed. Raises
        InsufficientBalanceError when the balance would go negative.
        """
        ...

    @abstractmethod
    async def get_processed(self, key: str) -> IdempotencyRecord | None:
        ...

    @abstractmethod
    async def list_transactions(
        self,
        user_id: str,
        limit: int | None = None,
        offset: int = 0,
        newest_first: bool = False,
    ) -> list[Transaction]:
        ...

    @abstractmethod
    async def list_account_ids(self) -> list[str]:
        ...

    @abstractmethod
    def subscribe(self, user_id: str) -> AsyncIterator[Decimal]:
        """
        Yield the current balance once the subscription is live, then the new
        balance after each committed change. No change can fall between the
        first value and the stream; a value may repeat.
        """
        ...

    async def has_processed(self, key: str) -> bool:
        return await self.get_processed(key) is not None

    async def apply_credit(
        self,
        user_id: str,
        amount: Decimal,
        bonus_amount: Decimal,
        total_credits: Decimal,
        checkout_id: str,
        source: TransactionSource = TransactionSource.POLAR,
        package_id: str | None = None,
        event_type: str = "order.paid",
    ) -> Transaction | None:
        """Credit a paid checkout exactly once; None when checkout_id was already credited."""
        if total_credits < 0:
            raise ValueError("total_credits must be non-negative")
        if not checkout_id:
            raise ValueError("checkout_id is required for a payment credit")
        entry = LedgerEntry(
            user_id=user_id,
            type=TransactionType.TOPUP,
            amount=amount,
            bonus_amount=bonus_amount,
            total_credits=total_credits,
            source=source,
            checkout_id=checkout_id,
            package_id=package_id,
            idempotency_key=checkout_id,
            event_type=event_type,
        )
        return await self.apply_transaction(entry)

    async def close(self) -> None:
        return None


@lru_cache
def get_balance_store() -> BalanceStore:
    settings = get_settings()
    if settings.balance_store_backend == "memory":
        from app.storage.memory import MemoryBalanceStore
        return MemoryBalanceStore()
    from app.storage.mongo import MongoBalanceStore
    return MongoBalanceStore()
