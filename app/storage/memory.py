import asyncio
import uuid
from decimal import Decimal
from typing import AsyncIterator

from app.core.exceptions import InsufficientBalanceError
from app.storage.base import BalanceStore
from app.storage.types import ZERO, IdempotencyRecord, LedgerEntry, Transaction, utcnow


class MemoryBalanceStore(BalanceStore):
    """Single-process store for development and tests; one lock serialises every apply."""

    def __init__(self) -> None:
        self._balances: dict[str, Decimal] = {}
        self._transactions: dict[str, list[Transaction]] = {}
        self._processed: dict[str, IdempotencyRecord] = {}
        self._emails: dict[str, str | None] = {}
        self._subscribers: dict[str, set[asyncio.Queue]] = {}
        self._lock = asyncio.Lock()

    async def get_balance(self, user_id: str) -> Decimal:
        return self._balances.get(user_id, ZERO)

    async def ensure_account(self, user_id: str, email: str | None = None) -> Decimal:
        async with self._lock:
            if user_id not in self._balances:
                self._balances[user_id] = ZERO
                self._transactions[user_id] = []
                self._emails[user_id] = email
            return self._balances[user_id]

    async def apply_transaction(self, entry: LedgerEntry) -> Transaction | None:
        async with self._lock:
            key = entry.idempotency_key
            if key and key in self._processed:
                return None
            previous = self._balances.get(entry.user_id, ZERO)
            new_balance = previous + entry.total_credits
            if new_balance < 0:
                raise InsufficientBalanceError(
                    details={"balance": str(previous), "required": str(-entry.total_credits)},
                )
            log = self._transactions.setdefault(entry.user_id, [])
            tx = Transaction(
                transaction_id=uuid.uuid4().hex,
                user_id=entry.user_id,
                sequence=len(log) + 1,
                type=entry.type,
                amount=entry.amount,
                bonus_amount=entry.bonus_amount,
                total_credits=entry.total_credits,
                previous_balance=previous,
                new_balance=new_balance,
                checkout_id=entry.checkout_id,
                package_id=entry.package_id,
                reference_id=entry.reference_id,
                source=entry.source,
                note=entry.note,
            )
            self._balances[entry.user_id] = new_balance
            log.append(tx)
            if key:
                self._processed[key] = IdempotencyRecord(
                    key=key,
                    event_type=entry.event_type or entry.type.value,
                    user_id=entry.user_id,
                    total_credits=entry.total_credits,
                    transaction_id=tx.transaction_id,
                    processed_at=utcnow(),
                )
        self._notify(entry.user_id, new_balance)
        return tx

    async def get_processed(self, key: str) -> IdempotencyRecord | None:
        return self._processed.get(key)

    async def list_transactions(
        self,
        user_id: str,
        limit: int | None = None,
        offset: int = 0,
        newest_first: bool = False,
    ) -> list[Transaction]:
        items = list(self._transactions.get(user_id, []))
        if newest_first:
            items.reverse()
        items = items[offset:]
        return items[:limit] if limit is not None else items

    async def list_account_ids(self) -> list[str]:
        return sorted(self._balances)

    async def subscribe(self, user_id: str) -> AsyncIterator[Decimal]:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(user_id, set()).add(queue)
        try:
            yield self._balances.get(user_id, ZERO)
            while True:
                yield await queue.get()
        finally:
            self._subscribers.get(user_id, set()).discard(queue)

    def subscriber_count(self, user_id: str) -> int:
        return len(self._subscribers.get(user_id, ()))

    def _notify(self, user_id: str, balance: Decimal) -> None:
        for queue in list(self._subscribers.get(user_id, ())):
            queue.put_nowait(balance)
