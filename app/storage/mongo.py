"""MongoDB balance store: multi-document transactions, change streams. Needs a replica set."""

import uuid
from decimal import Decimal
from typing import Any, AsyncIterator

from bson.decimal128 import Decimal128
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.core.exceptions import InsufficientBalanceError
from app.core.logging import get_logger
from app.models.account import Account
from app.models.balance_transaction import BalanceTransaction
from app.models.processed_checkout import ProcessedCheckout
from app.storage.base import BalanceStore
from app.storage.types import (
    ZERO,
    IdempotencyRecord,
    LedgerEntry,
    Transaction,
    TransactionSource,
    TransactionType,
    utcnow,
)

log = get_logger(__name__)


def _dec(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal128):
        return value.to_decimal()
    return Decimal(str(value))


def _d128(value: Decimal) -> Decimal128:
    return Decimal128(str(value))


class MongoBalanceStore(BalanceStore):
    """Collections come from the Beanie documents; call app.db.init.init_db() first."""

    @property
    def _accounts(self):
        return Account.get_motor_collection()

    @property
    def _transactions(self):
        return BalanceTransaction.get_motor_collection()

    @property
    def _processed(self):
        return ProcessedCheckout.get_motor_collection()

    async def get_balance(self, user_id: str) -> Decimal:
        doc = await self._accounts.find_one({"_id": user_id}, {"balance": 1})
        return _dec(doc.get("balance")) if doc else ZERO

    async def ensure_account(self, user_id: str, email: str | None = None) -> Decimal:
        now = utcnow()
        await self._accounts.update_one(
            {"_id": user_id},
            {
                "$setOnInsert": {
                    "email": email,
                    "balance": _d128(ZERO),
                    "tx_count": 0,
                    "created_at": now,
                    "updated_at": now,
                }
            },
            upsert=True,
        )
        return await self.get_balance(user_id)

    async def apply_transaction(self, entry: LedgerEntry) -> Transaction | None:
        # Fast path for provider retries; the claim inside the transaction decides.
        if entry.idempotency_key and await self.has_processed(entry.idempotency_key):
            return None
        client = self._accounts.database.client
        try:
            async with await client.start_session() as session:
                # with_transaction retries the whole callback on TransientTransactionError
                # (write conflicts from concurrent writers to the same account).
                return await session.with_transaction(lambda s: self._apply(entry, s))
        except DuplicateKeyError:
            log.info("idempotency_key_already_claimed", key=entry.idempotency_key, user_id=entry.user_id)
            return None

    async def _apply(self, entry: LedgerEntry, session) -> Transaction:
        now = utcnow()
        transaction_id = uuid.uuid4().hex
        if entry.idempotency_key:
            # Claim first: a duplicate key aborts the transaction before the balance moves.
            await self._processed.insert_one(
                {
                    "_id": entry.idempotency_key,
                    "event_type": entry.event_type or entry.type.value,
                    "user_id": entry.user_id,
                    "total_credits": _d128(entry.total_credits),
                    "transaction_id": transaction_id,
                    "processed_at": now,
                },
                session=session,
            )

        update = {
            "$inc": {"balance": _d128(entry.total_credits), "tx_count": 1},
            "$set": {"updated_at": now},
        }
        if entry.total_credits < 0:
            account = await self._accounts.find_one_and_update(
                {"_id": entry.user_id, "balance": {"$gte": _d128(-entry.total_credits)}},
                update,
                return_document=ReturnDocument.AFTER,
                session=session,
            )
            if account is None:
                current = await self._accounts.find_one({"_id": entry.user_id}, session=session)
                balance = _dec(current.get("balance")) if current else ZERO
                raise InsufficientBalanceError(
                    details={"balance": str(balance), "required": str(-entry.total_credits)},
                )
        else:
            update["$setOnInsert"] = {"email": None, "created_at": now}
            account = await self._accounts.find_one_and_update(
                {"_id": entry.user_id},
                update,
                upsert=True,
                return_document=ReturnDocument.AFTER,
                session=session,
            )

        new_balance = _dec(account["balance"])
        doc = {
            "_id": transaction_id,
            "user_id": entry.user_id,
            "sequence": account["tx_count"],
            "type": entry.type.value,
            "amount": _d128(entry.amount),
            "bonus_amount": _d128(entry.bonus_amount),
            "total_credits": _d128(entry.total_credits),
            "previous_balance": _d128(new_balance - entry.total_credits),
            "new_balance": _d128(new_balance),
            "checkout_id": entry.checkout_id,
            "package_id": entry.package_id,
            "reference_id": entry.reference_id,
            "source": entry.source.value,
            "note": entry.note,
            "created_at": now,
        }
        await self._transactions.insert_one(doc, session=session)
        return self._to_transaction(doc)

    async def get_processed(self, key: str) -> IdempotencyRecord | None:
        doc = await self._processed.find_one({"_id": key})
        if not doc:
            return None
        return IdempotencyRecord(
            key=doc["_id"],
            event_type=doc["event_type"],
            user_id=doc["user_id"],
            total_credits=_dec(doc["total_credits"]),
            transaction_id=doc["transaction_id"],
            processed_at=doc["processed_at"],
        )

    async def list_transactions(
        self,
        user_id: str,
        limit: int | None = None,
        offset: int = 0,
        newest_first: bool = False,
    ) -> list[Transaction]:
        cursor = (
            self._transactions.find({"user_id": user_id})
            .sort("sequence", DESCENDING if newest_first else ASCENDING)
            .skip(offset)
        )
        if limit is not None:
            cursor = cursor.limit(limit)
        return [self._to_transaction(doc) async for doc in cursor]

    async def list_account_ids(self) -> list[str]:
        return sorted(await self._accounts.distinct("_id"))

    async def subscribe(self, user_id: str) -> AsyncIterator[Decimal]:
        pipeline = [
            {
                "$match": {
                    "documentKey._id": user_id,
                    "operationType": {"$in": ["insert", "update", "replace"]},
                }
            }
        ]
        client = self._accounts.database.client
        async with await client.start_session() as session:
            doc = await self._accounts.find_one({"_id": user_id}, {"balance": 1}, session=session)
            read_at = session.operation_time
        # Start the stream at the snapshot's cluster time so later commits are never skipped.
        async with self._accounts.watch(
            pipeline, full_document="updateLookup", start_at_operation_time=read_at
        ) as stream:
            yield _dec(doc.get("balance")) if doc else ZERO
            async for change in stream:
                doc = change.get("fullDocument")
                if doc is not None:
                    yield _dec(doc.get("balance"))

    @staticmethod
    def _to_transaction(doc: dict) -> Transaction:
        return Transaction(
            transaction_id=doc["_id"],
            user_id=doc["user_id"],
            sequence=doc["sequence"],
            type=TransactionType(doc["type"]),
            amount=_dec(doc["amount"]),
            bonus_amount=_dec(doc.get("bonus_amount")),
            total_credits=_dec(doc["total_credits"]),
            previous_balance=_dec(doc["previous_balance"]),
            new_balance=_dec(doc["new_balance"]),
            checkout_id=doc.get("checkout_id"),
            package_id=doc.get("package_id"),
            reference_id=doc.get("reference_id"),
            source=TransactionSource(doc["source"]),
            note=doc.get("note"),
            created_at=doc["created_at"],
        )
