"""MongoDB store against a real replica set. Set MONGODB_TEST_URI to run."""

import asyncio
import os
import uuid
from decimal import Decimal

import pytest
import pytest_asyncio

from app.core.exceptions import InsufficientBalanceError
from app.services.ledger import replay
from app.storage.types import LedgerEntry, TransactionSource, TransactionType

MONGODB_TEST_URI = os.environ.get("MONGODB_TEST_URI")

pytestmark = [
    pytest.mark.asyncio,
    pytest.mark.skipif(not MONGODB_TEST_URI, reason="MONGODB_TEST_URI not set"),
]


@pytest_asyncio.fixture
async def mongo_store():
    from app.db.init import close_db, init_db
    from app.storage.mongo import MongoBalanceStore

    db_name = f"verifynumber_test_{uuid.uuid4().hex[:8]}"
    client = await init_db(MONGODB_TEST_URI, db_name)
    try:
        yield MongoBalanceStore()
    finally:
        await client.drop_database(db_name)
        close_db()


async def test_credit_and_duplicate(mongo_store):
    tx = await mongo_store.apply_credit("u1", Decimal("15"), Decimal("1.5"), Decimal("16.5"), checkout_id="chk_1")
    assert tx.new_balance == Decimal("16.5")
    assert tx.sequence == 1
    assert await mongo_store.apply_credit("u1", Decimal("15"), Decimal("1.5"), Decimal("16.5"), checkout_id="chk_1") is None
    assert await mongo_store.get_balance("u1") == Decimal("16.5")
    record = await mongo_store.get_processed("chk_1")
    assert record.transaction_id == tx.transaction_id


async def test_concurrent_deliveries_credit_once(mongo_store):
    results = await asyncio.gather(
        *[
            mongo_store.apply_credit("u1", Decimal("30"), Decimal("4.5"), Decimal("34.5"), checkout_id="chk_same")
            for _ in range(10)
        ]
    )
    assert sum(1 for r in results if r is not None) == 1
    assert await mongo_store.get_balance("u1") == Decimal("34.5")
    assert len(await mongo_store.list_transactions("u1")) == 1


async def test_concurrent_writers_keep_snapshots_linked(mongo_store):
    await mongo_store.ensure_account("u1")
    entries = [
        LedgerEntry(
            user_id="u1",
            type=TransactionType.ADMIN_CREDIT,
            amount=Decimal("1.25"),
            total_credits=Decimal("1.25"),
            source=TransactionSource.ADMIN_API,
        )
        for _ in range(8)
    ]
    await asyncio.gather(*[mongo_store.apply_transaction(e) for e in entries])
    txs = await mongo_store.list_transactions("u1")
    balance, broken = replay(txs)
    assert broken == []
    assert balance == await mongo_store.get_balance("u1") == Decimal("10")


async def test_overdraft_rolls_back_claim(mongo_store):
    entry = LedgerEntry(
        user_id="u1",
        type=TransactionType.PURCHASE,
        amount=Decimal("5"),
        total_credits=Decimal("-5"),
        source=TransactionSource.MARKETPLACE,
        idempotency_key="purchase:ord_1",
    )
    with pytest.raises(InsufficientBalanceError):
        await mongo_store.apply_transaction(entry)
    assert not await mongo_store.has_processed("purchase:ord_1")
    assert await mongo_store.list_transactions("u1") == []


async def test_subscribe_yields_snapshot_then_changes(mongo_store):
    await mongo_store.apply_credit("u1", Decimal("5"), Decimal("0.25"), Decimal("5.25"), checkout_id="chk_0")
    updates = mongo_store.subscribe("u1")
    try:
        assert await asyncio.wait_for(updates.__anext__(), timeout=5) == Decimal("5.25")
        await mongo_store.apply_credit("u1", Decimal("15"), Decimal("1.5"), Decimal("16.5"), checkout_id="chk_1")
        seen = Decimal("5.25")
        while seen == Decimal("5.25"):
            seen = await asyncio.wait_for(updates.__anext__(), timeout=5)
        assert seen == Decimal("21.75")
    finally:
        await updates.aclose()
