"""Atomic apply, idempotency and subscriptions on the in-memory balance store."""

import asyncio
from decimal import Decimal

import pytest

from app.core.exceptions import InsufficientBalanceError
from app.services.ledger import replay
from app.storage.types import LedgerEntry, TransactionSource, TransactionType

pytestmark = pytest.mark.asyncio


async def test_get_balance_unknown_account(store):
    assert await store.get_balance("nobody") == Decimal("0")


async def test_ensure_account_is_idempotent(store):
    assert await store.ensure_account("u1", email="u1@example.com") == Decimal("0")
    await store.apply_credit("u1", Decimal("5"), Decimal("0.25"), Decimal("5.25"), checkout_id="chk_a")
    assert await store.ensure_account("u1") == Decimal("5.25")


async def test_apply_credit_writes_transaction_and_record(store):
    tx = await store.apply_credit(
        "u1", Decimal("15"), Decimal("1.5"), Decimal("16.5"), checkout_id="chk_1", package_id="balance_15"
    )
    assert tx is not None
    assert tx.type == TransactionType.TOPUP
    assert tx.source == TransactionSource.POLAR
    assert tx.previous_balance == Decimal("0")
    assert tx.new_balance == Decimal("16.5")
    assert tx.sequence == 1
    assert await store.get_balance("u1") == Decimal("16.5")

    record = await store.get_processed("chk_1")
    assert record is not None
    assert record.transaction_id == tx.transaction_id
    assert record.user_id == "u1"
    assert record.event_type == "order.paid"
    assert record.total_credits == Decimal("16.5")


async def test_duplicate_checkout_is_noop(store):
    first = await store.apply_credit("u1", Decimal("15"), Decimal("1.5"), Decimal("16.5"), checkout_id="chk_1")
    second = await store.apply_credit("u1", Decimal("15"), Decimal("1.5"), Decimal("16.5"), checkout_id="chk_1")
    assert first is not None
    assert second is None
    assert await store.get_balance("u1") == Decimal("16.5")
    assert len(await store.list_transactions("u1")) == 1
    assert (await store.get_processed("chk_1")).transaction_id == first.transaction_id


async def test_concurrent_deliveries_credit_once(store):
    results = await asyncio.gather(
        *[
            store.apply_credit("u1", Decimal("30"), Decimal("4.5"), Decimal("34.5"), checkout_id="chk_same")
            for _ in range(25)
        ]
    )
    assert sum(1 for r in results if r is not None) == 1
    assert await store.get_balance("u1") == Decimal("34.5")
    assert len(await store.list_transactions("u1")) == 1


async def test_negative_total_credits_rejected(store):
    with pytest.raises(ValueError):
        await store.apply_credit("u1", Decimal("5"), Decimal("0"), Decimal("-5"), checkout_id="chk_neg")
    assert not await store.has_processed("chk_neg")


async def test_overdraft_rejected_and_nothing_written(store):
    await store.apply_credit("u1", Decimal("5"), Decimal("0"), Decimal("5"), checkout_id="chk_1")
    entry = LedgerEntry(
        user_id="u1",
        type=TransactionType.PURCHASE,
        amount=Decimal("7"),
        total_credits=Decimal("-7"),
        source=TransactionSource.MARKETPLACE,
        idempotency_key="purchase:ord_1",
    )
    with pytest.raises(InsufficientBalanceError):
        await store.apply_transaction(entry)
    assert await store.get_balance("u1") == Decimal("5")
    assert not await store.has_processed("purchase:ord_1")
    assert len(await store.list_transactions("u1")) == 1


async def test_replay_reproduces_balance(store):
    await store.apply_credit("u1", Decimal("15"), Decimal("1.5"), Decimal("16.5"), checkout_id="chk_1")
    await store.apply_transaction(
        LedgerEntry(
            user_id="u1",
            type=TransactionType.ADMIN_CREDIT,
            amount=Decimal("3"),
            total_credits=Decimal("3"),
            source=TransactionSource.ADMIN_API,
        )
    )
    await store.apply_transaction(
        LedgerEntry(
            user_id="u1",
            type=TransactionType.PURCHASE,
            amount=Decimal("2.25"),
            total_credits=Decimal("-2.25"),
            source=TransactionSource.MARKETPLACE,
        )
    )
    replayed, broken = replay(await store.list_transactions("u1"))
    assert broken == []
    assert replayed == await store.get_balance("u1") == Decimal("17.25")


async def test_admin_and_webhook_race_serialises_snapshots(store):
    await store.apply_credit("u1", Decimal("5"), Decimal("0.25"), Decimal("5.25"), checkout_id="chk_0")
    admin = LedgerEntry(
        user_id="u1",
        type=TransactionType.ADMIN_CREDIT,
        amount=Decimal("10"),
        total_credits=Decimal("10"),
        source=TransactionSource.ADMIN_API,
    )
    await asyncio.gather(
        store.apply_transaction(admin),
        store.apply_credit("u1", Decimal("15"), Decimal("1.5"), Decimal("16.5"), checkout_id="chk_1"),
    )
    assert await store.get_balance("u1") == Decimal("5.25") + Decimal("10") + Decimal("16.5")
    txs = await store.list_transactions("u1")
    assert len(txs) == 3
    assert len({t.transaction_id for t in txs}) == 3
    for before, after in zip(txs, txs[1:]):
        assert after.previous_balance == before.new_balance
        assert after.new_balance == after.previous_balance + after.total_credits


async def test_list_transactions_newest_first_and_paging(store):
    for i in range(5):
        await store.apply_credit("u1", Decimal("5"), Decimal("0"), Decimal("5"), checkout_id=f"chk_{i}")
    newest = await store.list_transactions("u1", limit=2, newest_first=True)
    assert [t.sequence for t in newest] == [5, 4]
    page = await store.list_transactions("u1", limit=2, offset=2, newest_first=True)
    assert [t.sequence for t in page] == [3, 2]
    assert await store.list_account_ids() == ["u1"]


async def test_subscribe_starts_with_current_balance_then_commits(store):
    await store.apply_credit("u1", Decimal("5"), Decimal("0.25"), Decimal("5.25"), checkout_id="chk_0")
    updates = store.subscribe("u1")
    assert await updates.__anext__() == Decimal("5.25")
    assert store.subscriber_count("u1") == 1
    pending = asyncio.ensure_future(updates.__anext__())
    await store.apply_credit("u1", Decimal("15"), Decimal("1.5"), Decimal("16.5"), checkout_id="chk_1")
    assert await asyncio.wait_for(pending, timeout=1) == Decimal("21.75")
    await updates.aclose()
    assert store.subscriber_count("u1") == 0
