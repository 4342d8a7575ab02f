import asyncio
import json
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app.routers.balance import balance_events

pytestmark = pytest.mark.asyncio


async def test_unknown_account_has_zero_balance(client):
    r = await client.get("/v1/balance/nobody")
    assert r.status_code == 200
    assert r.json() == {"userId": "nobody", "balance": "0"}


async def test_transactions_newest_first_with_paging(client, store):
    for i, amount in enumerate(["5", "15", "30"]):
        await store.apply_credit("u1", Decimal(amount), Decimal("0"), Decimal(amount), checkout_id=f"chk_{i}")

    r = await client.get("/v1/balance/u1/transactions")
    txs = r.json()["transactions"]
    assert [t["checkoutId"] for t in txs] == ["chk_2", "chk_1", "chk_0"]
    assert txs[0]["newBalance"] == "50"
    assert txs[0]["type"] == "topup"
    assert txs[0]["source"] == "polar"

    r = await client.get("/v1/balance/u1/transactions", params={"limit": 1, "offset": 1})
    assert r.json()["limit"] == 1
    assert [t["checkoutId"] for t in r.json()["transactions"]] == ["chk_1"]


@pytest.mark.parametrize("params", [{"limit": 0}, {"limit": 500}, {"offset": -1}])
async def test_transactions_paging_bounds(client, params):
    r = await client.get("/v1/balance/u1/transactions", params=params)
    assert r.status_code == 422


async def test_balance_event_stream(store):
    async def is_disconnected():
        return False

    request = SimpleNamespace(is_disconnected=is_disconnected)
    response = await balance_events("u1", request, store)
    assert response.media_type == "text/event-stream"
    body = response.body_iterator

    first = await body.__anext__()
    assert first.startswith("event: balance\n")
    assert json.loads(first.split("data: ", 1)[1]) == {"userId": "u1", "balance": "0"}

    pending = asyncio.ensure_future(body.__anext__())
    await store.apply_credit("u1", Decimal("15"), Decimal("1.5"), Decimal("16.5"), checkout_id="chk_1")
    second = await asyncio.wait_for(pending, timeout=1)
    assert json.loads(second.split("data: ", 1)[1]) == {"userId": "u1", "balance": "16.5"}

    await body.aclose()
    assert store.subscriber_count("u1") == 0


async def test_balance_event_stream_keeps_credit_committed_right_after_snapshot(store):
    async def is_disconnected():
        return False

    response = await balance_events("u1", SimpleNamespace(is_disconnected=is_disconnected), store)
    body = response.body_iterator

    first = await body.__anext__()
    assert json.loads(first.split("data: ", 1)[1])["balance"] == "0"
    # Already listening when the snapshot went out
    assert store.subscriber_count("u1") == 1

    # Commit before the consumer asks for the next event
    await store.apply_credit("u1", Decimal("30"), Decimal("4.5"), Decimal("34.5"), checkout_id="chk_1")
    second = await asyncio.wait_for(body.__anext__(), timeout=1)
    assert json.loads(second.split("data: ", 1)[1]) == {"userId": "u1", "balance": "34.5"}
    await body.aclose()


async def test_money_keeps_exact_decimal_digits(client, store):
    await store.apply_credit("u1", Decimal("12.50"), Decimal("0.625"), Decimal("13.125"), checkout_id="chk_1")
    assert (await client.get("/v1/balance/u1")).json()["balance"] == "13.125"
    tx = (await client.get("/v1/balance/u1/transactions")).json()["transactions"][0]
    assert tx["amount"] == "12.50"
    assert tx["bonusAmount"] == "0.625"
    assert tx["totalCredits"] == "13.125"
    assert tx["previousBalance"] == "0"
