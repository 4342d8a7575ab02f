import json

from fastapi import APIRouter, Depends, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import StreamingResponse

from app.deps import get_store
from app.storage.base import BalanceStore
from app.storage.types import money

router = APIRouter()


def _sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(jsonable_encoder(data))}\n\n"


@router.get("/{user_id}")
async def balance(user_id: str, store: BalanceStore = Depends(get_store)):
    """Return current balance (0 for an unknown account)."""
    return {"userId": user_id, "balance": money(await store.get_balance(user_id))}


@router.get("/{user_id}/transactions")
async def transactions(
    user_id: str,
    store: BalanceStore = Depends(get_store),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Return balance transactions (newest first)."""
    items = await store.list_transactions(user_id, limit=limit, offset=offset, newest_first=True)
    return {"transactions": [t.to_public() for t in items], "limit": limit, "offset": offset}


@router.get("/{user_id}/events")
async def balance_events(user_id: str, request: Request, store: BalanceStore = Depends(get_store)):
    """Server-sent events: current balance, then one event per committed change."""

    async def stream():
        # The store registers before reading the first value, so no commit slips between them.
        updates = store.subscribe(user_id)
        try:
            async for value in updates:
                if await request.is_disconnected():
                    break
                yield _sse("balance", {"userId": user_id, "balance": money(value)})
        finally:
            await updates.aclose()

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
