from fastapi import APIRouter, Depends, Request, status

from app.core.logging import bind_context
from app.deps import get_store
from app.services import webhooks as webhooks_service
from app.storage.base import BalanceStore

router = APIRouter()


@router.post("/polar", status_code=status.HTTP_202_ACCEPTED)
async def polar_webhook(request: Request, store: BalanceStore = Depends(get_store)):
    """Polar webhook: order.paid -> credit balance once per checkout. Errors make Polar retry."""
    bind_context(webhook_id=request.headers.get("webhook-id"))
    body = await request.body()
    outcome = await webhooks_service.handle_webhook(body, request.headers, store)
    return {"status": outcome.value}
