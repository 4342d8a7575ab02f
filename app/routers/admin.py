from decimal import Decimal

from fastapi import APIRouter, Depends, Header, status
from pydantic import BaseModel, ConfigDict, Field

from app.deps import get_store, require_admin
from app.services import ledger as ledger_service
from app.services.packages import parse_amount
from app.storage.base import BalanceStore
from app.storage.types import TransactionSource, money

router = APIRouter()


class AdminCreditRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId", min_length=1)
    amount: Decimal | float | str
    note: str | None = None


@router.post("/balance", status_code=status.HTTP_201_CREATED)
async def admin_credit(
    body: AdminCreditRequest,
    actor: str = Depends(require_admin),
    store: BalanceStore = Depends(get_store),
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
):
    """Admin: credit a user's balance. Optional Idempotency-Key header."""
    amount = parse_amount(body.amount)
    tx = await ledger_service.admin_credit(
        store,
        body.user_id,
        amount,
        source=TransactionSource.ADMIN_API,
        note=body.note or "Balance added via admin API",
        idempotency_key=idempotency_key,
        actor=actor,
    )
    if tx is None:
        return {"success": True, "duplicate": True, "userId": body.user_id}
    return {
        "success": True,
        "duplicate": False,
        "userId": body.user_id,
        "previousBalance": money(tx.previous_balance),
        "addedAmount": money(tx.total_credits),
        "newBalance": money(tx.new_balance),
        "transactionId": tx.transaction_id,
    }


@router.get("/accounts/{user_id}/audit")
async def audit_account(
    user_id: str,
    actor: str = Depends(require_admin),
    store: BalanceStore = Depends(get_store),
):
    """Admin: replay the account's transactions and compare with the stored balance."""
    audit = await ledger_service.audit_account(store, user_id)
    return {
        "userId": audit.user_id,
        "storedBalance": money(audit.stored_balance),
        "replayedBalance": money(audit.replayed_balance),
        "transactionCount": audit.transaction_count,
        "consistent": audit.consistent,
        "brokenLinks": [b.model_dump(mode="json") for b in audit.broken_links],
    }
