"""Balance ledger operations on top of the atomic store primitive."""

from decimal import Decimal

from pydantic import BaseModel

from app.core.audit import log_event
from app.core.exceptions import BadRequestError
from app.core.logging import get_logger
from app.storage.base import BalanceStore
from app.storage.types import ZERO, LedgerEntry, Transaction, TransactionSource, TransactionType

log = get_logger(__name__)


class BrokenLink(BaseModel):
    transaction_id: str
    sequence: int
    expected_previous: Decimal
    recorded_previous: Decimal


class AccountAudit(BaseModel):
    user_id: str
    stored_balance: Decimal
    replayed_balance: Decimal
    transaction_count: int
    broken_links: list[BrokenLink] = []

    @property
    def consistent(self) -> bool:
        return self.stored_balance == self.replayed_balance and not self.broken_links


async def get_balance(store: BalanceStore, user_id: str) -> Decimal:
    """Return current balance for user (0 if no account)."""
    return await store.get_balance(user_id)


async def admin_credit(
    store: BalanceStore,
    user_id: str,
    amount: Decimal,
    source: TransactionSource = TransactionSource.ADMIN_API,
    note: str | None = None,
    idempotency_key: str | None = None,
    actor: str | None = None,
) -> Transaction | None:
    """Manual credit; None when idempotency_key was already used."""
    if amount <= 0:
        raise BadRequestError("Amount must be positive")
    tx = await store.apply_transaction(
        LedgerEntry(
            user_id=user_id,
            type=TransactionType.ADMIN_CREDIT,
            amount=amount,
            total_credits=amount,
            source=source,
            note=note,
            idempotency_key=f"admin:{idempotency_key}" if idempotency_key else None,
            event_type="admin_credit",
        )
    )
    if tx is None:
        return None
    try:
        await log_event(
            user_id,
            "admin_credit",
            "transaction",
            tx.transaction_id,
            {"amount": amount, "source": source.value},
            actor=actor or source.value,
        )
    except Exception as e:
        # The credit is committed; report it as applied so a keyless retry cannot repeat it.
        log.error(
            "audit_write_failed",
            audit_event="admin_credit",
            user_id=user_id,
            transaction_id=tx.transaction_id,
            error=str(e),
        )
    return tx


async def debit_purchase(
    store: BalanceStore,
    user_id: str,
    price: Decimal,
    order_id: str,
    note: str | None = None,
) -> Transaction | None:
    """Charge a marketplace number purchase once per order; InsufficientBalanceError on overdraft."""
    if price <= 0:
        raise BadRequestError("Price must be positive")
    return await store.apply_transaction(
        LedgerEntry(
            user_id=user_id,
            type=TransactionType.PURCHASE,
            amount=price,
            total_credits=-price,
            source=TransactionSource.MARKETPLACE,
            reference_id=order_id,
            note=note,
            idempotency_key=f"purchase:{order_id}",
            event_type="purchase",
        )
    )


async def refund_purchase(
    store: BalanceStore,
    user_id: str,
    amount: Decimal,
    order_id: str,
    note: str | None = None,
) -> Transaction | None:
    """Return a canceled or timed-out purchase; at most once per order."""
    if amount <= 0:
        raise BadRequestError("Amount must be positive")
    return await store.apply_transaction(
        LedgerEntry(
            user_id=user_id,
            type=TransactionType.REFUND,
            amount=amount,
            total_credits=amount,
            source=TransactionSource.MARKETPLACE,
            reference_id=order_id,
            note=note,
            idempotency_key=f"refund:{order_id}",
            event_type="refund",
        )
    )


def replay(transactions: list[Transaction]) -> tuple[Decimal, list[BrokenLink]]:
    """Fold transactions in (created_at, sequence) order; report snapshot links that disagree."""
    ordered = sorted(transactions, key=lambda t: (t.created_at, t.sequence))
    balance = ZERO
    broken: list[BrokenLink] = []
    for tx in ordered:
        if tx.previous_balance != balance or tx.new_balance != tx.previous_balance + tx.total_credits:
            broken.append(
                BrokenLink(
                    transaction_id=tx.transaction_id,
                    sequence=tx.sequence,
                    expected_previous=balance,
                    recorded_previous=tx.previous_balance,
                )
            )
        balance = balance + tx.total_credits
    return balance, broken


async def audit_account(store: BalanceStore, user_id: str) -> AccountAudit:
    transactions = await store.list_transactions(user_id)
    stored = await store.get_balance(user_id)
    replayed, broken = replay(transactions)
    audit = AccountAudit(
        user_id=user_id,
        stored_balance=stored,
        replayed_balance=replayed,
        transaction_count=len(transactions),
        broken_links=broken,
    )
    if not audit.consistent:
        log.error(
            "ledger_drift",
            user_id=user_id,
            stored_balance=str(stored),
            replayed_balance=str(replayed),
            broken_links=len(broken),
        )
    return audit


async def audit_all_accounts(store: BalanceStore) -> dict:
    """Replay every account; returns counts and the ids of drifted accounts."""
    checked = 0
    drifted: list[str] = []
    for user_id in await store.list_account_ids():
        audit = await audit_account(store, user_id)
        checked += 1
        if not audit.consistent:
            drifted.append(user_id)
            await log_event(
                user_id,
                "ledger_drift",
                "account",
                user_id,
                {"stored_balance": audit.stored_balance, "replayed_balance": audit.replayed_balance},
                actor="system",
            )
    log.info("ledger_audit_done", checked=checked, drifted=len(drifted))
    return {"checked": checked, "drifted": drifted}
