"""Credit a user's balance from the command line.

Usage: python -m app.scripts.add_balance <user_id> <amount> [--note TEXT] [--key IDEMPOTENCY_KEY]
"""

import argparse
import asyncio
import sys

from app.core.config import get_settings
from app.core.exceptions import AppError
from app.core.logging import configure_logging, get_logger
from app.services import ledger as ledger_service
from app.services.packages import parse_amount
from app.storage.base import BalanceStore, get_balance_store
from app.storage.types import TransactionSource

log = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Add balance to a user account")
    parser.add_argument("user_id")
    parser.add_argument("amount")
    parser.add_argument("--note", default="Balance added via admin script")
    parser.add_argument("--key", default=None, help="Idempotency key; reruns with the same key are no-ops")
    return parser


async def add_balance(store: BalanceStore, user_id: str, amount: str, note: str, key: str | None = None) -> int:
    tx = await ledger_service.admin_credit(
        store,
        user_id,
        parse_amount(amount),
        source=TransactionSource.ADMIN_SCRIPT,
        note=note,
        idempotency_key=key,
        actor="admin_script",
    )
    if tx is None:
        print(f"Already applied (key {key}); nothing changed")
        return 0
    print(f"Added {tx.total_credits} to {user_id}")
    print(f"   Previous balance: {tx.previous_balance}")
    print(f"   New balance: {tx.new_balance}")
    return 0


async def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(debug=settings.debug)
    if settings.balance_store_backend == "mongo":
        from app.db.init import close_db, init_db
        await init_db()
    try:
        return await add_balance(get_balance_store(), args.user_id, args.amount, args.note, args.key)
    except AppError as e:
        log.error("add_balance_failed", user_id=args.user_id, error=e.message)
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    finally:
        if settings.balance_store_backend == "mongo":
            close_db()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
