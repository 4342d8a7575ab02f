"""Cron: ledger audit sweep over every account."""

from app.core.logging import get_logger
from app.services.ledger import audit_all_accounts
from app.storage.base import get_balance_store

log = get_logger(__name__)


async def run_ledger_audit() -> dict:
    """Replay all accounts against their stored balance; drift is logged and audited, never repaired."""
    store = get_balance_store()
    result = await audit_all_accounts(store)
    if result["drifted"]:
        log.error("ledger_audit_drift", drifted=result["drifted"])
    return result
