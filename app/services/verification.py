"""Synchronous checkout verification after redirect-back. Reads only; never credits."""

from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel

from app.core.audit import log_event
from app.core.exceptions import BadRequestError, ForbiddenError
from app.core.logging import get_logger
from app.services.polar import PolarGateway
from app.storage.base import BalanceStore
from app.storage.types import money

log = get_logger(__name__)

PAID_STATUSES = frozenset({"succeeded", "confirmed"})
TERMINAL_STATUSES = frozenset({"expired", "failed"})

STATUS_MESSAGES: dict[str, dict[str, str]] = {
    "en": {
        "open": "Payment has not been completed yet",
        "expired": "The payment session has expired",
        "failed": "The payment failed",
        "pending": "The payment is being processed",
        "unknown": "Payment status is unknown",
    },
    "tr": {
        "open": "Ödeme henüz tamamlanmadı",
        "expired": "Ödeme oturumu süresi doldu",
        "failed": "Ödeme başarısız oldu",
        "pending": "Ödeme işleniyor",
        "unknown": "Ödeme durumu bilinmiyor",
    },
}


class VerifyResult(BaseModel):
    success: bool
    status: str
    terminal: bool = False
    message: str | None = None
    amount: Decimal | None = None
    bonus_amount: Decimal | None = None
    total_credits: Decimal | None = None
    package_id: str | None = None
    balance_updated: bool | None = None

    def to_public(self) -> dict:
        out: dict[str, Any] = {"success": self.success, "status": self.status, "terminal": self.terminal}
        if self.message is not None:
            out["message"] = self.message
        if self.success:
            out.update(
                amount=money(self.amount),
                bonusAmount=money(self.bonus_amount),
                totalCredits=money(self.total_credits),
                packageId=self.package_id,
                balanceUpdated=self.balance_updated,
            )
        return out


def status_message(status: str, locale: str = "en") -> str:
    messages = STATUS_MESSAGES.get((locale or "en").split("-")[0].lower(), STATUS_MESSAGES["en"])
    return messages.get(status, messages["unknown"])


def _metadata_decimal(metadata: dict[str, Any], key: str) -> Decimal:
    try:
        return Decimal(str(metadata.get(key, "0")))
    except InvalidOperation:
        return Decimal("0")


async def verify_checkout(
    checkout_id: str,
    user_id: str,
    gateway: PolarGateway,
    store: BalanceStore,
    locale: str = "en",
) -> VerifyResult:
    if not checkout_id:
        raise BadRequestError("checkout_id is required")
    if not user_id:
        raise BadRequestError("user_id is required")

    checkout = await gateway.get_checkout(checkout_id)

    metadata_user_id = checkout.metadata.get("userId")
    if metadata_user_id is not None and str(metadata_user_id) != user_id:
        log.warning(
            "verify_user_mismatch",
            checkout_id=checkout_id,
            requested_user_id=user_id,
            metadata_user_id=str(metadata_user_id),
        )
        await log_event(
            user_id,
            "checkout_user_mismatch",
            "checkout",
            checkout_id,
            {"metadata_user_id": metadata_user_id},
        )
        raise ForbiddenError("Checkout does not belong to this user")

    if checkout.status not in PAID_STATUSES:
        log.info("verify_checkout_not_paid", checkout_id=checkout_id, status=checkout.status)
        return VerifyResult(
            success=False,
            status=checkout.status,
            terminal=checkout.status in TERMINAL_STATUSES,
            message=status_message(checkout.status, locale),
        )

    balance_updated = await store.has_processed(checkout_id)
    result = VerifyResult(
        success=True,
        status=checkout.status,
        amount=_metadata_decimal(checkout.metadata, "amount"),
        bonus_amount=_metadata_decimal(checkout.metadata, "bonusAmount"),
        total_credits=_metadata_decimal(checkout.metadata, "totalCredits"),
        package_id=str(checkout.metadata.get("packageId") or "custom"),
        balance_updated=balance_updated,
    )
    log.info(
        "verify_checkout_paid",
        checkout_id=checkout_id,
        user_id=user_id,
        status=checkout.status,
        balance_updated=balance_updated,
        total_credits=str(result.total_credits),
    )
    return result
