"""Polar webhook reconciliation: verify, classify, credit paid orders exactly once."""

import asyncio
import json
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping, Union

from pydantic import BaseModel, Field

from app.core.config import Settings, get_settings
from app.core.exceptions import BadRequestError, StorageUnavailableError, WebhookSignatureError
from app.core.logging import get_logger
from app.core.security import verify_webhook_signature
from app.storage.base import BalanceStore
from app.storage.types import TransactionSource

log = get_logger(__name__)

ORDER_PAID = "order.paid"


class WebhookOutcome(str, Enum):
    CREDITED = "credited"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    MALFORMED = "malformed"


class CheckoutEvent(BaseModel):
    type: str  # checkout.created | checkout.updated
    checkout_id: str | None = None
    status: str | None = None


class OrderCreatedEvent(BaseModel):
    type: str = "order.created"
    order_id: str | None = None
    checkout_id: str | None = None


class OrderPaidEvent(BaseModel):
    type: str = ORDER_PAID
    order_id: str | None = None
    checkout_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class SubscriptionEvent(BaseModel):
    type: str
    subscription_id: str | None = None


class UnknownEvent(BaseModel):
    type: str = ""


WebhookEvent = Union[CheckoutEvent, OrderCreatedEvent, OrderPaidEvent, SubscriptionEvent, UnknownEvent]


class PaidOrderCredit(BaseModel):
    checkout_id: str
    user_id: str
    amount: Decimal
    bonus_amount: Decimal
    total_credits: Decimal
    package_id: str


def _str_or_none(value: Any) -> str | None:
    return str(value) if value not in (None, "") else None


def parse_event(payload: Any) -> WebhookEvent:
    """Map a raw payload onto the known event variants; never raises."""
    if not isinstance(payload, dict):
        return UnknownEvent()
    event_type = str(payload.get("type") or "")
    data = payload.get("data")
    if not isinstance(data, dict):
        data = {}
    if event_type in ("checkout.created", "checkout.updated"):
        return CheckoutEvent(
            type=event_type,
            checkout_id=_str_or_none(data.get("id")),
            status=_str_or_none(data.get("status")),
        )
    if event_type == "order.created":
        return OrderCreatedEvent(
            order_id=_str_or_none(data.get("id")),
            checkout_id=_str_or_none(data.get("checkout_id")),
        )
    if event_type == ORDER_PAID:
        metadata = data.get("metadata")
        return OrderPaidEvent(
            order_id=_str_or_none(data.get("id")),
            checkout_id=_str_or_none(data.get("checkout_id")),
            metadata=metadata if isinstance(metadata, dict) else {},
        )
    if event_type.startswith("subscription."):
        return SubscriptionEvent(type=event_type, subscription_id=_str_or_none(data.get("id")))
    return UnknownEvent(type=event_type)


def _money(value: Any) -> Decimal:
    amount = Decimal(str(value))
    if not amount.is_finite() or amount < 0:
        raise InvalidOperation(str(value))
    return amount


def extract_credit(event: OrderPaidEvent) -> PaidOrderCredit | None:
    """Credit described by the checkout metadata this server set; None when unusable."""
    # Verify looks credits up by checkout id, so key by it; fall back to the order id.
    checkout_id = event.checkout_id or event.order_id
    metadata = event.metadata
    user_id = _str_or_none(metadata.get("userId"))
    if not checkout_id or not user_id:
        return None
    try:
        amount = _money(metadata.get("amount", "0"))
        total = _money(metadata["totalCredits"])
        bonus_raw = metadata.get("bonusAmount")
        bonus = _money(bonus_raw) if bonus_raw not in (None, "") else total - amount
    except (KeyError, InvalidOperation, ValueError):
        return None
    return PaidOrderCredit(
        checkout_id=checkout_id,
        user_id=user_id,
        amount=amount,
        bonus_amount=bonus,
        total_credits=total,
        package_id=_str_or_none(metadata.get("packageId")) or "custom",
    )


async def handle_event(event: WebhookEvent, store: BalanceStore, timeout_seconds: float = 10.0) -> WebhookOutcome:
    if isinstance(event, CheckoutEvent):
        log.info("webhook_checkout_event", event_type=event.type, checkout_id=event.checkout_id, status=event.status)
        return WebhookOutcome.IGNORED
    if isinstance(event, OrderCreatedEvent):
        # Intent to pay is not proof of payment; wait for order.paid.
        log.info("webhook_order_created", order_id=event.order_id, checkout_id=event.checkout_id)
        return WebhookOutcome.IGNORED
    if isinstance(event, SubscriptionEvent):
        log.info("webhook_subscription_event", event_type=event.type, subscription_id=event.subscription_id)
        return WebhookOutcome.IGNORED
    if not isinstance(event, OrderPaidEvent):
        log.info("webhook_unhandled_event", event_type=event.type)
        return WebhookOutcome.IGNORED

    credit = extract_credit(event)
    if credit is None:
        log.error(
            "webhook_malformed_order",
            order_id=event.order_id,
            checkout_id=event.checkout_id,
            metadata_keys=sorted(event.metadata),
        )
        return WebhookOutcome.MALFORMED

    log.info(
        "webhook_processing_order",
        checkout_id=credit.checkout_id,
        user_id=credit.user_id,
        amount=str(credit.amount),
        bonus_amount=str(credit.bonus_amount),
        total_credits=str(credit.total_credits),
    )
    try:
        tx = await asyncio.wait_for(
            store.apply_credit(
                credit.user_id,
                credit.amount,
                credit.bonus_amount,
                credit.total_credits,
                checkout_id=credit.checkout_id,
                source=TransactionSource.POLAR,
                package_id=credit.package_id,
                event_type=ORDER_PAID,
            ),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError:
        log.error("webhook_credit_timeout", checkout_id=credit.checkout_id, user_id=credit.user_id)
        raise StorageUnavailableError("Timed out crediting balance")
    except Exception as e:
        # Must reach the provider as a failure so the delivery is retried.
        log.error("webhook_credit_failed", checkout_id=credit.checkout_id, user_id=credit.user_id, error=str(e))
        raise

    if tx is None:
        processed = await store.get_processed(credit.checkout_id)
        log.info(
            "webhook_duplicate_ignored",
            checkout_id=credit.checkout_id,
            original_processed_at=processed.processed_at.isoformat() if processed else None,
        )
        return WebhookOutcome.DUPLICATE

    log.info(
        "webhook_balance_credited",
        checkout_id=credit.checkout_id,
        user_id=credit.user_id,
        total_credits=str(tx.total_credits),
        previous_balance=str(tx.previous_balance),
        new_balance=str(tx.new_balance),
        transaction_id=tx.transaction_id,
    )
    return WebhookOutcome.CREDITED


async def handle_webhook(
    payload: bytes,
    headers: Mapping[str, str],
    store: BalanceStore,
    settings: Settings | None = None,
) -> WebhookOutcome:
    """Verify the signature before reading anything, then reconcile the event."""
    settings = settings or get_settings()
    if not settings.polar_webhook_secret:
        raise BadRequestError("Webhook secret not configured")
    try:
        verify_webhook_signature(
            payload,
            headers,
            settings.polar_webhook_secret,
            tolerance_seconds=settings.webhook_tolerance_seconds,
        )
    except WebhookSignatureError as e:
        # Unauthenticated traffic: log only, never persist.
        log.warning("webhook_signature_rejected", reason=e.message, webhook_id=headers.get("webhook-id"))
        raise
    try:
        data = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        log.error("webhook_invalid_json", size=len(payload))
        return WebhookOutcome.MALFORMED
    event = parse_event(data)
    log.info("webhook_received", event_type=event.type)
    return await handle_event(event, store, timeout_seconds=settings.storage_timeout_seconds)
