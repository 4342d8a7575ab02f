"""Checkout initiation: price the topup and open a Polar session carrying it as metadata."""

import time
from decimal import Decimal
from typing import Any
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict

from app.core.config import Settings, get_settings
from app.core.exceptions import BadRequestError, PaymentProviderUnavailableError
from app.core.logging import get_logger
from app.services.packages import Quote, get_package, quote_custom
from app.services.polar import PolarGateway

log = get_logger(__name__)


class CheckoutSession(BaseModel):
    model_config = ConfigDict(frozen=True)

    checkout_url: str
    checkout_id: str
    quote: Quote
    currency: str = "USD"
    is_dev: bool = False

    def to_public(self) -> dict:
        return {
            "checkoutUrl": self.checkout_url,
            "checkoutId": self.checkout_id,
            "amount": str(self.quote.amount),
            "bonusPercent": str(self.quote.bonus_percent),
            "bonusAmount": str(self.quote.bonus_amount),
            "totalCredits": str(self.quote.total_credits),
            "currency": self.currency,
            "packageId": self.quote.package_id,
            "isDev": self.is_dev,
        }


def build_quote(package_id: str | None, custom_amount: Any, settings: Settings) -> Quote:
    if package_id and custom_amount is not None:
        raise BadRequestError("Send either package_id or custom_amount, not both")
    if package_id:
        return get_package(package_id).quote()
    if custom_amount is None:
        raise BadRequestError("package_id or custom_amount is required")
    return quote_custom(custom_amount, settings.checkout_min_custom_amount)


def checkout_metadata(user_id: str, quote: Quote, currency: str = "USD") -> dict[str, str]:
    """The only source later steps use for the credit; values are strings as Polar stores them."""
    return {
        "userId": user_id,
        "amount": str(quote.amount),
        "bonusPercent": str(quote.bonus_percent),
        "bonusAmount": str(quote.bonus_amount),
        "totalCredits": str(quote.total_credits),
        "packageId": quote.package_id,
        "currency": currency,
    }


def _dev_session(user_id: str, quote: Quote, settings: Settings) -> CheckoutSession:
    params = urlencode(
        {
            "amount": str(quote.amount),
            "bonus": str(quote.bonus_amount),
            "total": str(quote.total_credits),
            "currency": settings.currency,
            "userId": user_id,
            "dev": "true",
        }
    )
    return CheckoutSession(
        checkout_url=f"{settings.app_base_url}/topup/success?{params}",
        checkout_id=f"dev_{int(time.time() * 1000)}",
        quote=quote,
        currency=settings.currency,
        is_dev=True,
    )


async def create_checkout(
    user_id: str,
    gateway: PolarGateway,
    email: str | None = None,
    package_id: str | None = None,
    custom_amount: Decimal | str | float | None = None,
    settings: Settings | None = None,
) -> CheckoutSession:
    """Price the request and open a checkout. Never touches the balance store."""
    settings = settings or get_settings()
    if not user_id:
        raise BadRequestError("user_id is required")
    quote = build_quote(package_id, custom_amount, settings)

    if not gateway.configured:
        if settings.is_production:
            raise PaymentProviderUnavailableError("Payments not configured")
        log.warning("checkout_dev_mode", user_id=user_id, package_id=quote.package_id)
        return _dev_session(user_id, quote, settings)

    product_id = settings.polar_product_id
    if package_id:
        product_id = get_package(package_id).product_id or product_id
    if not product_id:
        raise PaymentProviderUnavailableError("Polar product is not configured")

    checkout = await gateway.create_checkout(
        product_id=product_id,
        success_url=f"{settings.app_base_url}/topup/success?checkout_id={{CHECKOUT_ID}}",
        metadata=checkout_metadata(user_id, quote, settings.currency),
        customer_email=email,
    )
    if not checkout.url:
        raise PaymentProviderUnavailableError("Checkout session has no URL")
    log.info(
        "checkout_created",
        checkout_id=checkout.id,
        user_id=user_id,
        package_id=quote.package_id,
        amount=str(quote.amount),
        total_credits=str(quote.total_credits),
    )
    return CheckoutSession(
        checkout_url=checkout.url,
        checkout_id=checkout.id,
        quote=quote,
        currency=settings.currency,
    )
