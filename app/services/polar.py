"""Polar checkout API: SDK first, direct HTTP call as fallback."""

from functools import lru_cache
from typing import Any

import httpx
from pydantic import BaseModel, Field

from app.core.config import Settings, get_settings
from app.core.exceptions import NotFoundError, PaymentProviderUnavailableError
from app.core.logging import get_logger

log = get_logger(__name__)


class ProviderCheckout(BaseModel):
    id: str
    url: str | None = None
    status: str = "open"
    metadata: dict[str, Any] = Field(default_factory=dict)


def _status_value(status: Any) -> str:
    return str(getattr(status, "value", status) or "open")


def _from_sdk(checkout: Any) -> ProviderCheckout:
    return ProviderCheckout(
        id=checkout.id,
        url=getattr(checkout, "url", None),
        status=_status_value(getattr(checkout, "status", None)),
        metadata=dict(getattr(checkout, "metadata", None) or {}),
    )


def _from_json(data: dict[str, Any]) -> ProviderCheckout:
    return ProviderCheckout(
        id=data["id"],
        url=data.get("url"),
        status=_status_value(data.get("status")),
        metadata=data.get("metadata") or {},
    )


class PolarGateway:
    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self._sdk = None

    @property
    def configured(self) -> bool:
        return self.settings.polar_configured

    def _client(self):
        if not self.configured:
            raise PaymentProviderUnavailableError("Payments not configured")
        if self._sdk is None:
            from polar_sdk import Polar
            self._sdk = Polar(
                access_token=self.settings.polar_access_token,
                server=self.settings.polar_environment,
                timeout_ms=int(self.settings.polar_timeout_seconds * 1000),
            )
        return self._sdk

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.settings.polar_api_base,
            timeout=self.settings.polar_timeout_seconds,
            headers={"Authorization": f"Bearer {self.settings.polar_access_token}"},
        )

    async def create_checkout(
        self,
        product_id: str,
        success_url: str,
        metadata: dict[str, str],
        customer_email: str | None = None,
    ) -> ProviderCheckout:
        request: dict[str, Any] = {
            "products": [product_id],
            "success_url": success_url,
            "metadata": metadata,
        }
        if customer_email:
            request["customer_email"] = customer_email
        client = self._client()
        try:
            checkout = await client.checkouts.create_async(request=request)
            return _from_sdk(checkout)
        except Exception as e:
            log.warning("polar_sdk_create_failed", error=str(e), product_id=product_id)
        return await self._create_checkout_direct(request)

    async def _create_checkout_direct(self, request: dict[str, Any]) -> ProviderCheckout:
        try:
            async with self._http() as http:
                resp = await http.post("/v1/checkouts/", json=request)
        except httpx.HTTPError as e:
            log.error("polar_api_create_failed", error=str(e))
            raise PaymentProviderUnavailableError("Could not create checkout session")
        if resp.status_code >= 400:
            log.error("polar_api_create_failed", status_code=resp.status_code, body=resp.text[:500])
            raise PaymentProviderUnavailableError(
                "Could not create checkout session",
                details={"provider_status": resp.status_code},
            )
        return _from_json(resp.json())

    async def get_checkout(self, checkout_id: str) -> ProviderCheckout:
        client = self._client()
        try:
            checkout = await client.checkouts.get_async(id=checkout_id)
            return _from_sdk(checkout)
        except Exception as e:
            log.warning("polar_sdk_get_failed", error=str(e), checkout_id=checkout_id)
        try:
            async with self._http() as http:
                resp = await http.get(f"/v1/checkouts/{checkout_id}")
        except httpx.HTTPError as e:
            log.error("polar_api_get_failed", error=str(e), checkout_id=checkout_id)
            raise PaymentProviderUnavailableError("Could not check payment status")
        if resp.status_code == 404:
            raise NotFoundError("Checkout not found")
        if resp.status_code >= 400:
            log.error("polar_api_get_failed", status_code=resp.status_code, checkout_id=checkout_id)
            raise PaymentProviderUnavailableError(
                "Could not check payment status",
                details={"provider_status": resp.status_code},
            )
        return _from_json(resp.json())


@lru_cache
def get_polar_gateway() -> PolarGateway:
    return PolarGateway()
