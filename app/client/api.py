"""HTTP client for the balance API, used by the reconciliation poller."""

import json
from decimal import Decimal
from typing import Any, AsyncIterator

import httpx


class ApiError(Exception):
    def __init__(self, status_code: int, body: Any):
        self.status_code = status_code
        self.body = body
        message = body.get("error", {}).get("message") if isinstance(body, dict) else str(body)
        super().__init__(f"{status_code}: {message}")

    @property
    def retryable(self) -> bool:
        return self.status_code >= 500 or self.status_code == 429


class BalanceApiClient:
    def __init__(self, base_url: str, timeout: float = 10.0, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def __aenter__(self) -> "BalanceApiClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _json(resp: httpx.Response) -> dict[str, Any]:
        try:
            body = resp.json()
        except ValueError:
            body = resp.text
        if resp.status_code >= 400:
            raise ApiError(resp.status_code, body)
        return body

    async def verify_checkout(self, checkout_id: str, user_id: str, locale: str = "en") -> dict[str, Any]:
        resp = await self._client.post(
            "/v1/checkout/verify",
            json={"checkout_id": checkout_id, "user_id": user_id, "locale": locale},
        )
        return self._json(resp)

    async def get_balance(self, user_id: str) -> Decimal:
        resp = await self._client.get(f"/v1/balance/{user_id}")
        return Decimal(str(self._json(resp)["balance"]))

    async def balance_events(self, user_id: str) -> AsyncIterator[Decimal]:
        """Yield balances from the server-sent event stream until it closes."""
        async with self._client.stream(
            "GET",
            f"/v1/balance/{user_id}/events",
            timeout=httpx.Timeout(10.0, read=None),
        ) as resp:
            if resp.status_code >= 400:
                await resp.aread()
                raise ApiError(resp.status_code, resp.text)
            async for line in resp.aiter_lines():
                if not line.startswith("data:"):
                    continue
                data = json.loads(line[len("data:"):].strip())
                yield Decimal(str(data["balance"]))
