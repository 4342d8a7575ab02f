import os
import time
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# In-memory ledger and fixed secrets for tests
os.environ["BALANCE_STORE_BACKEND"] = "memory"
os.environ.setdefault("POLAR_WEBHOOK_SECRET", "polar_whs_test_secret")
os.environ.setdefault("POLAR_PRODUCT_ID", "prod_test")
os.environ.setdefault("ADMIN_API_TOKEN", "admin-test-token")
os.environ.setdefault("ENV", "test")

from app.core.exceptions import NotFoundError  # noqa: E402
from app.services.polar import ProviderCheckout  # noqa: E402
from app.storage.memory import MemoryBalanceStore  # noqa: E402

WEBHOOK_SECRET = os.environ["POLAR_WEBHOOK_SECRET"]
ADMIN_TOKEN = os.environ["ADMIN_API_TOKEN"]


class FakePolarGateway:
    """Stands in for Polar: checkouts live in a dict, statuses are set by the test."""

    def __init__(self, configured: bool = True) -> None:
        self.configured = configured
        self.checkouts: dict[str, ProviderCheckout] = {}
        self.created: list[dict] = []
        self.get_calls = 0

    async def create_checkout(self, product_id, success_url, metadata, customer_email=None):
        checkout_id = f"chk_{len(self.created) + 1}"
        self.created.append(
            {
                "product_id": product_id,
                "success_url": success_url,
                "metadata": metadata,
                "customer_email": customer_email,
            }
        )
        checkout = ProviderCheckout(
            id=checkout_id,
            url=f"https://sandbox.polar.sh/checkout/{checkout_id}",
            status="open",
            metadata=metadata,
        )
        self.checkouts[checkout_id] = checkout
        return checkout

    async def get_checkout(self, checkout_id):
        self.get_calls += 1
        if checkout_id not in self.checkouts:
            raise NotFoundError("Checkout not found")
        return self.checkouts[checkout_id]

    def add(self, checkout_id: str, status: str, metadata: dict) -> ProviderCheckout:
        checkout = ProviderCheckout(id=checkout_id, status=status, metadata=metadata)
        self.checkouts[checkout_id] = checkout
        return checkout

    def set_status(self, checkout_id: str, status: str) -> None:
        self.checkouts[checkout_id] = self.checkouts[checkout_id].model_copy(update={"status": status})


def order_paid_payload(checkout_id: str, user_id: str, amount="15", bonus="1.5", total="16.5", package_id="balance_15"):
    return {
        "type": "order.paid",
        "data": {
            "id": f"ord_{checkout_id}",
            "checkout_id": checkout_id,
            "metadata": {
                "userId": user_id,
                "amount": amount,
                "bonusPercent": "10",
                "bonusAmount": bonus,
                "totalCredits": total,
                "packageId": package_id,
            },
        },
    }


def signed_headers(body: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> dict[str, str]:
    from app.core.security import sign_webhook
    ts = int(time.time()) if timestamp is None else timestamp
    msg_id = f"msg_{ts}_{len(body)}"
    return {
        "webhook-id": msg_id,
        "webhook-timestamp": str(ts),
        "webhook-signature": sign_webhook(body, secret, msg_id, ts),
        "content-type": "application/json",
    }


@pytest.fixture
def store() -> MemoryBalanceStore:
    return MemoryBalanceStore()


@pytest.fixture
def gateway() -> FakePolarGateway:
    return FakePolarGateway()


@pytest_asyncio.fixture
async def client(store, gateway) -> AsyncGenerator[AsyncClient, None]:
    from app.deps import get_gateway, get_store
    from app.main import app
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_gateway] = lambda: gateway
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
