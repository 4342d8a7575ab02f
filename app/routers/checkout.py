from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field

from app.deps import get_gateway, get_store
from app.services import checkout as checkout_service
from app.services import verification as verification_service
from app.services.packages import list_packages
from app.services.polar import PolarGateway
from app.storage.base import BalanceStore

router = APIRouter()


class CreateCheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field("", alias="userId")
    email: str | None = None
    package_id: str | None = Field(None, alias="packageId")
    custom_amount: int | float | str | None = Field(None, alias="customAmount")


class VerifyCheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    checkout_id: str = Field("", alias="checkoutId")
    user_id: str = Field("", alias="userId")
    locale: str = "en"


@router.get("/packages")
async def packages():
    """Balance packages with their bonus tiers."""
    return {"packages": list_packages()}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_checkout(
    body: CreateCheckoutRequest,
    gateway: PolarGateway = Depends(get_gateway),
):
    """Open a Polar checkout for a package or custom amount; returns the redirect URL."""
    session = await checkout_service.create_checkout(
        body.user_id,
        gateway,
        email=body.email,
        package_id=body.package_id,
        custom_amount=body.custom_amount,
    )
    return session.to_public()


@router.post("/verify")
async def verify_checkout(
    body: VerifyCheckoutRequest,
    gateway: PolarGateway = Depends(get_gateway),
    store: BalanceStore = Depends(get_store),
):
    """Check payment status after redirect-back and whether the webhook already credited it."""
    result = await verification_service.verify_checkout(
        body.checkout_id,
        body.user_id,
        gateway,
        store,
        locale=body.locale,
    )
    return result.to_public()
