"""Shared FastAPI dependencies."""

from fastapi import Header

from app.core.config import get_settings
from app.core.exceptions import ForbiddenError, UnauthorizedError
from app.core.security import verify_admin_token
from app.services.polar import PolarGateway, get_polar_gateway
from app.storage.base import BalanceStore, get_balance_store

ADMIN_TOKEN_HEADER = "X-Admin-Token"


def get_store() -> BalanceStore:
    return get_balance_store()


def get_gateway() -> PolarGateway:
    return get_polar_gateway()


async def require_admin(x_admin_token: str | None = Header(None, alias=ADMIN_TOKEN_HEADER)) -> str:
    """Dependency: require the configured admin token; the admin API is off without one."""
    settings = get_settings()
    if not settings.admin_api_token:
        raise ForbiddenError("Admin API disabled")
    if not x_admin_token:
        raise UnauthorizedError("Admin token required")
    if not verify_admin_token(x_admin_token, settings.admin_api_token):
        raise ForbiddenError("Admin only")
    return "admin_api"
