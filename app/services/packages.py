"""Balance packages and the bonus tier schedule."""

from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict

from app.core.exceptions import InvalidAmountError, InvalidPackageError

CENT = Decimal("0.01")
HUNDRED = Decimal("100")

# (minimum amount, bonus percent), highest tier first
BONUS_TIERS: tuple[tuple[Decimal, Decimal], ...] = (
    (Decimal("60"), Decimal("20")),
    (Decimal("30"), Decimal("15")),
    (Decimal("15"), Decimal("10")),
    (Decimal("5"), Decimal("5")),
)

CUSTOM_PACKAGE_ID = "custom"


class Quote(BaseModel):
    model_config = ConfigDict(frozen=True)

    package_id: str
    amount: Decimal
    bonus_percent: Decimal
    bonus_amount: Decimal
    total_credits: Decimal


class BalancePackage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    amount: Decimal
    bonus_percent: Decimal
    total_credits: Decimal
    product_id: str | None = None  # Polar product; falls back to POLAR_PRODUCT_ID

    def quote(self) -> Quote:
        return Quote(
            package_id=self.id,
            amount=self.amount,
            bonus_percent=self.bonus_percent,
            bonus_amount=self.total_credits - self.amount,
            total_credits=self.total_credits,
        )


def bonus_percent(amount: Decimal) -> Decimal:
    for minimum, percent in BONUS_TIERS:
        if amount >= minimum:
            return percent
    return Decimal("0")


def bonus_rate(amount: Decimal) -> Decimal:
    """Fraction credited on top of amount; non-decreasing in amount."""
    return bonus_percent(amount) / HUNDRED


def total_credits(amount: Decimal) -> Decimal:
    """amount * (1 + bonus_rate(amount)), exact."""
    return amount * (1 + bonus_rate(amount))


def _package(package_id: str, amount: str) -> BalancePackage:
    value = Decimal(amount)
    return BalancePackage(
        id=package_id,
        amount=value,
        bonus_percent=bonus_percent(value),
        total_credits=total_credits(value),
    )


BALANCE_PACKAGES: tuple[BalancePackage, ...] = (
    _package("balance_5", "5"),
    _package("balance_15", "15"),
    _package("balance_30", "30"),
    _package("balance_60", "60"),
)


def get_package(package_id: str) -> BalancePackage:
    for package in BALANCE_PACKAGES:
        if package.id == package_id:
            return package
    raise InvalidPackageError(package_id)


def parse_amount(value: Any) -> Decimal:
    """Parse a client-supplied money amount: finite, at most two decimal places."""
    if isinstance(value, bool) or value is None:
        raise InvalidAmountError("Amount is required")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidAmountError("Amount must be a number", details={"amount": str(value)})
    if not amount.is_finite():
        raise InvalidAmountError("Amount must be a number", details={"amount": str(value)})
    try:
        exact = amount == amount.quantize(CENT)
    except InvalidOperation:
        exact = False
    if not exact:
        raise InvalidAmountError("Amount must have at most two decimal places", details={"amount": str(value)})
    return amount


def quote_custom(value: Any, minimum: Decimal) -> Quote:
    amount = parse_amount(value)
    if amount < minimum:
        raise InvalidAmountError(
            f"Amount must be at least {minimum}",
            details={"amount": str(amount), "minimum": str(minimum)},
        )
    total = total_credits(amount)
    return Quote(
        package_id=CUSTOM_PACKAGE_ID,
        amount=amount,
        bonus_percent=bonus_percent(amount),
        bonus_amount=total - amount,
        total_credits=total,
    )


def list_packages() -> list[dict]:
    return [
        {
            "id": p.id,
            "amount": str(p.amount),
            "bonusPercent": str(p.bonus_percent),
            "totalCredits": str(p.total_credits),
        }
        for p in BALANCE_PACKAGES
    ]
