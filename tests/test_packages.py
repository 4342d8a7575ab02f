"""Bonus tiers, package table and amount parsing."""

from decimal import Decimal

import pytest

from app.core.exceptions import InvalidAmountError, InvalidPackageError
from app.services.packages import (
    BALANCE_PACKAGES,
    bonus_rate,
    get_package,
    parse_amount,
    quote_custom,
    total_credits,
)


def test_fifteen_dollar_topup_gets_ten_percent():
    assert bonus_rate(Decimal("15")) == Decimal("0.10")
    assert total_credits(Decimal("15")) == Decimal("16.50")


@pytest.mark.parametrize(
    "amount,rate",
    [
        ("0.50", "0"),
        ("4.99", "0"),
        ("5", "0.05"),
        ("14.99", "0.05"),
        ("15", "0.10"),
        ("30", "0.15"),
        ("59.99", "0.15"),
        ("60", "0.20"),
        ("1000", "0.20"),
    ],
)
def test_tier_boundaries(amount, rate):
    assert bonus_rate(Decimal(amount)) == Decimal(rate)


def test_bonus_rate_is_monotonic():
    amounts = [Decimal(cents) / 100 for cents in range(0, 10001, 37)]
    rates = [bonus_rate(a) for a in amounts]
    assert rates == sorted(rates)


def test_total_credits_is_exact():
    for cents in range(0, 10001, 53):
        a = Decimal(cents) / 100
        assert total_credits(a) == a * (1 + bonus_rate(a))
    assert total_credits(Decimal("7.33")) == Decimal("7.6965")


def test_packages_match_tier_function():
    for package in BALANCE_PACKAGES:
        assert package.total_credits == total_credits(package.amount)
        assert package.bonus_percent / 100 == bonus_rate(package.amount)
    assert get_package("balance_15").total_credits == Decimal("16.50")
    assert get_package("balance_60").total_credits == Decimal("72.00")


def test_unknown_package():
    with pytest.raises(InvalidPackageError) as exc:
        get_package("balance_999")
    assert exc.value.code == "INVALID_PACKAGE"
    assert exc.value.status_code == 400


def test_quote_custom():
    quote = quote_custom("30", minimum=Decimal("5"))
    assert quote.package_id == "custom"
    assert quote.bonus_percent == Decimal("15")
    assert quote.bonus_amount == Decimal("4.50")
    assert quote.total_credits == Decimal("34.50")


def test_quote_custom_below_minimum():
    with pytest.raises(InvalidAmountError) as exc:
        quote_custom(4, minimum=Decimal("5"))
    assert exc.value.details["minimum"] == "5"


@pytest.mark.parametrize("value", ["abc", "NaN", "Infinity", "1.001", True, None, ""])
def test_parse_amount_rejects(value):
    with pytest.raises(InvalidAmountError):
        parse_amount(value)


def test_parse_amount_accepts_numbers_and_strings():
    assert parse_amount(12) == Decimal("12")
    assert parse_amount(12.5) == Decimal("12.5")
    assert parse_amount("12.50") == Decimal("12.50")
