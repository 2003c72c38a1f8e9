"""Commission and payout split calculation for rentals."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

CENT = Decimal("0.01")


def round_money(value: Decimal) -> Decimal:
    """Round a money amount to two decimal places, half up."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def amounts_match(a: Decimal, b: Decimal, tolerance: Decimal = CENT) -> bool:
    """Compare two money amounts after rounding, allowing ``tolerance`` of drift."""
    return abs(round_money(a) - round_money(b)) <= tolerance


@dataclass(frozen=True)
class RentalFinancialBreakdown:
    """How a rental charge splits between owner, platform and deposit."""

    rental_amount: Decimal
    security_deposit: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    total_payer_amount: Decimal
    owner_payout_amount: Decimal


def resolve_commission_rate(owner_settings: Any | None, default_rate: Decimal) -> Decimal:
    """Owner's custom rate when commission is enabled and a rate is set, else the default."""
    if (
        owner_settings is not None
        and owner_settings.is_commission_enabled
        and owner_settings.custom_commission_rate is not None
    ):
        return Decimal(str(owner_settings.custom_commission_rate))
    return Decimal(str(default_rate))


def calculate_rental_financials(
    rental_amount: Decimal,
    security_deposit: Decimal,
    commission_rate: Decimal,
) -> RentalFinancialBreakdown:
    """Split a rental charge.

    Commission is rounded once here; every later comparison works on these
    rounded values.
    """
    rental = round_money(rental_amount)
    deposit = round_money(security_deposit)
    rate = Decimal(str(commission_rate))
    commission = round_money(rental * rate)

    return RentalFinancialBreakdown(
        rental_amount=rental,
        security_deposit=deposit,
        commission_rate=rate,
        commission_amount=commission,
        total_payer_amount=rental + deposit,
        owner_payout_amount=rental - commission,
    )
