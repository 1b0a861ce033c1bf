"""Deposit allocator - core business rule for funding a bill from deposits"""

from decimal import Decimal

from billing_engine.domain.exceptions import ValidationError
from billing_engine.domain.models import DepositAllocation
from billing_engine.utils.money import ZERO, Number, to_money


def allocate_deposits(
    rent_portion: Number,
    other_portion: Number,
    advance_balance: Number,
    security_balance: Number,
    contract_completed: bool,
) -> DepositAllocation:
    """
    Distribute deposit funds across a bill's charge categories.

    Fixed allocation order:
    1. Advance deposit pays rent, up to min(advance, rent)
    2. Contract completed: security deposit pays the other charges
       (electricity, water, extra fees) and then any rent the advance left
       uncovered. Early termination: security is not eligible and is
       reported as forfeited.
    3. Whatever is still unfunded is the tenant's outstanding balance
    4. Advance left after rent is refundable; security left after all
       charges is refundable only on a completed contract

    Example (contract completed):
        rent 3500, other 662, advance 3500, security 2000
        -> advance_used 3500, security_used 662, security_refundable 1338,
           advance_refundable 0, outstanding 0

    Raises:
        ValidationError: if any input is negative
    """
    rent = to_money(rent_portion)
    other = to_money(other_portion)
    advance = to_money(advance_balance)
    security = to_money(security_balance)

    for name, value in (
        ("rent_portion", rent),
        ("other_portion", other),
        ("advance_balance", advance),
        ("security_balance", security),
    ):
        if value < 0:
            raise ValidationError(f"{name} cannot be negative: {value}")

    advance_used = min(advance, rent)
    rent_shortfall = rent - advance_used

    if contract_completed:
        security_to_other = min(security, other)
        security_to_rent = min(security - security_to_other, rent_shortfall)
        security_used = security_to_other + security_to_rent
        security_refundable = security - security_used
        security_forfeited = ZERO
    else:
        security_used = ZERO
        security_refundable = ZERO
        security_forfeited = security

    outstanding = rent + other - advance_used - security_used

    return DepositAllocation(
        advance_used=advance_used,
        security_used=security_used,
        outstanding_balance=outstanding,
        advance_refundable=advance - advance_used,
        security_refundable=security_refundable,
        security_forfeited=security_forfeited,
    )


def split_outstanding(rent_amount: Decimal, total_amount: Decimal, total_paid: Decimal) -> tuple[Decimal, Decimal]:
    """
    Split what is still owed on a bill into (rent, other) portions.

    Earlier payments are counted against rent first, so a partly paid bill
    keeps its non-rent charges as the other portion.
    """
    outstanding = max(ZERO, to_money(total_amount) - to_money(total_paid))
    rent_outstanding = min(outstanding, max(ZERO, to_money(rent_amount) - to_money(total_paid)))
    return rent_outstanding, outstanding - rent_outstanding
