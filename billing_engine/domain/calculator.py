"""Billing calculator - periodic charges for one tenancy"""

from datetime import date
from decimal import Decimal
from typing import Optional

from billing_engine.domain.exceptions import ValidationError
from billing_engine.domain.models import BillCharges
from billing_engine.utils.date_utils import days_inclusive
from billing_engine.utils.money import ZERO, Number, round_whole, to_money

DEFAULT_PRORATION_BASIS_DAYS = 30


def days_in_period(period_start: date, period_end: date) -> int:
    """Inclusive day count of a billing period; rejects an end before the start"""
    if period_end < period_start:
        raise ValidationError(f"Billing period ends ({period_end}) before it starts ({period_start})")
    return days_inclusive(period_start, period_end)


def prorate_rent(
    monthly_rent: Number,
    period_start: date,
    period_end: date,
    basis_days: int = DEFAULT_PRORATION_BASIS_DAYS,
) -> Decimal:
    """
    Scale monthly rent to the period by elapsed days.

    rent = round(monthly_rent / basis_days * days), rounded half-up to a whole
    currency unit. The basis is 30 days unless the caller says otherwise.

    Example:
        3500 over 2024-06-01..2024-06-30 (30 days) -> 3500
        3500 over 2024-06-01..2024-06-10 (10 days) -> 1167
    """
    days = days_in_period(period_start, period_end)
    rent = Decimal(str(monthly_rent)) / Decimal(basis_days) * Decimal(days)
    return round_whole(rent)


def electric_consumption(previous_reading: Number, current_reading: Number) -> Decimal:
    """Units consumed; a meter reading lower than the previous one counts as zero"""
    consumption = to_money(current_reading) - to_money(previous_reading)
    return max(ZERO, consumption)


def electric_amount(consumption: Number, rate_per_kwh: Number) -> Decimal:
    return to_money(to_money(consumption) * Decimal(str(rate_per_kwh)))


def calculate_bill_charges(
    period_start: date,
    period_end: date,
    monthly_rent: Number,
    previous_reading: Number,
    current_reading: Number,
    electric_rate: Number,
    water_amount: Number,
    extra_fee: Number = ZERO,
    extra_fee_description: Optional[str] = None,
    basis_days: int = DEFAULT_PRORATION_BASIS_DAYS,
) -> BillCharges:
    """
    Compute every charge of a billing period.

    total = rent + electric_amount + water_amount + extra_fee_amount.
    Late-payment penalties are not part of this total; the state machine adds
    them when a late payment arrives.

    Raises:
        ValidationError: if period_end is before period_start
    """
    days = days_in_period(period_start, period_end)
    rent = prorate_rent(monthly_rent, period_start, period_end, basis_days)
    consumption = electric_consumption(previous_reading, current_reading)
    electric = electric_amount(consumption, electric_rate)
    water = to_money(water_amount)
    extra = to_money(extra_fee)

    return BillCharges(
        period_start=period_start,
        period_end=period_end,
        days=days,
        rent_amount=rent,
        electric_previous_reading=to_money(previous_reading),
        electric_current_reading=to_money(current_reading),
        electric_consumption=consumption,
        electric_rate=to_money(electric_rate),
        electric_amount=electric,
        water_amount=water,
        extra_fee_amount=extra,
        extra_fee_description=extra_fee_description,
        total_amount=rent + electric + water + extra,
    )
