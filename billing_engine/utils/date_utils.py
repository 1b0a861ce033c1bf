"""Date manipulation utilities"""

from datetime import date, timedelta
from typing import Optional


def days_inclusive(start: date, end: date) -> int:
    """Number of days from start to end, counting both endpoints"""
    return (end - start).days + 1


def payment_due_date(period_end: date, grace_days: int) -> date:
    """Last day a payment counts as on time"""
    return period_end + timedelta(days=grace_days)


def is_payment_late(actual_date: date, period_end: date, grace_days: int = 10) -> bool:
    """Late when paid strictly after the grace window following the period end"""
    return actual_date > payment_due_date(period_end, grace_days)


def is_contract_completed(contract_end_date: Optional[date], today: date) -> bool:
    """A contract without an end date is never considered completed"""
    if contract_end_date is None:
        return False
    return today >= contract_end_date


def next_day(day: date) -> date:
    return day + timedelta(days=1)
