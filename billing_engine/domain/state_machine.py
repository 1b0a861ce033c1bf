"""Bill state machine - penalty assessment and status decisions for payments"""

from decimal import Decimal
from typing import Iterable

from billing_engine.domain.exceptions import (
    AmountExceedsBalance,
    BillAlreadySettledError,
    InvalidStatusTransition,
    ValidationError,
)
from billing_engine.domain.models import (
    BillState,
    BillStatus,
    PaymentDecision,
    PaymentRequest,
    PenaltyAssessment,
    PenaltyPolicy,
)
from billing_engine.utils.date_utils import is_payment_late
from billing_engine.utils.money import BALANCE_TOLERANCE, ZERO, money_sum, round_whole, to_money


def calculate_penalty(total_amount: Decimal, percentage: Decimal) -> Decimal:
    """Penalty on a bill total, rounded half-up to a whole currency unit"""
    return round_whole(total_amount * Decimal(str(percentage)) / Decimal(100))


def assess_penalty(bill: BillState, payment_date, policy: PenaltyPolicy) -> PenaltyAssessment:
    """
    Decide whether a payment made on payment_date makes the bill late.

    The penalty is added to the total at most once per bill; refund bills
    never accrue one.
    """
    if bill.penalty_applied or bill.is_refund or bill.total_amount == 0:
        return PenaltyAssessment(applied=False, penalty_amount=ZERO, total_amount=bill.total_amount)

    if not is_payment_late(payment_date, bill.period_end, policy.grace_days):
        return PenaltyAssessment(applied=False, penalty_amount=ZERO, total_amount=bill.total_amount)

    penalty = calculate_penalty(bill.total_amount, policy.percentage)
    return PenaltyAssessment(applied=True, penalty_amount=penalty, total_amount=bill.total_amount + penalty)


def status_for(total_paid: Decimal, total_amount: Decimal) -> BillStatus:
    """Status implied by what has been paid; refund bills compare absolute values"""
    paid = abs(total_paid)
    if paid > 0 and paid >= abs(total_amount):
        return BillStatus.PAID
    if paid > 0:
        return BillStatus.PARTIAL
    return BillStatus.UNPAID


def ensure_forward(current: BillStatus, new: BillStatus) -> None:
    """Statuses only move unpaid -> partial -> paid"""
    if new.rank < current.rank:
        raise InvalidStatusTransition(f"Bill status cannot move from {current.value} to {new.value}")


def apply_payment(
    bill: BillState,
    existing_amounts: Iterable[Decimal],
    payment: PaymentRequest,
    policy: PenaltyPolicy,
) -> PaymentDecision:
    """
    Decide the effect of a new payment on a bill.

    Flow:
    1. Assess the late penalty (actual date after period end + grace days)
    2. Reject amounts above the remaining balance (0.01 tolerance)
    3. Derive the new status from the total paid
    4. Return the decision; persisting it is the caller's job

    Raises:
        BillAlreadySettledError: bill is already paid
        ValidationError: zero amount, or sign not matching the bill total
        AmountExceedsBalance: amount larger than the remaining balance
    """
    if bill.status is BillStatus.PAID:
        raise BillAlreadySettledError("Bill is already paid")

    amount = to_money(payment.amount)
    if amount == 0:
        raise ValidationError("Payment amount must be non-zero")
    if bill.is_refund and amount > 0:
        raise ValidationError("Refund bills are settled with negative amounts")
    if not bill.is_refund and amount < 0:
        raise ValidationError("Payment amount must be positive")

    assessment = assess_penalty(bill, payment.actual_date, policy)
    total = assessment.total_amount

    already_paid = money_sum(existing_amounts)
    remaining = total - already_paid
    if abs(amount) > abs(remaining) + BALANCE_TOLERANCE:
        raise AmountExceedsBalance(amount, remaining)

    total_paid = already_paid + amount
    new_status = status_for(total_paid, total)
    ensure_forward(bill.status, new_status)

    return PaymentDecision(
        new_status=new_status,
        penalty_applied=assessment.applied,
        penalty_amount=assessment.penalty_amount,
        total_amount=total,
        total_paid=total_paid,
        remaining_balance=total - total_paid,
    )
