"""Unit tests for the deposit allocator"""

import itertools
import pytest
from decimal import Decimal
from billing_engine.domain.allocation import allocate_deposits, split_outstanding
from billing_engine.domain.exceptions import ValidationError


def test_contract_completed_example():
    """Advance covers rent, security covers the other charges, rest of security refundable"""
    allocation = allocate_deposits(3500, 662, 3500, 2000, contract_completed=True)

    assert allocation.advance_used == Decimal("3500.00")
    assert allocation.security_used == Decimal("662.00")
    assert allocation.security_refundable == Decimal("1338.00")
    assert allocation.advance_refundable == Decimal("0.00")
    assert allocation.outstanding_balance == Decimal("0.00")
    assert allocation.security_forfeited == Decimal("0.00")


def test_early_termination_forfeits_security():
    allocation = allocate_deposits(3500, 662, 3500, 2000, contract_completed=False)

    assert allocation.advance_used == Decimal("3500.00")
    assert allocation.security_used == Decimal("0.00")
    assert allocation.security_refundable == Decimal("0.00")
    assert allocation.security_forfeited == Decimal("2000.00")
    assert allocation.outstanding_balance == Decimal("662.00")


def test_advance_never_pays_other_charges():
    """Leftover advance stays refundable even when utilities are unpaid"""
    allocation = allocate_deposits(1000, 500, 3000, 0, contract_completed=False)

    assert allocation.advance_used == Decimal("1000.00")
    assert allocation.advance_refundable == Decimal("2000.00")
    assert allocation.outstanding_balance == Decimal("500.00")


def test_security_covers_rent_shortfall_after_other_charges():
    allocation = allocate_deposits(3500, 662, 3000, 2000, contract_completed=True)

    # 662 to other charges, then 500 of the 1338 left covers the rent gap
    assert allocation.advance_used == Decimal("3000.00")
    assert allocation.security_used == Decimal("1162.00")
    assert allocation.security_refundable == Decimal("838.00")
    assert allocation.outstanding_balance == Decimal("0.00")


def test_deposits_smaller_than_bill_leave_outstanding():
    allocation = allocate_deposits(3500, 662, 1000, 500, contract_completed=True)

    assert allocation.total_used == Decimal("1500.00")
    assert allocation.outstanding_balance == Decimal("2662.00")
    assert allocation.advance_refundable == Decimal("0.00")
    assert allocation.security_refundable == Decimal("0.00")


def test_nothing_owed_refunds_everything():
    allocation = allocate_deposits(0, 0, 3500, 2000, contract_completed=True)

    assert allocation.total_used == Decimal("0.00")
    assert allocation.advance_refundable == Decimal("3500.00")
    assert allocation.security_refundable == Decimal("2000.00")


@pytest.mark.parametrize(
    "args",
    [
        (-1, 0, 0, 0),
        (0, -1, 0, 0),
        (0, 0, -1, 0),
        (0, 0, 0, -1),
    ],
)
def test_negative_inputs_rejected(args):
    with pytest.raises(ValidationError):
        allocate_deposits(*args, contract_completed=True)


def test_allocation_is_deterministic_and_conserves_deposits():
    """Same inputs give the same output; no deposit is used or refunded beyond its balance"""
    values = [Decimal(v) for v in ("0", "1", "662", "1500.50", "3500")]

    for rent, other, advance, security, completed in itertools.product(values, values, values, values, (True, False)):
        first = allocate_deposits(rent, other, advance, security, completed)
        second = allocate_deposits(rent, other, advance, security, completed)
        assert first == second

        assert first.advance_used + first.advance_refundable == advance
        assert first.security_used + first.security_refundable + first.security_forfeited == security
        assert first.advance_used <= rent
        assert first.outstanding_balance >= 0
        assert first.outstanding_balance + first.total_used == rent + other


def test_split_outstanding_counts_payments_against_rent_first():
    # Bill 4162 (rent 3500), 1000 already paid
    assert split_outstanding(Decimal("3500"), Decimal("4162"), Decimal("1000")) == (Decimal("2500.00"), Decimal("662.00"))
    # Rent fully paid, part of the utilities too
    assert split_outstanding(Decimal("3500"), Decimal("4162"), Decimal("3800")) == (Decimal("0.00"), Decimal("362.00"))
    # Penalty lands in the other portion
    assert split_outstanding(Decimal("3500"), Decimal("4204"), Decimal("0")) == (Decimal("3500.00"), Decimal("704.00"))
    # Fully paid
    assert split_outstanding(Decimal("3500"), Decimal("4162"), Decimal("4162")) == (Decimal("0.00"), Decimal("0.00"))
