"""Integration tests for payment settlement and archival"""

import uuid
import pytest
from datetime import date
from decimal import Decimal
from unittest.mock import patch
from sqlalchemy.orm import Session
from billing_engine.domain.exceptions import (
    AmountExceedsBalance,
    BillAlreadySettledError,
    InsufficientDeposit,
    NotFound,
    ValidationError,
)
from billing_engine.domain.models import BillStatus, PaymentMethod
from billing_engine.infrastructure.database.models import (
    Bill,
    BillHistory,
    DepositTransaction,
    Payment,
    PaymentHistory,
    TenantDeposit,
)
from billing_engine.services.billing import BillingService
from billing_engine.services.settlement import SettlementService

ON_TIME = date(2024, 7, 5)
LATE = date(2024, 7, 11)


def issue_june_bill(db: Session, tenancy) -> uuid.UUID:
    """Rent 3500, meter 100 -> 142: total 4162"""
    snapshot = BillingService(db).create_bill(
        tenancy.tenant_id,
        tenancy.room_id,
        period_start=date(2024, 6, 1),
        period_end=date(2024, 6, 30),
        meter_current=Decimal("142"),
        today=date(2024, 7, 1),
    )
    assert snapshot.total_amount == Decimal("4162.00")
    return snapshot.bill_id


def test_on_time_full_payment_archives_bill(db: Session, tenancy):
    bill_id = issue_june_bill(db, tenancy)

    result = SettlementService(db).record_payment(bill_id, Decimal("4162"), PaymentMethod.CASH, actual_payment_date=ON_TIME, today=ON_TIME)

    assert result.archived is True
    assert result.bill.status is BillStatus.PAID
    assert result.penalty_applied is False
    assert result.closure is None

    assert db.query(Bill).filter(Bill.id == bill_id).first() is None
    assert db.query(Payment).filter(Payment.bill_id == bill_id).count() == 0

    history = db.query(BillHistory).filter(BillHistory.original_bill_id == bill_id).all()
    assert len(history) == 1
    assert history[0].total_amount == Decimal("4162.00")
    assert history[0].total_paid == Decimal("4162.00")
    assert history[0].status == "paid"
    assert history[0].archive_reason == "settled"
    assert history[0].actual_payment_date == ON_TIME
    assert history[0].tenant_name == "Ana Reyes"
    assert db.query(PaymentHistory).filter(PaymentHistory.bill_history_id == history[0].id).count() == 1


def test_late_payment_adds_penalty_and_leaves_partial(db: Session, tenancy):
    bill_id = issue_june_bill(db, tenancy)
    service = SettlementService(db)

    result = service.record_payment(bill_id, Decimal("4162"), PaymentMethod.TRANSFER, actual_payment_date=LATE, today=LATE)

    assert result.archived is False
    assert result.penalty_applied is True
    assert result.bill.status is BillStatus.PARTIAL
    assert result.bill.total_amount == Decimal("4204.00")
    assert result.bill.remaining_balance == Decimal("42.00")

    db_bill = db.query(Bill).filter(Bill.id == bill_id).one()
    assert db_bill.penalty_applied is True
    assert db_bill.penalty_amount == Decimal("42.00")
    assert db_bill.status == "partial"

    # Penalty is not applied a second time
    final = service.record_payment(bill_id, Decimal("42"), PaymentMethod.CASH, actual_payment_date=date(2024, 8, 1), today=date(2024, 8, 1))
    assert final.archived is True
    assert final.penalty_applied is False

    history = db.query(BillHistory).filter(BillHistory.original_bill_id == bill_id).one()
    assert history.total_amount == Decimal("4204.00")
    assert history.penalty_amount == Decimal("42.00")
    assert history.total_paid == Decimal("4204.00")
    assert history.actual_payment_date == date(2024, 8, 1)


def test_overpayment_rejected_without_writing(db: Session, tenancy):
    bill_id = issue_june_bill(db, tenancy)

    with pytest.raises(AmountExceedsBalance):
        SettlementService(db).record_payment(bill_id, Decimal("5000"), PaymentMethod.CASH, actual_payment_date=ON_TIME, today=ON_TIME)

    assert db.query(Payment).count() == 0
    assert db.query(Bill).filter(Bill.id == bill_id).one().status == "unpaid"


def test_late_overpayment_does_not_persist_penalty(db: Session, tenancy):
    """A rejected late payment rolls back its penalty as well"""
    bill_id = issue_june_bill(db, tenancy)

    with pytest.raises(AmountExceedsBalance):
        SettlementService(db).record_payment(bill_id, Decimal("9999"), PaymentMethod.CASH, actual_payment_date=LATE, today=LATE)

    db_bill = db.query(Bill).filter(Bill.id == bill_id).one()
    assert db_bill.penalty_applied is False
    assert db_bill.total_amount == Decimal("4162.00")


def test_payment_on_settled_bill_rejected(db: Session, tenancy):
    bill_id = issue_june_bill(db, tenancy)
    service = SettlementService(db)
    service.record_payment(bill_id, Decimal("4162"), PaymentMethod.CASH, actual_payment_date=ON_TIME, today=ON_TIME)

    with pytest.raises(BillAlreadySettledError):
        service.record_payment(bill_id, Decimal("1"), PaymentMethod.CASH, actual_payment_date=ON_TIME, today=ON_TIME)


def test_unknown_bill(db: Session):
    with pytest.raises(NotFound):
        SettlementService(db).record_payment(uuid.uuid4(), Decimal("1"), PaymentMethod.CASH, today=ON_TIME)


def test_backdated_payment_uses_actual_date_for_penalty(db: Session, tenancy):
    """Recorded late, but the money arrived on time: no penalty"""
    bill_id = issue_june_bill(db, tenancy)

    result = SettlementService(db).record_payment(
        bill_id,
        Decimal("4162"),
        PaymentMethod.CHECK,
        payment_date=date(2024, 8, 15),
        actual_payment_date=date(2024, 7, 8),
        today=date(2024, 8, 15),
    )

    assert result.penalty_applied is False
    assert result.archived is True


def test_advance_deposit_payment_draws_deposit(db: Session, make_tenancy):
    tenancy = make_tenancy(advance="3500")
    bill_id = issue_june_bill(db, tenancy)

    result = SettlementService(db).record_payment(bill_id, Decimal("3500"), PaymentMethod.ADVANCE_DEPOSIT, actual_payment_date=ON_TIME, today=ON_TIME)

    assert result.bill.status is BillStatus.PARTIAL
    deposit = db.query(TenantDeposit).filter(TenantDeposit.tenant_id == tenancy.tenant_id).one()
    assert deposit.remaining_balance == Decimal("0.00")
    assert deposit.status == "used"

    transaction = db.query(DepositTransaction).filter(DepositTransaction.deposit_id == deposit.id).one()
    assert transaction.action == "use"
    assert transaction.amount == Decimal("3500.00")
    assert transaction.balance_after == Decimal("0.00")
    assert transaction.bill_id == bill_id


def test_deposit_payment_above_balance_rejected(db: Session, make_tenancy):
    tenancy = make_tenancy(advance="1000")
    bill_id = issue_june_bill(db, tenancy)

    with pytest.raises(InsufficientDeposit):
        SettlementService(db).record_payment(bill_id, Decimal("2000"), PaymentMethod.ADVANCE_DEPOSIT, today=ON_TIME)

    deposit = db.query(TenantDeposit).filter(TenantDeposit.tenant_id == tenancy.tenant_id).one()
    assert deposit.remaining_balance == Decimal("1000.00")
    assert db.query(Payment).count() == 0
    assert db.query(DepositTransaction).count() == 0


def test_missing_deposit_is_not_found(db: Session, tenancy):
    bill_id = issue_june_bill(db, tenancy)

    with pytest.raises(NotFound):
        SettlementService(db).record_payment(bill_id, Decimal("100"), PaymentMethod.ADVANCE_DEPOSIT, today=ON_TIME)


def test_security_deposit_requires_completed_contract(db: Session, make_tenancy):
    tenancy = make_tenancy(security="2000", contract_end=date(2024, 12, 31))
    bill_id = issue_june_bill(db, tenancy)
    service = SettlementService(db)

    with pytest.raises(ValidationError):
        service.record_payment(bill_id, Decimal("662"), PaymentMethod.SECURITY_DEPOSIT, actual_payment_date=ON_TIME, today=ON_TIME)

    result = service.record_payment(
        bill_id,
        Decimal("662"),
        PaymentMethod.SECURITY_DEPOSIT,
        actual_payment_date=ON_TIME,
        today=date(2025, 1, 2),
    )
    assert result.bill.status is BillStatus.PARTIAL


@patch("billing_engine.infrastructure.database.repositories.HistoryRepository.archive_payment")
def test_archival_failure_rolls_back_everything(mock_archive_payment, db: Session, tenancy):
    """A failure while copying payments leaves no partial state"""
    mock_archive_payment.side_effect = RuntimeError("disk full")
    bill_id = issue_june_bill(db, tenancy)

    with pytest.raises(RuntimeError):
        SettlementService(db).record_payment(bill_id, Decimal("4162"), PaymentMethod.CASH, actual_payment_date=ON_TIME, today=ON_TIME)

    db_bill = db.query(Bill).filter(Bill.id == bill_id).one()
    assert db_bill.status == "unpaid"
    assert db.query(Payment).count() == 0
    assert db.query(BillHistory).count() == 0
    assert db.query(PaymentHistory).count() == 0


@patch("billing_engine.infrastructure.database.repositories.BillRepository.delete")
def test_delete_failure_rolls_back_history(mock_delete, db: Session, tenancy):
    mock_delete.side_effect = RuntimeError("connection lost")
    bill_id = issue_june_bill(db, tenancy)

    with pytest.raises(RuntimeError):
        SettlementService(db).record_payment(bill_id, Decimal("4162"), PaymentMethod.CASH, actual_payment_date=ON_TIME, today=ON_TIME)

    assert db.query(Bill).filter(Bill.id == bill_id).count() == 1
    assert db.query(BillHistory).count() == 0
    assert db.query(Payment).count() == 0


def test_pay_with_deposits_completed_contract(db: Session, make_tenancy):
    """Advance covers rent, security the 662 of utilities; bill archived"""
    tenancy = make_tenancy(advance="3500", security="2000", contract_end=date(2024, 6, 30))
    bill_id = issue_june_bill(db, tenancy)

    result = SettlementService(db).pay_with_deposits(bill_id, today=ON_TIME)

    assert result.advance_used == Decimal("3500.00")
    assert result.security_used == Decimal("662.00")
    assert result.outstanding_balance == Decimal("0.00")
    assert result.archived is True
    assert result.penalty_applied is False
    assert result.closure is None
    assert [s.payment.method for s in result.settlements] == [PaymentMethod.ADVANCE_DEPOSIT, PaymentMethod.SECURITY_DEPOSIT]

    history = db.query(BillHistory).filter(BillHistory.original_bill_id == bill_id).one()
    assert history.total_paid == Decimal("4162.00")
    security = db.query(TenantDeposit).filter(TenantDeposit.tenant_id == tenancy.tenant_id, TenantDeposit.kind == "security").one()
    assert security.remaining_balance == Decimal("1338.00")
    assert security.status == "active"


def test_pay_with_deposits_early_termination_skips_security(db: Session, make_tenancy):
    tenancy = make_tenancy(advance="3500", security="2000", contract_end=date(2024, 12, 31))
    bill_id = issue_june_bill(db, tenancy)

    result = SettlementService(db).pay_with_deposits(bill_id, today=ON_TIME)

    assert result.advance_used == Decimal("3500.00")
    assert result.security_used == Decimal("0.00")
    assert result.outstanding_balance == Decimal("662.00")
    assert result.archived is False
    assert result.bill.status is BillStatus.PARTIAL
    assert len(result.settlements) == 1

    security = db.query(TenantDeposit).filter(TenantDeposit.tenant_id == tenancy.tenant_id, TenantDeposit.kind == "security").one()
    assert security.remaining_balance == Decimal("2000.00")
    assert db.query(DepositTransaction).filter(DepositTransaction.kind == "security").count() == 0


def test_pay_with_deposits_assesses_penalty_first(db: Session, make_tenancy):
    """Late by one day: penalty 42 is funded by security along with utilities"""
    tenancy = make_tenancy(advance="3500", security="2000", contract_end=date(2024, 6, 30))
    bill_id = issue_june_bill(db, tenancy)

    result = SettlementService(db).pay_with_deposits(bill_id, today=LATE)

    assert result.penalty_applied is True
    assert result.settlements[0].penalty_applied is True
    assert result.security_used == Decimal("704.00")
    assert result.archived is True

    history = db.query(BillHistory).filter(BillHistory.original_bill_id == bill_id).one()
    assert history.total_amount == Decimal("4204.00")
    assert history.penalty_amount == Decimal("42.00")


def test_pay_with_deposits_without_balance_rejected(db: Session, tenancy):
    """Nothing usable: rejected, and the late penalty is not kept"""
    bill_id = issue_june_bill(db, tenancy)

    with pytest.raises(ValidationError):
        SettlementService(db).pay_with_deposits(bill_id, today=LATE)

    db_bill = db.query(Bill).filter(Bill.id == bill_id).one()
    assert db_bill.penalty_applied is False
    assert db_bill.total_amount == Decimal("4162.00")
    assert db.query(Payment).count() == 0


def test_pay_with_deposits_on_settled_or_unknown_bill(db: Session, make_tenancy):
    tenancy = make_tenancy(advance="5000")
    bill_id = issue_june_bill(db, tenancy)
    service = SettlementService(db)
    service.record_payment(bill_id, Decimal("4162"), PaymentMethod.CASH, actual_payment_date=ON_TIME, today=ON_TIME)

    with pytest.raises(BillAlreadySettledError):
        service.pay_with_deposits(bill_id, today=ON_TIME)
    with pytest.raises(NotFound):
        service.pay_with_deposits(uuid.uuid4(), today=ON_TIME)
