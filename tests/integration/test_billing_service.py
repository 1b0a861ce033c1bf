"""Integration tests for bill issuing"""

import uuid
import pytest
from datetime import date
from decimal import Decimal
from sqlalchemy.orm import Session
from billing_engine.domain.exceptions import NotFound, ValidationError
from billing_engine.domain.models import BillStatus, PaymentMethod
from billing_engine.infrastructure.database.models import Bill
from billing_engine.infrastructure.database.repositories import SettingsRepository
from billing_engine.services.billing import BillingService
from billing_engine.services.settlement import SettlementService

TODAY = date(2024, 7, 1)


def test_create_bill_uses_room_rent_and_default_rates(db: Session, tenancy):
    snapshot = BillingService(db).create_bill(
        tenancy.tenant_id, tenancy.room_id, date(2024, 6, 1), date(2024, 6, 30), Decimal("142"), today=TODAY
    )

    assert snapshot.status is BillStatus.UNPAID
    assert snapshot.total_amount == Decimal("4162.00")
    assert snapshot.total_paid == Decimal("0.00")

    db_bill = db.query(Bill).filter(Bill.id == snapshot.bill_id).one()
    assert db_bill.rent_amount == Decimal("3500.00")
    assert db_bill.electric_previous_reading == Decimal("100.00")
    assert db_bill.electric_rate == Decimal("11.00")
    assert db_bill.water_amount == Decimal("200.00")
    assert db_bill.bill_date == TODAY


def test_create_bill_reads_rates_from_settings_store(db: Session, tenancy):
    store = SettingsRepository(db)
    store.set_value("electric_rate_per_kwh", "12.5")
    store.set_value("water_fixed_amount", "150")
    store.set_value("penalty_fee_percentage", "not-a-number")
    db.commit()

    snapshot = BillingService(db).create_bill(
        tenancy.tenant_id, tenancy.room_id, date(2024, 6, 1), date(2024, 6, 30), Decimal("142"), today=TODAY
    )

    # 3500 + 42 * 12.5 + 150
    assert snapshot.total_amount == Decimal("4175.00")
    rates = store.get_billing_rates(BillingService(db).config)
    assert rates.penalty_fee_percentage == Decimal("1.0")


def test_previous_reading_carries_over_from_archived_bill(db: Session, tenancy):
    service = BillingService(db)
    june = service.create_bill(tenancy.tenant_id, tenancy.room_id, date(2024, 6, 1), date(2024, 6, 30), Decimal("142"), today=TODAY)
    SettlementService(db).record_payment(june.bill_id, Decimal("4162"), PaymentMethod.CASH, today=date(2024, 7, 2))

    july = service.create_bill(
        tenancy.tenant_id, tenancy.room_id, date(2024, 7, 1), date(2024, 7, 31), Decimal("160"), today=date(2024, 8, 1)
    )

    db_bill = db.query(Bill).filter(Bill.id == july.bill_id).one()
    assert db_bill.electric_previous_reading == Decimal("142.00")
    assert db_bill.electric_consumption == Decimal("18.00")
    # 31 days on a 30-day basis: 3617 rent
    assert db_bill.rent_amount == Decimal("3617.00")


def test_overlapping_period_rejected(db: Session, tenancy):
    service = BillingService(db)
    service.create_bill(tenancy.tenant_id, tenancy.room_id, date(2024, 6, 1), date(2024, 6, 30), Decimal("142"), today=TODAY)

    with pytest.raises(ValidationError):
        service.create_bill(tenancy.tenant_id, tenancy.room_id, date(2024, 6, 15), date(2024, 7, 14), Decimal("150"), today=TODAY)


def test_overlap_with_archived_bill_rejected(db: Session, tenancy):
    service = BillingService(db)
    june = service.create_bill(tenancy.tenant_id, tenancy.room_id, date(2024, 6, 1), date(2024, 6, 30), Decimal("142"), today=TODAY)
    SettlementService(db).record_payment(june.bill_id, Decimal("4162"), PaymentMethod.CASH, today=date(2024, 7, 2))

    with pytest.raises(ValidationError):
        service.create_bill(tenancy.tenant_id, tenancy.room_id, date(2024, 6, 30), date(2024, 7, 29), Decimal("150"), today=TODAY)


@pytest.mark.parametrize(
    "period_start,period_end,meter,extra",
    [
        (date(2024, 6, 30), date(2024, 6, 1), Decimal("142"), Decimal("0")),
        (date(2024, 6, 1), date(2024, 6, 30), Decimal("-1"), Decimal("0")),
        (date(2024, 6, 1), date(2024, 6, 30), Decimal("142"), Decimal("-5")),
    ],
)
def test_invalid_inputs_rejected(db: Session, tenancy, period_start, period_end, meter, extra):
    with pytest.raises(ValidationError):
        BillingService(db).create_bill(tenancy.tenant_id, tenancy.room_id, period_start, period_end, meter, extra_fee=extra, today=TODAY)

    assert db.query(Bill).count() == 0


def test_unknown_tenant_or_room(db: Session, tenancy):
    service = BillingService(db)

    with pytest.raises(NotFound):
        service.create_bill(uuid.uuid4(), tenancy.room_id, date(2024, 6, 1), date(2024, 6, 30), Decimal("142"), today=TODAY)
    with pytest.raises(NotFound):
        service.create_bill(tenancy.tenant_id, uuid.uuid4(), date(2024, 6, 1), date(2024, 6, 30), Decimal("142"), today=TODAY)


def test_tenant_must_occupy_room(db: Session, make_tenancy):
    first = make_tenancy(room_number="101")
    second = make_tenancy(room_number="102", name="Ben Cruz")

    with pytest.raises(ValidationError):
        BillingService(db).create_bill(first.tenant_id, second.room_id, date(2024, 6, 1), date(2024, 6, 30), Decimal("142"), today=TODAY)


def test_zero_total_bill_rejected(db: Session, make_tenancy):
    """Free room, no water, meter unchanged: nothing to charge, so no bill"""
    tenancy = make_tenancy(monthly_rent="0")
    SettingsRepository(db).set_value("water_fixed_amount", "0")
    db.commit()

    with pytest.raises(ValidationError):
        BillingService(db).create_bill(tenancy.tenant_id, tenancy.room_id, date(2024, 6, 1), date(2024, 6, 1), Decimal("100"), today=TODAY)

    assert db.query(Bill).count() == 0
