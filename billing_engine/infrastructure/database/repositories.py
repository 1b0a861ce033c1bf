"""Data access layer for tenancies, bills, payments, deposits and history"""

import uuid
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from billing_engine.domain.models import (
    ArchiveReason,
    BillCharges,
    BillingRates,
    BillStatus,
    DepositAction,
    DepositKind,
    DepositStatus,
    PaymentMethod,
    RoomStatus,
)
from billing_engine.infrastructure.database.models import (
    Bill,
    BillHistory,
    DepositTransaction,
    Payment,
    PaymentHistory,
    Room,
    Setting,
    Tenant,
    TenantDeposit,
    TenantHistory,
)

OUTSTANDING_STATUSES = (BillStatus.UNPAID.value, BillStatus.PARTIAL.value)


class TenantRepository:
    """Repository for active tenants"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, tenant_id: uuid.UUID, for_update: bool = False) -> Optional[Tenant]:
        query = self.db.query(Tenant).filter(Tenant.id == tenant_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def delete(self, tenant: Tenant) -> None:
        self.db.delete(tenant)
        self.db.flush()


class RoomRepository:
    """Repository for rooms"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, room_id: uuid.UUID, for_update: bool = False) -> Optional[Room]:
        query = self.db.query(Room).filter(Room.id == room_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def release(self, room: Room) -> None:
        """Mark room vacant and clear its tenant reference"""
        room.status = RoomStatus.VACANT.value
        room.tenant_id = None
        self.db.flush()


class BillRepository:
    """Repository for active bills"""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        tenant_id: uuid.UUID,
        room_id: uuid.UUID,
        charges: BillCharges,
        bill_date: date,
        is_final_bill: bool = False,
        contract_completed: Optional[bool] = None,
        notes: Optional[str] = None,
    ) -> Bill:
        """Persist a new unpaid bill from calculated charges"""
        db_bill = Bill(
            tenant_id=tenant_id,
            room_id=room_id,
            bill_date=bill_date,
            period_start=charges.period_start,
            period_end=charges.period_end,
            rent_amount=charges.rent_amount,
            electric_previous_reading=charges.electric_previous_reading,
            electric_current_reading=charges.electric_current_reading,
            electric_consumption=charges.electric_consumption,
            electric_rate=charges.electric_rate,
            electric_amount=charges.electric_amount,
            water_amount=charges.water_amount,
            extra_fee_amount=charges.extra_fee_amount,
            extra_fee_description=charges.extra_fee_description,
            penalty_amount=Decimal("0.00"),
            penalty_applied=False,
            total_amount=charges.total_amount,
            status=BillStatus.UNPAID.value,
            is_final_bill=is_final_bill,
            is_refund_bill=False,
            contract_completed=contract_completed,
            notes=notes,
        )
        self.db.add(db_bill)
        self.db.flush()  # Get ID without committing
        return db_bill

    def create_refund_bill(
        self,
        tenant_id: uuid.UUID,
        room_id: uuid.UUID,
        refund_amount: Decimal,
        bill_date: date,
        notes: Optional[str] = None,
    ) -> Bill:
        """Persist a negative-total bill that records a deposit refund"""
        db_bill = Bill(
            tenant_id=tenant_id,
            room_id=room_id,
            bill_date=bill_date,
            period_start=bill_date,
            period_end=bill_date,
            total_amount=-abs(refund_amount),
            penalty_amount=Decimal("0.00"),
            penalty_applied=False,
            status=BillStatus.UNPAID.value,
            is_final_bill=False,
            is_refund_bill=True,
            contract_completed=None,
            notes=notes,
        )
        self.db.add(db_bill)
        self.db.flush()
        return db_bill

    def get(self, bill_id: uuid.UUID, for_update: bool = False) -> Optional[Bill]:
        query = self.db.query(Bill).filter(Bill.id == bill_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def tenant_id_for(self, bill_id: uuid.UUID) -> Optional[uuid.UUID]:
        """Owner of a bill, read without loading or locking the row"""
        row = self.db.query(Bill.tenant_id).filter(Bill.id == bill_id).first()
        return row[0] if row else None

    def list_outstanding_for_tenant(self, tenant_id: uuid.UUID, for_update: bool = False) -> List[Bill]:
        """Unpaid and partial bills, oldest period first"""
        query = (
            self.db.query(Bill)
            .filter(Bill.tenant_id == tenant_id, Bill.status.in_(OUTSTANDING_STATUSES))
            .order_by(Bill.period_start.asc())
        )
        if for_update:
            query = query.with_for_update()
        return query.all()

    def count_active_for_tenant(self, tenant_id: uuid.UUID) -> int:
        """Bills of any status still in active storage"""
        return self.db.query(func.count(Bill.id)).filter(Bill.tenant_id == tenant_id).scalar() or 0

    def find_overlapping(self, tenant_id: uuid.UUID, period_start: date, period_end: date) -> Optional[uuid.UUID]:
        """Id of an active or archived bill whose period overlaps the given one"""
        active = (
            self.db.query(Bill.id)
            .filter(
                Bill.tenant_id == tenant_id,
                Bill.is_refund_bill.is_(False),
                Bill.period_start <= period_end,
                Bill.period_end >= period_start,
            )
            .first()
        )
        if active:
            return active[0]

        archived = (
            self.db.query(BillHistory.original_bill_id)
            .filter(
                BillHistory.original_tenant_id == tenant_id,
                BillHistory.is_refund_bill.is_(False),
                BillHistory.period_start <= period_end,
                BillHistory.period_end >= period_start,
            )
            .first()
        )
        return archived[0] if archived else None

    def last_billed(self, tenant_id: uuid.UUID) -> Optional[tuple[date, Decimal]]:
        """(period_end, meter reading) of the latest bill, active or archived"""
        active = (
            self.db.query(Bill.period_end, Bill.electric_current_reading)
            .filter(Bill.tenant_id == tenant_id, Bill.is_refund_bill.is_(False))
            .order_by(Bill.period_end.desc())
            .first()
        )
        archived = (
            self.db.query(BillHistory.period_end, BillHistory.electric_current_reading)
            .filter(BillHistory.original_tenant_id == tenant_id, BillHistory.is_refund_bill.is_(False))
            .order_by(BillHistory.period_end.desc())
            .first()
        )
        candidates = [row for row in (active, archived) if row is not None]
        if not candidates:
            return None
        period_end, reading = max(candidates, key=lambda row: row[0])
        return period_end, reading

    def delete(self, bill: Bill) -> None:
        self.db.delete(bill)
        self.db.flush()


class PaymentRepository:
    """Repository for payments on active bills"""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        bill_id: uuid.UUID,
        amount: Decimal,
        method: PaymentMethod,
        payment_date: date,
        actual_payment_date: date,
        notes: Optional[str] = None,
    ) -> Payment:
        db_payment = Payment(
            bill_id=bill_id,
            amount=amount,
            method=method.value,
            payment_date=payment_date,
            actual_payment_date=actual_payment_date,
            notes=notes,
        )
        self.db.add(db_payment)
        self.db.flush()
        return db_payment

    def list_for_bill(self, bill_id: uuid.UUID) -> List[Payment]:
        return (
            self.db.query(Payment)
            .filter(Payment.bill_id == bill_id)
            .order_by(Payment.actual_payment_date.asc(), Payment.created_at.asc())
            .all()
        )

    def delete_for_bill(self, bill_id: uuid.UUID) -> int:
        payments = self.list_for_bill(bill_id)
        for payment in payments:
            self.db.delete(payment)
        self.db.flush()
        return len(payments)


class DepositRepository:
    """Repository for tenant deposits and their audit trail"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, tenant_id: uuid.UUID, kind: DepositKind, for_update: bool = False) -> Optional[TenantDeposit]:
        """Most recent deposit of a kind for the tenant"""
        query = (
            self.db.query(TenantDeposit)
            .filter(TenantDeposit.tenant_id == tenant_id, TenantDeposit.kind == kind.value)
            .order_by(TenantDeposit.created_at.desc())
        )
        if for_update:
            query = query.with_for_update()
        return query.first()

    def list_for_tenant(self, tenant_id: uuid.UUID, for_update: bool = False) -> List[TenantDeposit]:
        query = self.db.query(TenantDeposit).filter(TenantDeposit.tenant_id == tenant_id)
        if for_update:
            query = query.with_for_update()
        return query.all()

    def create(self, tenant_id: uuid.UUID, kind: DepositKind, amount: Decimal, status: DepositStatus) -> TenantDeposit:
        db_deposit = TenantDeposit(
            tenant_id=tenant_id,
            kind=kind.value,
            initial_amount=amount,
            remaining_balance=amount,
            status=status.value,
        )
        self.db.add(db_deposit)
        self.db.flush()
        return db_deposit

    def record_transaction(
        self,
        deposit: TenantDeposit,
        action: DepositAction,
        amount: Decimal,
        transaction_date: date,
        bill_id: Optional[uuid.UUID] = None,
        description: Optional[str] = None,
    ) -> DepositTransaction:
        """Append an audit entry; balance_after is read from the deposit as it stands now"""
        db_transaction = DepositTransaction(
            deposit_id=deposit.id,
            tenant_id=deposit.tenant_id,
            bill_id=bill_id,
            kind=deposit.kind,
            action=action.value,
            amount=amount,
            balance_after=deposit.remaining_balance,
            description=description,
            transaction_date=transaction_date,
        )
        self.db.add(db_transaction)
        self.db.flush()
        return db_transaction


class HistoryRepository:
    """Write-once historical storage"""

    def __init__(self, db: Session):
        self.db = db

    def archive_bill(
        self,
        bill: Bill,
        total_paid: Decimal,
        actual_payment_date: Optional[date],
        reason: ArchiveReason,
        tenant_name: Optional[str] = None,
        room_number: Optional[str] = None,
    ) -> BillHistory:
        """Copy an active bill, with its resolved total and status, into bill_history"""
        db_history = BillHistory(
            original_bill_id=bill.id,
            original_tenant_id=bill.tenant_id,
            room_id=bill.room_id,
            tenant_name=tenant_name,
            room_number=room_number,
            bill_date=bill.bill_date,
            period_start=bill.period_start,
            period_end=bill.period_end,
            rent_amount=bill.rent_amount,
            electric_previous_reading=bill.electric_previous_reading,
            electric_current_reading=bill.electric_current_reading,
            electric_consumption=bill.electric_consumption,
            electric_rate=bill.electric_rate,
            electric_amount=bill.electric_amount,
            water_amount=bill.water_amount,
            extra_fee_amount=bill.extra_fee_amount,
            extra_fee_description=bill.extra_fee_description,
            penalty_amount=bill.penalty_amount,
            penalty_applied=bill.penalty_applied,
            total_amount=bill.total_amount,
            total_paid=total_paid,
            status=bill.status,
            is_final_bill=bill.is_final_bill,
            is_refund_bill=bill.is_refund_bill,
            actual_payment_date=actual_payment_date,
            archive_reason=reason.value,
        )
        self.db.add(db_history)
        self.db.flush()
        return db_history

    def archive_payment(self, payment: Payment, bill_history_id: uuid.UUID) -> PaymentHistory:
        db_history = PaymentHistory(
            bill_history_id=bill_history_id,
            original_payment_id=payment.id,
            original_bill_id=payment.bill_id,
            amount=payment.amount,
            payment_date=payment.payment_date,
            actual_payment_date=payment.actual_payment_date,
            method=payment.method,
            notes=payment.notes,
        )
        self.db.add(db_history)
        self.db.flush()
        return db_history

    def archive_tenant(self, tenant: Tenant, **snapshot) -> TenantHistory:
        """Copy a tenant into tenant_history; snapshot carries the move-out outcome"""
        db_history = TenantHistory(
            original_tenant_id=tenant.id,
            name=tenant.name,
            email=tenant.email,
            room_id=tenant.room_id,
            room_number=tenant.room.room_number if tenant.room else None,
            rent_start=tenant.rent_start,
            contract_start_date=tenant.contract_start_date,
            contract_end_date=tenant.contract_end_date,
            **snapshot,
        )
        self.db.add(db_history)
        self.db.flush()
        return db_history

    def get_bill(self, original_bill_id: uuid.UUID) -> Optional[BillHistory]:
        return self.db.query(BillHistory).filter(BillHistory.original_bill_id == original_bill_id).first()

    def list_bills_for_tenant(self, tenant_id: uuid.UUID, limit: int = 20) -> List[BillHistory]:
        """Fetch recent archived bills for a tenant"""
        return (
            self.db.query(BillHistory)
            .filter(BillHistory.original_tenant_id == tenant_id)
            .order_by(BillHistory.period_end.desc())
            .limit(limit)
            .all()
        )


class SettingsRepository:
    """Reads the key/value settings store"""

    def __init__(self, db: Session):
        self.db = db

    def get_value(self, key: str) -> Optional[str]:
        row = self.db.query(Setting).filter(Setting.setting_key == key).first()
        return row.setting_value if row else None

    def set_value(self, key: str, value: str, description: Optional[str] = None) -> Setting:
        row = self.db.query(Setting).filter(Setting.setting_key == key).first()
        if row is None:
            row = Setting(setting_key=key, setting_value=value, description=description)
            self.db.add(row)
        else:
            row.setting_value = value
        self.db.flush()
        return row

    def get_billing_rates(self, defaults) -> BillingRates:
        """Rates from the store, falling back to configured defaults for missing or bad values"""
        return BillingRates(
            electric_rate_per_kwh=self._decimal("electric_rate_per_kwh", defaults.electric_rate_per_kwh),
            water_fixed_amount=self._decimal("water_fixed_amount", defaults.water_fixed_amount),
            penalty_fee_percentage=self._decimal("penalty_fee_percentage", defaults.penalty_fee_percentage),
            payment_grace_days=int(self._decimal("payment_grace_days", defaults.payment_grace_days)),
        )

    def _decimal(self, key: str, default) -> Decimal:
        raw = self.get_value(key)
        if raw is not None:
            try:
                return Decimal(raw.strip())
            except InvalidOperation:
                pass
        return Decimal(str(default))
