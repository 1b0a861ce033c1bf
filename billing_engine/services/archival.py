"""Archival - moves settled bills and departed tenants into history"""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from billing_engine.domain.exceptions import ArchivalInvariantViolation
from billing_engine.domain.models import (
    ArchiveReason,
    BillState,
    BillStatus,
    DepositAction,
    DepositKind,
    DepositStatus,
    PaymentMethod,
    PaymentRequest,
    PenaltyPolicy,
    TenancyClosure,
)
from billing_engine.domain.state_machine import apply_payment
from billing_engine.infrastructure.database.models import Bill, BillHistory, Tenant
from billing_engine.infrastructure.database.repositories import (
    BillRepository,
    DepositRepository,
    HistoryRepository,
    PaymentRepository,
    RoomRepository,
    TenantRepository,
)
from billing_engine.utils.date_utils import is_contract_completed
from billing_engine.utils.money import ZERO, money_sum

logger = logging.getLogger(__name__)

REFUND_NOTE = "Deposit refund"


def archive_reason_for(bill: Bill) -> ArchiveReason:
    if bill.is_refund_bill:
        return ArchiveReason.REFUND_COMPLETED
    if bill.is_final_bill:
        return ArchiveReason.FINAL_SETTLED
    return ArchiveReason.SETTLED


def tenancy_contract_completed(tenant: Tenant, today: date) -> bool:
    """Termination mode recorded at departure, else judged from the contract end date"""
    if tenant.departure_contract_completed is not None:
        return tenant.departure_contract_completed
    return is_contract_completed(tenant.contract_end_date, today)


class Archiver:
    """
    Copies records into write-once history and removes the active rows.

    Runs inside the caller's transaction; nothing here commits.
    """

    def __init__(self, db: Session):
        self.db = db
        self.bills = BillRepository(db)
        self.payments = PaymentRepository(db)
        self.deposits = DepositRepository(db)
        self.history = HistoryRepository(db)
        self.rooms = RoomRepository(db)
        self.tenants = TenantRepository(db)

    def archive_bill(self, bill: Bill, reason: Optional[ArchiveReason] = None) -> BillHistory:
        """
        Move a paid bill and its payments into history.

        Flow:
        1. Copy the bill (resolved total, final status, latest actual payment date)
        2. Copy each payment, linked to the new history row
        3. Delete the payments, then the bill

        Raises:
            ArchivalInvariantViolation: bill is not paid
        """
        if bill.status != BillStatus.PAID.value:
            raise ArchivalInvariantViolation(f"Bill {bill.id} is {bill.status}; only paid bills are archived")

        reason = reason or archive_reason_for(bill)
        payments = self.payments.list_for_bill(bill.id)
        latest_payment_date = max((p.actual_payment_date for p in payments), default=None)

        db_history = self.history.archive_bill(
            bill,
            total_paid=money_sum(p.amount for p in payments),
            actual_payment_date=latest_payment_date,
            reason=reason,
            tenant_name=bill.tenant.name if bill.tenant else None,
            room_number=bill.room.room_number if bill.room else None,
        )
        for payment in payments:
            self.history.archive_payment(payment, db_history.id)

        self.payments.delete_for_bill(bill.id)
        self.bills.delete(bill)

        return db_history

    def close_tenancy(
        self,
        tenant: Tenant,
        today: date,
        contract_completed: bool,
        final_reading: Optional[Decimal] = None,
    ) -> TenancyClosure:
        """
        Archive a tenant that owes nothing.

        Leftover advance is refunded. Leftover security is refunded when the
        contract completed and forfeited otherwise. A refund bill records the
        disbursement, then the tenant moves to history and the room is freed.

        Raises:
            ArchivalInvariantViolation: tenant still has an active bill
        """
        active_bills = self.bills.count_active_for_tenant(tenant.id)
        if active_bills:
            raise ArchivalInvariantViolation(f"Tenant {tenant.id} still has {active_bills} active bill(s)")

        advance_refund = ZERO
        security_refund = ZERO
        security_forfeited = ZERO

        for deposit in self.deposits.list_for_tenant(tenant.id, for_update=True):
            if deposit.status != DepositStatus.ACTIVE.value or deposit.remaining_balance <= 0:
                continue

            amount = deposit.remaining_balance
            kind = DepositKind(deposit.kind)
            deposit.remaining_balance = ZERO

            if kind is DepositKind.ADVANCE or contract_completed:
                deposit.status = DepositStatus.REFUNDED.value
                action = DepositAction.REFUND
                if kind is DepositKind.ADVANCE:
                    advance_refund += amount
                else:
                    security_refund += amount
            else:
                deposit.status = DepositStatus.ARCHIVED.value
                action = DepositAction.FORFEIT
                security_forfeited += amount

            self.deposits.record_transaction(
                deposit,
                action,
                amount,
                today,
                description=f"{kind.value.capitalize()} deposit {action.value} at move-out",
            )

        refund_bill_id = None
        total_refund = advance_refund + security_refund
        if total_refund > 0:
            refund_bill_id = self._issue_refund_bill(tenant, total_refund, today)

        if final_reading is None:
            last = self.bills.last_billed(tenant.id)
            final_reading = last[1] if last else tenant.initial_electric_reading

        self.history.archive_tenant(
            tenant,
            rent_end=today,
            contract_completed=contract_completed,
            move_out_date=today,
            reason_for_leaving=tenant.departure_reason,
            final_electric_reading=final_reading,
            advance_refund=advance_refund,
            security_refund=security_refund,
            security_forfeited=security_forfeited,
            forced=bool(tenant.departure_forced),
        )

        if tenant.room_id is not None:
            room = self.rooms.get(tenant.room_id, for_update=True)
            if room is not None and room.tenant_id in (None, tenant.id):
                self.rooms.release(room)

        tenant_id = tenant.id
        self.tenants.delete(tenant)
        logger.info("Tenant archived", extra={"tenant_id": str(tenant_id), "refund": str(total_refund)})

        return TenancyClosure(
            tenant_id=tenant_id,
            contract_completed=contract_completed,
            advance_refund=advance_refund,
            security_refund=security_refund,
            security_forfeited=security_forfeited,
            refund_bill_id=refund_bill_id,
        )

    def _issue_refund_bill(self, tenant: Tenant, refund: Decimal, today: date):
        """Issue a negative-total bill and settle it at once so the refund lands in history"""
        db_bill = self.bills.create_refund_bill(tenant.id, tenant.room_id, refund, today, notes=REFUND_NOTE)
        state = BillState(period_end=db_bill.period_end, total_amount=db_bill.total_amount)
        decision = apply_payment(state, [], PaymentRequest(amount=-refund, actual_date=today), PenaltyPolicy())

        self.payments.create(
            db_bill.id,
            -refund,
            PaymentMethod.OTHER,
            payment_date=today,
            actual_payment_date=today,
            notes=REFUND_NOTE,
        )
        db_bill.status = decision.new_status.value
        self.db.flush()

        bill_id = db_bill.id
        self.archive_bill(db_bill, ArchiveReason.REFUND_COMPLETED)
        return bill_id

