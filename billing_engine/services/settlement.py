"""Settlement - applies payments to bills inside one transaction"""

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from billing_engine.config import Settings, settings
from billing_engine.domain.allocation import allocate_deposits, split_outstanding
from billing_engine.domain.exceptions import (
    BillAlreadySettledError,
    InsufficientDeposit,
    NotFound,
    ValidationError,
)
from billing_engine.domain.models import (
    BillSnapshot,
    BillState,
    BillStatus,
    DepositAction,
    DepositKind,
    DepositPaymentResult,
    DepositStatus,
    PaymentMethod,
    PaymentRecord,
    PaymentRequest,
    PenaltyPolicy,
    SettlementResult,
    TenantStatus,
)
from billing_engine.domain.state_machine import apply_payment, assess_penalty
from billing_engine.infrastructure.database.models import Bill, Payment, Tenant
from billing_engine.infrastructure.database.repositories import (
    BillRepository,
    DepositRepository,
    HistoryRepository,
    PaymentRepository,
    SettingsRepository,
    TenantRepository,
)
from billing_engine.infrastructure.database.session import atomic
from billing_engine.infrastructure.observability.logging import log_settlement
from billing_engine.infrastructure.observability.metrics import (
    record_bill_created,
    record_deposit_movement,
    record_payment,
    record_settlement,
)
from billing_engine.services.archival import Archiver, archive_reason_for, tenancy_contract_completed
from billing_engine.utils.money import ZERO, Number, money_sum, to_money

logger = logging.getLogger(__name__)


def bill_state(bill: Bill) -> BillState:
    return BillState(
        period_end=bill.period_end,
        total_amount=bill.total_amount,
        status=BillStatus(bill.status),
        penalty_applied=bill.penalty_applied,
        penalty_amount=bill.penalty_amount,
    )


def bill_snapshot(bill: Bill, total_paid: Decimal) -> BillSnapshot:
    return BillSnapshot(
        bill_id=bill.id,
        tenant_id=bill.tenant_id,
        room_id=bill.room_id,
        period_start=bill.period_start,
        period_end=bill.period_end,
        total_amount=bill.total_amount,
        penalty_amount=bill.penalty_amount,
        penalty_applied=bill.penalty_applied,
        status=BillStatus(bill.status),
        total_paid=total_paid,
        is_final_bill=bill.is_final_bill,
        is_refund_bill=bill.is_refund_bill,
    )


def payment_record(payment: Payment) -> PaymentRecord:
    return PaymentRecord(
        payment_id=payment.id,
        bill_id=payment.bill_id,
        amount=payment.amount,
        method=PaymentMethod(payment.method),
        payment_date=payment.payment_date,
        actual_payment_date=payment.actual_payment_date,
        notes=payment.notes,
    )


def observe_settlement(result: SettlementResult, request_id: Optional[str] = None) -> None:
    """Metrics and structured log for a committed payment"""
    method = result.payment.method
    record_payment(method.value, result.penalty_applied)
    if method.deposit_kind is not None:
        record_deposit_movement(method.deposit_kind.value, DepositAction.USE.value, result.payment.amount)
    if result.archived:
        if result.bill.is_refund_bill:
            record_settlement("refund_completed")
        elif result.bill.is_final_bill:
            record_settlement("final_settled")
        else:
            record_settlement("settled")
    if result.closure is not None:
        observe_closure(result.closure)

    log_settlement(
        bill_id=str(result.bill.bill_id),
        tenant_id=str(result.bill.tenant_id),
        method=method.value,
        amount=str(result.payment.amount),
        status=result.bill.status.value,
        archived=result.archived,
        penalty_applied=result.penalty_applied,
        request_id=request_id,
    )


def observe_closure(closure) -> None:
    if closure.advance_refund > 0:
        record_deposit_movement(DepositKind.ADVANCE.value, DepositAction.REFUND.value, closure.advance_refund)
    if closure.security_refund > 0:
        record_deposit_movement(DepositKind.SECURITY.value, DepositAction.REFUND.value, closure.security_refund)
    if closure.security_forfeited > 0:
        record_deposit_movement(DepositKind.SECURITY.value, DepositAction.FORFEIT.value, closure.security_forfeited)
    if closure.refund_bill_id is not None:
        record_bill_created(is_refund=True)
        record_settlement("refund_completed")


class SettlementService:
    """Records payments, archiving bills that become paid"""

    def __init__(self, db: Session, config: Settings = settings):
        self.db = db
        self.config = config
        self.bills = BillRepository(db)
        self.payments = PaymentRepository(db)
        self.deposits = DepositRepository(db)
        self.tenants = TenantRepository(db)
        self.history = HistoryRepository(db)
        self.settings_store = SettingsRepository(db)
        self.archiver = Archiver(db)

    def penalty_policy(self) -> PenaltyPolicy:
        rates = self.settings_store.get_billing_rates(self.config)
        return PenaltyPolicy(grace_days=rates.payment_grace_days, percentage=rates.penalty_fee_percentage)

    def record_payment(
        self,
        bill_id: uuid.UUID,
        amount: Number,
        method: PaymentMethod,
        payment_date: Optional[date] = None,
        actual_payment_date: Optional[date] = None,
        notes: Optional[str] = None,
        today: Optional[date] = None,
        request_id: Optional[str] = None,
    ) -> SettlementResult:
        """
        Apply one payment to a bill in a single transaction.

        Flow:
        1. Lock the tenant, then the bill
        2. Run the state machine (penalty, balance check, new status)
        3. Draw from a deposit when the method is deposit-funded
        4. Insert the payment and update the bill
        5. If paid: archive the bill, and close the tenancy when it was the
           last bill of a departing tenant

        Raises:
            NotFound: bill does not exist
            BillAlreadySettledError: bill was already paid and archived
            ValidationError, InsufficientDeposit: payment rejected
            TransactionConflict: concurrent update, safe to retry
        """
        today = today or date.today()
        payment_date = payment_date or today
        actual_payment_date = actual_payment_date or payment_date
        method = PaymentMethod(method)

        with atomic(self.db):
            tenant, bill = self._lock_bill(bill_id)
            result = self.post_payment(
                bill,
                tenant,
                amount,
                method,
                payment_date=payment_date,
                actual_payment_date=actual_payment_date,
                notes=notes,
                today=today,
            )

        observe_settlement(result, request_id)
        return result

    def pay_with_deposits(
        self,
        bill_id: uuid.UUID,
        today: Optional[date] = None,
        request_id: Optional[str] = None,
    ) -> DepositPaymentResult:
        """
        Pay as much of a bill as the tenant's deposits allow, in one transaction.

        The late penalty is assessed as of today first, then the allocator
        splits what is owed: advance towards rent, security towards the
        other charges and any rent shortfall once the contract is completed.
        Each deposit used becomes its own payment.

        Raises:
            NotFound: bill does not exist
            BillAlreadySettledError: bill was already paid and archived
            ValidationError: refund bill, or no eligible deposit balance
            TransactionConflict: concurrent update, safe to retry
        """
        today = today or date.today()

        with atomic(self.db):
            tenant, bill = self._lock_bill(bill_id)
            if bill.is_refund_bill:
                raise ValidationError("Refund bills cannot be paid from deposits")
            if tenant is None:
                raise NotFound(f"Tenant {bill.tenant_id} not found")

            penalty_applied = self.apply_late_penalty(bill, today)
            total_paid = money_sum(p.amount for p in self.payments.list_for_bill(bill.id))
            rent_outstanding, other_outstanding = split_outstanding(bill.rent_amount, bill.total_amount, total_paid)

            balances = {}
            for kind in DepositKind:
                deposit = self.deposits.get(tenant.id, kind, for_update=True)
                active = deposit is not None and deposit.status == DepositStatus.ACTIVE.value
                balances[kind] = deposit.remaining_balance if active else ZERO

            allocation = allocate_deposits(
                rent_outstanding,
                other_outstanding,
                balances[DepositKind.ADVANCE],
                balances[DepositKind.SECURITY],
                tenancy_contract_completed(tenant, today),
            )
            if allocation.total_used <= 0:
                raise ValidationError(f"Tenant {tenant.id} has no deposit balance usable for bill {bill_id}")

            settlements: List[SettlementResult] = []
            for kind, used in (
                (DepositKind.ADVANCE, allocation.advance_used),
                (DepositKind.SECURITY, allocation.security_used),
            ):
                if used <= 0:
                    continue
                settlements.append(
                    self.post_payment(
                        bill,
                        tenant,
                        used,
                        kind.payment_method,
                        payment_date=today,
                        actual_payment_date=today,
                        notes=f"Paid from {kind.value} deposit",
                        today=today,
                        check_contract=False,
                    )
                )

        if penalty_applied:
            settlements[0].penalty_applied = True
        for settlement in settlements:
            observe_settlement(settlement, request_id)

        return DepositPaymentResult(
            bill=settlements[-1].bill,
            advance_used=allocation.advance_used,
            security_used=allocation.security_used,
            outstanding_balance=allocation.outstanding_balance,
            penalty_applied=penalty_applied,
            settlements=settlements,
        )

    def apply_late_penalty(self, bill: Bill, today: date) -> bool:
        """Add the late penalty to a locked bill as of today; True if it was added now"""
        assessment = assess_penalty(bill_state(bill), today, self.penalty_policy())
        if not assessment.applied:
            return False

        bill.penalty_applied = True
        bill.penalty_amount = assessment.penalty_amount
        bill.total_amount = assessment.total_amount
        self.db.flush()
        logger.info(
            "Late penalty applied",
            extra={"bill_id": str(bill.id), "penalty_amount": str(assessment.penalty_amount)},
        )
        return True

    def _lock_bill(self, bill_id: uuid.UUID) -> Tuple[Optional[Tenant], Bill]:
        """Lock the bill's tenant, then the bill itself"""
        tenant_id = self.bills.tenant_id_for(bill_id)
        if tenant_id is None:
            if self.history.get_bill(bill_id) is not None:
                raise BillAlreadySettledError(f"Bill {bill_id} is already paid")
            raise NotFound(f"Bill {bill_id} not found")

        tenant = self.tenants.get(tenant_id, for_update=True)
        bill = self.bills.get(bill_id, for_update=True)
        if bill is None:
            raise NotFound(f"Bill {bill_id} not found")
        return tenant, bill

    def post_payment(
        self,
        bill: Bill,
        tenant: Optional[Tenant],
        amount: Number,
        method: PaymentMethod,
        payment_date: date,
        actual_payment_date: date,
        notes: Optional[str],
        today: date,
        close_tenancy: bool = True,
        check_contract: bool = True,
    ) -> SettlementResult:
        """
        Apply a payment to an already locked bill without committing.

        Departure reuses this with close_tenancy=False since it closes the
        tenancy itself, and check_contract=False since the allocator has
        already decided security eligibility.
        """
        amount = to_money(amount)
        existing = self.payments.list_for_bill(bill.id)
        decision = apply_payment(
            bill_state(bill),
            [p.amount for p in existing],
            PaymentRequest(amount=amount, actual_date=actual_payment_date),
            self.penalty_policy(),
        )

        if method.deposit_kind is not None:
            self._draw_deposit(bill, tenant, method.deposit_kind, amount, today, check_contract)

        db_payment = self.payments.create(
            bill.id,
            amount,
            method,
            payment_date=payment_date,
            actual_payment_date=actual_payment_date,
            notes=notes,
        )

        if decision.penalty_applied:
            bill.penalty_applied = True
            bill.penalty_amount = decision.penalty_amount
            logger.info(
                "Late penalty applied",
                extra={"bill_id": str(bill.id), "penalty_amount": str(decision.penalty_amount)},
            )
        bill.total_amount = decision.total_amount
        bill.status = decision.new_status.value
        self.db.flush()

        snapshot = bill_snapshot(bill, decision.total_paid)
        payment = payment_record(db_payment)

        archived = False
        closure = None
        if decision.settles:
            self.archiver.archive_bill(bill, archive_reason_for(bill))
            archived = True

            if close_tenancy and tenant is not None and self._tenancy_ends(tenant, snapshot):
                closure = self.archiver.close_tenancy(tenant, today, tenancy_contract_completed(tenant, today))

        return SettlementResult(
            bill=snapshot,
            payment=payment,
            archived=archived,
            penalty_applied=decision.penalty_applied,
            closure=closure,
        )

    def _tenancy_ends(self, tenant: Tenant, settled: BillSnapshot) -> bool:
        """The last active bill of a departing tenant, or a final bill, was just settled"""
        if tenant.status != TenantStatus.DEPARTING.value and not settled.is_final_bill:
            return False
        return self.bills.count_active_for_tenant(tenant.id) == 0

    def _draw_deposit(
        self,
        bill: Bill,
        tenant: Optional[Tenant],
        kind: DepositKind,
        amount: Decimal,
        today: date,
        check_contract: bool,
    ) -> None:
        """Lower the tenant's deposit by amount and append a use transaction"""
        deposit = self.deposits.get(bill.tenant_id, kind, for_update=True)
        if deposit is None:
            raise NotFound(f"Tenant {bill.tenant_id} has no {kind.value} deposit")

        if kind is DepositKind.SECURITY and check_contract:
            if tenant is None or not tenancy_contract_completed(tenant, today):
                raise ValidationError("Security deposit can only be used once the contract is completed")

        available = deposit.remaining_balance if deposit.status == DepositStatus.ACTIVE.value else Decimal("0.00")
        if amount > available:
            raise InsufficientDeposit(kind.value, amount, available)

        deposit.remaining_balance = available - amount
        if deposit.remaining_balance == 0:
            deposit.status = DepositStatus.USED.value

        self.deposits.record_transaction(
            deposit,
            DepositAction.USE,
            amount,
            today,
            bill_id=bill.id,
            description=f"Applied to bill {bill.period_start}..{bill.period_end}",
        )
