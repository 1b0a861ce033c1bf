"""Departure reconciliation - move-out settlement against deposits"""

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from billing_engine.config import Settings, settings
from billing_engine.domain.allocation import allocate_deposits, split_outstanding
from billing_engine.domain.exceptions import NotFound, OutstandingBillsError, ValidationError
from billing_engine.domain.models import (
    DepartureResult,
    DepositKind,
    FinalBillInputs,
    SettlementResult,
    TenantStatus,
)
from billing_engine.infrastructure.database.models import Bill, Tenant
from billing_engine.infrastructure.database.repositories import (
    BillRepository,
    PaymentRepository,
    TenantRepository,
)
from billing_engine.infrastructure.database.session import atomic
from billing_engine.infrastructure.observability.logging import log_departure
from billing_engine.infrastructure.observability.metrics import record_bill_created, record_departure
from billing_engine.services.billing import BillingService
from billing_engine.services.deposits import DepositService
from billing_engine.services.settlement import (
    SettlementService,
    observe_closure,
    observe_settlement,
)
from billing_engine.utils.date_utils import is_contract_completed
from billing_engine.utils.money import ZERO, money_sum

logger = logging.getLogger(__name__)


class DepartureService:
    """Settles a tenancy at move-out"""

    def __init__(self, db: Session, config: Settings = settings):
        self.db = db
        self.config = config
        self.bills = BillRepository(db)
        self.payments = PaymentRepository(db)
        self.tenants = TenantRepository(db)
        self.billing = BillingService(db, config)
        self.deposits = DepositService(db)
        self.settlement = SettlementService(db, config)

    def process_departure(
        self,
        tenant_id: uuid.UUID,
        final_bill: Optional[FinalBillInputs] = None,
        forced: bool = False,
        contract_completed: Optional[bool] = None,
        reason: Optional[str] = None,
        today: Optional[date] = None,
    ) -> DepartureResult:
        """
        Process a tenant's move-out in one transaction.

        Flow:
        1. Lock the tenant; refuse outstanding bills unless forced
        2. Decide the termination mode (today >= contract end, unless overridden)
        3. Optionally issue a prorated final bill for the unbilled remainder
        4. For each bill, oldest first and final bill last: assess the late
           penalty as of today, allocate deposits, post them as payments
        5. Anything still owed: mark the tenant departing and stop
        6. Otherwise refund/forfeit leftovers and archive the tenant

        Raises:
            NotFound: tenant does not exist
            OutstandingBillsError: unpaid bills and not forced
            ValidationError: tenant already departing, bad final bill inputs
            TransactionConflict: concurrent update, safe to retry
        """
        today = today or date.today()

        with atomic(self.db):
            tenant = self.tenants.get(tenant_id, for_update=True)
            if tenant is None:
                raise NotFound(f"Tenant {tenant_id} not found")
            if tenant.status == TenantStatus.DEPARTING.value:
                raise ValidationError(f"Tenant {tenant_id} is already departing")

            outstanding = self.bills.list_outstanding_for_tenant(tenant.id, for_update=True)
            if outstanding and not forced:
                raise OutstandingBillsError(tenant.id, len(outstanding))

            if contract_completed is None:
                contract_completed = is_contract_completed(tenant.contract_end_date, today)

            to_settle: List[Bill] = list(outstanding)
            final_bill_id = None
            final_reading = None
            if final_bill is not None:
                db_final = self.billing.issue_final_bill(tenant, final_bill, contract_completed, today)
                final_reading = final_bill.meter_current
                if db_final is not None:
                    final_bill_id = db_final.id
                    to_settle.append(db_final)

            settlements, settled_bill_ids, outstanding_balance = self._settle_from_deposits(
                tenant, to_settle, contract_completed, today
            )

            tenant.departure_reason = reason
            tenant.departure_contract_completed = contract_completed
            tenant.departure_forced = forced

            if outstanding_balance > 0:
                tenant.status = TenantStatus.DEPARTING.value
                self.db.flush()
                closure = None
            else:
                closure = self.settlement.archiver.close_tenancy(tenant, today, contract_completed, final_reading)

        for settlement in settlements:
            observe_settlement(settlement)
        if final_bill_id is not None:
            record_bill_created(is_final=True)
        if closure is not None:
            observe_closure(closure)

        result = DepartureResult(
            tenant_id=tenant_id,
            contract_completed=contract_completed,
            advance_refund=closure.advance_refund if closure else ZERO,
            security_refund=closure.security_refund if closure else ZERO,
            security_forfeited=closure.security_forfeited if closure else ZERO,
            outstanding_balance=outstanding_balance,
            archived=closure is not None,
            final_bill_id=final_bill_id,
            refund_bill_id=closure.refund_bill_id if closure else None,
            settled_bill_ids=settled_bill_ids,
        )

        record_departure(result.archived)
        log_departure(
            tenant_id=str(tenant_id),
            contract_completed=contract_completed,
            archived=result.archived,
            outstanding_balance=str(outstanding_balance),
            advance_refund=str(result.advance_refund),
            security_refund=str(result.security_refund),
            security_forfeited=str(result.security_forfeited),
            forced=forced,
        )
        return result

    def _settle_from_deposits(
        self,
        tenant: Tenant,
        bills: List[Bill],
        contract_completed: bool,
        today: date,
    ) -> tuple[List[SettlementResult], List[uuid.UUID], Decimal]:
        """Allocate the running deposit balances across bills, posting deposit payments"""
        position = self.deposits.position(tenant.id, for_update=True)
        balances = {
            DepositKind.ADVANCE: position.advance_balance,
            DepositKind.SECURITY: position.security_balance,
        }
        settlements: List[SettlementResult] = []
        settled_bill_ids: List[uuid.UUID] = []
        outstanding_balance = ZERO

        for bill in bills:
            penalty_applied = self.settlement.apply_late_penalty(bill, today)

            total_paid = money_sum(p.amount for p in self.payments.list_for_bill(bill.id))
            rent_outstanding, other_outstanding = split_outstanding(bill.rent_amount, bill.total_amount, total_paid)
            allocation = allocate_deposits(
                rent_outstanding,
                other_outstanding,
                balances[DepositKind.ADVANCE],
                balances[DepositKind.SECURITY],
                contract_completed,
            )

            bill_id = bill.id
            for kind, used in (
                (DepositKind.ADVANCE, allocation.advance_used),
                (DepositKind.SECURITY, allocation.security_used),
            ):
                if used <= 0:
                    continue
                settlement = self.settlement.post_payment(
                    bill,
                    tenant,
                    used,
                    kind.payment_method,
                    payment_date=today,
                    actual_payment_date=today,
                    notes=f"Move-out {kind.value} deposit allocation",
                    today=today,
                    close_tenancy=False,
                    check_contract=False,
                )
                settlement.penalty_applied = penalty_applied
                penalty_applied = False
                balances[kind] -= used
                settlements.append(settlement)
                if settlement.archived:
                    settled_bill_ids.append(bill_id)

            outstanding_balance += allocation.outstanding_balance

        return settlements, settled_bill_ids, outstanding_balance
