"""Domain models - pure Python dataclasses representing business entities"""

import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List, Optional


class BillStatus(str, Enum):
    """Bill lifecycle: unpaid -> partial -> paid (terminal)"""

    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {BillStatus.UNPAID: 0, BillStatus.PARTIAL: 1, BillStatus.PAID: 2}


class PaymentMethod(str, Enum):
    """How a payment was funded"""

    CASH = "cash"
    TRANSFER = "transfer"
    CHECK = "check"
    ADVANCE_DEPOSIT = "advance_deposit"
    SECURITY_DEPOSIT = "security_deposit"
    OTHER = "other"

    @property
    def deposit_kind(self) -> Optional["DepositKind"]:
        """Deposit drawn by this method, None for externally funded payments"""
        if self is PaymentMethod.ADVANCE_DEPOSIT:
            return DepositKind.ADVANCE
        if self is PaymentMethod.SECURITY_DEPOSIT:
            return DepositKind.SECURITY
        return None


class DepositKind(str, Enum):
    ADVANCE = "advance"
    SECURITY = "security"

    @property
    def payment_method(self) -> PaymentMethod:
        if self is DepositKind.ADVANCE:
            return PaymentMethod.ADVANCE_DEPOSIT
        return PaymentMethod.SECURITY_DEPOSIT


class DepositStatus(str, Enum):
    UNPAID = "unpaid"
    ACTIVE = "active"
    USED = "used"
    REFUNDED = "refunded"
    ARCHIVED = "archived"


class DepositAction(str, Enum):
    DEPOSIT = "deposit"
    USE = "use"
    REFUND = "refund"
    FORFEIT = "forfeit"


class TenantStatus(str, Enum):
    ACTIVE = "active"
    DEPARTING = "departing"  # move-out left an outstanding balance


class RoomStatus(str, Enum):
    VACANT = "vacant"
    OCCUPIED = "occupied"


class ArchiveReason(str, Enum):
    SETTLED = "settled"
    FINAL_SETTLED = "final_settled"
    REFUND_COMPLETED = "refund_completed"


@dataclass
class BillingRates:
    """Rates read from the settings store"""

    electric_rate_per_kwh: Decimal
    water_fixed_amount: Decimal
    penalty_fee_percentage: Decimal
    payment_grace_days: int


@dataclass
class PenaltyPolicy:
    """Late-payment penalty configuration"""

    grace_days: int = 10
    percentage: Decimal = Decimal("1")


@dataclass
class BillCharges:
    """Output of the billing calculator for one period"""

    period_start: date
    period_end: date
    days: int
    rent_amount: Decimal
    electric_previous_reading: Decimal
    electric_current_reading: Decimal
    electric_consumption: Decimal
    electric_rate: Decimal
    electric_amount: Decimal
    water_amount: Decimal
    extra_fee_amount: Decimal
    extra_fee_description: Optional[str]
    total_amount: Decimal

    @property
    def rent_portion(self) -> Decimal:
        return self.rent_amount

    @property
    def other_portion(self) -> Decimal:
        return self.electric_amount + self.water_amount + self.extra_fee_amount


@dataclass
class BillState:
    """The parts of a bill the state machine decides on"""

    period_end: date
    total_amount: Decimal
    status: BillStatus = BillStatus.UNPAID
    penalty_applied: bool = False
    penalty_amount: Decimal = Decimal("0.00")

    @property
    def is_refund(self) -> bool:
        return self.total_amount < 0


@dataclass
class PaymentRequest:
    amount: Decimal
    actual_date: date


@dataclass
class PenaltyAssessment:
    applied: bool
    penalty_amount: Decimal
    total_amount: Decimal


@dataclass
class PaymentDecision:
    """Result of applying one payment to a bill"""

    new_status: BillStatus
    penalty_applied: bool  # newly applied by this payment
    penalty_amount: Decimal
    total_amount: Decimal
    total_paid: Decimal
    remaining_balance: Decimal

    @property
    def settles(self) -> bool:
        return self.new_status is BillStatus.PAID


@dataclass
class DepositAllocation:
    """How deposit funds cover one bill"""

    advance_used: Decimal
    security_used: Decimal
    outstanding_balance: Decimal
    advance_refundable: Decimal
    security_refundable: Decimal
    security_forfeited: Decimal

    @property
    def total_used(self) -> Decimal:
        return self.advance_used + self.security_used


@dataclass
class DepositBalance:
    kind: DepositKind
    initial_amount: Decimal
    remaining_balance: Decimal
    status: DepositStatus


@dataclass
class DepositPosition:
    """A tenant's deposits, as usable balances"""

    tenant_id: uuid.UUID
    advance: Optional[DepositBalance] = None
    security: Optional[DepositBalance] = None

    @property
    def advance_balance(self) -> Decimal:
        return _usable(self.advance)

    @property
    def security_balance(self) -> Decimal:
        return _usable(self.security)


def _usable(balance: Optional[DepositBalance]) -> Decimal:
    if balance is None or balance.status is not DepositStatus.ACTIVE:
        return Decimal("0.00")
    return balance.remaining_balance


@dataclass
class FinalBillInputs:
    """Move-out meter reading and optional overrides for the final period"""

    meter_current: Decimal
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    extra_fee: Decimal = Decimal("0.00")
    extra_description: Optional[str] = None


@dataclass
class BillSnapshot:
    """Bill as it stood when an operation finished (it may since be archived)"""

    bill_id: uuid.UUID
    tenant_id: uuid.UUID
    room_id: uuid.UUID
    period_start: date
    period_end: date
    total_amount: Decimal
    penalty_amount: Decimal
    penalty_applied: bool
    status: BillStatus
    total_paid: Decimal
    is_final_bill: bool
    is_refund_bill: bool

    @property
    def remaining_balance(self) -> Decimal:
        return self.total_amount - self.total_paid


@dataclass
class PaymentRecord:
    payment_id: uuid.UUID
    bill_id: uuid.UUID
    amount: Decimal
    method: PaymentMethod
    payment_date: date
    actual_payment_date: date
    notes: Optional[str]


@dataclass
class TenancyClosure:
    """Deposit disposition when a tenant is archived"""

    tenant_id: uuid.UUID
    contract_completed: bool
    advance_refund: Decimal
    security_refund: Decimal
    security_forfeited: Decimal
    refund_bill_id: Optional[uuid.UUID] = None

    @property
    def total_refund(self) -> Decimal:
        return self.advance_refund + self.security_refund


@dataclass
class SettlementResult:
    """Outcome of recording one payment"""

    bill: BillSnapshot
    payment: PaymentRecord
    archived: bool
    penalty_applied: bool
    closure: Optional[TenancyClosure] = None

    @property
    def tenant_archived(self) -> bool:
        return self.closure is not None


@dataclass
class DepositPaymentResult:
    """Outcome of paying one bill from the tenant's deposits"""

    bill: BillSnapshot
    advance_used: Decimal
    security_used: Decimal
    outstanding_balance: Decimal
    penalty_applied: bool
    settlements: List[SettlementResult] = field(default_factory=list)

    @property
    def archived(self) -> bool:
        return any(s.archived for s in self.settlements)

    @property
    def closure(self) -> Optional[TenancyClosure]:
        return next((s.closure for s in self.settlements if s.closure is not None), None)


@dataclass
class DepartureResult:
    """Outcome of a move-out"""

    tenant_id: uuid.UUID
    contract_completed: bool
    advance_refund: Decimal
    security_refund: Decimal
    security_forfeited: Decimal
    outstanding_balance: Decimal
    archived: bool
    final_bill_id: Optional[uuid.UUID] = None
    refund_bill_id: Optional[uuid.UUID] = None
    settled_bill_ids: List[uuid.UUID] = field(default_factory=list)
