"""Pydantic schemas for API request/response validation"""

from datetime import date
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from billing_engine.domain.models import BillStatus, DepositKind, DepositStatus, PaymentMethod


class BillCreateRequest(BaseModel):
    """Request body for POST /v1/bills"""

    tenant_id: UUID
    room_id: UUID
    period_start: date
    period_end: date
    meter_current: Decimal = Field(..., ge=0, description="Electric meter reading at period end")
    extra_fee: Decimal = Field(Decimal("0"), ge=0)
    extra_fee_description: Optional[str] = None


class BillResponse(BaseModel):
    """A bill, active or archived"""

    bill_id: UUID
    tenant_id: UUID
    room_id: UUID
    period_start: date
    period_end: date
    total_amount: Decimal
    penalty_amount: Decimal
    penalty_applied: bool
    status: BillStatus
    total_paid: Decimal
    remaining_balance: Decimal
    is_final_bill: bool = False
    is_refund_bill: bool = False
    archived: bool = False


class PaymentCreateRequest(BaseModel):
    """Request body for POST /v1/payments"""

    bill_id: UUID
    amount: Decimal = Field(..., description="Positive, or negative for refund bills")
    method: PaymentMethod
    payment_date: Optional[date] = Field(None, description="Declared payment date, defaults to today")
    actual_payment_date: Optional[date] = Field(None, description="Date the money arrived, defaults to payment_date")
    notes: Optional[str] = None


class PaymentResponse(BaseModel):
    """Response for POST /v1/payments"""

    payment_id: UUID
    amount: Decimal
    method: PaymentMethod
    bill: BillResponse
    archived: bool
    penalty_applied: bool
    tenant_archived: bool


class DepositPaymentResponse(BaseModel):
    """Response for POST /v1/bills/{bill_id}/deposit-payment"""

    bill: BillResponse
    payment_ids: List[UUID]
    advance_used: Decimal
    security_used: Decimal
    outstanding_balance: Decimal
    penalty_applied: bool
    archived: bool
    tenant_archived: bool


class FinalBillRequest(BaseModel):
    """Move-out meter reading and optional overrides for the final period"""

    meter_current: Decimal = Field(..., ge=0)
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    extra_fee: Decimal = Field(Decimal("0"), ge=0)
    extra_fee_description: Optional[str] = None


class DepartureRequest(BaseModel):
    """Request body for POST /v1/tenants/{tenant_id}/departure"""

    final_bill: Optional[FinalBillRequest] = None
    forced: bool = False
    contract_completed: Optional[bool] = Field(None, description="Override; defaults to today >= contract end")
    reason: Optional[str] = None


class DepartureResponse(BaseModel):
    tenant_id: UUID
    contract_completed: bool
    advance_refund: Decimal
    security_refund: Decimal
    security_forfeited: Decimal
    outstanding_balance: Decimal
    archived: bool
    final_bill_id: Optional[UUID] = None
    refund_bill_id: Optional[UUID] = None
    settled_bill_ids: List[UUID] = []


class DepositCreateRequest(BaseModel):
    """Request body for POST /v1/tenants/{tenant_id}/deposits"""

    kind: DepositKind
    amount: Decimal = Field(..., gt=0)
    notes: Optional[str] = None


class DepositBalanceSchema(BaseModel):
    kind: DepositKind
    initial_amount: Decimal
    remaining_balance: Decimal
    status: DepositStatus


class DepositsResponse(BaseModel):
    """Response for GET /v1/tenants/{tenant_id}/deposits"""

    tenant_id: UUID
    advance: Optional[DepositBalanceSchema] = None
    security: Optional[DepositBalanceSchema] = None
    advance_balance: Decimal
    security_balance: Decimal


class HistoryItem(BaseModel):
    """Single archived bill"""

    bill_id: UUID
    period_start: date
    period_end: date
    total_amount: Decimal
    total_paid: Decimal
    penalty_amount: Decimal
    status: BillStatus
    is_final_bill: bool
    is_refund_bill: bool
    archive_reason: str
    actual_payment_date: Optional[date] = None
    archived_at: str


class HistoryResponse(BaseModel):
    """Response for GET /v1/bills/history"""

    tenant_id: UUID
    bills: List[HistoryItem]
