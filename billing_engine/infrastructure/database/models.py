"""SQLAlchemy ORM models for active billing records and their history"""

import uuid
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

MONEY = Numeric(12, 2)


class Room(Base):
    """Rentable room"""

    __tablename__ = "rooms"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    room_number = Column(Text, nullable=False)
    monthly_rent = Column(MONEY, nullable=False)
    status = Column(Text, nullable=False, default="vacant")
    # Plain reference: cleared when the tenant is archived
    tenant_id = Column(UUID(as_uuid=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class Tenant(Base):
    """Active tenant; deleted once archived into tenant_history"""

    __tablename__ = "tenants"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    email = Column(Text, nullable=True)
    room_id = Column(UUID(as_uuid=True), ForeignKey("rooms.id"), nullable=True)
    rent_start = Column(Date, nullable=False)
    contract_start_date = Column(Date, nullable=True)
    contract_end_date = Column(Date, nullable=True)
    initial_electric_reading = Column(MONEY, nullable=False, default=0)
    status = Column(Text, nullable=False, default="active")
    departure_reason = Column(Text, nullable=True)
    departure_contract_completed = Column(Boolean, nullable=True)
    departure_forced = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    room = relationship("Room")


class Bill(Base):
    """One billing period for one tenancy"""

    __tablename__ = "bills"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    room_id = Column(UUID(as_uuid=True), ForeignKey("rooms.id"), nullable=False)
    bill_date = Column(Date, nullable=False)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    rent_amount = Column(MONEY, nullable=False, default=0)
    electric_previous_reading = Column(MONEY, nullable=False, default=0)
    electric_current_reading = Column(MONEY, nullable=False, default=0)
    electric_consumption = Column(MONEY, nullable=False, default=0)
    electric_rate = Column(MONEY, nullable=False, default=0)
    electric_amount = Column(MONEY, nullable=False, default=0)
    water_amount = Column(MONEY, nullable=False, default=0)
    extra_fee_amount = Column(MONEY, nullable=False, default=0)
    extra_fee_description = Column(Text, nullable=True)
    penalty_amount = Column(MONEY, nullable=False, default=0)
    penalty_applied = Column(Boolean, nullable=False, default=False)
    total_amount = Column(MONEY, nullable=False)
    status = Column(Text, nullable=False, default="unpaid")
    is_final_bill = Column(Boolean, nullable=False, default=False)
    is_refund_bill = Column(Boolean, nullable=False, default=False)
    contract_completed = Column(Boolean, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    tenant = relationship("Tenant")
    room = relationship("Room")


class Payment(Base):
    """One funding event against a bill"""

    __tablename__ = "payments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    bill_id = Column(UUID(as_uuid=True), ForeignKey("bills.id"), nullable=False, index=True)
    amount = Column(MONEY, nullable=False)
    payment_date = Column(Date, nullable=False)
    actual_payment_date = Column(Date, nullable=False)
    method = Column(Text, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class TenantDeposit(Base):
    """Advance or security deposit held for a tenant"""

    __tablename__ = "tenant_deposits"
    __table_args__ = (
        CheckConstraint("remaining_balance >= 0", name="ck_deposit_remaining_non_negative"),
        CheckConstraint("remaining_balance <= initial_amount", name="ck_deposit_remaining_le_initial"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # Outlives the tenant row, so no FK
    tenant_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    kind = Column(Text, nullable=False)
    initial_amount = Column(MONEY, nullable=False)
    remaining_balance = Column(MONEY, nullable=False)
    status = Column(Text, nullable=False, default="unpaid")
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class DepositTransaction(Base):
    """Append-only audit entry for deposit movements"""

    __tablename__ = "deposit_transactions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    deposit_id = Column(UUID(as_uuid=True), ForeignKey("tenant_deposits.id"), nullable=False)
    tenant_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    bill_id = Column(UUID(as_uuid=True), nullable=True)
    kind = Column(Text, nullable=False)
    action = Column(Text, nullable=False)
    amount = Column(MONEY, nullable=False)
    balance_after = Column(MONEY, nullable=False)
    description = Column(Text, nullable=True)
    transaction_date = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class BillHistory(Base):
    """Immutable snapshot of a settled bill"""

    __tablename__ = "bill_history"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    original_bill_id = Column(UUID(as_uuid=True), nullable=False, unique=True)
    original_tenant_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    room_id = Column(UUID(as_uuid=True), nullable=False)
    tenant_name = Column(Text, nullable=True)
    room_number = Column(Text, nullable=True)
    bill_date = Column(Date, nullable=False)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    rent_amount = Column(MONEY, nullable=False)
    electric_previous_reading = Column(MONEY, nullable=False)
    electric_current_reading = Column(MONEY, nullable=False)
    electric_consumption = Column(MONEY, nullable=False)
    electric_rate = Column(MONEY, nullable=False)
    electric_amount = Column(MONEY, nullable=False)
    water_amount = Column(MONEY, nullable=False)
    extra_fee_amount = Column(MONEY, nullable=False)
    extra_fee_description = Column(Text, nullable=True)
    penalty_amount = Column(MONEY, nullable=False)
    penalty_applied = Column(Boolean, nullable=False)
    total_amount = Column(MONEY, nullable=False)
    total_paid = Column(MONEY, nullable=False)
    status = Column(Text, nullable=False)
    is_final_bill = Column(Boolean, nullable=False)
    is_refund_bill = Column(Boolean, nullable=False)
    actual_payment_date = Column(Date, nullable=True)
    archive_reason = Column(Text, nullable=False)
    archived_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    payments = relationship("PaymentHistory", back_populates="bill")


class PaymentHistory(Base):
    """Immutable snapshot of a payment on a settled bill"""

    __tablename__ = "payment_history"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    bill_history_id = Column(UUID(as_uuid=True), ForeignKey("bill_history.id"), nullable=False, index=True)
    original_payment_id = Column(UUID(as_uuid=True), nullable=False)
    original_bill_id = Column(UUID(as_uuid=True), nullable=False)
    amount = Column(MONEY, nullable=False)
    payment_date = Column(Date, nullable=False)
    actual_payment_date = Column(Date, nullable=False)
    method = Column(Text, nullable=False)
    notes = Column(Text, nullable=True)
    archived_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    bill = relationship("BillHistory", back_populates="payments")


class TenantHistory(Base):
    """Immutable snapshot of a departed tenant"""

    __tablename__ = "tenant_history"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    original_tenant_id = Column(UUID(as_uuid=True), nullable=False, unique=True)
    name = Column(Text, nullable=False)
    email = Column(Text, nullable=True)
    room_id = Column(UUID(as_uuid=True), nullable=True)
    room_number = Column(Text, nullable=True)
    rent_start = Column(Date, nullable=False)
    rent_end = Column(Date, nullable=False)
    contract_start_date = Column(Date, nullable=True)
    contract_end_date = Column(Date, nullable=True)
    contract_completed = Column(Boolean, nullable=False)
    move_out_date = Column(Date, nullable=False)
    reason_for_leaving = Column(Text, nullable=True)
    final_electric_reading = Column(MONEY, nullable=True)
    advance_refund = Column(MONEY, nullable=False, default=0)
    security_refund = Column(MONEY, nullable=False, default=0)
    security_forfeited = Column(MONEY, nullable=False, default=0)
    forced = Column(Boolean, nullable=False, default=False)
    archived_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Setting(Base):
    """Key/value settings store (rates, penalty configuration)"""

    __tablename__ = "settings"

    setting_key = Column(Text, primary_key=True)
    setting_value = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
