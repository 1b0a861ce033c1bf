"""Bill issuing - turns a closed period into an unpaid bill"""

import logging
import uuid
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from billing_engine.config import Settings, settings
from billing_engine.domain.calculator import calculate_bill_charges
from billing_engine.domain.exceptions import NotFound, ValidationError
from billing_engine.domain.models import BillCharges, BillSnapshot, FinalBillInputs, TenantStatus
from billing_engine.infrastructure.database.models import Bill, Room, Tenant
from billing_engine.infrastructure.database.repositories import (
    BillRepository,
    RoomRepository,
    SettingsRepository,
    TenantRepository,
)
from billing_engine.infrastructure.database.session import atomic
from billing_engine.infrastructure.observability.metrics import record_bill_created
from billing_engine.services.settlement import bill_snapshot
from billing_engine.utils.date_utils import next_day
from billing_engine.utils.money import ZERO, Number, to_money

logger = logging.getLogger(__name__)


class BillingService:
    """Issues periodic and final bills"""

    def __init__(self, db: Session, config: Settings = settings):
        self.db = db
        self.config = config
        self.bills = BillRepository(db)
        self.rooms = RoomRepository(db)
        self.tenants = TenantRepository(db)
        self.settings_store = SettingsRepository(db)

    def create_bill(
        self,
        tenant_id: uuid.UUID,
        room_id: uuid.UUID,
        period_start: date,
        period_end: date,
        meter_current: Number,
        extra_fee: Number = ZERO,
        extra_description: Optional[str] = None,
        today: Optional[date] = None,
    ) -> BillSnapshot:
        """
        Calculate and persist the bill for one closed period.

        Rent comes from the room, the previous meter reading from the last
        bill (active or archived), rates from the settings store.

        Raises:
            NotFound: tenant or room does not exist
            ValidationError: bad period or amounts, nothing to charge, tenant
                not in that room, tenant departing, or the period overlaps an
                existing bill
        """
        today = today or date.today()

        with atomic(self.db):
            tenant = self.tenants.get(tenant_id, for_update=True)
            if tenant is None:
                raise NotFound(f"Tenant {tenant_id} not found")
            room = self.rooms.get(room_id)
            if room is None:
                raise NotFound(f"Room {room_id} not found")
            if tenant.room_id != room.id:
                raise ValidationError(f"Tenant {tenant_id} does not occupy room {room.room_number}")
            if tenant.status == TenantStatus.DEPARTING.value:
                raise ValidationError(f"Tenant {tenant_id} is departing; use a payment to settle the final bill")

            charges = self.calculate(tenant, room, period_start, period_end, meter_current, extra_fee, extra_description)
            if charges.total_amount == 0:
                raise ValidationError(f"Period {period_start}..{period_end} has nothing to charge")
            db_bill = self.bills.create(tenant.id, room.id, charges, bill_date=today)
            snapshot = bill_snapshot(db_bill, ZERO)

        record_bill_created()
        logger.info(
            "Bill created",
            extra={"bill_id": str(snapshot.bill_id), "tenant_id": str(tenant_id), "total_amount": str(snapshot.total_amount)},
        )
        return snapshot

    def calculate(
        self,
        tenant: Tenant,
        room: Room,
        period_start: date,
        period_end: date,
        meter_current: Number,
        extra_fee: Number = ZERO,
        extra_description: Optional[str] = None,
    ) -> BillCharges:
        """Validate inputs against existing bills and compute the charges"""
        meter_current = to_money(meter_current)
        extra_fee = to_money(extra_fee)
        if meter_current < 0:
            raise ValidationError("Meter reading cannot be negative")
        if extra_fee < 0:
            raise ValidationError("Extra fee cannot be negative")
        if period_end < period_start:
            raise ValidationError(f"Billing period ends ({period_end}) before it starts ({period_start})")

        overlapping = self.bills.find_overlapping(tenant.id, period_start, period_end)
        if overlapping is not None:
            raise ValidationError(f"Period {period_start}..{period_end} overlaps bill {overlapping}")

        last = self.bills.last_billed(tenant.id)
        previous_reading = last[1] if last else tenant.initial_electric_reading
        rates = self.settings_store.get_billing_rates(self.config)

        return calculate_bill_charges(
            period_start=period_start,
            period_end=period_end,
            monthly_rent=room.monthly_rent,
            previous_reading=previous_reading,
            current_reading=meter_current,
            electric_rate=rates.electric_rate_per_kwh,
            water_amount=rates.water_fixed_amount,
            extra_fee=extra_fee,
            extra_fee_description=extra_description,
            basis_days=self.config.proration_basis_days,
        )

    def issue_final_bill(
        self,
        tenant: Tenant,
        inputs: FinalBillInputs,
        contract_completed: bool,
        today: date,
    ) -> Optional[Bill]:
        """
        Bill the unbilled remainder of a tenancy at move-out.

        The period starts the day after the last billed period (else at
        rent_start) and ends today unless the inputs say otherwise. Returns
        None when there is nothing to charge.
        """
        room = self.rooms.get(tenant.room_id) if tenant.room_id else None
        if room is None:
            raise NotFound(f"Tenant {tenant.id} has no room to bill")

        last = self.bills.last_billed(tenant.id)
        period_start = inputs.period_start or (next_day(last[0]) if last else tenant.rent_start)
        period_end = inputs.period_end or today
        if period_end < period_start:
            if inputs.period_start or inputs.period_end:
                raise ValidationError(f"Final bill period ends ({period_end}) before it starts ({period_start})")
            logger.info("Tenant already billed through move-out, no final bill", extra={"tenant_id": str(tenant.id)})
            return None

        charges = self.calculate(
            tenant,
            room,
            period_start,
            period_end,
            inputs.meter_current,
            inputs.extra_fee,
            inputs.extra_description,
        )
        if charges.total_amount == 0:
            return None

        return self.bills.create(
            tenant.id,
            room.id,
            charges,
            bill_date=today,
            is_final_bill=True,
            contract_completed=contract_completed,
            notes="Final bill",
        )
