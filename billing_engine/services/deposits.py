"""Deposit intake and balance reporting"""

import logging
import uuid
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from billing_engine.domain.exceptions import NotFound, ValidationError
from billing_engine.domain.models import (
    DepositAction,
    DepositBalance,
    DepositKind,
    DepositPosition,
    DepositStatus,
)
from billing_engine.infrastructure.database.models import TenantDeposit
from billing_engine.infrastructure.database.repositories import DepositRepository, TenantRepository
from billing_engine.infrastructure.database.session import atomic
from billing_engine.infrastructure.observability.metrics import record_deposit_movement
from billing_engine.utils.money import Number, to_money

logger = logging.getLogger(__name__)


def deposit_balance(deposit: TenantDeposit) -> DepositBalance:
    return DepositBalance(
        kind=DepositKind(deposit.kind),
        initial_amount=deposit.initial_amount,
        remaining_balance=deposit.remaining_balance,
        status=DepositStatus(deposit.status),
    )


class DepositService:
    """Records received deposits and reports what is left of them"""

    def __init__(self, db: Session):
        self.db = db
        self.deposits = DepositRepository(db)
        self.tenants = TenantRepository(db)

    def receive_deposit(
        self,
        tenant_id: uuid.UUID,
        kind: DepositKind,
        amount: Number,
        notes: Optional[str] = None,
        today: Optional[date] = None,
    ) -> DepositBalance:
        """
        Record an advance or security deposit paid by a tenant.

        An unpaid or fully used deposit of the same kind is reactivated at
        the new amount; an active one must be used up first.

        Raises:
            NotFound: tenant does not exist
            ValidationError: non-positive amount, or deposit already active
        """
        today = today or date.today()
        kind = DepositKind(kind)
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError("Deposit amount must be positive")

        with atomic(self.db):
            tenant = self.tenants.get(tenant_id, for_update=True)
            if tenant is None:
                raise NotFound(f"Tenant {tenant_id} not found")

            deposit = self.deposits.get(tenant.id, kind, for_update=True)
            if deposit is not None and deposit.status == DepositStatus.ACTIVE.value:
                raise ValidationError(f"Tenant {tenant_id} already holds an active {kind.value} deposit")

            if deposit is not None and deposit.status in (DepositStatus.UNPAID.value, DepositStatus.USED.value):
                deposit.initial_amount = amount
                deposit.remaining_balance = amount
                deposit.status = DepositStatus.ACTIVE.value
            else:
                deposit = self.deposits.create(tenant.id, kind, amount, DepositStatus.ACTIVE)
            if notes:
                deposit.notes = notes

            self.deposits.record_transaction(
                deposit,
                DepositAction.DEPOSIT,
                amount,
                today,
                description=f"{kind.value.capitalize()} deposit received",
            )
            balance = deposit_balance(deposit)

        record_deposit_movement(kind.value, DepositAction.DEPOSIT.value, amount)
        logger.info(
            "Deposit received",
            extra={"tenant_id": str(tenant_id), "kind": kind.value, "amount": str(amount)},
        )
        return balance

    def get_balances(self, tenant_id: uuid.UUID) -> DepositPosition:
        """
        Current deposits of a tenant. Deposit rows outlive the tenant, so an
        archived tenant's final balances remain readable.

        Raises:
            NotFound: no tenant and no deposits under that id
        """
        position = self.position(tenant_id)
        if position.advance is None and position.security is None and self.tenants.get(tenant_id) is None:
            raise NotFound(f"Tenant {tenant_id} not found")
        return position

    def position(self, tenant_id: uuid.UUID, for_update: bool = False) -> DepositPosition:
        """Latest deposit of each kind, without opening a transaction"""
        position = DepositPosition(tenant_id=tenant_id)
        for kind in DepositKind:
            deposit = self.deposits.get(tenant_id, kind, for_update=for_update)
            if deposit is None:
                continue
            if kind is DepositKind.ADVANCE:
                position.advance = deposit_balance(deposit)
            else:
                position.security = deposit_balance(deposit)
        return position
