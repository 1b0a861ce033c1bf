"""Tenant endpoints - move-out reconciliation and deposits"""

from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session

from billing_engine.api.dependencies import get_db, get_notification_client, get_request_id, get_settings
from billing_engine.api.errors import to_http_error, unexpected_error
from billing_engine.api.v1.schemas import (
    DepartureRequest,
    DepartureResponse,
    DepositBalanceSchema,
    DepositCreateRequest,
    DepositsResponse,
)
from billing_engine.config import Settings
from billing_engine.domain.exceptions import DomainException
from billing_engine.domain.models import DepositBalance, DepositPosition, FinalBillInputs
from billing_engine.infrastructure.clients.notifications import NotificationClient
from billing_engine.services.departure import DepartureService
from billing_engine.services.deposits import DepositService
from billing_engine.services.events import departure_events
from billing_engine.services.retry import run_with_conflict_retry

router = APIRouter()


def _balance_schema(balance: DepositBalance | None) -> DepositBalanceSchema | None:
    if balance is None:
        return None
    return DepositBalanceSchema(
        kind=balance.kind,
        initial_amount=balance.initial_amount,
        remaining_balance=balance.remaining_balance,
        status=balance.status,
    )


def _deposits_response(position: DepositPosition) -> DepositsResponse:
    return DepositsResponse(
        tenant_id=position.tenant_id,
        advance=_balance_schema(position.advance),
        security=_balance_schema(position.security),
        advance_balance=position.advance_balance,
        security_balance=position.security_balance,
    )


@router.post("/tenants/{tenant_id}/departure", response_model=DepartureResponse)
def process_departure(
    tenant_id: UUID,
    request_body: DepartureRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Session = Depends(get_db),
    config: Settings = Depends(get_settings),
    notification_client: NotificationClient = Depends(get_notification_client),
):
    """
    Settle a tenancy at move-out.

    Deposits pay the final bill (and, when forced, any outstanding bills).
    If everything is covered the tenant is archived and the room freed;
    otherwise the tenant stays, marked departing, until the balance is paid.
    """
    request_id = get_request_id(request)
    service = DepartureService(db, config)

    final_bill = None
    if request_body.final_bill is not None:
        final_bill = FinalBillInputs(
            meter_current=request_body.final_bill.meter_current,
            period_start=request_body.final_bill.period_start,
            period_end=request_body.final_bill.period_end,
            extra_fee=request_body.final_bill.extra_fee,
            extra_description=request_body.final_bill.extra_fee_description,
        )

    try:
        result = run_with_conflict_retry(
            lambda: service.process_departure(
                tenant_id,
                final_bill=final_bill,
                forced=request_body.forced,
                contract_completed=request_body.contract_completed,
                reason=request_body.reason,
            ),
            "process_departure",
            max_retries=config.settlement_max_retries,
            backoff_base=config.settlement_backoff_base,
        )
    except DomainException as e:
        raise to_http_error(e, request_id)
    except Exception as e:
        raise unexpected_error(e, request_id)

    events = departure_events(result)
    if events:
        background_tasks.add_task(notification_client.send_events, events)

    return DepartureResponse(
        tenant_id=result.tenant_id,
        contract_completed=result.contract_completed,
        advance_refund=result.advance_refund,
        security_refund=result.security_refund,
        security_forfeited=result.security_forfeited,
        outstanding_balance=result.outstanding_balance,
        archived=result.archived,
        final_bill_id=result.final_bill_id,
        refund_bill_id=result.refund_bill_id,
        settled_bill_ids=result.settled_bill_ids,
    )


@router.post("/tenants/{tenant_id}/deposits", response_model=DepositBalanceSchema, status_code=201)
def receive_deposit(
    tenant_id: UUID,
    request_body: DepositCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
    config: Settings = Depends(get_settings),
):
    """Record an advance or security deposit received from the tenant"""
    request_id = get_request_id(request)
    service = DepositService(db)

    try:
        balance = run_with_conflict_retry(
            lambda: service.receive_deposit(tenant_id, request_body.kind, request_body.amount, notes=request_body.notes),
            "receive_deposit",
            max_retries=config.settlement_max_retries,
            backoff_base=config.settlement_backoff_base,
        )
    except DomainException as e:
        raise to_http_error(e, request_id)
    except Exception as e:
        raise unexpected_error(e, request_id)

    return _balance_schema(balance)


@router.get("/tenants/{tenant_id}/deposits", response_model=DepositsResponse)
def get_deposits(tenant_id: UUID, request: Request, db: Session = Depends(get_db)):
    """Current deposit balances; still readable after the tenant is archived"""
    try:
        position = DepositService(db).get_balances(tenant_id)
    except DomainException as e:
        raise to_http_error(e, get_request_id(request))
    return _deposits_response(position)
