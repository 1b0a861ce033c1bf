"""POST /v1/bills and GET /v1/bills/{bill_id} - bill issuing and lookup"""

from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from billing_engine.api.dependencies import get_db, get_notification_client, get_request_id, get_settings
from billing_engine.api.errors import to_http_error, unexpected_error
from billing_engine.api.v1.schemas import BillCreateRequest, BillResponse, DepositPaymentResponse
from billing_engine.config import Settings
from billing_engine.domain.exceptions import DomainException
from billing_engine.domain.models import BillSnapshot, BillStatus
from billing_engine.infrastructure.clients.notifications import NotificationClient
from billing_engine.infrastructure.database.repositories import BillRepository, HistoryRepository, PaymentRepository
from billing_engine.services.billing import BillingService
from billing_engine.services.events import bill_created_event, settlement_events
from billing_engine.services.retry import run_with_conflict_retry
from billing_engine.services.settlement import SettlementService, bill_snapshot
from billing_engine.utils.money import money_sum

router = APIRouter()


def bill_response(bill: BillSnapshot, archived: bool = False) -> BillResponse:
    return BillResponse(
        bill_id=bill.bill_id,
        tenant_id=bill.tenant_id,
        room_id=bill.room_id,
        period_start=bill.period_start,
        period_end=bill.period_end,
        total_amount=bill.total_amount,
        penalty_amount=bill.penalty_amount,
        penalty_applied=bill.penalty_applied,
        status=bill.status,
        total_paid=bill.total_paid,
        remaining_balance=bill.remaining_balance,
        is_final_bill=bill.is_final_bill,
        is_refund_bill=bill.is_refund_bill,
        archived=archived,
    )


@router.post("/bills", response_model=BillResponse, status_code=201)
def create_bill(
    request_body: BillCreateRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Session = Depends(get_db),
    config: Settings = Depends(get_settings),
    notification_client: NotificationClient = Depends(get_notification_client),
):
    """
    Issue the bill for a closed period.

    Flow:
    1. Validate tenant, room and period against existing bills
    2. Calculate prorated rent, electricity, water and extras
    3. Persist the unpaid bill
    4. Schedule bill_created notification after commit
    """
    request_id = get_request_id(request)
    service = BillingService(db, config)

    try:
        snapshot = run_with_conflict_retry(
            lambda: service.create_bill(
                tenant_id=request_body.tenant_id,
                room_id=request_body.room_id,
                period_start=request_body.period_start,
                period_end=request_body.period_end,
                meter_current=request_body.meter_current,
                extra_fee=request_body.extra_fee,
                extra_description=request_body.extra_fee_description,
            ),
            "create_bill",
            max_retries=config.settlement_max_retries,
            backoff_base=config.settlement_backoff_base,
        )
    except DomainException as e:
        raise to_http_error(e, request_id)
    except Exception as e:
        raise unexpected_error(e, request_id)

    background_tasks.add_task(notification_client.send_event, bill_created_event(snapshot))
    return bill_response(snapshot)


@router.get("/bills/{bill_id}", response_model=BillResponse)
def get_bill(bill_id: UUID, db: Session = Depends(get_db)):
    """
    Retrieve a bill; settled bills are served from history.

    Raises:
        HTTPException: 404 if the bill was never issued
    """
    db_bill = BillRepository(db).get(bill_id)
    if db_bill is not None:
        total_paid = money_sum(p.amount for p in PaymentRepository(db).list_for_bill(bill_id))
        return bill_response(bill_snapshot(db_bill, total_paid))

    archived = HistoryRepository(db).get_bill(bill_id)
    if archived is None:
        raise HTTPException(status_code=404, detail="Bill not found")

    return bill_response(
        BillSnapshot(
            bill_id=archived.original_bill_id,
            tenant_id=archived.original_tenant_id,
            room_id=archived.room_id,
            period_start=archived.period_start,
            period_end=archived.period_end,
            total_amount=archived.total_amount,
            penalty_amount=archived.penalty_amount,
            penalty_applied=archived.penalty_applied,
            status=BillStatus(archived.status),
            total_paid=archived.total_paid,
            is_final_bill=archived.is_final_bill,
            is_refund_bill=archived.is_refund_bill,
        ),
        archived=True,
    )


@router.post("/bills/{bill_id}/deposit-payment", response_model=DepositPaymentResponse, status_code=201)
def pay_bill_with_deposits(
    bill_id: UUID,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Session = Depends(get_db),
    config: Settings = Depends(get_settings),
    notification_client: NotificationClient = Depends(get_notification_client),
):
    """
    Pay a bill from whatever the tenant's deposits can cover.

    Flow:
    1. Lock the tenant and bill, assess the late penalty as of today
    2. Allocate advance to rent, security to other charges (completed contracts only)
    3. Post one payment per deposit used, archiving the bill if it became paid
    4. Schedule notifications after commit
    """
    request_id = get_request_id(request)
    service = SettlementService(db, config)

    try:
        result = run_with_conflict_retry(
            lambda: service.pay_with_deposits(bill_id, request_id=request_id),
            "pay_with_deposits",
            max_retries=config.settlement_max_retries,
            backoff_base=config.settlement_backoff_base,
        )
    except DomainException as e:
        raise to_http_error(e, request_id)
    except Exception as e:
        raise unexpected_error(e, request_id)

    events = [event for settlement in result.settlements for event in settlement_events(settlement)]
    if events:
        background_tasks.add_task(notification_client.send_events, events)

    return DepositPaymentResponse(
        bill=bill_response(result.bill, archived=result.archived),
        payment_ids=[s.payment.payment_id for s in result.settlements],
        advance_used=result.advance_used,
        security_used=result.security_used,
        outstanding_balance=result.outstanding_balance,
        penalty_applied=result.penalty_applied,
        archived=result.archived,
        tenant_archived=result.closure is not None,
    )
