"""POST /v1/payments - record a payment against a bill"""

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session

from billing_engine.api.dependencies import get_db, get_notification_client, get_request_id, get_settings
from billing_engine.api.errors import to_http_error, unexpected_error
from billing_engine.api.v1.bills import bill_response
from billing_engine.api.v1.schemas import PaymentCreateRequest, PaymentResponse
from billing_engine.config import Settings
from billing_engine.domain.exceptions import DomainException
from billing_engine.infrastructure.clients.notifications import NotificationClient
from billing_engine.services.events import settlement_events
from billing_engine.services.retry import run_with_conflict_retry
from billing_engine.services.settlement import SettlementService

router = APIRouter()


@router.post("/payments", response_model=PaymentResponse, status_code=201)
def record_payment(
    request_body: PaymentCreateRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Session = Depends(get_db),
    config: Settings = Depends(get_settings),
    notification_client: NotificationClient = Depends(get_notification_client),
):
    """
    Apply a cash or deposit-funded payment.

    Flow:
    1. Lock the bill and run the state machine (late penalty, balance check)
    2. Insert the payment and move the bill status forward
    3. Archive the bill if it became paid, closing a departing tenancy
       when it was the last bill
    4. Retry the whole transaction on lock conflicts
    5. Schedule notifications after commit
    """
    request_id = get_request_id(request)
    service = SettlementService(db, config)

    try:
        result = run_with_conflict_retry(
            lambda: service.record_payment(
                bill_id=request_body.bill_id,
                amount=request_body.amount,
                method=request_body.method,
                payment_date=request_body.payment_date,
                actual_payment_date=request_body.actual_payment_date,
                notes=request_body.notes,
                request_id=request_id,
            ),
            "record_payment",
            max_retries=config.settlement_max_retries,
            backoff_base=config.settlement_backoff_base,
        )
    except DomainException as e:
        raise to_http_error(e, request_id)
    except Exception as e:
        raise unexpected_error(e, request_id)

    events = settlement_events(result)
    if events:
        background_tasks.add_task(notification_client.send_events, events)

    return PaymentResponse(
        payment_id=result.payment.payment_id,
        amount=result.payment.amount,
        method=result.payment.method,
        bill=bill_response(result.bill, archived=result.archived),
        archived=result.archived,
        penalty_applied=result.penalty_applied,
        tenant_archived=result.tenant_archived,
    )
