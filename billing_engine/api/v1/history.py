"""GET /v1/bills/history - Fetch a tenant's archived bills"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from billing_engine.api.dependencies import get_db
from billing_engine.api.v1.schemas import HistoryItem, HistoryResponse
from billing_engine.domain.models import BillStatus
from billing_engine.infrastructure.database.repositories import HistoryRepository

router = APIRouter()


@router.get("/bills/history", response_model=HistoryResponse)
def get_bill_history(
    tenant_id: UUID = Query(..., description="Tenant identifier (active or departed)"),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
):
    """
    Retrieve settled bills for a tenant, newest period first.

    Returns:
        Archived bills with resolved totals, including move-out refund bills
    """
    history_repo = HistoryRepository(db)
    bills = history_repo.list_bills_for_tenant(tenant_id, limit=limit)

    history_items = [
        HistoryItem(
            bill_id=b.original_bill_id,
            period_start=b.period_start,
            period_end=b.period_end,
            total_amount=b.total_amount,
            total_paid=b.total_paid,
            penalty_amount=b.penalty_amount,
            status=BillStatus(b.status),
            is_final_bill=b.is_final_bill,
            is_refund_bill=b.is_refund_bill,
            archive_reason=b.archive_reason,
            actual_payment_date=b.actual_payment_date,
            archived_at=b.archived_at.isoformat(),
        )
        for b in bills
    ]

    return HistoryResponse(tenant_id=tenant_id, bills=history_items)
