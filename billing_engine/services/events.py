"""Notification payloads for committed billing outcomes"""

from typing import Any, Dict, List

from billing_engine.domain.models import BillSnapshot, DepartureResult, SettlementResult, TenancyClosure

BILL_CREATED = "bill_created"
BILL_SETTLED = "bill_settled"
TENANT_DEPARTED = "tenant_departed"
FINAL_BILL_ISSUED = "final_bill_issued"


def bill_created_event(bill: BillSnapshot) -> Dict[str, Any]:
    return {
        "event": BILL_CREATED,
        "bill_id": str(bill.bill_id),
        "tenant_id": str(bill.tenant_id),
        "room_id": str(bill.room_id),
        "period_start": bill.period_start.isoformat(),
        "period_end": bill.period_end.isoformat(),
        "total_amount": str(bill.total_amount),
    }


def closure_event(closure: TenancyClosure) -> Dict[str, Any]:
    return {
        "event": TENANT_DEPARTED,
        "tenant_id": str(closure.tenant_id),
        "contract_completed": closure.contract_completed,
        "advance_refund": str(closure.advance_refund),
        "security_refund": str(closure.security_refund),
        "security_forfeited": str(closure.security_forfeited),
    }


def settlement_events(result: SettlementResult) -> List[Dict[str, Any]]:
    """bill_settled when the payment archived the bill, then tenant_departed if it closed the tenancy"""
    events: List[Dict[str, Any]] = []
    if result.archived:
        events.append(
            {
                "event": BILL_SETTLED,
                "bill_id": str(result.bill.bill_id),
                "tenant_id": str(result.bill.tenant_id),
                "total_amount": str(result.bill.total_amount),
                "total_paid": str(result.bill.total_paid),
                "is_final_bill": result.bill.is_final_bill,
            }
        )
    if result.closure is not None:
        events.append(closure_event(result.closure))
    return events


def departure_events(result: DepartureResult) -> List[Dict[str, Any]]:
    events: List[Dict[str, Any]] = []
    if result.final_bill_id is not None:
        events.append(
            {
                "event": FINAL_BILL_ISSUED,
                "bill_id": str(result.final_bill_id),
                "tenant_id": str(result.tenant_id),
                "outstanding_balance": str(result.outstanding_balance),
            }
        )
    for bill_id in result.settled_bill_ids:
        events.append({"event": BILL_SETTLED, "bill_id": str(bill_id), "tenant_id": str(result.tenant_id)})
    if result.archived:
        events.append(
            {
                "event": TENANT_DEPARTED,
                "tenant_id": str(result.tenant_id),
                "contract_completed": result.contract_completed,
                "advance_refund": str(result.advance_refund),
                "security_refund": str(result.security_refund),
                "security_forfeited": str(result.security_forfeited),
            }
        )
    return events
