"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

SERVICE_NAME = "billing-engine"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = SERVICE_NAME


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_settlement(
    bill_id: str,
    tenant_id: str,
    method: str,
    amount: str,
    status: str,
    archived: bool,
    penalty_applied: bool,
    request_id: Optional[str] = None,
) -> None:
    """Log structured payment outcome for reconciliation"""
    logging.info(
        "Payment recorded",
        extra={
            "request_id": request_id,
            "bill_id": bill_id,
            "tenant_id": tenant_id,
            "step": "payment_recorded",
            "method": method,
            "amount": amount,
            "bill_status": status,
            "archived": archived,
            "penalty_applied": penalty_applied,
        },
    )


def log_departure(
    tenant_id: str,
    contract_completed: bool,
    archived: bool,
    outstanding_balance: str,
    advance_refund: str,
    security_refund: str,
    security_forfeited: str,
    forced: bool,
) -> None:
    """Log structured move-out outcome"""
    logging.info(
        "Departure processed",
        extra={
            "tenant_id": tenant_id,
            "step": "departure_complete",
            "outcome": "archived" if archived else "departing",
            "contract_completed": contract_completed,
            "outstanding_balance": outstanding_balance,
            "advance_refund": advance_refund,
            "security_refund": security_refund,
            "security_forfeited": security_forfeited,
            "forced": forced,
        },
    )
